from __future__ import annotations

import asyncio
import io
import json
import zipfile
from pathlib import Path

import pytest

from lqa.reconcile.state import FileStatus, SegmentState
from lqa.session import ReviewSession
from lqa.storage.base import Capabilities, PersistFailure, PluginMetadata, StoragePlugin
from lqa.storage.local import LocalFilePlugin


def _write_archive(path: Path, tus, job_guid="job-1", with_images=False) -> Path:
    job = {"sourceLang": "en", "targetLang": "es", "jobGuid": job_guid, "tus": tus}
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("job.json", json.dumps(job))
        if with_images:
            flow = {"flowName": "f", "pages": [{"pageId": "p1", "imageFile": "p1.png", "segments": []}]}
            zf.writestr("flow_metadata.json", json.dumps(flow))
            zf.writestr("p1.png", b"png")
    path.write_bytes(buf.getvalue())
    return path


def _units():
    return [
        {"guid": "a", "nsrc": ["Hello"], "ntgt": ["Hola"]},
        {"guid": "b", "nsrc": ["Bye now"], "ntgt": ["Adios"]},
    ]


def _setup(tmp_path: Path, **kw):
    _write_archive(tmp_path / "job.lqaboss", _units(), **kw)
    return LocalFilePlugin(tmp_path), {"filename": "job.lqaboss"}


class FailingPlugin(LocalFilePlugin):
    async def save_file(self, identifier, job):
        raise PersistFailure("disk full")


class ReadOnlyPlugin(StoragePlugin):
    metadata = PluginMetadata(id="ro", name="Read only")
    capabilities = Capabilities(requires_auth=False, can_save=False)

    def __init__(self, data: bytes):
        self.data = data

    async def load_file(self, identifier):
        return self.data


class LockedPlugin(ReadOnlyPlugin):
    metadata = PluginMetadata(id="locked", name="Locked")
    capabilities = Capabilities(requires_auth=True, can_save=True)


def test_fresh_load_is_new(tmp_path: Path):
    plugin, ident = _setup(tmp_path)
    session = ReviewSession(echo=False)
    outcome = asyncio.run(session.load(plugin, ident))
    assert outcome is not None and not outcome.found_edited
    assert session.file_status == FileStatus.NEW
    assert session.file_name == "job.lqaboss"
    assert session.identifier["jobGuid"] == "job-1"
    assert session.notices[-1].level == "success"


def test_save_writes_changed_units_and_reload_is_loaded(tmp_path: Path):
    plugin, ident = _setup(tmp_path)
    session = ReviewSession(echo=False)
    asyncio.run(session.load(plugin, ident))

    assert session.edit_target("a", ["Hola!"])
    assert session.file_status == FileStatus.CHANGED
    assert asyncio.run(session.save())
    assert session.file_status == FileStatus.SAVED
    assert session.state.segment_state("a") == SegmentState.SAVED

    companion = json.loads((tmp_path / "job.json").read_text(encoding="utf-8"))
    assert [tu["guid"] for tu in companion["tus"]] == ["a"]
    assert companion["jobGuid"] == "job-1"
    assert companion["updatedAt"].endswith("Z")
    assert (tmp_path / "job.lqaboss").exists()

    reopened = ReviewSession(echo=False)
    outcome = asyncio.run(reopened.load(plugin, ident))
    assert outcome.found_edited and outcome.edited_count == 1
    assert reopened.file_status == FileStatus.LOADED
    assert any(n.description == "Found 1 edited translation" for n in reopened.notices)
    assert reopened.state.get_unit("a").ntgt == ["Hola!"]
    assert reopened.state.segment_state("a") == SegmentState.SAVED
    assert reopened.state.original_job_data.tus[0].ntgt == ["Hola"]


def test_second_save_still_diffs_against_archive(tmp_path: Path):
    plugin, ident = _setup(tmp_path)
    session = ReviewSession(echo=False)
    asyncio.run(session.load(plugin, ident))
    session.edit_target("a", ["Hola!"])
    asyncio.run(session.save())
    session.edit_target("b", ["Chao"])
    asyncio.run(session.save())

    companion = json.loads((tmp_path / "job.json").read_text(encoding="utf-8"))
    assert sorted(tu["guid"] for tu in companion["tus"]) == ["a", "b"]


def test_failing_save_keeps_changed(tmp_path: Path):
    _write_archive(tmp_path / "job.lqaboss", _units())
    plugin = FailingPlugin(tmp_path)
    session = ReviewSession(echo=False)
    asyncio.run(session.load(plugin, {"filename": "job.lqaboss"}))
    session.edit_target("a", ["Hola!"])

    assert not asyncio.run(session.save())
    assert session.file_status == FileStatus.CHANGED
    assert session.state.get_unit("a").ntgt == ["Hola!"]
    assert session.notices[-1].level == "error"
    assert not session.saving


def test_reentrant_save_is_rejected(tmp_path: Path):
    class SlowPlugin(LocalFilePlugin):
        gate: asyncio.Event

        async def save_file(self, identifier, job):
            await self.gate.wait()
            await super().save_file(identifier, job)

    _write_archive(tmp_path / "job.lqaboss", _units())
    plugin = SlowPlugin(tmp_path)
    session = ReviewSession(echo=False)
    asyncio.run(session.load(plugin, {"filename": "job.lqaboss"}))
    session.edit_target("a", ["Hola!"])

    async def scenario():
        plugin.gate = asyncio.Event()
        first = asyncio.create_task(session.save())
        await asyncio.sleep(0)
        assert session.saving
        second = await session.save()
        plugin.gate.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert first is True
    assert second is False
    assert session.file_status == FileStatus.SAVED


def test_companion_for_other_job_is_ignored(tmp_path: Path):
    plugin, ident = _setup(tmp_path)
    other = {"jobGuid": "someone-else", "tus": [{"guid": "a", "nsrc": ["Hello"], "ntgt": ["Otro"]}]}
    (tmp_path / "job.json").write_text(json.dumps(other), encoding="utf-8")

    session = ReviewSession(echo=False)
    asyncio.run(session.load(plugin, ident))
    assert session.file_status == FileStatus.NEW
    assert session.state.get_unit("a").ntgt == ["Hola"]


def test_corrupt_companion_falls_back_to_two_state(tmp_path: Path):
    plugin, ident = _setup(tmp_path)
    (tmp_path / "job.json").write_text("{broken", encoding="utf-8")

    session = ReviewSession(echo=False)
    outcome = asyncio.run(session.load(plugin, ident))
    assert outcome is not None
    assert session.file_status == FileStatus.NEW
    assert any(n.level == "warning" for n in session.notices)


def test_non_utf8_companion_falls_back_to_two_state(tmp_path: Path):
    plugin, ident = _setup(tmp_path)
    (tmp_path / "job.json").write_bytes(b"\xff\xfe\xfa not utf8")

    session = ReviewSession(echo=False)
    outcome = asyncio.run(session.load(plugin, ident))
    assert outcome is not None
    assert session.file_status == FileStatus.NEW
    assert session.state.get_unit("a").ntgt == ["Hola"]
    assert any(n.level == "warning" for n in session.notices)


class BrokenCompanionPlugin(LocalFilePlugin):
    broken = False

    async def load_auto_save_data(self, identifier, name):
        if self.broken:
            raise RuntimeError("companion reader crashed")
        return await super().load_auto_save_data(identifier, name)


def test_crash_while_reading_companion_keeps_previous_job(tmp_path: Path):
    _write_archive(tmp_path / "job.lqaboss", _units(), with_images=True)
    plugin = BrokenCompanionPlugin(tmp_path)
    ident = {"filename": "job.lqaboss"}
    session = ReviewSession(echo=False)
    asyncio.run(session.load(plugin, ident))
    session.edit_target("a", ["Hola!"])
    store = session.page_images

    plugin.broken = True
    with pytest.raises(RuntimeError):
        asyncio.run(session.load(plugin, ident))

    assert not store.released
    assert store.get("p1.png").read_bytes() == b"png"
    assert session.page_images is store
    assert session.file_status == FileStatus.CHANGED
    assert session.state.get_unit("a").ntgt == ["Hola!"]


def test_failed_load_leaves_previous_job(tmp_path: Path):
    plugin, ident = _setup(tmp_path)
    (tmp_path / "broken.lqaboss").write_bytes(b"not a zip")
    session = ReviewSession(echo=False)
    asyncio.run(session.load(plugin, ident))
    session.edit_target("a", ["Hola!"])

    assert asyncio.run(session.load(plugin, {"filename": "broken.lqaboss"})) is None
    assert session.notices[-1].level == "error"
    assert session.file_status == FileStatus.CHANGED
    assert session.file_name == "job.lqaboss"

    assert asyncio.run(session.load(plugin, {"filename": "missing.lqaboss"})) is None
    assert session.state.get_unit("a").ntgt == ["Hola!"]


def test_page_images_released_on_close_and_reload(tmp_path: Path):
    plugin, ident = _setup(tmp_path, with_images=True)
    session = ReviewSession(echo=False)
    asyncio.run(session.load(plugin, ident))
    first_store = session.page_images
    image = first_store.get("p1.png")
    assert image.read_bytes() == b"png"

    asyncio.run(session.load(plugin, ident))
    assert first_store.released
    assert not image.exists()

    second_store = session.page_images
    session.close()
    assert second_store.released
    assert not session.state.has_data
    assert session.page_images is None


def test_save_requires_capability(tmp_path: Path):
    data = _write_archive(tmp_path / "job.lqaboss", _units()).read_bytes()
    session = ReviewSession(echo=False)
    asyncio.run(session.load(ReadOnlyPlugin(data), {"filename": "job.lqaboss"}))
    session.edit_target("a", ["Hola!"])
    assert not asyncio.run(session.save())
    assert session.file_status == FileStatus.CHANGED
    assert session.notices[-1].title == "Cannot save"


def test_load_requires_authentication(tmp_path: Path):
    data = _write_archive(tmp_path / "job.lqaboss", _units()).read_bytes()
    session = ReviewSession(echo=False)
    assert asyncio.run(session.load(LockedPlugin(data), {"filename": "job.lqaboss"})) is None
    assert session.notices[-1].title == "Authentication required"
    assert not session.state.has_data


def test_claim_url_only_once_in_a_row():
    session = ReviewSession(echo=False)
    assert session.claim_url("/gcs/b/p/job.lqaboss")
    assert not session.claim_url("/gcs/b/p/job.lqaboss")
    assert session.claim_url("/gcs/b/p/other.lqaboss")


def test_list_files_sorted(tmp_path: Path):
    _write_archive(tmp_path / "b.lqaboss", _units())
    _write_archive(tmp_path / "a.lqaboss", _units())
    (tmp_path / "a.json").write_text("{}", encoding="utf-8")
    files = asyncio.run(LocalFilePlugin(tmp_path).list_files())
    assert [f.name for f in files] == ["a.lqaboss", "b.lqaboss"]
    assert files[0].identifier == {"filename": "a.lqaboss"}
    assert files[0].size > 0


def test_resplit_target_is_not_an_edit(tmp_path: Path):
    plugin, ident = _setup(tmp_path)
    session = ReviewSession(echo=False)
    asyncio.run(session.load(plugin, ident))

    assert not session.edit_target("a", ["Ho", "la"])
    assert session.file_status == FileStatus.NEW
    assert session.state.get_unit("a").ntgt == ["Hola"]
    assert session.edit_target("a", ["Ho", "la!"])


def test_qa_summary_reads_unit_annotations(tmp_path: Path):
    quality = {
        "id": "mqm",
        "name": "MQM Core",
        "severities": [{"id": "minor", "label": "Minor", "weight": 1}, {"id": "major", "label": "Major", "weight": 5}],
        "errorCategories": [
            {"id": "accuracy", "label": "Accuracy", "subcategories": [{"id": "omission", "label": "Omission"}]}
        ],
    }
    units = _units()
    units[0]["qa"] = {"severity": "major", "category": "accuracy.omission"}
    job = {"sourceLang": "en", "targetLang": "es", "jobGuid": "job-1", "tus": units}
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("job.json", json.dumps(job))
        zf.writestr("quality.json", json.dumps(quality))
    (tmp_path / "job.lqaboss").write_bytes(buf.getvalue())

    session = ReviewSession(echo=False)
    assert session.qa_summary() is None
    asyncio.run(session.load(LocalFilePlugin(tmp_path), {"filename": "job.lqaboss"}))

    qa = session.qa_summary()
    assert qa.total_errors == 1
    assert qa.total_weight == 5
    assert qa.category_breakdown == {"accuracy.omission": 1}
