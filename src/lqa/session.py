from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from .archive.images import PageImageStore
from .archive.loader import InvalidArchive, LoadResult, load_job_archive
from .metrics import EPTStatistics, QASummary, calculate_ept_statistics, calculate_qa_summary
from .reconcile.merge import MergeResult, apply_loaded_translations, build_save_payload, edited_notice
from .reconcile.state import FileStatus, TranslationState
from .schemas.flow import FlowData
from .schemas.job import JobData, Normalized
from .schemas.quality import QualityModel
from .storage.base import (
    AutoSaveUnavailable,
    FileIdentifier,
    StorageError,
    StoragePlugin,
    identifier_filename,
)
from .text import normalized_arrays_equal

console = Console()

_LEVEL_STYLE = {"success": "green", "info": "cyan", "warning": "yellow", "error": "red"}


@dataclass
class Notice:
    level: str
    title: str
    description: str = ""


@dataclass
class LoadOutcome:
    result: LoadResult
    found_edited: bool
    edited_count: int


class ReviewSession:
    """
    One reviewer's open job: archive resources, the snapshot triad, and the
    backend it came from. Failures are turned into notices here; the state is
    only touched after a storage call has resolved.
    """

    def __init__(self, echo: bool = True) -> None:
        self.state = TranslationState()
        self.loaded: Optional[LoadResult] = None
        self.plugin: Optional[StoragePlugin] = None
        self.identifier: FileIdentifier = {}
        self.notices: List[Notice] = []
        self.last_processed_url: Optional[str] = None
        self.echo = echo
        self._saving = False

    # -- notices / session values -----------------------------------------

    def notify(self, level: str, title: str, description: str = "") -> Notice:
        notice = Notice(level=level, title=title, description=description)
        self.notices.append(notice)
        if self.echo:
            style = _LEVEL_STYLE.get(level, "white")
            console.print(f"[{style}]{escape(title)}[/{style}]" + (f": {escape(description)}" if description else ""))
        return notice

    def claim_url(self, url: str) -> bool:
        """
        Record a deep link as handled. False if it was the last one processed.
        """
        if url == self.last_processed_url:
            return False
        self.last_processed_url = url
        return True

    @property
    def saving(self) -> bool:
        return self._saving

    @property
    def file_status(self) -> FileStatus:
        return self.state.file_status

    @property
    def file_name(self) -> str:
        return identifier_filename(self.identifier) or ""

    @property
    def flow_data(self) -> Optional[FlowData]:
        return self.loaded.flow_data if self.loaded else None

    @property
    def quality_model(self) -> Optional[QualityModel]:
        return self.loaded.quality_model if self.loaded else None

    @property
    def page_images(self) -> Optional[PageImageStore]:
        return self.loaded.page_images if self.loaded else None

    # -- load --------------------------------------------------------------

    async def _fetch_saved_translations(
        self,
        plugin: StoragePlugin,
        identifier: FileIdentifier,
        name: str,
        job: JobData,
    ) -> Optional[MergeResult]:
        if not plugin.capabilities.can_auto_save:
            return None
        try:
            saved = await plugin.load_auto_save_data(identifier, name)
        except (AutoSaveUnavailable, StorageError) as exc:
            self.notify("warning", "Saved translations unavailable", str(exc))
            return None
        if saved is None or not saved.tus:
            return None
        return apply_loaded_translations(job, saved)

    async def load(self, plugin: StoragePlugin, identifier: FileIdentifier) -> Optional[LoadOutcome]:
        if plugin.capabilities.requires_auth and not plugin.is_authenticated():
            self.notify("error", "Authentication required", f"Sign in to {plugin.metadata.name} first")
            return None

        try:
            data = await plugin.load_file(identifier)
            result = load_job_archive(data)
        except (InvalidArchive, StorageError) as exc:
            self.notify("error", "Load failed", str(exc))
            return None

        name = identifier_filename(identifier) or result.file_name
        result.file_name = name
        ident: FileIdentifier = {**identifier, "filename": name}
        if result.job_data.job_guid:
            ident["jobGuid"] = result.job_data.job_guid

        try:
            merged = await self._fetch_saved_translations(plugin, ident, name, result.job_data)
        except BaseException:
            # the previous job stays open; only the new archive's images go
            result.release()
            raise

        self._release_resources()
        if merged is not None:
            self.state.setup_three_state_system(result.job_data, merged.job_data)
        else:
            self.state.setup_two_state_system(result.job_data)

        self.loaded = result
        self.plugin = plugin
        self.identifier = ident

        found = merged is not None
        count = merged.edited_count if merged is not None else 0
        if found:
            self.notify("success", "File loaded", edited_notice(count))
        else:
            self.notify("success", "File loaded", f"Loaded via {plugin.metadata.name}")
        if result.quality_model is not None:
            self.notify("info", "Quality model loaded", result.quality_model.name)
        return LoadOutcome(result=result, found_edited=found, edited_count=count)

    # -- edit --------------------------------------------------------------

    def edit_target(self, guid: str, ntgt: Normalized) -> bool:
        tu = self.state.get_unit(guid)
        if tu is None:
            return False
        # text re-split across items by an editor is not an edit
        if normalized_arrays_equal(tu.ntgt, ntgt):
            return False
        tu.ntgt = ntgt
        return self.state.update_translation_unit(tu)

    def select_candidate(self, guid: str, index: int) -> bool:
        return self.state.select_candidate(guid, index)

    # -- save --------------------------------------------------------------

    async def save(
        self,
        plugin: Optional[StoragePlugin] = None,
        identifier: Optional[FileIdentifier] = None,
    ) -> bool:
        if not self.state.has_data:
            return False
        plugin = plugin or self.plugin
        if plugin is None:
            self.notify("error", "Cannot save", "No storage backend selected")
            return False
        if self._saving:
            self.notify("warning", "Save in progress", "Wait for the current save to finish")
            return False
        if not plugin.capabilities.can_save:
            self.notify("error", "Cannot save", f"{plugin.metadata.name} does not support saving")
            return False
        if plugin.capabilities.requires_auth and not plugin.is_authenticated():
            self.notify("error", "Authentication required", f"Sign in to {plugin.metadata.name} first")
            return False

        ident: FileIdentifier = {**self.identifier, **(identifier or {})}
        missing = plugin.validate_identifier(ident, "save")
        if missing:
            self.notify("error", "Missing information", f"Cannot save: missing {', '.join(missing)}")
            return False

        current = self.state.job_data
        payload = build_save_payload(current, self.state.get_changed_tus())

        self._saving = True
        try:
            await plugin.save_file(ident, payload)
        except StorageError as exc:
            # current snapshot and CHANGED status stay as they are for a retry
            self.notify("error", "Save failed", str(exc))
            return False
        finally:
            self._saving = False

        self.state.replace_saved(current)
        self.state.mark_as_saved()
        self.plugin = plugin
        self.identifier = ident
        self.notify("success", "Saved", f"Saved via {plugin.metadata.name}")
        return True

    # -- metrics -----------------------------------------------------------

    def ept_statistics(self) -> Optional[EPTStatistics]:
        return calculate_ept_statistics(self.state.job_data, self.state.original_job_data)

    def qa_summary(self) -> Optional[QASummary]:
        return calculate_qa_summary(self.state.job_data, self.quality_model)

    # -- teardown ----------------------------------------------------------

    def _release_resources(self) -> None:
        if self.loaded is not None:
            self.loaded.release()

    def close(self) -> None:
        self._release_resources()
        self.loaded = None
        self.plugin = None
        self.identifier = {}
        self.state.reset()
