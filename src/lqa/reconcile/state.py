from __future__ import annotations

from copy import deepcopy
from enum import Enum
from typing import Dict, Iterable, List, Optional

from ..schemas.job import JobData, TranslationUnit


class FileStatus(str, Enum):
    NEW = "NEW"
    LOADED = "LOADED"
    CHANGED = "CHANGED"
    SAVED = "SAVED"


class SegmentState(str, Enum):
    ORIGINAL = "original"
    SAVED = "saved"
    MODIFIED = "modified"


def units_differ(a: TranslationUnit, b: TranslationUnit) -> bool:
    return a.ntgt != b.ntgt or a.qa != b.qa


def derive_status(
    current_tus: Iterable[TranslationUnit],
    baseline_tus: Iterable[TranslationUnit],
    idle_status: FileStatus,
) -> FileStatus:
    """
    CHANGED if any current unit diverges (target or QA) from its same-guid
    baseline unit, else `idle_status`. Units missing from the baseline are
    not counted here.
    """
    baseline = {tu.guid: tu for tu in baseline_tus}
    for tu in current_tus:
        base = baseline.get(tu.guid)
        if base is not None and units_differ(tu, base):
            return FileStatus.CHANGED
    return idle_status


def segment_state(
    current: Optional[TranslationUnit],
    original: Optional[TranslationUnit],
    saved: Optional[TranslationUnit],
) -> SegmentState:
    if current is None or original is None or saved is None:
        return SegmentState.ORIGINAL
    if current.ntgt == original.ntgt:
        return SegmentState.ORIGINAL
    if current.ntgt == saved.ntgt:
        return SegmentState.SAVED
    return SegmentState.MODIFIED


def _replace_unit(job: JobData, unit: TranslationUnit) -> JobData:
    tus = [unit if tu.guid == unit.guid else tu for tu in job.tus]
    return job.model_copy(update={"tus": tus})


def _find(job: Optional[JobData], guid: str) -> Optional[TranslationUnit]:
    if job is None:
        return None
    for tu in job.tus:
        if tu.guid == guid:
            return tu
    return None


class TranslationState:
    """
    Snapshot triad for one open job.

    `original` is the job as parsed from the archive and is never edited.
    `saved` is the last persisted state. `current` is the edit buffer and the
    only snapshot user input touches. The three never share structure;
    accessors hand out copies.
    """

    def __init__(self) -> None:
        self._original: Optional[JobData] = None
        self._saved: Optional[JobData] = None
        self._current: Optional[JobData] = None
        self._status: FileStatus = FileStatus.NEW

    # -- read side ---------------------------------------------------------

    @property
    def file_status(self) -> FileStatus:
        return self._status

    @property
    def has_data(self) -> bool:
        return self._current is not None

    @property
    def job_data(self) -> Optional[JobData]:
        return self._current.model_copy(deep=True) if self._current else None

    @property
    def original_job_data(self) -> Optional[JobData]:
        return self._original.model_copy(deep=True) if self._original else None

    @property
    def saved_job_data(self) -> Optional[JobData]:
        return self._saved.model_copy(deep=True) if self._saved else None

    def get_unit(self, guid: str) -> Optional[TranslationUnit]:
        tu = _find(self._current, guid)
        return tu.model_copy(deep=True) if tu else None

    def segment_state(self, guid: str) -> SegmentState:
        return segment_state(
            _find(self._current, guid),
            _find(self._original, guid),
            _find(self._saved, guid),
        )

    def pending_candidates(self) -> List[str]:
        if self._current is None:
            return []
        return [tu.guid for tu in self._current.tus if tu.candidates]

    # -- setup -------------------------------------------------------------

    def setup_two_state_system(self, job: JobData) -> None:
        self._current = job.model_copy(deep=True)
        self._original = job.model_copy(deep=True)
        self._saved = job.model_copy(deep=True)
        self._status = FileStatus.NEW

    def setup_three_state_system(self, job: JobData, loaded_saved: JobData) -> None:
        # original keeps the archive translation, not the source-filled or
        # merged one, so overall diffs are measured against what was shipped
        self._original = job.model_copy(deep=True)
        self._saved = loaded_saved.model_copy(deep=True)
        self._current = loaded_saved.model_copy(deep=True)
        self._status = FileStatus.LOADED

    def reset(self) -> None:
        self._original = None
        self._saved = None
        self._current = None
        self._status = FileStatus.NEW

    # -- mutations ---------------------------------------------------------

    def update_translation_unit(self, tu: TranslationUnit) -> bool:
        """
        Apply an edited unit to `current`. Returns False when nothing changed.
        """
        if self._current is None or self._original is None:
            return False
        existing = _find(self._current, tu.guid)
        if existing is None:
            return False

        target_changed = existing.ntgt != tu.ntgt
        if not target_changed and existing.qa == tu.qa:
            return False

        updated = tu.model_copy(deep=True)
        if target_changed:
            updated.candidate_selected = None
        self._current = _replace_unit(self._current, updated)

        if self._status == FileStatus.LOADED and self._saved is not None:
            self._status = derive_status(self._current.tus, self._saved.tus, FileStatus.LOADED)
        else:
            self._status = derive_status(self._current.tus, self._original.tus, FileStatus.NEW)
        return True

    def select_candidate(self, guid: str, index: int) -> bool:
        if self._current is None or self._original is None or self._saved is None:
            return False
        tu = _find(self._current, guid)
        if tu is None or not tu.candidates or not (0 <= index < len(tu.candidates)):
            return False
        chosen = tu.candidates[index]

        picked = tu.model_copy(deep=True)
        picked.ntgt = deepcopy(chosen)
        picked.candidates = None
        picked.candidate_selected = True
        self._current = _replace_unit(self._current, picked)

        # the saved snapshot mirrors the pick so the unit reads as saved,
        # not modified
        saved_tu = _find(self._saved, guid)
        if saved_tu is not None:
            saved_copy = saved_tu.model_copy(deep=True)
            saved_copy.ntgt = deepcopy(chosen)
            saved_copy.candidates = None
            saved_copy.candidate_selected = True
            self._saved = _replace_unit(self._saved, saved_copy)

        # candidates are a load-time artifact; original keeps its target
        orig_tu = _find(self._original, guid)
        if orig_tu is not None:
            orig_copy = orig_tu.model_copy(deep=True)
            orig_copy.candidates = None
            self._original = _replace_unit(self._original, orig_copy)

        self._status = FileStatus.CHANGED
        return True

    def mark_as_saved(self) -> None:
        self._status = FileStatus.SAVED

    def replace_saved(self, job: JobData) -> None:
        self._saved = job.model_copy(deep=True)

    # -- diff --------------------------------------------------------------

    def get_changed_tus(self) -> List[TranslationUnit]:
        if self._current is None or self._original is None:
            return []
        original: Dict[str, TranslationUnit] = self._original.unit_map()
        changed: List[TranslationUnit] = []
        for tu in self._current.tus:
            orig = original.get(tu.guid)
            if orig is None or tu.ntgt != orig.ntgt:
                changed.append(tu.model_copy(deep=True))
        return changed
