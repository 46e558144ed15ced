from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
from typing import Dict, Iterable, List

from ..schemas.job import JobData, TranslationUnit


@dataclass
class MergeResult:
    job_data: JobData
    edited_count: int


def build_save_payload(job: JobData, changed_tus: Iterable[TranslationUnit]) -> JobData:
    """
    Job-level metadata plus only the changed units. Incremental saves never
    carry the full unit list.
    """
    tus = [tu.model_copy(deep=True) for tu in changed_tus]
    return job.model_copy(update={"tus": tus}, deep=True)


def apply_loaded_translations(base: JobData, saved: JobData) -> MergeResult:
    """
    Overlay auto-saved targets onto a freshly loaded job.

    A saved unit with a non-empty target replaces the base unit's target.
    `edited_count` counts units whose saved target differs from the archive
    translation of that same unit (not from the source text). `base` is not
    modified.
    """
    if not saved.tus:
        return MergeResult(job_data=base.model_copy(deep=True), edited_count=0)

    saved_by_guid: Dict[str, TranslationUnit] = {tu.guid: tu for tu in saved.tus}
    edited_count = 0
    merged: List[TranslationUnit] = []
    for tu in base.tus:
        out = tu.model_copy(deep=True)
        saved_tu = saved_by_guid.get(tu.guid)
        if saved_tu is not None and saved_tu.ntgt:
            if saved_tu.ntgt != tu.ntgt:
                edited_count += 1
            out.ntgt = deepcopy(saved_tu.ntgt)
            if saved_tu.candidate_selected:
                # picked in an earlier session
                out.candidates = None
                out.candidate_selected = True
        merged.append(out)

    result = base.model_copy(
        update={
            "tus": merged,
            # timestamp follows the companion; provider stays the archive's
            "updated_at": saved.updated_at or base.updated_at,
            "translation_provider": base.translation_provider,
        },
        deep=True,
    )
    return MergeResult(job_data=result, edited_count=edited_count)


def edited_notice(count: int) -> str:
    suffix = "" if count == 1 else "s"
    return f"Found {count} edited translation{suffix}"
