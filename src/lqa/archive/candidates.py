from __future__ import annotations

from copy import deepcopy
from typing import Dict, Iterable, List, Tuple

from ..schemas.job import Normalized, TranslationUnit


def dedupe_units(tus: Iterable[TranslationUnit]) -> Tuple[List[TranslationUnit], Dict[str, int]]:
    """
    Fold units sharing a guid into the first one seen (archive order).

    Later duplicates contribute their target as an extra candidate; the
    canonical unit's own target becomes candidate 0. Returns the canonical
    units and, for each duplicated guid, how many units carried it.
    """
    by_guid: Dict[str, TranslationUnit] = {}
    dup_counts: Dict[str, int] = {}
    for tu in tus:
        existing = by_guid.get(tu.guid)
        if existing is None:
            by_guid[tu.guid] = tu.model_copy(deep=True)
            continue
        if existing.candidates is None:
            existing.candidates = [deepcopy(existing.target())]
        existing.candidates.append(deepcopy(tu.target()))
        dup_counts[tu.guid] = dup_counts.get(tu.guid, 1) + 1
    return list(by_guid.values()), dup_counts


def unique_candidates(candidates: Iterable[Normalized]) -> List[Normalized]:
    unique: List[Normalized] = []
    for cand in candidates:
        if cand not in unique:
            unique.append(cand)
    return unique


def collapse_candidates(tu: TranslationUnit) -> TranslationUnit:
    if tu.candidates is None:
        return tu
    unique = unique_candidates(tu.candidates)
    if len(unique) == 1:
        tu.ntgt = unique[0]
        tu.candidates = None
    else:
        # several distinct translations: the reviewer has to pick one
        tu.candidates = unique
        tu.ntgt = []
    return tu


def backfill_targets(tus: Iterable[TranslationUnit]) -> List[TranslationUnit]:
    out: List[TranslationUnit] = []
    for tu in tus:
        if tu.candidates is None and not tu.ntgt:
            tu.ntgt = deepcopy(tu.nsrc)
        out.append(tu)
    return out


def resolve_units(tus: Iterable[TranslationUnit]) -> Tuple[List[TranslationUnit], Dict[str, int]]:
    units, dup_counts = dedupe_units(tus)
    units = [collapse_candidates(tu) for tu in units]
    return backfill_targets(units), dup_counts
