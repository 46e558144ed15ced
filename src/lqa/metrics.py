from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from .schemas.job import JobData
from .schemas.quality import QualityModel
from .text import count_words


@dataclass
class EPTStatistics:
    total_segments: int
    total_words: int
    changed_segments: int
    changed_words: int
    ept: float


def calculate_ept_statistics(
    current: Optional[JobData],
    original: Optional[JobData],
) -> Optional[EPTStatistics]:
    """
    Errors per thousand: source words in changed segments per 1000 source words.
    """
    if current is None or original is None:
        return None
    original_by_guid = original.unit_map()

    total_segments = total_words = changed_segments = changed_words = 0
    for tu in current.tus:
        total_segments += 1
        words = count_words(tu.nsrc)
        total_words += words
        orig = original_by_guid.get(tu.guid)
        if orig is not None and tu.ntgt != orig.ntgt:
            changed_segments += 1
            changed_words += words

    ept = 0.0 if total_words == 0 else (changed_words / total_words) * 1000
    return EPTStatistics(
        total_segments=total_segments,
        total_words=total_words,
        changed_segments=changed_segments,
        changed_words=changed_words,
        ept=ept,
    )


def calculate_ept(current: Optional[JobData], original: Optional[JobData]) -> Optional[float]:
    stats = calculate_ept_statistics(current, original)
    return stats.ept if stats else None


@dataclass
class QASummary:
    total_errors: int = 0
    total_weight: float = 0.0
    severity_breakdown: Dict[str, int] = field(default_factory=dict)
    category_breakdown: Dict[str, int] = field(default_factory=dict)
    unassessed_severity: int = 0
    unassessed_category: int = 0


def calculate_qa_summary(
    job: Optional[JobData],
    quality_model: Optional[QualityModel],
) -> Optional[QASummary]:
    """
    Tally unit QA annotations against the quality model.

    A unit with a non-empty `qa` mapping is one error. Its `severity` is a
    severity id and its `category` is "<category id>.<subcategory id>". Ids
    the model does not define count as unassessed.
    """
    if job is None or quality_model is None:
        return None
    weights = {sev.id: sev.weight for sev in quality_model.severities}
    categories = {
        f"{cat.id}.{sub.id}" for cat in quality_model.error_categories for sub in cat.subcategories
    }

    summary = QASummary()
    for tu in job.tus:
        if not tu.qa:
            continue
        summary.total_errors += 1

        severity = tu.qa.get("severity")
        if isinstance(severity, str) and severity in weights:
            summary.severity_breakdown[severity] = summary.severity_breakdown.get(severity, 0) + 1
            summary.total_weight += weights[severity]
        else:
            summary.unassessed_severity += 1

        category = tu.qa.get("category")
        if isinstance(category, str) and category in categories:
            summary.category_breakdown[category] = summary.category_breakdown.get(category, 0) + 1
        else:
            summary.unassessed_category += 1
    return summary
