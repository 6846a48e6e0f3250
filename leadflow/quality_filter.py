# leadflow/quality_filter.py
"""Eligibility predicate applied between enrichment and generation."""
from dataclasses import dataclass
from typing import Iterable, Optional

from leadflow.models import EntityRecord


@dataclass(frozen=True)
class QualityCriteria:
    """A criterion set to None/False is not checked."""
    min_rating: Optional[float] = None
    min_review_count: Optional[int] = None
    require_phone: bool = False
    require_at_least_one_review: bool = False


def rejection_reason(record: EntityRecord, criteria: QualityCriteria) -> Optional[str]:
    """Return why the record fails, or None if it passes.

    A configured criterion whose field is missing fails; there is no
    pass-by-default for unknown values.
    """
    if criteria.require_phone and not (record.phone or "").strip():
        return "no phone"

    if criteria.min_rating is not None:
        rating = record.effective_rating
        if rating is None:
            return "no rating"
        if rating < criteria.min_rating:
            return f"rating {rating} < {criteria.min_rating}"

    if criteria.min_review_count is not None:
        count = record.effective_review_count
        if count is None:
            return "no review count"
        if count < criteria.min_review_count:
            return f"{count} reviews < {criteria.min_review_count}"

    if criteria.require_at_least_one_review and not record.reviews:
        return "no review text"

    return None


def passes(record: EntityRecord, criteria: QualityCriteria) -> bool:
    return rejection_reason(record, criteria) is None


def apply(records: Iterable[EntityRecord], criteria: QualityCriteria) -> tuple[list[EntityRecord], list[tuple[EntityRecord, str]]]:
    """Split records into (kept, [(rejected, reason), ...]) preserving order."""
    kept = []
    rejected = []
    for record in records:
        reason = rejection_reason(record, criteria)
        if reason is None:
            kept.append(record)
        else:
            rejected.append((record, reason))
    return kept, rejected
