"""
texttools/features/usage/service.py

Usage accounting service.

Handles:
- Recording one unit of detection/humanization usage
- Reading the current month's counters
- Monthly reset of every user's counters
"""

from typing import Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from texttools.core.errors import UpstreamError, ValidationError
from texttools.features.subscriptions import store
from texttools.models.subscription import FeatureKind, UsageCounters


logger = logging.getLogger(__name__)


def _require_kind(feature_kind) -> FeatureKind:
    kind = FeatureKind.parse(feature_kind)
    if kind is None:
        raise ValidationError("Invalid usage type. Must be 'detection' or 'humanization'")
    return kind


def record_usage(user_id: Optional[str], feature_kind) -> UsageCounters:
    """
    Count one use of a feature against the user's current month.

    Creates the user's free record on first use. The increment is a single
    UPDATE, so concurrent calls each add exactly one.

    Raises:
        ValidationError: user_id missing or feature_kind unknown
        UpstreamError: the record store failed
    """
    if not user_id or not feature_kind:
        raise ValidationError("Missing required fields")
    kind = _require_kind(feature_kind)

    try:
        counters = store.increment_counter(user_id, kind)
        if counters is None:
            store.create_default(user_id)
            counters = store.increment_counter(user_id, kind)
    except SQLAlchemyError as exc:
        logger.error(
            "[usage] failed to record usage",
            extra={"user_id": user_id, "feature": kind.value, "error": str(exc)},
        )
        raise UpstreamError("Failed to update usage") from exc

    logger.info(
        "[usage] recorded",
        extra={"user_id": user_id, "feature": kind.value, "count": counters.get(kind)},
    )
    return counters


def get_usage(user_id: str) -> UsageCounters:
    """Current month's counters; zeros for users without a record."""
    record = store.find(user_id)
    if record is None:
        return UsageCounters()
    return record.usage_this_month


def reset_all_usage() -> int:
    """
    Zero both counters for every user. Plans and statuses are untouched.

    Returns the number of records reset. Store failures propagate so the
    scheduler sees the run failed.
    """
    try:
        count = store.reset_all_usage()
    except SQLAlchemyError as exc:
        logger.error("[usage] monthly reset failed", extra={"error": str(exc)})
        raise UpstreamError("Failed to reset usage counts") from exc
    logger.info("[usage] monthly reset complete", extra={"records_reset": count})
    return count
