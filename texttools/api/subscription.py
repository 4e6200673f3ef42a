"""
Subscription and usage API routes.

- GET  /api/subscription/{user_id}: Current plan, status and usage
- POST /api/update-usage: Count one detection/humanization
- POST /api/reset-usage: Zero every user's counters (internal, cron)
"""
import logging
from typing import Optional

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from texttools.core.admin_auth import require_internal_key
from texttools.core.config import settings
from texttools.core.errors import UpstreamError
from texttools.features.billing.provider import BillingProviderError
from texttools.features.billing.service import refresh_subscription
from texttools.features.subscriptions import store
from texttools.features.usage.service import record_usage, reset_all_usage
from texttools.models.subscription import CamelModel, SubscriptionRecord


logger = logging.getLogger("texttools")

router = APIRouter(tags=["subscription"])


class UpdateUsageRequest(CamelModel):
    """Fields are optional so missing values produce a 400, not a 422."""
    user_id: Optional[str] = None
    type: Optional[str] = None


class ResetUsageRequest(CamelModel):
    api_key: Optional[str] = None


def _record_payload(record: SubscriptionRecord) -> dict:
    return record.model_dump(by_alias=True, mode="json")


def _refreshed(record: SubscriptionRecord) -> SubscriptionRecord:
    if not settings.SUBSCRIPTION_REFRESH_ON_READ:
        return record
    try:
        return refresh_subscription(record)
    except BillingProviderError as e:
        logger.warning(
            "[subscription] stripe refresh failed, serving stored record",
            extra={"user_id": record.user_id, "error": str(e)},
        )
        return record


@router.get("/subscription/{user_id}")
def get_subscription(user_id: str):
    """
    Get a user's subscription.

    Users without a record get a free/active/zero-usage view; nothing is
    written. Paid records are refreshed from Stripe when possible.

    Errors:
        500: Record store unavailable
    """
    try:
        record = store.find(user_id)
        if record is None:
            return {"success": True, "data": _record_payload(SubscriptionRecord.default_for(user_id))}
        record = _refreshed(record)
    except SQLAlchemyError as e:
        logger.error("[subscription] lookup failed", extra={"user_id": user_id, "error": str(e)})
        raise UpstreamError("Failed to fetch subscription information")

    return {"success": True, "data": _record_payload(record)}


@router.post("/update-usage")
def update_usage(request: UpdateUsageRequest):
    """
    Record one unit of usage.

    Returns:
        {"success": true, "data": {"detections": int, "humanizations": int}}

    Errors:
        400: Missing userId/type or unknown type
        500: Record store unavailable
    """
    counters = record_usage(request.user_id, request.type)
    return {"success": True, "data": counters.model_dump(by_alias=True)}


@router.post("/reset-usage")
def reset_usage(request: ResetUsageRequest):
    """
    Reset usage counters for all users (monthly cron).

    Errors:
        401: apiKey does not match INTERNAL_API_KEY
        500: Record store unavailable
    """
    require_internal_key(request.api_key)
    count = reset_all_usage()
    return {"success": True, "message": "Usage counts reset for all users", "count": count}
