"""FastAPI dependency that puts the entitlement gate in front of a feature route."""

import json
from typing import Callable

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from texttools.core.errors import (
    QuotaExceededError,
    ServiceUnavailableError,
    SubscriptionInactiveError,
    ValidationError,
)
from texttools.features.entitlements.service import DenyReason, GateDecision, check_and_consume
from texttools.models.subscription import FeatureKind


async def _body_user_id(request: Request):
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    user_id = payload.get("userId")
    if user_id is not None and not isinstance(user_id, str):
        raise ValidationError("userId must be a string")
    return user_id


def require_feature_access(feature_kind: FeatureKind) -> Callable:
    """
    Build a dependency that gates a route on `feature_kind`.

    The user id is read from the JSON body's `userId`; a non-string value
    is rejected with a 400. Usage:

        @router.post("/detect")
        def detect(req: DetectRequest, decision: GateDecision = Depends(require_feature_access(FeatureKind.DETECTION))):
            ...
    """

    async def dependency(request: Request) -> GateDecision:
        user_id = await _body_user_id(request)
        decision = await run_in_threadpool(check_and_consume, user_id, feature_kind)
        if decision.allowed:
            return decision
        if decision.reason is DenyReason.SUBSCRIPTION_INACTIVE:
            raise SubscriptionInactiveError("Your subscription is not active. Please check your payment method.")
        if decision.reason is DenyReason.QUOTA_EXCEEDED:
            raise QuotaExceededError(
                f"You have reached the {feature_kind.value} limit for the free plan. Please upgrade to continue."
            )
        raise ServiceUnavailableError("Entitlement check unavailable. Please try again.", code="gate_unavailable")

    return dependency
