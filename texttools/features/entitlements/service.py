"""
texttools/features/entitlements/service.py

Entitlement gate for metered features.

Decides whether a detection/humanization request may proceed and, when it
may, consumes one unit of usage in the same step:

1. anonymous callers (no user id) are always allowed and nothing is counted
2. the user's record is loaded, or created on the free plan
3. a paid plan that is not active is denied
4. a free plan at its monthly limit is denied
5. everything else is allowed and one unit is consumed

Usage is consumed before the downstream feature runs; a failed detection
still costs the user one unit.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from texttools.core.config import settings
from texttools.core.errors import ValidationError
from texttools.features.plans.service import free_limit
from texttools.features.subscriptions import store
from texttools.models.subscription import FeatureKind, UsageCounters


logger = logging.getLogger(__name__)


class DenyReason(str, Enum):
    QUOTA_EXCEEDED = "quota exceeded"
    SUBSCRIPTION_INACTIVE = "subscription inactive"
    GATE_UNAVAILABLE = "gate unavailable"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: Optional[DenyReason] = None
    usage: Optional[UsageCounters] = None
    plan_type: Optional[str] = None

    @classmethod
    def allow(cls, usage: Optional[UsageCounters] = None, plan_type: Optional[str] = None) -> "GateDecision":
        return cls(allowed=True, usage=usage, plan_type=plan_type)

    @classmethod
    def deny(cls, reason: DenyReason, usage: Optional[UsageCounters] = None, plan_type: Optional[str] = None) -> "GateDecision":
        return cls(allowed=False, reason=reason, usage=usage, plan_type=plan_type)


def _on_store_failure(user_id: str, kind: FeatureKind, exc: Exception) -> GateDecision:
    policy = settings.GATE_FAILURE_POLICY
    logger.error(
        "[gate] entitlement check failed",
        extra={"user_id": user_id, "feature": kind.value, "policy": policy, "error": str(exc)},
    )
    if policy == "closed":
        return GateDecision.deny(DenyReason.GATE_UNAVAILABLE)
    return GateDecision.allow()


def check_and_consume(user_id: Optional[str], feature_kind) -> GateDecision:
    """
    Gate one request for `feature_kind` and consume a unit when allowed.

    Store failures follow GATE_FAILURE_POLICY: "open" allows the request
    without counting it, "closed" denies it with GATE_UNAVAILABLE.

    Raises:
        ValidationError: feature_kind is not a metered feature
    """
    kind = FeatureKind.parse(feature_kind)
    if kind is None:
        raise ValidationError(f"Unknown feature: {feature_kind}")

    if not user_id:
        return GateDecision.allow()

    try:
        record = store.get_or_create(user_id)

        if record.is_paid:
            if not record.is_active:
                logger.info(
                    "[gate] BLOCK inactive subscription",
                    extra={"user_id": user_id, "feature": kind.value, "plan_type": record.plan_type, "status": record.status},
                )
                return GateDecision.deny(
                    DenyReason.SUBSCRIPTION_INACTIVE,
                    usage=record.usage_this_month,
                    plan_type=record.plan_type,
                )
            usage = store.increment_counter(user_id, kind)
            return GateDecision.allow(usage=usage, plan_type=record.plan_type)

        limit = free_limit(kind)
        usage = store.consume_if_below(user_id, kind, limit)
        if usage is None:
            logger.info(
                "[gate] BLOCK free quota exceeded",
                extra={"user_id": user_id, "feature": kind.value, "limit": limit},
            )
            return GateDecision.deny(
                DenyReason.QUOTA_EXCEEDED,
                usage=record.usage_this_month,
                plan_type=record.plan_type,
            )
        return GateDecision.allow(usage=usage, plan_type=record.plan_type)
    except SQLAlchemyError as exc:
        return _on_store_failure(user_id, kind, exc)
