"""
texttools/models/subscription.py

Subscription record and usage counter models.

One SubscriptionRecord exists per user. It carries the plan, the Stripe
references and the usage counted in the current billing month. Records are
immutable; the store returns a fresh instance after every write.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


PlanType = Literal["free", "monthly", "yearly"]
SubscriptionStatus = Literal["active", "canceled", "past_due", "trialing", "incomplete"]

PAID_PLANS = ("monthly", "yearly")


class FeatureKind(str, Enum):
    """Metered features."""
    DETECTION = "detection"
    HUMANIZATION = "humanization"

    @property
    def counter(self) -> str:
        """Name of the usage counter (and column) this feature increments."""
        return f"{self.value}s"

    @classmethod
    def parse(cls, value: object) -> Optional["FeatureKind"]:
        """Return the matching kind, or None for anything unrecognised."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; all stored times are UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class UsageCounters(CamelModel):
    detections: int = Field(default=0, ge=0)
    humanizations: int = Field(default=0, ge=0)

    def get(self, kind: FeatureKind) -> int:
        return getattr(self, kind.counter)


class SubscriptionRecord(CamelModel):
    """
    Per-user subscription state.

    Invariants:
    - plan_type is free or one of PAID_PLANS
    - a paid plan is only usable while status == "active"
    - usage counters never go below zero and only drop on the monthly reset
    """

    user_id: str
    plan_type: PlanType = "free"
    status: SubscriptionStatus = "active"
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    usage_this_month: UsageCounters = Field(default_factory=UsageCounters)
    last_event_at: Optional[datetime] = Field(default=None, exclude=True)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("current_period_end", "last_event_at", "created_at", "updated_at")
    @classmethod
    def _normalize_tz(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def is_paid(self) -> bool:
        return self.plan_type in PAID_PLANS

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @classmethod
    def default_for(cls, user_id: str) -> "SubscriptionRecord":
        """Free, active, zero-usage record (not persisted)."""
        return cls(user_id=user_id)
