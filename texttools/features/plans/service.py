"""
texttools/features/plans/service.py

Plan catalogue.

Handles:
- Free tier monthly allowances per feature
- Stripe price id <-> paid plan mapping

Paid plans (monthly, yearly) carry no usage limits; only their subscription
status gates access.
"""

import os
from typing import Optional

from texttools.core.config import settings
from texttools.models.subscription import FeatureKind, PAID_PLANS


# Setting that holds each paid plan's Stripe price id.
PRICE_SETTINGS = {
    "monthly": "STRIPE_MONTHLY_PRICE_ID",
    "yearly": "STRIPE_YEARLY_PRICE_ID",
}


def _setting(name: str) -> Optional[str]:
    # Environment takes precedence over .env-loaded settings.
    return os.getenv(name) or getattr(settings, name, None)


def free_limit(kind: FeatureKind) -> int:
    """Monthly allowance for a feature on the free plan."""
    if kind is FeatureKind.DETECTION:
        return settings.FREE_DETECTION_LIMIT
    return settings.FREE_HUMANIZATION_LIMIT


def price_for_plan(plan_type: str) -> Optional[str]:
    """Stripe price id for a paid plan, or None if unknown/unconfigured."""
    setting = PRICE_SETTINGS.get(plan_type)
    if not setting:
        return None
    return _setting(setting)


def plan_for_price(price_id: Optional[str]) -> Optional[str]:
    """Map a Stripe price id to a paid plan, or None if it is not one of ours."""
    if not price_id:
        return None
    for plan_type in PAID_PLANS:
        if price_for_plan(plan_type) == price_id:
            return plan_type
    return None
