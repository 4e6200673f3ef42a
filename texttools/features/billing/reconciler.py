"""
Applies Stripe subscription events to subscription records.

Every handler sets fields to the values carried by the event (or fetched
from Stripe) instead of toggling them, so replaying an event leaves the
record unchanged. Events for subscriptions we have no record of are logged
and ignored.
"""
from datetime import datetime
from typing import Optional
import logging

from texttools.core.config import settings
from texttools.features.billing.provider import BillingProvider, normalize_status
from texttools.features.plans.service import plan_for_price
from texttools.features.subscriptions import store
from texttools.models.subscription import PAID_PLANS, SubscriptionRecord


logger = logging.getLogger(__name__)


def _is_stale(record: SubscriptionRecord, event_at: Optional[datetime]) -> bool:
    if not settings.BILLING_REJECT_STALE_EVENTS:
        return False
    if event_at is None or record.last_event_at is None:
        return False
    return event_at < record.last_event_at


def _apply(record: SubscriptionRecord, event_at: Optional[datetime], **changes) -> SubscriptionRecord:
    if event_at is not None and (record.last_event_at is None or event_at > record.last_event_at):
        changes["last_event_at"] = event_at
    return store.save(record.model_copy(update=changes))


def _find_for_event(subscription_ref: Optional[str], event_name: str, event_at: Optional[datetime]) -> Optional[SubscriptionRecord]:
    record = store.find_by_subscription_ref(subscription_ref)
    if record is None:
        logger.warning(
            f"[billing] {event_name} for unknown subscription, ignoring",
            extra={"subscription_id": subscription_ref},
        )
        return None
    if _is_stale(record, event_at):
        logger.info(
            f"[billing] stale {event_name} skipped",
            extra={"subscription_id": subscription_ref, "user_id": record.user_id},
        )
        return None
    return record


def subscription_created(
    subscription_ref: str,
    user_id: str,
    plan_type: Optional[str],
    provider: BillingProvider,
    *,
    customer_id: Optional[str] = None,
    event_at: Optional[datetime] = None,
) -> Optional[SubscriptionRecord]:
    """
    Attach a newly purchased subscription to the user's record.

    Status, period end and price are fetched from Stripe rather than trusted
    from the checkout session. The plan comes from the checkout metadata when
    it names a paid plan, otherwise from the subscription's price.
    """
    current = provider.retrieve_subscription(subscription_ref)

    plan = plan_type if plan_type in PAID_PLANS else plan_for_price(current.price_id)
    if plan is None:
        logger.warning(
            "[billing] checkout completed with unknown plan, ignoring",
            extra={"user_id": user_id, "subscription_id": subscription_ref, "price_id": current.price_id},
        )
        return None

    record = store.get_or_create(user_id)
    if _is_stale(record, event_at):
        logger.info("[billing] stale checkout completion skipped", extra={"user_id": user_id})
        return None

    updated = _apply(
        record,
        event_at,
        plan_type=plan,
        stripe_subscription_id=subscription_ref,
        stripe_customer_id=customer_id or current.customer_id or record.stripe_customer_id,
        status=current.status or "active",
        current_period_end=current.current_period_end,
    )
    logger.info(
        "[billing] subscription created",
        extra={"user_id": user_id, "subscription_id": subscription_ref, "plan_type": plan, "status": updated.status},
    )
    return updated


def subscription_updated(
    subscription_ref: str,
    status: Optional[str],
    current_period_end: Optional[datetime],
    price_id: Optional[str],
    *,
    event_at: Optional[datetime] = None,
) -> Optional[SubscriptionRecord]:
    """Mirror Stripe's status, period end and plan onto the matching record."""
    record = _find_for_event(subscription_ref, "subscription update", event_at)
    if record is None:
        return None

    plan = plan_for_price(price_id) or record.plan_type
    updated = _apply(
        record,
        event_at,
        plan_type=plan,
        status=normalize_status(status) or record.status,
        current_period_end=current_period_end or record.current_period_end,
    )
    logger.info(
        "[billing] subscription updated",
        extra={"user_id": record.user_id, "subscription_id": subscription_ref, "plan_type": plan, "status": updated.status},
    )
    return updated


def subscription_canceled(
    subscription_ref: str,
    status: Optional[str] = "canceled",
    *,
    event_at: Optional[datetime] = None,
) -> Optional[SubscriptionRecord]:
    """Drop the user back to the free plan with Stripe's terminal status."""
    record = _find_for_event(subscription_ref, "subscription cancel", event_at)
    if record is None:
        return None

    updated = _apply(
        record,
        event_at,
        plan_type="free",
        status=normalize_status(status) or "canceled",
    )
    logger.info(
        "[billing] subscription canceled",
        extra={"user_id": record.user_id, "subscription_id": subscription_ref},
    )
    return updated


def invoice_paid(subscription_ref: str, *, event_at: Optional[datetime] = None) -> Optional[SubscriptionRecord]:
    record = _find_for_event(subscription_ref, "invoice payment", event_at)
    if record is None:
        return None
    return _apply(record, event_at, status="active")


def invoice_failed(subscription_ref: str, *, event_at: Optional[datetime] = None) -> Optional[SubscriptionRecord]:
    record = _find_for_event(subscription_ref, "invoice failure", event_at)
    if record is None:
        return None
    logger.warning(
        "[billing] invoice payment failed",
        extra={"user_id": record.user_id, "subscription_id": subscription_ref},
    )
    return _apply(record, event_at, status="past_due")
