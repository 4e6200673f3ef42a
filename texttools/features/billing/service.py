"""
Billing service orchestrator.

Coordinates:
- Checkout and cancellation through the billing provider
- Refreshing a paid record from Stripe on read
- Webhook processing (signature check, event ledger, reconciliation)

All Stripe-specific code is in stripe_provider.py.
"""
import os
import hashlib
import logging
from typing import Optional, Dict
from datetime import datetime, timezone
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from texttools.core.config import settings
from texttools.core.database import get_db_session, billing_events
from texttools.core.errors import ValidationError
from texttools.core.logging import log_event
from texttools.features.billing import reconciler
from texttools.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
    CheckoutSession,
)
from texttools.features.billing.stripe_provider import StripeProvider
from texttools.features.plans.service import plan_for_price, price_for_plan
from texttools.features.subscriptions import store
from texttools.models.subscription import PAID_PLANS, SubscriptionRecord


logger = logging.getLogger(__name__)


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(os.getenv("STRIPE_SECRET_KEY") or settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider(
            secret_key=os.getenv("STRIPE_SECRET_KEY") or settings.STRIPE_SECRET_KEY,
            webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or settings.STRIPE_WEBHOOK_SECRET,
        )
    except BillingProviderError:
        return None


def start_checkout(
    user_id: str,
    plan_type: str,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> Optional[CheckoutSession]:
    """
    Start a Stripe checkout session for a paid plan.

    The user's record is created if missing so the completion webhook has a
    record to attach the subscription to.

    Returns:
        CheckoutSession, or None if billing disabled

    Raises:
        ValidationError: If user_id is missing or plan_type has no Stripe price
        BillingProviderError: If checkout creation fails
    """
    if not user_id:
        raise ValidationError("User ID is required")
    if plan_type not in PAID_PLANS:
        raise ValidationError("Invalid plan type")

    provider = get_provider()
    if not provider:
        return None

    price_id = price_for_plan(plan_type)
    if not price_id:
        raise ValidationError(f"No Stripe price configured for plan: {plan_type}")

    record = store.get_or_create(user_id)
    frontend = settings.FRONTEND_URL.rstrip("/")

    session = provider.create_checkout_session(
        price_id=price_id,
        success_url=success_url or f"{frontend}/subscription-success",
        cancel_url=cancel_url or f"{frontend}/pricing",
        metadata={"userId": user_id, "planType": plan_type},
        customer_id=record.stripe_customer_id,
    )
    logger.info(
        "[billing] checkout started",
        extra={"user_id": user_id, "plan_type": plan_type, "session_id": session.session_id},
    )
    return session


def cancel_subscription(user_id: str) -> Optional[SubscriptionRecord]:
    """
    Schedule the user's subscription to end with the current period.

    The record keeps its paid plan until Stripe sends
    customer.subscription.deleted.

    Returns:
        The user's record, or None if billing disabled

    Raises:
        ValidationError: If the user has no Stripe subscription
        BillingProviderError: If Stripe rejects the update
    """
    if not user_id:
        raise ValidationError("User ID is required")

    record = store.find(user_id)
    if record is None or not record.stripe_subscription_id:
        raise ValidationError("No active subscription found")

    provider = get_provider()
    if not provider:
        return None

    provider.cancel_at_period_end(record.stripe_subscription_id)
    logger.info(
        "[billing] cancel at period end requested",
        extra={"user_id": user_id, "subscription_id": record.stripe_subscription_id},
    )
    return record


def refresh_subscription(record: SubscriptionRecord) -> SubscriptionRecord:
    """
    Re-read a paid record's status, period end and plan from Stripe.

    Free records, records without a Stripe subscription and disabled billing
    return the record unchanged.

    Raises:
        BillingProviderError: If the Stripe lookup fails
    """
    if not record.is_paid or not record.stripe_subscription_id:
        return record
    provider = get_provider()
    if not provider:
        return record

    current = provider.retrieve_subscription(record.stripe_subscription_id)
    changes = {
        "status": current.status or record.status,
        "current_period_end": current.current_period_end or record.current_period_end,
        "plan_type": plan_for_price(current.price_id) or record.plan_type,
    }
    if all(getattr(record, key) == value for key, value in changes.items()):
        return record
    return store.save(record.model_copy(update=changes))


def apply_event(result: BillingWebhookResult, provider: BillingProvider) -> Optional[SubscriptionRecord]:
    """Route a verified event to its reconciler handler. Unhandled types are ignored."""
    event_type = result.event_type
    event_at = result.created_at

    if event_type == "checkout.session.completed":
        if result.mode != "subscription" or not result.subscription_id or not result.user_id:
            logger.info("[billing] checkout session ignored", extra={"event_id": result.event_id, "mode": result.mode})
            return None
        return reconciler.subscription_created(
            result.subscription_id,
            result.user_id,
            result.plan_type,
            provider,
            customer_id=result.customer_id,
            event_at=event_at,
        )
    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        return reconciler.subscription_updated(
            result.subscription_id,
            result.status,
            result.current_period_end,
            result.price_id,
            event_at=event_at,
        )
    if event_type == "customer.subscription.deleted":
        return reconciler.subscription_canceled(result.subscription_id, result.status, event_at=event_at)
    if event_type == "invoice.payment_succeeded":
        return reconciler.invoice_paid(result.subscription_id, event_at=event_at)
    if event_type == "invoice.payment_failed":
        return reconciler.invoice_failed(result.subscription_id, event_at=event_at)

    logger.debug("[billing] event type not handled", extra={"event_id": result.event_id, "event_type": event_type})
    return None


def process_webhook_event(headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
    """
    Process billing webhook event (idempotent).

    1. Verify signature
    2. Check the ledger (skip events already processed)
    3. Record the event
    4. Apply state changes
    5. Mark as processed, or store the error on the ledger row

    Returns:
        BillingWebhookResult

    Raises:
        BillingWebhookError: If billing is disabled or the signature is invalid
        BillingProviderError / SQLAlchemyError: If applying the event fails
    """
    provider = get_provider()
    if not provider:
        raise BillingWebhookError("Billing not enabled")

    result = provider.handle_webhook(headers, body)

    payload_hash = hashlib.sha256(body).hexdigest()

    with get_db_session() as session:
        existing = session.execute(
            select(billing_events.c.processed).where(
                billing_events.c.stripe_event_id == result.event_id
            )
        ).fetchone()

    if existing is not None and existing.processed:
        logger.info("[billing] duplicate event skipped", extra={"event_id": result.event_id})
        return result

    if existing is None:
        try:
            with get_db_session() as session:
                session.execute(
                    insert(billing_events).values(
                        stripe_event_id=result.event_id,
                        event_type=result.event_type,
                        payload_hash=payload_hash,
                        processed=False,
                    )
                )
        except IntegrityError:
            # Another delivery of the same event got there first
            logger.info("[billing] concurrent delivery skipped", extra={"event_id": result.event_id})
            return result
    else:
        logger.info("[billing] retrying previously failed event", extra={"event_id": result.event_id})

    try:
        apply_event(result, provider)
    except Exception as e:
        with get_db_session() as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == result.event_id)
                .values(error=str(e))
            )
        raise

    with get_db_session() as session:
        session.execute(
            update(billing_events)
            .where(billing_events.c.stripe_event_id == result.event_id)
            .values(processed=True, processed_at=datetime.now(timezone.utc), error=None)
        )

    log_event(
        "info",
        "[billing] event processed",
        event_type=result.event_type,
        user_id=result.user_id,
        extra={"event_id": result.event_id, "subscription_id": result.subscription_id},
    )
    return result
