"""
Billing API routes.

- POST /api/create-checkout-session: Start a Stripe checkout for a paid plan
- POST /api/cancel-subscription: Cancel at the end of the current period
- POST /api/webhook: Handle Stripe webhooks
"""
import logging
from typing import Optional

from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from texttools.core.errors import ServiceUnavailableError, UpstreamError, ValidationError
from texttools.features.billing.provider import BillingProviderError, BillingWebhookError
from texttools.features.billing.service import (
    billing_enabled,
    cancel_subscription,
    process_webhook_event,
    start_checkout,
)
from texttools.models.subscription import CamelModel


logger = logging.getLogger("texttools")

router = APIRouter(tags=["billing"])


class CheckoutRequest(CamelModel):
    user_id: Optional[str] = None
    plan_type: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CancelRequest(CamelModel):
    user_id: Optional[str] = None


def _billing_disabled() -> ServiceUnavailableError:
    return ServiceUnavailableError(
        "Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.",
        code="billing_disabled",
    )


@router.post("/create-checkout-session")
def create_checkout_session(request: CheckoutRequest):
    """
    Create a Stripe checkout session.

    Returns:
        {"success": true, "sessionId": "cs_...", "url": "https://checkout.stripe.com/..."}

    Errors:
        400: Missing userId or planType not monthly/yearly
        503: Billing disabled
        500: Stripe API error
    """
    try:
        session = start_checkout(
            user_id=request.user_id,
            plan_type=request.plan_type,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )
    except BillingProviderError as e:
        logger.error("[billing] checkout failed", extra={"user_id": request.user_id, "error": str(e)})
        raise UpstreamError("Failed to create checkout session")
    if session is None:
        raise _billing_disabled()
    return {"success": True, "sessionId": session.session_id, "url": session.url}


@router.post("/cancel-subscription")
def cancel(request: CancelRequest):
    """
    Cancel the user's subscription at the end of the billing period.

    Errors:
        400: Missing userId or no Stripe subscription on record
        503: Billing disabled
        500: Stripe API error
    """
    try:
        record = cancel_subscription(request.user_id)
    except BillingProviderError as e:
        logger.error("[billing] cancel failed", extra={"user_id": request.user_id, "error": str(e)})
        raise UpstreamError("Failed to cancel subscription")
    if record is None:
        raise _billing_disabled()
    return {
        "success": True,
        "message": "Subscription will be canceled at the end of the current billing period",
    }


@router.post("/webhook")
async def handle_webhook(request: Request):
    """
    Handle Stripe webhook events.

    Verifies signature, processes event idempotently, and updates subscription state.
    Failures after verification are logged and recorded on the event ledger,
    and the event is still acknowledged.

    Returns:
        {"received": true}

    Errors:
        400: Invalid signature or payload
        503: Billing disabled
    """
    if not billing_enabled():
        raise _billing_disabled()

    # Read raw body (required for signature verification)
    body = await request.body()
    headers = dict(request.headers)

    try:
        result = await run_in_threadpool(process_webhook_event, headers, body)
    except BillingWebhookError as e:
        raise ValidationError(f"Webhook Error: {e}", code="invalid_webhook")
    except (BillingProviderError, SQLAlchemyError) as e:
        logger.error("[billing] webhook processing failed", exc_info=True, extra={"error": str(e)})
        return {"received": True}

    return {"received": True, "event_id": result.event_id}
