"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Handles webhook signature verification and event parsing.
"""
import os
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import stripe

from texttools.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
    CheckoutSession,
    ProviderSubscription,
    normalize_status,
)


def _as_dict(obj: Any) -> Dict[str, Any]:
    """Plain dict view of a Stripe object (or a dict already)."""
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def _timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _price_id(subscription: Dict[str, Any]) -> Optional[str]:
    price = _first_item(subscription).get("price") or {}
    if isinstance(price, str):
        return price
    return price.get("id")


def _period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions report the period on the subscription item.
    return _timestamp(
        subscription.get("current_period_end")
        or _first_item(subscription).get("current_period_end")
    )


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    sub = invoice.get("subscription")
    if sub:
        return sub if isinstance(sub, str) else sub.get("id")
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return details.get("subscription")


def _to_provider_subscription(data: Dict[str, Any]) -> ProviderSubscription:
    return ProviderSubscription(
        subscription_id=data.get("id"),
        status=normalize_status(data.get("status")),
        current_period_end=_period_end(data),
        price_id=_price_id(data),
        customer_id=data.get("customer"),
        cancel_at_period_end=bool(data.get("cancel_at_period_end", False)),
    )


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY env var)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET env var)
        """
        self.secret_key = secret_key or os.getenv("STRIPE_SECRET_KEY")
        self.webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET")

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
        customer_id: Optional[str] = None,
    ) -> CheckoutSession:
        """Create Stripe checkout session."""
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
        }
        if customer_id:
            params["customer"] = customer_id
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
        return CheckoutSession(session_id=session.id, url=session.url)

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}")
        return _to_provider_subscription(_as_dict(subscription))

    def cancel_at_period_end(self, subscription_id: str) -> ProviderSubscription:
        try:
            subscription = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription cancellation failed: {e}")
        return _to_provider_subscription(_as_dict(subscription))

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            event = stripe.Webhook.construct_event(
                body, sig_header, self.webhook_secret
            )
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        return self._parse_event(_as_dict(event))

    def _parse_event(self, event: Dict[str, Any]) -> BillingWebhookResult:
        """Parse Stripe event into normalized BillingWebhookResult."""
        event_type = event["type"]
        data = (event.get("data") or {}).get("object") or {}
        metadata = data.get("metadata") or {}

        result = BillingWebhookResult(
            event_id=event["id"],
            event_type=event_type,
            created_at=_timestamp(event.get("created")),
            customer_id=data.get("customer"),
            metadata=metadata,
        )

        if event_type == "checkout.session.completed":
            result.mode = data.get("mode")
            result.subscription_id = data.get("subscription")
            result.user_id = metadata.get("userId") or data.get("client_reference_id")
            result.plan_type = metadata.get("planType")

        elif event_type.startswith("customer.subscription."):
            result.subscription_id = data.get("id")
            result.status = normalize_status(data.get("status"))
            result.current_period_end = _period_end(data)
            result.price_id = _price_id(data)
            result.user_id = metadata.get("userId")

        elif event_type.startswith("invoice."):
            result.subscription_id = _invoice_subscription_id(data)

        return result
