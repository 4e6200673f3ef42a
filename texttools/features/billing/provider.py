"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.) and the
normalized shapes the rest of the service consumes, so subscription logic
never touches raw provider payloads.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime


# Provider states that have no direct counterpart in the record's status set
STATUS_ALIASES = {
    "unpaid": "past_due",
    "paused": "past_due",
    "incomplete_expired": "canceled",
}
KNOWN_STATUSES = {"active", "canceled", "past_due", "trialing", "incomplete"}


def normalize_status(status: Optional[str]) -> Optional[str]:
    """Map a provider subscription status onto the record's status set."""
    if not status:
        return None
    status = STATUS_ALIASES.get(status, status)
    if status not in KNOWN_STATUSES:
        return "incomplete"
    return status


@dataclass
class ProviderSubscription:
    """Current state of a subscription as reported by the provider."""
    subscription_id: str
    status: Optional[str]
    current_period_end: Optional[datetime]
    price_id: Optional[str]
    customer_id: Optional[str] = None
    cancel_at_period_end: bool = False


@dataclass
class CheckoutSession:
    session_id: str
    url: Optional[str]


@dataclass
class BillingWebhookResult:
    """Verified, normalized billing webhook event."""
    event_id: str
    event_type: str
    created_at: Optional[datetime] = None
    user_id: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    plan_type: Optional[str] = None
    price_id: Optional[str] = None
    status: Optional[str] = None
    current_period_end: Optional[datetime] = None
    mode: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Checkout session creation
    - Subscription lookup and cancellation
    - Webhook signature verification and parsing
    """

    def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
        customer_id: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a checkout session for a subscription.

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        """
        Fetch the provider's current view of a subscription.

        Raises:
            BillingProviderError: If the lookup fails
        """
        ...

    def cancel_at_period_end(self, subscription_id: str) -> ProviderSubscription:
        """
        Schedule a subscription to end with its current billing period.

        Raises:
            BillingProviderError: If the update fails
        """
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """
        Verify webhook signature and parse event.

        Args:
            headers: HTTP headers (must include signature header)
            body: Raw webhook body (for signature verification)

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook verification errors."""
    pass
