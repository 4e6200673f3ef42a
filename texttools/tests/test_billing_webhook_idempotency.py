"""
Test billing webhook idempotency.

Verifies duplicate webhook events are not reprocessed and failures are
recorded on the event ledger.
"""
import pytest
from datetime import datetime, timezone
from sqlalchemy import select, func

from texttools.core.database import get_db_session, billing_events
from texttools.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
    ProviderSubscription,
)
from texttools.features.billing.service import process_webhook_event
from texttools.features.subscriptions import store


HEADERS = {"stripe-signature": "sig123"}
PERIOD_END = datetime(2026, 11, 19, tzinfo=timezone.utc)


def _ledger_rows(event_id: str):
    with get_db_session() as session:
        return session.execute(
            select(billing_events).where(billing_events.c.stripe_event_id == event_id)
        ).fetchall()


def _checkout_event(event_id: str = "evt_checkout") -> BillingWebhookResult:
    return BillingWebhookResult(
        event_id=event_id,
        event_type="checkout.session.completed",
        mode="subscription",
        user_id="user_alice",
        subscription_id="sub_alice",
        customer_id="cus_alice",
        plan_type="monthly",
    )


@pytest.fixture
def stripe_subscription(mock_provider):
    mock_provider.retrieve_subscription.return_value = ProviderSubscription(
        subscription_id="sub_alice",
        status="active",
        current_period_end=PERIOD_END,
        price_id="price_monthly",
        customer_id="cus_alice",
    )
    return mock_provider


def test_webhook_idempotency_skips_duplicate_events(stripe_subscription):
    stripe_subscription.handle_webhook.return_value = _checkout_event()
    body = b'{"id": "evt_checkout", "type": "checkout.session.completed"}'

    result1 = process_webhook_event(HEADERS, body)
    assert result1.event_id == "evt_checkout"

    rows = _ledger_rows("evt_checkout")
    assert len(rows) == 1
    assert rows[0].processed is True
    assert rows[0].error is None

    result2 = process_webhook_event(HEADERS, body)
    assert result2.event_id == "evt_checkout"

    assert len(_ledger_rows("evt_checkout")) == 1
    # Subscription was only fetched for the first delivery
    assert stripe_subscription.retrieve_subscription.call_count == 1

    record = store.find("user_alice")
    assert record.plan_type == "monthly"
    assert record.stripe_customer_id == "cus_alice"


def test_webhook_records_payload_hash(stripe_subscription):
    import hashlib

    stripe_subscription.handle_webhook.return_value = _checkout_event("evt_hash")
    body = b'{"id": "evt_hash"}'

    process_webhook_event(HEADERS, body)

    assert _ledger_rows("evt_hash")[0].payload_hash == hashlib.sha256(body).hexdigest()


def test_failed_event_is_recorded_then_retried(stripe_subscription):
    stripe_subscription.handle_webhook.return_value = _checkout_event("evt_retry")
    stripe_subscription.retrieve_subscription.side_effect = BillingProviderError("stripe down")

    with pytest.raises(BillingProviderError):
        process_webhook_event(HEADERS, b"{}")

    row = _ledger_rows("evt_retry")[0]
    assert row.processed is False
    assert "stripe down" in row.error
    assert store.find("user_alice") is None

    stripe_subscription.retrieve_subscription.side_effect = None
    process_webhook_event(HEADERS, b"{}")

    row = _ledger_rows("evt_retry")[0]
    assert row.processed is True
    assert row.error is None
    assert store.find("user_alice").plan_type == "monthly"


def test_unhandled_event_types_are_acknowledged(mock_provider):
    mock_provider.handle_webhook.return_value = BillingWebhookResult(
        event_id="evt_other",
        event_type="customer.created",
    )

    result = process_webhook_event(HEADERS, b"{}")

    assert result.event_type == "customer.created"
    assert _ledger_rows("evt_other")[0].processed is True


def test_non_subscription_checkout_is_ignored(mock_provider):
    mock_provider.handle_webhook.return_value = BillingWebhookResult(
        event_id="evt_payment",
        event_type="checkout.session.completed",
        mode="payment",
        user_id="user_alice",
    )

    process_webhook_event(HEADERS, b"{}")

    mock_provider.retrieve_subscription.assert_not_called()
    assert store.find("user_alice") is None


def test_subscription_lifecycle_through_webhooks(stripe_subscription):
    events = [
        _checkout_event("evt_1"),
        BillingWebhookResult(
            event_id="evt_2",
            event_type="invoice.payment_failed",
            subscription_id="sub_alice",
        ),
        BillingWebhookResult(
            event_id="evt_3",
            event_type="customer.subscription.updated",
            subscription_id="sub_alice",
            status="active",
            price_id="price_yearly",
        ),
        BillingWebhookResult(
            event_id="evt_4",
            event_type="customer.subscription.deleted",
            subscription_id="sub_alice",
            status="canceled",
        ),
    ]
    seen = []
    for event in events:
        stripe_subscription.handle_webhook.return_value = event
        process_webhook_event(HEADERS, event.event_id.encode())
        record = store.find("user_alice")
        seen.append((record.plan_type, record.status))

    assert seen == [
        ("monthly", "active"),
        ("monthly", "past_due"),
        ("yearly", "active"),
        ("free", "canceled"),
    ]


def test_signature_failure_writes_nothing(mock_provider):
    mock_provider.handle_webhook.side_effect = BillingWebhookError("Invalid signature")

    with pytest.raises(BillingWebhookError):
        process_webhook_event(HEADERS, b"{}")

    with get_db_session() as session:
        assert session.execute(select(func.count()).select_from(billing_events)).scalar() == 0


def test_billing_disabled_rejects_webhooks():
    with pytest.raises(BillingWebhookError):
        process_webhook_event(HEADERS, b"{}")
