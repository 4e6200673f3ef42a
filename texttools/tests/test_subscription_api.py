"""
Test the subscription and usage HTTP surface.
"""
from datetime import datetime, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from texttools.core.config import settings
from texttools.features.billing.provider import BillingProviderError, ProviderSubscription
from texttools.features.subscriptions import store
from texttools.main import app
from texttools.models.subscription import FeatureKind

client = TestClient(app)


def _db_down(*args, **kwargs):
    raise OperationalError("SELECT", {}, Exception("db down"))


class TestGetSubscription:

    def test_unknown_user_gets_synthetic_free_record(self):
        resp = client.get("/api/subscription/u-new")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["userId"] == "u-new"
        assert body["data"]["planType"] == "free"
        assert body["data"]["status"] == "active"
        assert body["data"]["usageThisMonth"] == {"detections": 0, "humanizations": 0}
        assert store.find("u-new") is None

    def test_existing_record_uses_camel_case(self):
        store.create_default("u1")
        store.increment_counter("u1", FeatureKind.DETECTION)

        data = client.get("/api/subscription/u1").json()["data"]

        assert data["usageThisMonth"]["detections"] == 1
        assert "stripeSubscriptionId" in data
        assert "currentPeriodEnd" in data
        assert "lastEventAt" not in data

    def test_paid_record_is_refreshed_from_stripe(self, mock_provider):
        record = store.create_default("pro")
        store.save(record.model_copy(update={"plan_type": "monthly", "stripe_subscription_id": "sub_pro"}))
        mock_provider.retrieve_subscription.return_value = ProviderSubscription(
            subscription_id="sub_pro",
            status="past_due",
            current_period_end=datetime(2026, 11, 1, tzinfo=timezone.utc),
            price_id="price_yearly",
        )

        data = client.get("/api/subscription/pro").json()["data"]

        assert data["status"] == "past_due"
        assert data["planType"] == "yearly"
        assert store.find("pro").status == "past_due"

    def test_refresh_failure_serves_stored_record(self, mock_provider):
        record = store.create_default("pro")
        store.save(record.model_copy(update={"plan_type": "monthly", "stripe_subscription_id": "sub_pro"}))
        mock_provider.retrieve_subscription.side_effect = BillingProviderError("stripe down")

        resp = client.get("/api/subscription/pro")

        assert resp.status_code == 200
        assert resp.json()["data"]["planType"] == "monthly"

    def test_refresh_can_be_disabled(self, mock_provider, monkeypatch):
        monkeypatch.setattr(settings, "SUBSCRIPTION_REFRESH_ON_READ", False)
        record = store.create_default("pro")
        store.save(record.model_copy(update={"plan_type": "monthly", "stripe_subscription_id": "sub_pro"}))

        client.get("/api/subscription/pro")

        mock_provider.retrieve_subscription.assert_not_called()

    def test_store_failure_is_500(self):
        with patch("texttools.api.subscription.store.find", side_effect=_db_down):
            resp = client.get("/api/subscription/u1")
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "upstream_failure"


class TestUpdateUsage:

    def test_fresh_user_detection_counts_one(self):
        resp = client.post("/api/update-usage", json={"userId": "u1", "type": "detection"})

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": {"detections": 1, "humanizations": 0}}

    def test_humanization_counts(self):
        client.post("/api/update-usage", json={"userId": "u1", "type": "humanization"})
        resp = client.post("/api/update-usage", json={"userId": "u1", "type": "humanization"})

        assert resp.json()["data"]["humanizations"] == 2

    def test_bogus_type_is_400(self):
        resp = client.post("/api/update-usage", json={"userId": "u1", "type": "bogus"})

        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "validation_error"
        assert store.find("u1") is None

    def test_non_string_type_is_400(self):
        resp = client.post("/api/update-usage", json={"userId": "u1", "type": 5})

        assert resp.status_code == 400
        body = resp.json()
        assert body["error"]["code"] == "validation_error"
        assert body["error"]["request_id"] == resp.headers["x-request-id"]
        assert store.find("u1") is None

    def test_missing_body_is_400(self):
        resp = client.post("/api/update-usage")

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_malformed_json_is_400(self):
        resp = client.post(
            "/api/update-usage",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_missing_user_is_400(self):
        resp = client.post("/api/update-usage", json={"type": "detection"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing required fields"

    def test_store_failure_is_500(self):
        with patch("texttools.features.usage.service.store.increment_counter", side_effect=_db_down):
            resp = client.post("/api/update-usage", json={"userId": "u1", "type": "detection"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to update usage"


class TestResetUsage:

    def test_wrong_key_is_401_and_changes_nothing(self, internal_key):
        store.create_default("u1")
        store.increment_counter("u1", FeatureKind.DETECTION)

        resp = client.post("/api/reset-usage", json={"apiKey": "nope"})

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert store.find("u1").usage_this_month.detections == 1

    def test_unset_key_rejects_everyone(self):
        resp = client.post("/api/reset-usage", json={"apiKey": ""})
        assert resp.status_code == 401

    def test_correct_key_resets_all(self, internal_key):
        for user_id in ("a", "b"):
            store.create_default(user_id)
            store.increment_counter(user_id, FeatureKind.HUMANIZATION)

        resp = client.post("/api/reset-usage", json={"apiKey": internal_key})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Usage counts reset for all users"
        assert body["count"] == 2
        assert store.find("a").usage_this_month.humanizations == 0
        assert store.find("b").usage_this_month.humanizations == 0

    def test_key_from_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "INTERNAL_API_KEY", "from-settings")
        resp = client.post("/api/reset-usage", json={"apiKey": "from-settings"})
        assert resp.status_code == 200
