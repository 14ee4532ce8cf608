"""End-to-end tests for POST /paddle/webhook"""
import time
import pytest
from datetime import timedelta
from unittest.mock import patch

from license_server.config import settings
from license_server.exceptions import UpstreamAPIError
from license_server.integrations.paddle import PaddleCustomer
from license_server.models import (
    EmailQueueItem,
    License,
    LicenseStatus,
    PaddlePurchase,
    User,
    WebhookEvent,
    WebhookStatus,
)
from license_server.models.base import utcnow

CUSTOMER = PaddleCustomer(email="Buyer@Example.com", name="Buyer", marketing_consent=True)

LIFETIME_ITEMS = [{"price": {"billing_cycle": None, "product": {"name": "AppGrid Lifetime"}}}]
YEARLY_ITEMS = [
    {"price": {"billing_cycle": {"interval": "year", "frequency": 1}, "product": {"name": "AppGrid Pro"}}}
]


def transaction_payload(
    transaction_id="txn_01", status="completed", customer_id="ctm_01", items=None, event_id=None
):
    return {
        "event_id": event_id or f"evt_{transaction_id}",
        "event_type": "transaction.completed",
        "occurred_at": "2026-10-01T10:00:00Z",
        "data": {
            "id": transaction_id,
            "status": status,
            "customer_id": customer_id,
            "items": LIFETIME_ITEMS if items is None else items,
        },
    }


def refund_payload(
    transaction_id="txn_01", adjustment_id="adj_01", status="approved", action="refund", event_id=None
):
    return {
        "event_id": event_id or f"evt_{adjustment_id}_{status}",
        "event_type": "adjustment.updated",
        "data": {
            "id": adjustment_id,
            "transaction_id": transaction_id,
            "status": status,
            "action": action,
        },
    }


@pytest.fixture
def paddle_customer():
    with patch("license_server.integrations.paddle.fetch_customer", return_value=CUSTOMER) as fetch:
        yield fetch


class TestSignature:
    def test_missing_signature(self, post_paddle):
        resp = post_paddle(transaction_payload(), signature="")

        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Missing signature", "retryable": False}

    def test_malformed_signature(self, post_paddle):
        resp = post_paddle(transaction_payload(), signature="not-a-signature")

        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid signature format"

    def test_wrong_secret(self, post_paddle, sign):
        payload = transaction_payload()

        resp = post_paddle(payload, signature=sign(payload, secret="wrong"))

        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid signature"

    def test_stale_timestamp(self, post_paddle, sign):
        payload = transaction_payload()

        resp = post_paddle(payload, signature=sign(payload, timestamp=int(time.time()) - 3600))

        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid timestamp"

    def test_rejected_before_any_processing(self, post_paddle, paddle_customer, db):
        post_paddle(transaction_payload(), signature="ts=1;h1=00")

        paddle_customer.assert_not_called()
        assert db.query(WebhookEvent).count() == 0

    def test_secret_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "paddle_webhook_secret", "")

        resp = client.post("/paddle/webhook", json=transaction_payload())

        assert resp.status_code == 500
        assert resp.json()["error"] == "Paddle webhook not configured"
        assert resp.json()["retryable"] is False


class TestPayload:
    def test_invalid_json(self, client):
        resp = client.post(
            "/paddle/webhook",
            content=b"{not json",
            headers={"Content-Type": "application/json", "Paddle-Signature": "ts=1;h1=00"},
        )

        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid JSON body"

    def test_missing_data(self, post_paddle):
        resp = post_paddle({"event_type": "transaction.completed"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing event_type or data in payload"

    def test_unknown_event_is_acknowledged_without_a_record(self, post_paddle, db):
        resp = post_paddle({"event_type": "subscription.created", "data": {"id": "sub_01"}})

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Event acknowledged"}
        assert db.query(WebhookEvent).count() == 0


class TestTransactionCompleted:
    def test_issues_lifetime_license(self, post_paddle, paddle_customer, db):
        resp = post_paddle(transaction_payload())

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["is_new_event"] is True
        assert body["already_processed"] is False
        assert body["email"] == "buyer@example.com"
        paddle_customer.assert_called_once_with("ctm_01")

        license = db.query(License).filter(License.license_key == body["license_key"]).one()
        assert license.status == LicenseStatus.ACTIVE
        assert license.expires_at is None
        assert license.max_activations == settings.default_max_activations
        assert license.license_metadata["transaction_id"] == "txn_01"
        assert license.notes == "Paddle purchase - Transaction: txn_01"

        user = db.query(User).one()
        assert user.email == "buyer@example.com"
        assert user.marketing_consent is True

        purchase = db.query(PaddlePurchase).one()
        assert purchase.license_id == license.id
        assert purchase.email_sent is False

        event = db.query(WebhookEvent).one()
        assert event.event_id == "evt_txn_01"
        assert event.status == WebhookStatus.COMPLETED

    def test_queues_license_email(self, post_paddle, paddle_customer, db):
        body = post_paddle(transaction_payload()).json()

        email = db.query(EmailQueueItem).one()
        assert email.to_address == "buyer@example.com"
        assert email.subject == "Your AppGrid License Key"
        assert body["license_key"] in email.text_content
        assert email.email_metadata["type"] == "paddle-license"
        assert email.email_metadata["purchase_id"] == db.query(PaddlePurchase).one().id

    def test_yearly_subscription_expires(self, post_paddle, paddle_customer, db):
        post_paddle(transaction_payload(items=YEARLY_ITEMS))

        license = db.query(License).one()
        assert utcnow() + timedelta(days=364) < license.expires_at < utcnow() + timedelta(days=367)

    def test_duplicate_delivery_replays_result(self, post_paddle, paddle_customer, db):
        first = post_paddle(transaction_payload()).json()

        second = post_paddle(transaction_payload())

        assert second.status_code == 200
        assert second.json()["license_key"] == first["license_key"]
        assert second.json()["is_new_event"] is False
        assert paddle_customer.call_count == 1
        assert db.query(License).count() == 1
        assert db.query(EmailQueueItem).count() == 1

    def test_same_transaction_under_new_event_id(self, post_paddle, paddle_customer, db):
        first = post_paddle(transaction_payload(event_id="evt_a")).json()

        second = post_paddle(transaction_payload(event_id="evt_b")).json()

        assert second["is_new_event"] is True
        assert second["already_processed"] is True
        assert second["license_key"] == first["license_key"]
        assert db.query(License).count() == 1
        assert db.query(EmailQueueItem).count() == 1

    def test_existing_user_gets_another_license(self, post_paddle, paddle_customer, db, user):
        post_paddle(transaction_payload("txn_01"))
        post_paddle(transaction_payload("txn_02"))

        assert db.query(User).count() == 1
        assert db.query(License).filter(License.user_id == user.id).count() == 2

    def test_not_completed_is_acknowledged(self, post_paddle, paddle_customer, db):
        resp = post_paddle(transaction_payload(status="billed"))

        assert resp.status_code == 200
        assert resp.json() == {"success": False, "error": "Transaction not completed", "retryable": False}
        paddle_customer.assert_not_called()
        assert db.query(License).count() == 0

    def test_missing_customer_id(self, post_paddle, paddle_customer):
        resp = post_paddle(transaction_payload(customer_id=None))

        assert resp.status_code == 400
        assert resp.json()["error"] == "No customer ID found"

    def test_customer_fetch_failure_is_retryable(self, post_paddle, no_sleep, db):
        with patch(
            "license_server.integrations.paddle.fetch_customer",
            side_effect=UpstreamAPIError("Failed to fetch customer details", upstream_status=503),
        ) as fetch, patch("license_server.services.purchases.send_operator_alert") as alert:
            resp = post_paddle(transaction_payload())

        assert resp.status_code == 500
        assert resp.json()["retryable"] is True
        assert fetch.call_count == 3
        alert.assert_called_once()
        assert db.query(License).count() == 0
        event = db.query(WebhookEvent).one()
        assert event.status == WebhookStatus.RETRYING
        assert event.last_error == "Failed to fetch customer details"

    def test_redelivery_after_failure_succeeds(self, post_paddle, no_sleep, db):
        with patch(
            "license_server.integrations.paddle.fetch_customer",
            side_effect=UpstreamAPIError("down", upstream_status=503),
        ), patch("license_server.services.purchases.send_operator_alert"):
            post_paddle(transaction_payload())

        with patch("license_server.integrations.paddle.fetch_customer", return_value=CUSTOMER):
            resp = post_paddle(transaction_payload())

        assert resp.status_code == 200
        assert resp.json()["is_new_event"] is True
        event = db.query(WebhookEvent).one()
        assert event.status == WebhookStatus.COMPLETED
        assert event.attempts == 2

    def test_unexpected_error_is_retryable_500(self, post_paddle, paddle_customer, db):
        with patch(
            "license_server.services.purchases.determine_license_config",
            side_effect=RuntimeError("boom"),
        ):
            resp = post_paddle(transaction_payload())

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "boom", "retryable": True}
        assert db.query(WebhookEvent).one().status == WebhookStatus.RETRYING


class TestRefund:
    def test_approved_refund_revokes_license(self, post_paddle, paddle_customer, db):
        post_paddle(transaction_payload())

        resp = post_paddle(refund_payload())

        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "License revoked"
        license = db.query(License).one()
        assert body["license_id"] == license.id
        assert license.status == LicenseStatus.REVOKED
        assert license.revoked_at is not None
        assert license.notes.endswith("Revoked due to refund - Adjustment: adj_01, Transaction: txn_01")

    def test_revoked_license_fails_validation(self, client, post_paddle, paddle_customer):
        key = post_paddle(transaction_payload()).json()["license_key"]
        post_paddle(refund_payload())

        resp = client.post("/licenses/validate", json={"license_key": key, "device_fingerprint": "dev-1"})

        assert resp.json()["valid"] is False
        assert resp.json()["message"] == "License has been revoked"

    def test_second_refund_for_same_transaction(self, post_paddle, paddle_customer):
        post_paddle(transaction_payload())
        post_paddle(refund_payload(adjustment_id="adj_01"))

        resp = post_paddle(refund_payload(adjustment_id="adj_02"))

        assert resp.json()["message"] == "License already revoked"

    def test_non_refund_adjustment_is_ignored(self, post_paddle, paddle_customer, db):
        post_paddle(transaction_payload())

        resp = post_paddle(refund_payload(action="credit"))

        assert resp.json()["message"] == "Adjustment acknowledged (not a refund)"
        assert db.query(License).one().status == LicenseStatus.ACTIVE

    def test_pending_refund_is_ignored(self, post_paddle, paddle_customer, db):
        post_paddle(transaction_payload())

        post_paddle(refund_payload(status="pending_approval"))

        assert db.query(License).one().status == LicenseStatus.ACTIVE

    def test_approval_after_pending_update_revokes(self, post_paddle, paddle_customer, db):
        post_paddle(transaction_payload())
        post_paddle(refund_payload(status="pending_approval"))

        resp = post_paddle(refund_payload(status="approved"))

        assert resp.json()["message"] == "License revoked"
        assert resp.json()["is_new_event"] is True
        assert db.query(License).one().status == LicenseStatus.REVOKED
        assert db.query(WebhookEvent).filter(WebhookEvent.event_type == "adjustment.updated").count() == 2

    def test_duplicate_refund_notification_replays_result(self, post_paddle, paddle_customer):
        post_paddle(transaction_payload())
        first = post_paddle(refund_payload(event_id="evt_refund_1")).json()

        second = post_paddle(refund_payload(event_id="evt_refund_1")).json()

        assert second["message"] == first["message"] == "License revoked"
        assert second["is_new_event"] is False

    def test_refund_without_purchase(self, post_paddle):
        resp = post_paddle(refund_payload(transaction_id="txn_unknown"))

        assert resp.status_code == 200
        assert resp.json()["message"] == "No purchase found for refund"
