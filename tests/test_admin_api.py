"""API tests for /admin (email queue and webhook operations)"""
import pytest
from unittest.mock import patch

from license_server.exceptions import PayloadError
from license_server.integrations.paddle import PaddleCustomer
from license_server.models import EmailStatus, WebhookEvent, WebhookStatus
from license_server.services import email_queue


def enqueue(db, to="buyer@example.com", **kwargs):
    return email_queue.enqueue_email(db, to=to, subject="Subject", text="body", html="<p>body</p>", **kwargs)


def failed_email(db, make_transport):
    item = enqueue(db, max_attempts=1)
    email_queue.send_queued_email(db, item.id, make_transport(fail=True))
    return item.id


@pytest.mark.parametrize(
    "method, path",
    [
        ("post", "/admin/email-queue/process"),
        ("get", "/admin/email-queue/failed"),
        ("post", "/admin/email-queue/1/retry"),
        ("get", "/admin/email-queue/stats"),
        ("get", "/admin/webhooks/failed"),
        ("post", "/admin/webhooks/1/retry"),
        ("get", "/admin/webhooks/stats"),
    ],
)
def test_admin_token_required(client, method, path):
    resp = getattr(client, method)(path)

    assert resp.status_code == 401


class TestEmailQueue:
    def test_process_sends_due_emails(self, client, admin_headers, db, transport):
        enqueue(db, to="a@example.com")
        enqueue(db, to="b@example.com")

        resp = client.post("/admin/email-queue/process", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json() == {"processed": 2, "succeeded": 2, "failed": 0}
        assert len(transport.sent) == 2

    def test_process_honours_limit(self, client, admin_headers, db, transport):
        for n in range(3):
            enqueue(db, to=f"user{n}@example.com")

        resp = client.post("/admin/email-queue/process", json={"limit": 1}, headers=admin_headers)

        assert resp.json()["processed"] == 1

    def test_process_limit_bounds(self, client, admin_headers):
        resp = client.post("/admin/email-queue/process", json={"limit": 500}, headers=admin_headers)

        assert resp.status_code == 422

    def test_failed_list(self, client, admin_headers, db, make_transport):
        email_id = failed_email(db, make_transport)
        enqueue(db, to="other@example.com")

        resp = client.get("/admin/email-queue/failed", headers=admin_headers)

        body = resp.json()
        assert [item["id"] for item in body] == [email_id]
        assert body[0]["status"] == "FAILED"
        assert body[0]["last_error"].startswith("Max attempts (1) reached")

    def test_retry_failed_email(self, client, admin_headers, db, make_transport, transport):
        email_id = failed_email(db, make_transport)

        resp = client.post(f"/admin/email-queue/{email_id}/retry", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["status"] == "SENT"
        assert transport.sent[0]["to"] == "buyer@example.com"

    def test_retry_rejects_non_failed(self, client, admin_headers, db):
        item = enqueue(db)

        resp = client.post(f"/admin/email-queue/{item.id}/retry", headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot retry email with status: PENDING"

    def test_retry_missing(self, client, admin_headers):
        resp = client.post("/admin/email-queue/999/retry", headers=admin_headers)

        assert resp.status_code == 404

    def test_stats(self, client, admin_headers, db, make_transport):
        failed_email(db, make_transport)
        enqueue(db)

        resp = client.get("/admin/email-queue/stats", headers=admin_headers)

        assert resp.json() == {
            "pending": 1,
            "sending": 0,
            "sent": 0,
            "retrying": 0,
            "failed": 1,
            "total": 2,
        }


TRANSACTION = {
    "event_type": "transaction.completed",
    "data": {
        "id": "txn_01",
        "status": "completed",
        "customer_id": "ctm_01",
        "items": [{"price": {"billing_cycle": None, "product": {"name": "AppGrid Lifetime"}}}],
    },
}

CUSTOMER = PaddleCustomer(email="buyer@example.com", name="Buyer", marketing_consent=False)


@pytest.fixture
def failed_webhook(post_paddle, db):
    """A transaction.completed event that failed permanently"""
    with patch(
        "license_server.integrations.paddle.fetch_customer",
        side_effect=PayloadError("Customer email not found"),
    ), patch("license_server.services.purchases.send_operator_alert"):
        resp = post_paddle(TRANSACTION)
    assert resp.status_code == 400
    return db.query(WebhookEvent).one()


class TestWebhooks:
    def test_failed_list(self, client, admin_headers, failed_webhook):
        resp = client.get("/admin/webhooks/failed", headers=admin_headers)

        body = resp.json()
        assert [e["id"] for e in body] == [failed_webhook.id]
        assert body[0]["event_id"] == "txn_01"
        assert body[0]["last_error"] == "Customer email not found"

    def test_failed_list_by_source(self, client, admin_headers, failed_webhook):
        resp = client.get("/admin/webhooks/failed", params={"source": "revenuecat"}, headers=admin_headers)

        assert resp.json() == []

    def test_retry_replays_stored_payload(self, client, admin_headers, failed_webhook, db):
        with patch("license_server.integrations.paddle.fetch_customer", return_value=CUSTOMER):
            resp = client.post(f"/admin/webhooks/{failed_webhook.id}/retry", headers=admin_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["replayed"] is True
        assert body["webhook"]["status"] == "COMPLETED"
        assert body["webhook"]["attempts"] == 2
        assert len(body["result"]["license_key"]) == 19

    def test_retry_that_fails_again(self, client, admin_headers, failed_webhook):
        with patch(
            "license_server.integrations.paddle.fetch_customer",
            side_effect=PayloadError("Customer email not found"),
        ), patch("license_server.services.purchases.send_operator_alert"):
            resp = client.post(f"/admin/webhooks/{failed_webhook.id}/retry", headers=admin_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Customer email not found"
        assert body["webhook"]["status"] == "FAILED"

    def test_retry_with_unexpected_error(self, client, admin_headers, failed_webhook):
        with patch("license_server.integrations.paddle.fetch_customer", return_value=CUSTOMER), patch(
            "license_server.services.purchases.determine_license_config",
            side_effect=RuntimeError("boom"),
        ):
            resp = client.post(f"/admin/webhooks/{failed_webhook.id}/retry", headers=admin_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "boom"
        assert body["webhook"]["status"] == "RETRYING"

    def test_retry_rejects_non_failed(self, client, admin_headers, post_paddle, db):
        with patch("license_server.integrations.paddle.fetch_customer", return_value=CUSTOMER):
            post_paddle(TRANSACTION)
        event = db.query(WebhookEvent).one()
        assert event.status == WebhookStatus.COMPLETED

        resp = client.post(f"/admin/webhooks/{event.id}/retry", headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot retry webhook with status: COMPLETED"

    def test_retry_missing(self, client, admin_headers):
        resp = client.post("/admin/webhooks/999/retry", headers=admin_headers)

        assert resp.status_code == 404

    def test_stats(self, client, admin_headers, failed_webhook):
        resp = client.get("/admin/webhooks/stats", headers=admin_headers)

        body = resp.json()
        assert body["failed"] == 1
        assert body["total"] == 1
        assert client.get(
            "/admin/webhooks/stats", params={"source": "revenuecat"}, headers=admin_headers
        ).json()["total"] == 0
