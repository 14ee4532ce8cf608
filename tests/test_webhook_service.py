"""Tests for idempotent webhook processing (license_server/services/webhooks.py)"""
import pytest
from unittest.mock import Mock

from license_server.exceptions import ConcurrentProcessingError, PayloadError, UpstreamAPIError
from license_server.models import WebhookEvent, WebhookStatus
from license_server.services.webhooks import (
    list_failed_webhooks,
    process_webhook,
    reset_webhook_for_retry,
    webhook_stats,
)

PAYLOAD = {"event_type": "transaction.completed", "data": {"id": "txn_1"}}


def run(db, work, event_id="evt_1", source="paddle"):
    return process_webhook(db, source, "transaction.completed", event_id, PAYLOAD, work)


class TestProcessWebhook:
    def test_first_delivery_runs_work_and_completes(self, db):
        work = Mock(return_value={"license_key": "AAAA-BBBB-CCCC-DDDD"})

        outcome = run(db, work)

        work.assert_called_once_with(PAYLOAD)
        assert outcome.is_new_event is True
        assert outcome.result == {"license_key": "AAAA-BBBB-CCCC-DDDD"}
        event = outcome.webhook_event
        assert event.status == WebhookStatus.COMPLETED
        assert event.attempts == 1
        assert event.completed_at is not None
        assert event.result == {"license_key": "AAAA-BBBB-CCCC-DDDD"}

    def test_duplicate_delivery_replays_stored_result(self, db):
        run(db, Mock(return_value={"license_key": "AAAA-BBBB-CCCC-DDDD"}))
        second_work = Mock(return_value={"license_key": "OTHER"})

        outcome = run(db, second_work)

        second_work.assert_not_called()
        assert outcome.is_new_event is False
        assert outcome.result == {"license_key": "AAAA-BBBB-CCCC-DDDD"}
        assert db.query(WebhookEvent).count() == 1

    def test_same_event_id_from_another_source_is_independent(self, db):
        run(db, Mock(return_value={"n": 1}))

        outcome = run(db, Mock(return_value={"n": 2}), source="revenuecat")

        assert outcome.is_new_event is True
        assert db.query(WebhookEvent).count() == 2

    def test_in_flight_event_is_rejected(self, db):
        db.add(WebhookEvent(
            source="paddle", event_id="evt_1", event_type="transaction.completed",
            payload=PAYLOAD, status=WebhookStatus.PROCESSING, attempts=1,
        ))
        db.commit()
        work = Mock()

        with pytest.raises(ConcurrentProcessingError) as exc_info:
            run(db, work)

        assert exc_info.value.status_code == 409
        work.assert_not_called()

    def test_non_retryable_failure_marks_failed(self, db):
        with pytest.raises(PayloadError):
            run(db, Mock(side_effect=PayloadError("Missing customer_id in transaction data")))

        event = db.query(WebhookEvent).one()
        assert event.status == WebhookStatus.FAILED
        assert event.last_error == "Missing customer_id in transaction data"
        assert event.attempts == 1

    def test_retryable_failure_marks_retrying(self, db):
        with pytest.raises(UpstreamAPIError):
            run(db, Mock(side_effect=UpstreamAPIError("Paddle API error: 503", upstream_status=503)))

        event = db.query(WebhookEvent).one()
        assert event.status == WebhookStatus.RETRYING

    def test_unclassified_failure_is_retryable(self, db):
        with pytest.raises(RuntimeError):
            run(db, Mock(side_effect=RuntimeError("connection reset")))

        assert db.query(WebhookEvent).one().status == WebhookStatus.RETRYING

    def test_long_errors_are_truncated(self, db):
        with pytest.raises(RuntimeError):
            run(db, Mock(side_effect=RuntimeError("x" * 5000)))

        assert len(db.query(WebhookEvent).one().last_error) == 2000

    def test_failed_work_is_rolled_back(self, db, user):
        def work(payload):
            user.name = "changed"
            db.flush()
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            run(db, work)

        db.refresh(user)
        assert user.name == "Buyer"

    def test_redelivery_after_failure_runs_again(self, db):
        with pytest.raises(RuntimeError):
            run(db, Mock(side_effect=RuntimeError("boom")))

        outcome = run(db, Mock(return_value={"ok": True}))

        assert outcome.is_new_event is True
        assert outcome.webhook_event.status == WebhookStatus.COMPLETED
        assert outcome.webhook_event.attempts == 2
        assert outcome.webhook_event.last_error is None

    def test_without_event_id_work_always_runs(self, db):
        work = Mock(return_value={"ok": True})

        run(db, work, event_id=None)
        run(db, work, event_id=None)

        assert work.call_count == 2
        assert db.query(WebhookEvent).count() == 2


class TestAdminHelpers:
    def _failed(self, db, event_id, source="paddle"):
        with pytest.raises(PayloadError):
            run(db, Mock(side_effect=PayloadError("bad")), event_id=event_id, source=source)

    def test_list_failed_filters_by_source(self, db):
        self._failed(db, "evt_1")
        self._failed(db, "evt_2", source="revenuecat")
        run(db, Mock(return_value={}), event_id="evt_3")

        assert {e.event_id for e in list_failed_webhooks(db)} == {"evt_1", "evt_2"}
        assert [e.event_id for e in list_failed_webhooks(db, source="revenuecat")] == ["evt_2"]
        assert len(list_failed_webhooks(db, limit=1)) == 1

    def test_stats_counts_every_status(self, db):
        self._failed(db, "evt_1")
        run(db, Mock(return_value={}), event_id="evt_2")
        run(db, Mock(return_value={}), event_id="evt_3")

        stats = webhook_stats(db)

        assert stats == {
            "pending": 0,
            "processing": 0,
            "completed": 2,
            "failed": 1,
            "retrying": 0,
            "total": 3,
        }
        assert webhook_stats(db, source="revenuecat")["total"] == 0

    def test_reset_failed_event(self, db):
        self._failed(db, "evt_1")
        event = db.query(WebhookEvent).one()

        reset = reset_webhook_for_retry(db, event.id)

        assert reset.status == WebhookStatus.PENDING
        assert reset.last_error is None

    def test_reset_rejects_other_statuses(self, db):
        outcome = run(db, Mock(return_value={}))

        with pytest.raises(ValueError, match="COMPLETED"):
            reset_webhook_for_retry(db, outcome.webhook_event.id)

    def test_reset_missing(self, db):
        with pytest.raises(LookupError):
            reset_webhook_for_retry(db, 999)
