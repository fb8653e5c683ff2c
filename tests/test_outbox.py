"""
Tests for the notification outbox.

Rules:
1. An intent is queued only when LINE and data-entry notices are enabled
2. Delivered intents are marked sent; configuration errors fail at once
3. Other failures, expected or not, retry until the attempt limit, then fail
4. Intents are claimed one at a time and tried at most once per drain
"""

from datetime import datetime

from qa_portal.errors import ConfigurationError, ExternalServiceError
from qa_portal.models import NotificationIntent
from qa_portal.services import qa_store
from qa_portal.services.notifications import DispatchResult
from qa_portal.services.outbox import drain_outbox, enqueue_data_entry, outbox_sender
from qa_portal.services.recipients import add_recipient
from qa_portal.services.settings_store import save_line_settings, save_notification_settings


class FakeSender:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, kind, payload, created_at):
        self.calls.append((kind, payload, created_at))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


SENT = DispatchResult(total=1, success=1)
NONE_SENT = DispatchResult(total=1, success=0, failed=1, failures=[("U1", "rejected")])


def enable(db):
    save_line_settings(db, {"enabled": True, "channelAccessToken": "test-token"})


def saved_record(db, dept="OPD001"):
    return qa_store.upsert_record(db, dept, None, 2568, "ตุลาคม", {"opd_1_1": "1"})


def queue(db):
    enable(db)
    return enqueue_data_entry(db, saved_record(db))


class TestEnqueue:
    """Tests for enqueue_data_entry function."""

    def test_line_disabled_queues_nothing(self, db):
        assert enqueue_data_entry(db, saved_record(db)) is None
        assert db.query(NotificationIntent).count() == 0

    def test_data_entry_disabled_queues_nothing(self, db):
        enable(db)
        save_notification_settings(db, {"onDataEntry": {"enabled": False}})
        assert enqueue_data_entry(db, saved_record(db)) is None

    def test_queues_pending_intent(self, db):
        intent = queue(db)

        assert intent.status == NotificationIntent.STATUS_PENDING
        assert intent.attempts == 0
        assert intent.kind == "data_entry"
        assert intent.payload == {
            "departmentId": "OPD001",
            "departmentGroup": "ผู้ป่วยนอก (OPD)",
            "departmentName": "OPD ศัลยกรรม",
            "fiscalYear": 2568,
            "month": "ตุลาคม",
        }


class TestDrainOutbox:
    """Tests for drain_outbox function."""

    def test_empty_outbox(self, db):
        assert drain_outbox(db, sender=FakeSender([SENT])) == {"processed": 0, "sent": 0, "failed": 0, "retrying": 0}

    def test_delivered_intent_marked_sent(self, db):
        intent = queue(db)
        sender = FakeSender([SENT])

        tally = drain_outbox(db, sender=sender)

        assert tally["sent"] == 1
        db.refresh(intent)
        assert intent.status == NotificationIntent.STATUS_SENT
        assert intent.attempts == 1
        assert intent.processed_at is not None
        kind, payload, created_at = sender.calls[0]
        assert payload["departmentName"] == "OPD ศัลยกรรม"
        assert isinstance(created_at, datetime)

    def test_sent_intent_not_redelivered(self, db):
        queue(db)
        drain_outbox(db, sender=FakeSender([SENT]))
        sender = FakeSender([SENT])
        assert drain_outbox(db, sender=sender)["processed"] == 0
        assert sender.calls == []

    def test_configuration_error_fails_immediately(self, db):
        intent = queue(db)
        tally = drain_outbox(db, sender=FakeSender([ConfigurationError("LINE notification is disabled")]))

        assert tally["failed"] == 1
        db.refresh(intent)
        assert intent.status == NotificationIntent.STATUS_FAILED
        assert intent.last_error == "LINE notification is disabled"

    def test_retries_then_fails(self, db):
        intent = queue(db)
        sender = FakeSender([ExternalServiceError("LINE API error", status_code=500)])

        assert drain_outbox(db, sender=sender, max_attempts=3)["retrying"] == 1
        assert drain_outbox(db, sender=sender, max_attempts=3)["retrying"] == 1
        assert drain_outbox(db, sender=sender, max_attempts=3)["failed"] == 1

        db.refresh(intent)
        assert intent.status == NotificationIntent.STATUS_FAILED
        assert intent.attempts == 3
        assert len(sender.calls) == 3

    def test_unexpected_error_counts_attempts(self, db):
        intent = queue(db)
        sender = FakeSender([RuntimeError("boom")])

        for _ in range(5):
            drain_outbox(db, sender=sender, max_attempts=3)

        db.refresh(intent)
        assert intent.status == NotificationIntent.STATUS_FAILED
        assert intent.attempts == 3
        assert intent.last_error == "boom"
        assert len(sender.calls) == 3

    def test_no_successful_delivery_is_retried(self, db):
        intent = queue(db)
        tally = drain_outbox(db, sender=FakeSender([NONE_SENT]), max_attempts=3)

        assert tally["retrying"] == 1
        db.refresh(intent)
        assert intent.status == NotificationIntent.STATUS_PENDING
        assert intent.last_error == "U1: rejected"

    def test_recovers_on_retry(self, db):
        intent = queue(db)
        sender = FakeSender([ExternalServiceError("timeout", status_code=504), SENT])

        drain_outbox(db, sender=sender)
        drain_outbox(db, sender=sender)

        db.refresh(intent)
        assert intent.status == NotificationIntent.STATUS_SENT
        assert intent.attempts == 2

    def test_real_sender_pushes_data_entry_message(self, db, fake_line):
        queue(db)
        add_recipient(db, "U1", "user")

        tally = drain_outbox(db, sender=outbox_sender(db, fake_line))

        assert tally["sent"] == 1
        to, text = fake_line.pushed[0]
        assert to == "U1"
        assert "OPD ศัลยกรรม" in text

    def test_each_intent_tried_once_per_drain(self, db):
        queue(db)
        enqueue_data_entry(db, saved_record(db, dept="OPD002"))
        sender = FakeSender([NONE_SENT])

        tally = drain_outbox(db, sender=sender, max_attempts=3)

        assert tally == {"processed": 2, "sent": 0, "failed": 0, "retrying": 2}
        assert len(sender.calls) == 2

    def test_intent_finished_elsewhere_is_not_redelivered(self, db):
        queue(db)
        second = enqueue_data_entry(db, saved_record(db, dept="OPD002"))
        sender = FakeSender([SENT])

        def send_and_finish_second(kind, payload, created_at):
            # another drain delivers the second intent meanwhile
            db.query(NotificationIntent).filter(NotificationIntent.id == second.id).update(
                {"status": NotificationIntent.STATUS_SENT}, synchronize_session=False
            )
            return sender(kind, payload, created_at)

        tally = drain_outbox(db, sender=send_and_finish_second)

        assert tally["processed"] == 1
        assert [payload["departmentId"] for _, payload, _ in sender.calls] == ["OPD001"]

    def test_limit_caps_one_drain(self, db):
        queue(db)
        enqueue_data_entry(db, saved_record(db, dept="OPD002"))

        assert drain_outbox(db, sender=FakeSender([SENT]), limit=1)["processed"] == 1
        assert drain_outbox(db, sender=FakeSender([SENT]), limit=1)["processed"] == 1
