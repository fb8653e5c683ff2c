"""
Tests for LINE notification messages and fan-out.

Rules:
1. Reminder lists show at most 10 departments, then "... และอีก N แผนก"
2. Every target is attempted; one failure never blocks the others
3. Configuration and recipient problems are raised before any push
"""

import pytest
from datetime import datetime

from qa_portal.errors import ConfigurationError, NoRecipientsError, ValidationError
from qa_portal.services.notifications import (
    TYPE_CUSTOM,
    TYPE_DATA_ENTRY,
    TYPE_REMINDER,
    build_custom_message,
    build_message,
    build_reminder_message,
    dispatch,
    format_pending_list,
    send_notification,
)
from qa_portal.services.recipients import add_recipient
from qa_portal.services.settings_store import save_line_settings


def pending(n):
    return [{"group": "ผู้ป่วยใน (IPD)", "name": f"Ward {i}", "id": f"DEPT{i:03d}"} for i in range(1, n + 1)]


def enable_line(db, token="test-token"):
    save_line_settings(db, {"enabled": True, "channelAccessToken": token})


class TestMessageBuilders:
    """Tests for the message text builders."""

    def test_data_entry_message_fields(self):
        text = build_message(TYPE_DATA_ENTRY, {
            "departmentGroup": "ผู้ป่วยนอก (OPD)",
            "departmentName": "OPD ศัลยกรรม",
            "fiscalYear": 2568,
            "month": "ตุลาคม",
        }, now=datetime(2024, 10, 5, 14, 30))

        assert "กลุ่มแผนก: ผู้ป่วยนอก (OPD)" in text
        assert "แผนก: OPD ศัลยกรรม" in text
        assert "ปีงบประมาณ: 2568" in text
        assert "เดือน: ตุลาคม" in text

    def test_data_entry_missing_fields_shown_as_dash(self):
        text = build_message(TYPE_DATA_ENTRY, {}, now=datetime(2024, 10, 5, 14, 30))
        assert "แผนก: -" in text

    def test_pending_list_numbered(self):
        text = format_pending_list(pending(2))
        assert text.splitlines() == ["1. ผู้ป่วยใน (IPD) - Ward 1", "2. ผู้ป่วยใน (IPD) - Ward 2"]

    def test_pending_list_capped_at_ten(self):
        lines = format_pending_list(pending(13)).splitlines()
        assert len(lines) == 11
        assert lines[9].startswith("10. ")
        assert lines[10] == "... และอีก 3 แผนก"

    def test_pending_list_exactly_ten_has_no_suffix(self):
        lines = format_pending_list(pending(10)).splitlines()
        assert len(lines) == 10

    def test_pending_list_empty(self):
        assert format_pending_list([]) == "(ไม่พบรายการ)"

    def test_reminder_message_includes_period(self):
        text = build_reminder_message(pending(1), fiscal_year=2568, month="มกราคม")
        assert "1. ผู้ป่วยใน (IPD) - Ward 1" in text
        assert "ปีงบประมาณ: 2568" in text
        assert "เดือน: มกราคม" in text

    def test_custom_message(self):
        assert build_message(TYPE_CUSTOM, {"customMessage": "ประชุม 10 โมง"}) == "ประชุม 10 โมง"

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_blank_custom_message(self, text):
        assert build_custom_message(text) == "ไม่มีข้อความ"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            build_message("sms", {})

    def test_reminder_type_uses_pending_list(self):
        text = build_message(TYPE_REMINDER, {"pendingDepartments": pending(1), "fiscalYear": 2568, "month": "ตุลาคม"})
        assert "Ward 1" in text


class TestDispatch:
    """Tests for dispatch function."""

    def test_all_targets_succeed(self, fake_line):
        result = dispatch(["U1", "U2", "C1"], "hi", fake_line.push_message, max_workers=2)
        assert (result.total, result.success, result.failed) == (3, 3, 0)
        assert sorted(to for to, _ in fake_line.pushed) == ["C1", "U1", "U2"]

    def test_one_failure_does_not_block_others(self, fake_line):
        fake_line.fail_push_to = {"U2"}
        result = dispatch(["U1", "U2", "U3"], "hi", fake_line.push_message)

        assert result.success == 2
        assert result.failed == 1
        assert result.failures[0][0] == "U2"
        assert sorted(to for to, _ in fake_line.pushed) == ["U1", "U3"]

    def test_unexpected_error_counted_as_failure(self, fake_line):
        def push(to, text):
            if to == "U2":
                raise RuntimeError("connection pool closed")
            fake_line.push_message(to, text)

        result = dispatch(["U1", "U2", "U3"], "hi", push)

        assert result.to_dict() == {"total": 3, "success": 2, "failed": 1}
        assert result.failures == [("U2", "connection pool closed")]
        assert sorted(to for to, _ in fake_line.pushed) == ["U1", "U3"]

    def test_no_targets(self, fake_line):
        result = dispatch([], "hi", fake_line.push_message)
        assert result.to_dict() == {"total": 0, "success": 0, "failed": 0}
        assert fake_line.pushed == []


class TestSendNotification:
    """Tests for send_notification function."""

    def test_disabled_line_rejected(self, db, fake_line):
        with pytest.raises(ConfigurationError) as exc:
            send_notification(db, TYPE_CUSTOM, {"customMessage": "x"}, client=fake_line)
        assert exc.value.message == "LINE notification is disabled"
        assert fake_line.pushed == []

    def test_missing_token_rejected(self, db, fake_line):
        save_line_settings(db, {"enabled": True})
        with pytest.raises(ConfigurationError) as exc:
            send_notification(db, TYPE_CUSTOM, {"customMessage": "x"}, client=fake_line)
        assert "Token" in exc.value.message

    def test_no_recipients(self, db, fake_line):
        enable_line(db)
        with pytest.raises(NoRecipientsError):
            send_notification(db, TYPE_CUSTOM, {"customMessage": "x"}, client=fake_line)
        assert fake_line.pushed == []

    def test_invalid_target_type(self, db, fake_line):
        enable_line(db)
        add_recipient(db, "U1", "user")
        with pytest.raises(ValidationError):
            send_notification(db, TYPE_CUSTOM, {"customMessage": "x"}, target_type="everyone", client=fake_line)

    def test_sends_to_selected_scope(self, db, fake_line):
        enable_line(db)
        add_recipient(db, "U1", "user")
        add_recipient(db, "C1", "group")

        result = send_notification(db, TYPE_CUSTOM, {"customMessage": "hello"}, target_type="groups", client=fake_line)

        assert result.total == 1
        assert fake_line.pushed == [("C1", "hello")]

    def test_sends_to_everyone(self, db, fake_line):
        enable_line(db)
        add_recipient(db, "U1", "user")
        add_recipient(db, "C1", "group")
        fake_line.fail_push_to = {"U1"}

        result = send_notification(db, TYPE_CUSTOM, {"customMessage": "hello"}, client=fake_line)

        assert result.to_dict() == {"total": 2, "success": 1, "failed": 1}
