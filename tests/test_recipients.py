"""
Tests for the LINE recipient registry and webhook event handling.

Rules:
1. A recipient id appears at most once per type
2. follow/join register once; unfollow/leave remove
3. Failed profile lookups fall back to a placeholder name
"""

import pytest

from qa_portal.errors import ValidationError
from qa_portal.services.recipients import (
    FALLBACK_USER_NAME,
    TEST_REPLY,
    add_recipient,
    handle_webhook_events,
    list_recipients,
    remove_recipient,
    resolve_targets,
)


def follow(user_id, reply_token="rt-1"):
    return {"type": "follow", "replyToken": reply_token, "source": {"type": "user", "userId": user_id}}


def join(group_id, reply_token="rt-2"):
    return {"type": "join", "replyToken": reply_token, "source": {"type": "group", "groupId": group_id}}


def text(body, **source):
    return {
        "type": "message",
        "replyToken": "rt-msg",
        "source": source or {"type": "user", "userId": "U1"},
        "message": {"type": "text", "text": body},
    }


class TestRegistry:
    """Tests for add/remove/list."""

    def test_empty_registry(self, db):
        recipients = list_recipients(db)
        assert recipients["users"] == []
        assert recipients["groups"] == []

    def test_add_user_and_group(self, db):
        add_recipient(db, "U1", "user", "Alice")
        add_recipient(db, "C1", "group")

        recipients = list_recipients(db)
        assert [u["displayName"] for u in recipients["users"]] == ["Alice"]
        assert [g["displayName"] for g in recipients["groups"]] == ["Manual Group"]

    def test_add_duplicate_rejected(self, db):
        add_recipient(db, "U1", "user")
        with pytest.raises(ValidationError) as exc:
            add_recipient(db, "U1", "user")
        assert exc.value.message == "User already exists"
        assert len(list_recipients(db)["users"]) == 1

    def test_same_id_different_type_allowed(self, db):
        add_recipient(db, "X1", "user")
        add_recipient(db, "X1", "group")
        assert resolve_targets(list_recipients(db)) == ["X1", "X1"]

    @pytest.mark.parametrize("recipient_id,recipient_type", [("", "user"), ("U1", ""), ("U1", "room")])
    def test_add_invalid_rejected(self, db, recipient_id, recipient_type):
        with pytest.raises(ValidationError):
            add_recipient(db, recipient_id, recipient_type)

    def test_remove(self, db):
        add_recipient(db, "U1", "user", "Alice")
        removed = remove_recipient(db, "U1", "user")
        assert removed.display_name == "Alice"
        assert list_recipients(db)["users"] == []

    def test_remove_absent_returns_none(self, db):
        assert remove_recipient(db, "U404", "user") is None


class TestResolveTargets:
    """Tests for resolve_targets function."""

    RECIPIENTS = {"users": [{"id": "U1"}, {"id": "U2"}], "groups": [{"id": "C1"}]}

    def test_all(self):
        assert resolve_targets(self.RECIPIENTS, "all") == ["U1", "U2", "C1"]

    def test_users(self):
        assert resolve_targets(self.RECIPIENTS, "users") == ["U1", "U2"]

    def test_groups(self):
        assert resolve_targets(self.RECIPIENTS, "groups") == ["C1"]


class TestWebhookEvents:
    """Tests for handle_webhook_events function."""

    def test_follow_registers_and_welcomes(self, db, fake_line):
        tally = handle_webhook_events(db, [follow("U1")], client=fake_line)

        assert tally["added"] == 1
        assert tally["replied"] == 1
        users = list_recipients(db)["users"]
        assert users[0]["id"] == "U1"
        assert users[0]["displayName"] == "Nurse U1"
        assert fake_line.replies[0][0] == "rt-1"

    def test_follow_twice_registers_once(self, db, fake_line):
        tally = handle_webhook_events(db, [follow("U1"), follow("U1", "rt-9")], client=fake_line)
        assert tally["processed"] == 2
        assert tally["added"] == 1
        assert len(list_recipients(db)["users"]) == 1

    def test_join_registers_group(self, db, fake_line):
        handle_webhook_events(db, [join("C1")], client=fake_line)
        assert list_recipients(db)["groups"][0]["displayName"] == "Team C1"

    def test_lookup_failure_uses_placeholder(self, db, fake_line):
        fake_line.fail_lookups = True
        handle_webhook_events(db, [follow("U1")], client=fake_line)
        assert list_recipients(db)["users"][0]["displayName"] == FALLBACK_USER_NAME

    def test_reply_failure_still_registers(self, db, fake_line):
        fake_line.fail_replies = True
        tally = handle_webhook_events(db, [follow("U1")], client=fake_line)
        assert tally["added"] == 1
        assert tally["replied"] == 0

    def test_without_client_registers_placeholder(self, db):
        tally = handle_webhook_events(db, [follow("U1")])
        assert tally["added"] == 1
        assert tally["replied"] == 0
        assert list_recipients(db)["users"][0]["displayName"] == FALLBACK_USER_NAME

    def test_unfollow_and_leave_remove(self, db, fake_line):
        handle_webhook_events(db, [follow("U1"), join("C1")], client=fake_line)
        tally = handle_webhook_events(db, [
            {"type": "unfollow", "source": {"userId": "U1"}},
            {"type": "leave", "source": {"groupId": "C1"}},
        ], client=fake_line)

        assert tally["removed"] == 2
        recipients = list_recipients(db)
        assert recipients["users"] == [] and recipients["groups"] == []

    def test_unfollow_unknown_is_harmless(self, db):
        tally = handle_webhook_events(db, [{"type": "unfollow", "source": {"userId": "U404"}}])
        assert tally["removed"] == 0

    def test_missing_source_id_ignored(self, db):
        tally = handle_webhook_events(db, [{"type": "follow", "source": {}}])
        assert tally["ignored"] == 1
        assert list_recipients(db)["users"] == []

    def test_unknown_event_ignored(self, db):
        tally = handle_webhook_events(db, [{"type": "beacon"}])
        assert tally == {"processed": 1, "added": 0, "removed": 0, "replied": 0, "ignored": 1}

    @pytest.mark.parametrize("events", [None, {"type": "follow"}, ["follow"], [{"type": "follow"}, 3]])
    def test_events_must_be_list_of_objects(self, db, events):
        with pytest.raises(ValidationError):
            handle_webhook_events(db, events)
        assert list_recipients(db)["users"] == []

    def test_non_object_source_ignored(self, db):
        tally = handle_webhook_events(db, [{"type": "follow", "source": "U1"}])
        assert tally["ignored"] == 1

    def test_non_text_message_body_not_answered(self, db, fake_line):
        tally = handle_webhook_events(db, [{"type": "message", "replyToken": "rt", "message": {"type": "text", "text": 7}}], client=fake_line)
        assert tally["replied"] == 0


class TestMessageCommands:
    """Tests for the text commands answered by the bot."""

    @pytest.mark.parametrize("command", ["test", "TEST", " ทดสอบ "])
    def test_test_command(self, db, fake_line, command):
        tally = handle_webhook_events(db, [text(command)], client=fake_line)
        assert tally["replied"] == 1
        assert fake_line.replies == [("rt-msg", TEST_REPLY)]

    def test_status_reports_counts(self, db, fake_line):
        add_recipient(db, "U1", "user")
        add_recipient(db, "C1", "group")
        handle_webhook_events(db, [text("status")], client=fake_line)

        reply = fake_line.replies[0][1]
        assert "1 คน" in reply
        assert "1 กลุ่ม" in reply

    def test_id_command_prefers_group(self, db, fake_line):
        handle_webhook_events(db, [text("!id", type="group", groupId="C9", userId="U1")], client=fake_line)
        assert "C9" in fake_line.replies[0][1]

    def test_other_text_not_answered(self, db, fake_line):
        tally = handle_webhook_events(db, [text("hello")], client=fake_line)
        assert tally["replied"] == 0
        assert fake_line.replies == []
