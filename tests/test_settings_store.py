"""
Tests for versioned settings documents.

Rules:
1. Reads never create a document; defaults fill missing keys
2. Each write bumps the version; a write that changes nothing is skipped
3. Credentials are stored encrypted and only ever returned masked
"""

import pytest

from qa_portal.crypto_utils import ENCRYPTED_LABEL, is_encrypted
from qa_portal.errors import ConcurrentUpdateError, ValidationError
from qa_portal.models import AppDocument
from qa_portal.services import settings_store
from qa_portal.services.settings_store import (
    LINE_SETTINGS_KEY,
    NOTIFICATION_SETTINGS_KEY,
    get_access_token,
    get_channel_secret,
    get_line_settings,
    get_notification_settings,
    masked_line_settings,
    record_test_result,
    save_line_settings,
    save_notification_settings,
    update_document,
)


def version(db, key):
    row = db.query(AppDocument).filter(AppDocument.key == key).populate_existing().first()
    return row.version if row else None


class TestUpdateDocument:
    """Tests for the compare-and-swap document update."""

    def test_read_does_not_create(self, db):
        settings = get_line_settings(db)
        assert settings["enabled"] is False
        assert version(db, LINE_SETTINGS_KEY) is None

    def test_first_write_creates_version_one(self, db):
        save_line_settings(db, {"enabled": True})
        assert version(db, LINE_SETTINGS_KEY) == 1

    def test_each_write_bumps_version(self, db):
        save_line_settings(db, {"enabled": True})
        save_line_settings(db, {"webhookUrl": "https://qa.example.com/api/line/webhook"})
        assert version(db, LINE_SETTINGS_KEY) == 2
        assert get_line_settings(db)["enabled"] is True

    def test_noop_write_skipped(self, db):
        save_line_settings(db, {"enabled": True})
        save_line_settings(db, {"enabled": True})
        assert version(db, LINE_SETTINGS_KEY) == 1

    def test_mutation_result_returned(self, db):
        def apply(doc):
            doc["counter"] = 1
            return "done"

        saved, result = update_document(db, "scratch", apply, dict)
        assert result == "done"
        assert saved["counter"] == 1
        assert "updatedAt" in saved

    def test_gives_up_when_version_keeps_changing(self, db):
        save_line_settings(db, {"enabled": True})

        def bump_behind_our_back(doc):
            db.query(AppDocument).filter(AppDocument.key == LINE_SETTINGS_KEY).update(
                {AppDocument.version: AppDocument.version + 1}, synchronize_session=False
            )
            doc["enabled"] = False

        with pytest.raises(ConcurrentUpdateError):
            update_document(db, LINE_SETTINGS_KEY, bump_behind_our_back, settings_store.default_line_settings)


class TestLineSettings:
    """Tests for LINE credential handling."""

    def test_token_encrypted_at_rest(self, db):
        save_line_settings(db, {"channelAccessToken": "plain-token-123456", "channelSecret": "secret-abc"})

        stored = get_line_settings(db)
        assert is_encrypted(stored["channelAccessToken"])
        assert is_encrypted(stored["channelSecret"])
        assert get_access_token(db) == "plain-token-123456"
        assert get_channel_secret(db) == "secret-abc"

    def test_masked_input_keeps_stored_token(self, db):
        save_line_settings(db, {"channelAccessToken": "plain-token-123456"})
        save_line_settings(db, {"channelAccessToken": ENCRYPTED_LABEL, "enabled": True})
        save_line_settings(db, {"channelAccessToken": "●●●●●●●●token-123456"})

        assert get_access_token(db) == "plain-token-123456"

    def test_empty_input_keeps_stored_token(self, db):
        save_line_settings(db, {"channelAccessToken": "plain-token-123456"})
        save_line_settings(db, {"channelAccessToken": ""})
        assert get_access_token(db) == "plain-token-123456"

    def test_masked_view_hides_credentials(self, db):
        saved = save_line_settings(db, {"channelAccessToken": "plain-token-123456", "channelSecret": "secret-abc"})
        masked = masked_line_settings(saved)

        assert masked["channelAccessToken"] == ENCRYPTED_LABEL
        assert masked["channelSecret"] == ENCRYPTED_LABEL
        assert "plain-token" not in str(masked)

    def test_env_token_fallback(self, db, monkeypatch):
        monkeypatch.setenv("LINE_CHANNEL_ACCESS_TOKEN", "env-token")
        assert get_access_token(db) == "env-token"

    def test_record_test_result(self, db):
        record_test_result(db, "failed", error="bad token")
        saved = record_test_result(db, "success", bot_info={"displayName": "QA Bot"})

        assert saved["testStatus"] == "success"
        assert saved["botInfo"] == {"displayName": "QA Bot"}
        assert "testError" not in saved
        assert "lastTestedAt" in saved


class TestNotificationSettings:
    """Tests for notification settings."""

    def test_defaults(self, db):
        settings = get_notification_settings(db)
        assert settings["onDataEntry"]["enabled"] is True
        assert settings["reminder"]["dayOfMonth"] == 25
        assert settings["reminder"]["time"] == "09:00"

    def test_partial_update_merges_section(self, db):
        save_notification_settings(db, {"reminder": {"dayOfMonth": 20}})
        reminder = get_notification_settings(db)["reminder"]
        assert reminder["dayOfMonth"] == 20
        assert reminder["time"] == "09:00"
        assert reminder["enabled"] is True

    @pytest.mark.parametrize("updates", [
        {"reminder": {"dayOfMonth": 0}},
        {"reminder": {"dayOfMonth": 32}},
        {"reminder": {"dayOfMonth": "25"}},
        {"reminder": {"time": "9:00"}},
        {"reminder": {"time": "24:00"}},
        {"reminder": {"enabled": "yes"}},
        {"onDataEntry": {"enabled": 1}},
        {"reminder": "daily"},
    ])
    def test_invalid_values_rejected(self, db, updates):
        with pytest.raises(ValidationError):
            save_notification_settings(db, updates)
        assert version(db, NOTIFICATION_SETTINGS_KEY) is None

    def test_late_day_accepted_with_warning(self, db, caplog):
        save_notification_settings(db, {"reminder": {"dayOfMonth": 30}})
        assert get_notification_settings(db)["reminder"]["dayOfMonth"] == 30
        assert "does not occur in every month" in caplog.text
