"""
Versioned settings documents.

Each logical document (LINE settings, notification settings, recipient
registry) is one ``app_documents`` row. Writers read the row, apply a
mutation to a copy and write it back only if ``version`` is unchanged,
retrying a few times before giving up with ConcurrentUpdateError.
"""

import copy
import logging
import os
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from qa_portal.crypto_utils import decrypt_token, encrypt_token, is_masked, mask_token
from qa_portal.errors import ConcurrentUpdateError, PersistenceError
from qa_portal.models import AppDocument
from qa_portal.services.validators import validate_notification_settings
from qa_portal.time_config import isoformat, utc_naive, utc_now

logger = logging.getLogger(__name__)

LINE_SETTINGS_KEY = "line-settings"
NOTIFICATION_SETTINGS_KEY = "notification-settings"
RECIPIENTS_KEY = "line-recipients"

MAX_CAS_ATTEMPTS = 3


def default_line_settings() -> Dict[str, Any]:
    return {
        "channelAccessToken": "",
        "channelSecret": "",
        "webhookUrl": "",
        "enabled": False,
    }


def default_notification_settings() -> Dict[str, Any]:
    return {
        "onDataEntry": {
            "enabled": True,
            "description": "แจ้งเตือนเมื่อมีการลงข้อมูลใหม่",
        },
        "reminder": {
            "enabled": True,
            "dayOfMonth": 25,
            "time": "09:00",
            "description": "แจ้งเตือนใกล้ครบกำหนดลงข้อมูล",
        },
    }


def _with_defaults(data: Optional[dict], defaults: dict) -> dict:
    """Stored values over defaults, one level of nesting deep."""
    merged = copy.deepcopy(defaults)
    for key, value in (data or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = copy.deepcopy(value)
    return merged


# ============================================================
# GENERIC DOCUMENT ACCESS
# ============================================================

def get_document(db: Session, key: str, default_factory: Callable[[], dict]) -> Dict[str, Any]:
    """Current document (defaults filled in). Missing documents are not created."""
    try:
        row = db.query(AppDocument).filter(AppDocument.key == key).first()
    except SQLAlchemyError as e:
        logger.error(f"Failed to read document {key}: {e}")
        raise PersistenceError(f"Failed to read {key}") from e
    return _with_defaults(row.data if row else None, default_factory())


def update_document(
    db: Session,
    key: str,
    mutate: Callable[[dict], Any],
    default_factory: Callable[[], dict],
    max_attempts: int = MAX_CAS_ATTEMPTS,
) -> Tuple[Dict[str, Any], Any]:
    """
    Apply ``mutate`` to the document and persist it with compare-and-swap.

    ``mutate`` edits the dict in place and may return a value, which is
    handed back alongside the saved document. It can be re-run on a fresh
    copy if another writer got in first, so it must not have side effects.
    When the mutation changes nothing, nothing is written.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            row = (
                db.query(AppDocument)
                .filter(AppDocument.key == key)
                .populate_existing()
                .first()
            )
            before = _with_defaults(row.data if row else None, default_factory())
            data = copy.deepcopy(before)
            result = mutate(data)

            if data == before:
                return data, result

            data["updatedAt"] = isoformat(utc_now())

            if row is None:
                db.add(AppDocument(key=key, data=data, version=1, updated_at=utc_naive()))
                db.commit()
                return data, result

            updated = (
                db.query(AppDocument)
                .filter(AppDocument.key == key, AppDocument.version == row.version)
                .update(
                    {
                        AppDocument.data: data,
                        AppDocument.version: row.version + 1,
                        AppDocument.updated_at: utc_naive(),
                    },
                    synchronize_session=False,
                )
            )
            if updated == 1:
                db.commit()
                return data, result

            db.rollback()
            logger.warning(f"Document {key} changed during update (attempt {attempt}/{max_attempts})")
        except IntegrityError:
            # Another writer created the document first
            db.rollback()
            logger.warning(f"Document {key} created concurrently (attempt {attempt}/{max_attempts})")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to update document {key}: {e}")
            raise PersistenceError(f"Failed to save {key}") from e

    raise ConcurrentUpdateError(f"{key} kept changing; gave up after {max_attempts} attempts")


# ============================================================
# LINE SETTINGS
# ============================================================

def get_line_settings(db: Session) -> Dict[str, Any]:
    """Stored LINE settings. Credentials are returned as stored (encrypted)."""
    return get_document(db, LINE_SETTINGS_KEY, default_line_settings)


def masked_line_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Copy safe to return from the API."""
    masked = dict(settings)
    masked["channelAccessToken"] = mask_token(settings.get("channelAccessToken", ""))
    masked["channelSecret"] = mask_token(settings.get("channelSecret", ""), visible_chars=4)
    return masked


def save_line_settings(db: Session, updates: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge LINE settings.

    New credentials are encrypted before storage. Masked values (what the
    API hands out) and empty values leave the stored credential alone.
    """
    new_token = updates.get("channelAccessToken")
    new_secret = updates.get("channelSecret")

    changes: Dict[str, Any] = {}
    if new_token and not is_masked(new_token):
        changes["channelAccessToken"] = encrypt_token(new_token)
        logger.info("LINE channel access token encrypted for storage")
    if new_secret and not is_masked(new_secret):
        changes["channelSecret"] = encrypt_token(new_secret)
    if updates.get("webhookUrl") is not None:
        changes["webhookUrl"] = updates["webhookUrl"]
    if updates.get("enabled") is not None:
        changes["enabled"] = bool(updates["enabled"])

    saved, _ = update_document(db, LINE_SETTINGS_KEY, lambda doc: doc.update(changes), default_line_settings)
    return saved


def record_test_result(
    db: Session,
    status: str,
    bot_info: Optional[dict] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    """Remember the outcome of the last connection test."""
    def apply(doc):
        doc["lastTestedAt"] = isoformat(utc_now())
        doc["testStatus"] = status
        if bot_info is not None:
            doc["botInfo"] = bot_info
        if error:
            doc["testError"] = error
        else:
            doc.pop("testError", None)

    saved, _ = update_document(db, LINE_SETTINGS_KEY, apply, default_line_settings)
    return saved


def get_access_token(db: Session, settings: Optional[dict] = None) -> str:
    """Usable channel access token: stored (decrypted) or LINE_CHANNEL_ACCESS_TOKEN."""
    if settings is None:
        settings = get_line_settings(db)
    return decrypt_token(settings.get("channelAccessToken", "")) or os.getenv("LINE_CHANNEL_ACCESS_TOKEN", "")


def get_channel_secret(db: Session, settings: Optional[dict] = None) -> str:
    """Decrypted channel secret, or "" if none is configured."""
    if settings is None:
        settings = get_line_settings(db)
    return decrypt_token(settings.get("channelSecret", ""))


# ============================================================
# NOTIFICATION SETTINGS
# ============================================================

def get_notification_settings(db: Session) -> Dict[str, Any]:
    return get_document(db, NOTIFICATION_SETTINGS_KEY, default_notification_settings)


def save_notification_settings(db: Session, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Merge notification settings. Raises ValidationError on bad values."""
    result = validate_notification_settings(updates)
    result.raise_if_invalid()
    for warning in result.warnings:
        logger.warning(warning)

    def apply(doc):
        for section in ("onDataEntry", "reminder"):
            if isinstance(updates.get(section), dict):
                doc[section] = {**doc.get(section, {}), **updates[section]}

    saved, _ = update_document(db, NOTIFICATION_SETTINGS_KEY, apply, default_notification_settings)
    return saved
