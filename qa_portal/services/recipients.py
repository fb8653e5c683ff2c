"""
LINE recipient registry.

Users who follow the bot and groups it has joined, stored as the
``line-recipients`` document. Webhook life-cycle events keep the registry
in sync; administrators can also add and remove entries by hand.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from qa_portal.errors import ExternalServiceError, ValidationError
from qa_portal.line_client import LineClient
from qa_portal.services.settings_store import RECIPIENTS_KEY, get_document, update_document
from qa_portal.services.validators import validate_recipient
from qa_portal.time_config import isoformat, utc_now

logger = logging.getLogger(__name__)

USER = "user"
GROUP = "group"

FALLBACK_USER_NAME = "LINE User"
FALLBACK_GROUP_NAME = "LINE Group"

WELCOME_USER = (
    "🎉 ยินดีต้อนรับสู่ระบบแจ้งเตือน QA โรงพยาบาลหนองบัวลำภู!\n\n"
    "คุณจะได้รับการแจ้งเตือนเมื่อ:\n"
    "✅ มีการลงข้อมูล QA ใหม่\n"
    "✅ ใกล้ครบกำหนดลงข้อมูลประจำเดือน\n\n"
    "ขอบคุณครับ 🙏"
)
WELCOME_GROUP = (
    "🎉 สวัสดีครับ! Bot แจ้งเตือน QA โรงพยาบาลหนองบัวลำภู พร้อมให้บริการแล้ว\n\n"
    "กลุ่มนี้จะได้รับการแจ้งเตือน:\n"
    "✅ เมื่อมีการลงข้อมูล QA ใหม่\n"
    "✅ ใกล้ครบกำหนดลงข้อมูลประจำเดือน\n\n"
    "ขอบคุณครับ 🙏"
)
TEST_REPLY = "✅ ระบบแจ้งเตือน QA ทำงานปกติครับ!"

TEST_COMMANDS = ("test", "ทดสอบ")
STATUS_COMMANDS = ("status", "สถานะ")
ID_COMMAND = "!id"


@dataclass
class Recipient:
    id: str
    type: str
    display_name: str
    added_at: str

    @classmethod
    def from_dict(cls, data: dict) -> "Recipient":
        return cls(
            id=data["id"],
            type=data.get("type", USER),
            display_name=data.get("displayName", ""),
            added_at=data.get("addedAt", ""),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "displayName": self.display_name,
            "addedAt": self.added_at,
        }


def default_recipients() -> dict:
    return {"users": [], "groups": []}


def _bucket(recipient_type: str) -> str:
    return "users" if recipient_type == USER else "groups"


def _find(doc: dict, recipient_id: str, recipient_type: str) -> Optional[dict]:
    for entry in doc.get(_bucket(recipient_type), []):
        if entry.get("id") == recipient_id:
            return entry
    return None


# ============================================================
# REGISTRY
# ============================================================

def list_recipients(db: Session) -> dict:
    """{"users": [...], "groups": [...], "updatedAt": ...}"""
    return get_document(db, RECIPIENTS_KEY, default_recipients)


def resolve_targets(recipients: dict, target_type: str = "all") -> List[str]:
    """Recipient ids for a target scope: all, users or groups."""
    targets = []
    if target_type in ("all", "users"):
        targets.extend(u["id"] for u in recipients.get("users", []))
    if target_type in ("all", "groups"):
        targets.extend(g["id"] for g in recipients.get("groups", []))
    return targets


def add_recipient(
    db: Session,
    recipient_id: str,
    recipient_type: str,
    display_name: Optional[str] = None,
) -> Recipient:
    """Register a recipient. Raises ValidationError if the id is already present."""
    validate_recipient(recipient_id, recipient_type).raise_if_invalid()

    recipient = Recipient(
        id=recipient_id,
        type=recipient_type,
        display_name=display_name or ("Manual User" if recipient_type == USER else "Manual Group"),
        added_at=isoformat(utc_now()),
    )

    def apply(doc):
        if _find(doc, recipient_id, recipient_type) is not None:
            label = "User" if recipient_type == USER else "Group"
            raise ValidationError(f"{label} already exists", field="id")
        doc.setdefault(_bucket(recipient_type), []).append(recipient.to_dict())

    update_document(db, RECIPIENTS_KEY, apply, default_recipients)
    logger.info(f"Added LINE {recipient_type} {recipient.display_name} ({recipient_id})")
    return recipient


def remove_recipient(db: Session, recipient_id: str, recipient_type: str) -> Optional[Recipient]:
    """Remove a recipient. Returns the removed entry, or None if it was not registered."""
    validate_recipient(recipient_id, recipient_type).raise_if_invalid()

    def apply(doc):
        entry = _find(doc, recipient_id, recipient_type)
        if entry is None:
            return None
        doc[_bucket(recipient_type)].remove(entry)
        return Recipient.from_dict(entry)

    _, removed = update_document(db, RECIPIENTS_KEY, apply, default_recipients)
    if removed is not None:
        logger.info(f"Removed LINE {recipient_type} {removed.display_name} ({recipient_id})")
    return removed


def _insert_if_absent(db: Session, recipient: Recipient) -> bool:
    def apply(doc):
        if _find(doc, recipient.id, recipient.type) is not None:
            return False
        doc.setdefault(_bucket(recipient.type), []).append(recipient.to_dict())
        return True

    _, inserted = update_document(db, RECIPIENTS_KEY, apply, default_recipients)
    return inserted


# ============================================================
# WEBHOOK EVENTS
# ============================================================

def _lookup_name(client: Optional[LineClient], recipient_id: str, recipient_type: str) -> str:
    """Display name from LINE, or a placeholder if the lookup fails."""
    fallback = FALLBACK_USER_NAME if recipient_type == USER else FALLBACK_GROUP_NAME
    if client is None:
        return fallback
    try:
        if recipient_type == USER:
            return client.get_user_profile(recipient_id).get("displayName") or "Unknown User"
        return client.get_group_summary(recipient_id).get("groupName") or "Unknown Group"
    except ExternalServiceError as e:
        logger.warning(f"Could not look up LINE {recipient_type} {recipient_id}: {e.message}")
        return fallback


def _reply(client: Optional[LineClient], reply_token: Optional[str], text: str) -> bool:
    """Best-effort reply; failures are logged only."""
    if client is None or not reply_token:
        return False
    try:
        client.reply_message(reply_token, text)
        return True
    except ExternalServiceError as e:
        logger.warning(f"LINE reply failed: {e.message}")
        return False


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _on_join(db: Session, client: Optional[LineClient], event: dict, recipient_type: str, tally: dict) -> None:
    source = _as_dict(event.get("source"))
    recipient_id = source.get("userId") if recipient_type == USER else source.get("groupId")
    if not recipient_id:
        tally["ignored"] += 1
        return

    if _find(list_recipients(db), recipient_id, recipient_type) is not None:
        return

    recipient = Recipient(
        id=recipient_id,
        type=recipient_type,
        display_name=_lookup_name(client, recipient_id, recipient_type),
        added_at=isoformat(utc_now()),
    )
    if not _insert_if_absent(db, recipient):
        return

    tally["added"] += 1
    logger.info(f"LINE {recipient_type} registered: {recipient.display_name} ({recipient_id})")

    welcome = WELCOME_USER if recipient_type == USER else WELCOME_GROUP
    if _reply(client, event.get("replyToken"), welcome):
        tally["replied"] += 1


def _on_leave(db: Session, event: dict, recipient_type: str, tally: dict) -> None:
    source = _as_dict(event.get("source"))
    recipient_id = source.get("userId") if recipient_type == USER else source.get("groupId")
    if not recipient_id:
        tally["ignored"] += 1
        return

    if remove_recipient(db, recipient_id, recipient_type) is not None:
        tally["removed"] += 1


def _on_message(db: Session, client: Optional[LineClient], event: dict, tally: dict) -> None:
    message = _as_dict(event.get("message"))
    if message.get("type") != "text" or not isinstance(message.get("text"), str) or not message["text"]:
        return

    text = message["text"].strip().lower()
    source = _as_dict(event.get("source"))

    if text in TEST_COMMANDS:
        reply = TEST_REPLY
    elif text in STATUS_COMMANDS:
        current = list_recipients(db)
        reply = (
            "📊 สถานะระบบแจ้งเตือน QA\n\n"
            f"👤 ผู้รับแจ้งเตือน: {len(current['users'])} คน\n"
            f"👥 กลุ่ม: {len(current['groups'])} กลุ่ม\n\n"
            "✅ ระบบพร้อมใช้งาน"
        )
    elif text == ID_COMMAND:
        target_id = source.get("groupId") or source.get("userId")
        reply = f"🆔 ID ของกลุ่มนี้คือ:\n\n{target_id}\n\n(ก๊อปปี้ไปใส่ในระบบ Admin ได้เลยครับ)"
    else:
        return

    if _reply(client, event.get("replyToken"), reply):
        tally["replied"] += 1


def handle_webhook_events(db: Session, events: List[dict], client: Optional[LineClient] = None) -> Dict[str, int]:
    """
    Apply webhook events in order.

    follow/join register the user or group (once per id), unfollow/leave
    remove it, text messages answer the test, status and !id commands.
    Anything else is ignored. Returns a tally of what happened.

    Raises ValidationError unless ``events`` is a list of objects.
    """
    if not isinstance(events, list) or not all(isinstance(event, dict) for event in events):
        raise ValidationError("Malformed webhook body")

    tally = {"processed": 0, "added": 0, "removed": 0, "replied": 0, "ignored": 0}

    for event in events:
        tally["processed"] += 1
        event_type = event.get("type")

        if event_type == "follow":
            _on_join(db, client, event, USER, tally)
        elif event_type == "join":
            _on_join(db, client, event, GROUP, tally)
        elif event_type == "unfollow":
            _on_leave(db, event, USER, tally)
        elif event_type == "leave":
            _on_leave(db, event, GROUP, tally)
        elif event_type == "message":
            _on_message(db, client, event, tally)
        else:
            tally["ignored"] += 1

    logger.info(f"LINE webhook processed: {tally}")
    return tally
