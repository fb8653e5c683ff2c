"""
LINE notification messages and fan-out.

Builds the Thai-language message for each notification type and pushes
it to every registered recipient in parallel. One recipient failing
never stops delivery to the others; the caller gets a tally.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from qa_portal.errors import ConfigurationError, ExternalServiceError, NoRecipientsError, ValidationError
from qa_portal.line_client import LineClient
from qa_portal.services.recipients import list_recipients, resolve_targets
from qa_portal.services.settings_store import get_access_token, get_line_settings
from qa_portal.services.validators import validate_target_type
from qa_portal.time_config import format_thai_datetime, local_now

logger = logging.getLogger(__name__)

TYPE_DATA_ENTRY = "data_entry"
TYPE_REMINDER = "reminder"
TYPE_CUSTOM = "custom"
MESSAGE_TYPES = (TYPE_DATA_ENTRY, TYPE_REMINDER, TYPE_CUSTOM)

REMINDER_LIST_LIMIT = 10
DIVIDER = "━━━━━━━━━━━━━━━━━━"


@dataclass
class DispatchResult:
    total: int = 0
    success: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"total": self.total, "success": self.success, "failed": self.failed}


# ============================================================
# MESSAGE BUILDERS
# ============================================================

def build_data_entry_message(
    department_group: Optional[str] = None,
    department_name: Optional[str] = None,
    fiscal_year=None,
    month: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    if now is None:
        now = local_now()
    return (
        "🔔 แจ้งเตือนการบันทึกข้อมูล QA\n"
        "\n"
        "📊 มีการลงข้อมูลใหม่!\n"
        f"{DIVIDER}\n"
        f"🏥 กลุ่มแผนก: {department_group or '-'}\n"
        f"🏢 แผนก: {department_name or '-'}\n"
        f"📅 ปีงบประมาณ: {fiscal_year or '-'}\n"
        f"📆 เดือน: {month or '-'}\n"
        f"⏰ เวลา: {format_thai_datetime(now)}\n"
        f"{DIVIDER}\n"
        "✅ บันทึกข้อมูลเรียบร้อยแล้ว"
    )


def format_pending_list(pending: Sequence[dict], limit: int = REMINDER_LIST_LIMIT) -> str:
    """Numbered "group - name" lines, capped at ``limit``."""
    if not pending:
        return "(ไม่พบรายการ)"

    lines = [f"{i}. {dept.get('group', '-')} - {dept.get('name', '-')}" for i, dept in enumerate(pending[:limit], 1)]
    if len(pending) > limit:
        lines.append(f"... และอีก {len(pending) - limit} แผนก")
    return "\n".join(lines)


def build_reminder_message(pending: Sequence[dict], fiscal_year=None, month: Optional[str] = None) -> str:
    return (
        "⏰ แจ้งเตือนการลงข้อมูล QA\n"
        "\n"
        "📋 รายการที่ยังไม่ได้ลงข้อมูล\n"
        f"{DIVIDER}\n"
        f"{format_pending_list(pending)}\n"
        f"{DIVIDER}\n"
        f"📅 ปีงบประมาณ: {fiscal_year or '-'}\n"
        f"📆 เดือน: {month or '-'}\n"
        "\n"
        "📝 รบกวนลงบันทึกข้อมูลตัวชี้วัด\n"
        "ประจำเดือน ด้วยครับ 🙏"
    )


def build_custom_message(text: Optional[str]) -> str:
    if not text or not text.strip():
        return "ไม่มีข้อความ"
    return text


def build_message(message_type: str, payload: Dict, now: Optional[datetime] = None) -> str:
    """
    Message text for a notification type.

    payload keys (camelCase, as sent by clients): departmentGroup,
    departmentName, fiscalYear, month, pendingDepartments, customMessage.
    """
    if message_type == TYPE_DATA_ENTRY:
        return build_data_entry_message(
            department_group=payload.get("departmentGroup"),
            department_name=payload.get("departmentName"),
            fiscal_year=payload.get("fiscalYear"),
            month=payload.get("month"),
            now=now,
        )
    if message_type == TYPE_REMINDER:
        return build_reminder_message(
            payload.get("pendingDepartments") or [],
            fiscal_year=payload.get("fiscalYear"),
            month=payload.get("month"),
        )
    if message_type == TYPE_CUSTOM:
        return build_custom_message(payload.get("customMessage"))
    raise ValidationError("Invalid message type", field="type")


# ============================================================
# DISPATCH
# ============================================================

def _max_workers() -> int:
    return int(os.getenv("NOTIFY_MAX_WORKERS", "8"))


def dispatch(
    targets: Sequence[str],
    message: str,
    push: Callable[[str, str], None],
    max_workers: Optional[int] = None,
) -> DispatchResult:
    """
    Push ``message`` to every target concurrently.

    Each delivery is independent: any error for one target is logged and
    counted as a failure, the rest still go out. Waits for all deliveries.
    """
    result = DispatchResult(total=len(targets))
    if not targets:
        return result

    workers = max(1, min(max_workers or _max_workers(), len(targets)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [(target, executor.submit(push, target, message)) for target in targets]

        for target, future in futures:
            try:
                future.result()
                result.success += 1
            except ExternalServiceError as e:
                result.failed += 1
                result.failures.append((target, e.message))
                logger.error(f"LINE push to {target} failed: {e.message}")
            except Exception as e:
                result.failed += 1
                result.failures.append((target, str(e)))
                logger.exception(f"LINE push to {target} raised unexpectedly")

    logger.info(f"LINE notification sent: {result.success} success, {result.failed} failed")
    return result


def require_line_enabled(db: Session) -> str:
    """Access token for sending. Raises ConfigurationError if LINE is off or unconfigured."""
    settings = get_line_settings(db)
    if not settings.get("enabled"):
        raise ConfigurationError("LINE notification is disabled")

    token = get_access_token(db, settings)
    if not token:
        raise ConfigurationError("LINE Channel Access Token not configured")
    return token


def send_notification(
    db: Session,
    message_type: str,
    payload: Optional[Dict] = None,
    target_type: str = "all",
    client: Optional[LineClient] = None,
    max_workers: Optional[int] = None,
    now: Optional[datetime] = None,
) -> DispatchResult:
    """
    Build a message and push it to the registered recipients.

    Raises ConfigurationError when LINE is disabled or has no token,
    ValidationError for an unknown type or target scope, and
    NoRecipientsError when nobody would receive it. None of these touch
    the network.
    """
    token = require_line_enabled(db)
    message = build_message(message_type, payload or {}, now=now)
    validate_target_type(target_type).raise_if_invalid()

    targets = resolve_targets(list_recipients(db), target_type)
    if not targets:
        raise NoRecipientsError("No recipients found. Please add LINE Bot as friend or invite to group.")

    if client is None:
        client = LineClient(token)

    return dispatch(targets, message, client.push_message, max_workers=max_workers)
