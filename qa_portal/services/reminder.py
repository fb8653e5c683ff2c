"""
Monthly reminder for departments that have not submitted QA data.

Run hourly (scheduler job or ``/api/cron/reminder``). On the configured day
and hour it lists the roster departments with no record for the current
fiscal month and pushes one reminder to every recipient.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from qa_portal.departments import GROUP_LABELS, iter_roster
from qa_portal.errors import QAError
from qa_portal.line_client import LineClient
from qa_portal.services import qa_store
from qa_portal.services.fiscal import current_fiscal_period
from qa_portal.services.notifications import TYPE_REMINDER, DispatchResult, send_notification
from qa_portal.services.settings_store import get_line_settings, get_notification_settings
from qa_portal.services.validators import parse_reminder_hour
from qa_portal.time_config import local_now, to_local

logger = logging.getLogger(__name__)

STATE_DISABLED = "disabled"
STATE_WRONG_DAY = "wrong-day"
STATE_WRONG_HOUR = "wrong-hour"
STATE_ALL_SUBMITTED = "all-submitted"
STATE_CHECK_ONLY = "check-only"
STATE_DISPATCHED = "dispatched"

Sender = Callable[[List[dict], int, str], DispatchResult]


@dataclass
class ReminderOutcome:
    state: str
    success: bool
    message: str
    fiscal_year: Optional[int] = None
    month: Optional[str] = None
    pending: List[dict] = field(default_factory=list)
    notification_sent: Optional[bool] = None
    details: Optional[dict] = None

    @property
    def skipped(self) -> bool:
        return self.state in (STATE_DISABLED, STATE_WRONG_DAY, STATE_WRONG_HOUR)

    def to_dict(self) -> dict:
        response = {"success": self.success, "message": self.message, "state": self.state}
        if self.skipped:
            response["skipped"] = True
            return response

        data = {
            "fiscalYear": self.fiscal_year,
            "month": self.month,
            "pendingCount": len(self.pending),
        }
        if self.pending:
            data["pendingDepartments"] = self.pending
        if self.notification_sent is not None:
            data["notificationSent"] = self.notification_sent
        if self.details is not None:
            data["details"] = self.details
        response["data"] = data
        return response


def find_pending_departments(db: Session, fiscal_year: int, month: str) -> List[Dict[str, str]]:
    """Roster departments with no record for (fiscal_year, month), in roster order."""
    submitted = {r.department_id for r in qa_store.get_all(db, fiscal_year) if r.month == month}

    return [
        {"group": GROUP_LABELS[group], "name": dept["name"], "id": dept["id"]}
        for group, dept in iter_roster()
        if dept["id"] not in submitted
    ]


def reminder_sender(db: Session, client: Optional[LineClient] = None) -> Sender:
    def send(pending, fiscal_year, month):
        payload = {"pendingDepartments": pending, "fiscalYear": fiscal_year, "month": month}
        return send_notification(db, TYPE_REMINDER, payload, client=client)
    return send


def run_reminder_check(
    db: Session,
    now: Optional[datetime] = None,
    force: bool = False,
    check_only: bool = False,
    sender: Optional[Sender] = None,
) -> ReminderOutcome:
    """
    Evaluate the reminder schedule and send if due.

    ``force`` skips the day/hour check, ``check_only`` lists pending
    departments without sending. ``now`` is taken as local time when naive.
    """
    if now is None:
        now = local_now()
    elif now.tzinfo is not None:
        now = to_local(now)

    reminder = get_notification_settings(db).get("reminder", {})
    if not reminder.get("enabled"):
        return ReminderOutcome(STATE_DISABLED, False, "Reminder notification is disabled")

    if not get_line_settings(db).get("enabled"):
        return ReminderOutcome(STATE_DISABLED, False, "LINE notification is disabled")

    if not force:
        day = int(reminder.get("dayOfMonth", 25))
        if now.day != day:
            return ReminderOutcome(
                STATE_WRONG_DAY, False, f"Today is not reminder day ({now.day} vs {day})"
            )

        hour = parse_reminder_hour(reminder.get("time", "09:00"))
        if now.hour != hour:
            return ReminderOutcome(
                STATE_WRONG_HOUR, False, f"Not reminder time yet ({now.hour}:00 vs {hour}:00)"
            )

    period = current_fiscal_period(now)
    pending = find_pending_departments(db, period.fiscal_year, period.month)

    if not pending:
        logger.info(f"Reminder check: all departments submitted for {period.month} {period.fiscal_year}")
        return ReminderOutcome(
            STATE_ALL_SUBMITTED, True, "All departments have submitted data!",
            fiscal_year=period.fiscal_year, month=period.month,
        )

    if check_only:
        return ReminderOutcome(
            STATE_CHECK_ONLY, True, f"Found {len(pending)} pending departments",
            fiscal_year=period.fiscal_year, month=period.month, pending=pending,
        )

    if sender is None:
        sender = reminder_sender(db)

    try:
        result = sender(pending, period.fiscal_year, period.month)
        sent = result.success > 0
        details = result.to_dict()
    except QAError as e:
        logger.error(f"Reminder dispatch failed: {e.message}")
        sent = False
        details = {"error": e.message}

    logger.info(f"Reminder for {len(pending)} pending departments, sent={sent}")
    return ReminderOutcome(
        STATE_DISPATCHED,
        sent,
        f"Reminder sent for {len(pending)} pending departments" if sent else "Failed to send reminder",
        fiscal_year=period.fiscal_year,
        month=period.month,
        pending=pending,
        notification_sent=sent,
        details=details,
    )
