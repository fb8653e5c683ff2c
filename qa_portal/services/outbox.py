"""
Notification outbox.

Saving a QA record only writes a ``data_entry`` intent; delivery happens
later in ``drain_outbox`` (request background task or the scheduler's
interval job). Failed deliveries are retried up to OUTBOX_MAX_ATTEMPTS.
"""

import logging
import os
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qa_portal.departments import group_label
from qa_portal.errors import ConfigurationError, QAError
from qa_portal.line_client import LineClient
from qa_portal.models import NotificationIntent, QARecord
from qa_portal.services.notifications import TYPE_DATA_ENTRY, DispatchResult, send_notification
from qa_portal.services.settings_store import get_line_settings, get_notification_settings
from qa_portal.time_config import to_local, utc_naive

logger = logging.getLogger(__name__)

DRAIN_BATCH_SIZE = 50

Sender = Callable[[str, Dict, datetime], DispatchResult]


def max_attempts_from_env() -> int:
    return int(os.getenv("OUTBOX_MAX_ATTEMPTS", "3"))


def data_entry_enabled(db: Session) -> bool:
    if not get_line_settings(db).get("enabled"):
        return False
    return bool(get_notification_settings(db).get("onDataEntry", {}).get("enabled"))


def enqueue_data_entry(db: Session, record: QARecord) -> Optional[NotificationIntent]:
    """
    Queue a data-entry notice for a saved record.

    Returns None when notifications are off. A failure to queue is logged
    and does not affect the save, which has already been committed.
    """
    if not data_entry_enabled(db):
        return None

    intent = NotificationIntent(
        kind=TYPE_DATA_ENTRY,
        payload={
            "departmentId": record.department_id,
            "departmentGroup": group_label(record.department_id),
            "departmentName": record.department_name,
            "fiscalYear": record.fiscal_year,
            "month": record.month,
        },
        status=NotificationIntent.STATUS_PENDING,
        attempts=0,
        created_at=utc_naive(),
    )
    try:
        db.add(intent)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to queue data-entry notice for {record.record_key}: {e}")
        return None

    logger.info(f"Queued data-entry notice {intent.id} for {record.record_key}")
    return intent


def outbox_sender(db: Session, client: Optional[LineClient] = None) -> Sender:
    def send(kind, payload, created_at):
        return send_notification(db, kind, payload, client=client, now=created_at)
    return send


def _deliver(intent: NotificationIntent, sender: Sender, max_attempts: int) -> str:
    """Try one intent, update its fields, and return the tally bucket."""
    intent.attempts = (intent.attempts or 0) + 1

    try:
        result = sender(intent.kind, intent.payload or {}, to_local(intent.created_at))
    except ConfigurationError as e:
        intent.status = NotificationIntent.STATUS_FAILED
        intent.last_error = e.message
        intent.processed_at = utc_naive()
        logger.warning(f"Notification {intent.id} dropped: {e.message}")
        return "failed"
    except QAError as e:
        error = e.message
    except Exception as e:
        logger.exception(f"Notification {intent.id} sender raised unexpectedly")
        error = str(e) or type(e).__name__
    else:
        if result.success > 0:
            intent.status = NotificationIntent.STATUS_SENT
            intent.last_error = None
            intent.processed_at = utc_naive()
            logger.info(f"Notification {intent.id} delivered to {result.success}/{result.total} recipients")
            return "sent"
        error = "; ".join(f"{target}: {message}" for target, message in result.failures) or "No deliveries"

    intent.last_error = error
    if intent.attempts >= max_attempts:
        intent.status = NotificationIntent.STATUS_FAILED
        intent.processed_at = utc_naive()
        logger.error(f"Notification {intent.id} failed after {intent.attempts} attempts: {error}")
        return "failed"

    logger.warning(f"Notification {intent.id} attempt {intent.attempts}/{max_attempts} failed: {error}")
    return "retrying"


def drain_outbox(
    db: Session,
    sender: Optional[Sender] = None,
    max_attempts: Optional[int] = None,
    limit: int = DRAIN_BATCH_SIZE,
) -> Dict[str, int]:
    """
    Deliver pending intents, oldest first.

    Returns {"processed", "sent", "failed", "retrying"}. Intents are claimed
    one at a time: each is row-locked (skipping rows another drain holds),
    delivered, and committed before the next is selected. An intent is tried
    at most once per drain.
    """
    if sender is None:
        sender = outbox_sender(db)
    if max_attempts is None:
        max_attempts = max_attempts_from_env()

    tally = {"processed": 0, "sent": 0, "failed": 0, "retrying": 0}

    seen = []
    try:
        while tally["processed"] < limit:
            query = db.query(NotificationIntent).filter(
                NotificationIntent.status == NotificationIntent.STATUS_PENDING
            )
            if seen:
                query = query.filter(NotificationIntent.id.notin_(seen))
            intent = (
                query.order_by(NotificationIntent.created_at, NotificationIntent.id)
                .with_for_update(skip_locked=True)
                .first()
            )
            if intent is None:
                break

            seen.append(intent.id)
            bucket = _deliver(intent, sender, max_attempts)
            db.commit()
            tally["processed"] += 1
            tally[bucket] += 1
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Outbox drain failed: {e}")
        raise

    if tally["processed"]:
        logger.info(f"Outbox drained: {tally}")
    return tally
