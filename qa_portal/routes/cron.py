from typing import Callable

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from qa_portal.database import get_db
from qa_portal.line_client import LineClient, get_client_factory
from qa_portal.services.reminder import reminder_sender, run_reminder_check
from qa_portal.services.settings_store import get_access_token

router = APIRouter(prefix="/api/cron", tags=["cron"])


def _run(db: Session, make_client: Callable[[str], LineClient], force: bool, check_only: bool) -> dict:
    sender = reminder_sender(db, make_client(get_access_token(db)))
    return run_reminder_check(db, force=force, check_only=check_only, sender=sender).to_dict()


@router.get("/reminder")
def reminder(
    force: bool = Query(False),
    check: bool = Query(False),
    db: Session = Depends(get_db),
    make_client: Callable[[str], LineClient] = Depends(get_client_factory),
):
    """Hourly reminder check. ``force`` ignores the schedule, ``check`` only lists pending departments."""
    return _run(db, make_client, force=force, check_only=check)


@router.post("/reminder")
def reminder_now(
    check: bool = Query(False),
    db: Session = Depends(get_db),
    make_client: Callable[[str], LineClient] = Depends(get_client_factory),
):
    """Manual trigger: same as GET with force=true."""
    return _run(db, make_client, force=True, check_only=check)
