import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from qa_portal.auth import require_admin
from qa_portal.database import get_db
from qa_portal.errors import ConfigurationError, ValidationError
from qa_portal.line_client import LineClient, get_client_factory
from qa_portal.services.settings_store import (
    get_access_token,
    get_line_settings,
    get_notification_settings,
    masked_line_settings,
    save_line_settings,
    save_notification_settings,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class PushRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    target_id: Optional[str] = Field(None, alias="targetId")
    token: Optional[str] = None


@router.get("/settings")
async def get_settings(
    type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    session: dict = Depends(require_admin),
):
    """``type`` = line | notification; anything else returns both."""
    if type == "line":
        return {"success": True, "data": masked_line_settings(get_line_settings(db))}
    if type == "notification":
        return {"success": True, "data": get_notification_settings(db)}

    return {
        "success": True,
        "data": {
            "line": masked_line_settings(get_line_settings(db)),
            "notification": get_notification_settings(db),
        },
    }


@router.post("/settings")
async def save_settings(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    session: dict = Depends(require_admin),
):
    settings_type = payload.get("type")
    updates = {key: value for key, value in payload.items() if key != "type"}

    if settings_type == "line":
        saved = save_line_settings(db, updates)
        return {
            "success": True,
            "message": "บันทึกการตั้งค่า LINE สำเร็จ",
            "data": masked_line_settings(saved),
        }

    if settings_type == "notification":
        saved = save_notification_settings(db, updates)
        return {
            "success": True,
            "message": "บันทึกการตั้งค่าแจ้งเตือนสำเร็จ",
            "data": saved,
        }

    raise ValidationError("Invalid settings type", field="type")


@router.post("/send-push")
def send_push(
    payload: PushRequest,
    db: Session = Depends(get_db),
    make_client: Callable[[str], LineClient] = Depends(get_client_factory),
    session: dict = Depends(require_admin),
):
    """Push one message to one user or group. Uses the configured token unless one is given."""
    if not payload.message or not payload.target_id:
        raise ValidationError("Missing required fields: message or targetId")

    token = payload.token or get_access_token(db)
    if not token:
        raise ConfigurationError("LINE Channel Access Token not configured")

    make_client(token).push_message(payload.target_id, payload.message)
    logger.info(f"Direct push sent to {payload.target_id}")
    return {"success": True, "message": "Message sent successfully"}
