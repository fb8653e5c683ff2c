import json
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from qa_portal.auth import require_admin
from qa_portal.crypto_utils import verify_line_signature
from qa_portal.database import get_db
from qa_portal.errors import ExternalServiceError, NoRecipientsError, NotFoundError, QAError, ValidationError
from qa_portal.line_client import LineClient, get_client_factory, get_line_client
from qa_portal.services import recipients as registry
from qa_portal.services.notifications import send_notification
from qa_portal.services.settings_store import (
    get_access_token,
    get_channel_secret,
    get_line_settings,
    record_test_result,
)
from qa_portal.time_config import format_thai_datetime, isoformat, local_now, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/line", tags=["line"])

TEST_MESSAGE = (
    "🧪 ทดสอบการแจ้งเตือน\n"
    "\n"
    "━━━━━━━━━━━━━━━━━━\n"
    "✅ ระบบแจ้งเตือน QA ทำงานปกติ\n"
    "⏰ เวลา: {time}\n"
    "━━━━━━━━━━━━━━━━━━\n"
    "\n"
    "ข้อความนี้ส่งจากระบบ QA \n"
    "โรงพยาบาลหนองบัวลำภู"
)


class SendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Optional[str] = None
    target_type: str = Field("all", alias="targetType")
    department_group: Optional[str] = Field(None, alias="departmentGroup")
    department_name: Optional[str] = Field(None, alias="departmentName")
    fiscal_year: Optional[Any] = Field(None, alias="fiscalYear")
    month: Optional[str] = None
    pending_departments: Optional[List[Dict[str, Any]]] = Field(None, alias="pendingDepartments")
    custom_message: Optional[str] = Field(None, alias="customMessage")


class TestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    test_type: Optional[str] = Field(None, alias="testType")
    target_id: Optional[str] = Field(None, alias="targetId")


class RecipientRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    type: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")


# ============================================================
# SEND
# ============================================================

@router.post("/send")
def send(
    payload: SendRequest,
    db: Session = Depends(get_db),
    make_client: Callable[[str], LineClient] = Depends(get_client_factory),
    session: dict = Depends(require_admin),
):
    """Push a data-entry, reminder or custom message to the registered recipients."""
    result = send_notification(
        db,
        payload.type,
        payload.model_dump(by_alias=True, exclude={"type", "target_type"}),
        target_type=payload.target_type,
        client=make_client(get_access_token(db)),
    )
    return {
        "success": True,
        "message": f"Sent to {result.success}/{result.total} recipients",
        "details": result.to_dict(),
    }


# ============================================================
# CONNECTION TEST
# ============================================================

@router.get("/test")
async def test_status(db: Session = Depends(get_db), session: dict = Depends(require_admin)):
    settings = get_line_settings(db)
    current = registry.list_recipients(db)
    return {
        "success": True,
        "data": {
            "enabled": bool(settings.get("enabled")),
            "hasToken": bool(settings.get("channelAccessToken")),
            "lastTestedAt": settings.get("lastTestedAt"),
            "testStatus": settings.get("testStatus"),
            "botInfo": settings.get("botInfo"),
            "recipientsCount": {
                "users": len(current.get("users", [])),
                "groups": len(current.get("groups", [])),
            },
        },
    }


@router.post("/test")
def run_test(
    payload: TestRequest,
    db: Session = Depends(get_db),
    make_client: Callable[[str], LineClient] = Depends(get_client_factory),
    session: dict = Depends(require_admin),
):
    """``connection`` (default) checks the token; ``send`` pushes a test message."""
    client = get_line_client(db, make_client)
    test_type = payload.test_type or "connection"

    if test_type == "connection":
        try:
            info = client.get_bot_info()
        except ExternalServiceError as e:
            record_test_result(db, "failed", error=e.message)
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": "Token ไม่ถูกต้องหรือหมดอายุ", "error": e.message},
            )

        bot_info = {
            "displayName": info.get("displayName"),
            "userId": info.get("userId"),
            "pictureUrl": info.get("pictureUrl"),
        }
        record_test_result(db, "success", bot_info=bot_info)
        return {"success": True, "message": "เชื่อมต่อสำเร็จ!", "botInfo": bot_info}

    if test_type == "send":
        target = payload.target_id
        if not target:
            targets = registry.resolve_targets(registry.list_recipients(db))
            if not targets:
                raise NoRecipientsError("ไม่มีผู้รับข้อความ กรุณา Add LINE Bot เป็นเพื่อน หรือเชิญเข้ากลุ่มก่อน")
            target = targets[0]

        try:
            client.push_message(target, TEST_MESSAGE.format(time=format_thai_datetime(local_now())))
        except ExternalServiceError as e:
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": "ส่งข้อความทดสอบไม่สำเร็จ", "error": e.message},
            )
        return {"success": True, "message": "ส่งข้อความทดสอบสำเร็จ! ตรวจสอบ LINE ของคุณ"}

    raise ValidationError("Invalid test type", field="testType")


# ============================================================
# RECIPIENTS
# ============================================================

@router.get("/recipients")
async def get_recipients(db: Session = Depends(get_db), session: dict = Depends(require_admin)):
    return {"success": True, "data": registry.list_recipients(db)}


@router.post("/recipients")
async def add_recipient(
    payload: RecipientRequest,
    db: Session = Depends(get_db),
    session: dict = Depends(require_admin),
):
    recipient = registry.add_recipient(db, payload.id, payload.type, payload.display_name)
    return {"success": True, "message": "Recipient added", "data": recipient.to_dict()}


@router.delete("/recipients")
async def remove_recipient(
    payload: RecipientRequest,
    db: Session = Depends(get_db),
    session: dict = Depends(require_admin),
):
    removed = registry.remove_recipient(db, payload.id, payload.type)
    if removed is None:
        raise NotFoundError("User not found" if payload.type == registry.USER else "Group not found")

    label = "ผู้ใช้" if removed.type == registry.USER else "กลุ่ม"
    return {"success": True, "message": f"ลบ{label} {removed.display_name} แล้ว"}


# ============================================================
# WEBHOOK
# ============================================================

@router.get("/webhook")
async def webhook_ready():
    return {
        "status": "ok",
        "message": "LINE Webhook endpoint is ready",
        "timestamp": isoformat(utc_now()),
    }


@router.post("/webhook")
async def webhook(
    request: Request,
    db: Session = Depends(get_db),
    make_client: Callable[[str], LineClient] = Depends(get_client_factory),
):
    """
    LINE life-cycle events.

    The X-Line-Signature header is checked whenever a channel secret is
    configured; without one, events are accepted unverified.
    """
    body = await request.body()
    return await run_in_threadpool(_process_webhook, db, make_client, body, request.headers.get("x-line-signature", ""))


def _process_webhook(db: Session, make_client: Callable[[str], LineClient], body: bytes, signature: str) -> dict:
    settings = get_line_settings(db)

    secret = get_channel_secret(db, settings)
    if secret and not verify_line_signature(body, signature, secret):
        logger.warning("LINE webhook rejected: invalid signature")
        raise QAError("Invalid signature", http_status=401)

    try:
        events = json.loads(body or b"{}").get("events", [])
    except (ValueError, AttributeError):
        raise ValidationError("Malformed webhook body")

    token = get_access_token(db, settings)
    client = make_client(token) if token else None

    tally = registry.handle_webhook_events(db, events, client)
    return {"success": True, **tally}
