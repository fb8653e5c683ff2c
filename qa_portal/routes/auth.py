import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from qa_portal.auth import (
    authenticate,
    clear_session_cookie,
    create_session_token,
    get_current_session,
    set_session_cookie,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


@router.post("/login")
async def login(data: LoginRequest):
    """Check department/admin credentials and start a session."""
    session = authenticate(data.username, data.password)
    if not session:
        logger.warning(f"Failed login for {data.username}")
        raise HTTPException(status_code=401, detail="Invalid username or password")

    token = create_session_token(data.username)
    response = JSONResponse({"success": True, **session, "token": token})
    return set_session_cookie(response, token)


@router.post("/logout")
async def logout():
    response = JSONResponse({"success": True})
    clear_session_cookie(response)
    return response


@router.get("/me")
async def me(session: dict = Depends(get_current_session)):
    return {"success": True, "authenticated": session is not None, "session": session}
