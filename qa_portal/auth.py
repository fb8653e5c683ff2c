import json
import logging
import os
from datetime import datetime
from typing import Dict, Optional

from fastapi import HTTPException, Request, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# Session serializer
SECRET_KEY = os.getenv("SECRET_KEY", "qa-portal-secret-key-change-in-production-min-32-chars")
SESSION_EXPIRE_MINUTES = int(os.getenv("SESSION_EXPIRE_MINUTES", "480"))
SESSION_COOKIE = "session"
serializer = URLSafeTimedSerializer(SECRET_KEY, salt="qa-portal-session")

ADMIN_USERNAME = "ADMIN"
ROLE_ADMIN = "admin"
ROLE_DEPARTMENT = "department"


def hash_password(password: str) -> str:
    """Hash a password for storing."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a stored password against one provided by user."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognised or malformed hash
        return False


def credentials_path() -> str:
    return os.getenv("QA_CREDENTIALS_PATH", "credentials.json")


def load_credentials(path: Optional[str] = None) -> Dict[str, str]:
    """Username -> password hash. Missing file means nobody can log in."""
    path = path or credentials_path()
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.warning(f"Credentials file {path} not found; logins will fail")
        return {}


def role_for(username: str) -> str:
    return ROLE_ADMIN if username == ADMIN_USERNAME else ROLE_DEPARTMENT


def authenticate(username: str, password: str, credentials: Optional[Dict[str, str]] = None) -> Optional[dict]:
    """Return the session payload for valid credentials, else None."""
    if credentials is None:
        credentials = load_credentials()
    hashed = credentials.get(username)
    if not hashed or not verify_password(password, hashed):
        return None
    return {"username": username, "role": role_for(username)}


def create_session_token(username: str) -> str:
    """Create a session token for a department or the admin."""
    data = {
        "username": username,
        "role": role_for(username),
        "created": datetime.utcnow().isoformat(),
    }
    return serializer.dumps(data)


def decode_session_token(token: str) -> Optional[dict]:
    """Decode and validate a session token."""
    try:
        return serializer.loads(token, max_age=SESSION_EXPIRE_MINUTES * 60)
    except (BadSignature, SignatureExpired):
        return None


def _token_from_request(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


def get_current_session(request: Request) -> Optional[dict]:
    """Session payload from cookie or bearer token, or None."""
    token = _token_from_request(request)
    if not token:
        return None
    return decode_session_token(token)


def require_session(request: Request) -> dict:
    session = get_current_session(request)
    if not session:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return session


def require_admin(request: Request) -> dict:
    """Dependency for admin-only endpoints."""
    session = require_session(request)
    if session.get("role") != ROLE_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return session


def set_session_cookie(response, token: str):
    """Set session cookie on response."""
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        max_age=SESSION_EXPIRE_MINUTES * 60,
        samesite="lax",
    )
    return response


def clear_session_cookie(response):
    """Clear session cookie on response."""
    response.delete_cookie(SESSION_COOKIE)
    return response
