"""
LINE Messaging API client.

Thin wrapper over the handful of endpoints the portal uses: push and
reply messages, user profile and group summary lookups, and bot info.
Every failure (network error or non-2xx response) surfaces as
ExternalServiceError.
"""

import logging
import os
import threading
from typing import Callable, Dict, Optional

import requests
from sqlalchemy.orm import Session

from qa_portal.errors import ConfigurationError, ExternalServiceError
from qa_portal.services.settings_store import get_access_token

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.line.me/v2/bot"


class LineClient:
    """Client for one channel access token."""

    def __init__(
        self,
        access_token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.access_token = access_token
        self.base_url = (base_url or os.getenv("LINE_API_BASE_URL", DEFAULT_API_BASE_URL)).rstrip("/")
        self.timeout = timeout if timeout is not None else float(os.getenv("LINE_API_TIMEOUT", "10"))
        self._session = session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The injected session, else one session per calling thread."""
        if self._session is not None:
            return self._session
        if not hasattr(self._local, "session"):
            self._local.session = requests.Session()
        return self._local.session

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Dict:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            response = self.session.request(method, url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExternalServiceError(f"LINE API request to {path} failed: {e}") from e

        if not response.ok:
            detail = self._error_detail(response)
            raise ExternalServiceError(
                f"LINE API {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    @staticmethod
    def _error_detail(response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return body.get("message", response.text)
        return response.text

    def push_message(self, to: str, text: str) -> None:
        self._request("POST", "/message/push", {"to": to, "messages": [{"type": "text", "text": text}]})

    def reply_message(self, reply_token: str, text: str) -> None:
        self._request(
            "POST",
            "/message/reply",
            {"replyToken": reply_token, "messages": [{"type": "text", "text": text}]},
        )

    def get_user_profile(self, user_id: str) -> Dict:
        return self._request("GET", f"/profile/{user_id}")

    def get_group_summary(self, group_id: str) -> Dict:
        return self._request("GET", f"/group/{group_id}/summary")

    def get_bot_info(self) -> Dict:
        return self._request("GET", "/info")


def get_client_factory() -> Callable[[str], LineClient]:
    """FastAPI dependency: builds a client from an access token."""
    return LineClient


def get_line_client(db: Session, factory: Callable[[str], LineClient] = LineClient) -> LineClient:
    """
    Client for the configured channel.

    Raises ConfigurationError when no access token is stored or set in
    LINE_CHANNEL_ACCESS_TOKEN.
    """
    token = get_access_token(db)
    if not token:
        raise ConfigurationError("LINE Channel Access Token not configured")
    return factory(token)
