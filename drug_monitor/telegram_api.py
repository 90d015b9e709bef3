"""Telegram Bot API transport.

Thin wrapper over the HTTP Bot API using `requests`.  Delivery failures are
raised as DeliveryError and classified as permanent (the chat can no longer
be reached by this bot) or transient.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import requests

from .config import TELEGRAM_API_URL
from .utils import HTTPError, get_http_session, retryable_request

logger = logging.getLogger(__name__)

# Bot API descriptions that mean the chat is gone for good even when the
# error code is not 403.
_PERMANENT_DESCRIPTIONS = (
    "bot was blocked by the user",
    "user is deactivated",
    "bot was kicked",
    "chat not found",
)


class DeliveryError(Exception):
    """A message could not be delivered to one chat."""

    def __init__(
        self,
        chat_id: int,
        description: str,
        *,
        error_code: Optional[int] = None,
        permanent: bool = False,
    ) -> None:
        self.chat_id = chat_id
        self.description = description
        self.error_code = error_code
        self.permanent = permanent
        super().__init__(f"chat {chat_id}: {description}")


class TransportStartupError(RuntimeError):
    """The bot transport could not be initialised."""


def is_permanent_failure(error_code: Optional[int], description: str) -> bool:
    if error_code == 403:
        return True
    text = (description or "").lower()
    return any(marker in text for marker in _PERMANENT_DESCRIPTIONS)


@retryable_request
def _get(session: requests.Session, url: str, **kwargs) -> requests.Response:
    return session.get(url, **kwargs)


class TelegramClient:
    """Minimal Bot API client: getMe, sendMessage, getUpdates.

    The client is shared by the scheduler, the retry timer and the command
    poller, so each call opens its own session and closes it afterwards.
    An injected session is used as-is for every call.
    """

    def __init__(
        self,
        token: str,
        *,
        session: Optional[requests.Session] = None,
        api_url: str = TELEGRAM_API_URL,
        timeout: float = 15.0,
    ) -> None:
        self._token = token
        self._session = session
        self._base = f"{api_url.rstrip('/')}/bot{token}"
        self._timeout = timeout

    def _url(self, method: str) -> str:
        return f"{self._base}/{method}"

    @contextmanager
    def _open_session(self) -> Iterator[requests.Session]:
        if self._session is not None:
            yield self._session
            return
        session = get_http_session()
        try:
            yield session
        finally:
            session.close()

    def close(self) -> None:
        if self._session is not None:
            self._session.close()

    def get_me(self) -> Dict[str, Any]:
        """Return the bot's own user object; raise TransportStartupError on failure."""
        try:
            with self._open_session() as session:
                resp = session.get(self._url("getMe"), timeout=self._timeout)
                data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise TransportStartupError(f"getMe failed: {e}") from e
        if not isinstance(data, dict) or not data.get("ok"):
            raise TransportStartupError(f"getMe failed: {_describe(data)}")
        return data["result"]

    def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: Optional[str] = "HTML",
        disable_web_page_preview: bool = True,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": disable_web_page_preview,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            with self._open_session() as session:
                resp = session.post(self._url("sendMessage"), json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise DeliveryError(chat_id, f"network error: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {"ok": False, "error_code": resp.status_code, "description": resp.text[:200]}

        if not isinstance(data, dict):
            raise DeliveryError(
                chat_id,
                f"unexpected response body (HTTP {resp.status_code})",
                error_code=resp.status_code,
            )
        if not data.get("ok"):
            code = data.get("error_code", resp.status_code)
            description = str(data.get("description") or f"HTTP {resp.status_code}")
            raise DeliveryError(
                chat_id,
                description,
                error_code=code,
                permanent=is_permanent_failure(code, description),
            )
        return data.get("result") or {}

    def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> List[Dict[str, Any]]:
        """Long-poll for updates. Network errors are retried with back-off."""
        params: Dict[str, Any] = {"timeout": timeout, "allowed_updates": '["message"]'}
        if offset is not None:
            params["offset"] = offset
        with self._open_session() as session:
            resp = _get(session, self._url("getUpdates"), params=params, timeout=timeout + 10)
            data = resp.json()
        if not isinstance(data, dict) or not data.get("ok"):
            raise HTTPError(f"getUpdates failed: {_describe(data)}")
        return data.get("result") or []


def _describe(data: Any) -> str:
    if isinstance(data, dict):
        return f"{data.get('error_code')} {data.get('description')}"
    return f"unexpected response body {data!r:.200}"


__all__ = [
    "DeliveryError",
    "TransportStartupError",
    "TelegramClient",
    "is_permanent_failure",
]
