"""Minimal Telegram Bot API client.

Covers the calls the bot needs: getMe, deleteWebhook, getUpdates,
sendMessage, sendChatAction, getFile and file downloads. Calls are blocking;
async callers run them with ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Callable, List, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org"
USER_AGENT = "telegram-repl-bot/0.1"

# Telegram rejects longer message texts
MAX_MESSAGE_LENGTH = 4096


class TelegramError(Exception):
    """A Bot API call failed or returned ``ok: false``."""

    pass


# ============================================================================
# API objects (only the fields the bot reads)
# ============================================================================


class User(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    username: Optional[str] = None


class Chat(BaseModel):
    id: int
    type: str = "private"


class Document(BaseModel):
    file_id: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    chat: Chat
    from_user: Optional[User] = Field(None, alias="from")
    text: Optional[str] = None
    document: Optional[Document] = None


class Update(BaseModel):
    update_id: int
    message: Optional[Message] = None
    edited_message: Optional[Message] = None

    @property
    def effective_message(self) -> Message | None:
        return self.message or self.edited_message


class File(BaseModel):
    file_id: str
    file_path: Optional[str] = None
    file_size: Optional[int] = None


# ============================================================================
# Client
# ============================================================================


class TelegramClient:
    """Calls Bot API methods over HTTPS with JSON bodies."""

    def __init__(
        self,
        token: str,
        *,
        api_url: str = API_URL,
        timeout: float = 30,
        urlopen: Callable[..., Any] = urllib.request.urlopen,
    ) -> None:
        self._token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._urlopen = urlopen

    def _request(self, url: str, payload: bytes | None = None) -> urllib.request.Request:
        headers = {"User-Agent": USER_AGENT}
        if payload is not None:
            headers["Content-Type"] = "application/json"
        return urllib.request.Request(
            url,
            data=payload,
            headers=headers,
            method="POST" if payload is not None else "GET",
        )

    def call(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        """Call a Bot API method and return its ``result``."""
        payload = orjson.dumps({k: v for k, v in (params or {}).items() if v is not None})
        req = self._request(f"{self.api_url}/bot{self._token}/{method}", payload)

        try:
            with self._urlopen(req, timeout=timeout or self.timeout) as response:
                data = orjson.loads(response.read())
        except urllib.error.HTTPError as e:
            # Bot API errors come back as JSON with a description
            try:
                data = orjson.loads(e.read())
            except (orjson.JSONDecodeError, OSError):
                raise TelegramError(f"{method}: HTTP {e.code}") from e
        except (urllib.error.URLError, OSError) as e:
            raise TelegramError(f"{method}: {e}") from e
        except orjson.JSONDecodeError as e:
            raise TelegramError(f"{method}: invalid response: {e}") from e

        if not data.get("ok"):
            raise TelegramError(f"{method}: {data.get('description', 'unknown error')}")
        return data.get("result")

    def get_me(self) -> User:
        return User.model_validate(self.call("getMe"))

    def delete_webhook(self) -> bool:
        return bool(self.call("deleteWebhook"))

    def get_updates(self, offset: int = 0, timeout: int = 0) -> List[Update]:
        """Long-poll for updates newer than ``offset``."""
        result = self.call(
            "getUpdates",
            {"offset": offset, "timeout": timeout},
            timeout=self.timeout + timeout,
        )
        return [Update.model_validate(u) for u in result or []]

    def send_message(self, chat_id: int, text: str) -> None:
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 1] + "…"
        self.call("sendMessage", {"chat_id": chat_id, "text": text})

    def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        self.call("sendChatAction", {"chat_id": chat_id, "action": action})

    def get_file(self, file_id: str) -> File:
        return File.model_validate(self.call("getFile", {"file_id": file_id}))

    def file_url(self, file: File) -> str:
        if not file.file_path:
            raise TelegramError(f"file {file.file_id} has no download path")
        return f"{self.api_url}/file/bot{self._token}/{file.file_path}"

    def download(self, url: str, dest: Path) -> Path:
        """Download ``url`` into ``dest``."""
        req = self._request(url)
        try:
            with self._urlopen(req, timeout=self.timeout) as response, open(dest, "wb") as f:
                shutil.copyfileobj(response, f)
        except (urllib.error.URLError, OSError) as e:
            raise TelegramError(f"download failed: {e}") from e
        return dest
