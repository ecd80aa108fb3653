"""
Telegram Bot API transport — the thin adapter between chat and the session.

Inbound updates are parsed into small pydantic models (unknown fields ignored).
Outbound calls go straight to the Bot API over httpx; send failures are
logged and reported as False rather than raised, because a lost reply must
never abort the pipeline that produced it.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import TransportError

logger = logging.getLogger(__name__)


# ─── Update Models ───────────────────────────────────────────────────


class _TelegramModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TelegramUser(_TelegramModel):
    id: int
    username: Optional[str] = None

    @property
    def requester_id(self) -> str:
        return self.username or str(self.id)


class TelegramChat(_TelegramModel):
    id: int


class PhotoSize(_TelegramModel):
    file_id: str
    width: int = 0
    height: int = 0
    file_size: Optional[int] = None


class TelegramMessage(_TelegramModel):
    message_id: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    text: Optional[str] = None
    photo: list[PhotoSize] = Field(default_factory=list)

    @property
    def requester_id(self) -> str:
        return self.from_user.requester_id if self.from_user else "unknown"


class CallbackQuery(_TelegramModel):
    id: str
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    message: Optional[TelegramMessage] = None
    data: Optional[str] = None


class TelegramUpdate(_TelegramModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    callback_query: Optional[CallbackQuery] = None


# ─── Client ──────────────────────────────────────────────────────────


class TelegramClient:
    """Minimal async Bot API client for the calls the bot needs."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.telegram.org",
        timeout: float = 30.0,
        http: httpx.AsyncClient | None = None,
    ):
        self._api_url = f"{base_url.rstrip('/')}/bot{token}"
        self._file_url = f"{base_url.rstrip('/')}/file/bot{token}"
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        # URLs carry the bot token; error text must never include them.
        try:
            response = await self._http.post(f"{self._api_url}/{method}", json=payload)
        except httpx.HTTPError as e:
            raise TransportError(
                f"Telegram {method} failed: {type(e).__name__}", details={"method": method}
            ) from None

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.status_code != 200 or not body.get("ok", False):
            raise TransportError(
                f"Telegram {method} returned HTTP {response.status_code}: "
                f"{body.get('description', 'no description')}",
                details={"method": method, "status_code": response.status_code},
            )
        return body.get("result")

    async def _try(self, method: str, payload: dict[str, Any]) -> bool:
        try:
            await self._call(method, payload)
            return True
        except TransportError as e:
            logger.error("❌ %s", e)
            return False

    async def send_message(
        self, chat_id: int, text: str, reply_markup: dict | None = None
    ) -> bool:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return await self._try("sendMessage", payload)

    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> bool:
        return await self._try(
            "editMessageText", {"chat_id": chat_id, "message_id": message_id, "text": text}
        )

    async def answer_callback_query(self, callback_query_id: str) -> bool:
        return await self._try("answerCallbackQuery", {"callback_query_id": callback_query_id})

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> bool:
        return await self._try("sendChatAction", {"chat_id": chat_id, "action": action})

    async def download_file(self, file_id: str) -> bytes:
        """Resolve a file id and download its bytes. Raises TransportError."""
        result = await self._call("getFile", {"file_id": file_id})
        file_path = (result or {}).get("file_path")
        if not file_path:
            raise TransportError("Telegram getFile returned no file_path", details={"file_id": file_id})

        try:
            response = await self._http.get(f"{self._file_url}/{file_path}")
        except httpx.HTTPError as e:
            raise TransportError(
                f"File download failed: {type(e).__name__}", details={"file_id": file_id}
            ) from None
        if response.status_code != 200:
            raise TransportError(
                f"File download returned HTTP {response.status_code}",
                details={"file_id": file_id, "status_code": response.status_code},
            )
        return response.content
