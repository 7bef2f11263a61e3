from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from telegram import Bot
from telegram.error import TelegramError

from app.core.errors import DeliveryFailure, SourceUnavailable
from app.core.models import PinnedMessage
from app.infra.messaging import send_text
from app.infra.resilience import RetryPolicy, retry_async

LOGGER = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
_GONE_MEMBER_STATUSES = {"left", "kicked"}


class TelegramGateway:
    """Источник закреплённого сообщения и отправка личных сообщений через Bot API."""

    def __init__(
        self,
        bot: Bot,
        *,
        token: str,
        timeout_seconds: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        api_url: str = TELEGRAM_API_URL,
    ) -> None:
        self._bot = bot
        self._token = token
        self._timeout_seconds = timeout_seconds
        self._retry_policy = retry_policy or RetryPolicy()
        self._http_client = http_client
        self._api_url = api_url.rstrip("/")

    async def fetch_pinned_text(self, chat_id: int) -> PinnedMessage:
        message = await self._fetch_pinned(chat_id)
        text = (message.text or "").strip()
        if not text:
            raise SourceUnavailable(f"pinned message in chat {chat_id} has no text")
        return PinnedMessage(message_id=message.message_id, text=message.text)

    async def send_direct(self, user_id: int, text: str) -> None:
        try:
            await send_text(self._bot, user_id, text)
        except TelegramError as exc:
            raise DeliveryFailure(user_id, str(exc)) from exc

    async def _fetch_pinned(self, chat_id: int) -> PinnedMessage:
        try:
            chat = await retry_async(
                lambda: self._bot.get_chat(chat_id=chat_id),
                policy=self._retry_policy,
                name="get_chat",
                timeout_seconds=self._timeout_seconds,
            )
        except (TelegramError, httpx.HTTPError, asyncio.TimeoutError, TimeoutError) as exc:
            raise SourceUnavailable(f"failed to get chat {chat_id}: {exc}") from exc

        LOGGER.info("Chat info received: chat_id=%s type=%s title=%s", chat_id, chat.type, chat.title)
        pinned = getattr(chat, "pinned_message", None)
        if pinned is not None:
            LOGGER.info("Pinned message found via get_chat: message_id=%s", pinned.message_id)
            return PinnedMessage(message_id=pinned.message_id, text=pinned.text or "")

        LOGGER.info("pinned_message empty in get_chat, trying raw getChat request")
        try:
            raw = await self._fetch_pinned_via_http(chat_id)
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Raw getChat request failed: chat_id=%s error=%s", chat_id, exc)
            raw = None
        if raw is not None:
            LOGGER.info("Pinned message found via raw getChat: message_id=%s", raw.message_id)
            return raw

        await self._ensure_bot_is_member(chat_id)
        raise SourceUnavailable(
            f"no pinned message in chat {chat_id}: make sure a message is pinned "
            "and the bot is a member with read access"
        )

    async def _fetch_pinned_via_http(self, chat_id: int) -> PinnedMessage | None:
        url = f"{self._api_url}/bot{self._token}/getChat"
        if self._http_client is not None:
            response = await self._http_client.post(url, json={"chat_id": chat_id})
        else:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(url, json={"chat_id": chat_id})
        payload: dict[str, Any] = response.json()
        if not payload.get("ok"):
            raise ValueError(f"getChat returned error: {payload.get('description', 'unknown')}")
        result = payload.get("result") or {}
        pinned = result.get("pinned_message")
        if not isinstance(pinned, dict):
            LOGGER.info("pinned_message missing in getChat result: fields=%s", sorted(result))
            return None
        message_id = pinned.get("message_id")
        if not isinstance(message_id, int):
            raise ValueError("pinned_message has no message_id")
        return PinnedMessage(message_id=message_id, text=pinned.get("text") or "")

    async def _ensure_bot_is_member(self, chat_id: int) -> None:
        try:
            member = await self._bot.get_chat_member(chat_id=chat_id, user_id=self._bot.id)
        except (TelegramError, RuntimeError) as exc:
            LOGGER.warning("Could not check bot membership: chat_id=%s error=%s", chat_id, exc)
            return
        status = str(getattr(member, "status", ""))
        LOGGER.info("Bot membership status: chat_id=%s status=%s", chat_id, status)
        if status in _GONE_MEMBER_STATUSES:
            raise SourceUnavailable(f"bot is not a member of chat {chat_id} (status: {status})")
