from __future__ import annotations

import logging

from telegram.error import BadRequest

LOGGER = logging.getLogger(__name__)

# Telegram allows 4096 characters; stay well below it
SAFE_MESSAGE_LIMIT = 3500
RESEND_MESSAGE_LIMIT = 2000


def split_message(text: str, limit: int = SAFE_MESSAGE_LIMIT) -> list[str]:
    """Режет текст по границам строк; строка длиннее ``limit`` режется жёстко."""
    parts: list[str] = []
    current = ""
    for line in (text or "").splitlines():
        while len(line) > limit:
            if current:
                parts.append(current)
                current = ""
            parts.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            parts.append(current)
            current = line
        else:
            current = candidate
    if current.strip():
        parts.append(current)
    return parts


async def send_text(bot, chat_id: int, text: str) -> int:
    """Отправляет текст одним или несколькими сообщениями, возвращает их число.

    Обрабатывается только «message is too long», остальные ошибки пробрасываются.
    """
    if not text or not text.strip():
        raise ValueError("refusing to send an empty message")
    sent = 0
    for part in split_message(text):
        try:
            await bot.send_message(chat_id=chat_id, text=part)
            sent += 1
        except BadRequest as exc:
            if "too long" not in str(exc).lower():
                raise
            LOGGER.warning("Message rejected as too long, resending in smaller parts: chat_id=%s", chat_id)
            for piece in split_message(part, limit=RESEND_MESSAGE_LIMIT):
                await bot.send_message(chat_id=chat_id, text=piece)
                sent += 1
    return sent
