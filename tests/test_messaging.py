from __future__ import annotations

import asyncio

import pytest
from telegram.error import BadRequest, Forbidden

from app.infra.messaging import RESEND_MESSAGE_LIMIT, send_text, split_message


class DummyBot:
    def __init__(self, reject_longer_than: int | None = None, error: Exception | None = None) -> None:
        self.reject_longer_than = reject_longer_than
        self.error = error
        self.calls: list[tuple[int, str]] = []

    async def send_message(self, chat_id, text):
        if self.error is not None:
            raise self.error
        if self.reject_longer_than is not None and len(text) > self.reject_longer_than:
            raise BadRequest("Message is too long")
        self.calls.append((chat_id, text))


def test_split_message_keeps_whole_lines() -> None:
    text = "\n".join(["строка"] * 10)

    parts = split_message(text, limit=20)

    assert all(len(part) <= 20 for part in parts)
    assert "\n".join(parts) == text


def test_split_message_cuts_long_line() -> None:
    assert split_message("a" * 25, limit=10) == ["a" * 10, "a" * 10, "a" * 5]
    assert split_message("", limit=10) == []


def test_send_text_short_message() -> None:
    bot = DummyBot()

    assert asyncio.run(send_text(bot, 1, "Напоминание")) == 1
    assert bot.calls == [(1, "Напоминание")]


def test_send_text_resends_in_smaller_parts_when_too_long() -> None:
    bot = DummyBot(reject_longer_than=RESEND_MESSAGE_LIMIT)
    text = "\n".join(["x" * 99] * 30)

    assert asyncio.run(send_text(bot, 1, text)) == 2
    assert all(len(part) <= RESEND_MESSAGE_LIMIT for _, part in bot.calls)
    assert "\n".join(part for _, part in bot.calls) == text


def test_send_text_propagates_other_errors() -> None:
    bot = DummyBot(error=Forbidden("bot was blocked by the user"))

    with pytest.raises(Forbidden):
        asyncio.run(send_text(bot, 1, "текст"))


def test_send_text_rejects_empty() -> None:
    with pytest.raises(ValueError):
        asyncio.run(send_text(DummyBot(), 1, "  "))
