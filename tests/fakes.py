from __future__ import annotations

from app.core.models import PinnedMessage


class FakeSender:
    """Записывает отправки; user_id из failing падают с ошибкой."""

    def __init__(self, failing: set[int] | None = None) -> None:
        self.failing = failing or set()
        self.sent: list[tuple[int, str]] = []

    async def send_direct(self, user_id: int, text: str) -> None:
        if user_id in self.failing:
            raise RuntimeError(f"Forbidden: bot was blocked by user {user_id}")
        self.sent.append((user_id, text))


class FakeSource:
    def __init__(self, text: str, message_id: int = 42) -> None:
        self.text = text
        self.message_id = message_id
        self.calls = 0

    async def fetch_pinned_text(self, chat_id: int) -> PinnedMessage:
        self.calls += 1
        return PinnedMessage(message_id=self.message_id, text=self.text)


async def no_sleep(_delay: float) -> None:
    return None
