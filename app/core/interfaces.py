from __future__ import annotations

from datetime import datetime
from typing import Protocol

from app.core.models import DeliveryStatus, PinnedMessage, Recipient


class PinnedSource(Protocol):
    async def fetch_pinned_text(self, chat_id: int) -> PinnedMessage:
        ...


class DirectSender(Protocol):
    async def send_direct(self, user_id: int, text: str) -> None:
        ...


class RecipientStore(Protocol):
    def list_active_allowed(self) -> list[Recipient]:
        ...

    def update_delivery_status(
        self,
        user_id: int,
        status: DeliveryStatus,
        error: str | None = None,
    ) -> None:
        ...


class LedgerStore(Protocol):
    def exists(self, fingerprint: str) -> bool:
        ...

    def insert(self, event_date: datetime, description: str, fingerprint: str) -> None:
        ...


class AuditStore(Protocol):
    def append_log(
        self,
        *,
        source_message_id: int,
        kind: str,
        body_text: str,
        total_recipients: int,
        success_count: int,
    ) -> None:
        ...
