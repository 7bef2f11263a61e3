from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class EventEntry:
    raw_line: str
    resolved_date: datetime | None
    description: str
    valid: bool

    @property
    def date_key(self) -> str:
        if self.resolved_date is None:
            return ""
        return self.resolved_date.strftime("%Y-%m-%d")


@dataclass(frozen=True)
class PinnedMessage:
    message_id: int
    text: str


@dataclass(frozen=True)
class Recipient:
    user_id: int
    username: str
    active: bool = True
    allow_send: bool = True
    last_sent_at: datetime | None = None
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    last_error: str | None = None


@dataclass(frozen=True)
class SentEventRecord:
    fingerprint: str
    event_date: str
    description: str
    sent_at: datetime


@dataclass(frozen=True)
class MessageLogEntry:
    id: int
    source_message_id: int
    kind: str
    body_text: str
    total_recipients: int
    success_count: int
    sent_at: datetime


@dataclass(frozen=True)
class DeliveryOutcome:
    attempted: int
    succeeded: int
    marked_sent: int = 0

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded


@dataclass(frozen=True)
class RunSummary:
    chat_id: int
    status: str
    parsed: int = 0
    invalid: int = 0
    upcoming: int = 0
    new_events: int = 0
    attempted: int = 0
    succeeded: int = 0
    marked_sent: int = 0
    lookup_failures: int = 0
