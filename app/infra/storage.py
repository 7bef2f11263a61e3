from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from app.core.errors import LedgerLookupFailure, LedgerWriteFailure, RecipientStoreError, ReminderError
from app.core.models import DeliveryStatus, MessageLogEntry, Recipient, SentEventRecord

LOGGER = logging.getLogger(__name__)

_RECIPIENT_COLUMNS = """
    user_id, username, is_active, allow_sending, last_sent_at,
    delivery_status, error_message
"""


class ReminderStorage:
    """Хранилище sqlite3: получатели, журнал отправленных событий и лог рассылок.

    Ошибки sqlite3 наружу не выходят: они заворачиваются в RecipientStoreError,
    LedgerLookupFailure или LedgerWriteFailure.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = db_path
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS recipients (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL UNIQUE,
                username TEXT NOT NULL DEFAULT '',
                is_active INTEGER NOT NULL DEFAULT 1,
                allow_sending INTEGER NOT NULL DEFAULT 1,
                last_sent_at TEXT,
                delivery_status TEXT NOT NULL DEFAULT 'pending',
                error_message TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS sent_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_hash TEXT NOT NULL UNIQUE,
                event_date TEXT NOT NULL,
                event_description TEXT NOT NULL,
                sent_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS message_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id INTEGER NOT NULL,
                message_type TEXT NOT NULL,
                message_text TEXT NOT NULL,
                total_recipients INTEGER NOT NULL,
                successfully_sent INTEGER NOT NULL,
                sent_at TEXT NOT NULL
            );
            """
        )
        self._connection.commit()

    # recipients

    def upsert_recipient(self, user_id: int, username: str = "") -> None:
        now = _utcnow_iso()
        with _store_errors(RecipientStoreError, "upsert recipient"):
            self._connection.execute(
                """
                INSERT INTO recipients (
                    user_id, username, is_active, allow_sending, delivery_status, created_at, updated_at
                ) VALUES (?, ?, 1, 1, 'pending', ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    username = excluded.username,
                    updated_at = excluded.updated_at
                """,
                (user_id, username, now, now),
            )
            self._connection.commit()

    def list_active_allowed(self) -> list[Recipient]:
        with _store_errors(RecipientStoreError, "list recipients"):
            cursor = self._connection.execute(
                f"""
                SELECT {_RECIPIENT_COLUMNS}
                FROM recipients
                WHERE is_active = 1 AND allow_sending = 1
                ORDER BY user_id
                """
            )
            rows = cursor.fetchall()
        return [_row_to_recipient(row) for row in rows]

    def get_recipient(self, user_id: int) -> Recipient | None:
        with _store_errors(RecipientStoreError, "get recipient"):
            cursor = self._connection.execute(
                f"SELECT {_RECIPIENT_COLUMNS} FROM recipients WHERE user_id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return _row_to_recipient(row)

    def update_delivery_status(
        self,
        user_id: int,
        status: DeliveryStatus,
        error: str | None = None,
    ) -> None:
        now = _utcnow_iso()
        with _store_errors(RecipientStoreError, "update delivery status"):
            self._connection.execute(
                """
                UPDATE recipients
                SET delivery_status = ?, error_message = ?, last_sent_at = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (DeliveryStatus(status).value, error, now, now, user_id),
            )
            self._connection.commit()

    def deactivate_recipient(self, user_id: int) -> bool:
        with _store_errors(RecipientStoreError, "deactivate recipient"):
            cursor = self._connection.execute(
                "UPDATE recipients SET is_active = 0, updated_at = ? WHERE user_id = ?",
                (_utcnow_iso(), user_id),
            )
            self._connection.commit()
        return bool(cursor.rowcount)

    def set_allow_sending(self, user_id: int, allow_sending: bool) -> bool:
        with _store_errors(RecipientStoreError, "set allow_sending"):
            cursor = self._connection.execute(
                "UPDATE recipients SET allow_sending = ?, updated_at = ? WHERE user_id = ?",
                (int(allow_sending), _utcnow_iso(), user_id),
            )
            self._connection.commit()
        return bool(cursor.rowcount)

    # sent-events ledger

    def exists(self, fingerprint: str) -> bool:
        with _store_errors(LedgerLookupFailure, "sent-events lookup"):
            cursor = self._connection.execute(
                "SELECT EXISTS(SELECT 1 FROM sent_events WHERE event_hash = ?)",
                (fingerprint,),
            )
            row = cursor.fetchone()
        return bool(row[0]) if row else False

    def insert(self, event_date: datetime, description: str, fingerprint: str) -> None:
        with _store_errors(LedgerWriteFailure, "sent-event insert"):
            self._connection.execute(
                """
                INSERT INTO sent_events (event_hash, event_date, event_description, sent_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (event_hash) DO NOTHING
                """,
                (fingerprint, event_date.strftime("%Y-%m-%d"), description, _utcnow_iso()),
            )
            self._connection.commit()

    def list_sent_events(self) -> list[SentEventRecord]:
        with _store_errors(LedgerLookupFailure, "list sent events"):
            rows = self._connection.execute(
                """
                SELECT event_hash, event_date, event_description, sent_at
                FROM sent_events
                ORDER BY id
                """
            ).fetchall()
        return [
            SentEventRecord(
                fingerprint=row["event_hash"],
                event_date=row["event_date"],
                description=row["event_description"],
                sent_at=_parse_datetime(row["sent_at"]),
            )
            for row in rows
        ]

    # message log

    def append_log(
        self,
        *,
        source_message_id: int,
        kind: str,
        body_text: str,
        total_recipients: int,
        success_count: int,
    ) -> None:
        with _store_errors(LedgerWriteFailure, "message log insert"):
            self._connection.execute(
                """
                INSERT INTO message_logs (
                    message_id, message_type, message_text, total_recipients, successfully_sent, sent_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (source_message_id, kind, body_text, total_recipients, success_count, _utcnow_iso()),
            )
            self._connection.commit()

    def list_message_logs(self, *, limit: int = 20) -> list[MessageLogEntry]:
        if limit <= 0:
            return []
        with _store_errors(LedgerLookupFailure, "list message logs"):
            rows = self._connection.execute(
                """
                SELECT id, message_id, message_type, message_text, total_recipients, successfully_sent, sent_at
                FROM message_logs
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            MessageLogEntry(
                id=row["id"],
                source_message_id=row["message_id"],
                kind=row["message_type"],
                body_text=row["message_text"],
                total_recipients=row["total_recipients"],
                success_count=row["successfully_sent"],
                sent_at=_parse_datetime(row["sent_at"]),
            )
            for row in rows
        ]

    def close(self) -> None:
        try:
            self._connection.close()
        except sqlite3.Error:
            LOGGER.exception("Failed to close reminder database connection")


@contextmanager
def _store_errors(error_cls: type[ReminderError], action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise error_cls(f"{action} failed: {exc}") from exc


def _row_to_recipient(row: sqlite3.Row) -> Recipient:
    raw_status = row["delivery_status"] or DeliveryStatus.PENDING.value
    try:
        status = DeliveryStatus(raw_status)
    except ValueError:
        status = DeliveryStatus.PENDING
    last_sent = row["last_sent_at"]
    return Recipient(
        user_id=row["user_id"],
        username=row["username"] or "",
        active=bool(row["is_active"]),
        allow_send=bool(row["allow_sending"]),
        last_sent_at=_parse_datetime(last_sent) if last_sent else None,
        delivery_status=status,
        last_error=row["error_message"],
    )


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_datetime(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
