"""Журнал отправленных событий: отпечаток события и проверка «уже отправлено»."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime

from app.core.errors import LedgerLookupFailure, LedgerWriteFailure
from app.core.interfaces import LedgerStore

LOGGER = logging.getLogger(__name__)


def event_fingerprint(event_date: datetime, description: str) -> str:
    """sha256 от ``YYYY-MM-DD|описание``; время суток в отпечаток не входит."""
    data = f"{event_date.strftime('%Y-%m-%d')}|{description}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


class DedupLedger:
    """Запись в журнал однократная: повторная отметка ничего не меняет.

    Любая ошибка хранилища превращается в LedgerLookupFailure / LedgerWriteFailure.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    fingerprint = staticmethod(event_fingerprint)

    def is_already_sent(self, fingerprint: str) -> bool:
        try:
            return self._store.exists(fingerprint)
        except LedgerLookupFailure:
            raise
        except Exception as exc:
            raise LedgerLookupFailure(f"sent-events lookup failed: {exc}") from exc

    def mark_sent(self, event_date: datetime, description: str, fingerprint: str) -> None:
        try:
            self._store.insert(event_date, description, fingerprint)
        except LedgerWriteFailure:
            raise
        except Exception as exc:
            raise LedgerWriteFailure(f"sent-event insert failed: {exc}") from exc
        LOGGER.info(
            "Event marked as sent: date=%s description=%s fingerprint=%s",
            event_date.strftime("%Y-%m-%d"),
            description,
            fingerprint[:12],
        )
