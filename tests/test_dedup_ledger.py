from __future__ import annotations

import hashlib
import sqlite3
from datetime import datetime

import pytest

from app.core.dedup_ledger import DedupLedger, event_fingerprint
from app.core.errors import LedgerLookupFailure, LedgerWriteFailure
from app.core.event_parser import BOT_TZ
from app.infra.storage import ReminderStorage


class BrokenLedgerStore:
    def exists(self, fingerprint: str) -> bool:
        raise sqlite3.OperationalError("database is locked")

    def insert(self, event_date, description, fingerprint) -> None:
        raise sqlite3.OperationalError("disk I/O error")


def test_fingerprint_is_sha256_of_date_and_description() -> None:
    event_date = datetime(2024, 3, 15, tzinfo=BOT_TZ)
    expected = hashlib.sha256("2024-03-15|Встреча".encode("utf-8")).hexdigest()

    assert event_fingerprint(event_date, "Встреча") == expected
    assert event_fingerprint(event_date, "Встреча") == event_fingerprint(event_date, "Встреча")


def test_fingerprint_changes_with_date_or_text() -> None:
    base = event_fingerprint(datetime(2024, 3, 15, tzinfo=BOT_TZ), "Встреча")

    assert event_fingerprint(datetime(2024, 3, 16, tzinfo=BOT_TZ), "Встреча") != base
    assert event_fingerprint(datetime(2024, 3, 15, tzinfo=BOT_TZ), "Встреча ") != base
    # time of day is not part of the identity
    assert event_fingerprint(datetime(2024, 3, 15, 18, 0, tzinfo=BOT_TZ), "Встреча") == base


def test_mark_sent_is_idempotent(tmp_path) -> None:
    storage = ReminderStorage(tmp_path / "bot.db")
    ledger = DedupLedger(storage)
    event_date = datetime(2024, 4, 1, tzinfo=BOT_TZ)
    fingerprint = ledger.fingerprint(event_date, "Дедлайн")

    assert ledger.is_already_sent(fingerprint) is False
    ledger.mark_sent(event_date, "Дедлайн", fingerprint)
    ledger.mark_sent(event_date, "Дедлайн", fingerprint)

    assert ledger.is_already_sent(fingerprint) is True
    records = storage.list_sent_events()
    assert len(records) == 1
    assert records[0].fingerprint == fingerprint
    assert records[0].event_date == "2024-04-01"
    assert records[0].description == "Дедлайн"


def test_lookup_failure_is_raised_not_treated_as_sent() -> None:
    ledger = DedupLedger(BrokenLedgerStore())

    with pytest.raises(LedgerLookupFailure):
        ledger.is_already_sent("abc")


def test_write_failure_is_raised() -> None:
    ledger = DedupLedger(BrokenLedgerStore())

    with pytest.raises(LedgerWriteFailure):
        ledger.mark_sent(datetime(2024, 4, 1, tzinfo=BOT_TZ), "Дедлайн", "abc")


def test_any_store_error_becomes_ledger_error() -> None:
    class FlakyStore:
        def exists(self, fingerprint: str) -> bool:
            raise RuntimeError("store connection reset")

        def insert(self, event_date, description, fingerprint) -> None:
            raise RuntimeError("store connection reset")

    ledger = DedupLedger(FlakyStore())

    with pytest.raises(LedgerLookupFailure, match="connection reset"):
        ledger.is_already_sent("abc")
    with pytest.raises(LedgerWriteFailure, match="connection reset"):
        ledger.mark_sent(datetime(2024, 4, 1, tzinfo=BOT_TZ), "Дедлайн", "abc")
