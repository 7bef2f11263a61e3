from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime

from app.core.dedup_ledger import DedupLedger
from app.core.delivery import DeliveryFanout
from app.core.event_parser import BOT_TZ, parse_event_list
from app.core.models import DeliveryStatus, Recipient
from app.infra.rate_limiter import PacingGate
from app.infra.storage import ReminderStorage
from tests.fakes import FakeSender, no_sleep


class _FakeClock:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


class BrokenStatusStore(ReminderStorage):
    def update_delivery_status(self, user_id, status, error=None) -> None:
        raise RuntimeError("store connection reset")


class BrokenAuditStore(ReminderStorage):
    def append_log(self, **kwargs) -> None:
        raise RuntimeError("audit table unavailable")


class BrokenLedgerStorage(ReminderStorage):
    def insert(self, event_date, description, fingerprint) -> None:
        raise sqlite3.OperationalError("disk I/O error")


def _events():
    return parse_event_list("15 марта Встреча\n01.04 Дедлайн", now=datetime(2024, 3, 1, tzinfo=BOT_TZ))


def _storage_with(tmp_path, *user_ids: int, cls=ReminderStorage) -> ReminderStorage:
    storage = cls(tmp_path / "bot.db")
    for user_id in user_ids:
        storage.upsert_recipient(user_id, f"user{user_id}")
    return storage


def _fanout(storage, sender, pacer=None) -> DeliveryFanout:
    return DeliveryFanout(
        sender=sender,
        recipient_store=storage,
        ledger=DedupLedger(storage),
        audit_store=storage,
        pacer=pacer or PacingGate(0.5, sleep=no_sleep),
    )


def test_partial_failure_keeps_going_and_marks_batch(tmp_path) -> None:
    storage = _storage_with(tmp_path, 1, 2, 3)
    sender = FakeSender(failing={2})
    events = _events()

    outcome = asyncio.run(
        _fanout(storage, sender).deliver_reminder(
            "тело",
            storage.list_active_allowed(),
            events=events,
            source_message_id=77,
        )
    )

    assert (outcome.attempted, outcome.succeeded, outcome.failed) == (3, 2, 1)
    assert outcome.marked_sent == 2
    assert [user_id for user_id, _ in sender.sent] == [1, 3]
    statuses = [storage.get_recipient(user_id) for user_id in (1, 2, 3)]
    assert [r.delivery_status for r in statuses] == [
        DeliveryStatus.SUCCESS,
        DeliveryStatus.FAILED,
        DeliveryStatus.SUCCESS,
    ]
    assert "blocked" in statuses[1].last_error
    assert len(storage.list_sent_events()) == 2
    logs = storage.list_message_logs()
    assert len(logs) == 1
    assert (logs[0].source_message_id, logs[0].total_recipients, logs[0].success_count) == (77, 3, 2)


def test_all_failed_marks_nothing_but_writes_audit(tmp_path) -> None:
    storage = _storage_with(tmp_path, 1, 2)
    sender = FakeSender(failing={1, 2})

    outcome = asyncio.run(
        _fanout(storage, sender).deliver_reminder("тело", storage.list_active_allowed(), events=_events())
    )

    assert (outcome.attempted, outcome.succeeded, outcome.marked_sent) == (2, 0, 0)
    assert storage.list_sent_events() == []
    assert storage.list_message_logs()[0].success_count == 0


def test_empty_recipients_is_noop(tmp_path) -> None:
    storage = _storage_with(tmp_path)
    sender = FakeSender()

    outcome = asyncio.run(_fanout(storage, sender).deliver_reminder("тело", [], events=_events()))

    assert (outcome.attempted, outcome.succeeded) == (0, 0)
    assert sender.sent == []
    assert storage.list_message_logs() == []
    assert storage.list_sent_events() == []


def test_success_clears_previous_error(tmp_path) -> None:
    storage = _storage_with(tmp_path, 5)
    storage.update_delivery_status(5, DeliveryStatus.FAILED, "old error")

    asyncio.run(_fanout(storage, FakeSender()).deliver_reminder("тело", storage.list_active_allowed()))

    recipient = storage.get_recipient(5)
    assert recipient.delivery_status is DeliveryStatus.SUCCESS
    assert recipient.last_error is None


def test_status_store_errors_do_not_abort_batch(tmp_path) -> None:
    storage = _storage_with(tmp_path, 1, 2, 3, cls=BrokenStatusStore)
    sender = FakeSender()

    outcome = asyncio.run(
        _fanout(storage, sender).deliver_reminder("тело", storage.list_active_allowed(), events=_events())
    )

    assert outcome.succeeded == 3
    assert [user_id for user_id, _ in sender.sent] == [1, 2, 3]
    assert outcome.marked_sent == 2
    assert len(storage.list_sent_events()) == 2
    assert len(storage.list_message_logs()) == 1


def test_audit_store_error_still_returns_outcome(tmp_path) -> None:
    storage = _storage_with(tmp_path, 1, cls=BrokenAuditStore)

    outcome = asyncio.run(
        _fanout(storage, FakeSender()).deliver_reminder("тело", storage.list_active_allowed(), events=_events())
    )

    assert (outcome.succeeded, outcome.marked_sent) == (1, 2)
    assert storage.list_message_logs() == []


def test_ledger_write_failure_does_not_undo_sends(tmp_path) -> None:
    storage = _storage_with(tmp_path, 1, cls=BrokenLedgerStorage)
    sender = FakeSender()

    outcome = asyncio.run(
        _fanout(storage, sender).deliver_reminder("тело", storage.list_active_allowed(), events=_events())
    )

    assert outcome.succeeded == 1
    assert outcome.marked_sent == 0
    assert sender.sent == [(1, "тело")]
    assert len(storage.list_message_logs()) == 1


def test_sends_are_paced(tmp_path) -> None:
    storage = _storage_with(tmp_path, 1, 2, 3)
    clock = _FakeClock()
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)
        clock.value += delay

    pacer = PacingGate(0.5, clock=clock, sleep=_sleep)
    asyncio.run(_fanout(storage, FakeSender(), pacer=pacer).deliver_reminder("тело", storage.list_active_allowed()))

    assert delays == [0.5, 0.5]


def test_recipients_notified_in_given_order(tmp_path) -> None:
    storage = _storage_with(tmp_path, 1, 2, 3)
    sender = FakeSender()
    recipients = [Recipient(user_id=3, username="c"), Recipient(user_id=1, username="a")]

    asyncio.run(_fanout(storage, sender).deliver_reminder("тело", recipients))

    assert [user_id for user_id, _ in sender.sent] == [3, 1]
