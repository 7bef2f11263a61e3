"""Один запуск напоминаний: закреп -> разбор -> окно -> дедупликация -> рассылка.

Запуски для одного чата не пересекаются: срабатывание во время идущего запуска
пропускается, а не ставится в очередь.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from app.core.dedup_ledger import DedupLedger
from app.core.delivery import DeliveryFanout
from app.core.errors import LedgerLookupFailure, SourceUnavailable
from app.core.event_parser import BOT_TZ, build_reminder_body, get_upcoming, parse_event_list
from app.core.interfaces import PinnedSource, RecipientStore
from app.core.models import EventEntry, RunSummary
from app.infra.run_context import elapsed_ms, log_error, log_event, start_run

LOGGER = logging.getLogger(__name__)


class ReminderRunner:
    def __init__(
        self,
        *,
        source: PinnedSource,
        ledger: DedupLedger,
        recipient_store: RecipientStore,
        fanout: DeliveryFanout,
        days_ahead: int,
        tz: ZoneInfo = BOT_TZ,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if days_ahead < 1:
            raise ValueError("days_ahead must be >= 1")
        self._source = source
        self._ledger = ledger
        self._recipients = recipient_store
        self._fanout = fanout
        self._days_ahead = days_ahead
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(tz=tz))
        self._locks: dict[int, asyncio.Lock] = {}

    async def run(self, chat_id: int) -> RunSummary:
        lock = self._locks.setdefault(chat_id, asyncio.Lock())
        if lock.locked():
            LOGGER.warning("Reminder run already in progress, skipping: chat_id=%s", chat_id)
            return RunSummary(chat_id=chat_id, status="skipped")
        async with lock:
            return await self._run_locked(chat_id)

    async def _run_locked(self, chat_id: int) -> RunSummary:
        run_context = start_run(chat_id)
        log_event(LOGGER, run_context, component="reminder_run", event="run.start", chat_id=chat_id)
        try:
            pinned = await self._source.fetch_pinned_text(chat_id)
        except SourceUnavailable as exc:
            log_error(LOGGER, run_context, component="reminder_run", where="fetch_pinned_text", exc=exc)
            raise
        if not pinned.text or not pinned.text.strip():
            exc = SourceUnavailable(f"pinned message in chat {chat_id} has no text")
            log_error(LOGGER, run_context, component="reminder_run", where="fetch_pinned_text", exc=exc)
            raise exc

        now = self._clock()
        entries = parse_event_list(pinned.text, now=now, tz=self._tz)
        invalid = [entry for entry in entries if not entry.valid]
        for entry in invalid:
            LOGGER.info("Line skipped, no date recognized: %r", entry.raw_line)
        upcoming = get_upcoming(entries, self._days_ahead, now=now, tz=self._tz)
        counts = {"parsed": len(entries), "invalid": len(invalid), "upcoming": len(upcoming)}
        LOGGER.info(
            "Events parsed: total=%s invalid=%s upcoming=%s days_ahead=%s",
            counts["parsed"],
            counts["invalid"],
            counts["upcoming"],
            self._days_ahead,
        )
        if not upcoming:
            return self._finish(run_context, RunSummary(chat_id=chat_id, status="no_upcoming", **counts))

        new_events, lookup_failures = self._select_unsent(upcoming)
        counts["lookup_failures"] = lookup_failures
        if not new_events:
            if lookup_failures:
                LOGGER.error("Sent-events ledger unavailable, nothing sent: failures=%s", lookup_failures)
                status = "ledger_unavailable"
            else:
                LOGGER.info("All upcoming events were already sent")
                status = "already_sent"
            return self._finish(run_context, RunSummary(chat_id=chat_id, status=status, **counts))
        for entry in new_events:
            LOGGER.info("  - %s", entry.raw_line)

        try:
            recipients = self._recipients.list_active_allowed()
        except Exception as exc:
            log_error(LOGGER, run_context, component="reminder_run", where="list_active_allowed", exc=exc)
            recipients = []
        if not recipients:
            return self._finish(
                run_context,
                RunSummary(chat_id=chat_id, status="no_recipients", new_events=len(new_events), **counts),
            )
        LOGGER.info("Sending reminder to %s recipients", len(recipients))

        body = build_reminder_body(new_events)
        outcome = await self._fanout.deliver_reminder(
            body,
            recipients,
            events=new_events,
            source_message_id=pinned.message_id,
            run_context=run_context,
        )
        status = "sent" if outcome.succeeded == outcome.attempted else ("partial" if outcome.succeeded else "failed")
        summary = RunSummary(
            chat_id=chat_id,
            status=status,
            new_events=len(new_events),
            attempted=outcome.attempted,
            succeeded=outcome.succeeded,
            marked_sent=outcome.marked_sent,
            **counts,
        )
        return self._finish(run_context, summary)

    def _select_unsent(self, upcoming: list[EventEntry]) -> tuple[list[EventEntry], int]:
        new_events: list[EventEntry] = []
        failures = 0
        for entry in upcoming:
            fingerprint = self._ledger.fingerprint(entry.resolved_date, entry.description)
            try:
                already_sent = self._ledger.is_already_sent(fingerprint)
            except LedgerLookupFailure:
                # unreadable ledger: skip rather than risk a duplicate
                LOGGER.exception("Sent-event check failed, skipping: %s - %s", entry.date_key, entry.description)
                failures += 1
                continue
            if already_sent:
                LOGGER.info("Event already sent: %s - %s", entry.date_key, entry.description)
                continue
            new_events.append(entry)
        return new_events, failures

    def _finish(self, run_context, summary: RunSummary) -> RunSummary:
        log_event(
            LOGGER,
            run_context,
            component="reminder_run",
            event="run.summary",
            status="partial" if summary.status in {"partial", "failed", "ledger_unavailable"} else "ok",
            duration_ms=elapsed_ms(run_context.start_time),
            outcome=summary.status,
            parsed=summary.parsed,
            invalid=summary.invalid,
            upcoming=summary.upcoming,
            new_events=summary.new_events,
            attempted=summary.attempted,
            succeeded=summary.succeeded,
            marked_sent=summary.marked_sent,
            lookup_failures=summary.lookup_failures,
        )
        return summary
