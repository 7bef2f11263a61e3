from __future__ import annotations

import logging
from typing import Sequence

from app.core.dedup_ledger import DedupLedger
from app.core.errors import LedgerWriteFailure
from app.core.interfaces import AuditStore, DirectSender, RecipientStore
from app.core.models import DeliveryOutcome, DeliveryStatus, EventEntry, Recipient
from app.infra.rate_limiter import PacingGate
from app.infra.run_context import RunContext, log_event

LOGGER = logging.getLogger(__name__)

REMINDER_KIND = "event_reminder"


class DeliveryFanout:
    """Рассылает один текст напоминания всем получателям по порядку.

    Ошибка отправки или хранилища для одного получателя не прерывает рассылку.
    Одной успешной доставки достаточно, чтобы отметить всю пачку событий как
    отправленную; неудачные получатели в этом запуске не повторяются.
    """

    def __init__(
        self,
        *,
        sender: DirectSender,
        recipient_store: RecipientStore,
        ledger: DedupLedger,
        audit_store: AuditStore,
        pacer: PacingGate | None = None,
    ) -> None:
        self._sender = sender
        self._recipients = recipient_store
        self._ledger = ledger
        self._audit = audit_store
        self._pacer = pacer or PacingGate()

    async def deliver_reminder(
        self,
        body: str,
        recipients: Sequence[Recipient],
        *,
        events: Sequence[EventEntry] = (),
        source_message_id: int = 0,
        kind: str = REMINDER_KIND,
        run_context: RunContext | None = None,
    ) -> DeliveryOutcome:
        if not recipients:
            LOGGER.info("No active recipients allowed to receive reminders")
            return DeliveryOutcome(attempted=0, succeeded=0)

        succeeded = 0
        for recipient in recipients:
            await self._pacer.wait()
            try:
                await self._sender.send_direct(recipient.user_id, body)
            except Exception as exc:
                error_text = str(exc) or type(exc).__name__
                LOGGER.warning(
                    "Reminder send failed: user_id=%s error=%s",
                    recipient.user_id,
                    error_text,
                )
                self._record_status(recipient.user_id, DeliveryStatus.FAILED, error_text)
                continue
            succeeded += 1
            LOGGER.info("Reminder sent: user_id=%s", recipient.user_id)
            self._record_status(recipient.user_id, DeliveryStatus.SUCCESS, None)

        marked = self._mark_batch_sent(events) if succeeded > 0 else 0
        self._append_audit(
            source_message_id=source_message_id,
            kind=kind,
            body=body,
            total=len(recipients),
            success=succeeded,
        )
        outcome = DeliveryOutcome(attempted=len(recipients), succeeded=succeeded, marked_sent=marked)
        log_event(
            LOGGER,
            run_context,
            component="delivery",
            event="delivery.fanout",
            status="ok" if outcome.failed == 0 else "partial",
            attempted=outcome.attempted,
            succeeded=outcome.succeeded,
            marked_sent=marked,
        )
        return outcome

    def _record_status(self, user_id: int, status: DeliveryStatus, error: str | None) -> None:
        try:
            self._recipients.update_delivery_status(user_id, status, error)
        except Exception:
            # status bookkeeping never aborts the batch
            LOGGER.exception("Delivery status update failed: user_id=%s status=%s", user_id, status.value)

    def _mark_batch_sent(self, events: Sequence[EventEntry]) -> int:
        marked = 0
        for event in events:
            if not event.valid or event.resolved_date is None:
                continue
            fingerprint = self._ledger.fingerprint(event.resolved_date, event.description)
            try:
                self._ledger.mark_sent(event.resolved_date, event.description, fingerprint)
            except LedgerWriteFailure:
                LOGGER.exception(
                    "Failed to record sent event: date=%s description=%s",
                    event.date_key,
                    event.description,
                )
                continue
            marked += 1
        return marked

    def _append_audit(self, *, source_message_id: int, kind: str, body: str, total: int, success: int) -> None:
        try:
            self._audit.append_log(
                source_message_id=source_message_id,
                kind=kind,
                body_text=body,
                total_recipients=total,
                success_count=success,
            )
        except Exception:
            LOGGER.exception("Message log write failed: source_message_id=%s", source_message_id)
