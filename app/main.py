from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from telegram import Bot

from app.core.app_scheduler import start_reminder_scheduler, stop_reminder_scheduler
from app.core.dedup_ledger import DedupLedger
from app.core.delivery import DeliveryFanout
from app.core.errors import RecipientStoreError, SourceUnavailable
from app.core.reminder_run import ReminderRunner
from app.infra.config import Settings, load_settings, validate_startup_env
from app.infra.logging_config import configure_logging
from app.infra.rate_limiter import PacingGate
from app.infra.resilience import RetryPolicy
from app.infra.storage import ReminderStorage
from app.infra.telegram import TelegramGateway

LOGGER = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Напоминания о событиях из закреплённого сообщения группы")
    parser.add_argument("--once", action="store_true", help="выполнить одну проверку и выйти")
    parser.add_argument("--init", action="store_true", help="создать схему БД, добавить получателей и выйти")
    admin = parser.add_mutually_exclusive_group()
    admin.add_argument("--allow", type=int, metavar="USER_ID", help="разрешить отправку получателю")
    admin.add_argument("--deny", type=int, metavar="USER_ID", help="запретить отправку получателю")
    admin.add_argument("--deactivate", type=int, metavar="USER_ID", help="деактивировать получателя")
    return parser


def seed_recipients(storage: ReminderStorage, user_ids: tuple[int, ...]) -> int:
    added = 0
    for user_id in user_ids:
        try:
            storage.upsert_recipient(user_id, "")
        except RecipientStoreError:
            LOGGER.exception("Failed to upsert recipient: user_id=%s", user_id)
            continue
        added += 1
    return added


def apply_admin_command(storage: ReminderStorage, args: argparse.Namespace) -> bool:
    """Выполняет --allow/--deny/--deactivate. False, если ни одна команда не передана."""
    if args.allow is not None:
        changed = storage.set_allow_sending(args.allow, True)
        user_id, action = args.allow, "allow"
    elif args.deny is not None:
        changed = storage.set_allow_sending(args.deny, False)
        user_id, action = args.deny, "deny"
    elif args.deactivate is not None:
        changed = storage.deactivate_recipient(args.deactivate)
        user_id, action = args.deactivate, "deactivate"
    else:
        return False
    if changed:
        LOGGER.info("Recipient updated: user_id=%s action=%s", user_id, action)
    else:
        LOGGER.warning("Recipient not found: user_id=%s action=%s", user_id, action)
    return True


def build_runner(settings: Settings, bot: Bot, storage: ReminderStorage) -> ReminderRunner:
    gateway = TelegramGateway(
        bot,
        token=settings.bot_token,
        timeout_seconds=settings.fetch_timeout_seconds,
        retry_policy=RetryPolicy(max_attempts=settings.fetch_retry_attempts),
    )
    ledger = DedupLedger(storage)
    fanout = DeliveryFanout(
        sender=gateway,
        recipient_store=storage,
        ledger=ledger,
        audit_store=storage,
        pacer=PacingGate(settings.send_interval_ms / 1000),
    )
    return ReminderRunner(
        source=gateway,
        ledger=ledger,
        recipient_store=storage,
        fanout=fanout,
        days_ahead=settings.days_ahead,
        tz=settings.timezone,
    )


async def _run_once(runner: ReminderRunner, chat_id: int) -> int:
    try:
        summary = await runner.run(chat_id)
    except SourceUnavailable as exc:
        LOGGER.error("Reminder run failed: %s", exc)
        return 1
    LOGGER.info("Done: status=%s sent=%s/%s", summary.status, summary.succeeded, summary.attempted)
    return 0


async def _serve(runner: ReminderRunner, settings: Settings) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            LOGGER.debug("Signal handlers are not supported on this platform")
    scheduler = start_reminder_scheduler(
        runner,
        chat_id=settings.group_chat_id,
        cron=settings.schedule_cron,
        tz=settings.timezone,
    )
    LOGGER.info("Waiting for scheduled runs: cron=%s", settings.schedule_cron)
    try:
        await stop.wait()
    finally:
        LOGGER.info("Shutting down")
        stop_reminder_scheduler(scheduler)


async def _async_main(settings: Settings, *, once: bool) -> int:
    storage = ReminderStorage(settings.db_path)
    try:
        seed_recipients(storage, settings.recipient_user_ids)
        async with Bot(settings.bot_token) as bot:
            LOGGER.info("Authorized as %s", bot.username)
            runner = build_runner(settings, bot, storage)
            LOGGER.info(
                "Settings: days_ahead=%s run_once=%s schedule_cron=%s tz=%s",
                settings.days_ahead,
                once,
                settings.schedule_cron,
                settings.timezone.key,
            )
            if once:
                return await _run_once(runner, settings.group_chat_id)
            await _serve(runner, settings)
            return 0
    finally:
        storage.close()


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    configure_logging()
    settings = load_settings()

    if args.init or args.allow is not None or args.deny is not None or args.deactivate is not None:
        settings.db_path.parent.mkdir(parents=True, exist_ok=True)
        storage = ReminderStorage(settings.db_path)
        try:
            if args.init:
                added = seed_recipients(storage, settings.recipient_user_ids)
                LOGGER.info("Database initialized: path=%s recipients=%s", settings.db_path, added)
            apply_admin_command(storage, args)
        finally:
            storage.close()
        return

    validate_startup_env(settings)
    exit_code = asyncio.run(_async_main(settings, once=args.once or settings.run_once))
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
