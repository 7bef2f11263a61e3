"""Планировщик на APScheduler: запуск напоминаний по cron в заданной TZ."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.errors import SourceUnavailable
from app.core.reminder_run import ReminderRunner

LOGGER = logging.getLogger(__name__)


def _job_id(chat_id: int) -> str:
    return f"pinned_reminder:{chat_id}"


async def run_scheduled_reminder(runner: ReminderRunner, chat_id: int) -> None:
    """Колбэк задачи: один запуск на срабатывание. Ошибки логируются и в APScheduler не уходят."""
    LOGGER.info("Scheduled reminder run started: chat_id=%s", chat_id)
    try:
        summary = await runner.run(chat_id)
    except SourceUnavailable as exc:
        LOGGER.error("Reminder run failed: chat_id=%s error=%s", chat_id, exc)
        return
    except Exception:
        LOGGER.exception("Reminder run crashed: chat_id=%s", chat_id)
        return
    LOGGER.info(
        "Reminder run finished: chat_id=%s status=%s sent=%s/%s",
        chat_id,
        summary.status,
        summary.succeeded,
        summary.attempted,
    )


def build_reminder_scheduler(
    runner: ReminderRunner,
    *,
    chat_id: int,
    cron: str,
    tz: ZoneInfo,
) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=tz)
    trigger = CronTrigger.from_crontab(cron, timezone=tz)
    scheduler.add_job(
        run_scheduled_reminder,
        trigger=trigger,
        id=_job_id(chat_id),
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"runner": runner, "chat_id": chat_id},
    )
    return scheduler


def start_reminder_scheduler(
    runner: ReminderRunner,
    *,
    chat_id: int,
    cron: str,
    tz: ZoneInfo,
) -> AsyncIOScheduler:
    """Вызывать только внутри запущенного event loop."""
    scheduler = build_reminder_scheduler(runner, chat_id=chat_id, cron=cron, tz=tz)
    scheduler.start()
    LOGGER.info("Reminder scheduler started: cron=%s tz=%s job_id=%s", cron, tz.key, _job_id(chat_id))
    return scheduler


def stop_reminder_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    if scheduler is None:
        return
    try:
        scheduler.shutdown(wait=False)
        LOGGER.info("Reminder scheduler stopped")
    except Exception:
        LOGGER.exception("Failed to shutdown reminder scheduler")
