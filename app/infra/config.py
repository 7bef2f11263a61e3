from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data/reminders.db")
DEFAULT_DAYS_AHEAD = 5
DEFAULT_SCHEDULE_CRON = "0 8 * * *"
DEFAULT_TIMEZONE = "Europe/Moscow"
DEFAULT_SEND_INTERVAL_MS = 500


@dataclass(frozen=True)
class Settings:
    bot_token: str
    group_chat_id: int
    recipient_user_ids: tuple[int, ...]
    db_path: Path
    days_ahead: int
    schedule_cron: str
    run_once: bool
    timezone: ZoneInfo
    send_interval_ms: int
    fetch_timeout_seconds: float
    fetch_retry_attempts: int


def load_settings(raw_env: dict[str, str] | None = None) -> Settings:
    if raw_env is None:
        load_dotenv()
    env = raw_env if raw_env is not None else os.environ

    days_ahead = _parse_int_with_default(env.get("DAYS_AHEAD"), DEFAULT_DAYS_AHEAD)
    if days_ahead < 1:
        LOGGER.info("DAYS_AHEAD=%s is below 1, using default %s", days_ahead, DEFAULT_DAYS_AHEAD)
        days_ahead = DEFAULT_DAYS_AHEAD
    run_once = _parse_optional_bool(env.get("RUN_ONCE"))
    schedule_cron = (env.get("SCHEDULE_CRON") or "").strip() or DEFAULT_SCHEDULE_CRON
    return Settings(
        bot_token=(env.get("BOT_TOKEN") or "").strip(),
        group_chat_id=_parse_int_with_default(env.get("GROUP_CHAT_ID"), 0),
        recipient_user_ids=tuple(sorted(_parse_int_set(env.get("RECIPIENT_USER_IDS")))),
        db_path=Path(env.get("BOT_DB_PATH", DEFAULT_DB_PATH)),
        days_ahead=days_ahead,
        schedule_cron=schedule_cron,
        run_once=bool(run_once),
        timezone=_parse_timezone(env.get("BOT_TIMEZONE")),
        send_interval_ms=max(0, _parse_int_with_default(env.get("SEND_INTERVAL_MS"), DEFAULT_SEND_INTERVAL_MS)),
        fetch_timeout_seconds=_parse_optional_float(env.get("FETCH_TIMEOUT_SECONDS"), 10.0),
        fetch_retry_attempts=max(1, _parse_int_with_default(env.get("FETCH_RETRY_ATTEMPTS"), 3)),
    )


def validate_startup_env(settings: Settings, *, logger: logging.Logger | None = None) -> None:
    log = logger or LOGGER
    if not settings.bot_token:
        log.error("startup.env invalid: BOT_TOKEN missing")
        raise SystemExit("BOT_TOKEN is not set")
    if settings.group_chat_id == 0:
        log.error("startup.env invalid: GROUP_CHAT_ID missing")
        raise SystemExit("GROUP_CHAT_ID is not set")
    if not settings.recipient_user_ids:
        log.warning("startup.env: RECIPIENT_USER_IDS empty, only recipients already in the database will be used")
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def _parse_timezone(value: str | None) -> ZoneInfo:
    name = (value or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        LOGGER.warning("Unknown BOT_TIMEZONE=%s, using %s", name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def _parse_int_set(value: str | None) -> set[int]:
    if value is None:
        return set()
    raw = [item.strip() for item in value.split(",") if item.strip()]
    return {int(item) for item in raw}


def _parse_optional_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    trimmed = value.strip()
    if not trimmed:
        return default
    return float(trimmed)


def _parse_optional_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    trimmed = value.strip().lower()
    if not trimmed:
        return None
    return trimmed in {"1", "true", "yes", "on"}


def _parse_int_with_default(value: str | None, default: int) -> int:
    if value is None:
        return default
    trimmed = value.strip()
    if not trimmed:
        return default
    return int(trimmed)
