"""Разбор закреплённого списка событий.

Каждая непустая строка проверяется тремя грамматиками в фиксированном порядке:
"15 марта Встреча", "01.04 Дедлайн", "10-12.05 Конференция". Год в тексте не
указывается и выводится правилом переноса на следующий год, своим для каждой
грамматики.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Callable, Iterable
from zoneinfo import ZoneInfo

from app.core.models import EventEntry

LOGGER = logging.getLogger(__name__)

BOT_TZ = ZoneInfo("Europe/Moscow")

REMINDER_HEADER = "🎉 Напоминание о предстоящих событиях:"

_MONTH_NAMES_RU = (
    "января",
    "февраля",
    "марта",
    "апреля",
    "мая",
    "июня",
    "июля",
    "августа",
    "сентября",
    "октября",
    "ноября",
    "декабря",
)
_MONTHS_RU = {name: index for index, name in enumerate(_MONTH_NAMES_RU, start=1)}

_NAMED_MONTH_RE = re.compile(
    r"^(\d{1,2})\s+(" + "|".join(_MONTH_NAMES_RU) + r")\s+(.*)$",
    re.IGNORECASE,
)
_DOTTED_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\s+(.*)$")
_RANGE_RE = re.compile(r"^(\d{1,2})-(\d{1,2})\.(\d{1,2})\s+(.*)$")

_Match = tuple[int, int, str]


def parse_event_list(
    text: str,
    *,
    now: datetime | None = None,
    tz: ZoneInfo = BOT_TZ,
) -> list[EventEntry]:
    """Разбивает текст на строки и разбирает каждую непустую.

    ``now`` фиксируется один раз на весь проход, порядок записей сохраняется.
    """
    reference = _reference_now(now, tz)
    entries: list[EventEntry] = []
    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line:
            continue
        entries.append(_parse_line(line, now=reference))
    return entries


def get_upcoming(
    entries: Iterable[EventEntry],
    days_ahead: int,
    *,
    now: datetime | None = None,
    tz: ZoneInfo = BOT_TZ,
) -> list[EventEntry]:
    if days_ahead < 1:
        raise ValueError("days_ahead must be >= 1")
    reference = _reference_now(now, tz)
    today = reference.replace(hour=0, minute=0, second=0, microsecond=0)
    # exclusive bound: the whole boundary day is inside the window
    window_end = today + timedelta(days=days_ahead + 1)
    upcoming: list[EventEntry] = []
    for entry in entries:
        if not entry.valid or entry.resolved_date is None:
            continue
        if reference <= entry.resolved_date < window_end:
            upcoming.append(entry)
    return upcoming


def format_event_for_message(entry: EventEntry) -> str:
    if not entry.valid or entry.resolved_date is None:
        return ""
    resolved = entry.resolved_date
    month_name = _MONTH_NAMES_RU[resolved.month - 1]
    return f"📅 {resolved.day:02d} {month_name} - {entry.description}"


def build_reminder_body(entries: Iterable[EventEntry]) -> str:
    lines = [line for line in (format_event_for_message(entry) for entry in entries) if line]
    return f"{REMINDER_HEADER}\n\n" + "\n".join(lines)


def _reference_now(now: datetime | None, tz: ZoneInfo) -> datetime:
    if now is None:
        return datetime.now(tz=tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def _parse_line(line: str, *, now: datetime) -> EventEntry:
    for matcher, resolver in _GRAMMARS:
        matched = matcher(line)
        if matched is None:
            continue
        day, month, description = matched
        try:
            resolved = resolver(day, month, now=now)
        except ValueError:
            LOGGER.debug("Event date does not exist: line=%r day=%s month=%s", line, day, month)
            return _invalid(line)
        return EventEntry(raw_line=line, resolved_date=resolved, description=description, valid=True)
    return _invalid(line)


def _invalid(line: str) -> EventEntry:
    return EventEntry(raw_line=line, resolved_date=None, description="", valid=False)


def _match_named_month(line: str) -> _Match | None:
    match = _NAMED_MONTH_RE.match(line)
    if not match:
        return None
    day = int(match.group(1))
    if not 1 <= day <= 31:
        return None
    month = _MONTHS_RU.get(match.group(2).lower())
    if month is None:
        return None
    return day, month, match.group(3).strip()


def _match_dotted(line: str) -> _Match | None:
    match = _DOTTED_RE.match(line)
    if not match:
        return None
    day = int(match.group(1))
    month = int(match.group(2))
    if not 1 <= day <= 31 or not 1 <= month <= 12:
        return None
    return day, month, match.group(3).strip()


def _match_range(line: str) -> _Match | None:
    match = _RANGE_RE.match(line)
    if not match:
        return None
    start_day = int(match.group(1))
    month = int(match.group(3))
    if not 1 <= start_day <= 31 or not 1 <= month <= 12:
        return None
    # only the first day of the range is reminded about
    return start_day, month, match.group(4).strip()


def _midnight(year: int, month: int, day: int, tz) -> datetime:
    return datetime(year, month, day, tzinfo=tz)


def _roll_named_month(day: int, month: int, *, now: datetime) -> datetime:
    # a past day of the current month stays in the current year
    year = now.year + 1 if month < now.month else now.year
    return _midnight(year, month, day, now.tzinfo)


def _roll_if_past(day: int, month: int, *, now: datetime) -> datetime:
    today = (now.month, now.day)
    started = now > now.replace(hour=0, minute=0, second=0, microsecond=0)
    is_past = (month, day) < today or ((month, day) == today and started)
    year = now.year + 1 if is_past else now.year
    return _midnight(year, month, day, now.tzinfo)


_GRAMMARS: tuple[tuple[Callable[[str], _Match | None], Callable[..., datetime]], ...] = (
    (_match_named_month, _roll_named_month),
    (_match_dotted, _roll_if_past),
    (_match_range, _roll_if_past),
)
