"""Логирование процесса бота напоминаний.

configure_logging() вызывается один раз из main(): уровень из LOG_LEVEL, файл с
ротацией из LOG_FILE, токен бота маскируется в каждой записи.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

_DEFAULT_LEVEL = "INFO"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_BACKUP_COUNT = 3
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Bot API URLs embed the token: /bot<id>:<secret>/method
_BOT_TOKEN_RE = re.compile(r"bot\d+:[A-Za-z0-9_-]+")
_NOISY_LOGGERS = ("httpx", "httpcore", "telegram", "telegram.ext", "apscheduler")


class TokenRedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _BOT_TOKEN_RE.sub("bot***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def get_log_level(raw_env: dict[str, str] | None = None) -> int:
    source = raw_env if raw_env is not None else os.environ
    raw = source.get("LOG_LEVEL", _DEFAULT_LEVEL).strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(*, level: int | None = None, log_file: str | None = None) -> None:
    if level is None:
        level = get_log_level()
    if log_file is None:
        log_file = os.environ.get("LOG_FILE", "").strip() or None

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)
    redactor = TokenRedactingFilter()

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(formatter)
    console.addFilter(redactor)
    root.addHandler(console)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=_MAX_BYTES,
                backupCount=_BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(redactor)
            root.addHandler(file_handler)
        except OSError as e:
            root.warning("Could not open log file %s: %s; logging to stderr only", log_file, e)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
