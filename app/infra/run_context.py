from __future__ import annotations

import hashlib
import json
import logging
import os
import time
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

_DEV_ENVS = {"dev", "development", "local"}
_SECRET_KEYS = {"authorization", "api_key", "apikey", "token", "bot_token", "password", "secret"}
_TEXT_KEYS = {"text", "body", "body_text", "pinned_text", "message"}


@dataclass
class RunContext:
    correlation_id: str
    chat_id: int
    ts: datetime
    env: str
    start_time: float = field(default_factory=time.monotonic)
    status: str = "ok"


def _env_label() -> str:
    env = os.getenv("APP_ENV", "prod").strip().lower()
    return "dev" if env in _DEV_ENVS else "prod"


def start_run(chat_id: int) -> RunContext:
    return RunContext(
        correlation_id=str(uuid.uuid4()),
        chat_id=chat_id,
        ts=datetime.now(timezone.utc),
        env=_env_label(),
    )


def elapsed_ms(start_time: float) -> float:
    return max((time.monotonic() - start_time) * 1000, 0.01)


def _truncate_text(text: str, limit: int = 120) -> str:
    cleaned = text.replace("\n", " ").strip()
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[:limit].rstrip() + "…"


def safe_log_payload(run_context: RunContext | None, data: Any) -> Any:
    """Маскирует секреты; тексты сообщений вне dev заменяются длиной и хешем."""
    env = run_context.env if run_context else "prod"
    if isinstance(data, dict):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if key_lower in _SECRET_KEYS:
                sanitized[key] = "***"
            elif key_lower in _TEXT_KEYS and isinstance(value, str):
                payload: dict[str, Any] = {
                    "text_len": len(value),
                    "text_sha256": hashlib.sha256(value.encode("utf-8")).hexdigest(),
                }
                if env == "dev":
                    payload["text_preview"] = _truncate_text(value)
                sanitized[key] = payload
            else:
                sanitized[key] = safe_log_payload(run_context, value)
        return sanitized
    if isinstance(data, (list, tuple)):
        return [safe_log_payload(run_context, item) for item in data]
    return data


def log_event(
    logger: logging.Logger,
    run_context: RunContext | None,
    *,
    component: str,
    event: str,
    status: str = "ok",
    duration_ms: float | None = None,
    **fields: Any,
) -> None:
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "correlation_id": run_context.correlation_id if run_context else "-",
        "component": component,
        "event": event,
        "status": status,
        "env": run_context.env if run_context else "prod",
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if fields:
        payload.update(safe_log_payload(run_context, fields))
    message = json.dumps(payload, ensure_ascii=False, default=str)
    if status == "error":
        logger.error(message)
    elif status in {"skipped", "partial"}:
        logger.warning(message)
    else:
        logger.info(message)


def log_error(
    logger: logging.Logger,
    run_context: RunContext | None,
    *,
    component: str,
    where: str,
    exc: BaseException,
) -> None:
    env = run_context.env if run_context else "prod"
    message = str(exc)
    payload: dict[str, Any] = {
        "where": where,
        "exc_type": type(exc).__name__,
        "exc_msg": message if env == "dev" else _truncate_text(message),
        "chat_id": run_context.chat_id if run_context else 0,
    }
    if env == "dev":
        payload["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    log_event(
        logger,
        run_context,
        component=component,
        event="error",
        status="error",
        **payload,
    )
