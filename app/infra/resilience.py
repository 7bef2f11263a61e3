"""Повторы вызовов Bot API при сетевых ошибках и таймаутах."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, TypeVar

import httpx
from telegram.error import NetworkError, RetryAfter, TimedOut

from app.infra.run_context import RunContext, log_event

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_TIMEOUT_ERRORS = (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException, TimedOut)
# RetryAfter subclasses TelegramError, not NetworkError
_NETWORK_ERRORS = (httpx.TransportError, NetworkError, RetryAfter)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 250
    max_delay_ms: int = 2000
    jitter_ms: int = 200
    # cap for a flood-control wait requested by Telegram
    max_retry_after_seconds: float = 30.0

    def delay_seconds(self, attempt: int, exc: Exception | None = None) -> float:
        if isinstance(exc, RetryAfter):
            return min(_retry_after_seconds(exc), self.max_retry_after_seconds)
        delay_ms = min(self.max_delay_ms, self.base_delay_ms * 2 ** max(attempt - 1, 0))
        if self.jitter_ms > 0:
            delay_ms += random.randint(0, self.jitter_ms)
        return min(self.max_delay_ms, delay_ms) / 1000


def _retry_after_seconds(exc: RetryAfter) -> float:
    value = exc.retry_after
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def is_transient_error(exc: Exception) -> bool:
    return isinstance(exc, _TIMEOUT_ERRORS + _NETWORK_ERRORS)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    name: str,
    timeout_seconds: float | None = None,
    run_context: RunContext | None = None,
    is_retryable: Callable[[Exception], bool] = is_transient_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Повторяет ``func()``, пока не будет успеха, неповторяемой ошибки или конца попыток.

    Последняя ошибка пробрасывается без изменений.
    """
    attempts = max(1, policy.max_attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            if timeout_seconds and timeout_seconds > 0:
                return await asyncio.wait_for(func(), timeout=timeout_seconds)
            return await func()
        except Exception as exc:
            if attempt >= attempts or not is_retryable(exc):
                raise
            delay = policy.delay_seconds(attempt, exc)
            log_event(
                LOGGER,
                run_context,
                component="telegram",
                event="retry.attempt",
                status="retry",
                name=name,
                attempt=attempt + 1,
                wait_ms=round(delay * 1000),
                error=type(exc).__name__,
            )
            await sleep(delay)
