from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

DEFAULT_SEND_INTERVAL_SECONDS = 0.5


class PacingGate:
    """Пропускает вызовы ``wait()`` не чаще одного раза в ``interval_seconds``.

    Первый вызов проходит сразу."""

    def __init__(
        self,
        interval_seconds: float = DEFAULT_SEND_INTERVAL_SECONDS,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._interval = max(0.0, interval_seconds)
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._last_release: float | None = None
        self._lock = asyncio.Lock()

    @property
    def interval_seconds(self) -> float:
        return self._interval

    async def wait(self) -> float:
        async with self._lock:
            now = self._clock()
            delay = 0.0
            if self._last_release is not None:
                delay = max(0.0, self._interval - (now - self._last_release))
            if delay > 0:
                await self._sleep(delay)
            self._last_release = now + delay
            return delay
