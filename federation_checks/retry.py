from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar


LOGGER = logging.getLogger("federation-monitor")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_seconds: float = 5.0
    multiplier: float = 2.0
    max_delay_seconds: float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based), capped at max_delay_seconds."""
        n = max(1, int(attempt))
        delay = float(self.initial_delay_seconds) * (float(self.multiplier) ** (n - 1))
        return max(0.0, min(float(self.max_delay_seconds), delay))

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        fatal: tuple[type[BaseException], ...] = (),
        description: str = "operation",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> T:
        attempts = max(1, int(self.max_attempts))
        for attempt in range(1, attempts):
            try:
                return await fn()
            except retry_on as exc:
                if isinstance(exc, fatal):
                    raise
                delay = self.delay_for(attempt)
                LOGGER.warning(
                    "%s failed attempt=%s/%s retry_in=%ss error=%s: %s",
                    description,
                    attempt,
                    attempts,
                    round(delay, 3),
                    type(exc).__name__,
                    exc,
                )
                await sleep(delay)
        return await fn()
