"""RetryableTransport: bounded retry with a fixed pause between attempts."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ..types import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_DELAY = 0.5


class RetryableTransport:
    """Runs an async operation up to ``max_attempts`` times.

    No backoff and no jitter: this is for short user-facing waits
    (submission, message send), not background sync.
    """

    def __init__(
        self,
        retry_delay: float = RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int,
        name: str = "",
    ) -> T:
        """Return the first successful result; re-raise the last failure when exhausted."""
        attempts = max(1, int(max_attempts))
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    "%s attempt %d/%d failed: %s", name or "operation", attempt, attempts, e,
                )
                if isinstance(e, TransportError):
                    e.attempts = attempt
                if attempt < attempts:
                    await self._sleep(self.retry_delay)

        raise last_error or TransportError("Max retries exceeded", operation=name, attempts=attempts)
