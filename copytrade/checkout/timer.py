"""Checkout countdown: one wall-clock window per session, ticked once a second."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from copytrade.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class CheckoutTimer:
    """Bounds the whole session from entry; stage transitions never reset it."""

    def __init__(
        self,
        duration_seconds: Optional[float] = None,
        started_at: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.duration = float(duration_seconds if duration_seconds is not None else settings.CHECKOUT_SESSION_SECONDS)
        self.clock = clock
        self.started_at = started_at if started_at is not None else clock()

    def remaining(self, now: Optional[float] = None) -> float:
        now = self.clock() if now is None else now
        return max(0.0, self.started_at + self.duration - now)

    def expired(self, now: Optional[float] = None) -> bool:
        return self.remaining(now) <= 0

    def label(self, now: Optional[float] = None) -> str:
        left = int(self.remaining(now))
        return f"{left // 60}:{left % 60:02d}"


async def run_countdown(
    tick: Callable[[Optional[float]], Awaitable[bool]],
    interval: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Call ``tick`` every ``interval`` seconds until it reports the session is over."""
    while True:
        if await tick(None):
            logger.debug("Checkout countdown finished")
            return
        await sleep(interval)
