"""Time source used by the detector and the iteration controller."""

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    """Provides the current time and suspends for delays."""

    def now(self) -> float:
        """Current time in epoch seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall clock backed by ``time.time`` and ``asyncio.sleep``."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
