"""
Retry cooldown for the auth flow.

A single integer counter decremented once per second by a background task
while it is above zero.  The flow disables resend while it runs, and also
submission when the cooldown was started by a rate-limit error.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from chronos.models.enums import CooldownReason

Sleep = Callable[[float], Awaitable[None]]


class Cooldown:
    """Countdown in whole seconds.

    Parameters
    ----------
    sleep:
        Awaitable used between ticks; injectable so tests can drive time.
    interval_s:
        Seconds per tick.
    """

    def __init__(self, sleep: Sleep = asyncio.sleep, interval_s: float = 1.0) -> None:
        self._sleep: Sleep = sleep
        self._interval_s: float = interval_s
        self._remaining: int = 0
        self._reason: Optional[CooldownReason] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def reason(self) -> Optional[CooldownReason]:
        return self._reason

    @property
    def active(self) -> bool:
        return self._remaining > 0

    @property
    def blocks_submit(self) -> bool:
        return self.active and self._reason == CooldownReason.RATE_LIMIT

    def start(self, seconds: int, reason: CooldownReason) -> None:
        """(Re)start the countdown at *seconds*.  Needs a running loop."""
        loop = asyncio.get_running_loop()
        # A restart gets a full interval before its first tick.
        self.cancel()
        self._remaining = max(0, int(seconds))
        self._reason = reason if self._remaining else None
        if self._remaining:
            self._task = loop.create_task(self._run(), name="auth-cooldown")

    def tick(self) -> int:
        if self._remaining > 0:
            self._remaining -= 1
        if self._remaining == 0:
            self._reason = None
        return self._remaining

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._remaining = 0
        self._reason = None

    async def _run(self) -> None:
        while self._remaining > 0:
            await self._sleep(self._interval_s)
            self.tick()
