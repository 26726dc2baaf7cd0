"""
Poll Policy

Bounded polling with a fixed (or growing) interval between attempts.
Used for transaction confirmation and attestation waits.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from . import errors

logger = logging.getLogger(__name__)


class PollPolicy:
    """Polling settings

    Args:
        max_attempts: Number of probe calls before giving up
        interval: Delay between attempts in seconds
        backoff: Multiplier applied to the interval after each attempt (1.0 = fixed)
        max_interval: Upper bound for the delay
        sleep: Awaitable sleep function (tests pass a simulated clock)
        clock: Monotonic clock used for deadlines
    """

    def __init__(
        self,
        max_attempts: int = 60,
        interval: float = 3.0,
        backoff: float = 1.0,
        max_interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_attempts < 1:
            raise errors.ValidationError("max_attempts must be at least 1")
        if interval < 0 or backoff < 1.0:
            raise errors.ValidationError("interval must be >= 0 and backoff >= 1.0")
        self.max_attempts = max_attempts
        self.interval = interval
        self.backoff = backoff
        self.max_interval = max_interval
        self.sleep = sleep
        self.clock = clock

    def delay(self, attempt: int) -> float:
        """Delay after the given (0-based) attempt"""
        delay = self.interval * (self.backoff ** attempt)
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay

    def deadline_in(self, seconds: float) -> float:
        """Absolute deadline ``seconds`` from now on this policy's clock"""
        return self.clock() + seconds

    async def poll(
        self,
        probe: Callable[[], Awaitable[Optional[Any]]],
        *,
        description: str = "operation",
        deadline: Optional[float] = None
    ) -> Any:
        """Call ``probe`` until it returns something other than None.

        Exceptions raised by the probe propagate immediately.

        Raises:
            errors.TimeoutError: attempts exhausted or deadline reached
        """
        for attempt in range(self.max_attempts):
            result = await probe()
            if result is not None:
                return result

            logger.debug(f"Waiting for {description} (attempt {attempt + 1}/{self.max_attempts})")
            if attempt + 1 >= self.max_attempts:
                break

            delay = self.delay(attempt)
            if deadline is not None and self.clock() + delay > deadline:
                raise errors.TimeoutError(
                    f"{description} deadline reached",
                    {"attempts": attempt + 1}
                )
            await self.sleep(delay)

        raise errors.TimeoutError(
            f"{description} timed out",
            {"attempts": self.max_attempts}
        )
