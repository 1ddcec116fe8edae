"""
Constant-interval retry budgets and interruptible sleeps.

Every wait in the bootstrap path (DNS, TCP connect, readiness, convergence
polling) goes through pause(), which returns early when the shutdown event
is set so a SIGTERM never has to sit out a full timeout.
"""

import asyncio
from dataclasses import dataclass


async def pause(seconds: float, shutdown: asyncio.Event | None = None) -> bool:
    """
    Sleep for seconds, waking early on shutdown.

    Returns:
        True if shutdown was requested, False after a normal sleep.
    """
    if shutdown is None:
        await asyncio.sleep(seconds)
        return False
    if shutdown.is_set():
        return True
    try:
        await asyncio.wait_for(shutdown.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry budget with a fixed interval.

    Attributes:
        attempts: Maximum number of attempts (>= 1).
        interval_s: Seconds slept between attempts; no growth, no jitter.

    Example:
        policy = RetryPolicy(attempts=20, interval_s=2.0)
        for attempt in policy.attempt_numbers():
            if await try_once():
                break
            if attempt < policy.attempts and await policy.wait(shutdown):
                raise BootstrapInterrupted()
    """

    attempts: int = 1
    interval_s: float = 1.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if self.interval_s < 0:
            raise ValueError(f"interval_s must be >= 0, got {self.interval_s}")

    def attempt_numbers(self) -> range:
        return range(1, self.attempts + 1)

    async def wait(self, shutdown: asyncio.Event | None = None) -> bool:
        """Sleep one interval; True if shutdown was requested."""
        return await pause(self.interval_s, shutdown)
