"""
Clock and Deadline - timed waits bounded by an operation budget.

Polling loops and transport backoff both sleep. Every such sleep goes
through a Deadline so it can never overrun the remaining budget of the
enclosing create/delete/exists call.
"""

import time


class Clock:
    """Monotonic wall clock. Tests substitute a fake with the same two methods."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


SYSTEM_CLOCK = Clock()


class Deadline:
    """
    An operation budget.

    Usage:
        deadline = Deadline(20 * 60)
        while not deadline.expired:
            ...
            deadline.sleep(10)
    """

    def __init__(self, timeout: float, clock: Clock | None = None):
        if timeout < 0:
            raise ValueError("timeout must be >= 0")
        self.clock = clock or SYSTEM_CLOCK
        self.timeout = timeout
        self.started_at = self.clock.now()
        self.ends_at = self.started_at + timeout

    @property
    def elapsed(self) -> float:
        return self.clock.now() - self.started_at

    def remaining(self) -> float:
        return max(0.0, self.ends_at - self.clock.now())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def sleep(self, seconds: float) -> bool:
        """
        Sleep for `seconds`, truncated to the remaining budget.

        Returns:
            True if budget remains after waking, False once it is spent
        """
        self.clock.sleep(min(seconds, self.remaining()))
        return not self.expired

    def __repr__(self) -> str:
        return f"Deadline(timeout={self.timeout}, remaining={self.remaining():.1f})"
