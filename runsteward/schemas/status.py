"""
Run status tables.

The service reports status as a free-form string. Membership in the
initializing/running/stopping/terminal/unsuccessful sets is held in an
immutable StatusTable that is passed into the state machines, so tests can
swap tables without global setup. Strings in none of the sets are
unrecognized and left to the caller.
"""

from dataclasses import dataclass

RUNNING = "RUNNING"


@dataclass(frozen=True)
class StatusTable:
    """
    Status membership sets.

    `unsuccessful` is a subset of `terminal`.
    """
    initializing: frozenset[str] = frozenset({"PENDING", "STARTING", "PROVISIONING", "INITIALIZING"})
    running: frozenset[str] = frozenset({RUNNING})
    stopping: frozenset[str] = frozenset({"STOPPING"})
    terminal: frozenset[str] = frozenset({"STOPPED", "COMPLETED", "FAILED", "KILLED", "REJECTED"})
    unsuccessful: frozenset[str] = frozenset({"FAILED", "KILLED", "REJECTED"})

    def __post_init__(self):
        if not self.unsuccessful <= self.terminal:
            extra = sorted(self.unsuccessful - self.terminal)
            raise ValueError(f"Unsuccessful statuses must also be terminal: {extra}")

    def is_running(self, status: str | None) -> bool:
        return status in self.running

    def is_initializing(self, status: str | None) -> bool:
        return status in self.initializing

    def is_live(self, status: str | None) -> bool:
        """RUNNING or initializing: a run a stop command applies to."""
        return status in self.running or status in self.initializing

    def is_stopping(self, status: str | None) -> bool:
        return status in self.stopping

    def is_terminal(self, status: str | None) -> bool:
        return status in self.terminal

    def is_unsuccessful(self, status: str | None) -> bool:
        return status in self.unsuccessful


DEFAULT_STATUS_TABLE = StatusTable()
