"""
LifecycleHandle schema - caller-visible identity of a managed run.

Before the run is observed the handle is keyed by its RunToken. After the
first successful correlation it is rebound to the service's run id, which
is the stable identity from then on. Every binding is recorded so the join
between "what was asked for" and "what the service gave" stays visible.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .program import ProgramAddress


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Binding:
    """
    One identity binding of a handle.

    Attributes:
        kind: 'token' or 'run_id'
        value: The bound identifier
        bound_at: When the binding was made
    """
    kind: str
    value: str
    bound_at: datetime = field(default_factory=_utcnow)


@dataclass
class LifecycleHandle:
    """
    Identity of a managed run.

    Attributes:
        address: Program the run belongs to
        token: RunToken embedded in the start arguments (None for handles
            rebuilt from a run id alone)
        run_id: Service run id, set by rebind() once correlated
        last_status: Last status observed for the run
        bindings: Ordered binding history (token first, then run id)
    """
    address: ProgramAddress
    token: Optional[str] = None
    run_id: Optional[str] = None
    last_status: Optional[str] = None
    bindings: list[Binding] = field(default_factory=list)

    def __post_init__(self):
        if not self.token and not self.run_id:
            raise ValueError("A handle needs a token or a run_id")
        if not self.bindings and self.token:
            self.bindings.append(Binding(kind="token", value=self.token))
        if self.run_id and not any(b.kind == "run_id" for b in self.bindings):
            self.bindings.append(Binding(kind="run_id", value=self.run_id))

    @property
    def is_bound(self) -> bool:
        """True once the handle carries a service run id."""
        return self.run_id is not None

    def rebind(self, run_id: str) -> None:
        """
        Bind the handle to the service-assigned run id.

        Rebinding to the same run id is a no-op.

        Raises:
            ValueError: If the handle is already bound to a different run
        """
        if not run_id:
            raise ValueError("run_id is required")
        if self.run_id == run_id:
            return
        if self.run_id is not None:
            raise ValueError(
                f"Handle for token {self.token} is already bound to run {self.run_id}, "
                f"refusing to rebind to {run_id}"
            )
        self.run_id = run_id
        self.bindings.append(Binding(kind="run_id", value=run_id))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "address": str(self.address),
            "bindings": [
                {"kind": b.kind, "value": b.value, "bound_at": b.bound_at.isoformat()}
                for b in self.bindings
            ],
        }
        if self.token is not None:
            result["token"] = self.token
        if self.run_id is not None:
            result["run_id"] = self.run_id
        if self.last_status is not None:
            result["last_status"] = self.last_status
        return result
