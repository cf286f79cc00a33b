"""
RunRecord schema - one execution attempt as reported by the service.

The run list endpoint returns an unordered array of these. Only the keys
runid, status and properties are read; everything else is ignored.
"""

from dataclasses import dataclass, field
from typing import Any

from runsteward.errors import DecodeError


@dataclass(frozen=True)
class RunRecord:
    """
    A run of a program, as observed on the remote service.

    Attributes:
        run_id: Service-assigned run identifier (opaque)
        status: Status string; an open set, unknown values are kept as-is
        properties: Raw properties map; properties["runtimeArgs"] holds the
            JSON-encoded runtime arguments the run was started with
    """
    run_id: str
    status: str
    properties: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the service's wire shape."""
        return {
            "runid": self.run_id,
            "status": self.status,
            "properties": self.properties,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RunRecord":
        """
        Deserialize one element of a run list.

        Raises:
            DecodeError: If the element is not an object or lacks a run id
        """
        if not isinstance(data, dict):
            raise DecodeError(f"Run record is not an object: {data!r}")
        run_id = data.get("runid")
        if not run_id or not isinstance(run_id, str):
            raise DecodeError(f"Run record has no runid: {data!r}")
        properties = data.get("properties") or {}
        if not isinstance(properties, dict):
            properties = {}
        return cls(
            run_id=run_id,
            status=str(data.get("status", "")),
            properties=properties,
        )
