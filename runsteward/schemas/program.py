"""
ProgramAddress schema - identifies a remote program.

A ProgramAddress is the (namespace, application, program type, program
name) tuple that every lifecycle call is scoped to. It is immutable once
a lifecycle operation begins.
"""

from dataclasses import dataclass

DEFAULT_NAMESPACE = "default"
DEFAULT_PROGRAM_TYPE = "spark"
DEFAULT_PROGRAM_NAME = "DataStreamsSparkStreaming"

PROGRAM_TYPES = frozenset({"flows", "mapreduce", "services", "spark", "workers", "workflows"})


@dataclass(frozen=True)
class ProgramAddress:
    """
    Address of a program on the orchestration service.

    Attributes:
        app: Name of the application
        namespace: Namespace the application is deployed in
        program_type: One of flows, mapreduce, services, spark, workers, workflows
        name: Name of the program within the application
    """
    app: str
    namespace: str = DEFAULT_NAMESPACE
    program_type: str = DEFAULT_PROGRAM_TYPE
    name: str = DEFAULT_PROGRAM_NAME

    def __post_init__(self):
        if not self.app:
            raise ValueError("app is required")
        if not self.namespace:
            raise ValueError("namespace is required")
        if not self.name:
            raise ValueError("program name is required")
        if self.program_type not in PROGRAM_TYPES:
            raise ValueError(
                f"Invalid program type: {self.program_type}. "
                f"Expected one of: {', '.join(sorted(PROGRAM_TYPES))}"
            )

    def path(self) -> str:
        """Return the REST path of this program, without host."""
        return (
            f"/v3/namespaces/{self.namespace}/apps/{self.app}"
            f"/{self.program_type}/{self.name}"
        )

    def __str__(self) -> str:
        return f"{self.namespace}/{self.app}/{self.program_type}/{self.name}"
