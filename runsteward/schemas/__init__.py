"""
runsteward.schemas - Data structures for run lifecycle management.

ProgramAddress -> LifecycleHandle -> RunRecord

Lifecycle:
1. ProgramAddress: Immutable identity of the remote program
2. LifecycleHandle: Our identity of a managed run; keyed by RunToken until
   the run is observed, then rebound to the service run id
3. RunRecord: The service's view of one run (run id, status, properties)

StatusTable holds the status membership sets consulted by the state machines.
"""

from .program import (
    ProgramAddress,
    PROGRAM_TYPES,
    DEFAULT_NAMESPACE,
    DEFAULT_PROGRAM_TYPE,
    DEFAULT_PROGRAM_NAME,
)
from .run_record import RunRecord
from .handle import LifecycleHandle, Binding
from .status import StatusTable, DEFAULT_STATUS_TABLE, RUNNING

__all__ = [
    # Program
    "ProgramAddress",
    "PROGRAM_TYPES",
    "DEFAULT_NAMESPACE",
    "DEFAULT_PROGRAM_TYPE",
    "DEFAULT_PROGRAM_NAME",
    # Run Record
    "RunRecord",
    # Handle
    "LifecycleHandle",
    "Binding",
    # Status
    "StatusTable",
    "DEFAULT_STATUS_TABLE",
    "RUNNING",
]
