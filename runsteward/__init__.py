"""
runsteward - Lifecycle management for remote program runs

Starts, identifies, monitors and stops runs of programs on an orchestration
service whose REST API offers no request correlation, idempotency keys or
"wait until ready" semantics.
"""

__version__ = "0.1.0"


__all__ = [
    "StewardConfig",
    "load_config",
    "get_runsteward_home",
    "ManagementClient",
    "RunRegistry",
    "RunLifecycle",
    "ProgramLifecycle",
]

from .config import StewardConfig, load_config, get_runsteward_home
from .client import ManagementClient
from .registry import RunRegistry
from .lifecycle import RunLifecycle
from .program import ProgramLifecycle
