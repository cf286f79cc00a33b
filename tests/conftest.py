import json
from unittest.mock import MagicMock

import pytest

from runsteward.client import ManagementClient
from runsteward.run_token import RUN_TOKEN_KEY
from runsteward.schemas import ProgramAddress


class FakeClock:
    """Clock whose sleeps advance time instantly and are recorded."""

    def __init__(self, start: float = 1000.0):
        self.time = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.time += max(0.0, seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def address():
    return ProgramAddress(app="pipeline", namespace="default")


@pytest.fixture
def client():
    """ManagementClient double; tests program get_runs/get_run/program_status."""
    mock = MagicMock(spec=ManagementClient)
    mock.get_runs.return_value = []
    return mock


@pytest.fixture
def make_run():
    """
    Build a raw run record as the run list endpoint returns it, after the
    response body has been parsed once.
    """
    def _make_run(run_id, status, token=None, args=None):
        runtime_args = dict(args or {})
        if token is not None:
            runtime_args[RUN_TOKEN_KEY] = token
        return {
            "runid": run_id,
            "status": status,
            "starting": 1700000000,
            "properties": {"runtimeArgs": json.dumps(runtime_args)},
        }
    return _make_run
