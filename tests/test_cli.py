import json
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from runsteward.cli import main
from runsteward.client import ManagementClient
from runsteward.errors import AmbiguityError, PollTimeoutError, StateError
from runsteward.lifecycle import RunLifecycle
from runsteward.program import ProgramLifecycle
from runsteward.run_token import RUN_TOKEN_KEY
from runsteward.schemas import LifecycleHandle, ProgramAddress


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    monkeypatch.setenv("RUNSTEWARD_HOME", str(home))
    monkeypatch.delenv("RUNSTEWARD_TOKEN", raising=False)
    return home


@pytest.fixture
def configured(home):
    home.mkdir(parents=True)
    (home / "config.yaml").write_text(yaml.safe_dump({"host": "http://localhost:11015"}))
    return home


@pytest.fixture
def lifecycle():
    mock = MagicMock(spec=RunLifecycle)
    with patch.object(RunLifecycle, "from_config", return_value=mock):
        yield mock


@pytest.fixture
def mgmt():
    mock = MagicMock(spec=ManagementClient)
    with patch.object(ManagementClient, "from_config", return_value=mock):
        yield mock


# =============================================================================
# init / config
# =============================================================================


def test_init_creates_files(runner, home):
    result = runner.invoke(main, ["init", "--host", "https://instance.example.com/api"])

    assert result.exit_code == 0
    assert "Initialized runsteward config" in result.output
    assert (home / ".env").exists()
    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert cfg["host"] == "https://instance.example.com/api"
    assert cfg["create_timeout"] == 1200


def test_init_does_not_overwrite_without_force(runner, configured):
    result = runner.invoke(main, ["init"])

    assert result.exit_code == 1
    assert "Config already exists" in result.output


def test_init_force_overwrites(runner, configured):
    result = runner.invoke(main, ["init", "--force", "--host", "http://other:11015"])

    assert result.exit_code == 0
    assert yaml.safe_load((configured / "config.yaml").read_text())["host"] == "http://other:11015"


def test_missing_config(runner, home):
    result = runner.invoke(main, ["program", "status", "pipeline"])

    assert result.exit_code == 1
    assert "Config not loaded" in result.output
    assert "runsteward init" in result.output


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "runsteward" in result.output


# =============================================================================
# run
# =============================================================================


class TestRunStart:
    def test_success(self, runner, configured, lifecycle):
        address = ProgramAddress(app="pipeline")
        handle = LifecycleHandle(address=address, token="tok-1")
        handle.rebind("r1")
        handle.last_status = "RUNNING"
        lifecycle.create.return_value = handle

        result = runner.invoke(main, ["run", "start", "pipeline", "--arg", "input.path=gs://b/in", "--arg", "x=1=2"])

        assert result.exit_code == 0, result.output
        assert "Run r1 of default/pipeline/spark/DataStreamsSparkStreaming is RUNNING" in result.output
        lifecycle.ensure_startable.assert_called_once_with(address, allow_multiple_runs=None)
        lifecycle.create.assert_called_once_with(address, {"input.path": "gs://b/in", "x": "1=2"})
        assert '"run_id": "r1"' in result.output

    def test_allow_multiple_runs(self, runner, configured, lifecycle):
        lifecycle.create.return_value = LifecycleHandle(address=ProgramAddress(app="p"), run_id="r1")

        runner.invoke(main, ["run", "start", "p", "--allow-multiple-runs"])

        assert lifecycle.ensure_startable.call_args.kwargs["allow_multiple_runs"] is True

    def test_blocked(self, runner, configured, lifecycle):
        lifecycle.ensure_startable.side_effect = AmbiguityError("A run is already RUNNING")

        result = runner.invoke(main, ["run", "start", "pipeline"])

        assert result.exit_code == 1
        assert "already RUNNING" in result.output
        lifecycle.create.assert_not_called()

    def test_timeout(self, runner, configured, lifecycle):
        lifecycle.create.side_effect = PollTimeoutError("Timed out; last observed status: STARTING")

        result = runner.invoke(main, ["run", "start", "pipeline"])

        assert result.exit_code == 1
        assert "STARTING" in result.output

    def test_reserved_argument(self, runner, configured, lifecycle):
        lifecycle.create.side_effect = ValueError(f"Runtime argument {RUN_TOKEN_KEY} is reserved")

        result = runner.invoke(main, ["run", "start", "pipeline", "--arg", f"{RUN_TOKEN_KEY}=x"])

        assert result.exit_code == 1
        assert "reserved" in result.output

    def test_malformed_argument(self, runner, configured, lifecycle):
        result = runner.invoke(main, ["run", "start", "pipeline", "--arg", "novalue"])

        assert result.exit_code == 2
        assert "KEY=VALUE" in result.output
        lifecycle.create.assert_not_called()

    def test_invalid_type(self, runner, configured, lifecycle):
        result = runner.invoke(main, ["run", "start", "pipeline", "--type", "lambdas"])
        assert result.exit_code == 2


class TestRunStop:
    def test_success(self, runner, configured, lifecycle):
        result = runner.invoke(main, ["run", "stop", "pipeline", "r1", "--namespace", "prod"])

        assert result.exit_code == 0, result.output
        [handle] = lifecycle.delete.call_args.args
        assert handle.run_id == "r1"
        assert handle.address.namespace == "prod"

    def test_failure(self, runner, configured, lifecycle):
        lifecycle.delete.side_effect = StateError("Error stopping run r1", status="RUNNING")

        result = runner.invoke(main, ["run", "stop", "pipeline", "r1"])

        assert result.exit_code == 1
        assert "Error stopping run r1" in result.output


class TestRunExists:
    def test_exists(self, runner, configured, lifecycle):
        lifecycle.exists.return_value = True

        result = runner.invoke(main, ["run", "exists", "pipeline", "r1"])

        assert result.exit_code == 0
        assert "is RUNNING" in result.output
        assert lifecycle.exists.call_args.kwargs == {"allow_multiple_runs": None}

    def test_does_not_exist(self, runner, configured, lifecycle):
        lifecycle.exists.return_value = False

        result = runner.invoke(main, ["run", "exists", "pipeline", "r1", "--allow-multiple-runs"])

        assert result.exit_code == 1
        assert "does not exist" in result.output
        assert lifecycle.exists.call_args.kwargs == {"allow_multiple_runs": True}

    def test_blocked(self, runner, configured, lifecycle):
        lifecycle.exists.side_effect = AmbiguityError("Another run is already RUNNING")

        result = runner.invoke(main, ["run", "exists", "pipeline", "r1"])

        assert result.exit_code == 2
        assert "Another run" in result.output


class TestRunList:
    def test_lists_runs_with_tokens(self, runner, configured, mgmt, make_run):
        mgmt.get_runs.return_value = [
            make_run("r1", "RUNNING", token="tok-1"),
            make_run("r2", "COMPLETED"),
        ]

        result = runner.invoke(main, ["run", "list", "pipeline"])

        assert result.exit_code == 0, result.output
        assert "r1" in result.output
        assert "tok-1" in result.output
        assert "COMPLETED" in result.output

    def test_no_runs(self, runner, configured, mgmt):
        mgmt.get_runs.return_value = []

        result = runner.invoke(main, ["run", "list", "pipeline"])

        assert result.exit_code == 0
        assert "No runs" in result.output


# =============================================================================
# program / health
# =============================================================================


class TestProgram:
    def test_status(self, runner, configured, mgmt):
        mgmt.program_status.return_value = "RUNNING"

        result = runner.invoke(main, ["program", "status", "pipeline"])

        assert result.exit_code == 0
        assert "default/pipeline/spark/DataStreamsSparkStreaming: RUNNING" in result.output

    def test_start(self, runner, configured):
        programs = MagicMock(spec=ProgramLifecycle)
        with patch.object(ProgramLifecycle, "from_config", return_value=programs):
            result = runner.invoke(main, ["program", "start", "pipeline", "--arg", "k=v"])

        assert result.exit_code == 0, result.output
        programs.start.assert_called_once_with(ProgramAddress(app="pipeline"), {"k": "v"})

    def test_stop_failure(self, runner, configured):
        programs = MagicMock(spec=ProgramLifecycle)
        programs.stop.side_effect = StateError("Cannot stop program in state: FAILED")
        with patch.object(ProgramLifecycle, "from_config", return_value=programs):
            result = runner.invoke(main, ["program", "stop", "pipeline"])

        assert result.exit_code == 1
        assert "FAILED" in result.output


class TestHealth:
    def test_healthy(self, runner, configured, mgmt):
        mgmt.service_statuses.return_value = {"appfabric": "OK", "metrics": "OK"}

        result = runner.invoke(main, ["health", "--interval", "0"])

        assert result.exit_code == 0, result.output
        assert "2 services OK" in result.output
        mgmt.ping.assert_called_once()

    def test_unhealthy(self, runner, configured, mgmt):
        mgmt.service_statuses.return_value = {"appfabric": "NOTOK"}

        result = runner.invoke(main, ["health", "--attempts", "2", "--interval", "0"])

        assert result.exit_code == 1
        assert "appfabric" in result.output


def test_handle_json_output_is_valid(runner, configured, lifecycle):
    lifecycle.create.return_value = LifecycleHandle(address=ProgramAddress(app="p"), token="tok-1", run_id="r1")

    result = runner.invoke(main, ["run", "start", "p"])

    payload = result.output[result.output.index("{"):]
    assert json.loads(payload)["run_id"] == "r1"
