"""
CLI interface for runsteward.

Provides commands to start, inspect and stop program runs:

    runsteward run start APP --arg input.path=gs://bucket
    runsteward run exists APP RUN_ID
    runsteward run stop APP RUN_ID
    runsteward run list APP
    runsteward program start|stop|status APP
    runsteward health
"""

import json
from pathlib import Path

import click

from runsteward import __version__
from runsteward.errors import AmbiguityError, RunStewardError
from runsteward.schemas import (
    DEFAULT_PROGRAM_NAME,
    DEFAULT_PROGRAM_TYPE,
    PROGRAM_TYPES,
    LifecycleHandle,
    ProgramAddress,
)

# Exit code of `run exists` when a foreign run blocks the program
EXIT_BLOCKED = 2


@click.group()
@click.version_option(version=__version__, prog_name="runsteward")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.option("--log-level", default="INFO", show_default=True, help="DEBUG, INFO, WARNING or ERROR")
@click.option(
    "--log-format",
    type=click.Choice(["pretty", "structured"]),
    default="pretty",
    show_default=True,
)
@click.pass_context
def main(ctx, config_path, log_level: str, log_format: str):
    """
    runsteward - Lifecycle management for remote program runs.
    """
    from runsteward.config import load_config
    from runsteward.utils import setup_logging

    setup_logging(log_level=log_level, log_format=log_format)

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path)
    except Exception as e:
        # `init` runs without a config; every other command checks for it
        ctx.obj["config_error"] = str(e)


def _get_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'runsteward init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _address(config, app: str, namespace, program_type: str, name: str) -> ProgramAddress:
    try:
        return ProgramAddress(
            app=app,
            namespace=namespace or config.namespace,
            program_type=program_type,
            name=name,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))


def _parse_args(pairs: tuple[str, ...]) -> dict[str, str]:
    args = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got: {pair}", param_hint="--arg")
        args[key] = value
    return args


def address_options(func):
    """Common program address options."""
    func = click.option("--name", default=DEFAULT_PROGRAM_NAME, show_default=True, help="Program name")(func)
    func = click.option(
        "--type",
        "program_type",
        type=click.Choice(sorted(PROGRAM_TYPES)),
        default=DEFAULT_PROGRAM_TYPE,
        show_default=True,
        help="Program type",
    )(func)
    func = click.option("--namespace", help="Namespace (defaults to the configured namespace)")(func)
    func = click.argument("app")(func)
    return func


@main.command("init")
@click.option("--host", default="http://localhost:11015", show_default=True, help="Service API base URL")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(host: str, force: bool):
    """Initialize runsteward configuration."""
    from runsteward.config import get_runsteward_home
    import yaml

    home = get_runsteward_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "host": host,
        "namespace": "default",
        "poll_interval": 10,
        "create_timeout": 20 * 60,
        "delete_timeout": 60 * 60,
        "retry": {
            "max_retries": 3,
            "backoff_seconds": 1,
            "backoff_multiplier": 2,
            "codes": ["500-599", 400, 502, 504],
        },
        "allow_multiple_runs": False,
        "env_file": str(home / ".env"),
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# RUNSTEWARD_TOKEN=...\n")

    click.echo(f"Initialized runsteward config at {cfg_path}")


# =============================================================================
# Run Commands - token-correlated run lifecycle
# =============================================================================

@main.group("run")
def run_group():
    """Start, inspect and stop individual runs."""
    pass


@run_group.command("start")
@address_options
@click.option("--arg", "args", multiple=True, metavar="KEY=VALUE", help="Runtime argument (repeatable)")
@click.option("--allow-multiple-runs", is_flag=True, help="Start even if the program is already RUNNING")
@click.pass_context
def run_start(ctx, app, namespace, program_type, name, args, allow_multiple_runs: bool):
    """
    Start a run and wait until it is RUNNING.

    Examples:

        runsteward run start my-pipeline

        runsteward run start my-pipeline --arg input.path=gs://bucket/in
    """
    from runsteward.lifecycle import RunLifecycle

    config = _get_config(ctx)
    address = _address(config, app, namespace, program_type, name)
    runtime_args = _parse_args(args)
    lifecycle = RunLifecycle.from_config(config)

    try:
        lifecycle.ensure_startable(address, allow_multiple_runs=allow_multiple_runs or None)
        handle = lifecycle.create(address, runtime_args)
    except (RunStewardError, ValueError) as e:
        click.echo(f"✗ {address} failed to start: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ Run {handle.run_id} of {address} is RUNNING")
    click.echo(json.dumps(handle.to_dict(), indent=2))


@run_group.command("stop")
@address_options
@click.argument("run_id")
@click.pass_context
def run_stop(ctx, app, namespace, program_type, name, run_id: str):
    """Stop a run and wait until it is terminal."""
    from runsteward.lifecycle import RunLifecycle

    config = _get_config(ctx)
    address = _address(config, app, namespace, program_type, name)
    handle = LifecycleHandle(address=address, run_id=run_id)

    try:
        RunLifecycle.from_config(config).delete(handle)
    except RunStewardError as e:
        click.echo(f"✗ Failed to stop run {run_id} of {address}: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ Run {run_id} of {address} stopped ({handle.last_status or 'gone'})")


@run_group.command("exists")
@address_options
@click.argument("run_id")
@click.option("--allow-multiple-runs", is_flag=True, help="Treat a foreign RUNNING run as absent")
@click.pass_context
def run_exists(ctx, app, namespace, program_type, name, run_id: str, allow_multiple_runs: bool):
    """
    Check whether a run is RUNNING.

    Exits 0 if it is, 1 if it is not, and 2 if another run occupies the
    program and concurrent runs are disallowed.
    """
    from runsteward.lifecycle import RunLifecycle

    config = _get_config(ctx)
    address = _address(config, app, namespace, program_type, name)
    handle = LifecycleHandle(address=address, run_id=run_id)

    try:
        exists = RunLifecycle.from_config(config).exists(
            handle, allow_multiple_runs=allow_multiple_runs or None
        )
    except AmbiguityError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_BLOCKED)
    except RunStewardError as e:
        click.echo(f"✗ Existence check failed: {e}", err=True)
        raise SystemExit(1)

    if exists:
        click.echo(f"Run {run_id} of {address} is RUNNING")
        return
    click.echo(f"Run {run_id} of {address} does not exist")
    raise SystemExit(1)


@run_group.command("list")
@address_options
@click.pass_context
def run_list(ctx, app, namespace, program_type, name):
    """List the runs of a program with their run tokens."""
    from runsteward.client import ManagementClient
    from runsteward.registry import RunRegistry

    config = _get_config(ctx)
    address = _address(config, app, namespace, program_type, name)
    registry = RunRegistry(ManagementClient.from_config(config))

    try:
        runs = registry.list_runs(address)
    except RunStewardError as e:
        click.echo(f"✗ Failed to list runs of {address}: {e}", err=True)
        raise SystemExit(1)

    if not runs:
        click.echo(f"No runs of {address}.")
        return

    for run in runs:
        token = registry.token_of(run) or "-"
        click.echo(f"{run.run_id}  {run.status:<12}  {token}")


# =============================================================================
# Program Commands - aggregate program status
# =============================================================================

@main.group("program")
def program_group():
    """Start, stop and inspect programs by aggregate status."""
    pass


@program_group.command("start")
@address_options
@click.option("--arg", "args", multiple=True, metavar="KEY=VALUE", help="Runtime argument (repeatable)")
@click.pass_context
def program_start(ctx, app, namespace, program_type, name, args):
    """Start a program and wait until it is RUNNING."""
    from runsteward.program import ProgramLifecycle

    config = _get_config(ctx)
    address = _address(config, app, namespace, program_type, name)

    try:
        ProgramLifecycle.from_config(config).start(address, _parse_args(args))
    except RunStewardError as e:
        click.echo(f"✗ {address} failed to start: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ {address} is RUNNING")


@program_group.command("stop")
@address_options
@click.pass_context
def program_stop(ctx, app, namespace, program_type, name):
    """Stop a program and wait until it is STOPPED."""
    from runsteward.program import ProgramLifecycle

    config = _get_config(ctx)
    address = _address(config, app, namespace, program_type, name)

    try:
        ProgramLifecycle.from_config(config).stop(address)
    except RunStewardError as e:
        click.echo(f"✗ Failed to stop {address}: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ {address} is STOPPED")


@program_group.command("status")
@address_options
@click.pass_context
def program_status(ctx, app, namespace, program_type, name):
    """Show a program's aggregate status."""
    from runsteward.client import ManagementClient

    config = _get_config(ctx)
    address = _address(config, app, namespace, program_type, name)

    try:
        status = ManagementClient.from_config(config).program_status(address)
    except RunStewardError as e:
        click.echo(f"✗ Failed to get status of {address}: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"{address}: {status}")


@main.command("health")
@click.option("--attempts", default=10, show_default=True, type=int, help="Status checks before giving up")
@click.option("--interval", default=10.0, show_default=True, type=float, help="Seconds between checks")
@click.pass_context
def health(ctx, attempts: int, interval: float):
    """Check connectivity and wait until all system services are OK."""
    from runsteward.client import ManagementClient
    from runsteward.health import wait_until_healthy

    config = _get_config(ctx)
    client = ManagementClient.from_config(config)

    try:
        client.ping()
        statuses = wait_until_healthy(client, attempts=attempts, interval=interval)
    except RunStewardError as e:
        click.echo(f"✗ Health check failed, possibly due to an invalid host or credentials: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ {len(statuses)} services OK")


if __name__ == "__main__":
    main()
