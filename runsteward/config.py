"""
Configuration management for runsteward.

Loads <home>/config.yaml, where <home> is $RUNSTEWARD_HOME or
~/.config/runsteward. Example:

    host: https://instance.example.com/api
    namespace: default
    poll_interval: 10
    create_timeout: 1200
    delete_timeout: 3600
    retry:
      max_retries: 3
      backoff_seconds: 1
      backoff_multiplier: 2
      codes: ["500-599", 400, 502, 504]
    allow_multiple_runs: false
    env_file: ~/.config/runsteward/.env
    statuses:
      initializing: [PENDING, STARTING, PROVISIONING, INITIALIZING]
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from dotenv import load_dotenv

from runsteward.errors import ConfigError
from runsteward.schemas import DEFAULT_NAMESPACE, StatusTable
from runsteward.transport import DEFAULT_REQUEST_TIMEOUT, DEFAULT_RETRY_CODES, RetryPolicy

DEFAULT_HOME = "~/.config/runsteward"
TOKEN_ENV_VAR = "RUNSTEWARD_TOKEN"


def get_runsteward_home() -> Path:
    """Return $RUNSTEWARD_HOME, or ~/.config/runsteward."""
    home = os.environ.get("RUNSTEWARD_HOME")
    if home:
        return Path(home).expanduser()
    return Path(DEFAULT_HOME).expanduser()


def parse_retry_codes(values: Iterable[Any]) -> frozenset[int]:
    """
    Parse retry codes from config.

    Accepts integers and "low-high" range strings, e.g. [400, "500-599"].

    Raises:
        ConfigError: On anything else
    """
    codes: set[int] = set()
    for value in values:
        if isinstance(value, bool):
            raise ConfigError(f"Invalid retry code: {value!r}")
        if isinstance(value, int):
            codes.add(value)
            continue
        text = str(value).strip()
        try:
            if "-" in text:
                low, high = (int(part) for part in text.split("-", 1))
                if low > high:
                    raise ConfigError(f"Invalid retry code range: {value!r}")
                codes.update(range(low, high + 1))
            else:
                codes.add(int(text))
        except ValueError:
            raise ConfigError(f"Invalid retry code: {value!r}")
    return frozenset(codes)


def parse_statuses(data: Any) -> dict[str, frozenset[str]]:
    """
    Parse status set overrides, e.g. {"initializing": ["PENDING", "STARTING"]}.

    Raises:
        ConfigError: On unknown set names or non-list values
    """
    if not isinstance(data, dict):
        raise ConfigError("statuses must be a mapping")
    known = {f.name for f in fields(StatusTable)}
    result = {}
    for name, values in data.items():
        if name not in known:
            raise ConfigError(f"Unknown status set: {name}. Expected one of: {', '.join(sorted(known))}")
        if not isinstance(values, list):
            raise ConfigError(f"statuses.{name} must be a list")
        result[name] = frozenset(str(v).upper() for v in values)
    return result


@dataclass
class StewardConfig:
    """
    runsteward configuration.

    Attributes:
        host: Base URL of the orchestration service API
        token: Bearer token for all requests (or $RUNSTEWARD_TOKEN)
        namespace: Default namespace for program addresses
        request_timeout: Per-request HTTP timeout in seconds
        max_retries: Transport retries on retryable status codes
        backoff_seconds: Delay before the first transport retry
        backoff_multiplier: Backoff growth factor
        retry_codes: Status codes the transport retries
        poll_interval: Seconds between lifecycle observations
        create_timeout: Budget in seconds for starting a run
        delete_timeout: Budget in seconds for stopping a run
        allow_multiple_runs: Whether a foreign RUNNING run is acceptable
        env_file: Optional dotenv file loaded with the config
        statuses: Status set overrides passed to StatusTable
    """
    host: str
    token: Optional[str] = None
    namespace: str = DEFAULT_NAMESPACE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_retries: int = 3
    backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    retry_codes: frozenset[int] = field(default=DEFAULT_RETRY_CODES)
    poll_interval: float = 10
    create_timeout: float = 20 * 60
    delete_timeout: float = 60 * 60
    allow_multiple_runs: bool = False
    env_file: Optional[str] = None
    statuses: dict[str, frozenset[str]] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.host:
            raise ConfigError("host is required")
        if not self.host.startswith(("http://", "https://")):
            raise ConfigError(f"host must be an http(s) URL: {self.host}")
        for name in ("request_timeout", "poll_interval", "create_timeout", "delete_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff_seconds=self.backoff_seconds,
            backoff_multiplier=self.backoff_multiplier,
            retry_codes=self.retry_codes,
        )

    def status_table(self) -> StatusTable:
        """Build the StatusTable, replacing any sets overridden under `statuses`."""
        try:
            return StatusTable(**self.statuses)
        except ValueError as e:
            raise ConfigError(f"Invalid statuses: {e}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StewardConfig":
        """
        Build a config from parsed YAML.

        Raises:
            ConfigError: If required keys are missing or values are invalid
        """
        if not data.get("host"):
            raise ConfigError("host is required")

        retry = data.get("retry") or {}
        if not isinstance(retry, dict):
            raise ConfigError("retry must be a mapping")

        kwargs: dict[str, Any] = {"host": str(data["host"])}
        for key in ("token", "namespace", "env_file"):
            if data.get(key) is not None:
                kwargs[key] = str(data[key])
        try:
            for key in ("request_timeout", "poll_interval", "create_timeout", "delete_timeout"):
                if data.get(key) is not None:
                    kwargs[key] = float(data[key])
            if retry.get("max_retries") is not None:
                kwargs["max_retries"] = int(retry["max_retries"])
            if retry.get("backoff_seconds") is not None:
                kwargs["backoff_seconds"] = float(retry["backoff_seconds"])
            if retry.get("backoff_multiplier") is not None:
                kwargs["backoff_multiplier"] = float(retry["backoff_multiplier"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid numeric setting: {e}")
        if retry.get("codes") is not None:
            kwargs["retry_codes"] = parse_retry_codes(retry["codes"])
        if "allow_multiple_runs" in data:
            kwargs["allow_multiple_runs"] = bool(data["allow_multiple_runs"])
        if data.get("statuses") is not None:
            kwargs["statuses"] = parse_statuses(data["statuses"])

        config = cls(**kwargs)
        config.validate()
        return config


def load_config(config_path: Optional[Path] = None) -> StewardConfig:
    """
    Load runsteward configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to <home>/config.yaml

    Returns:
        StewardConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_runsteward_home() / "config.yaml"
    config_path = Path(config_path).expanduser()

    if not config_path.exists():
        raise FileNotFoundError(f"runsteward config.yaml not found at {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")
    if not data:
        raise ConfigError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    env_file = data.get("env_file")
    if env_file:
        env_path = Path(str(env_file)).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    config = StewardConfig.from_dict(data)
    if not config.token:
        config.token = os.environ.get(TOKEN_ENV_VAR) or None
    return config
