"""
Utility functions for runsteward.

Includes logging, retries and duration formatting.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from rich.console import Console
from rich.logging import RichHandler


# Extra LogRecord attributes copied into structured output
STRUCTURED_EXTRAS = ("event", "program", "run_token", "run_id", "status")


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "pretty",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for runsteward.

    Args:
        log_file: Optional path to log file
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger("runsteward")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(StructuredFormatter())

        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        for key in STRUCTURED_EXTRAS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def retry_with_backoff(
    func: Callable[[], Any],
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
    backoff_multiplier: float = 2.0,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    sleep: Optional[Callable[[float], Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> Any:
    """
    Retry a function with exponential backoff.

    The wait before retry n (0-indexed) is backoff_seconds * backoff_multiplier**n.

    Args:
        func: Function to retry
        max_attempts: Maximum number of attempts, including the first
        backoff_seconds: Initial backoff time in seconds
        backoff_multiplier: Multiplier for each retry
        should_retry: Predicate deciding whether an exception is retried.
            Exceptions it rejects propagate immediately. Defaults to
            retrying every exception.
        sleep: Wait function; returning False aborts further retries
            (used to stop at an operation deadline). Defaults to time.sleep.
        logger: Logger for retry messages

    Returns:
        Result of successful function call

    Raises:
        Exception: The last exception once retries are exhausted or refused
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    sleep = sleep or time.sleep

    attempt = 1
    wait_time = backoff_seconds

    while True:
        try:
            return func()

        except Exception as e:
            if should_retry is not None and not should_retry(e):
                raise

            if attempt >= max_attempts:
                if logger and max_attempts > 1:
                    logger.error(f"All {max_attempts} attempts failed: {e}")
                raise

            if logger:
                logger.warning(
                    f"Attempt {attempt}/{max_attempts} failed: {e}. Retrying in {wait_time:g}s..."
                )

            if sleep(wait_time) is False:
                if logger:
                    logger.warning("Operation deadline reached, not retrying")
                raise

            wait_time *= backoff_multiplier
            attempt += 1


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "1m 23s", "45s")
    """
    if seconds < 60:
        return f"{int(seconds)}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60
    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"
