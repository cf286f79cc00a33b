"""
Error classes for runsteward.

These error types enable retry classification at lifecycle boundaries:
- TransientError: Safe to retry within the operation budget
  (run not indexed yet, network hiccups)
- PermanentError: Do not retry (failed runs, malformed data, timeouts,
  foreign runs occupying the program)

TransportError sits beside both: whether it is retryable depends on the
status code and is decided by the RetryPolicy, not by the class.

Error handling contract:
- Errors are exceptions, not values
- DecodeError is swallowed per record while scanning run lists; every other
  error propagates to the caller of create/delete/exists
- Messages name the concrete blocking condition, never a bare status code
"""

from typing import Any, Optional


class RunStewardError(Exception):
    """Base exception for runsteward."""
    pass


class ConfigError(RunStewardError):
    """Configuration validation error."""
    pass


class TransientError(RunStewardError):
    """
    Transient error - safe to retry.

    Examples:
    - Run not yet visible in the run list
    - Connection reset / request timeout

    Polling loops keep going on TransientError until their budget elapses.
    """
    pass


class PermanentError(RunStewardError):
    """
    Permanent error - do not retry.

    Examples:
    - Run reached FAILED/KILLED/REJECTED
    - Malformed run properties
    - Budget exhausted while polling

    Polling loops stop immediately when PermanentError is raised.
    """
    pass


class TransportError(RunStewardError):
    """
    Non-2xx HTTP response.

    Attributes:
        status_code: Numeric HTTP status code
        body: Raw response body (decoded as text)
        method: HTTP method of the failed request
        url: Request URL
        retryable: Whether the RetryPolicy classifies the code as transient
    """

    def __init__(
        self,
        status_code: int,
        body: str = "",
        method: str = "",
        url: str = "",
        retryable: bool = False,
    ):
        self.status_code = status_code
        self.body = body
        self.method = method
        self.url = url
        self.retryable = retryable
        super().__init__(f"{status_code}: {body}")


class CorrelationError(TransientError):
    """No run carrying our token (or run id) among the current runs."""

    def __init__(
        self,
        message: str,
        address: Any = None,
        token: Optional[str] = None,
        run_id: Optional[str] = None,
    ):
        self.address = address
        self.token = token
        self.run_id = run_id
        super().__init__(message)


class DecodeError(PermanentError):
    """Malformed run properties or response body."""
    pass


class StateError(PermanentError):
    """
    Remote status forbids progress.

    Raised for terminal-unsuccessful runs and for states a stop cannot
    be issued from.
    """

    def __init__(self, message: str, status: Optional[str] = None, run_id: Optional[str] = None):
        self.status = status
        self.run_id = run_id
        super().__init__(message)


class PollTimeoutError(PermanentError):
    """Budget exceeded while polling; reports the last observed status."""

    def __init__(self, message: str, last_status: Optional[str] = None, timeout: Optional[float] = None):
        self.last_status = last_status
        self.timeout = timeout
        super().__init__(message)


class AmbiguityError(PermanentError):
    """A foreign run occupies the program and concurrent runs are disallowed."""

    def __init__(self, message: str, address: Any = None):
        self.address = address
        super().__init__(message)
