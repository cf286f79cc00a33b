"""
Transport - single logical HTTP request with selective retry.

This module is the only place runsteward talks HTTP. One call to
Transport.call() may issue several physical requests:

- Any non-2xx response becomes a TransportError carrying code and body
- TransportErrors whose code is in RetryPolicy.retry_codes are retried
  with exponential backoff (1s, 2s, 4s by default)
- Everything else propagates immediately

Error classification:
- Non-2xx -> TransportError (retryable flag set from the policy)
- requests.RequestException (connection reset, timeout) -> TransientError,
  never retried here; polling loops decide what to do with it
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from runsteward.clock import Deadline
from runsteward.errors import DecodeError, TransportError, TransientError
from runsteward.utils import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 5 * 60

# The service intermittently answers 5xx, and a few 4xx under load.
SERVER_FAULT_CODES = frozenset(range(500, 600))
FLAKY_UPSTREAM_CODES = frozenset({400, 502, 504})
DEFAULT_RETRY_CODES = SERVER_FAULT_CODES | FLAKY_UPSTREAM_CODES


@dataclass(frozen=True)
class RetryPolicy:
    """
    Which responses are retried, and how often.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retry)
        backoff_seconds: Delay before the first retry
        backoff_multiplier: Factor applied to the delay on each retry
        retry_codes: HTTP status codes treated as transient
    """
    max_retries: int = 3
    backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    retry_codes: frozenset[int] = field(default=DEFAULT_RETRY_CODES)

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")

    def is_retryable(self, status_code: int) -> bool:
        return status_code in self.retry_codes


NO_RETRY = RetryPolicy(max_retries=0)


def url_join(base: str, *paths: str) -> str:
    """
    Join a base URL and path segments with exactly one slash between each.

    Example:
        url_join("http://host/", "/v3/namespaces", "default") ->
        "http://host/v3/namespaces/default"
    """
    parts = [p.strip("/") for p in paths if p and p.strip("/")]
    if not parts:
        return base.rstrip("/")
    return base.rstrip("/") + "/" + "/".join(parts)


class Transport:
    """
    HTTP transport with retry on transient server errors.

    Usage:
        transport = Transport(token="...", policy=RetryPolicy(max_retries=3))
        body = transport.call("GET", "http://host/v3/namespaces")
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        policy: Optional[RetryPolicy] = None,
        token: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        sleep=None,
    ):
        """
        Initialize the transport.

        Args:
            session: requests.Session to send through (created if omitted)
            policy: RetryPolicy; defaults to 3 retries on DEFAULT_RETRY_CODES
            token: Optional bearer token sent on every request
            timeout: Per-request timeout in seconds
            sleep: Backoff wait function when no deadline is passed to call()
                (defaults to time.sleep)
        """
        self.session = session or requests.Session()
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def call(
        self,
        method: str,
        url: str,
        body: Any = None,
        deadline: Optional[Deadline] = None,
    ) -> bytes:
        """
        Issue one logical request.

        Args:
            method: HTTP method
            url: Absolute URL
            body: Request body; dicts and lists are JSON-encoded
            deadline: Optional operation deadline; backoff waits are cut
                short by it and no retry is attempted once it has passed

        Returns:
            Raw response body of the successful attempt

        Raises:
            TransportError: Non-2xx response (the final one, after retries)
            TransientError: Network-level failure
        """
        data = self._encode_body(body)
        sleep = deadline.sleep if deadline is not None else self._sleep

        def _attempt() -> bytes:
            return self._send(method, url, data)

        return retry_with_backoff(
            _attempt,
            max_attempts=self.policy.max_retries + 1,
            backoff_seconds=self.policy.backoff_seconds,
            backoff_multiplier=self.policy.backoff_multiplier,
            should_retry=self._should_retry,
            sleep=sleep,
            logger=logger,
        )

    def call_json(
        self,
        method: str,
        url: str,
        body: Any = None,
        deadline: Optional[Deadline] = None,
    ) -> Any:
        """Like call(), but decode the response body as JSON.

        Raises:
            DecodeError: If the response is not valid JSON
        """
        raw = self.call(method, url, body=body, deadline=deadline)
        try:
            return json.loads(raw)
        except ValueError as e:
            snippet = raw[:200].decode("utf-8", errors="replace")
            raise DecodeError(f"Invalid JSON response from {method} {url}: {e}\n{snippet}") from e

    def _should_retry(self, error: Exception) -> bool:
        return isinstance(error, TransportError) and error.retryable

    def _send(self, method: str, url: str, data: Optional[bytes]) -> bytes:
        logger.debug(f"{method} {url}")
        headers = {"Content-Type": "application/json"} if data is not None else None
        try:
            response = self.session.request(
                method, url, data=data, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise TransientError(f"{method} {url} failed: {type(e).__name__}: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            retryable = self.policy.is_retryable(response.status_code)
            if retryable:
                logger.warning(
                    f"{method} {url} returned {response.status_code}, classified retryable"
                )
            raise TransportError(
                response.status_code,
                body=response.text,
                method=method,
                url=url,
                retryable=retryable,
            )
        return response.content

    @staticmethod
    def _encode_body(body: Any) -> Optional[bytes]:
        if body is None:
            return None
        if isinstance(body, bytes):
            return body
        if isinstance(body, str):
            return body.encode("utf-8")
        return json.dumps(body).encode("utf-8")
