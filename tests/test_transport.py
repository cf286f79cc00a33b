"""Tests for Transport retry behaviour.

Tests cover:
- Retry on whitelisted codes with exponential backoff
- No retry on other codes
- Network failures as TransientError
- Backoff cut short by an operation deadline
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from runsteward.clock import Deadline
from runsteward.errors import DecodeError, TransientError, TransportError
from runsteward.transport import (
    DEFAULT_RETRY_CODES,
    NO_RETRY,
    RetryPolicy,
    Transport,
    url_join,
)


def _response(status_code, body=b""):
    response = MagicMock()
    response.status_code = status_code
    response.content = body
    response.text = body.decode("utf-8")
    return response


def _transport(responses, policy=None, token=None):
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = responses
    sleeps = []
    transport = Transport(session=session, policy=policy, token=token, sleep=sleeps.append)
    return transport, session, sleeps


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_default_codes(self):
        policy = RetryPolicy()
        assert policy.is_retryable(500)
        assert policy.is_retryable(503)
        assert policy.is_retryable(599)
        assert policy.is_retryable(400)
        assert not policy.is_retryable(404)
        assert not policy.is_retryable(409)
        assert not policy.is_retryable(200)

    def test_backoff_follows_policy(self):
        policy = RetryPolicy(max_retries=2, backoff_seconds=2.0, backoff_multiplier=3.0)
        transport, _, sleeps = _transport([_response(503)] * 3, policy=policy)

        with pytest.raises(TransportError):
            transport.call("GET", "http://host/x")
        assert sleeps == [2.0, 6.0]

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)

    def test_default_retry_codes_cover_server_faults(self):
        assert set(range(500, 600)) <= DEFAULT_RETRY_CODES


class TestTransportCall:
    """Tests for Transport.call()."""

    def test_success_returns_body(self):
        transport, session, _ = _transport([_response(200, b"ok")])
        assert transport.call("GET", "http://host/x") == b"ok"
        assert session.request.call_count == 1

    def test_retries_until_success(self):
        """503, 503, 200 -> success after exactly three physical requests."""
        transport, session, sleeps = _transport(
            [_response(503, b"busy"), _response(503, b"busy"), _response(200, b"ok")]
        )

        assert transport.call("GET", "http://host/x") == b"ok"
        assert session.request.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_gives_up_after_max_retries(self):
        """Four 503s with three retries -> the final TransportError surfaces."""
        transport, session, sleeps = _transport(
            [_response(503, b"first"), _response(503, b"second"),
             _response(503, b"third"), _response(503, b"fourth")],
            policy=RetryPolicy(max_retries=3),
        )

        with pytest.raises(TransportError) as exc_info:
            transport.call("GET", "http://host/x")

        assert exc_info.value.status_code == 503
        assert exc_info.value.body == "fourth"
        assert exc_info.value.retryable is True
        assert session.request.call_count == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_non_retryable_code_fails_immediately(self):
        transport, session, sleeps = _transport([_response(404, b"Not Found")])

        with pytest.raises(TransportError) as exc_info:
            transport.call("GET", "http://host/x")

        assert exc_info.value.status_code == 404
        assert exc_info.value.retryable is False
        assert str(exc_info.value) == "404: Not Found"
        assert session.request.call_count == 1
        assert sleeps == []

    def test_no_retry_policy(self):
        transport, session, _ = _transport([_response(503)], policy=NO_RETRY)

        with pytest.raises(TransportError):
            transport.call("GET", "http://host/x")
        assert session.request.call_count == 1

    def test_custom_retry_codes(self):
        policy = RetryPolicy(retry_codes=frozenset({429}))
        transport, session, _ = _transport([_response(429), _response(200, b"ok")], policy=policy)
        assert transport.call("GET", "http://host/x") == b"ok"
        assert session.request.call_count == 2

    def test_network_error_is_transient(self):
        transport, session, _ = _transport([requests.exceptions.ConnectionError("reset")])

        with pytest.raises(TransientError, match="ConnectionError"):
            transport.call("GET", "http://host/x")
        assert session.request.call_count == 1

    def test_deadline_stops_backoff(self, clock):
        """No retry is attempted once the operation budget is spent."""
        transport, session, sleeps = _transport([_response(503)] * 4)
        deadline = Deadline(1.5, clock)

        with pytest.raises(TransportError):
            transport.call("GET", "http://host/x", deadline=deadline)

        assert session.request.call_count == 2
        assert clock.sleeps == [1.0, 0.5]
        assert sleeps == []

    def test_dict_body_is_json(self):
        transport, session, _ = _transport([_response(200)])
        transport.call("POST", "http://host/start", body={"a": "b"})

        _, kwargs = session.request.call_args
        assert json.loads(kwargs["data"]) == {"a": "b"}
        assert kwargs["headers"] == {"Content-Type": "application/json"}

    def test_no_body(self):
        transport, session, _ = _transport([_response(200)])
        transport.call("POST", "http://host/stop")

        args, kwargs = session.request.call_args
        assert args == ("POST", "http://host/stop")
        assert kwargs["data"] is None

    def test_bearer_token(self):
        session = requests.Session()
        session.request = MagicMock(return_value=_response(200))

        Transport(session=session, token="secret")

        assert session.headers["Authorization"] == "Bearer secret"

    def test_no_token_no_header(self):
        session = requests.Session()
        Transport(session=session)
        assert "Authorization" not in session.headers


class TestTransportCallJson:
    """Tests for Transport.call_json()."""

    def test_decodes_json(self):
        transport, _, _ = _transport([_response(200, b'{"status": "RUNNING"}')])
        assert transport.call_json("GET", "http://host/status") == {"status": "RUNNING"}

    def test_invalid_json(self):
        transport, _, _ = _transport([_response(200, b"<html>Sign in</html>")])
        with pytest.raises(DecodeError, match="Invalid JSON"):
            transport.call_json("GET", "http://host/v3/namespaces")


class TestUrlJoin:
    """Tests for url_join()."""

    def test_single_slashes(self):
        assert url_join("http://host/", "/v3/namespaces", "default") == "http://host/v3/namespaces/default"

    def test_base_only(self):
        assert url_join("http://host/api/") == "http://host/api"

    def test_keeps_base_path(self):
        assert url_join("https://host/api", "v3", "system") == "https://host/api/v3/system"
