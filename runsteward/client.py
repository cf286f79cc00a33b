"""
Management API client - the IO boundary to the orchestration service.

Thin request/response wrappers over Transport for the lifecycle endpoints:

    POST {program}/start                 body: {"arg": "value", ...}
    POST {program}/stop
    GET  {program}/status                -> {"status": "RUNNING"}
    GET  {program}/runs                  -> [{"runid", "status", "properties"}, ...]
    GET  {program}/runs/{runid}          -> {"runid", "status", "properties"}
    POST {program}/runs/{runid}/stop
    GET  /v3/namespaces                  (connectivity / credentials check)
    GET  /v3/system/services/status      -> {"service": "OK", ...}

where {program} is /v3/namespaces/{ns}/apps/{app}/{type}/{name}.

No polling or correlation happens here; see registry.py and lifecycle.py.
"""

import logging
from typing import Any, Mapping, Optional

from runsteward.clock import Deadline
from runsteward.errors import DecodeError
from runsteward.schemas import ProgramAddress
from runsteward.transport import Transport, url_join

logger = logging.getLogger(__name__)


class ManagementClient:
    """
    Client for the program lifecycle REST API.

    Usage:
        client = ManagementClient("https://instance.example.com/api", transport)
        client.start_program(address, {"input.path": "gs://bucket"})
        status = client.program_status(address)
    """

    def __init__(self, host: str, transport: Optional[Transport] = None):
        if not host:
            raise ValueError("host is required")
        self.host = host
        self.transport = transport or Transport()

    @classmethod
    def from_config(cls, config) -> "ManagementClient":
        """Build a client and transport from a StewardConfig."""
        transport = Transport(
            policy=config.retry_policy(),
            token=config.token,
            timeout=config.request_timeout,
        )
        return cls(config.host, transport)

    def program_url(self, address: ProgramAddress, *suffix: str) -> str:
        return url_join(self.host, address.path(), *suffix)

    # -------------------------------------------------------------------------
    # Program-level endpoints
    # -------------------------------------------------------------------------

    def start_program(
        self,
        address: ProgramAddress,
        arguments: Optional[Mapping[str, str]] = None,
        deadline: Optional[Deadline] = None,
    ) -> None:
        """Submit the start command with the given runtime arguments."""
        logger.info(f"Starting program {address}")
        self.transport.call(
            "POST",
            self.program_url(address, "start"),
            body=dict(arguments or {}),
            deadline=deadline,
        )

    def stop_program(self, address: ProgramAddress, deadline: Optional[Deadline] = None) -> None:
        """Submit the stop command for every run of the program."""
        logger.info(f"Stopping program {address}")
        self.transport.call("POST", self.program_url(address, "stop"), deadline=deadline)

    def program_status(self, address: ProgramAddress, deadline: Optional[Deadline] = None) -> str:
        """
        Get the program's aggregate status.

        Raises:
            DecodeError: If the response has no status string
        """
        data = self.transport.call_json("GET", self.program_url(address, "status"), deadline=deadline)
        if not isinstance(data, dict) or not isinstance(data.get("status"), str):
            raise DecodeError(f"Status response for {address} has no status: {data!r}")
        return data["status"]

    # -------------------------------------------------------------------------
    # Run-level endpoints
    # -------------------------------------------------------------------------

    def get_runs(self, address: ProgramAddress, deadline: Optional[Deadline] = None) -> list[Any]:
        """
        Get the raw run list of a program.

        Raises:
            DecodeError: If the response is not a JSON array
        """
        data = self.transport.call_json("GET", self.program_url(address, "runs"), deadline=deadline)
        if not isinstance(data, list):
            raise DecodeError(f"Run list for {address} is not an array: {type(data).__name__}")
        return data

    def get_run(self, address: ProgramAddress, run_id: str, deadline: Optional[Deadline] = None) -> Any:
        """Get one raw run record by service run id."""
        return self.transport.call_json(
            "GET", self.program_url(address, "runs", run_id), deadline=deadline
        )

    def stop_run(self, address: ProgramAddress, run_id: str, deadline: Optional[Deadline] = None) -> None:
        """Submit the stop command for one run."""
        logger.info(f"Stopping run {run_id} of {address}")
        self.transport.call(
            "POST", self.program_url(address, "runs", run_id, "stop"), deadline=deadline
        )

    # -------------------------------------------------------------------------
    # Instance endpoints
    # -------------------------------------------------------------------------

    def ping(self) -> None:
        """
        Verify the host answers with JSON.

        Invalid credentials are answered with a redirect to a sign-in page
        rather than an error status, so a non-JSON body is the signal.

        Raises:
            DecodeError: If the namespace list is not JSON
        """
        self.transport.call_json("GET", url_join(self.host, "/v3/namespaces"))

    def service_statuses(self) -> dict[str, str]:
        """
        Get the status of every system service.

        Raises:
            DecodeError: If the response is not a JSON object
        """
        data = self.transport.call_json("GET", url_join(self.host, "/v3/system/services/status"))
        if not isinstance(data, dict):
            raise DecodeError(f"Service status response is not an object: {data!r}")
        return {str(k): str(v) for k, v in data.items()}
