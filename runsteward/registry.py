"""
RunRegistry - find "the run I just started" among a program's runs.

The registry provides:
- Listing a program's runs as RunRecords (unordered, no pagination)
- Lookup by RunToken: linear scan, decoding each run's embedded token
- Lookup by service run id: direct fetch, used once a handle is rebound

Foreign runs (started from a UI, by other tools, or with garbage
properties) are expected in the list. A run whose token cannot be decoded
is skipped, never fatal to the scan.
"""

import logging
from typing import Callable, Mapping, Optional, Any

from runsteward import run_token
from runsteward.client import ManagementClient
from runsteward.clock import Deadline
from runsteward.errors import CorrelationError, DecodeError, TransportError
from runsteward.schemas import ProgramAddress, RunRecord

logger = logging.getLogger(__name__)

TokenDecoder = Callable[[Mapping[str, Any]], str]


class RunRegistry:
    """
    Run lookup for a program.

    Usage:
        registry = RunRegistry(client)
        run = registry.find_by_token(address, token)
        run = registry.find_by_id(address, run.run_id)
    """

    def __init__(self, client: ManagementClient, decode_token: Optional[TokenDecoder] = None):
        """
        Initialize the registry.

        Args:
            client: ManagementClient used for the run endpoints
            decode_token: Extracts a token from run properties, raising
                DecodeError when the run carries none (default: run_token.extract)
        """
        self._client = client
        self._decode_token = decode_token or run_token.extract

    @property
    def client(self) -> ManagementClient:
        return self._client

    def list_runs(self, address: ProgramAddress, deadline: Optional[Deadline] = None) -> list[RunRecord]:
        """
        Fetch all runs of a program.

        Elements without a run id are dropped.

        Returns:
            RunRecords in the order the service returned them
        """
        runs = []
        for item in self._client.get_runs(address, deadline=deadline):
            try:
                runs.append(RunRecord.from_dict(item))
            except DecodeError as e:
                logger.debug(f"Skipping malformed run of {address}: {e}")
        return runs

    def token_of(self, run: RunRecord) -> Optional[str]:
        """Return the run's embedded token, or None if it carries none."""
        try:
            return self._decode_token(run.properties)
        except DecodeError as e:
            logger.debug(f"Run {run.run_id} carries no token: {e}")
            return None

    def find_by_token(
        self,
        address: ProgramAddress,
        token: str,
        deadline: Optional[Deadline] = None,
    ) -> RunRecord:
        """
        Find the run started with `token`.

        If several runs carry the token (service-side duplication), the
        first in the returned order wins.

        Raises:
            CorrelationError: If no current run carries the token
        """
        runs = self.list_runs(address, deadline=deadline)
        for run in runs:
            if self.token_of(run) == token:
                logger.info(
                    f"Token {token} matched run {run.run_id} ({run.status})",
                    extra={"run_token": token, "run_id": run.run_id, "status": run.status},
                )
                return run
        raise CorrelationError(
            f"No run of {address} found with token {token} (scanned {len(runs)} runs)",
            address=address,
            token=token,
        )

    def find_by_id(
        self,
        address: ProgramAddress,
        run_id: str,
        deadline: Optional[Deadline] = None,
    ) -> RunRecord:
        """
        Fetch one run by service run id.

        Raises:
            CorrelationError: If the service does not know the run (404)
            DecodeError: If the returned record is malformed
        """
        try:
            data = self._client.get_run(address, run_id, deadline=deadline)
        except TransportError as e:
            if e.status_code == 404:
                raise CorrelationError(
                    f"No run {run_id} found for {address}",
                    address=address,
                    run_id=run_id,
                ) from e
            raise
        run = RunRecord.from_dict(data)
        if run.run_id != run_id:
            raise DecodeError(f"Asked for run {run_id} of {address}, service returned {run.run_id}")
        return run
