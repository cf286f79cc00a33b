"""
RunLifecycle - start, identify, monitor and stop one run of a program.

The service's start call returns nothing that identifies the new run, and
its run list is unordered and eventually consistent. The lifecycle works
around that as follows:

create:
1. Generate a RunToken and embed it in the start arguments
2. POST start
3. Every poll_interval, look the run up (by token until first seen, then by
   run id); the handle is rebound to the run id on first sight
4. RUNNING -> done; initializing or not yet visible -> keep polling;
   anything else -> StateError; budget spent -> PollTimeoutError

delete:
1. Fetch the run (by token until correlated, then by id); terminal or
   gone -> done (never re-stopped)
2. RUNNING or initializing -> POST stop once, then keep polling; a rejected
   stop is re-checked and only fails if the run is still live
3. STOPPING, unrecognized or unobservable -> keep polling until the budget
   is spent

exists:
1. Aggregate program status not RUNNING -> False
2. Otherwise correlate our run and let policy.decide_existence() rule;
   a foreign run with concurrent runs disallowed raises AmbiguityError

Polling is sequential on the calling thread. Sleeps never overrun the
operation budget; an HTTP call in flight when the budget elapses is allowed
to finish and the operation then fails with the last observed status.
"""

import logging
from typing import Mapping, Optional

from runsteward import run_token
from runsteward.client import ManagementClient
from runsteward.clock import Clock, Deadline, SYSTEM_CLOCK
from runsteward.errors import (
    AmbiguityError,
    CorrelationError,
    PollTimeoutError,
    StateError,
    TransientError,
    TransportError,
)
from runsteward.policy import Existence, decide_existence
from runsteward.registry import RunRegistry
from runsteward.schemas import (
    DEFAULT_STATUS_TABLE,
    LifecycleHandle,
    ProgramAddress,
    RunRecord,
    StatusTable,
)
from runsteward.utils import format_duration

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10
DEFAULT_CREATE_TIMEOUT = 20 * 60
# Streaming pipelines drain in-flight records before reporting a terminal state.
DEFAULT_DELETE_TIMEOUT = 60 * 60


class RunLifecycle:
    """
    Lifecycle state machine for program runs.

    Usage:
        lifecycle = RunLifecycle(RunRegistry(client))
        handle = lifecycle.create(address, {"input.path": "gs://bucket"})
        lifecycle.exists(handle)   # True while our run is RUNNING
        lifecycle.delete(handle)
    """

    def __init__(
        self,
        registry: RunRegistry,
        status_table: StatusTable = DEFAULT_STATUS_TABLE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        create_timeout: float = DEFAULT_CREATE_TIMEOUT,
        delete_timeout: float = DEFAULT_DELETE_TIMEOUT,
        allow_multiple_runs: bool = False,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the lifecycle.

        Args:
            registry: RunRegistry for run lookups (its client issues commands)
            status_table: Status membership sets
            poll_interval: Seconds between observations
            create_timeout: Budget in seconds for create()
            delete_timeout: Budget in seconds for delete()
            allow_multiple_runs: Default for exists() when not given per call
            clock: Clock for sleeps and budgets (tests pass a fake)
        """
        self.registry = registry
        self.status_table = status_table
        self.poll_interval = poll_interval
        self.create_timeout = create_timeout
        self.delete_timeout = delete_timeout
        self.allow_multiple_runs = allow_multiple_runs
        self.clock = clock or SYSTEM_CLOCK

    @classmethod
    def from_config(cls, config, client: Optional[ManagementClient] = None) -> "RunLifecycle":
        """Build a lifecycle (and client, unless given) from a StewardConfig."""
        client = client or ManagementClient.from_config(config)
        return cls(
            RunRegistry(client),
            status_table=config.status_table(),
            poll_interval=config.poll_interval,
            create_timeout=config.create_timeout,
            delete_timeout=config.delete_timeout,
            allow_multiple_runs=config.allow_multiple_runs,
        )

    @property
    def client(self) -> ManagementClient:
        return self.registry.client

    # =========================================================================
    # create
    # =========================================================================

    def create(
        self,
        address: ProgramAddress,
        runtime_args: Optional[Mapping[str, str]] = None,
        token: Optional[str] = None,
    ) -> LifecycleHandle:
        """
        Start a run and wait until it is RUNNING.

        Args:
            address: Program to start
            runtime_args: Runtime arguments for the run
            token: RunToken to use (generated if omitted)

        Returns:
            LifecycleHandle bound to the service run id

        Raises:
            TransportError: The start command was rejected
            StateError: The run reached a state other than RUNNING or initializing
            PollTimeoutError: The run was not RUNNING within create_timeout
            DecodeError: The run record was malformed
        """
        handle = LifecycleHandle(address=address, token=token or run_token.new_token())
        arguments = run_token.embed(runtime_args, handle.token)
        deadline = Deadline(self.create_timeout, self.clock)

        logger.info(
            f"Starting {address} with run token {handle.token}",
            extra={"event": "run.start", "program": str(address), "run_token": handle.token},
        )
        self.client.start_program(address, arguments, deadline=deadline)

        while True:
            deadline.sleep(self.poll_interval)
            run = self._observe(handle, deadline)

            if run is not None:
                status = run.status
                if self.status_table.is_running(status):
                    logger.info(
                        f"Run {run.run_id} of {address} is RUNNING after {format_duration(deadline.elapsed)}",
                        extra={"event": "run.running", "run_id": run.run_id, "status": status},
                    )
                    return handle
                if not self.status_table.is_initializing(status):
                    raise StateError(
                        f"Run {run.run_id} of {address} (token {handle.token}) {self._start_failure(status)}",
                        status=status,
                        run_id=run.run_id,
                    )

            if deadline.expired:
                raise PollTimeoutError(
                    f"Timed out after {format_duration(self.create_timeout)} waiting for "
                    f"{self._describe(handle)} to reach RUNNING; "
                    f"last observed status: {handle.last_status or 'not yet visible'}",
                    last_status=handle.last_status,
                    timeout=self.create_timeout,
                )

    # =========================================================================
    # read
    # =========================================================================

    def read(self, handle: LifecycleHandle) -> RunRecord:
        """
        Fetch the current record of the handle's run.

        An unbound handle is rebound when its run is found.

        Raises:
            CorrelationError: If the run cannot be found
        """
        run = self._lookup(handle)
        handle.last_status = run.status
        return run

    # =========================================================================
    # delete
    # =========================================================================

    def delete(self, handle: LifecycleHandle) -> None:
        """
        Stop the handle's run and wait until it is terminal.

        A run that is already terminal, or no longer known to the service,
        is not stopped again.

        Raises:
            StateError: The stop command was rejected while the run was live
            PollTimeoutError: The run was not terminal within delete_timeout
            DecodeError: The run record was malformed
        """
        address = handle.address
        deadline = Deadline(self.delete_timeout, self.clock)

        stop_issued = False
        while True:
            try:
                run = self._lookup(handle, deadline)
            except CorrelationError:
                if handle.is_bound:
                    logger.info(f"Run {handle.run_id} of {address} is gone")
                else:
                    logger.info(f"No run of {address} carries token {handle.token}, nothing to stop")
                return
            except (TransientError, TransportError) as e:
                logger.warning(f"Could not observe {self._describe(handle)}: {e}")
            else:
                status = run.status
                handle.last_status = status
                logger.info(
                    f"Run {run.run_id} of {address} is {status}",
                    extra={"event": "run.observed", "run_id": run.run_id, "status": status},
                )

                if self.status_table.is_terminal(status):
                    return

                if self.status_table.is_live(status):
                    if not stop_issued:
                        stop_issued = True
                        if self._stop(handle, run, deadline):
                            return
                elif self.status_table.is_stopping(status):
                    logger.info(f"Run {run.run_id} of {address} still STOPPING, waiting {self.poll_interval:g} seconds")
                else:
                    logger.warning(f"Run {run.run_id} of {address} is in unrecognized state {status}")

            if deadline.expired:
                raise PollTimeoutError(
                    f"Timed out after {format_duration(self.delete_timeout)} waiting for "
                    f"{self._describe(handle)} to stop; "
                    f"last observed status: {handle.last_status or 'unknown'}",
                    last_status=handle.last_status,
                    timeout=self.delete_timeout,
                )
            deadline.sleep(self.poll_interval)

    def _stop(self, handle: LifecycleHandle, run: RunRecord, deadline: Deadline) -> bool:
        """
        Issue the stop command.

        A rejected stop is checked against the run's current status, since
        the run may have ended or been stopped by someone else meanwhile.

        Returns:
            True if the run is already terminal or gone, False otherwise

        Raises:
            StateError: The stop was rejected and the run is still live
                (or could not be observed)
        """
        try:
            self.client.stop_run(handle.address, run.run_id, deadline=deadline)
            return False
        except (TransientError, TransportError) as e:
            error = e

        logger.warning(f"Stop of run {run.run_id} of {handle.address} was rejected: {error}; re-checking status")
        status = run.status
        try:
            current = self.registry.find_by_id(handle.address, run.run_id, deadline=deadline)
        except CorrelationError:
            logger.info(f"Run {run.run_id} of {handle.address} is gone")
            return True
        except (TransientError, TransportError) as e:
            logger.warning(f"Could not re-check run {run.run_id} of {handle.address}: {e}")
        else:
            status = current.status
            handle.last_status = status
            if self.status_table.is_terminal(status):
                logger.info(f"Run {run.run_id} of {handle.address} already ended: {status}")
                return True
            if not self.status_table.is_live(status):
                return False

        raise StateError(
            f"Error stopping run {run.run_id} of {handle.address} in state {status}: {error}",
            status=status,
            run_id=run.run_id,
        ) from error

    def _start_failure(self, status: str) -> str:
        if self.status_table.is_unsuccessful(status):
            return f"failed to start, in state {status}"
        if self.status_table.is_terminal(status):
            return f"finished with {status} before reaching RUNNING"
        return f"is in state {status}, expected RUNNING or an initializing state"

    # =========================================================================
    # exists
    # =========================================================================

    def exists(self, handle: LifecycleHandle, allow_multiple_runs: Optional[bool] = None) -> bool:
        """
        Check whether the handle's run is currently RUNNING.

        Args:
            handle: The run to check
            allow_multiple_runs: Whether a foreign RUNNING run is acceptable
                (defaults to the lifecycle's setting)

        Returns:
            True if our run is RUNNING, False if it is not

        Raises:
            AmbiguityError: The program is RUNNING, but not our run, and
                concurrent runs are disallowed
        """
        if allow_multiple_runs is None:
            allow_multiple_runs = self.allow_multiple_runs
        address = handle.address

        program_status = self.client.program_status(address)
        program_running = self.status_table.is_running(program_status)

        correlated = False
        if program_running:
            try:
                run = self.read(handle)
            except CorrelationError:
                logger.info(f"{address} is RUNNING but no run matches {self._describe(handle)}")
            else:
                correlated = self.status_table.is_running(run.status)

        decision = decide_existence(program_running, correlated, allow_multiple_runs)
        logger.debug(
            f"Existence of {self._describe(handle)}: program={program_status} "
            f"correlated={correlated} allow_multiple_runs={allow_multiple_runs} -> {decision.value}"
        )
        if decision is Existence.BLOCKED:
            raise AmbiguityError(
                f"Another run of {address} is already RUNNING and concurrent runs are disallowed "
                f"(allow_multiple_runs is false); {self._describe(handle)} is not among the running runs",
                address=address,
            )
        return decision is Existence.EXISTS

    def ensure_startable(self, address: ProgramAddress, allow_multiple_runs: Optional[bool] = None) -> None:
        """
        Refuse to start a run on a program that is already RUNNING, unless
        concurrent runs are allowed.

        Raises:
            AmbiguityError: The program is RUNNING and concurrent runs are disallowed
        """
        if allow_multiple_runs is None:
            allow_multiple_runs = self.allow_multiple_runs
        program_running = self.status_table.is_running(self.client.program_status(address))
        if decide_existence(program_running, False, allow_multiple_runs) is Existence.BLOCKED:
            raise AmbiguityError(
                f"A run of {address} is already RUNNING and concurrent runs are disallowed "
                f"(allow_multiple_runs is false)",
                address=address,
            )

    # =========================================================================
    # helpers
    # =========================================================================

    def _lookup(self, handle: LifecycleHandle, deadline: Optional[Deadline] = None) -> RunRecord:
        """Find the handle's run, by id when bound, else by token (rebinding on success)."""
        if handle.is_bound:
            return self.registry.find_by_id(handle.address, handle.run_id, deadline=deadline)

        run = self.registry.find_by_token(handle.address, handle.token, deadline=deadline)
        handle.rebind(run.run_id)
        logger.info(
            f"Rebound token {handle.token} to run {run.run_id}",
            extra={"event": "run.rebound", "run_token": handle.token, "run_id": run.run_id},
        )
        return run

    def _observe(self, handle: LifecycleHandle, deadline: Deadline) -> Optional[RunRecord]:
        """
        One poll during create.

        Returns None when the run is not visible yet or the service could not
        be reached; DecodeError and other permanent errors propagate.
        """
        try:
            run = self._lookup(handle, deadline)
        except CorrelationError as e:
            logger.info(f"{e}; still waiting")
            return None
        except (TransientError, TransportError) as e:
            logger.warning(f"Could not observe {self._describe(handle)}: {e}")
            return None

        handle.last_status = run.status
        logger.info(
            f"Run {run.run_id} of {handle.address} is {run.status}",
            extra={"event": "run.observed", "run_id": run.run_id, "status": run.status},
        )
        return run

    @staticmethod
    def _describe(handle: LifecycleHandle) -> str:
        if handle.is_bound:
            return f"run {handle.run_id} of {handle.address}"
        return f"run of {handle.address} with token {handle.token}"
