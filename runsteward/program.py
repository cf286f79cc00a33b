"""
ProgramLifecycle - start and stop a program by its aggregate status.

Unlike RunLifecycle this does not track an individual run: it starts the
program and waits for the program-level status to read RUNNING, or stops
it and waits for STOPPED. Suited to programs that only ever have one run.
"""

import logging
from typing import Mapping, Optional

from runsteward.client import ManagementClient
from runsteward.clock import Clock, Deadline, SYSTEM_CLOCK
from runsteward.errors import PollTimeoutError, StateError, TransientError, TransportError
from runsteward.lifecycle import DEFAULT_CREATE_TIMEOUT, DEFAULT_DELETE_TIMEOUT, DEFAULT_POLL_INTERVAL
from runsteward.schemas import ProgramAddress, RUNNING
from runsteward.utils import format_duration

logger = logging.getLogger(__name__)

STOPPED = "STOPPED"
STOPPING = "STOPPING"

# Statuses a starting program fails on. STOPPED is not one of them: it is
# reported briefly while a pipeline is redeployed.
START_FAILURE_STATUSES = frozenset({"FAILED"})


class ProgramLifecycle:
    """
    Aggregate-status lifecycle for a program.

    Usage:
        programs = ProgramLifecycle(client)
        programs.start(address)
        programs.stop(address)
    """

    def __init__(
        self,
        client: ManagementClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        start_timeout: float = DEFAULT_CREATE_TIMEOUT,
        stop_timeout: float = DEFAULT_DELETE_TIMEOUT,
        clock: Optional[Clock] = None,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.start_timeout = start_timeout
        self.stop_timeout = stop_timeout
        self.clock = clock or SYSTEM_CLOCK

    @classmethod
    def from_config(cls, config, client: Optional[ManagementClient] = None) -> "ProgramLifecycle":
        return cls(
            client or ManagementClient.from_config(config),
            poll_interval=config.poll_interval,
            start_timeout=config.create_timeout,
            stop_timeout=config.delete_timeout,
        )

    def is_running(self, address: ProgramAddress) -> bool:
        return self.client.program_status(address) == RUNNING

    def start(self, address: ProgramAddress, runtime_args: Optional[Mapping[str, str]] = None) -> None:
        """
        Start the program and wait until its status is RUNNING.

        Raises:
            StateError: The program reported FAILED
            PollTimeoutError: The program was not RUNNING within start_timeout
        """
        deadline = Deadline(self.start_timeout, self.clock)
        self.client.start_program(address, runtime_args, deadline=deadline)

        last_status = None
        while True:
            status = self._status(address, deadline)
            if status is not None:
                last_status = status
                if status == RUNNING:
                    logger.info(f"Program {address} successfully reached RUNNING state")
                    return
                if status in START_FAILURE_STATUSES:
                    raise StateError(f"Failed to start program {address}, in state: {status}", status=status)
                logger.info(f"Program {address} still in {status} state, waiting {self.poll_interval:g} seconds")

            if deadline.expired:
                raise PollTimeoutError(
                    f"Timed out after {format_duration(self.start_timeout)} waiting for program "
                    f"{address} to reach RUNNING; last observed status: {last_status or 'unknown'}",
                    last_status=last_status,
                    timeout=self.start_timeout,
                )
            deadline.sleep(self.poll_interval)

    def stop(self, address: ProgramAddress) -> None:
        """
        Stop the program and wait until its status is STOPPED.

        Raises:
            StateError: The program is in a state it cannot be stopped from
            PollTimeoutError: The program was not STOPPED within stop_timeout
        """
        deadline = Deadline(self.stop_timeout, self.clock)

        last_status = None
        stop_issued = False
        while True:
            status = self._status(address, deadline)
            if status is not None:
                last_status = status
                if status == STOPPED:
                    return
                if status == RUNNING:
                    if not stop_issued:
                        self.client.stop_program(address, deadline=deadline)
                        stop_issued = True
                elif status == STOPPING:
                    logger.info(f"Program {address} still in STOPPING state, waiting {self.poll_interval:g} seconds")
                else:
                    raise StateError(f"Cannot stop program {address} in state: {status}", status=status)

            if deadline.expired:
                raise PollTimeoutError(
                    f"Timed out after {format_duration(self.stop_timeout)} waiting for program "
                    f"{address} to stop; last observed status: {last_status or 'unknown'}",
                    last_status=last_status,
                    timeout=self.stop_timeout,
                )
            deadline.sleep(self.poll_interval)

    def _status(self, address: ProgramAddress, deadline: Deadline) -> Optional[str]:
        try:
            return self.client.program_status(address, deadline=deadline)
        except (TransientError, TransportError) as e:
            logger.warning(f"Could not get status of program {address}: {e}")
            return None
