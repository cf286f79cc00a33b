"""Instance health: wait until every system service reports OK."""

import logging
from typing import Optional

from runsteward.client import ManagementClient
from runsteward.clock import Clock, SYSTEM_CLOCK
from runsteward.errors import StateError

logger = logging.getLogger(__name__)

HEALTHY = "OK"


def unhealthy_services(statuses: dict[str, str]) -> list[str]:
    return sorted(service for service, status in statuses.items() if status != HEALTHY)


def wait_until_healthy(
    client: ManagementClient,
    attempts: int = 10,
    interval: float = 10,
    clock: Optional[Clock] = None,
) -> dict[str, str]:
    """
    Poll system service statuses until all are OK.

    Args:
        client: ManagementClient for the instance
        attempts: Maximum number of status checks
        interval: Seconds between checks
        clock: Clock used for sleeping

    Returns:
        The final service -> status map

    Raises:
        StateError: No services were reported, or some were still unhealthy
            after the last attempt
    """
    clock = clock or SYSTEM_CLOCK
    bad: list[str] = []
    for attempt in range(1, attempts + 1):
        statuses = client.service_statuses()
        if not statuses:
            raise StateError("Found no services on instance")

        bad = unhealthy_services(statuses)
        if not bad:
            logger.info(f"Instance is healthy: {statuses}")
            return statuses

        logger.warning(f"Found {len(bad)} unhealthy services: {bad} (attempt {attempt}/{attempts})")
        if attempt < attempts:
            clock.sleep(interval)

    raise StateError(f"Found {len(bad)} unhealthy services: {bad}")
