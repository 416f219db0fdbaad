"""Waiting for provider work requests to reach a terminal status."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from devops_lifecycle.errors import WorkRequestFailedError, WorkRequestTimeoutError
from devops_lifecycle.models import IN_FLIGHT_STATUSES, WorkRequest, WorkRequestStatus

logger = logging.getLogger(__name__)

StatusFn = Callable[[], Awaitable[Optional[str]]]
WorkRequestFn = Callable[[str], Awaitable[WorkRequest]]


def is_in_flight(status: Optional[str]) -> bool:
    return status in IN_FLIGHT_STATUSES


async def await_completion(
    poll_interval: float,
    status_fn: StatusFn,
    check_first: bool = False,
) -> Optional[str]:
    """Poll ``status_fn`` until it reports a terminal status and return it.

    By default the first call happens after one ``poll_interval``; with
    ``check_first`` the status is queried immediately. There is no upper
    bound on the number of polls. Errors raised by ``status_fn`` propagate.
    """
    if check_first:
        status = await status_fn()
        while is_in_flight(status):
            await asyncio.sleep(poll_interval)
            status = await status_fn()
        return status

    while True:
        await asyncio.sleep(poll_interval)
        status = await status_fn()
        if not is_in_flight(status):
            return status


async def await_work_request(
    get_work_request: WorkRequestFn,
    description: str,
    work_request_id: str,
    poll_interval: float,
) -> WorkRequest:
    """Wait for a work request and raise unless it succeeded."""
    latest: dict[str, WorkRequest] = {}

    async def status() -> str:
        latest["request"] = await get_work_request(work_request_id)
        return latest["request"].status

    final = await await_completion(poll_interval, status)
    if final != WorkRequestStatus.SUCCEEDED.value:
        raise WorkRequestFailedError(description, work_request_id, str(final))
    return latest["request"]


async def await_resource(
    get_work_request: WorkRequestFn,
    description: str,
    work_request_id: str,
    timeout: float = 60.0,
    poll_interval: float = 2.0,
) -> str:
    """Resolve the resource created by a work request, within ``timeout``.

    Raises WorkRequestTimeoutError when no terminal status shows up in time
    and WorkRequestFailedError when the provider reports a failure.
    """
    attempts = max(1, int(timeout / poll_interval))
    for _ in range(attempts):
        request = await get_work_request(work_request_id)
        if not is_in_flight(request.status):
            if request.status != WorkRequestStatus.SUCCEEDED.value:
                raise WorkRequestFailedError(description, work_request_id, request.status)
            if not request.resources:
                raise WorkRequestFailedError(description, work_request_id, "NO_RESOURCE")
            return request.resources[0].identifier
        await asyncio.sleep(poll_interval)

    logger.warning(
        "Work request %s for %s still running after %ss", work_request_id, description, timeout
    )
    raise WorkRequestTimeoutError(description, work_request_id, timeout)
