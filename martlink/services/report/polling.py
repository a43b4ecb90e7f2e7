"""Polling loop for Airbridge report tasks."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 20
DEFAULT_DELAY = 1.0


def task_info(payload: Any) -> dict[str, Any]:
    """Return the ``task`` object of a report payload, or an empty dict."""
    if isinstance(payload, dict) and isinstance(payload.get("task"), dict):
        return payload["task"]
    return {}


async def poll_report(
    fetch: Callable[[str], Awaitable[dict[str, Any]]],
    task_id: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay: float = DEFAULT_DELAY,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> dict[str, Any]:
    """
    Request a report task until it leaves PENDING or the attempt budget runs out.

    Polling continues only while the status is ``PENDING`` and the response
    carries a ``taskId`` to resume with. Errors raised by ``fetch`` propagate.

    Args:
        fetch: Coroutine returning the report payload for a task id
        task_id: Task id returned when the query was started
        max_attempts: Maximum number of requests
        delay: Seconds to wait between requests
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The last payload received
    """
    payload: dict[str, Any] = {}
    for attempt in range(1, max(1, max_attempts) + 1):
        payload = await fetch(task_id)
        task = task_info(payload)
        next_task_id = task.get("taskId")
        if task.get("status") != "PENDING" or not next_task_id:
            break
        if attempt >= max_attempts:
            logger.info(f"Report task {task_id} still pending after {attempt} attempts")
            break
        task_id = str(next_task_id)
        await sleep(delay)
    return payload
