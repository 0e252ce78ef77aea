"""Stalled job sweep.

A job whose worker died (or hung past its lease) keeps its lease until the
lease expires. This sweep runs periodically to:
1. Find leases whose expiry is strictly in the past
2. Clear them and make the jobs visible again
3. Count the release on each job (``stalled_count``)
"""
import structlog
from sqlalchemy.exc import SQLAlchemyError

from relay.queue.base import JobQueue

logger = structlog.get_logger(__name__)


async def release_stalled_jobs(queue: JobQueue) -> dict[str, int]:
    """
    Return jobs with expired leases to the queue.

    Storage errors are logged and reported as ``errors`` so the sweep loop
    keeps running; the next pass retries.

    Args:
        queue: Job queue to sweep

    Returns:
        Dict with counts of released jobs and errors
    """
    try:
        released = await queue.stalled_sweep()
    except SQLAlchemyError as e:
        logger.exception("stalled_sweep_error", exc_info=e)
        return {"released": 0, "errors": 1}

    if released:
        logger.info("stalled_sweep_completed", released=released)

    return {"released": released, "errors": 0}
