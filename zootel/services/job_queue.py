"""
Background job queue

Best-effort work that must not affect a booking's outcome (registering
reminders, cancelling them, releasing payments) is enqueued as ARQ jobs once
the booking transaction has committed. The job functions live in worker.py;
retries and failed-job results are handled by ARQ there.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol

from arq.connections import ArqRedis

from ..config import JOB_ENQUEUE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    def enqueue(self, function: str, *args: Any) -> Optional[str]: ...


class ArqJobQueue:
    """
    Enqueue ARQ jobs from synchronous code.

    Booking endpoints run in FastAPI's threadpool, so enqueueing is handed to
    the application's event loop, where the pool was created. Must not be
    called from that loop's own thread.
    """

    def __init__(
        self,
        pool: ArqRedis,
        loop: asyncio.AbstractEventLoop,
        timeout: float = JOB_ENQUEUE_TIMEOUT_SECONDS,
    ):
        self.pool = pool
        self.loop = loop
        self.timeout = timeout

    def enqueue(self, function: str, *args: Any) -> Optional[str]:
        """Queue ``function`` for the worker; returns the job id, or None if nothing was queued"""
        try:
            future = asyncio.run_coroutine_threadsafe(
                self.pool.enqueue_job(function, *args), self.loop
            )
            job = future.result(timeout=self.timeout)
        except Exception as e:
            # Continue - the booking has already been committed
            logger.error(f"❌ Failed to queue {function}: {e}")
            return None

        if job is None:
            logger.warning(f"⚠️ {function} not queued: a job with the same id already exists")
            return None
        logger.info(f"📋 Queued {function}: {job.job_id}")
        return job.job_id
