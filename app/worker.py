"""
Bulk assignment queue worker. Blocking-pops jobs from Redis and runs them
one at a time through the job processor.

Can run as:
  1. Background task inside the API process (started on app startup when
     ENABLE_ASSIGNMENT_WORKER is true)
  2. Standalone worker: python -m app.worker

Exactly one worker per deployment: nothing coordinates several consumers of
the same queue, and reconciliation relies on jobs for a snippet being serial.
"""
import asyncio
import json
import signal
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.schemas.assignment import BulkAssignmentJob
from app.utils.logger import logger

DEFAULT_POLL_TIMEOUT_SECONDS = 5.0
DEFAULT_ERROR_BACKOFF_SECONDS = 1.0


def _assignment_id_of(message: str) -> Optional[str]:
    try:
        data = json.loads(message)
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("assignmentId"), str):
        return data["assignmentId"] or None
    return None


class AssignmentQueueWorker:
    """STOPPED -> RUNNING -> STOPPED. Only start()/stop() touch the running flag."""

    def __init__(
        self,
        queue,
        processor,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT_SECONDS,
        error_backoff: float = DEFAULT_ERROR_BACKOFF_SECONDS,
    ):
        self._queue = queue
        self._processor = processor
        self.poll_timeout = poll_timeout
        self.error_backoff = error_backoff
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            logger.warning("worker.already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="assignment-queue-worker")
        logger.info("worker.started", extra={"poll_timeout": self.poll_timeout, "queue": self._queue.queue_key})

    async def stop(self) -> None:
        """Clear the running flag and wait for the loop; an in-flight job finishes first."""
        if not self._running:
            return
        logger.info("worker.stopping")
        self._running = False
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("worker.stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                message = await self._queue.dequeue_blocking(self.poll_timeout)
                if message is not None:
                    await self._process_message(message)
            except Exception as exc:
                # Queue unreachable or similar: back off, then poll again
                logger.error("worker.poll_error", extra={"error": str(exc)[:500], "error_type": type(exc).__name__})
                await asyncio.sleep(self.error_backoff)

    async def _process_message(self, message: str) -> None:
        """One bad message never stops the loop."""
        try:
            job = BulkAssignmentJob.from_message(message)
        except (ValidationError, ValueError) as exc:
            assignment_id = _assignment_id_of(message)
            logger.error("worker.invalid_message", extra={"assignment_id": assignment_id, "error": str(exc)[:500]})
            if assignment_id:
                await self._processor.fail_unreadable_job(assignment_id, f"Invalid assignment job: {str(exc)[:500]}")
            return

        logger.info("worker.job_received", extra={"assignment_id": job.assignment_id})
        try:
            await self._processor.process_assignment(job)
        except Exception as exc:
            logger.error(
                "worker.handler_error",
                extra={"assignment_id": job.assignment_id, "error": str(exc)[:500]},
            )

    async def get_queue_stats(self) -> Dict[str, Any]:
        return {
            "queueLength": await self._queue.length(),
            "isWorkerRunning": self._running,
        }


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

async def main() -> None:
    """Run the worker as a standalone process until SIGINT/SIGTERM."""
    from app.database import init_db
    from app.services.assignment_pipeline import build_assignment_pipeline
    from app.services.redis_client import close_redis, get_redis, init_redis

    await init_db()
    await init_redis()
    redis = get_redis()
    if redis is None:
        raise RuntimeError("Redis is required to run the assignment worker")

    pipeline = build_assignment_pipeline(redis)
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    pipeline.worker.start()
    await stop_requested.wait()
    await pipeline.worker.stop()
    await close_redis()


if __name__ == "__main__":
    asyncio.run(main())
