"""
Redis list used as the bulk assignment job queue.

LPUSH on enqueue, BRPOP on dequeue: oldest job first. Delivery is
at-most-once: a job popped by a worker that dies before finishing
is gone, nothing re-queues it.
"""

from typing import Optional

from app.schemas.assignment import BulkAssignmentJob
from app.utils.logger import logger

DEFAULT_QUEUE_KEY = "assignment-queue"


class AssignmentQueue:
    def __init__(self, redis, queue_key: str = DEFAULT_QUEUE_KEY):
        self._redis = redis
        self.queue_key = queue_key

    async def enqueue(self, job: BulkAssignmentJob) -> None:
        await self._redis.lpush(self.queue_key, job.to_message())
        logger.info(
            "queue.published",
            extra={"assignment_id": job.assignment_id, "queue": self.queue_key},
        )

    async def dequeue_blocking(self, timeout_seconds: float) -> Optional[str]:
        """
        Pop the next raw job message, waiting up to `timeout_seconds`.

        Returns None on timeout so the caller can re-check its own state.
        """
        result = await self._redis.brpop([self.queue_key], timeout=timeout_seconds)
        if not result:
            return None
        _, message = result
        return message

    async def length(self) -> int:
        return await self._redis.llen(self.queue_key)
