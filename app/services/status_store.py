"""
Redis-backed status store for bulk assignment jobs.

One key per job (`assignment:{id}:status`) holding the JSON-encoded
AssignmentJobStatus. Every write overwrites the previous value and refreshes
the TTL; there is no compare-and-swap, so a job must have a single writer.
"""

import json
import time
from typing import Optional

from pydantic import ValidationError

from app.schemas.assignment import AssignmentJobStatus, JobProgress
from app.utils.logger import logger

DEFAULT_STATUS_TTL_SECONDS = 3600


def now_ms() -> int:
    return int(time.time() * 1000)


def make_status(state: str, **fields) -> AssignmentJobStatus:
    """Build a status stamped with the current time."""
    return AssignmentJobStatus(status=state, timestamp=now_ms(), **fields)


class AssignmentStatusStore:
    def __init__(self, redis, ttl_seconds: int = DEFAULT_STATUS_TTL_SECONDS):
        self._redis = redis
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(assignment_id: str) -> str:
        return f"assignment:{assignment_id}:status"

    async def set_status(self, assignment_id: str, status: AssignmentJobStatus) -> None:
        """Overwrite the job's status and reset its expiry. Redis errors propagate."""
        await self._redis.set(
            self.key(assignment_id),
            json.dumps(status.to_payload()),
            ex=self.ttl_seconds,
        )
        logger.debug(
            "status.set",
            extra={"assignment_id": assignment_id, "status": status.status},
        )

    async def get_status(self, assignment_id: str) -> Optional[AssignmentJobStatus]:
        """Return the job's status, or None when absent, expired or unreadable."""
        raw = await self._redis.get(self.key(assignment_id))
        if raw is None:
            return None
        try:
            return AssignmentJobStatus.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            logger.error(
                "status.unreadable",
                extra={"assignment_id": assignment_id, "error": str(exc)[:200]},
            )
            return None

    async def set_progress(
        self,
        assignment_id: str,
        processed: int,
        total: int,
        percent: Optional[int] = None,
        failed: int = 0,
    ) -> None:
        await self.set_status(
            assignment_id,
            make_status(
                "PROCESSING",
                progress=JobProgress(processed=processed, total=total, failed=failed, percent=percent),
            ),
        )
