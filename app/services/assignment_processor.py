"""
Bulk assignment job lifecycle.

    PENDING --(worker picks up)--> PROCESSING --(all batches ok)--> COMPLETED
                                   PROCESSING --(any failure)-----> FAILED

Usage:
    processor = AssignmentJobProcessor(queue=..., status_store=..., executor=..., session_factory=...)
    await processor.queue_assignment(job)          # request handler
    await processor.process_assignment(job)        # queue worker
    status = await processor.get_assignment_status(job_id)

A job that fails at batch N keeps batches 1..N-1 applied on the backend and
keeps the reconciled rows; nothing is rolled back.
"""
import secrets
import string
import time
from typing import Any, Optional

from app.schemas.assignment import AssignmentJobStatus, BulkAssignmentJob, PreviewAssignmentRequest
from app.services.reconciliation import (
    DEFAULT_RECONCILE_TIMEOUT_SECONDS,
    reconcile_assignment_records,
    set_snippet_assignment_status,
)
from app.services.status_store import make_status
from app.utils.locale import normalize_to_backend
from app.utils.logger import logger
from app.utils.metrics import inc, observe

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_assignment_id(prefix: str = "assignment") -> str:
    """`assignment_<epoch ms>_<9 random chars>`"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


async def preview_assignment(client, request: PreviewAssignmentRequest) -> Any:
    """Ask the backend which category pages the assignment would touch. Needs no queue."""
    return await client.preview({
        "assignments": [item.model_dump(by_alias=True) for item in request.assignments],
        "categoryTypes": request.category_types,
        "locale": normalize_to_backend(request.locale),
    })


class AssignmentJobProcessor:
    def __init__(
        self,
        *,
        queue,
        status_store,
        executor,
        session_factory,
        client=None,
        reconcile_timeout: float = DEFAULT_RECONCILE_TIMEOUT_SECONDS,
    ):
        self._queue = queue
        self._status_store = status_store
        self._executor = executor
        self._session_factory = session_factory
        self._client = client
        self._reconcile_timeout = reconcile_timeout

    async def queue_assignment(self, job: BulkAssignmentJob) -> None:
        """Write the initial PENDING status, then publish the job."""
        await self._status_store.set_status(job.assignment_id, make_status("PENDING"))
        await self._queue.enqueue(job)
        inc("assignment.queued")
        logger.info(
            "assignment.queued",
            extra={"assignment_id": job.assignment_id, "snippet_id": job.snippet_id, "user_id": job.user_id},
        )

    async def get_assignment_status(self, assignment_id: str) -> Optional[AssignmentJobStatus]:
        return await self._status_store.get_status(assignment_id)

    async def preview_assignment(self, request: PreviewAssignmentRequest) -> Any:
        return await preview_assignment(self._client, request)

    async def process_assignment(self, job: BulkAssignmentJob) -> Optional[AssignmentJobStatus]:
        """
        Run one job to a terminal state and return that state.
        Never raises: every failure ends as FAILED in the status store.
        """
        assignment_id = job.assignment_id
        started = time.monotonic()
        logger.info("assignment.processing", extra={"assignment_id": assignment_id, "snippet_id": job.snippet_id})

        try:
            await self._status_store.set_status(assignment_id, make_status("PROCESSING"))

            # Rows first, so the UI can list them while batches are in flight
            await reconcile_assignment_records(self._session_factory, job, timeout_seconds=self._reconcile_timeout)

            results = await self._executor.execute(job)

            # Owner update precedes the terminal write: nothing may follow COMPLETED
            await set_snippet_assignment_status(self._session_factory, job.snippet_id, "ACTIVE")
            final = make_status("COMPLETED", results=results)
            await self._status_store.set_status(assignment_id, final)

            inc("assignment.completed")
            observe("assignment.duration_ms", (time.monotonic() - started) * 1000)
            logger.info("assignment.completed", extra={"assignment_id": assignment_id})
            return final

        except Exception as exc:
            inc("assignment.failed")
            message = str(exc) or type(exc).__name__
            logger.error(
                "assignment.failed",
                extra={"assignment_id": assignment_id, "error": message[:1000], "error_type": type(exc).__name__},
            )
            return await self._mark_failed(job, message)

    async def fail_unreadable_job(self, assignment_id: str, message: str) -> None:
        """Close out a queued job whose message no longer parses, so pollers stop at FAILED."""
        inc("assignment.failed")
        try:
            await self._status_store.set_status(assignment_id, make_status("FAILED", error=message))
        except Exception as exc:
            logger.error(
                "assignment.status_write_failed",
                extra={"assignment_id": assignment_id, "error": str(exc)[:200]},
            )

    async def _mark_failed(self, job: BulkAssignmentJob, message: str) -> Optional[AssignmentJobStatus]:
        final = make_status("FAILED", error=message)
        try:
            await self._status_store.set_status(job.assignment_id, final)
        except Exception as exc:
            logger.error(
                "assignment.status_write_failed",
                extra={"assignment_id": job.assignment_id, "error": str(exc)[:200]},
            )
        try:
            await set_snippet_assignment_status(self._session_factory, job.snippet_id, "FAILED")
        except Exception as exc:
            logger.error(
                "assignment.owner_update_failed",
                extra={"assignment_id": job.assignment_id, "snippet_id": job.snippet_id, "error": str(exc)[:200]},
            )
        return final
