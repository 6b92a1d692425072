"""
Wires the bulk assignment components together for one process.

The API process and the standalone worker both call build_assignment_pipeline()
once at startup; routes fetch the result through get_pipeline().
"""
from dataclasses import dataclass
from typing import Optional

from app.config import Settings, get_settings
from app.services.assignment_processor import AssignmentJobProcessor
from app.services.assignment_queue import AssignmentQueue
from app.services.batch_executor import BatchExecutor
from app.services.execution_client import ExecutionClient
from app.services.snippet_variations import resolve_snippet_variations
from app.services.status_store import AssignmentStatusStore


@dataclass
class AssignmentPipeline:
    queue: AssignmentQueue
    status_store: AssignmentStatusStore
    client: ExecutionClient
    executor: BatchExecutor
    processor: AssignmentJobProcessor
    worker: "AssignmentQueueWorker"


def build_assignment_pipeline(
    redis,
    session_factory=None,
    settings: Optional[Settings] = None,
    client=None,
) -> AssignmentPipeline:
    from app.worker import AssignmentQueueWorker

    settings = settings or get_settings()
    if session_factory is None:
        from app.database import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    async def resolve_variations(snippet_id, variation_types):
        async with session_factory() as db:
            return await resolve_snippet_variations(db, snippet_id, variation_types)

    queue = AssignmentQueue(redis, settings.assignment_queue_key)
    status_store = AssignmentStatusStore(redis, settings.assignment_status_ttl_seconds)
    client = client or ExecutionClient()
    executor = BatchExecutor(
        client,
        status_store=status_store,
        batch_size=settings.assignment_batch_size,
        variation_resolver=resolve_variations,
    )
    processor = AssignmentJobProcessor(
        queue=queue,
        status_store=status_store,
        executor=executor,
        session_factory=session_factory,
        client=client,
        reconcile_timeout=settings.reconcile_timeout_seconds,
    )
    worker = AssignmentQueueWorker(
        queue,
        processor,
        poll_timeout=settings.worker_poll_timeout_seconds,
        error_backoff=settings.worker_error_backoff_seconds,
    )
    return AssignmentPipeline(queue, status_store, client, executor, processor, worker)


_pipeline: Optional[AssignmentPipeline] = None


def get_pipeline() -> Optional[AssignmentPipeline]:
    return _pipeline


def set_pipeline(pipeline: Optional[AssignmentPipeline]) -> None:
    global _pipeline
    _pipeline = pipeline
