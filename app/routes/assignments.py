"""
Snippet Assignment Routes

Bulk assignments are queued and processed by the worker; clients poll
/{assignmentId}/status. Small batches can go through the synchronous POST /.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.middleware.auth import get_actor_id
from app.schemas.assignment import (
    AssignmentFilter,
    AssignmentStatusValue,
    BulkAssignmentJob,
    BulkAssignmentRequest,
    PreviewAssignmentRequest,
    UpdateAssignmentRequest,
)
from app.services import assignment_service
from app.services.assignment_pipeline import AssignmentPipeline, get_pipeline
from app.services.assignment_processor import generate_assignment_id, preview_assignment
from app.services.batch_executor import BatchExecutor
from app.services.errors import (
    AssignmentNotFoundError,
    DuplicateAssignmentError,
    ExecutionServiceError,
    SnippetNotFoundError,
)
from app.services.execution_client import ExecutionClient
from app.services.snippet_variations import resolve_snippet_variations
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger()

limiter = Limiter(key_func=get_remote_address)


def require_pipeline() -> AssignmentPipeline:
    """Bulk assignment needs Redis; without it the endpoints answer 503."""
    pipeline = get_pipeline()
    if pipeline is None:
        raise HTTPException(
            status_code=503,
            detail="Bulk assignment is unavailable: Redis is not connected"
        )
    return pipeline


def _execution_client() -> ExecutionClient:
    pipeline = get_pipeline()
    return pipeline.client if pipeline is not None else ExecutionClient()


def _sync_executor(db: AsyncSession) -> BatchExecutor:
    """Executor for the synchronous path: no status writes, variations read on the request session."""
    async def resolve_variations(snippet_id, variation_types):
        return await resolve_snippet_variations(db, snippet_id, variation_types)

    return BatchExecutor(
        _execution_client(),
        batch_size=get_settings().assignment_batch_size,
        variation_resolver=resolve_variations,
    )


# ========== Bulk (queued) ==========

@router.post("/bulk-assign", status_code=202)
@limiter.limit("30/minute")
async def queue_bulk_assignment(
    request: Request,
    assignment_request: BulkAssignmentRequest,
    actor_id: str = Depends(get_actor_id),
    pipeline: AssignmentPipeline = Depends(require_pipeline),
):
    """Queue a bulk assignment for async processing. Poll /{assignmentId}/status for progress."""
    assignment_id = generate_assignment_id()
    job = BulkAssignmentJob(
        assignment_id=assignment_id,
        user_id=actor_id,
        **assignment_request.model_dump(),
    )

    try:
        await pipeline.processor.queue_assignment(job)
    except Exception as e:
        logger.error("assignment.queue_failed", extra={"assignment_id": assignment_id, "error": str(e)[:200]})
        raise HTTPException(status_code=503, detail="Failed to queue assignment")

    return {
        "assignmentId": assignment_id,
        "status": "PENDING",
        "message": "Assignment queued for processing",
    }


@router.get("/{assignment_id}/status")
async def get_assignment_status(
    assignment_id: str,
    pipeline: AssignmentPipeline = Depends(require_pipeline),
):
    status = await pipeline.processor.get_assignment_status(assignment_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Assignment {assignment_id} not found")
    return status.to_payload()


@router.post("/preview")
@limiter.limit("60/minute")
async def preview_bulk_assignment(
    request: Request,
    preview_request: PreviewAssignmentRequest,
    actor_id: str = Depends(get_actor_id),
):
    """Preview a bulk assignment: the category pages it would touch, as returned by the backend."""
    try:
        return await preview_assignment(_execution_client(), preview_request)
    except ExecutionServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))


# ========== Synchronous ==========

@router.post("", status_code=201)
async def create_and_execute(
    assignment_request: BulkAssignmentRequest,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Create assignment rows and execute them right away (small batches only).

    Existing (catType, slug) pairs are rejected instead of reconciled. Rows are
    set to ACTIVE once every batch succeeded.
    """
    try:
        saved = await assignment_service.create_assignments(
            db, assignment_request.snippet_id, assignment_request.assignments, actor_id
        )

        job = BulkAssignmentJob(
            assignment_id=generate_assignment_id("sync"),
            user_id=actor_id,
            **assignment_request.model_dump(),
        )
        results = await _sync_executor(db).execute(job)

        activated = await assignment_service.activate_pending_assignments(
            db, assignment_request.snippet_id, actor_id
        )
        logger.info(
            "assignment.sync_completed",
            extra={"assignment_id": job.assignment_id, "snippet_id": job.snippet_id, "updated": activated},
        )

        return {
            "success": True,
            "message": "Assignment executed successfully",
            "results": results,
            "assignments": saved,
        }

    except SnippetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DuplicateAssignmentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("assignment.sync_failed", extra={"snippet_id": assignment_request.snippet_id, "error": str(e)[:500]})
        raise HTTPException(status_code=400, detail=f"Assignment execution failed: {str(e)}")


@router.post("/test-sync")
async def test_sync_assignment(
    assignment_request: BulkAssignmentRequest,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Execute against the backend directly, bypassing the queue and the assignment rows (debugging)."""
    job = BulkAssignmentJob(
        assignment_id=generate_assignment_id("sync_test"),
        user_id=actor_id,
        **assignment_request.model_dump(),
    )

    try:
        results = await _sync_executor(db).execute(job)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Assignment execution failed: {str(e)}")

    return {
        "success": True,
        "message": "Synchronous assignment completed",
        "results": results,
        "testData": {
            "assignmentId": job.assignment_id,
            "useNativeLogic": job.use_native_logic,
            "categoryTypes": job.category_types,
            "snippetVariations": len(job.snippet_variations or []),
        },
    }


# ========== Read / Update / Delete ==========

@router.get("")
async def list_assignments(
    snippet_id: Optional[str] = Query(None, alias="snippetId"),
    cat_type: Optional[str] = Query(None, alias="catType"),
    status: Optional[AssignmentStatusValue] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    filters = AssignmentFilter(snippet_id=snippet_id, cat_type=cat_type, status=status, page=page, limit=limit)
    return await assignment_service.find_all(db, filters)


@router.get("/by-snippet/{snippet_id}")
async def get_assignments_by_snippet(
    snippet_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await assignment_service.find_by_snippet(db, snippet_id)


@router.get("/{snippet_id}/detailed-history")
async def get_detailed_history(
    snippet_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Full audit trail of a snippet's assignments with user info and statistics."""
    try:
        return await assignment_service.get_detailed_history(db, snippet_id)
    except SnippetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{assignment_id}")
async def update_assignment(
    assignment_id: str,
    update_request: UpdateAssignmentRequest,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await assignment_service.update_assignment(db, assignment_id, update_request, actor_id)
    except AssignmentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DuplicateAssignmentError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{assignment_id}")
async def delete_assignment(
    assignment_id: str,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await assignment_service.remove_assignment(db, assignment_id, actor_id)
    except AssignmentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
