"""
Create-or-update of snippet assignment rows for a bulk assignment job.

Runs before any batch is sent so the admin UI can show the rows while the
backend is still working. Existing (snippet, catType, slug) rows are reset to
PENDING, missing ones are inserted, and each touched row gets one history
entry. Two reconciliations for the same snippet must not run concurrently;
the single queue worker guarantees that.
"""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from sqlalchemy import select, tuple_, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.assignment import AssignmentHistory, SnippetAssignment
from app.models.base import new_id, utcnow
from app.schemas.assignment import BulkAssignmentJob
from app.utils.logger import logger

DEFAULT_RECONCILE_TIMEOUT_SECONDS = 15.0

# Keeps the tuple IN (...) lookup under driver bind-parameter limits
LOOKUP_CHUNK_SIZE = 400

AssignmentKey = Tuple[str, str]


def normalize_pairs(job: BulkAssignmentJob) -> List[AssignmentKey]:
    """
    Flatten job items into unique (catType, slug) keys in input order.
    Slugs are trimmed, empty ones dropped; malformed items are logged and skipped.
    """
    fallback_cat_type = job.category_types[0] if job.category_types else "unknown"
    pairs: Dict[AssignmentKey, None] = {}

    for item in job.assignments:
        if isinstance(item.slugs, list):
            slugs = item.slugs
        elif isinstance(item.slug, str):
            slugs = [item.slug]
        else:
            logger.warning(
                "reconcile.invalid_item",
                extra={"assignment_id": job.assignment_id, "error": item.model_dump_json(by_alias=True)[:200]},
            )
            continue

        cat_type = item.cat_type if isinstance(item.cat_type, str) and item.cat_type else fallback_cat_type
        for slug in slugs:
            if isinstance(slug, str) and slug.strip():
                pairs[(cat_type, slug.strip())] = None

    return list(pairs)


async def find_existing_assignments(db: AsyncSession, snippet_id: str, pairs: List[AssignmentKey]) -> List[SnippetAssignment]:
    existing: List[SnippetAssignment] = []
    for start in range(0, len(pairs), LOOKUP_CHUNK_SIZE):
        part = pairs[start:start + LOOKUP_CHUNK_SIZE]
        result = await db.execute(
            select(SnippetAssignment).where(
                SnippetAssignment.snippet_id == snippet_id,
                tuple_(SnippetAssignment.cat_type, SnippetAssignment.slug).in_(part),
            )
        )
        existing.extend(result.scalars().all())
    return existing


async def apply_reconciliation(db: AsyncSession, job: BulkAssignmentJob, pairs: List[AssignmentKey]) -> Dict[str, int]:
    """Stage updates, inserts and history on `db`; the caller owns the transaction."""
    existing = await find_existing_assignments(db, job.snippet_id, pairs)
    existing_keys = {assignment.key for assignment in existing}
    to_create = [pair for pair in pairs if pair not in existing_keys]

    logger.info(
        "reconcile.partitioned",
        extra={
            "assignment_id": job.assignment_id,
            "snippet_id": job.snippet_id,
            "updated": len(existing),
            "created": len(to_create),
        },
    )

    now = utcnow()
    stamp = datetime.now(timezone.utc).isoformat()
    history: List[AssignmentHistory] = []

    for assignment in existing:
        old_values = {"catType": assignment.cat_type, "slug": assignment.slug, "status": assignment.status}
        assignment.status = "PENDING"
        assignment.updated_at = now
        assignment.updated_by = job.user_id
        history.append(AssignmentHistory(
            id=new_id(),
            assignment_id=assignment.id,
            action="UPDATED",
            user_id=job.user_id,
            old_values=old_values,
            new_values={"catType": assignment.cat_type, "slug": assignment.slug, "status": "PENDING"},
            meta={"reason": "async_snippet_reassignment", "timestamp": stamp},
        ))

    created = [
        SnippetAssignment(
            id=new_id(),
            snippet_id=job.snippet_id,
            cat_type=cat_type,
            slug=slug,
            status="PENDING",
            created_by=job.user_id,
            updated_by=job.user_id,
        )
        for cat_type, slug in to_create
    ]
    db.add_all(created)

    for assignment in created:
        history.append(AssignmentHistory(
            id=new_id(),
            assignment_id=assignment.id,
            action="CREATED",
            user_id=job.user_id,
            new_values={"catType": assignment.cat_type, "slug": assignment.slug, "status": "PENDING"},
            meta={"reason": "async_assignment", "timestamp": stamp},
        ))

    db.add_all(history)
    await db.flush()

    return {"count": len(existing) + len(created), "updated": len(existing), "created": len(created)}


async def reconcile_assignment_records(
    session_factory,
    job: BulkAssignmentJob,
    timeout_seconds: float = DEFAULT_RECONCILE_TIMEOUT_SECONDS,
) -> Dict[str, int]:
    """Reconcile in one transaction; exceeding `timeout_seconds` rolls it back and raises."""
    pairs = normalize_pairs(job)
    if not pairs:
        logger.warning("reconcile.nothing_to_do", extra={"assignment_id": job.assignment_id})
        return {"count": 0, "updated": 0, "created": 0}

    async def _run():
        async with session_factory() as db:
            async with db.begin():
                return await apply_reconciliation(db, job, pairs)

    result = await asyncio.wait_for(_run(), timeout=timeout_seconds)
    logger.info(
        "reconcile.completed",
        extra={"assignment_id": job.assignment_id, **result},
    )
    return result


async def set_snippet_assignment_status(session_factory, snippet_id: str, status: str) -> int:
    """Bulk-set the status of every assignment row of a snippet. Returns rows touched."""
    async with session_factory() as db:
        async with db.begin():
            result = await db.execute(
                update(SnippetAssignment)
                .where(SnippetAssignment.snippet_id == snippet_id)
                .values(status=status, updated_at=utcnow())
            )
    logger.info(
        "assignment.status_bulk_update",
        extra={"snippet_id": snippet_id, "status": status, "count": result.rowcount},
    )
    return result.rowcount
