"""
Synchronous assignment CRUD with audit history.

Usage:
    result = await assignment_service.create_assignments(db, snippet_id, items, user_id)
    page = await assignment_service.find_all(db, AssignmentFilter(snippet_id=...))
    await assignment_service.update_assignment(db, assignment_id, UpdateAssignmentRequest(status="ACTIVE"), user_id)
    await assignment_service.remove_assignment(db, assignment_id, user_id)

Unlike the queued path, create_assignments rejects keys that already exist.
"""
import math
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.assignment import AssignmentHistory, SnippetAssignment
from app.models.base import new_id, utcnow
from app.models.snippet import Snippet
from app.schemas.assignment import AssignmentFilter, AssignmentItem, UpdateAssignmentRequest
from app.services.errors import AssignmentNotFoundError, DuplicateAssignmentError, SnippetNotFoundError
from app.services.reconciliation import find_existing_assignments
from app.utils.logger import logger


def _history_meta(reason: str = "user_action") -> Dict[str, str]:
    return {"reason": reason, "timestamp": datetime.now(timezone.utc).isoformat()}


async def _get_snippet(db: AsyncSession, snippet_id: str) -> Snippet:
    snippet = await db.get(Snippet, snippet_id)
    if snippet is None:
        raise SnippetNotFoundError(snippet_id)
    return snippet


async def _get_assignment(db: AsyncSession, assignment_id: str) -> SnippetAssignment:
    assignment = await db.get(SnippetAssignment, assignment_id)
    if assignment is None:
        raise AssignmentNotFoundError(assignment_id)
    return assignment


def _assignment_with_users(assignment: SnippetAssignment) -> Dict[str, Any]:
    data = assignment.to_dict()
    data["snippet"] = assignment.snippet.to_summary() if assignment.snippet else None
    data["createdUser"] = assignment.created_user.to_summary() if assignment.created_user else None
    data["updatedUser"] = assignment.updated_user.to_summary() if assignment.updated_user else None
    return data


async def create_assignments(
    db: AsyncSession,
    snippet_id: str,
    items: Iterable[AssignmentItem],
    user_id: str,
) -> Dict[str, Any]:
    """Insert PENDING rows plus CREATED history in one transaction."""
    await _get_snippet(db, snippet_id)

    pairs = list(dict.fromkeys(
        (item.cat_type, slug.strip())
        for item in items
        for slug in item.slugs
        if slug and slug.strip()
    ))

    existing = await find_existing_assignments(db, snippet_id, pairs)
    if existing:
        duplicates = ", ".join(f"{a.cat_type}/{a.slug}" for a in existing)
        raise DuplicateAssignmentError(f"Assignments already exist: {duplicates}")

    created = [
        SnippetAssignment(
            id=new_id(),
            snippet_id=snippet_id,
            cat_type=cat_type,
            slug=slug,
            status="PENDING",
            created_by=user_id,
        )
        for cat_type, slug in pairs
    ]
    db.add_all(created)
    db.add_all([
        AssignmentHistory(
            id=new_id(),
            assignment_id=assignment.id,
            action="CREATED",
            user_id=user_id,
            new_values={"catType": assignment.cat_type, "slug": assignment.slug, "status": "PENDING"},
            meta=_history_meta(),
        )
        for assignment in created
    ])
    await db.commit()

    logger.info("assignment.created", extra={"snippet_id": snippet_id, "created": len(created)})
    return {"count": len(created), "assignments": [a.to_dict() for a in created]}


async def find_all(db: AsyncSession, filters: AssignmentFilter) -> Dict[str, Any]:
    """Filtered, paginated list ordered by assignment date (newest first)."""
    conditions = []
    if filters.snippet_id:
        conditions.append(SnippetAssignment.snippet_id == filters.snippet_id)
    if filters.cat_type:
        conditions.append(SnippetAssignment.cat_type == filters.cat_type)
    if filters.status:
        conditions.append(SnippetAssignment.status == filters.status)

    total = (await db.execute(
        select(func.count(SnippetAssignment.id)).where(*conditions)
    )).scalar_one()

    result = await db.execute(
        select(SnippetAssignment)
        .where(*conditions)
        .options(
            selectinload(SnippetAssignment.snippet),
            selectinload(SnippetAssignment.created_user),
            selectinload(SnippetAssignment.updated_user),
        )
        .order_by(SnippetAssignment.assigned_at.desc(), SnippetAssignment.id)
        .offset((filters.page - 1) * filters.limit)
        .limit(filters.limit)
    )

    return {
        "data": [_assignment_with_users(a) for a in result.scalars().all()],
        "pagination": {
            "page": filters.page,
            "limit": filters.limit,
            "total": total,
            "pages": math.ceil(total / filters.limit),
        },
    }


async def find_by_snippet(db: AsyncSession, snippet_id: str) -> Dict[str, Any]:
    """All assignments of a snippet with history, grouped by category type."""
    result = await db.execute(
        select(SnippetAssignment)
        .where(SnippetAssignment.snippet_id == snippet_id)
        .options(
            selectinload(SnippetAssignment.snippet),
            selectinload(SnippetAssignment.created_user),
            selectinload(SnippetAssignment.updated_user),
            selectinload(SnippetAssignment.history).selectinload(AssignmentHistory.user),
        )
        .order_by(SnippetAssignment.cat_type, SnippetAssignment.slug)
    )
    assignments = []
    for assignment in result.scalars().all():
        data = _assignment_with_users(assignment)
        data["history"] = [
            {**entry.to_dict(), "user": entry.user.to_summary() if entry.user else None}
            for entry in assignment.history
        ]
        assignments.append(data)

    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for data in assignments:
        grouped[data["catType"]].append(data)

    return {
        "assignments": assignments,
        "grouped": dict(grouped),
        "summary": {
            "total": len(assignments),
            "byStatus": dict(Counter(a["status"] for a in assignments)),
            "byCatType": {cat_type: len(rows) for cat_type, rows in grouped.items()},
        },
    }


async def get_detailed_history(db: AsyncSession, snippet_id: str) -> Dict[str, Any]:
    """Full audit trail of a snippet's assignments, newest first, with statistics."""
    snippet = await _get_snippet(db, snippet_id)

    result = await db.execute(
        select(AssignmentHistory, SnippetAssignment)
        .join(SnippetAssignment, AssignmentHistory.assignment_id == SnippetAssignment.id)
        .where(SnippetAssignment.snippet_id == snippet_id)
        .options(selectinload(AssignmentHistory.user))
        .order_by(AssignmentHistory.created_at.desc(), AssignmentHistory.id)
    )

    entries = []
    for entry, assignment in result.all():
        entries.append({
            **entry.to_dict(),
            "user": entry.user.to_summary() if entry.user else None,
            "assignment": {"id": assignment.id, "catType": assignment.cat_type, "slug": assignment.slug, "status": assignment.status},
        })

    return {
        "snippet": snippet.to_summary(),
        "history": entries,
        "statistics": {
            "totalEntries": len(entries),
            "assignments": len({e["assignmentId"] for e in entries}),
            "byAction": dict(Counter(e["action"] for e in entries)),
            "byUser": dict(Counter(e["userId"] for e in entries if e["userId"])),
        },
    }


async def update_assignment(
    db: AsyncSession,
    assignment_id: str,
    dto: UpdateAssignmentRequest,
    user_id: str,
) -> Dict[str, Any]:
    assignment = await _get_assignment(db, assignment_id)

    if dto.slug and dto.slug != assignment.slug:
        conflict = await db.execute(
            select(SnippetAssignment.id).where(
                SnippetAssignment.snippet_id == assignment.snippet_id,
                SnippetAssignment.cat_type == assignment.cat_type,
                SnippetAssignment.slug == dto.slug,
            )
        )
        if conflict.scalar_one_or_none():
            raise DuplicateAssignmentError(
                f"Assignment with slug '{dto.slug}' already exists for this catType"
            )

    old_values = {"slug": assignment.slug, "status": assignment.status, "syncMetadata": assignment.sync_metadata}

    if dto.slug:
        assignment.slug = dto.slug
    if dto.status:
        assignment.status = dto.status
    if dto.sync_metadata is not None:
        assignment.sync_metadata = dto.sync_metadata
        assignment.last_sync_at = utcnow()
    assignment.updated_by = user_id
    assignment.updated_at = utcnow()

    db.add(AssignmentHistory(
        id=new_id(),
        assignment_id=assignment.id,
        action="UPDATED",
        user_id=user_id,
        old_values=old_values,
        new_values={"slug": assignment.slug, "status": assignment.status, "syncMetadata": assignment.sync_metadata},
        meta=_history_meta(),
    ))
    await db.commit()
    return assignment.to_dict()


async def remove_assignment(db: AsyncSession, assignment_id: str, user_id: str) -> Dict[str, str]:
    """Record a DELETED entry, then delete the row (its history cascades with it)."""
    assignment = await _get_assignment(db, assignment_id)

    db.add(AssignmentHistory(
        id=new_id(),
        assignment_id=assignment.id,
        action="DELETED",
        user_id=user_id,
        old_values={"catType": assignment.cat_type, "slug": assignment.slug, "status": assignment.status},
        meta=_history_meta(),
    ))
    await db.flush()
    await db.delete(assignment)
    await db.commit()

    logger.info("assignment.deleted", extra={"snippet_id": assignment.snippet_id, "user_id": user_id})
    return {"message": "Assignment deleted successfully"}


async def activate_pending_assignments(db: AsyncSession, snippet_id: str, user_id: str) -> int:
    """Flip a snippet's PENDING rows to ACTIVE one by one, each with its own history entry."""
    result = await db.execute(
        select(SnippetAssignment.id).where(
            SnippetAssignment.snippet_id == snippet_id,
            SnippetAssignment.status == "PENDING",
        )
    )
    activated = 0
    for assignment_id in result.scalars().all():
        try:
            await update_assignment(db, assignment_id, UpdateAssignmentRequest(status="ACTIVE"), user_id)
            activated += 1
        except AssignmentNotFoundError as exc:
            # Deleted concurrently; the rest still get activated
            logger.warning("assignment.activate_skipped", extra={"snippet_id": snippet_id, "error": str(exc)})
    return activated
