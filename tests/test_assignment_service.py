"""Synchronous assignment CRUD and its audit trail."""

from __future__ import annotations

import pytest

from app.models import SnippetAssignment
from app.schemas.assignment import AssignmentFilter, AssignmentItem, UpdateAssignmentRequest
from app.services import assignment_service
from app.services.errors import AssignmentNotFoundError, DuplicateAssignmentError, SnippetNotFoundError

pytestmark = pytest.mark.anyio


def _items(**slugs_by_cat_type) -> list[AssignmentItem]:
    return [AssignmentItem(cat_type=cat_type, slugs=slugs) for cat_type, slugs in slugs_by_cat_type.items()]


async def _create(session_factory, **slugs_by_cat_type) -> dict:
    async with session_factory() as db:
        return await assignment_service.create_assignments(db, "snippet-1", _items(**slugs_by_cat_type), "admin-1")


async def test_create_inserts_pending_rows(seeded, session_factory) -> None:
    result = await _create(session_factory, league=["premier-league", " la-liga ", "premier-league"], city=["london"])

    assert result["count"] == 3
    assert {(a["catType"], a["slug"]) for a in result["assignments"]} == {
        ("league", "premier-league"),
        ("league", "la-liga"),
        ("city", "london"),
    }
    assert {a["status"] for a in result["assignments"]} == {"PENDING"}


async def test_create_rejects_missing_snippet(seeded, session_factory) -> None:
    async with session_factory() as db:
        with pytest.raises(SnippetNotFoundError, match="Snippet with ID nope not found"):
            await assignment_service.create_assignments(db, "nope", _items(league=["x"]), "admin-1")


async def test_create_rejects_existing_keys(seeded, session_factory) -> None:
    await _create(session_factory, league=["premier-league"])

    with pytest.raises(DuplicateAssignmentError, match="league/premier-league"):
        await _create(session_factory, league=["premier-league", "serie-a"])


async def test_find_all_filters_and_paginates(seeded, session_factory) -> None:
    await _create(session_factory, league=[f"league-{i}" for i in range(5)], city=["london"])

    async with session_factory() as db:
        page = await assignment_service.find_all(db, AssignmentFilter(cat_type="league", page=2, limit=2))
        everything = await assignment_service.find_all(db, AssignmentFilter(snippet_id="snippet-1"))
        none = await assignment_service.find_all(db, AssignmentFilter(status="ACTIVE"))

    assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}
    assert len(page["data"]) == 2
    assert page["data"][0]["createdUser"]["email"] == "admin1@example.com"
    assert page["data"][0]["snippet"]["title"] == "Ticket intro"
    assert everything["pagination"]["total"] == 6
    assert none["data"] == []
    assert none["pagination"]["pages"] == 0


async def test_find_by_snippet_groups_by_cat_type(seeded, session_factory) -> None:
    await _create(session_factory, league=["a", "b"], city=["london"])

    async with session_factory() as db:
        result = await assignment_service.find_by_snippet(db, "snippet-1")

    assert result["summary"] == {"total": 3, "byStatus": {"PENDING": 3}, "byCatType": {"city": 1, "league": 2}}
    assert [a["slug"] for a in result["grouped"]["league"]] == ["a", "b"]
    assert result["assignments"][0]["history"][0]["action"] == "CREATED"
    assert result["assignments"][0]["history"][0]["user"]["name"] == "Admin One"


async def test_update_records_old_and_new_values(seeded, session_factory) -> None:
    created = await _create(session_factory, league=["premier-league"])
    assignment_id = created["assignments"][0]["id"]

    async with session_factory() as db:
        updated = await assignment_service.update_assignment(
            db, assignment_id, UpdateAssignmentRequest(status="ACTIVE", sync_metadata={"pages": 3}), "admin-2"
        )
        history = await assignment_service.get_detailed_history(db, "snippet-1")

    assert updated["status"] == "ACTIVE"
    assert updated["updatedBy"] == "admin-2"
    assert updated["syncMetadata"] == {"pages": 3}
    assert updated["lastSyncAt"] is not None

    latest = history["history"][0]
    assert latest["action"] == "UPDATED"
    assert latest["oldValues"]["status"] == "PENDING"
    assert latest["newValues"]["status"] == "ACTIVE"
    assert latest["assignment"]["slug"] == "premier-league"
    assert history["statistics"] == {
        "totalEntries": 2,
        "assignments": 1,
        "byAction": {"UPDATED": 1, "CREATED": 1},
        "byUser": {"admin-2": 1, "admin-1": 1},
    }


async def test_update_rejects_slug_conflict(seeded, session_factory) -> None:
    created = await _create(session_factory, league=["a", "b"])
    first = next(a for a in created["assignments"] if a["slug"] == "a")

    async with session_factory() as db:
        with pytest.raises(DuplicateAssignmentError):
            await assignment_service.update_assignment(db, first["id"], UpdateAssignmentRequest(slug="b"), "admin-1")
        with pytest.raises(AssignmentNotFoundError):
            await assignment_service.update_assignment(db, "missing", UpdateAssignmentRequest(status="ACTIVE"), "admin-1")


async def test_remove_deletes_the_row(seeded, session_factory) -> None:
    created = await _create(session_factory, league=["a"])
    assignment_id = created["assignments"][0]["id"]

    async with session_factory() as db:
        result = await assignment_service.remove_assignment(db, assignment_id, "admin-1")
    assert result == {"message": "Assignment deleted successfully"}

    async with session_factory() as db:
        assert await db.get(SnippetAssignment, assignment_id) is None
        with pytest.raises(AssignmentNotFoundError):
            await assignment_service.remove_assignment(db, assignment_id, "admin-1")


async def test_activate_pending_assignments_writes_history_per_row(seeded, session_factory) -> None:
    await _create(session_factory, league=["a", "b"])

    async with session_factory() as db:
        assert await assignment_service.activate_pending_assignments(db, "snippet-1", "admin-1") == 2
        result = await assignment_service.find_by_snippet(db, "snippet-1")

    assert result["summary"]["byStatus"] == {"ACTIVE": 2}
    assert all(a["history"][0]["action"] == "UPDATED" for a in result["assignments"])


async def test_detailed_history_requires_the_snippet(seeded, session_factory) -> None:
    async with session_factory() as db:
        with pytest.raises(SnippetNotFoundError):
            await assignment_service.get_detailed_history(db, "missing")
