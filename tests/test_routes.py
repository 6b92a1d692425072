"""HTTP surface of the assignment API."""

from __future__ import annotations

import re

import pytest

from app.services.assignment_pipeline import set_pipeline
from app.utils import metrics

pytestmark = pytest.mark.anyio

HEADERS = {"X-User-ID": "admin-1"}


def _bulk_body(**overrides) -> dict:
    body = {
        "snippetId": "snippet-1",
        "assignments": [{"catType": "league", "slugs": ["premier-league", "la-liga"]}],
        "categoryTypes": ["league"],
        "locale": "en-GB",
    }
    body.update(overrides)
    return body


async def test_bulk_assign_queues_job(async_client, pipeline) -> None:
    response = await async_client.post("/api/assignment/bulk-assign", json=_bulk_body(), headers=HEADERS)

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "PENDING"
    assert data["message"] == "Assignment queued for processing"
    assert re.fullmatch(r"assignment_\d{13}_[a-z0-9]{9}", data["assignmentId"])
    assert await pipeline.queue.length() == 1
    assert response.headers["X-Correlation-ID"]

    status = await async_client.get(f"/api/assignment/{data['assignmentId']}/status")
    assert status.status_code == 200
    assert status.json()["status"] == "PENDING"


async def test_bulk_assign_requires_actor(async_client) -> None:
    response = await async_client.post("/api/assignment/bulk-assign", json=_bulk_body())
    assert response.status_code == 401


async def test_bulk_assign_validates_body(async_client) -> None:
    bad_locale = await async_client.post("/api/assignment/bulk-assign", json=_bulk_body(locale="en_GB"), headers=HEADERS)
    no_slugs = await async_client.post(
        "/api/assignment/bulk-assign",
        json=_bulk_body(assignments=[{"catType": "league", "slugs": []}]),
        headers=HEADERS,
    )
    assert bad_locale.status_code == 422
    assert no_slugs.status_code == 422


async def test_bulk_assign_unavailable_without_redis(async_client) -> None:
    set_pipeline(None)
    response = await async_client.post("/api/assignment/bulk-assign", json=_bulk_body(), headers=HEADERS)
    assert response.status_code == 503


async def test_unknown_status_is_404(async_client) -> None:
    response = await async_client.get("/api/assignment/assignment_0_missing/status")
    assert response.status_code == 404
    assert response.json()["detail"] == "Assignment assignment_0_missing not found"


async def test_preview_passes_backend_payload_through(async_client, execution_client) -> None:
    execution_client.preview_result = {"categories": [{"slug": "premier-league"}], "total": 1}
    response = await async_client.post("/api/assignment/preview", json=_bulk_body(), headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"categories": [{"slug": "premier-league"}], "total": 1}
    assert execution_client.preview_calls[0]["locale"] == "en_GB"


async def test_preview_failure_is_502(async_client, execution_client) -> None:
    execution_client.preview_error = True
    response = await async_client.post("/api/assignment/preview", json=_bulk_body(), headers=HEADERS)
    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to preview assignment"


async def test_sync_create_executes_and_activates(seeded, async_client, execution_client) -> None:
    response = await async_client.post("/api/assignment", json=_bulk_body(), headers=HEADERS)

    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["assignments"]["count"] == 2
    assert data["results"]["totalProcessed"] == 2
    assert len(execution_client.calls) == 1

    listing = await async_client.get("/api/assignment", params={"snippetId": "snippet-1", "status": "ACTIVE"})
    assert listing.json()["pagination"]["total"] == 2

    duplicate = await async_client.post("/api/assignment", json=_bulk_body(), headers=HEADERS)
    assert duplicate.status_code == 400
    assert "Assignments already exist" in duplicate.json()["detail"]


async def test_sync_create_reports_backend_failure(seeded, async_client, execution_client) -> None:
    execution_client.fail_on_batch = 1
    response = await async_client.post("/api/assignment", json=_bulk_body(), headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["detail"].startswith("Assignment execution failed: Assignment failed at batch 1/1")


async def test_sync_create_unknown_snippet_is_404(seeded, async_client) -> None:
    response = await async_client.post("/api/assignment", json=_bulk_body(snippetId="missing"), headers=HEADERS)
    assert response.status_code == 404


async def test_test_sync_bypasses_the_queue(async_client, pipeline, execution_client) -> None:
    response = await async_client.post(
        "/api/assignment/test-sync",
        json=_bulk_body(useNativeLogic=True, snippetVariations=[{"title": "x"}]),
        headers=HEADERS,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["testData"]["assignmentId"].startswith("sync_test_")
    assert data["testData"]["snippetVariations"] == 1
    assert len(execution_client.calls) == 1
    assert await pipeline.queue.length() == 0


async def test_read_update_delete_flow(seeded, async_client) -> None:
    await async_client.post("/api/assignment", json=_bulk_body(), headers=HEADERS)

    by_snippet = (await async_client.get("/api/assignment/by-snippet/snippet-1")).json()
    assert by_snippet["summary"]["byCatType"] == {"league": 2}
    assignment_id = by_snippet["grouped"]["league"][0]["id"]

    patched = await async_client.patch(
        f"/api/assignment/{assignment_id}", json={"status": "ARCHIVED"}, headers=HEADERS
    )
    assert patched.status_code == 200
    assert patched.json()["status"] == "ARCHIVED"

    deleted = await async_client.delete(f"/api/assignment/{assignment_id}", headers=HEADERS)
    assert deleted.json() == {"message": "Assignment deleted successfully"}

    history = (await async_client.get("/api/assignment/snippet-1/detailed-history")).json()
    assert history["snippet"]["id"] == "snippet-1"
    assert assignment_id not in {entry["assignment"]["id"] for entry in history["history"]}

    missing = await async_client.patch("/api/assignment/missing", json={"status": "ACTIVE"}, headers=HEADERS)
    assert missing.status_code == 404
    assert (await async_client.delete("/api/assignment/missing", headers=HEADERS)).status_code == 404
    assert (await async_client.get("/api/assignment/missing/detailed-history")).status_code == 404


async def test_list_rejects_bad_paging(async_client) -> None:
    assert (await async_client.get("/api/assignment", params={"page": 0})).status_code == 422
    assert (await async_client.get("/api/assignment", params={"limit": 501})).status_code == 422


async def test_assignment_health_round_trips_status_store(async_client) -> None:
    response = await async_client.get("/api/assignment/health")
    data = response.json()
    assert data["status"] == "healthy"
    assert data["redis"] == {"connected": True, "canWrite": True, "canRead": True}
    assert data["queue"] == {"queueLength": 0, "isWorkerRunning": False}


async def test_assignment_health_without_redis(async_client) -> None:
    set_pipeline(None)
    data = (await async_client.get("/api/assignment/health")).json()
    assert data["status"] == "unhealthy"
    assert data["redis"] == {"connected": False}


async def test_backend_check_reports_preview_result(async_client, execution_client) -> None:
    data = (await async_client.get("/api/assignment/health/test-backend")).json()
    assert data["status"] == "success"
    assert execution_client.preview_calls[0]["locale"] == "en_GB"

    execution_client.preview_error = True
    data = (await async_client.get("/api/assignment/health/test-backend")).json()
    assert data["status"] == "error"


async def test_metrics_snapshot(async_client) -> None:
    metrics.reset()
    await async_client.post("/api/assignment/bulk-assign", json=_bulk_body(), headers=HEADERS)
    data = (await async_client.get("/metrics")).json()
    assert data["counters"]["assignment.queued"] == 1
    assert "histograms" in data
