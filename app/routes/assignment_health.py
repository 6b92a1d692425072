"""
Assignment System Health Routes

Mounted under /api/assignment/health, ahead of the assignment routes.
"""

from datetime import datetime, timezone

from fastapi import APIRouter

from app.config import get_settings
from app.schemas.assignment import PreviewAssignmentRequest
from app.services.assignment_pipeline import get_pipeline
from app.services.assignment_processor import preview_assignment
from app.services.execution_client import ExecutionClient
from app.services.gateway import get_gateway
from app.services.status_store import make_status
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger()

HEALTH_PROBE_ID = "health-test"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("")
async def check_assignment_health():
    """Queue stats plus a write/read round trip on the status store."""
    pipeline = get_pipeline()
    try:
        if pipeline is None:
            raise RuntimeError("Redis is not connected")

        queue_stats = await pipeline.worker.get_queue_stats()
        await pipeline.status_store.set_status(HEALTH_PROBE_ID, make_status("PENDING"))
        retrieved = await pipeline.status_store.get_status(HEALTH_PROBE_ID)

        return {
            "status": "healthy",
            "timestamp": _now_iso(),
            "redis": {
                "connected": True,
                "canWrite": True,
                "canRead": retrieved is not None,
            },
            "queue": queue_stats,
            "backend": {
                "baseUrl": get_settings().backend_api_url,
                "circuits": get_gateway().get_circuit_states(),
            },
        }
    except Exception as e:
        logger.warning("health.unhealthy", extra={"error": str(e)[:200], "error_type": type(e).__name__})
        return {
            "status": "unhealthy",
            "timestamp": _now_iso(),
            "error": str(e),
            "redis": {"connected": False},
            "queue": {"queueLength": 0, "isWorkerRunning": False},
        }


@router.get("/test-backend")
async def test_backend_connection():
    """Send a canned preview request to the execution backend."""
    probe = PreviewAssignmentRequest(
        snippet_id="test-snippet",
        assignments=[{"cat_type": "league", "slugs": ["test-slug"]}],
        category_types=["Slim"],
        locale="en-GB",
    )

    pipeline = get_pipeline()
    client = pipeline.client if pipeline is not None else ExecutionClient()
    backend_url = get_settings().backend_api_url
    try:
        result = await preview_assignment(client, probe)
        return {
            "status": "success",
            "backendUrl": backend_url,
            "response": result,
            "timestamp": _now_iso(),
        }
    except Exception as e:
        return {
            "status": "error",
            "backendUrl": backend_url,
            "error": str(e),
            "timestamp": _now_iso(),
        }
