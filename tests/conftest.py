"""Shared fixtures: in-memory Redis, temp SQLite database, recording execution client."""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections import defaultdict, deque

# Settings are cached on first import; point them at throwaway resources.
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{tempfile.gettempdir()}/snippet_admin_test.db")
os.environ.setdefault("ENABLE_ASSIGNMENT_WORKER", "false")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.config import Settings  # noqa: E402
from app.database import get_db, init_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Paragraph, Snippet, SubSnippet, User, Variation  # noqa: E402
from app.schemas.assignment import BulkAssignmentJob  # noqa: E402
from app.services.assignment_pipeline import build_assignment_pipeline, set_pipeline  # noqa: E402
from app.services.errors import ExecutionServiceError  # noqa: E402

SNIPPET_ID = "snippet-1"
ACTOR_ID = "admin-1"
OTHER_ACTOR_ID = "admin-2"


class FakeRedis:
    """
    The subset of redis.asyncio the assignment pipeline uses. Expiry follows
    `now`, which tests move forward with advance().
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._values: dict[str, tuple[str, float | None]] = {}
        self._lists: dict[str, deque] = defaultdict(deque)
        self.set_calls: list[tuple[str, str, int | None]] = []

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def ping(self) -> bool:
        return True

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.set_calls.append((key, value, ex))
        self._values[key] = (value, self.now + ex if ex else None)
        return True

    async def get(self, key: str) -> str | None:
        item = self._values.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self.now >= expires_at:
            del self._values[key]
            return None
        return value

    async def lpush(self, key: str, *values: str) -> int:
        for value in values:
            self._lists[key].appendleft(value)
        return len(self._lists[key])

    async def brpop(self, keys, timeout: float = 0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            for key in keys:
                if self._lists[key]:
                    return key, self._lists[key].pop()
            if timeout and loop.time() >= deadline:
                return None
            await asyncio.sleep(0.005)

    async def llen(self, key: str) -> int:
        return len(self._lists[key])


class RecordingExecutionClient:
    """Records every request; batch number `fail_on_batch` (1-based) answers success: false."""

    def __init__(self, fail_on_batch: int | None = None, preview_result=None, preview_error: bool = False) -> None:
        self.calls: list[dict] = []
        self.preview_calls: list[dict] = []
        self.fail_on_batch = fail_on_batch
        self.preview_result = preview_result if preview_result is not None else {"categories": [], "total": 0}
        self.preview_error = preview_error

    async def execute_batch(self, body: dict) -> dict:
        self.calls.append(body)
        if self.fail_on_batch == len(self.calls):
            return {"success": False, "error": "backend rejected batch"}
        return {"success": True, "results": {"processed": len(body["assignments"])}}

    async def preview(self, body: dict):
        self.preview_calls.append(body)
        if self.preview_error:
            raise ExecutionServiceError("Failed to preview assignment")
        return self.preview_result


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def execution_client() -> RecordingExecutionClient:
    return RecordingExecutionClient()


@pytest.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(bind=test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def seeded(session_factory):
    """Two admins and one DESCRIPTION snippet with SLIM and EVERGREEN sub-snippets."""
    async with session_factory() as db:
        db.add_all([
            User(id=ACTOR_ID, email="admin1@example.com", name="Admin One", role="ADMIN"),
            User(id=OTHER_ACTOR_ID, email="admin2@example.com", name="Admin Two"),
        ])
        db.add(Snippet(
            id=SNIPPET_ID,
            title="Ticket intro",
            component="DESCRIPTION",
            sub_snippets=[
                SubSnippet(
                    type="SLIM",
                    base="  Best {{ team }} tickets  ",
                    paragraphs=[
                        Paragraph(
                            content="Buy {{team}} tickets at {{ venue }}",
                            order=0,
                            variations=[Variation(content="Cheap {{ team }} seats", order=0)],
                        ),
                    ],
                ),
                SubSnippet(type="EVERGREEN", base="All season long"),
            ],
        ))
        await db.commit()
    return SNIPPET_ID


@pytest.fixture
def make_job():
    def _make(slug_count: int = 3, cat_type: str = "league", **overrides) -> BulkAssignmentJob:
        fields = {
            "assignment_id": "assignment_1700000000000_abcdefghi",
            "snippet_id": SNIPPET_ID,
            "assignments": [{"catType": cat_type, "slugs": [f"slug-{i}" for i in range(slug_count)]}],
            "category_types": [cat_type],
            "locale": "en-GB",
            "user_id": ACTOR_ID,
        }
        fields.update(overrides)
        return BulkAssignmentJob(**fields)

    return _make


@pytest.fixture
def test_settings() -> Settings:
    return Settings(worker_poll_timeout_seconds=0.05, worker_error_backoff_seconds=0.01)


@pytest.fixture
def pipeline(fake_redis, session_factory, execution_client, test_settings):
    return build_assignment_pipeline(fake_redis, session_factory, settings=test_settings, client=execution_client)


@pytest.fixture
async def async_client(pipeline, session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    set_pipeline(pipeline)
    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
    if pipeline.worker.is_running:
        await pipeline.worker.stop()
    set_pipeline(None)


@pytest.fixture
def anyio_backend() -> str:
    # The pipeline and FakeRedis are asyncio-based; don't also run on trio.
    return "asyncio"
