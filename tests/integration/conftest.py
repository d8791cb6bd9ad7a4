"""Integration-test fixtures (requires running PG + Redis, migrated schema).

Pre-condition: alembic upgrade head, then run with IC_INTEGRATION=1.

All integration tests share a single event-loop so that the module-level
SQLAlchemy async engine pool and Redis pool (both created at import time)
remain valid across the entire test session.
"""

import os
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.ic_gateway.auth.jwt_handler import create_access_token
from src.ic_interview.api.router import get_interview_service
from src.ic_interview.application.service import InterviewSessionService
from src.ic_interview.domain.models import CallHandle, CallTimes
from src.main import app


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if os.environ.get("IC_INTEGRATION") == "1":
        return
    skip = pytest.mark.skip(reason="set IC_INTEGRATION=1 with PG + Redis running")
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(skip)


class StubCallProvider:
    """Stands in for the voice-call provider; every call lasts `seconds`."""

    def __init__(self, seconds: int = 125) -> None:
        self.seconds = seconds

    async def create_call(self, session_id: str, user_id: str, duration_minutes: int) -> CallHandle:
        return CallHandle(call_id=f"call_{uuid.uuid4().hex[:12]}", access_token="stub")

    async def get_call(self, call_id: str) -> CallTimes:
        start = 1_700_000_000_000
        return CallTimes(start, start + self.seconds * 1000)


@pytest.fixture(scope="session")
def call_provider() -> StubCallProvider:
    return StubCallProvider()


@pytest_asyncio.fixture(loop_scope="session", scope="session")
async def client(call_provider: StubCallProvider) -> AsyncClient:  # type: ignore[override]
    """Session-scoped async HTTP client — keeps the engine pool alive."""
    service = InterviewSessionService(provider=call_provider)
    app.dependency_overrides[get_interview_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers() -> dict[str, str]:
    """Bearer header for a fresh user id; the balance row is opened on first use."""
    uid = f"it_{uuid.uuid4().hex[:10]}"
    return {"Authorization": f"Bearer {create_access_token(uid)}"}
