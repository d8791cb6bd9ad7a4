"""Unit-test doubles: an in-memory session store and a scripted call provider.

FakeSessionStore implements both the interview repository and the ledger's
session-credits view over one dict, the way both real repositories share
the interview_sessions table.
"""

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from src.ic_common.datetime_utils import utc_now
from src.ic_common.enums import CreditState, SessionStatus
from src.ic_common.errors import CallProviderError, SessionNotFoundError
from src.ic_credits.application.service import CreditLedgerService
from src.ic_credits.domain.models import SessionCredits
from src.ic_credits.infrastructure.memory import InMemoryCreditRepository
from src.ic_interview.domain.models import CallHandle, CallTimes, InterviewSession

_TERMINAL = (SessionStatus.COMPLETED.value, SessionStatus.FAILED.value)


class FakeSessionStore:
    def __init__(self) -> None:
        self.sessions: dict[str, InterviewSession] = {}
        self.settlements: list[tuple[str, Decimal, Decimal, str]] = []

    def add(self, session: InterviewSession) -> InterviewSession:
        if session.created_at is None:
            session.created_at = utc_now()
        self.sessions[session.id] = session
        return session

    def _require(self, session_id: str) -> InterviewSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    # --- InterviewSessionRepositoryProtocol ---

    async def create(self, db, session: InterviewSession) -> InterviewSession:
        return replace(self.add(replace(session)))

    async def get_by_id(self, db, session_id: str) -> InterviewSession | None:
        session = self.sessions.get(session_id)
        return replace(session) if session else None

    async def get_for_update(self, db, session_id: str) -> InterviewSession | None:
        return await self.get_by_id(db, session_id)

    async def get_by_call_id(self, db, call_id: str) -> InterviewSession | None:
        for session in self.sessions.values():
            if session.call_id == call_id:
                return replace(session)
        return None

    async def attach_call(self, db, session_id: str, call_id: str) -> None:
        self._require(session_id).call_id = call_id

    async def mark_started(
        self, db, call_id: str, started_at: datetime
    ) -> InterviewSession | None:
        for session in self.sessions.values():
            if session.call_id == call_id and session.status in ("created", "started"):
                session.status = SessionStatus.STARTED.value
                session.started_at = session.started_at or started_at
                return replace(session)
        return None

    async def mark_ended(
        self,
        db,
        session_id: str,
        status,
        actual_duration_seconds: int | None,
        ended_at: datetime,
    ) -> InterviewSession:
        session = self._require(session_id)
        if session.status not in _TERMINAL:
            session.status = str(getattr(status, "value", status))
        session.ended_at = session.ended_at or ended_at
        if session.actual_duration_seconds is None:
            session.actual_duration_seconds = actual_duration_seconds
        return replace(session)

    async def list_stale_reserved(
        self, db, cutoff: datetime, limit: int
    ) -> list[InterviewSession]:
        stale = [
            s for s in self.sessions.values()
            if s.credit_state == CreditState.RESERVED.value
            and s.ended_at is None
            and s.created_at < cutoff
        ]
        return [replace(s) for s in sorted(stale, key=lambda s: s.created_at)[:limit]]

    # --- SessionCreditsRepositoryProtocol ---

    async def lock_session_credits(self, db, session_id: str) -> SessionCredits | None:
        session = self.sessions.get(session_id)
        if session is None:
            return None
        return SessionCredits(
            session_id=session.id,
            user_id=session.user_id,
            status=session.status,
            credit_state=session.credit_state,
            credits_blocked=session.credits_blocked,
            credits_deducted=session.credits_deducted,
            credits_refunded=session.credits_refunded,
            actual_duration_seconds=session.actual_duration_seconds,
        )

    async def record_settlement(
        self,
        db,
        session_id: str,
        credits_deducted: Decimal,
        credits_refunded: Decimal,
        credit_state,
    ) -> None:
        session = self._require(session_id)
        state = str(getattr(credit_state, "value", credit_state))
        session.credits_deducted = credits_deducted
        session.credits_refunded = credits_refunded
        session.credit_state = state
        self.settlements.append((session_id, credits_deducted, credits_refunded, state))


class FakeCallProvider:
    def __init__(self, times: CallTimes | None = None, fail_create: bool = False) -> None:
        self.times = times
        self.fail_create = fail_create
        self.fail_get = False
        self.created: list[tuple[str, str, int]] = []

    async def create_call(self, session_id: str, user_id: str, duration_minutes: int) -> CallHandle:
        if self.fail_create:
            raise CallProviderError("provider down")
        self.created.append((session_id, user_id, duration_minutes))
        return CallHandle(call_id=f"call-{len(self.created)}", access_token="tok")

    async def get_call(self, call_id: str) -> CallTimes:
        if self.fail_get or self.times is None:
            raise CallProviderError("call lookup failed")
        return self.times


@pytest.fixture
def db() -> AsyncMock:
    """AsyncSession stand-in; begin_nested() yields an awaitable savepoint."""
    session = AsyncMock()
    session.begin_nested = AsyncMock(return_value=AsyncMock())
    return session


@pytest.fixture
def memory_repo() -> InMemoryCreditRepository:
    return InMemoryCreditRepository(lock_timeout_ms=1000)


@pytest.fixture
def ledger(memory_repo: InMemoryCreditRepository) -> CreditLedgerService:
    return CreditLedgerService(repo=memory_repo)


@pytest.fixture
def store() -> FakeSessionStore:
    return FakeSessionStore()


@pytest.fixture
def provider() -> FakeCallProvider:
    return FakeCallProvider()
