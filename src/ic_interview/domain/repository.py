"""Repository and collaborator protocols for ic_interview."""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_interview.domain.models import CallHandle, CallTimes, InterviewSession


class InterviewSessionRepositoryProtocol(Protocol):
    async def create(self, db: AsyncSession, session: InterviewSession) -> InterviewSession: ...

    async def get_by_id(self, db: AsyncSession, session_id: str) -> InterviewSession | None: ...

    async def get_for_update(
        self, db: AsyncSession, session_id: str
    ) -> InterviewSession | None: ...

    async def get_by_call_id(self, db: AsyncSession, call_id: str) -> InterviewSession | None: ...

    async def attach_call(self, db: AsyncSession, session_id: str, call_id: str) -> None: ...

    async def mark_started(
        self, db: AsyncSession, call_id: str, started_at: datetime
    ) -> InterviewSession | None: ...

    async def mark_ended(
        self,
        db: AsyncSession,
        session_id: str,
        status: str,
        actual_duration_seconds: int | None,
        ended_at: datetime,
    ) -> InterviewSession: ...

    async def list_stale_reserved(
        self, db: AsyncSession, cutoff: datetime, limit: int
    ) -> list[InterviewSession]: ...


class CallProviderProtocol(Protocol):
    async def create_call(
        self, session_id: str, user_id: str, duration_minutes: int
    ) -> CallHandle: ...

    async def get_call(self, call_id: str) -> CallTimes: ...
