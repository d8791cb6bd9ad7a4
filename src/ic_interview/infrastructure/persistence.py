"""InterviewSessionRepository — PostgreSQL implementation.

Credit fields on interview_sessions (credits_deducted, credits_refunded,
credit_state) are written only by the ledger's SessionCreditsRepository;
this repository owns the lifecycle columns.

Transaction ownership: the CALLER commits or rolls back.
"""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ic_common.database import set_local_lock_timeout
from src.ic_common.errors import InternalError, SessionNotFoundError
from src.ic_interview.domain.models import InterviewSession

_COLUMNS = (
    "id, user_id, call_id, duration_minutes, status, credit_state,"
    " credits_blocked, credits_deducted, credits_refunded,"
    " actual_duration_seconds, started_at, ended_at, created_at, updated_at"
)

_INSERT_SQL = text(f"""
    INSERT INTO interview_sessions
        (id, user_id, duration_minutes, status, credit_state, credits_blocked)
    VALUES
        (CAST(:id AS UUID), :user_id, :duration_minutes, :status, :credit_state, :credits_blocked)
    RETURNING {_COLUMNS}
""")

_GET_BY_ID_SQL = text(f"""
    SELECT {_COLUMNS} FROM interview_sessions WHERE id = CAST(:session_id AS UUID)
""")

_GET_FOR_UPDATE_SQL = text(f"""
    SELECT {_COLUMNS} FROM interview_sessions
    WHERE id = CAST(:session_id AS UUID)
    FOR UPDATE
""")

_GET_BY_CALL_ID_SQL = text(f"""
    SELECT {_COLUMNS} FROM interview_sessions WHERE call_id = :call_id
""")

_ATTACH_CALL_SQL = text("""
    UPDATE interview_sessions
    SET call_id = :call_id, updated_at = NOW()
    WHERE id = CAST(:session_id AS UUID)
    RETURNING id
""")

# Only a session that has not ended can move to started
_MARK_STARTED_SQL = text(f"""
    UPDATE interview_sessions
    SET status = 'started',
        started_at = COALESCE(started_at, :started_at),
        updated_at = NOW()
    WHERE call_id = :call_id AND status IN ('created', 'started')
    RETURNING {_COLUMNS}
""")

# First end wins: a terminal status and recorded end time are never overwritten
_MARK_ENDED_SQL = text(f"""
    UPDATE interview_sessions
    SET status = CASE WHEN status IN ('completed', 'failed') THEN status ELSE :status END,
        ended_at = COALESCE(ended_at, :ended_at),
        actual_duration_seconds = COALESCE(actual_duration_seconds, :actual_duration_seconds),
        updated_at = NOW()
    WHERE id = CAST(:session_id AS UUID)
    RETURNING {_COLUMNS}
""")

_LIST_STALE_SQL = text(f"""
    SELECT {_COLUMNS} FROM interview_sessions
    WHERE credit_state = 'reserved'
      AND ended_at IS NULL
      AND created_at < :cutoff
    ORDER BY created_at
    LIMIT :limit
    FOR UPDATE SKIP LOCKED
""")


def _row_to_session(row: object) -> InterviewSession:
    return InterviewSession(
        id=str(row.id),  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        call_id=row.call_id,  # type: ignore[attr-defined]
        duration_minutes=row.duration_minutes,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        credit_state=row.credit_state,  # type: ignore[attr-defined]
        credits_blocked=row.credits_blocked,  # type: ignore[attr-defined]
        credits_deducted=row.credits_deducted,  # type: ignore[attr-defined]
        credits_refunded=row.credits_refunded,  # type: ignore[attr-defined]
        actual_duration_seconds=row.actual_duration_seconds,  # type: ignore[attr-defined]
        started_at=row.started_at,  # type: ignore[attr-defined]
        ended_at=row.ended_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class InterviewSessionRepository:
    def __init__(self, lock_timeout_ms: int | None = None) -> None:
        self._lock_timeout_ms = lock_timeout_ms or settings.LEDGER_LOCK_TIMEOUT_MS

    async def create(self, db: AsyncSession, session: InterviewSession) -> InterviewSession:
        result = await db.execute(
            _INSERT_SQL,
            {
                "id": session.id,
                "user_id": session.user_id,
                "duration_minutes": session.duration_minutes,
                "status": session.status,
                "credit_state": session.credit_state,
                "credits_blocked": session.credits_blocked,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Session insert returned no rows — this should never happen")
        return _row_to_session(row)

    async def get_by_id(self, db: AsyncSession, session_id: str) -> InterviewSession | None:
        row = (await db.execute(_GET_BY_ID_SQL, {"session_id": session_id})).fetchone()
        return _row_to_session(row) if row else None

    async def get_for_update(
        self, db: AsyncSession, session_id: str
    ) -> InterviewSession | None:
        await set_local_lock_timeout(db, self._lock_timeout_ms)
        row = (await db.execute(_GET_FOR_UPDATE_SQL, {"session_id": session_id})).fetchone()
        return _row_to_session(row) if row else None

    async def get_by_call_id(self, db: AsyncSession, call_id: str) -> InterviewSession | None:
        row = (await db.execute(_GET_BY_CALL_ID_SQL, {"call_id": call_id})).fetchone()
        return _row_to_session(row) if row else None

    async def attach_call(self, db: AsyncSession, session_id: str, call_id: str) -> None:
        result = await db.execute(
            _ATTACH_CALL_SQL, {"session_id": session_id, "call_id": call_id}
        )
        if result.fetchone() is None:
            raise SessionNotFoundError(session_id)

    async def mark_started(
        self, db: AsyncSession, call_id: str, started_at: datetime
    ) -> InterviewSession | None:
        result = await db.execute(
            _MARK_STARTED_SQL, {"call_id": call_id, "started_at": started_at}
        )
        row = result.fetchone()
        return _row_to_session(row) if row else None

    async def mark_ended(
        self,
        db: AsyncSession,
        session_id: str,
        status: str,
        actual_duration_seconds: int | None,
        ended_at: datetime,
    ) -> InterviewSession:
        result = await db.execute(
            _MARK_ENDED_SQL,
            {
                "session_id": session_id,
                "status": str(getattr(status, "value", status)),
                "actual_duration_seconds": actual_duration_seconds,
                "ended_at": ended_at,
            },
        )
        row = result.fetchone()
        if row is None:
            raise SessionNotFoundError(session_id)
        return _row_to_session(row)

    async def list_stale_reserved(
        self, db: AsyncSession, cutoff: datetime, limit: int
    ) -> list[InterviewSession]:
        rows = (await db.execute(_LIST_STALE_SQL, {"cutoff": cutoff, "limit": limit})).fetchall()
        return [_row_to_session(r) for r in rows]
