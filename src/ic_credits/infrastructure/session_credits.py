"""SessionCreditsRepository — the ledger's view of interview_sessions.

Reads the session's status and credit fields under FOR UPDATE so the webhook
and the end-call fallback serialize on the same row, and writes back only
credits_deducted, credits_refunded and credit_state.
"""

from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ic_common.database import set_local_lock_timeout
from src.ic_common.errors import SessionNotFoundError
from src.ic_credits.domain.models import SessionCredits

_LOCK_SESSION_CREDITS_SQL = text("""
    SELECT id, user_id, status, credit_state,
           credits_blocked, credits_deducted, credits_refunded,
           actual_duration_seconds
    FROM interview_sessions
    WHERE id = CAST(:session_id AS UUID)
    FOR UPDATE
""")

_RECORD_SETTLEMENT_SQL = text("""
    UPDATE interview_sessions
    SET credits_deducted = :credits_deducted,
        credits_refunded = :credits_refunded,
        credit_state     = :credit_state,
        updated_at = NOW()
    WHERE id = CAST(:session_id AS UUID)
    RETURNING id
""")


class SessionCreditsRepository:
    def __init__(self, lock_timeout_ms: int | None = None) -> None:
        self._lock_timeout_ms = lock_timeout_ms or settings.LEDGER_LOCK_TIMEOUT_MS

    async def lock_session_credits(
        self, db: AsyncSession, session_id: str
    ) -> SessionCredits | None:
        await set_local_lock_timeout(db, self._lock_timeout_ms)
        result = await db.execute(_LOCK_SESSION_CREDITS_SQL, {"session_id": session_id})
        row = result.fetchone()
        if row is None:
            return None
        return SessionCredits(
            session_id=str(row.id),
            user_id=row.user_id,
            status=row.status,
            credit_state=row.credit_state,
            credits_blocked=row.credits_blocked,
            credits_deducted=row.credits_deducted,
            credits_refunded=row.credits_refunded,
            actual_duration_seconds=row.actual_duration_seconds,
        )

    async def record_settlement(
        self,
        db: AsyncSession,
        session_id: str,
        credits_deducted: Decimal,
        credits_refunded: Decimal,
        credit_state: str,
    ) -> None:
        result = await db.execute(
            _RECORD_SETTLEMENT_SQL,
            {
                "session_id": session_id,
                "credits_deducted": credits_deducted,
                "credits_refunded": credits_refunded,
                "credit_state": str(getattr(credit_state, "value", credit_state)),
            },
        )
        if result.fetchone() is None:
            raise SessionNotFoundError(session_id)
