"""Lookups that give history entries human-readable context."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_credits.domain.models import PaymentReference, SessionReference

_SESSIONS_SQL = text("""
    SELECT id, duration_minutes, actual_duration_seconds, status, started_at
    FROM interview_sessions
    WHERE CAST(id AS VARCHAR) = ANY(:ids)
""")

_PAYMENTS_SQL = text("""
    SELECT id, amount, currency, receipt_number, created_at
    FROM payments
    WHERE CAST(id AS VARCHAR) = ANY(:ids)
""")


class ReferenceLookupRepository:
    async def sessions_by_ids(
        self, db: AsyncSession, ids: list[str]
    ) -> dict[str, SessionReference]:
        if not ids:
            return {}
        rows = (await db.execute(_SESSIONS_SQL, {"ids": ids})).fetchall()
        return {
            str(row.id): SessionReference(
                id=str(row.id),
                duration_minutes=row.duration_minutes,
                actual_duration_seconds=row.actual_duration_seconds,
                status=row.status,
                started_at=row.started_at,
            )
            for row in rows
        }

    async def payments_by_ids(
        self, db: AsyncSession, ids: list[str]
    ) -> dict[str, PaymentReference]:
        if not ids:
            return {}
        rows = (await db.execute(_PAYMENTS_SQL, {"ids": ids})).fetchall()
        return {
            str(row.id): PaymentReference(
                id=str(row.id),
                amount=row.amount,
                currency=row.currency,
                receipt_number=row.receipt_number,
                created_at=row.created_at,
            )
            for row in rows
        }
