"""PaymentRepository — PostgreSQL implementation of PaymentRepositoryProtocol.

get_by_order_for_update takes the row lock that makes payment completion
idempotent: the client callback and the gateway webhook for the same order
serialize on it, and the second one sees status 'paid'.

Transaction ownership: the CALLER commits or rolls back.
"""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ic_common.database import set_local_lock_timeout
from src.ic_common.errors import InternalError, PaymentNotFoundError
from src.ic_payment.domain.models import Payment

_COLUMNS = (
    "id, user_id, order_id, plan_id, amount, currency, credits, status,"
    " receipt_number, provider_payment_id, payment_method, paid_at, created_at, updated_at"
)

_INSERT_SQL = text(f"""
    INSERT INTO payments
        (id, user_id, order_id, plan_id, amount, currency, credits, status, receipt_number)
    VALUES
        (CAST(:id AS UUID), :user_id, :order_id, :plan_id, :amount, :currency,
         :credits, :status, :receipt_number)
    RETURNING {_COLUMNS}
""")

_FIND_PENDING_SQL = text(f"""
    SELECT {_COLUMNS} FROM payments
    WHERE user_id = :user_id
      AND plan_id = :plan_id
      AND status = 'created'
      AND created_at > :created_after
    ORDER BY created_at DESC
    LIMIT 1
""")

_GET_BY_ORDER_FOR_UPDATE_SQL = text(f"""
    SELECT {_COLUMNS} FROM payments
    WHERE order_id = :order_id
    FOR UPDATE
""")

_MARK_PAID_SQL = text("""
    UPDATE payments
    SET provider_payment_id = :provider_payment_id,
        status = :status,
        payment_method = COALESCE(:payment_method, payment_method),
        paid_at = COALESCE(paid_at, NOW()),
        updated_at = NOW()
    WHERE id = CAST(:payment_id AS UUID)
    RETURNING id
""")


def _row_to_payment(row: object) -> Payment:
    return Payment(
        id=str(row.id),  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        order_id=row.order_id,  # type: ignore[attr-defined]
        plan_id=row.plan_id,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        currency=row.currency,  # type: ignore[attr-defined]
        credits=row.credits,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        receipt_number=row.receipt_number,  # type: ignore[attr-defined]
        provider_payment_id=row.provider_payment_id,  # type: ignore[attr-defined]
        payment_method=row.payment_method,  # type: ignore[attr-defined]
        paid_at=row.paid_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class PaymentRepository:
    def __init__(self, lock_timeout_ms: int | None = None) -> None:
        self._lock_timeout_ms = lock_timeout_ms or settings.LEDGER_LOCK_TIMEOUT_MS

    async def create(self, db: AsyncSession, payment: Payment) -> Payment:
        result = await db.execute(
            _INSERT_SQL,
            {
                "id": payment.id,
                "user_id": payment.user_id,
                "order_id": payment.order_id,
                "plan_id": payment.plan_id,
                "amount": payment.amount,
                "currency": payment.currency,
                "credits": payment.credits,
                "status": payment.status,
                "receipt_number": payment.receipt_number,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Payment insert returned no rows — this should never happen")
        return _row_to_payment(row)

    async def find_pending(
        self, db: AsyncSession, user_id: str, plan_id: str, created_after: datetime
    ) -> Payment | None:
        row = (
            await db.execute(
                _FIND_PENDING_SQL,
                {"user_id": user_id, "plan_id": plan_id, "created_after": created_after},
            )
        ).fetchone()
        return _row_to_payment(row) if row else None

    async def get_by_order_for_update(
        self, db: AsyncSession, order_id: str
    ) -> Payment | None:
        await set_local_lock_timeout(db, self._lock_timeout_ms)
        row = (
            await db.execute(_GET_BY_ORDER_FOR_UPDATE_SQL, {"order_id": order_id})
        ).fetchone()
        return _row_to_payment(row) if row else None

    async def mark_paid(
        self,
        db: AsyncSession,
        payment_id: str,
        provider_payment_id: str,
        status: str,
        payment_method: str | None,
    ) -> None:
        result = await db.execute(
            _MARK_PAID_SQL,
            {
                "payment_id": payment_id,
                "provider_payment_id": provider_payment_id,
                "status": str(getattr(status, "value", status)),
                "payment_method": payment_method,
            },
        )
        if result.fetchone() is None:
            raise PaymentNotFoundError(payment_id)
