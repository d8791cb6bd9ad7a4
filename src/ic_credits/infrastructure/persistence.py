"""CreditRepository — PostgreSQL implementation of CreditRepositoryProtocol.

All balance-mutating operations use a single conditional
UPDATE ... WHERE <guard> RETURNING on the user's credit_accounts row. The
UPDATE re-reads the row under its row lock, so two concurrent blocks for the
same user serialize and the second one sees the first one's reservation.
A result of 0 rows means a business constraint was violated (insufficient
credits, reservation not held) or the account does not exist.

Transaction ownership: The CALLER (application service) is responsible for
committing or rolling back. The row lock is held until then.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ic_common.database import set_local_lock_timeout
from src.ic_common.enums import ReferenceType, TransactionType
from src.ic_common.errors import (
    CreditAccountNotFoundError,
    InsufficientCreditsError,
    InternalError,
    ReservationNotHeldError,
)
from src.ic_credits.domain.models import CreditAccount, CreditTransaction, Metadata

_ACCOUNT_COLUMNS = "user_id, credits, blocked_credits, version, created_at, updated_at"
_TX_COLUMNS = (
    "id, user_id, transaction_type, amount, balance_after,"
    " reference_id, reference_type, metadata, created_at"
)

# ---------------------------------------------------------------------------
# SQL: credit_accounts
# ---------------------------------------------------------------------------

_GET_ACCOUNT_SQL = text(f"""
    SELECT {_ACCOUNT_COLUMNS}
    FROM credit_accounts
    WHERE user_id = :user_id
""")

_OPEN_ACCOUNT_SQL = text(f"""
    INSERT INTO credit_accounts (user_id)
    VALUES (:user_id)
    ON CONFLICT (user_id) DO NOTHING
    RETURNING {_ACCOUNT_COLUMNS}
""")

_BLOCK_SQL = text(f"""
    UPDATE credit_accounts
    SET blocked_credits = blocked_credits + :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE user_id = :user_id AND credits - blocked_credits >= :amount
    RETURNING {_ACCOUNT_COLUMNS}
""")

_SETTLE_SQL = text(f"""
    UPDATE credit_accounts
    SET credits         = credits - :deducted,
        blocked_credits = blocked_credits - :blocked_amount,
        version = version + 1,
        updated_at = NOW()
    WHERE user_id = :user_id AND blocked_credits >= :blocked_amount
    RETURNING {_ACCOUNT_COLUMNS}
""")

_RELEASE_SQL = text(f"""
    UPDATE credit_accounts
    SET blocked_credits = blocked_credits - :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE user_id = :user_id AND blocked_credits >= :amount
    RETURNING {_ACCOUNT_COLUMNS}
""")

_ADD_SQL = text(f"""
    UPDATE credit_accounts
    SET credits = credits + :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE user_id = :user_id
    RETURNING {_ACCOUNT_COLUMNS}
""")

_ADJUST_SQL = text(f"""
    UPDATE credit_accounts
    SET credits = credits + :delta,
        version = version + 1,
        updated_at = NOW()
    WHERE user_id = :user_id AND credits + :delta >= blocked_credits
    RETURNING {_ACCOUNT_COLUMNS}
""")

# ---------------------------------------------------------------------------
# SQL: credit_transactions (append-only)
# ---------------------------------------------------------------------------

_INSERT_TX_SQL = text(f"""
    INSERT INTO credit_transactions
        (user_id, transaction_type, amount, balance_after,
         reference_id, reference_type, metadata)
    VALUES
        (:user_id, :transaction_type, :amount, :balance_after,
         :reference_id, :reference_type, CAST(:metadata AS JSONB))
    RETURNING {_TX_COLUMNS}
""")

_FILTERS = """
    WHERE user_id = :user_id
      AND (CAST(:transaction_type AS VARCHAR) IS NULL OR transaction_type = :transaction_type)
      AND (CAST(:start_date AS TIMESTAMPTZ) IS NULL OR created_at >= :start_date)
      AND (CAST(:end_date AS TIMESTAMPTZ) IS NULL OR created_at <= :end_date)
"""

_LIST_TX_SQL = text(f"""
    SELECT {_TX_COLUMNS}
    FROM credit_transactions
    {_FILTERS}
    ORDER BY created_at DESC, id DESC
    LIMIT :limit OFFSET :offset
""")

_COUNT_TX_SQL = text(f"""
    SELECT COUNT(*)
    FROM credit_transactions
    {_FILTERS}
""")


def _load_metadata(raw: Any) -> Metadata:
    if raw is None:
        return {}
    if isinstance(raw, str):
        return dict(json.loads(raw))
    return dict(raw)


def _row_to_account(row: object) -> CreditAccount:
    return CreditAccount(
        user_id=row.user_id,  # type: ignore[attr-defined]
        credits=row.credits,  # type: ignore[attr-defined]
        blocked_credits=row.blocked_credits,  # type: ignore[attr-defined]
        version=row.version,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_transaction(row: object) -> CreditTransaction:
    return CreditTransaction(
        id=row.id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        transaction_type=row.transaction_type,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        balance_after=row.balance_after,  # type: ignore[attr-defined]
        reference_id=row.reference_id,  # type: ignore[attr-defined]
        reference_type=row.reference_type,  # type: ignore[attr-defined]
        metadata=_load_metadata(row.metadata),  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class CreditRepository:
    """Concrete repository — all operations atomic at the SQL level."""

    def __init__(self, lock_timeout_ms: int | None = None) -> None:
        self._lock_timeout_ms = lock_timeout_ms or settings.LEDGER_LOCK_TIMEOUT_MS

    async def get_account(
        self, db: AsyncSession, user_id: str
    ) -> CreditAccount | None:
        result = await db.execute(_GET_ACCOUNT_SQL, {"user_id": user_id})
        row = result.fetchone()
        return _row_to_account(row) if row else None

    async def open_account(
        self, db: AsyncSession, user_id: str
    ) -> tuple[CreditAccount, bool]:
        result = await db.execute(_OPEN_ACCOUNT_SQL, {"user_id": user_id})
        row = result.fetchone()
        if row is not None:
            return _row_to_account(row), True
        existing = await self.get_account(db, user_id)
        if existing is None:
            raise InternalError(f"Account insert conflicted but no row for user {user_id}")
        return existing, False

    async def block_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        session_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]:
        await set_local_lock_timeout(db, self._lock_timeout_ms)
        result = await db.execute(_BLOCK_SQL, {"user_id": user_id, "amount": amount})
        row = result.fetchone()
        if row is None:
            current = await self._require_account(db, user_id)
            raise InsufficientCreditsError(amount, current.available_credits)
        account = _row_to_account(row)
        entry = await self._insert_entry(
            db,
            account,
            TransactionType.BLOCK,
            -amount,
            session_id,
            ReferenceType.INTERVIEW,
            metadata,
        )
        return account, entry

    async def settle_reservation(
        self,
        db: AsyncSession,
        user_id: str,
        blocked_amount: Decimal,
        deducted: Decimal,
        refunded: Decimal,
        session_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, list[CreditTransaction]]:
        await set_local_lock_timeout(db, self._lock_timeout_ms)
        result = await db.execute(
            _SETTLE_SQL,
            {"user_id": user_id, "blocked_amount": blocked_amount, "deducted": deducted},
        )
        row = result.fetchone()
        if row is None:
            current = await self._require_account(db, user_id)
            raise ReservationNotHeldError(blocked_amount, current.blocked_credits)
        account = _row_to_account(row)
        # available after the charge alone is unchanged; the refund restores the rest
        charged_view = CreditAccount(
            user_id=account.user_id,
            credits=account.credits,
            blocked_credits=account.blocked_credits + refunded,
        )
        entries = [
            await self._insert_entry(
                db,
                charged_view,
                TransactionType.DEDUCT,
                -deducted,
                session_id,
                ReferenceType.INTERVIEW,
                metadata,
            )
        ]
        if refunded > 0:
            entries.append(
                await self._insert_entry(
                    db,
                    account,
                    TransactionType.REFUND,
                    refunded,
                    session_id,
                    ReferenceType.INTERVIEW,
                    metadata,
                )
            )
        return account, entries

    async def release_reservation(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        session_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]:
        await set_local_lock_timeout(db, self._lock_timeout_ms)
        result = await db.execute(_RELEASE_SQL, {"user_id": user_id, "amount": amount})
        row = result.fetchone()
        if row is None:
            current = await self._require_account(db, user_id)
            raise ReservationNotHeldError(amount, current.blocked_credits)
        account = _row_to_account(row)
        entry = await self._insert_entry(
            db,
            account,
            TransactionType.REFUND,
            amount,
            session_id,
            ReferenceType.INTERVIEW,
            metadata,
        )
        return account, entry

    async def add_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        payment_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]:
        await set_local_lock_timeout(db, self._lock_timeout_ms)
        result = await db.execute(_ADD_SQL, {"user_id": user_id, "amount": amount})
        row = result.fetchone()
        if row is None:
            raise CreditAccountNotFoundError(user_id)
        account = _row_to_account(row)
        entry = await self._insert_entry(
            db,
            account,
            TransactionType.PURCHASE,
            amount,
            payment_id,
            ReferenceType.PAYMENT,
            metadata,
        )
        return account, entry

    async def adjust_credits(
        self,
        db: AsyncSession,
        user_id: str,
        delta: Decimal,
        reference_id: str | None,
        reference_type: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]:
        await set_local_lock_timeout(db, self._lock_timeout_ms)
        result = await db.execute(_ADJUST_SQL, {"user_id": user_id, "delta": delta})
        row = result.fetchone()
        if row is None:
            current = await self._require_account(db, user_id)
            raise InsufficientCreditsError(-delta, current.available_credits)
        account = _row_to_account(row)
        entry = await self._insert_entry(
            db,
            account,
            TransactionType.ADJUSTMENT,
            delta,
            reference_id,
            reference_type,
            metadata,
        )
        return account, entry

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        limit: int,
        offset: int,
        transaction_type: str | None,
        start_date: datetime | None,
        end_date: datetime | None,
    ) -> list[CreditTransaction]:
        result = await db.execute(
            _LIST_TX_SQL,
            {
                "user_id": user_id,
                "transaction_type": transaction_type,
                "start_date": start_date,
                "end_date": end_date,
                "limit": limit,
                "offset": offset,
            },
        )
        return [_row_to_transaction(row) for row in result.fetchall()]

    async def count_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        transaction_type: str | None,
        start_date: datetime | None,
        end_date: datetime | None,
    ) -> int:
        result = await db.execute(
            _COUNT_TX_SQL,
            {
                "user_id": user_id,
                "transaction_type": transaction_type,
                "start_date": start_date,
                "end_date": end_date,
            },
        )
        return int(result.scalar_one())

    async def _require_account(self, db: AsyncSession, user_id: str) -> CreditAccount:
        account = await self.get_account(db, user_id)
        if account is None:
            raise CreditAccountNotFoundError(user_id)
        return account

    async def _insert_entry(
        self,
        db: AsyncSession,
        account: CreditAccount,
        transaction_type: TransactionType,
        amount: Decimal,
        reference_id: str | None,
        reference_type: str,
        metadata: Metadata,
    ) -> CreditTransaction:
        result = await db.execute(
            _INSERT_TX_SQL,
            {
                "user_id": account.user_id,
                "transaction_type": transaction_type.value,
                "amount": amount,
                "balance_after": account.available_credits,
                "reference_id": reference_id,
                "reference_type": str(getattr(reference_type, "value", reference_type)),
                "metadata": json.dumps(metadata),
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Ledger insert returned no rows — this should never happen")
        return _row_to_transaction(row)
