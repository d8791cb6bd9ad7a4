"""Repository Protocols — dependency inversion for testability.

Unit tests inject a mock (or the in-memory store) that conforms to these
Protocols. Infrastructure layer provides the real implementations.

Mutating methods on CreditRepositoryProtocol are the ledger primitives: only
CreditLedgerService calls them, each one re-reading and writing the user's
balance row as a single indivisible step.
"""

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_credits.domain.models import (
    CreditAccount,
    CreditTransaction,
    Metadata,
    PaymentReference,
    SessionCredits,
    SessionReference,
)


class CreditRepositoryProtocol(Protocol):
    async def get_account(
        self, db: AsyncSession, user_id: str
    ) -> CreditAccount | None: ...

    async def open_account(
        self, db: AsyncSession, user_id: str
    ) -> tuple[CreditAccount, bool]: ...

    async def block_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        session_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]: ...

    async def settle_reservation(
        self,
        db: AsyncSession,
        user_id: str,
        blocked_amount: Decimal,
        deducted: Decimal,
        refunded: Decimal,
        session_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, list[CreditTransaction]]: ...

    async def release_reservation(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        session_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]: ...

    async def add_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        payment_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]: ...

    async def adjust_credits(
        self,
        db: AsyncSession,
        user_id: str,
        delta: Decimal,
        reference_id: str | None,
        reference_type: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]: ...

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        limit: int,
        offset: int,
        transaction_type: str | None,
        start_date: datetime | None,
        end_date: datetime | None,
    ) -> list[CreditTransaction]: ...

    async def count_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        transaction_type: str | None,
        start_date: datetime | None,
        end_date: datetime | None,
    ) -> int: ...


class SessionCreditsRepositoryProtocol(Protocol):
    """The four credit fields the ledger owns on the session record."""

    async def lock_session_credits(
        self, db: AsyncSession, session_id: str
    ) -> SessionCredits | None: ...

    async def record_settlement(
        self,
        db: AsyncSession,
        session_id: str,
        credits_deducted: Decimal,
        credits_refunded: Decimal,
        credit_state: str,
    ) -> None: ...


class ReferenceLookupProtocol(Protocol):
    async def sessions_by_ids(
        self, db: AsyncSession, ids: list[str]
    ) -> dict[str, SessionReference]: ...

    async def payments_by_ids(
        self, db: AsyncSession, ids: list[str]
    ) -> dict[str, PaymentReference]: ...
