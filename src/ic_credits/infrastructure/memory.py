"""InMemoryCreditRepository — single-process ledger store.

Same contract as CreditRepository, with a per-user asyncio.Lock standing in
for the row lock: every mutation re-reads and writes the account while
holding the user's lock, so concurrent coroutines for one user serialize.
Lock waits are bounded by the same LEDGER_LOCK_TIMEOUT_MS as the SQL store.

Each primitive is atomic on its own; there is no multi-operation rollback.
Only valid for a single process (LEDGER_BACKEND=memory, tests).
"""

import asyncio
import itertools
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ic_common.credits import ZERO
from src.ic_common.datetime_utils import utc_now
from src.ic_common.enums import ReferenceType, TransactionType
from src.ic_common.errors import (
    CreditAccountNotFoundError,
    InsufficientCreditsError,
    LedgerStorageError,
    ReservationNotHeldError,
)
from src.ic_credits.domain.models import CreditAccount, CreditTransaction, Metadata


class InMemoryCreditRepository:
    def __init__(self, lock_timeout_ms: int | None = None) -> None:
        self._lock_timeout = (lock_timeout_ms or settings.LEDGER_LOCK_TIMEOUT_MS) / 1000
        self._accounts: dict[str, CreditAccount] = {}
        self._transactions: list[CreditTransaction] = []
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._ids = itertools.count(1)

    @asynccontextmanager
    async def _locked(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks[user_id]
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._lock_timeout)
        except TimeoutError:
            raise LedgerStorageError(f"lock wait timed out for user {user_id}") from None
        try:
            yield
        finally:
            lock.release()

    async def get_account(
        self, db: AsyncSession, user_id: str
    ) -> CreditAccount | None:
        account = self._accounts.get(user_id)
        return replace(account) if account else None

    async def open_account(
        self, db: AsyncSession, user_id: str
    ) -> tuple[CreditAccount, bool]:
        async with self._locked(user_id):
            if user_id in self._accounts:
                return replace(self._accounts[user_id]), False
            now = utc_now()
            account = CreditAccount(
                user_id=user_id,
                credits=ZERO,
                blocked_credits=ZERO,
                created_at=now,
                updated_at=now,
            )
            self._accounts[user_id] = account
            return replace(account), True

    async def block_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        session_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]:
        async with self._locked(user_id):
            account = self._require(user_id)
            if account.available_credits < amount:
                raise InsufficientCreditsError(amount, account.available_credits)
            account = self._store(replace(account, blocked_credits=account.blocked_credits + amount))
            entry = self._append(
                account, TransactionType.BLOCK, -amount, session_id, ReferenceType.INTERVIEW, metadata
            )
            return replace(account), entry

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
        async with self._locked(user_id):
            account = self._require(user_id)
            if account.blocked_credits < blocked_amount:
                raise ReservationNotHeldError(blocked_amount, account.blocked_credits)
            account = self._store(
                replace(
                    account,
                    credits=account.credits - deducted,
                    blocked_credits=account.blocked_credits - blocked_amount,
                )
            )
            charged_view = replace(account, blocked_credits=account.blocked_credits + refunded)
            entries = [
                self._append(
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
                    self._append(
                        account,
                        TransactionType.REFUND,
                        refunded,
                        session_id,
                        ReferenceType.INTERVIEW,
                        metadata,
                    )
                )
            return replace(account), entries

    async def release_reservation(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        session_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]:
        async with self._locked(user_id):
            account = self._require(user_id)
            if account.blocked_credits < amount:
                raise ReservationNotHeldError(amount, account.blocked_credits)
            account = self._store(replace(account, blocked_credits=account.blocked_credits - amount))
            entry = self._append(
                account, TransactionType.REFUND, amount, session_id, ReferenceType.INTERVIEW, metadata
            )
            return replace(account), entry

    async def add_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        payment_id: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]:
        async with self._locked(user_id):
            account = self._require(user_id)
            account = self._store(replace(account, credits=account.credits + amount))
            entry = self._append(
                account, TransactionType.PURCHASE, amount, payment_id, ReferenceType.PAYMENT, metadata
            )
            return replace(account), entry

    async def adjust_credits(
        self,
        db: AsyncSession,
        user_id: str,
        delta: Decimal,
        reference_id: str | None,
        reference_type: str,
        metadata: Metadata,
    ) -> tuple[CreditAccount, CreditTransaction]:
        async with self._locked(user_id):
            account = self._require(user_id)
            if account.credits + delta < account.blocked_credits:
                raise InsufficientCreditsError(-delta, account.available_credits)
            account = self._store(replace(account, credits=account.credits + delta))
            entry = self._append(
                account, TransactionType.ADJUSTMENT, delta, reference_id, reference_type, metadata
            )
            return replace(account), entry

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
        matching = self._filter(user_id, transaction_type, start_date, end_date)
        # newest first; ids break ties between entries written in the same instant
        matching.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return matching[offset : offset + limit]

    async def count_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        transaction_type: str | None,
        start_date: datetime | None,
        end_date: datetime | None,
    ) -> int:
        return len(self._filter(user_id, transaction_type, start_date, end_date))

    def _filter(
        self,
        user_id: str,
        transaction_type: str | None,
        start_date: datetime | None,
        end_date: datetime | None,
    ) -> list[CreditTransaction]:
        return [
            t
            for t in self._transactions
            if t.user_id == user_id
            and (transaction_type is None or t.transaction_type == transaction_type)
            and (start_date is None or (t.created_at is not None and t.created_at >= start_date))
            and (end_date is None or (t.created_at is not None and t.created_at <= end_date))
        ]

    def _require(self, user_id: str) -> CreditAccount:
        account = self._accounts.get(user_id)
        if account is None:
            raise CreditAccountNotFoundError(user_id)
        return account

    def _store(self, account: CreditAccount) -> CreditAccount:
        account = replace(account, version=account.version + 1, updated_at=utc_now())
        self._accounts[account.user_id] = account
        return account

    def _append(
        self,
        account: CreditAccount,
        transaction_type: TransactionType,
        amount: Decimal,
        reference_id: str | None,
        reference_type: str,
        metadata: Metadata,
    ) -> CreditTransaction:
        entry = CreditTransaction(
            id=next(self._ids),
            user_id=account.user_id,
            transaction_type=transaction_type.value,
            amount=amount,
            balance_after=account.available_credits,
            reference_id=reference_id,
            reference_type=str(getattr(reference_type, "value", reference_type)),
            metadata=dict(metadata),
            created_at=utc_now(),
        )
        self._transactions.append(entry)
        return replace(entry)
