"""CreditLedgerService — the ledger's public operations.

Mutations return structured results instead of raising: a caller settling a
call from a webhook needs to distinguish "already processed" from "storage
down" without catching half a dozen exception types. Only programming errors
propagate.

Transactions: by default each operation commits on success and rolls back on
failure. Composed flows (start-interview, reconciliation, payment completion)
pass commit=False and own the transaction themselves.
"""

import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ic_common.credits import to_credits
from src.ic_common.enums import LedgerErrorCode, ReferenceType
from src.ic_common.errors import (
    AppError,
    CreditAccountNotFoundError,
    InsufficientCreditsError,
    InvalidCreditAmountError,
    ReservationNotHeldError,
    SessionNotFoundError,
)
from src.ic_credits.application.schemas import (
    AddResult,
    AdjustResult,
    BalanceResponse,
    BlockResult,
    DeductResult,
    DurationCheckResponse,
    RefundResult,
)
from src.ic_credits.domain.converter import validate_for_duration
from src.ic_credits.domain.models import Metadata
from src.ic_credits.domain.reconciliation import clamp_settlement
from src.ic_credits.domain.repository import CreditRepositoryProtocol
from src.ic_credits.infrastructure.memory import InMemoryCreditRepository
from src.ic_credits.infrastructure.persistence import CreditRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that become structured results. Anything else is a bug and propagates.
_LEDGER_FAILURES = (AppError, SQLAlchemyError, OSError, TimeoutError)

_memory_repo: InMemoryCreditRepository | None = None


def build_credit_repository() -> CreditRepositoryProtocol:
    """Select the ledger store from LEDGER_BACKEND.

    The memory store is a process-wide singleton so every request sees the
    same balances.
    """
    global _memory_repo  # noqa: PLW0603
    if settings.LEDGER_BACKEND == "memory":
        if _memory_repo is None:
            _memory_repo = InMemoryCreditRepository()
        return _memory_repo
    return CreditRepository()


def classify_failure(exc: BaseException) -> LedgerErrorCode:
    if isinstance(exc, InsufficientCreditsError):
        return LedgerErrorCode.INSUFFICIENT_CREDITS
    if isinstance(exc, (CreditAccountNotFoundError, SessionNotFoundError)):
        return LedgerErrorCode.NOT_FOUND
    if isinstance(exc, ReservationNotHeldError):
        return LedgerErrorCode.ALREADY_PROCESSED
    if isinstance(exc, InvalidCreditAmountError):
        return LedgerErrorCode.INVALID_AMOUNT
    return LedgerErrorCode.STORAGE_FAILURE


def _failure_message(exc: BaseException) -> str:
    if isinstance(exc, AppError):
        return exc.message
    return "Ledger storage unavailable"


class CreditLedgerService:
    def __init__(self, repo: CreditRepositoryProtocol | None = None) -> None:
        self._repo: CreditRepositoryProtocol = repo or build_credit_repository()

    @property
    def repo(self) -> CreditRepositoryProtocol:
        return self._repo

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_balance(
        self, db: AsyncSession, user_id: str, open_if_missing: bool = False
    ) -> BalanceResponse:
        account = await self._repo.get_account(db, user_id)
        if account is None:
            if not open_if_missing:
                raise CreditAccountNotFoundError(user_id)
            return await self.open_account(db, user_id)
        return BalanceResponse.from_account(account)

    async def check_duration(
        self, db: AsyncSession, user_id: str, minutes: int
    ) -> DurationCheckResponse:
        balance = await self.get_balance(db, user_id, open_if_missing=True)
        return DurationCheckResponse.from_check(
            validate_for_duration(balance.available_credits, minutes)
        )

    # ------------------------------------------------------------------
    # Account lifecycle
    # ------------------------------------------------------------------

    async def open_account(
        self, db: AsyncSession, user_id: str, welcome_credits: int | None = None
    ) -> BalanceResponse:
        """Create the account if missing; a new account gets the free-plan grant."""
        grant = to_credits(settings.WELCOME_CREDITS if welcome_credits is None else welcome_credits)

        async def _open():
            account, created = await self._repo.open_account(db, user_id)
            if created and grant > 0:
                account, _ = await self._repo.adjust_credits(
                    db, user_id, grant, None, ReferenceType.MANUAL, {"reason": "welcome_grant"}
                )
            return account, created

        account, created = await self._atomic(db, True, _open)
        if created:
            logger.info("Credit account opened: user=%s welcome=%s", user_id, grant)
        return BalanceResponse.from_account(account)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def block_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal | int,
        session_id: str,
        metadata: Metadata | None = None,
        commit: bool = True,
    ) -> BlockResult:
        amount = to_credits(amount)
        if amount <= 0:
            return BlockResult(
                success=False,
                error=LedgerErrorCode.INVALID_AMOUNT,
                message=InvalidCreditAmountError(amount).message,
            )
        try:
            account, entry = await self._atomic(
                db,
                commit,
                lambda: self._repo.block_credits(db, user_id, amount, session_id, metadata or {}),
            )
        except _LEDGER_FAILURES as exc:
            code = self._log_failure("block", user_id, session_id, exc)
            result = BlockResult(success=False, error=code, message=_failure_message(exc))
            if isinstance(exc, InsufficientCreditsError):
                result.available = exc.available
                result.needed = exc.required
            return result

        logger.info(
            "Credits blocked: user=%s session=%s amount=%s available=%s",
            user_id, session_id, amount, account.available_credits,
        )
        return BlockResult(
            success=True,
            credits_blocked=amount,
            new_balance=account.available_credits,
            blocked_credits=account.blocked_credits,
            transaction_id=entry.id,
        )

    async def deduct_and_settle(
        self,
        db: AsyncSession,
        user_id: str,
        blocked_amount: Decimal | int,
        actual_credits: Decimal | int,
        session_id: str,
        metadata: Metadata | None = None,
        commit: bool = True,
    ) -> DeductResult:
        """Charge the actual usage against a reservation and return the rest.

        The charge is clamped to [0, blocked_amount]; a call that ran over its
        reservation is never charged more than was reserved.
        """
        blocked_amount = to_credits(blocked_amount)
        actual = to_credits(actual_credits)
        if blocked_amount <= 0:
            return DeductResult(
                success=False,
                error=LedgerErrorCode.INVALID_AMOUNT,
                message=InvalidCreditAmountError(blocked_amount).message,
            )
        split = clamp_settlement(blocked_amount, actual)
        deducted, refunded = split.deducted, split.refunded
        if deducted != actual:
            logger.warning(
                "Settlement clamped: session=%s actual=%s blocked=%s charged=%s",
                session_id, actual, blocked_amount, deducted,
            )
        try:
            account, entries = await self._atomic(
                db,
                commit,
                lambda: self._repo.settle_reservation(
                    db, user_id, blocked_amount, deducted, refunded, session_id, metadata or {}
                ),
            )
        except _LEDGER_FAILURES as exc:
            code = self._log_failure("settle", user_id, session_id, exc)
            return DeductResult(success=False, error=code, message=_failure_message(exc))

        logger.info(
            "Credits settled: user=%s session=%s deducted=%s refunded=%s available=%s",
            user_id, session_id, deducted, refunded, account.available_credits,
        )
        return DeductResult(
            success=True,
            credits_deducted=deducted,
            credits_refunded=refunded,
            new_balance=account.available_credits,
            transaction_ids=[e.id for e in entries],
        )

    async def refund_blocked_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal | int,
        session_id: str,
        reason: str,
        metadata: Metadata | None = None,
        commit: bool = True,
    ) -> RefundResult:
        amount = to_credits(amount)
        if amount <= 0:
            return RefundResult(
                success=False,
                error=LedgerErrorCode.INVALID_AMOUNT,
                message=InvalidCreditAmountError(amount).message,
            )
        entry_metadata: Metadata = {**(metadata or {}), "reason": reason}
        try:
            account, entry = await self._atomic(
                db,
                commit,
                lambda: self._repo.release_reservation(
                    db, user_id, amount, session_id, entry_metadata
                ),
            )
        except _LEDGER_FAILURES as exc:
            code = self._log_failure("refund", user_id, session_id, exc)
            return RefundResult(success=False, error=code, message=_failure_message(exc))

        logger.info(
            "Blocked credits refunded: user=%s session=%s amount=%s reason=%s",
            user_id, session_id, amount, reason,
        )
        return RefundResult(
            success=True,
            credits_refunded=amount,
            new_balance=account.available_credits,
            transaction_id=entry.id,
        )

    async def add_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Decimal | int,
        payment_id: str,
        metadata: Metadata | None = None,
        commit: bool = True,
    ) -> AddResult:
        amount = to_credits(amount)
        if amount <= 0:
            return AddResult(
                success=False,
                error=LedgerErrorCode.INVALID_AMOUNT,
                message=InvalidCreditAmountError(amount).message,
            )
        try:
            account, entry = await self._atomic(
                db,
                commit,
                lambda: self._repo.add_credits(db, user_id, amount, payment_id, metadata or {}),
            )
        except _LEDGER_FAILURES as exc:
            code = self._log_failure("purchase", user_id, payment_id, exc)
            return AddResult(success=False, error=code, message=_failure_message(exc))

        logger.info(
            "Credits purchased: user=%s payment=%s amount=%s available=%s",
            user_id, payment_id, amount, account.available_credits,
        )
        return AddResult(
            success=True,
            credits_added=amount,
            new_balance=account.available_credits,
            transaction_id=entry.id,
        )

    async def adjust_credits(
        self,
        db: AsyncSession,
        user_id: str,
        delta: Decimal | int,
        reason: str,
        reference_id: str | None = None,
        reference_type: ReferenceType = ReferenceType.MANUAL,
        metadata: Metadata | None = None,
        commit: bool = True,
    ) -> AdjustResult:
        """Book a signed correction; a debit may not eat into blocked credits."""
        delta = to_credits(delta)
        if delta == 0:
            return AdjustResult(
                success=False,
                error=LedgerErrorCode.INVALID_AMOUNT,
                message=InvalidCreditAmountError(delta).message,
            )
        entry_metadata: Metadata = {**(metadata or {}), "reason": reason}
        try:
            account, entry = await self._atomic(
                db,
                commit,
                lambda: self._repo.adjust_credits(
                    db, user_id, delta, reference_id, reference_type, entry_metadata
                ),
            )
        except _LEDGER_FAILURES as exc:
            code = self._log_failure("adjust", user_id, reference_id, exc)
            return AdjustResult(success=False, error=code, message=_failure_message(exc))

        logger.info(
            "Credits adjusted: user=%s delta=%s reason=%s available=%s",
            user_id, delta, reason, account.available_credits,
        )
        return AdjustResult(
            success=True,
            delta=delta,
            new_balance=account.available_credits,
            transaction_id=entry.id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _atomic(
        self, db: AsyncSession, commit: bool, operation: Callable[[], Awaitable[T]]
    ) -> T:
        try:
            outcome = await operation()
            if commit:
                await db.commit()
        except Exception:
            if commit:
                await db.rollback()
            raise
        return outcome

    def _log_failure(
        self, operation: str, user_id: str, reference_id: str | None, exc: BaseException
    ) -> LedgerErrorCode:
        code = classify_failure(exc)
        if code == LedgerErrorCode.STORAGE_FAILURE:
            logger.error(
                "Ledger %s failed: user=%s ref=%s error=%s",
                operation, user_id, reference_id, exc, exc_info=True,
            )
        else:
            logger.warning(
                "Ledger %s rejected: user=%s ref=%s code=%s detail=%s",
                operation, user_id, reference_id, code.value, exc,
            )
        return code
