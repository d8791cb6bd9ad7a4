"""Pydantic schemas for ic_credits: operation results, query responses, requests."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.ic_common.credits import credits_to_display
from src.ic_common.enums import LedgerErrorCode, SettlementAction, TransactionType
from src.ic_credits.domain.converter import DurationCheck, max_duration_minutes
from src.ic_credits.domain.models import (
    CreditAccount,
    CreditTransaction,
    PaymentReference,
    SessionReference,
)

# ---------------------------------------------------------------------------
# Ledger operation results; failures are returned, not raised
# ---------------------------------------------------------------------------


class LedgerResult(BaseModel):
    success: bool
    error: LedgerErrorCode | None = None
    message: str | None = None


class BlockResult(LedgerResult):
    credits_blocked: Decimal | None = None
    new_balance: Decimal | None = None        # available_credits after the block
    blocked_credits: Decimal | None = None
    available: Decimal | None = None          # set on insufficient_credits
    needed: Decimal | None = None             # set on insufficient_credits
    transaction_id: int | None = None


class DeductResult(LedgerResult):
    credits_deducted: Decimal | None = None
    credits_refunded: Decimal | None = None
    new_balance: Decimal | None = None
    transaction_ids: list[int] = Field(default_factory=list)


class RefundResult(LedgerResult):
    credits_refunded: Decimal | None = None
    new_balance: Decimal | None = None
    transaction_id: int | None = None


class AddResult(LedgerResult):
    credits_added: Decimal | None = None
    new_balance: Decimal | None = None
    transaction_id: int | None = None


class AdjustResult(LedgerResult):
    delta: Decimal | None = None
    new_balance: Decimal | None = None
    transaction_id: int | None = None


class ReconciliationResult(BaseModel):
    session_id: str
    action: SettlementAction
    success: bool
    credits_deducted: Decimal | None = None
    credits_refunded: Decimal | None = None
    error: LedgerErrorCode | None = None
    message: str | None = None

    @property
    def already_processed(self) -> bool:
        return self.action in (SettlementAction.ALREADY_PROCESSED, SettlementAction.CONSISTENT)


# ---------------------------------------------------------------------------
# Query responses
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    user_id: str
    credits: Decimal
    blocked_credits: Decimal
    available_credits: Decimal
    available_display: str
    max_duration_minutes: int

    @classmethod
    def from_account(cls, account: CreditAccount) -> "BalanceResponse":
        available = account.available_credits
        return cls(
            user_id=account.user_id,
            credits=account.credits,
            blocked_credits=account.blocked_credits,
            available_credits=available,
            available_display=credits_to_display(available),
            max_duration_minutes=max_duration_minutes(available),
        )


class DurationCheckResponse(BaseModel):
    valid: bool
    credits_needed: Decimal
    credits_available: Decimal
    suggested_durations: list[int] | None = None
    max_duration: int | None = None

    @classmethod
    def from_check(cls, check: DurationCheck) -> "DurationCheckResponse":
        return cls(
            valid=check.valid,
            credits_needed=check.credits_needed,
            credits_available=check.credits_available,
            suggested_durations=check.suggested_durations,
            max_duration=check.max_duration,
        )


class InterviewContext(BaseModel):
    id: str
    duration_minutes: int
    actual_duration_seconds: int | None
    status: str
    started_at: str | None

    @classmethod
    def from_reference(cls, ref: SessionReference) -> "InterviewContext":
        return cls(
            id=ref.id,
            duration_minutes=ref.duration_minutes,
            actual_duration_seconds=ref.actual_duration_seconds,
            status=ref.status,
            started_at=ref.started_at.isoformat() if ref.started_at else None,
        )


class PaymentContext(BaseModel):
    id: str
    amount: int
    currency: str
    receipt_number: str | None
    created_at: str | None

    @classmethod
    def from_reference(cls, ref: PaymentReference) -> "PaymentContext":
        return cls(
            id=ref.id,
            amount=ref.amount,
            currency=ref.currency,
            receipt_number=ref.receipt_number,
            created_at=ref.created_at.isoformat() if ref.created_at else None,
        )


class TransactionItem(BaseModel):
    id: int
    transaction_type: str
    amount: Decimal
    amount_display: str
    balance_after: Decimal
    reference_id: str | None
    reference_type: str | None
    metadata: dict[str, Any]
    created_at: str  # ISO8601 string
    interview: InterviewContext | None = None
    payment: PaymentContext | None = None

    @classmethod
    def from_transaction(cls, tx: CreditTransaction) -> "TransactionItem":
        sign = "+" if tx.amount > 0 else ""
        return cls(
            id=tx.id,
            transaction_type=tx.transaction_type,
            amount=tx.amount,
            amount_display=f"{sign}{credits_to_display(tx.amount)}",
            balance_after=tx.balance_after,
            reference_id=tx.reference_id,
            reference_type=tx.reference_type,
            metadata=tx.metadata,
            created_at=tx.created_at.isoformat() if tx.created_at else "",
        )


class TransactionPage(BaseModel):
    transactions: list[TransactionItem]
    total: int
    has_more: bool
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class AdjustCreditsRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    delta: Decimal = Field(..., max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=200)

    @field_validator("delta")
    @classmethod
    def _non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("delta must be non-zero")
        return v


def parse_transaction_type(value: str | None) -> str | None:
    """Validate a history filter; unknown types raise ValueError."""
    if value is None:
        return None
    return TransactionType(value).value
