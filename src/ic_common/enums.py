"""Global enums — must match DB CHECK constraints exactly.

Ledger sign convention for ``credit_transactions.amount``:
  purchase    +amount    credits grow, available grows
  block       -amount    reservation, available shrinks
  deduct      -amount    permanent charge taken out of a released reservation;
                         available is unchanged by this entry
  refund      +amount    unused reservation returned to available
  adjustment  +/-amount  correction applied to credits and available

``balance_after`` is always ``available_credits`` after the entry.
"""

from enum import Enum


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    BLOCK = "block"
    DEDUCT = "deduct"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class ReferenceType(str, Enum):
    INTERVIEW = "interview"
    PAYMENT = "payment"
    MANUAL = "manual"


class SessionStatus(str, Enum):
    CREATED = "created"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class CreditState(str, Enum):
    """Settlement state of a session's credit sub-record."""
    RESERVED = "reserved"
    SETTLED = "settled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    CREATED = "created"
    PAID = "paid"
    PAID_UNCREDITED = "paid_uncredited"  # captured by the gateway, ledger update failed
    FAILED = "failed"


class LedgerErrorCode(str, Enum):
    INSUFFICIENT_CREDITS = "insufficient_credits"
    NOT_FOUND = "not_found"
    ALREADY_PROCESSED = "already_processed"
    INCONSISTENT_SETTLEMENT = "inconsistent_settlement"
    STORAGE_FAILURE = "storage_failure"
    INVALID_AMOUNT = "invalid_amount"


class SettlementAction(str, Enum):
    """Reconciliation decisions, in the order the policy table evaluates them."""
    ALREADY_PROCESSED = "already_processed"
    CONSISTENT = "consistent"
    RECALCULATE = "recalculate"
    SETTLE = "settle"
    REFUND_ALL = "refund_all"
    MANUAL_REVIEW = "manual_review"
    NOTHING_TO_SETTLE = "nothing_to_settle"


class SettlementTrigger(str, Enum):
    WEBHOOK = "webhook"
    END_CALL = "end_call"
    STALE_SWEEP = "stale_sweep"
