"""Domain models for ic_credits — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

# Advisory audit data only; never branched on by ledger logic.
MetadataValue = str | int | float | bool | None
Metadata = dict[str, MetadataValue]


@dataclass
class CreditAccount:
    user_id: str
    credits: Decimal           # everything the user owns
    blocked_credits: Decimal   # reserved against in-flight sessions
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def available_credits(self) -> Decimal:
        return self.credits - self.blocked_credits


@dataclass
class CreditTransaction:
    id: int                          # BIGSERIAL
    user_id: str
    transaction_type: str            # TransactionType value
    amount: Decimal                  # signed, see ic_common.enums
    balance_after: Decimal           # available_credits snapshot after op
    reference_id: str | None = None
    reference_type: str | None = None
    metadata: Metadata = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass
class SessionCredits:
    """The credit fields of an interview session, as seen by the ledger.

    ``credits_deducted`` / ``credits_refunded`` stay None until the session is
    settled; ``credit_state`` moves reserved -> settled | refunded with them.
    """

    session_id: str
    user_id: str
    status: str                      # SessionStatus value
    credit_state: str                # CreditState value
    credits_blocked: Decimal | None
    credits_deducted: Decimal | None = None
    credits_refunded: Decimal | None = None
    actual_duration_seconds: int | None = None

    @property
    def is_settled(self) -> bool:
        return self.credits_deducted is not None and self.credits_refunded is not None

    @property
    def is_unsettled(self) -> bool:
        return self.credits_deducted is None and self.credits_refunded is None

    @property
    def outstanding(self) -> Decimal:
        """What this session still holds in the account's blocked_credits."""
        blocked = self.credits_blocked or Decimal("0")
        return blocked - (self.credits_deducted or Decimal("0")) - (
            self.credits_refunded or Decimal("0")
        )


@dataclass
class SessionReference:
    """Session context shown next to a history entry."""
    id: str
    duration_minutes: int
    actual_duration_seconds: int | None
    status: str
    started_at: datetime | None


@dataclass
class PaymentReference:
    """Payment context shown next to a history entry."""
    id: str
    amount: int                      # minor currency units
    currency: str
    receipt_number: str | None
    created_at: datetime | None
