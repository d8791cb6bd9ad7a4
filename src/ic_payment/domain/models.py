"""Domain models for ic_payment — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass
class Payment:
    id: str                                # UUID; the ledger's purchase reference_id
    user_id: str
    order_id: str
    plan_id: str
    amount: int                            # paise
    currency: str
    credits: Decimal
    status: str                            # PaymentStatus value
    receipt_number: str
    provider_payment_id: str | None = None
    payment_method: str | None = None
    paid_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
