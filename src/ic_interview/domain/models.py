"""Domain models for ic_interview — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass
class InterviewSession:
    id: str                               # UUID
    user_id: str
    duration_minutes: int
    status: str                           # SessionStatus value
    credit_state: str                     # CreditState value
    credits_blocked: Decimal | None = None
    credits_deducted: Decimal | None = None
    credits_refunded: Decimal | None = None
    call_id: str | None = None
    actual_duration_seconds: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class CallHandle:
    """What the client needs to join a freshly created call."""
    call_id: str
    access_token: str


@dataclass
class CallTimes:
    start_timestamp_ms: int | None
    end_timestamp_ms: int | None


def compute_elapsed_seconds(times: CallTimes | None) -> int | None:
    """floor((end - start) / 1000), or None when either side is missing.

    A clock skew that puts end before start is treated as missing data.
    """
    if times is None or times.start_timestamp_ms is None or times.end_timestamp_ms is None:
        return None
    delta_ms = times.end_timestamp_ms - times.start_timestamp_ms
    if delta_ms < 0:
        return None
    return delta_ms // 1000
