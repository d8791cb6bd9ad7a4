"""Pydantic schemas for ic_interview."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from src.ic_common.enums import SettlementAction
from src.ic_interview.domain.models import InterviewSession


class StartInterviewRequest(BaseModel):
    duration_minutes: int = Field(..., ge=1, le=60)


class StartInterviewResponse(BaseModel):
    session_id: str
    call_id: str
    access_token: str
    duration_minutes: int
    credits_blocked: Decimal
    available_credits: Decimal


class EndInterviewResponse(BaseModel):
    session_id: str
    status: str
    action: SettlementAction
    settled: bool
    already_processed: bool
    actual_duration_seconds: int | None = None
    credits_deducted: Decimal | None = None
    credits_refunded: Decimal | None = None


class InterviewSessionResponse(BaseModel):
    id: str
    status: str
    credit_state: str
    duration_minutes: int
    call_id: str | None
    credits_blocked: Decimal | None
    credits_deducted: Decimal | None
    credits_refunded: Decimal | None
    actual_duration_seconds: int | None
    started_at: str | None
    ended_at: str | None
    created_at: str | None

    @classmethod
    def from_domain(cls, s: InterviewSession) -> "InterviewSessionResponse":
        return cls(
            id=s.id,
            status=s.status,
            credit_state=s.credit_state,
            duration_minutes=s.duration_minutes,
            call_id=s.call_id,
            credits_blocked=s.credits_blocked,
            credits_deducted=s.credits_deducted,
            credits_refunded=s.credits_refunded,
            actual_duration_seconds=s.actual_duration_seconds,
            started_at=s.started_at.isoformat() if s.started_at else None,
            ended_at=s.ended_at.isoformat() if s.ended_at else None,
            created_at=s.created_at.isoformat() if s.created_at else None,
        )


class CallPayload(BaseModel):
    call_id: str | None = None
    start_timestamp: int | None = None    # epoch ms
    end_timestamp: int | None = None      # epoch ms


class CallEvent(BaseModel):
    """Provider webhook body: {"event": "...", "call": {...}}. Extra fields are ignored."""
    event: str
    call: CallPayload | None = None


class CallEventAck(BaseModel):
    received: bool = True
    event: str
    handled: bool
    session_id: str | None = None
    settlement: dict[str, Any] | None = None


class StaleReleaseReport(BaseModel):
    cutoff: str
    examined: int
    released: int
    failed: list[str]
