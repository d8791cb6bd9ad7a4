"""Session-end reconciliation policy — pure decision logic.

Invoked once per session end by whichever trigger arrives first (provider
webhook or the client's end-call fallback). Rows are evaluated in order;
the first match wins:

  1. status completed and credits_deducted set   -> ALREADY_PROCESSED
  2. deducted and refunded both set               -> CONSISTENT, or RECALCULATE
                                                     when deducted + refunded != blocked
  3. both unset, elapsed known and > 0            -> SETTLE
  4. both unset, elapsed known and == 0           -> REFUND_ALL (call never connected)
  5. both unset, elapsed unknown                  -> MANUAL_REVIEW

A session with nothing blocked is NOTHING_TO_SETTLE. Half-set fields
(exactly one of deducted/refunded) are treated like row 2 with the missing
side as 0, so they always surface as RECALCULATE.
"""

from dataclasses import dataclass
from decimal import Decimal

from src.ic_common.credits import ZERO, credits_equal, to_credits
from src.ic_common.enums import SessionStatus, SettlementAction
from src.ic_credits.domain.converter import credits_from_elapsed_seconds
from src.ic_credits.domain.models import SessionCredits


@dataclass
class SettlementDecision:
    action: SettlementAction
    blocked: Decimal
    actual_credits: Decimal | None = None
    reason: str = ""


@dataclass
class SettlementSplit:
    deducted: Decimal
    refunded: Decimal


def clamp_settlement(blocked: Decimal, actual: Decimal) -> SettlementSplit:
    """Never charge more than was reserved; the rest goes back to the user."""
    blocked = to_credits(blocked)
    deducted = min(to_credits(max(actual, ZERO)), blocked)
    return SettlementSplit(deducted=deducted, refunded=blocked - deducted)


def is_conserved(credits: SessionCredits) -> bool:
    """deducted + refunded == blocked within tolerance."""
    total = (credits.credits_deducted or ZERO) + (credits.credits_refunded or ZERO)
    return credits_equal(total, credits.credits_blocked or ZERO)


def decide_settlement(
    credits: SessionCredits, elapsed_seconds: int | None
) -> SettlementDecision:
    blocked = to_credits(credits.credits_blocked or ZERO)

    if credits.status == SessionStatus.COMPLETED and credits.credits_deducted is not None:
        return SettlementDecision(
            SettlementAction.ALREADY_PROCESSED, blocked, reason="settled by another trigger"
        )

    if not credits.is_unsettled:
        if credits.is_settled and is_conserved(credits):
            return SettlementDecision(
                SettlementAction.CONSISTENT, blocked, reason="settlement verified"
            )
        actual = (
            credits_from_elapsed_seconds(elapsed_seconds)
            if elapsed_seconds is not None
            else None
        )
        return SettlementDecision(
            SettlementAction.RECALCULATE,
            blocked,
            actual_credits=actual,
            reason=(
                f"deducted={credits.credits_deducted} + refunded={credits.credits_refunded}"
                f" != blocked={blocked}"
            ),
        )

    if blocked <= ZERO:
        return SettlementDecision(
            SettlementAction.NOTHING_TO_SETTLE, blocked, reason="no credits blocked"
        )

    if elapsed_seconds is None:
        return SettlementDecision(
            SettlementAction.MANUAL_REVIEW, blocked, reason="no usage data"
        )

    if elapsed_seconds == 0:
        return SettlementDecision(
            SettlementAction.REFUND_ALL, blocked, actual_credits=ZERO, reason="zero duration"
        )

    return SettlementDecision(
        SettlementAction.SETTLE,
        blocked,
        actual_credits=credits_from_elapsed_seconds(elapsed_seconds),
        reason=f"elapsed={elapsed_seconds}s",
    )
