"""Unit tests for the session-end settlement policy (pure decision logic)."""

from decimal import Decimal

import pytest

from src.ic_common.enums import CreditState, SessionStatus, SettlementAction
from src.ic_credits.domain.models import SessionCredits
from src.ic_credits.domain.reconciliation import (
    clamp_settlement,
    decide_settlement,
    is_conserved,
)


def _credits(
    status: str = SessionStatus.STARTED.value,
    blocked: str | None = "50",
    deducted: str | None = None,
    refunded: str | None = None,
) -> SessionCredits:
    return SessionCredits(
        session_id="sess-1",
        user_id="user-1",
        status=status,
        credit_state=CreditState.RESERVED.value,
        credits_blocked=Decimal(blocked) if blocked is not None else None,
        credits_deducted=Decimal(deducted) if deducted is not None else None,
        credits_refunded=Decimal(refunded) if refunded is not None else None,
    )


class TestClampSettlement:
    def test_actual_within_reservation(self) -> None:
        split = clamp_settlement(Decimal("50"), Decimal("22.5"))
        assert split.deducted == Decimal("22.50")
        assert split.refunded == Decimal("27.50")

    def test_overrun_is_capped_at_blocked(self) -> None:
        split = clamp_settlement(Decimal("50"), Decimal("52.5"))
        assert split.deducted == Decimal("50.00")
        assert split.refunded == Decimal("0.00")

    def test_negative_actual_charges_nothing(self) -> None:
        split = clamp_settlement(Decimal("50"), Decimal("-3"))
        assert split.deducted == Decimal("0.00")
        assert split.refunded == Decimal("50.00")

    @pytest.mark.parametrize("actual", ["0", "0.01", "25", "49.99", "50", "50.01", "999"])
    def test_split_always_sums_to_blocked(self, actual: str) -> None:
        split = clamp_settlement(Decimal("50"), Decimal(actual))
        assert split.deducted + split.refunded == Decimal("50.00")
        assert Decimal("0") <= split.deducted <= Decimal("50")


class TestDecideSettlement:
    def test_completed_with_deduction_is_already_processed(self) -> None:
        credits = _credits(SessionStatus.COMPLETED.value, deducted="22.5", refunded="27.5")
        decision = decide_settlement(credits, 125)
        assert decision.action == SettlementAction.ALREADY_PROCESSED

    def test_already_processed_wins_over_inconsistent_fields(self) -> None:
        credits = _credits(SessionStatus.COMPLETED.value, deducted="40", refunded="40")
        assert decide_settlement(credits, 125).action == SettlementAction.ALREADY_PROCESSED

    def test_settled_and_conserved_is_consistent(self) -> None:
        credits = _credits(deducted="22.5", refunded="27.5")
        assert decide_settlement(credits, 125).action == SettlementAction.CONSISTENT

    def test_settled_but_not_conserved_is_recalculate(self) -> None:
        credits = _credits(deducted="30", refunded="30")
        decision = decide_settlement(credits, 125)
        assert decision.action == SettlementAction.RECALCULATE
        assert decision.actual_credits == Decimal("22.50")

    def test_recalculate_without_elapsed_has_no_actual(self) -> None:
        credits = _credits(deducted="30", refunded="30")
        decision = decide_settlement(credits, None)
        assert decision.action == SettlementAction.RECALCULATE
        assert decision.actual_credits is None

    def test_half_set_fields_are_recalculate(self) -> None:
        credits = _credits(deducted="22.5", refunded=None)
        assert decide_settlement(credits, 125).action == SettlementAction.RECALCULATE

    def test_unsettled_with_usage_is_settle(self) -> None:
        decision = decide_settlement(_credits(), 125)
        assert decision.action == SettlementAction.SETTLE
        assert decision.blocked == Decimal("50.00")
        assert decision.actual_credits == Decimal("22.50")

    def test_zero_elapsed_is_refund_all(self) -> None:
        decision = decide_settlement(_credits(), 0)
        assert decision.action == SettlementAction.REFUND_ALL
        assert decision.actual_credits == Decimal("0.00")

    def test_unknown_elapsed_is_manual_review(self) -> None:
        assert decide_settlement(_credits(), None).action == SettlementAction.MANUAL_REVIEW

    def test_nothing_blocked(self) -> None:
        assert decide_settlement(_credits(blocked=None), 125).action == (
            SettlementAction.NOTHING_TO_SETTLE
        )
        assert decide_settlement(_credits(blocked="0"), None).action == (
            SettlementAction.NOTHING_TO_SETTLE
        )


def test_is_conserved_tolerance() -> None:
    assert is_conserved(_credits(deducted="22.5", refunded="27.5"))
    assert not is_conserved(_credits(deducted="22.5", refunded="27.49"))
