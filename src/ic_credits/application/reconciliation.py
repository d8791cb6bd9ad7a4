"""ReconciliationService — settles a session's reservation exactly once.

Both end-of-session triggers (provider webhook, client end-call) land here.
The session row is locked FOR UPDATE before the decision is made, so
whichever trigger arrives second waits, then sees the first one's recorded
settlement and takes the ALREADY_PROCESSED branch.

Transaction ownership: the caller commits. On a failed result the caller
must roll back so the ledger entries and the session fields stay together.
"""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_common.credits import ZERO
from src.ic_common.enums import (
    CreditState,
    LedgerErrorCode,
    ReferenceType,
    SettlementAction,
    SettlementTrigger,
)
from src.ic_common.errors import SessionNotFoundError
from src.ic_credits.application.schemas import ReconciliationResult
from src.ic_credits.application.service import CreditLedgerService
from src.ic_credits.domain.models import SessionCredits
from src.ic_credits.domain.reconciliation import (
    SettlementDecision,
    clamp_settlement,
    decide_settlement,
)
from src.ic_credits.domain.repository import SessionCreditsRepositoryProtocol
from src.ic_credits.infrastructure.session_credits import SessionCreditsRepository

logger = logging.getLogger(__name__)


class ReconciliationService:
    def __init__(
        self,
        ledger: CreditLedgerService | None = None,
        sessions: SessionCreditsRepositoryProtocol | None = None,
    ) -> None:
        self._ledger = ledger or CreditLedgerService()
        self._sessions: SessionCreditsRepositoryProtocol = sessions or SessionCreditsRepository()

    async def reconcile(
        self,
        db: AsyncSession,
        session_id: str,
        elapsed_seconds: int | None,
        trigger: SettlementTrigger,
    ) -> ReconciliationResult:
        credits = await self._sessions.lock_session_credits(db, session_id)
        if credits is None:
            raise SessionNotFoundError(session_id)

        decision = decide_settlement(credits, elapsed_seconds)
        logger.info(
            "Reconciling session=%s trigger=%s action=%s reason=%s",
            session_id, trigger.value, decision.action.value, decision.reason,
        )
        metadata = {"trigger": trigger.value, "elapsed_seconds": elapsed_seconds}

        if decision.action in (SettlementAction.ALREADY_PROCESSED, SettlementAction.CONSISTENT):
            return self._result(credits, decision.action, True,
                                credits.credits_deducted, credits.credits_refunded)

        if decision.action == SettlementAction.NOTHING_TO_SETTLE:
            await self._sessions.record_settlement(db, session_id, ZERO, ZERO, CreditState.REFUNDED)
            return self._result(credits, decision.action, True, ZERO, ZERO)

        if decision.action == SettlementAction.MANUAL_REVIEW:
            logger.error(
                "Settlement needs manual review: session=%s user=%s blocked=%s trigger=%s",
                session_id, credits.user_id, decision.blocked, trigger.value,
            )
            return self._result(
                credits, decision.action, False,
                error=LedgerErrorCode.INCONSISTENT_SETTLEMENT,
                message="No usage data; reservation left for review",
            )

        if decision.action == SettlementAction.REFUND_ALL:
            return await self._refund_all(db, credits, decision, metadata)

        if decision.action == SettlementAction.RECALCULATE:
            return await self._recalculate(db, credits, decision, metadata)

        return await self._settle(db, credits, decision, metadata)

    async def _settle(
        self,
        db: AsyncSession,
        credits: SessionCredits,
        decision: SettlementDecision,
        metadata: dict,
    ) -> ReconciliationResult:
        result = await self._ledger.deduct_and_settle(
            db,
            credits.user_id,
            decision.blocked,
            decision.actual_credits,
            credits.session_id,
            metadata,
            commit=False,
        )
        if not result.success:
            return self._result(credits, decision.action, False,
                                error=result.error, message=result.message)
        await self._sessions.record_settlement(
            db, credits.session_id, result.credits_deducted, result.credits_refunded,
            CreditState.SETTLED,
        )
        return self._result(credits, decision.action, True,
                            result.credits_deducted, result.credits_refunded)

    async def _refund_all(
        self,
        db: AsyncSession,
        credits: SessionCredits,
        decision: SettlementDecision,
        metadata: dict,
    ) -> ReconciliationResult:
        result = await self._ledger.refund_blocked_credits(
            db,
            credits.user_id,
            decision.blocked,
            credits.session_id,
            reason="zero_duration",
            metadata=metadata,
            commit=False,
        )
        if not result.success:
            return self._result(credits, decision.action, False,
                                error=result.error, message=result.message)
        await self._sessions.record_settlement(
            db, credits.session_id, ZERO, decision.blocked, CreditState.REFUNDED
        )
        return self._result(credits, decision.action, True, ZERO, decision.blocked)

    async def _recalculate(
        self,
        db: AsyncSession,
        credits: SessionCredits,
        decision: SettlementDecision,
        metadata: dict,
    ) -> ReconciliationResult:
        """Repair recorded fields that do not add up to what was blocked.

        An overcharge is returned to the user as an adjustment entry. An
        undercharge is not collected after the fact; the record is corrected
        to what was actually charged.
        """
        if decision.actual_credits is None:
            logger.error(
                "Inconsistent settlement without usage data: session=%s user=%s %s",
                credits.session_id, credits.user_id, decision.reason,
            )
            return self._result(
                credits, decision.action, False,
                error=LedgerErrorCode.INCONSISTENT_SETTLEMENT,
                message=decision.reason,
            )

        recorded: Decimal = credits.credits_deducted or ZERO
        correct = clamp_settlement(decision.blocked, decision.actual_credits).deducted
        overcharge = recorded - correct
        logger.error(
            "Inconsistent settlement: session=%s user=%s %s recorded=%s correct=%s",
            credits.session_id, credits.user_id, decision.reason, recorded, correct,
        )

        if overcharge > 0:
            adjusted = await self._ledger.adjust_credits(
                db,
                credits.user_id,
                overcharge,
                reason="settlement_recalculated",
                reference_id=credits.session_id,
                reference_type=ReferenceType.INTERVIEW,
                metadata=metadata,
                commit=False,
            )
            if not adjusted.success:
                return self._result(credits, decision.action, False,
                                    error=adjusted.error, message=adjusted.message)

        charged = min(recorded, correct)
        refunded = decision.blocked - charged
        await self._sessions.record_settlement(
            db, credits.session_id, charged, refunded, CreditState.SETTLED
        )
        return self._result(credits, decision.action, True, charged, refunded)

    @staticmethod
    def _result(
        credits: SessionCredits,
        action: SettlementAction,
        success: bool,
        deducted: Decimal | None = None,
        refunded: Decimal | None = None,
        error: LedgerErrorCode | None = None,
        message: str | None = None,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            session_id=credits.session_id,
            action=action,
            success=success,
            credits_deducted=deducted,
            credits_refunded=refunded,
            error=error,
            message=message,
        )
