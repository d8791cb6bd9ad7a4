"""Admin application service — ledger audit and operator corrections."""
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_common.enums import LedgerErrorCode
from src.ic_common.errors import (
    CreditAccountNotFoundError,
    InsufficientCreditsError,
    LedgerOperationError,
)
from src.ic_credits.application.schemas import AdjustCreditsRequest
from src.ic_credits.application.service import CreditLedgerService
from src.ic_credits.domain.invariants import verify_ledger_invariants
from src.ic_interview.application.service import InterviewSessionService

logger = logging.getLogger(__name__)


class AdminService:
    def __init__(
        self,
        ledger: CreditLedgerService | None = None,
        sessions: InterviewSessionService | None = None,
    ) -> None:
        self._ledger = ledger or CreditLedgerService()
        self._sessions = sessions or InterviewSessionService(ledger=self._ledger)

    async def check_invariants(self, db: AsyncSession) -> dict[str, Any]:
        violations = await verify_ledger_invariants(db)
        return {"ok": not violations, "violations": violations}

    async def release_stale_reservations(
        self, db: AsyncSession, older_than_minutes: int | None
    ) -> dict[str, Any]:
        report = await self._sessions.release_stale_reservations(db, older_than_minutes)
        return report.model_dump(mode="json")

    async def adjust_credits(
        self, db: AsyncSession, operator_id: str, body: AdjustCreditsRequest
    ) -> dict[str, Any]:
        result = await self._ledger.adjust_credits(
            db,
            body.user_id,
            body.delta,
            reason=body.reason,
            metadata={"operator": operator_id},
        )
        if not result.success:
            if result.error == LedgerErrorCode.INSUFFICIENT_CREDITS:
                balance = await self._ledger.get_balance(db, body.user_id)
                raise InsufficientCreditsError(-body.delta, balance.available_credits)
            if result.error == LedgerErrorCode.NOT_FOUND:
                raise CreditAccountNotFoundError(body.user_id)
            raise LedgerOperationError(
                result.error.value if result.error else "storage_failure", result.message or ""
            )
        logger.warning(
            "Manual credit adjustment: operator=%s user=%s delta=%s reason=%s",
            operator_id, body.user_id, body.delta, body.reason,
        )
        return result.model_dump(mode="json")
