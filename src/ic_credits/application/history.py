"""Transaction history with interview/payment context attached."""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_common.enums import ReferenceType
from src.ic_credits.application.schemas import (
    InterviewContext,
    PaymentContext,
    TransactionItem,
    TransactionPage,
)
from src.ic_credits.application.service import build_credit_repository
from src.ic_credits.domain.repository import CreditRepositoryProtocol, ReferenceLookupProtocol
from src.ic_credits.infrastructure.references import ReferenceLookupRepository

logger = logging.getLogger(__name__)


class CreditHistoryService:
    def __init__(
        self,
        repo: CreditRepositoryProtocol | None = None,
        references: ReferenceLookupProtocol | None = None,
    ) -> None:
        self._repo: CreditRepositoryProtocol = repo or build_credit_repository()
        self._references: ReferenceLookupProtocol = references or ReferenceLookupRepository()

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        limit: int,
        offset: int,
        transaction_type: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> TransactionPage:
        entries = await self._repo.list_transactions(
            db, user_id, limit, offset, transaction_type, start_date, end_date
        )
        total = await self._repo.count_transactions(
            db, user_id, transaction_type, start_date, end_date
        )
        items = [TransactionItem.from_transaction(e) for e in entries]
        await self._enrich(db, items)
        return TransactionPage(
            transactions=items,
            total=total,
            has_more=offset + len(items) < total,
            limit=limit,
            offset=offset,
        )

    async def _enrich(self, db: AsyncSession, items: list[TransactionItem]) -> None:
        session_ids = sorted({
            i.reference_id for i in items
            if i.reference_type == ReferenceType.INTERVIEW.value and i.reference_id
        })
        payment_ids = sorted({
            i.reference_id for i in items
            if i.reference_type == ReferenceType.PAYMENT.value and i.reference_id
        })
        try:
            sessions = await self._references.sessions_by_ids(db, session_ids)
            payments = await self._references.payments_by_ids(db, payment_ids)
        except SQLAlchemyError as exc:
            # History stays readable without context
            logger.warning("History enrichment failed: %s", exc)
            return

        for item in items:
            if item.reference_id in sessions and item.reference_type == ReferenceType.INTERVIEW.value:
                item.interview = InterviewContext.from_reference(sessions[item.reference_id])
            elif item.reference_id in payments and item.reference_type == ReferenceType.PAYMENT.value:
                item.payment = PaymentContext.from_reference(payments[item.reference_id])
