"""Repository protocol for ic_payment."""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_payment.domain.models import Payment


class PaymentRepositoryProtocol(Protocol):
    async def create(self, db: AsyncSession, payment: Payment) -> Payment: ...

    async def find_pending(
        self, db: AsyncSession, user_id: str, plan_id: str, created_after: datetime
    ) -> Payment | None: ...

    async def get_by_order_for_update(
        self, db: AsyncSession, order_id: str
    ) -> Payment | None: ...

    async def mark_paid(
        self,
        db: AsyncSession,
        payment_id: str,
        provider_payment_id: str,
        status: str,
        payment_method: str | None,
    ) -> None: ...
