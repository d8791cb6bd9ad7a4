"""PaymentService — orders and the once-only purchase credit.

AddCredits trusts its caller on idempotency; this service is that caller.
complete_payment locks the payment row, refuses to credit an order twice,
and writes the 'paid' status in the same transaction as the purchase entry.
"""

import json
import logging
import uuid
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ic_common.credits import ZERO, to_credits
from src.ic_common.datetime_utils import utc_now
from src.ic_common.enums import PaymentStatus
from src.ic_common.errors import (
    InternalError,
    InvalidSignatureError,
    PaymentCreditFailedError,
    PaymentMismatchError,
    PaymentNotFoundError,
    UnknownPlanError,
)
from src.ic_credits.application.service import CreditLedgerService
from src.ic_payment.application.schemas import (
    OrderResponse,
    PaymentCompletion,
    PaymentWebhookAck,
    VerifyPaymentRequest,
)
from src.ic_payment.domain.models import Payment
from src.ic_payment.domain.plans import get_plan
from src.ic_payment.domain.repository import PaymentRepositoryProtocol
from src.ic_payment.domain.signature import verify_payment_signature, verify_webhook_signature
from src.ic_payment.infrastructure.persistence import PaymentRepository

logger = logging.getLogger(__name__)

# A pending order younger than this is handed out again instead of a new one
PENDING_ORDER_REUSE = timedelta(minutes=10)


def new_receipt_number() -> str:
    return f"rcpt_{uuid.uuid4().hex[:12]}"


def new_order_id() -> str:
    return f"order_{uuid.uuid4().hex[:14]}"


class PaymentService:
    def __init__(
        self,
        repo: PaymentRepositoryProtocol | None = None,
        ledger: CreditLedgerService | None = None,
    ) -> None:
        self._repo: PaymentRepositoryProtocol = repo or PaymentRepository()
        self._ledger = ledger or CreditLedgerService()

    async def create_order(
        self, db: AsyncSession, user_id: str, plan_id: str
    ) -> OrderResponse:
        plan = get_plan(plan_id)
        if not plan.purchasable:
            raise UnknownPlanError(plan_id)

        # The purchase credit needs the balance row to exist
        await self._ledger.get_balance(db, user_id, open_if_missing=True)

        try:
            pending = await self._repo.find_pending(
                db, user_id, plan.id, utc_now() - PENDING_ORDER_REUSE
            )
            if pending is not None:
                logger.info("Reusing pending order: user=%s order=%s", user_id, pending.order_id)
                return self._order_response(pending, reused=True)

            payment = await self._repo.create(
                db,
                Payment(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    order_id=new_order_id(),
                    plan_id=plan.id,
                    amount=plan.price,
                    currency=plan.currency,
                    credits=to_credits(plan.credits),
                    status=PaymentStatus.CREATED.value,
                    receipt_number=new_receipt_number(),
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Order created: user=%s order=%s plan=%s amount=%d",
            user_id, payment.order_id, plan.id, payment.amount,
        )
        return self._order_response(payment, reused=False)

    async def verify_client_payment(
        self, db: AsyncSession, user_id: str, body: VerifyPaymentRequest
    ) -> PaymentCompletion:
        if not verify_payment_signature(
            settings.PAYMENT_KEY_SECRET, body.order_id, body.provider_payment_id, body.signature
        ):
            logger.error(
                "Payment signature verification failed: user=%s order=%s payment=%s",
                user_id, body.order_id, body.provider_payment_id,
            )
            raise InvalidSignatureError()
        return await self.complete_payment(
            db, body.order_id, body.provider_payment_id, user_id=user_id
        )

    async def handle_webhook(
        self, db: AsyncSession, raw_body: bytes, signature: str | None
    ) -> PaymentWebhookAck:
        if not settings.PAYMENT_WEBHOOK_SECRET:
            raise InternalError("Payment webhook not configured")
        if not verify_webhook_signature(settings.PAYMENT_WEBHOOK_SECRET, raw_body, signature):
            logger.error("Payment webhook signature invalid")
            raise InvalidSignatureError()

        try:
            event = json.loads(raw_body)
            event_type = str(event.get("event", ""))
        except (ValueError, AttributeError):
            logger.warning("Payment webhook body is not a JSON object")
            return PaymentWebhookAck(event="", handled=False)

        if event_type != "payment.captured":
            logger.info("Ignoring payment webhook event: %s", event_type)
            return PaymentWebhookAck(event=event_type, handled=False)

        entity = event.get("payload", {}).get("payment", {}).get("entity", {})
        order_id = entity.get("order_id")
        provider_payment_id = entity.get("id")
        if not order_id or not provider_payment_id:
            logger.warning("payment.captured without order/payment id")
            return PaymentWebhookAck(event=event_type, handled=False)

        completion = await self.complete_payment(
            db, order_id, provider_payment_id, payment_method=entity.get("method")
        )
        return PaymentWebhookAck(
            event=event_type, handled=True, completion=completion.model_dump(mode="json")
        )

    async def complete_payment(
        self,
        db: AsyncSession,
        order_id: str,
        provider_payment_id: str,
        user_id: str | None = None,
        payment_method: str | None = None,
    ) -> PaymentCompletion:
        """Credit a captured payment exactly once.

        Raises:
            PaymentNotFoundError: unknown order, or order of another user.
            PaymentMismatchError: the order already carries a different payment id.
            PaymentCreditFailedError: payment recorded, credits not added.
        """
        try:
            payment = await self._repo.get_by_order_for_update(db, order_id)
            if payment is None or (user_id is not None and payment.user_id != user_id):
                raise PaymentNotFoundError(order_id)

            if payment.status == PaymentStatus.PAID:
                await db.commit()
                logger.info("Payment already processed: order=%s", order_id)
                return PaymentCompletion(
                    already_processed=True,
                    payment_id=payment.id,
                    order_id=order_id,
                    credits_added=ZERO,
                    message="Payment already processed",
                )

            if payment.provider_payment_id and payment.provider_payment_id != provider_payment_id:
                logger.error(
                    "Payment id mismatch: order=%s stored=%s got=%s",
                    order_id, payment.provider_payment_id, provider_payment_id,
                )
                raise PaymentMismatchError()

            added = await self._ledger.add_credits(
                db,
                payment.user_id,
                payment.credits,
                payment.id,
                {"order_id": order_id, "plan_id": payment.plan_id, "receipt": payment.receipt_number},
                commit=False,
            )
            if added.success:
                await self._repo.mark_paid(
                    db, payment.id, provider_payment_id, PaymentStatus.PAID, payment_method
                )
                await db.commit()
        except Exception:
            await db.rollback()
            raise

        if not added.success:
            await self._record_uncredited(db, payment, provider_payment_id, payment_method, added.error)
            raise PaymentCreditFailedError(provider_payment_id)

        logger.info(
            "Payment credited: user=%s order=%s credits=%s balance=%s",
            payment.user_id, order_id, added.credits_added, added.new_balance,
        )
        return PaymentCompletion(
            already_processed=False,
            payment_id=payment.id,
            order_id=order_id,
            credits_added=added.credits_added,
            new_balance=added.new_balance,
            message="Payment verified and credits added",
        )

    async def _record_uncredited(
        self,
        db: AsyncSession,
        payment: Payment,
        provider_payment_id: str,
        payment_method: str | None,
        error: object,
    ) -> None:
        await db.rollback()
        logger.critical(
            "Payment captured but credits NOT added: user=%s order=%s payment=%s error=%s",
            payment.user_id, payment.order_id, provider_payment_id, error,
        )
        try:
            await self._repo.mark_paid(
                db, payment.id, provider_payment_id, PaymentStatus.PAID_UNCREDITED, payment_method
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    @staticmethod
    def _order_response(payment: Payment, reused: bool) -> OrderResponse:
        return OrderResponse(
            order_id=payment.order_id,
            payment_id=payment.id,
            receipt_number=payment.receipt_number,
            plan_id=payment.plan_id,
            amount=payment.amount,
            currency=payment.currency,
            credits=payment.credits,
            reused=reused,
        )
