"""PaymentService: order creation, once-only purchase credit, signature checks."""

import json
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from config.settings import settings
from src.ic_common.datetime_utils import utc_now
from src.ic_common.enums import LedgerErrorCode, PaymentStatus
from src.ic_common.errors import (
    InternalError,
    InvalidSignatureError,
    PaymentCreditFailedError,
    PaymentMismatchError,
    PaymentNotFoundError,
    UnknownPlanError,
)
from src.ic_common.signature import sign
from src.ic_credits.application.schemas import AddResult
from src.ic_payment.application.schemas import VerifyPaymentRequest
from src.ic_payment.application.service import PaymentService
from src.ic_payment.domain.models import Payment
from src.ic_payment.domain.plans import PRICING_PLANS, credits_for_plan, get_plan
from src.ic_payment.domain.signature import verify_payment_signature, verify_webhook_signature

KEY_SECRET = "key-secret"
WEBHOOK_SECRET = "webhook-secret"


class FakePaymentRepo:
    def __init__(self) -> None:
        self.payments: dict[str, Payment] = {}

    async def create(self, db, payment: Payment) -> Payment:
        payment = replace(payment, created_at=payment.created_at or utc_now())
        self.payments[payment.id] = payment
        return replace(payment)

    async def find_pending(
        self, db, user_id: str, plan_id: str, created_after: datetime
    ) -> Payment | None:
        for p in self.payments.values():
            if (
                p.user_id == user_id
                and p.plan_id == plan_id
                and p.status == PaymentStatus.CREATED.value
                and p.created_at > created_after
            ):
                return replace(p)
        return None

    async def get_by_order_for_update(self, db, order_id: str) -> Payment | None:
        for p in self.payments.values():
            if p.order_id == order_id:
                return replace(p)
        return None

    async def mark_paid(
        self, db, payment_id: str, provider_payment_id: str, status, payment_method
    ) -> None:
        p = self.payments[payment_id]
        p.provider_payment_id = provider_payment_id
        p.status = str(getattr(status, "value", status))
        p.payment_method = payment_method
        p.paid_at = utc_now()


@pytest.fixture(autouse=True)
def _secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "PAYMENT_KEY_SECRET", KEY_SECRET)
    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", WEBHOOK_SECRET)


@pytest.fixture
def payments() -> FakePaymentRepo:
    return FakePaymentRepo()


@pytest.fixture
def service(payments, ledger) -> PaymentService:
    return PaymentService(repo=payments, ledger=ledger)


def _captured_body(order_id: str, payment_id: str, method: str = "upi") -> bytes:
    return json.dumps({
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id, "method": method}}},
    }).encode()


class TestPlans:
    def test_catalogue(self) -> None:
        assert credits_for_plan("starter") == 160
        assert get_plan("starter").price == 14900
        assert not PRICING_PLANS["free"].purchasable

    def test_unknown_plan(self) -> None:
        with pytest.raises(UnknownPlanError):
            get_plan("enterprise")


class TestSignatures:
    def test_payment_signature(self) -> None:
        signature = sign(KEY_SECRET, b"order_1|pay_1")
        assert verify_payment_signature(KEY_SECRET, "order_1", "pay_1", signature)
        assert not verify_payment_signature(KEY_SECRET, "order_1", "pay_2", signature)
        assert not verify_payment_signature("", "order_1", "pay_1", signature)
        assert not verify_payment_signature(KEY_SECRET, "order_1", "pay_1", "")

    def test_webhook_signature(self) -> None:
        body = b'{"event": "payment.captured"}'
        assert verify_webhook_signature(WEBHOOK_SECRET, body, sign(WEBHOOK_SECRET, body))
        assert not verify_webhook_signature(WEBHOOK_SECRET, body + b" ", sign(WEBHOOK_SECRET, body))
        assert not verify_webhook_signature(WEBHOOK_SECRET, body, None)


class TestCreateOrder:
    async def test_creates_order_and_opens_account(self, service, payments, ledger, db) -> None:
        order = await service.create_order(db, "user-1", "starter")

        assert order.amount == 14900
        assert order.credits == Decimal("160.00")
        assert order.order_id.startswith("order_")
        assert order.receipt_number.startswith("rcpt_")
        assert not order.reused
        assert payments.payments[order.payment_id].status == PaymentStatus.CREATED.value
        balance = await ledger.get_balance(db, "user-1")
        assert balance.user_id == "user-1"

    async def test_recent_pending_order_is_reused(self, service, db) -> None:
        first = await service.create_order(db, "user-1", "starter")
        second = await service.create_order(db, "user-1", "starter")
        assert second.reused
        assert second.order_id == first.order_id

    async def test_old_pending_order_is_not_reused(self, service, payments, db) -> None:
        first = await service.create_order(db, "user-1", "starter")
        payments.payments[first.payment_id].created_at = utc_now() - timedelta(hours=1)
        second = await service.create_order(db, "user-1", "starter")
        assert not second.reused
        assert second.order_id != first.order_id

    async def test_free_plan_not_purchasable(self, service, db) -> None:
        with pytest.raises(UnknownPlanError):
            await service.create_order(db, "user-1", "free")


class TestCompletePayment:
    async def test_verify_credits_once(self, service, ledger, payments, db) -> None:
        order = await service.create_order(db, "user-1", "starter")
        body = VerifyPaymentRequest(
            order_id=order.order_id,
            provider_payment_id="pay_1",
            signature=sign(KEY_SECRET, f"{order.order_id}|pay_1".encode()),
        )

        first = await service.verify_client_payment(db, "user-1", body)
        second = await service.verify_client_payment(db, "user-1", body)

        assert not first.already_processed
        assert first.credits_added == Decimal("160.00")
        assert second.already_processed
        assert second.credits_added == Decimal("0.00")
        assert payments.payments[order.payment_id].status == PaymentStatus.PAID.value

        balance = await ledger.get_balance(db, "user-1")
        # welcome grant + one purchase
        assert balance.credits == Decimal(settings.WELCOME_CREDITS + 160)

    async def test_bad_signature(self, service, ledger, db) -> None:
        order = await service.create_order(db, "user-1", "starter")
        body = VerifyPaymentRequest(order_id=order.order_id, provider_payment_id="pay_1", signature="00")

        with pytest.raises(InvalidSignatureError):
            await service.verify_client_payment(db, "user-1", body)

    async def test_other_users_order(self, service, db) -> None:
        order = await service.create_order(db, "user-1", "starter")
        with pytest.raises(PaymentNotFoundError):
            await service.complete_payment(db, order.order_id, "pay_1", user_id="user-2")

    async def test_unknown_order(self, service, db) -> None:
        with pytest.raises(PaymentNotFoundError):
            await service.complete_payment(db, "order_missing", "pay_1")

    async def test_payment_id_mismatch(self, service, payments, db) -> None:
        order = await service.create_order(db, "user-1", "starter")
        payments.payments[order.payment_id].provider_payment_id = "pay_other"

        with pytest.raises(PaymentMismatchError):
            await service.complete_payment(db, order.order_id, "pay_1")
        db.rollback.assert_awaited()

    async def test_ledger_failure_marks_paid_uncredited(self, payments, db) -> None:
        ledger = AsyncMock()
        ledger.add_credits.return_value = AddResult(
            success=False, error=LedgerErrorCode.STORAGE_FAILURE, message="down"
        )
        service = PaymentService(repo=payments, ledger=ledger)
        payment = await payments.create(
            db,
            Payment(
                id="p-1",
                user_id="user-1",
                order_id="order_1",
                plan_id="starter",
                amount=14900,
                currency="INR",
                credits=Decimal("160.00"),
                status=PaymentStatus.CREATED.value,
                receipt_number="rcpt_1",
            ),
        )

        with pytest.raises(PaymentCreditFailedError) as exc_info:
            await service.complete_payment(db, payment.order_id, "pay_1")

        assert exc_info.value.data == {"payment_id": "pay_1"}
        assert payments.payments["p-1"].status == PaymentStatus.PAID_UNCREDITED.value
        db.rollback.assert_awaited()


class TestWebhook:
    async def test_captured_event_credits(self, service, ledger, db) -> None:
        order = await service.create_order(db, "user-1", "starter")
        body = _captured_body(order.order_id, "pay_9")

        ack = await service.handle_webhook(db, body, sign(WEBHOOK_SECRET, body))

        assert ack.handled
        assert ack.completion["credits_added"] == "160.00"

    async def test_webhook_after_client_verify_is_duplicate(self, service, db) -> None:
        order = await service.create_order(db, "user-1", "starter")
        await service.complete_payment(db, order.order_id, "pay_9", user_id="user-1")
        body = _captured_body(order.order_id, "pay_9")

        ack = await service.handle_webhook(db, body, sign(WEBHOOK_SECRET, body))

        assert ack.completion["already_processed"] is True

    async def test_bad_signature(self, service, db) -> None:
        body = _captured_body("order_1", "pay_1")
        with pytest.raises(InvalidSignatureError):
            await service.handle_webhook(db, body, "deadbeef")

    async def test_unconfigured_secret(self, service, db, monkeypatch) -> None:
        monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", "")
        with pytest.raises(InternalError):
            await service.handle_webhook(db, b"{}", "sig")

    async def test_other_events_ignored(self, service, db) -> None:
        body = json.dumps({"event": "payment.failed"}).encode()
        ack = await service.handle_webhook(db, body, sign(WEBHOOK_SECRET, body))
        assert ack.event == "payment.failed"
        assert not ack.handled

    async def test_malformed_body(self, service, db) -> None:
        body = b"not json"
        ack = await service.handle_webhook(db, body, sign(WEBHOOK_SECRET, body))
        assert not ack.handled
