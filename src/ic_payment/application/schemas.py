"""Pydantic schemas for ic_payment."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from src.ic_payment.domain.plans import PricingPlan


class PlanResponse(BaseModel):
    id: str
    name: str
    credits: int
    price: int
    currency: str
    interviews: str
    duration_minutes: int
    purchasable: bool

    @classmethod
    def from_plan(cls, plan: PricingPlan) -> "PlanResponse":
        return cls(
            id=plan.id,
            name=plan.name,
            credits=plan.credits,
            price=plan.price,
            currency=plan.currency,
            interviews=plan.interviews,
            duration_minutes=plan.duration_minutes,
            purchasable=plan.purchasable,
        )


class CreateOrderRequest(BaseModel):
    plan_id: str = Field("starter", min_length=1, max_length=32)


class OrderResponse(BaseModel):
    order_id: str
    payment_id: str
    receipt_number: str
    plan_id: str
    amount: int
    currency: str
    credits: Decimal
    reused: bool = False


class VerifyPaymentRequest(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=64)
    provider_payment_id: str = Field(..., min_length=1, max_length=64)
    signature: str = Field(..., min_length=1, max_length=128)


class PaymentCompletion(BaseModel):
    success: bool = True
    already_processed: bool
    payment_id: str
    order_id: str
    credits_added: Decimal
    new_balance: Decimal | None = None
    message: str


class PaymentWebhookAck(BaseModel):
    received: bool = True
    event: str
    handled: bool
    completion: dict[str, Any] | None = None
