"""ic_payment REST API — plans, orders and payment completion.

/payments/* require JWT authentication. /webhooks/payment is called by the
payment gateway and authenticated by its HMAC signature header instead.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_common.database import get_db_session
from src.ic_common.response import ApiResponse, success_response
from src.ic_gateway.auth.dependencies import get_current_user_id
from src.ic_payment.application.schemas import (
    CreateOrderRequest,
    PlanResponse,
    VerifyPaymentRequest,
)
from src.ic_payment.application.service import PaymentService
from src.ic_payment.domain.plans import PRICING_PLANS

router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_service = PaymentService()


def get_payment_service() -> PaymentService:
    return _service


@router.get("/plans")
async def list_plans(request: Request) -> ApiResponse:
    data = [PlanResponse.from_plan(p).model_dump() for p in PRICING_PLANS.values()]
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/orders")
async def create_order(
    body: CreateOrderRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
    request: Request,
) -> ApiResponse:
    data = await service.create_order(db, user_id, body.plan_id)
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/verify")
async def verify_payment(
    body: VerifyPaymentRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
    request: Request,
) -> ApiResponse:
    data = await service.verify_client_payment(db, user_id, body)
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@webhook_router.post("/payment")
async def payment_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
    x_payment_signature: Annotated[str | None, Header()] = None,
) -> ApiResponse:
    raw_body = await request.body()
    data = await service.handle_webhook(db, raw_body, x_payment_signature)
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
