"""Call-provider webhook: call_started / call_ended notifications.

The provider signs the raw body: X-Call-Signature = hex(HMAC-SHA256(
CALL_PROVIDER_WEBHOOK_SECRET, body)). Unsigned or mis-signed events are
rejected before they can touch a session, and the endpoint refuses all
events while the secret is unset. Users know their own call_id, so an
unverified call_ended could settle a session at zero duration.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ic_common.database import get_db_session
from src.ic_common.errors import InternalError, InvalidCallSignatureError
from src.ic_common.response import ApiResponse, success_response
from src.ic_common.signature import verify_hmac_signature
from src.ic_interview.api.router import get_interview_service
from src.ic_interview.application.schemas import CallEvent
from src.ic_interview.application.service import InterviewSessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def verify_call_signature(
    request: Request,
    x_call_signature: Annotated[str | None, Header()] = None,
) -> None:
    if not settings.CALL_PROVIDER_WEBHOOK_SECRET:
        logger.error("Call webhook rejected: CALL_PROVIDER_WEBHOOK_SECRET is not set")
        raise InternalError("Call webhook not configured")
    raw_body = await request.body()
    if not verify_hmac_signature(settings.CALL_PROVIDER_WEBHOOK_SECRET, raw_body, x_call_signature):
        logger.warning(
            "Call webhook signature invalid: signed=%s client=%s",
            x_call_signature is not None,
            request.client.host if request.client else None,
        )
        raise InvalidCallSignatureError()


@router.post("/call", dependencies=[Depends(verify_call_signature)])
async def call_webhook(
    event: CallEvent,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[InterviewSessionService, Depends(get_interview_service)],
    request: Request,
) -> ApiResponse:
    logger.info(
        "Call webhook: event=%s call=%s",
        event.event, event.call.call_id if event.call else None,
    )
    data = await service.handle_call_event(db, event)
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
