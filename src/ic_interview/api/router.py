"""ic_interview REST API — start, end and inspect interview sessions (JWT required)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_common.database import get_db_session
from src.ic_common.response import ApiResponse, success_response
from src.ic_gateway.auth.dependencies import get_current_user_id
from src.ic_gateway.middleware.rate_limit import limit_interview_starts
from src.ic_interview.application.schemas import StartInterviewRequest
from src.ic_interview.application.service import InterviewSessionService
from src.ic_interview.infrastructure.call_provider import HttpCallProvider

router = APIRouter(prefix="/interviews", tags=["interviews"])

_provider = HttpCallProvider()
_service = InterviewSessionService(provider=_provider)


def get_interview_service() -> InterviewSessionService:
    return _service


async def close_call_provider() -> None:
    await _provider.aclose()


@router.post("")
async def start_interview(
    body: StartInterviewRequest,
    user_id: Annotated[str, Depends(limit_interview_starts)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[InterviewSessionService, Depends(get_interview_service)],
    request: Request,
) -> ApiResponse:
    data = await service.start_session(db, user_id, body.duration_minutes)
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/{session_id}/end")
async def end_interview(
    session_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[InterviewSessionService, Depends(get_interview_service)],
    request: Request,
) -> ApiResponse:
    data = await service.end_session(db, user_id, session_id)
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/{session_id}")
async def get_interview(
    session_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[InterviewSessionService, Depends(get_interview_service)],
    request: Request,
) -> ApiResponse:
    data = await service.get_session(db, user_id, session_id)
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
