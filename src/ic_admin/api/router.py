"""Admin REST API — operator-only (ADMIN_USER_IDS)."""
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_admin.application.service import AdminService
from src.ic_common.database import get_db_session
from src.ic_common.response import ApiResponse, success_response
from src.ic_credits.application.schemas import AdjustCreditsRequest
from src.ic_gateway.auth.dependencies import require_admin
from src.ic_interview.api.router import get_interview_service

router = APIRouter(prefix="/admin", tags=["admin"])
_service = AdminService(sessions=get_interview_service())


def get_admin_service() -> AdminService:
    return _service


@router.get("/invariants")
async def check_invariants(
    admin_id: Annotated[str, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AdminService, Depends(get_admin_service)],
) -> ApiResponse:
    return success_response(await service.check_invariants(db))


@router.post("/reservations/release-stale")
async def release_stale_reservations(
    admin_id: Annotated[str, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AdminService, Depends(get_admin_service)],
    older_than_minutes: int | None = Query(None, ge=1),
) -> ApiResponse:
    return success_response(await service.release_stale_reservations(db, older_than_minutes))


@router.post("/credits/adjust")
async def adjust_credits(
    body: AdjustCreditsRequest,
    admin_id: Annotated[str, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AdminService, Depends(get_admin_service)],
) -> ApiResponse:
    return success_response(await service.adjust_credits(db, admin_id, body))
