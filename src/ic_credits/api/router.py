"""ic_credits REST API — balance, history and duration check, all require JWT authentication."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.ic_common.database import get_db_session
from src.ic_common.enums import TransactionType
from src.ic_common.response import ApiResponse, success_response
from src.ic_credits.application.history import CreditHistoryService
from src.ic_credits.application.service import CreditLedgerService
from src.ic_gateway.auth.dependencies import get_current_user_id

router = APIRouter(prefix="/credits", tags=["credits"])

_service = CreditLedgerService()
_history = CreditHistoryService(repo=_service.repo)


def get_ledger_service() -> CreditLedgerService:
    return _service


def get_history_service() -> CreditHistoryService:
    return _history


@router.get("/balance")
async def get_balance(
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[CreditLedgerService, Depends(get_ledger_service)],
    request: Request,
) -> ApiResponse:
    data = await service.get_balance(db, user_id, open_if_missing=True)
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/transactions")
async def list_transactions(
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    history: Annotated[CreditHistoryService, Depends(get_history_service)],
    request: Request,
    limit: int = Query(50, ge=1, le=100, description="Items per page"),
    offset: int = Query(0, ge=0),
    type: TransactionType | None = Query(None, description="Filter by transaction type"),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
) -> ApiResponse:
    data = await history.list_transactions(
        db,
        user_id,
        limit,
        offset,
        type.value if type else None,
        start_date,
        end_date,
    )
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/duration-check")
async def check_duration(
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[CreditLedgerService, Depends(get_ledger_service)],
    request: Request,
    minutes: int = Query(..., ge=1, le=60),
) -> ApiResponse:
    data = await service.check_duration(db, user_id, minutes)
    resp = success_response(data.model_dump(mode="json"))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
