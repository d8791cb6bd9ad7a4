"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.ic_admin.api.router import router as admin_router
from src.ic_common.database import engine
from src.ic_common.errors import AppError
from src.ic_common.redis_client import close_redis, get_redis
from src.ic_common.response import error_response
from src.ic_credits.api.router import router as credits_router
from src.ic_gateway.middleware.request_log import RequestLogMiddleware
from src.ic_interview.api.router import close_call_provider
from src.ic_interview.api.router import router as interview_router
from src.ic_interview.api.webhook_router import router as call_webhook_router
from src.ic_payment.api.router import router as payment_router
from src.ic_payment.api.router import webhook_router as payment_webhook_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis connections. Shutdown: dispose."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await get_redis()
    logger.info("%s started: ledger_backend=%s", settings.APP_NAME, settings.LEDGER_BACKEND)
    yield
    # Shutdown
    await close_call_provider()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message, exc.data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(mode="json"),
    )


app.include_router(credits_router, prefix="/api/v1")
app.include_router(interview_router, prefix="/api/v1")
app.include_router(call_webhook_router, prefix="/api/v1")
app.include_router(payment_router, prefix="/api/v1")
app.include_router(payment_webhook_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
