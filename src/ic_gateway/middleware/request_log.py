"""Request logging middleware.

One line per HTTP request: method, path, status, latency and request id,
followed by the authenticated user and the interview session when the
route has them. Settlement and refund logs elsewhere carry the same
session id, so a disputed charge can be traced back to the call that
triggered it. Server errors log at WARNING.

Log format:
    INFO [POST] /api/v1/interviews/3f0c.../end → 200 (41ms) req_a1b2c3d4e5f6 user=u_1 session=3f0c...
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("ic.request")


def _context(request: Request) -> str:
    # user_id is set by get_current_user_id; path_params by the router
    parts = []
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        parts.append(f"user={user_id}")
    session_id = request.scope.get("path_params", {}).get("session_id")
    if session_id:
        parts.append(f"session={session_id}")
    return "".join(f" {p}" for p in parts)


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.request_id = f"req_{uuid.uuid4().hex[:12]}"

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "[%s] %s → %d (%.0fms) %s%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request.state.request_id,
            _context(request),
        )
        response.headers["X-Request-ID"] = request.state.request_id
        return response
