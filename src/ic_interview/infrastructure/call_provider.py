"""HttpCallProvider — voice-call provider client over httpx.

POST {CALL_PROVIDER_URL}/calls        -> {"call_id", "access_token"}
GET  {CALL_PROVIDER_URL}/calls/{id}   -> {"start_timestamp", "end_timestamp"} (epoch ms)

Transport errors, timeouts and non-2xx answers all surface as
CallProviderError so the session flow has one thing to catch.
"""

import logging
from typing import Any

import httpx

from config.settings import settings
from src.ic_common.errors import CallProviderError
from src.ic_interview.domain.models import CallHandle, CallTimes

logger = logging.getLogger(__name__)


class HttpCallProvider:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        key = settings.CALL_PROVIDER_API_KEY if api_key is None else api_key
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.CALL_PROVIDER_URL).rstrip("/"),
            headers={"Authorization": f"Bearer {key}"},
            timeout=httpx.Timeout(timeout_s or settings.CALL_PROVIDER_TIMEOUT_SECONDS),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_call(
        self, session_id: str, user_id: str, duration_minutes: int
    ) -> CallHandle:
        payload = await self._request(
            "POST",
            "/calls",
            json={
                "metadata": {
                    "session_id": session_id,
                    "user_id": user_id,
                    "duration_minutes": str(duration_minutes),
                },
                "max_duration_seconds": duration_minutes * 60,
            },
        )
        try:
            return CallHandle(call_id=str(payload["call_id"]), access_token=str(payload["access_token"]))
        except KeyError as exc:
            raise CallProviderError(f"missing field {exc} in create-call response") from None

    async def get_call(self, call_id: str) -> CallTimes:
        payload = await self._request("GET", f"/calls/{call_id}")
        return CallTimes(
            start_timestamp_ms=_as_int(payload.get("start_timestamp")),
            end_timestamp_ms=_as_int(payload.get("end_timestamp")),
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Call provider %s %s -> %d", method, path, exc.response.status_code
            )
            raise CallProviderError(f"HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Call provider %s %s failed: %s", method, path, exc)
            raise CallProviderError(type(exc).__name__) from exc
        if not isinstance(data, dict):
            raise CallProviderError("unexpected response body")
        return data


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
