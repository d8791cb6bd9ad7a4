"""HttpCallProvider against httpx.MockTransport."""

import json

import httpx
import pytest

from src.ic_common.errors import CallProviderError
from src.ic_interview.infrastructure.call_provider import HttpCallProvider


def _provider(handler) -> HttpCallProvider:
    return HttpCallProvider(
        base_url="https://calls.test/v1",
        api_key="secret-key",
        timeout_s=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestCreateCall:
    async def test_posts_session_metadata(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"call_id": "call_abc", "access_token": "tok_1"})

        provider = _provider(handler)
        handle = await provider.create_call("sess-1", "user-1", 5)
        await provider.aclose()

        assert handle.call_id == "call_abc"
        assert handle.access_token == "tok_1"
        (request,) = seen
        assert request.method == "POST"
        assert request.url.path == "/v1/calls"
        assert request.headers["Authorization"] == "Bearer secret-key"
        body = json.loads(request.content)
        assert body["metadata"] == {
            "session_id": "sess-1",
            "user_id": "user-1",
            "duration_minutes": "5",
        }
        assert body["max_duration_seconds"] == 300

    async def test_http_error_status(self) -> None:
        provider = _provider(lambda request: httpx.Response(503, json={"error": "busy"}))
        with pytest.raises(CallProviderError, match="HTTP 503"):
            await provider.create_call("sess-1", "user-1", 5)

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CallProviderError):
            await _provider(handler).create_call("sess-1", "user-1", 5)

    async def test_missing_field(self) -> None:
        provider = _provider(lambda request: httpx.Response(200, json={"call_id": "call_abc"}))
        with pytest.raises(CallProviderError, match="access_token"):
            await provider.create_call("sess-1", "user-1", 5)

    async def test_non_json_body(self) -> None:
        provider = _provider(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(CallProviderError):
            await provider.create_call("sess-1", "user-1", 5)


class TestGetCall:
    async def test_reads_timestamps(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/calls/call_abc"
            return httpx.Response(
                200, json={"start_timestamp": 1_000_000, "end_timestamp": "1125000"}
            )

        times = await _provider(handler).get_call("call_abc")

        assert times.start_timestamp_ms == 1_000_000
        assert times.end_timestamp_ms == 1_125_000

    async def test_missing_timestamps(self) -> None:
        times = await _provider(lambda request: httpx.Response(200, json={"status": "ongoing"})).get_call("c")
        assert times.start_timestamp_ms is None
        assert times.end_timestamp_ms is None

    async def test_not_found(self) -> None:
        provider = _provider(lambda request: httpx.Response(404))
        with pytest.raises(CallProviderError, match="HTTP 404"):
            await provider.get_call("call_missing")
