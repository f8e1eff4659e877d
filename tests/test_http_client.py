"""
Tests for the HTTP transport.
"""

import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from screepsapi.adapters.http_client import ClientConfig, HTTPResponse, ScreepsHTTPClient
from screepsapi.adapters.rate_limit import EndpointClass
from screepsapi.core.exceptions import APIError, NetworkError, RateLimitError, UnauthorizedError

BASE_URL = "https://screeps.com:443/"
FAST_RETRIES = ClientConfig(throttle_base_delay=0.001, throttle_max_delay=0.001)


def make_response(status=200, body=None, headers=None, text=None):
    response = MagicMock()
    response.status = status
    response.headers = {"Content-Type": "application/json; charset=utf-8", **(headers or {})}
    if text is None:
        text = json.dumps({"ok": 1} if body is None else body)
    response.text = AsyncMock(return_value=text)
    return response


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_default_values(self):
        config = ClientConfig()

        assert config.max_throttle_retries == 5
        assert config.throttle_base_delay == 0.1
        assert config.throttle_max_delay == 5.0

    def test_throttle_delay_doubles_and_caps(self):
        client = ScreepsHTTPClient(BASE_URL)

        assert client._calculate_delay(1) == 0.2
        assert client._calculate_delay(4) == 1.6
        assert client._calculate_delay(6) == 5.0


class TestRequests:
    """Tests for request building and response handling."""

    @pytest.mark.asyncio
    async def test_get_sends_query_and_token(self):
        """Test GET bodies become query parameters and the token is attached."""
        async with ScreepsHTTPClient(BASE_URL) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                mock_request.return_value.__aenter__.return_value = make_response(
                    body={"ok": 1, "data": "x"}
                )

                res = await client.request(
                    "GET",
                    "/api/game/room-terrain",
                    {"room": "W1N1", "encoded": True, "rooms": ["W1N1"], "skip": None},
                    token="tok",
                )

        assert isinstance(res, HTTPResponse)
        assert res.status == 200
        assert res.data == {"ok": 1, "data": "x"}

        args, kwargs = mock_request.call_args
        assert args == ("GET", "https://screeps.com:443/api/game/room-terrain")
        assert kwargs["params"] == {"room": "W1N1", "encoded": "true", "rooms": '["W1N1"]'}
        assert kwargs["headers"]["X-Token"] == "tok"
        assert kwargs["headers"]["X-Username"] == "tok"

    @pytest.mark.asyncio
    async def test_post_sends_json(self):
        async with ScreepsHTTPClient(BASE_URL) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                mock_request.return_value.__aenter__.return_value = make_response()

                await client.request("post", "/api/user/console", {"expression": "1+1"})

        args, kwargs = mock_request.call_args
        assert args[0] == "POST"
        assert kwargs["json"] == {"expression": "1+1"}
        assert "X-Token" not in kwargs["headers"]

    @pytest.mark.asyncio
    async def test_headers_lowercased_and_rate_limits_updated(self):
        reset = int(time.time()) + 60
        async with ScreepsHTTPClient(BASE_URL) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                mock_request.return_value.__aenter__.return_value = make_response(
                    headers={
                        "X-RateLimit-Limit": "360",
                        "X-RateLimit-Remaining": "359",
                        "X-RateLimit-Reset": str(reset),
                        "X-Token": "rotated",
                    }
                )

                res = await client.request("POST", "/api/user/console", {"expression": "x"})

        assert res.headers["x-token"] == "rotated"
        record = client.rate_limits.get(EndpointClass("POST", "userConsole"))
        assert record.remaining == 359
        assert record.reset == reset

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        async with ScreepsHTTPClient(BASE_URL) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                response = make_response(text="<html>hi</html>")
                response.headers = {"Content-Type": "text/html"}
                mock_request.return_value.__aenter__.return_value = response

                res = await client.request("GET", "/room-history/shard0/W1N1/100.json")

        assert res.data == {"_raw": "<html>hi</html>"}


class TestErrorHandling:
    """Tests for status-driven errors and throttle retries."""

    @pytest.mark.asyncio
    async def test_throttle_retried_then_succeeds(self):
        """Test 429 without rate-limit headers is retried."""
        async with ScreepsHTTPClient(BASE_URL, FAST_RETRIES) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                mock_request.return_value.__aenter__.side_effect = [
                    make_response(status=429, text="Too Many Requests"),
                    make_response(body={"ok": 1}),
                ]

                res = await client.request("GET", "/api/version")

        assert res.data == {"ok": 1}
        assert mock_request.call_count == 2

    @pytest.mark.asyncio
    async def test_throttle_retry_limit(self):
        """Test the fifth consecutive throttle raises RateLimitError."""
        async with ScreepsHTTPClient(BASE_URL, FAST_RETRIES) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                mock_request.return_value.__aenter__.return_value = make_response(
                    status=429, text="Too Many Requests"
                )

                with pytest.raises(RateLimitError) as exc_info:
                    await client.request("GET", "/api/version")

        assert mock_request.call_count == 5
        assert "retry limit" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_quota_exhausted_not_retried(self):
        """Test 429 with rate-limit headers raises immediately."""
        reset = int(time.time()) + 120
        async with ScreepsHTTPClient(BASE_URL, FAST_RETRIES) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                mock_request.return_value.__aenter__.return_value = make_response(
                    status=429,
                    headers={
                        "X-RateLimit-Limit": "1440",
                        "X-RateLimit-Remaining": "0",
                        "X-RateLimit-Reset": str(reset),
                    },
                )

                with pytest.raises(RateLimitError) as exc_info:
                    await client.request("GET", "/api/user/memory")

        assert mock_request.call_count == 1
        assert 0 < exc_info.value.retry_after <= 120
        assert client.rate_limits.get(EndpointClass("GET", "userMemory")).exhausted

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        async with ScreepsHTTPClient(BASE_URL) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                mock_request.return_value.__aenter__.return_value = make_response(
                    status=401, text="Unauthorized"
                )

                with pytest.raises(UnauthorizedError) as exc_info:
                    await client.request("GET", "/api/auth/me", token="old")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_server_error(self):
        async with ScreepsHTTPClient(BASE_URL) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                mock_request.return_value.__aenter__.return_value = make_response(
                    status=500, body={"error": "internal"}
                )

                with pytest.raises(APIError) as exc_info:
                    await client.request("GET", "/api/version")

        assert exc_info.value.status_code == 500
        assert "internal" in exc_info.value.response_body

    @pytest.mark.asyncio
    async def test_network_error(self):
        async with ScreepsHTTPClient(BASE_URL) as client:
            with patch("aiohttp.ClientSession.request") as mock_request:
                mock_request.side_effect = aiohttp.ClientConnectionError("refused")

                with pytest.raises(NetworkError) as exc_info:
                    await client.request("GET", "/api/version")

        assert isinstance(exc_info.value.cause, aiohttp.ClientConnectionError)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = ScreepsHTTPClient(BASE_URL)
        await client._ensure_session()

        await client.close()
        await client.close()

        assert client._session is None
