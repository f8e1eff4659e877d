"""
HTTP transport for the game server REST API.

aiohttp-based client that builds requests, keeps the rate limit tracker in
sync with response headers and retries transient throttling (429 without
rate-limit headers) with exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp

from screepsapi.adapters.rate_limit import RateLimitTracker
from screepsapi.core.exceptions import (
    APIError,
    NetworkError,
    RateLimitError,
    UnauthorizedError,
    wrap_exception,
)

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    """Configuration for the HTTP client."""

    # Transient throttle retry (429 without rate-limit headers)
    max_throttle_retries: int = 5
    throttle_base_delay: float = 0.1
    throttle_max_delay: float = 5.0

    # Timeout settings
    connect_timeout: float = 10.0
    read_timeout: float = 30.0

    default_headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class HTTPResponse:
    """Decoded response: status, lower-cased headers and parsed body."""

    status: int
    headers: Dict[str, str]
    data: Any


class ScreepsHTTPClient:
    """
    Async HTTP client for one server.

    Example:
        async with ScreepsHTTPClient("https://screeps.com:443/") as http:
            res = await http.request("GET", "/api/version")
    """

    def __init__(
        self,
        base_url: str,
        config: Optional[ClientConfig] = None,
        rate_limits: Optional[RateLimitTracker] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: Server base URL including any path prefix
            config: Client configuration
            rate_limits: Tracker updated from every response
        """
        self.base_url = base_url.rstrip("/")
        self.config = config or ClientConfig()
        self.rate_limits = rate_limits or RateLimitTracker()
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "ScreepsHTTPClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure aiohttp session exists."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                connect=self.config.connect_timeout,
                total=self.config.read_timeout,
            )
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers=self.config.default_headers,
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _calculate_delay(self, retries: int) -> float:
        """Backoff before throttle retry number ``retries`` (1-based)."""
        return min(
            self.config.throttle_max_delay,
            self.config.throttle_base_delay * (2**retries),
        )

    @staticmethod
    def _query_params(body: Optional[Dict[str, Any]]) -> Dict[str, str]:
        params: Dict[str, str] = {}
        for key, value in (body or {}).items():
            if value is None:
                continue
            if isinstance(value, bool):
                params[key] = "true" if value else "false"
            elif isinstance(value, (list, dict)):
                params[key] = json.dumps(value)
            else:
                params[key] = str(value)
        return params

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        text = await response.text()
        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            try:
                return json.loads(text)
            except ValueError:
                logger.debug("[HTTP] Invalid JSON body: %s", text[:100])
        return {"_raw": text}

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        *,
        token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> HTTPResponse:
        """
        Send one API request.

        Args:
            method: HTTP method
            path: Path below the base URL, e.g. ``/api/user/console``
            body: Query parameters for GET, JSON body otherwise
            token: Auth token sent as X-Token / X-Username
            headers: Additional headers

        Returns:
            HTTPResponse with parsed body

        Raises:
            UnauthorizedError: 401
            RateLimitError: Quota exhausted or throttle retries exceeded
            APIError: Any other error status
            NetworkError: Connection failures and timeouts
        """
        await self._ensure_session()

        method = method.upper()
        url = f"{self.base_url}{path}"
        request_headers = {**self.config.default_headers, **(headers or {})}
        if token:
            request_headers["X-Token"] = token
            request_headers["X-Username"] = token

        kwargs: Dict[str, Any] = {"headers": request_headers}
        if method == "GET":
            kwargs["params"] = self._query_params(body)
        else:
            kwargs["json"] = body if body is not None else {}

        retries = 0
        while True:
            logger.debug("[HTTP] %s %s %s", method, path, body or "")
            try:
                async with self._session.request(method, url, **kwargs) as response:
                    status = response.status
                    response_headers = {
                        k.lower(): v for k, v in response.headers.items()
                    }
                    self.rate_limits.update_from_headers(method, path, response_headers)
                    data = await self._read_body(response)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise wrap_exception(
                    e, NetworkError, f"{method} {path} failed: {type(e).__name__}: {e}"
                )

            if status == 429 and "x-ratelimit-limit" not in response_headers:
                retries += 1
                if retries >= self.config.max_throttle_retries:
                    raise RateLimitError(
                        f"Exceeded retry limit ({self.config.max_throttle_retries}) for {path}",
                        response_body=_body_text(data),
                    )
                delay = self._calculate_delay(retries)
                logger.warning(
                    "[HTTP] Throttled (429) on %s, retrying in %.1fs (attempt %d/%d)",
                    path,
                    delay,
                    retries,
                    self.config.max_throttle_retries,
                )
                await asyncio.sleep(delay)
                continue

            if status == 429:
                record = self.rate_limits.for_request(method, path)
                raise RateLimitError(
                    f"Rate limit exceeded for {method} {path}",
                    retry_after=max(0, record.seconds_until_reset),
                    response_body=_body_text(data),
                )

            if status == 401:
                raise UnauthorizedError(
                    "Not authorized",
                    status_code=status,
                    response_body=_body_text(data),
                )

            if status >= 400:
                raise APIError(
                    f"API error: {status} {_body_text(data)[:200]}",
                    status_code=status,
                    response_body=_body_text(data),
                )

            return HTTPResponse(status=status, headers=response_headers, data=data)


def _body_text(data: Any) -> str:
    if isinstance(data, dict) and set(data) == {"_raw"}:
        return data["_raw"]
    return json.dumps(data, default=str)
