"""
ScreepsAPI facade

Owns the server settings, the current token, the HTTP client, the rate
limit tracker and one socket session. Every token change goes through the
``token`` event so the socket can re-authenticate.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from screepsapi.adapters.endpoints import ENDPOINTS, build_request, get_endpoint
from screepsapi.adapters.http_client import ClientConfig, HTTPResponse, ScreepsHTTPClient
from screepsapi.adapters.rate_limit import RateLimitRecord, RateLimitTracker
from screepsapi.core.config import Compression, ConfigManager, ServerConfig, SocketConfig
from screepsapi.core.events import EventEmitter
from screepsapi.core.exceptions import AuthenticationError, UnauthorizedError
from screepsapi.realtime.codec import GZ_TAG, decompress
from screepsapi.realtime.socket import Socket
from screepsapi.realtime.transport import TransportFactory

logger = logging.getLogger(__name__)

OFFICIAL_HISTORY_INTERVAL = 100
PRIVATE_HISTORY_INTERVAL = 20
RATE_LIMIT_RESET_URL = "https://screeps.com/a/#!/account/auth-tokens/noratelimit?token={}"


class ScreepsAPI(EventEmitter):
    """
    Client for one game server.

    Events:
        token: New token (sign-in, rotation via ``x-token`` header, socket)
        auth: Sign-in succeeded
        rateLimit: Rate limit record updated from a response
        response: Raw HTTPResponse of every successful request

    Example:
        async with ScreepsAPI(token="...") as api:
            print(await api.version())
            await api.socket.subscribe("console", print)
            await api.socket.connect()
    """

    def __init__(
        self,
        server: Optional[ServerConfig] = None,
        *,
        socket_config: Optional[SocketConfig] = None,
        client_config: Optional[ClientConfig] = None,
        app_config: Optional[Dict[str, Any]] = None,
        transport_factory: Optional[TransportFactory] = None,
        **options: Any,
    ):
        """
        Initialize client.

        Args:
            server: Server settings; built from ``options`` when omitted
            socket_config: Socket session behaviour
            client_config: HTTP client settings
            app_config: Tool-specific section of the config file
            transport_factory: Socket transport factory (tests, proxies)
            **options: ServerConfig fields (host, port, token, ...)
        """
        super().__init__()
        if server is None:
            server = ServerConfig(**options)
        elif options:
            raise TypeError("Pass either a ServerConfig or keyword options, not both")

        self.server = server
        self.shard = server.shard
        self.app_config = dict(app_config or {})
        self.rate_limits = RateLimitTracker()
        self.http = ScreepsHTTPClient(server.base_url, client_config, self.rate_limits)

        self._token: Optional[str] = server.token
        self._username: Optional[str] = server.username
        self._password: Optional[str] = server.password_value
        self._authed = False
        self._user: Optional[Dict[str, Any]] = None
        self._token_info: Optional[Dict[str, Any]] = None
        self._me_lock = asyncio.Lock()

        self.socket = Socket(
            self,
            socket_config,
            transport_factory=transport_factory,
            compression=server.compression,
        )

    @classmethod
    def from_config(
        cls,
        server: str = "main",
        app: str = "",
        *,
        manager: Optional[ConfigManager] = None,
        **kwargs: Any,
    ) -> "ScreepsAPI":
        """
        Build a client from the unified config file.

        Raises:
            ConfigurationError: No config file, or unknown server name
        """
        manager = manager or ConfigManager()
        server_config = manager.server_config(server)
        app_config = manager.app_config(app) if app else {}
        return cls(server_config, app_config=app_config, **kwargs)

    @classmethod
    def from_env(cls, **kwargs: Any) -> "ScreepsAPI":
        """Build a client from ``SCREEPS_*`` environment variables."""
        return cls(ServerConfig.from_env(), **kwargs)

    async def __aenter__(self) -> "ScreepsAPI":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Disconnect the socket and close the HTTP session."""
        await self.socket.disconnect()
        await self.http.close()

    # ------------------------------------------------------------------
    # Token handling
    # ------------------------------------------------------------------

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def socket_url(self) -> str:
        return self.server.socket_url

    @property
    def is_official(self) -> bool:
        return self.server.is_official

    def set_token(self, token: str) -> None:
        if token == self._token:
            return
        self._token = token
        self.emit("token", token)

    async def auth(
        self, username: Optional[str] = None, password: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Sign in with username/email and password.

        Raises:
            AuthenticationError: Missing credentials or sign-in rejected
        """
        if username and password:
            self._username, self._password = username, password
        if not (self._username and self._password):
            raise AuthenticationError("No credentials available to sign in")

        logger.info("[API] Signing in as %s", self._username)
        res = await self.auth_signin(self._username, self._password)
        if not isinstance(res, dict) or res.get("error") or not res.get("token"):
            error = res.get("error") if isinstance(res, dict) else None
            raise AuthenticationError(
                f"Sign-in failed: {error or 'no token returned'}",
                details={"username": self._username},
            )

        self.set_token(res["token"])
        self._authed = True
        self.emit("auth")
        return res

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        *,
        reauth: bool = True,
    ) -> Any:
        """
        Send a request with the current token and return the parsed body.

        A 401 after a successful sign-in on a private server triggers one
        fresh sign-in and a retry.

        Raises:
            AuthenticationError: 401 that could not be recovered
            RateLimitError: Quota exhausted or throttle retries exceeded
            APIError: Any other error status
            NetworkError: Connection failures and timeouts
        """
        try:
            response = await self.http.request(method, path, body, token=self._token)
        except UnauthorizedError as e:
            if reauth and self._authed and not self.is_official:
                logger.info("[API] %s %s unauthorized, signing in again", method, path)
                self._authed = False
                await self.auth()
                return await self.request(method, path, body, reauth=False)
            raise AuthenticationError(
                "Not authorized", details={"method": method, "path": path}, cause=e
            ) from e

        self._handle_response(method, path, response)
        return response.data

    def _handle_response(self, method: str, path: str, response: HTTPResponse) -> None:
        token = response.headers.get("x-token")
        if token:
            self.set_token(token)
        if "x-ratelimit-limit" in response.headers:
            self.emit("rateLimit", self.rate_limits.for_request(method, path))
        self.emit("response", response)

    async def call(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Call any registered endpoint by name.

        Example:
            await api.call("game_room_terrain", "W1N1", shard="shard1")
        """
        endpoint = get_endpoint(name)
        body = build_request(endpoint, args, kwargs, self.shard)
        return await self.request(endpoint.method, endpoint.path, body)

    def __getattr__(self, name: str):
        if name.startswith("_") or name not in ENDPOINTS:
            raise AttributeError(f"{type(self).__name__!s} has no attribute '{name}'")
        return functools.partial(self.call, name)

    # ------------------------------------------------------------------
    # Endpoints with extra behaviour
    # ------------------------------------------------------------------

    async def version(self) -> Dict[str, Any]:
        return await self.call("version")

    async def servers_list(self) -> Dict[str, Any]:
        return await self.call("servers_list")

    async def authmod(self) -> Dict[str, Any]:
        if self.is_official:
            return {"name": "official"}
        return await self.request("GET", "/api/authmod")

    async def history(self, room: str, tick: int, shard: Optional[str] = None) -> Dict[str, Any]:
        """
        Room history chunk containing ``tick``.

        Official servers store chunks every 100 ticks, private servers
        every 20; the tick is rounded down to the chunk start.
        """
        if self.is_official:
            tick -= tick % OFFICIAL_HISTORY_INTERVAL
            return await self.request(
                "GET", f"/room-history/{shard or self.shard}/{room}/{tick}.json"
            )
        tick -= tick % PRIVATE_HISTORY_INTERVAL
        return await self.request("GET", "/room-history", {"room": room, "time": tick})

    async def auth_signin(self, email: str, password: str) -> Dict[str, Any]:
        return await self.call("auth_signin", email, password)

    async def auth_me(self) -> Dict[str, Any]:
        return await self.call("auth_me")

    async def auth_query_token(self, token: str) -> Dict[str, Any]:
        return await self.call("auth_query_token", token)

    async def user_name(self) -> Dict[str, Any]:
        return await self.call("user_name")

    async def user_find(self, username: str) -> Dict[str, Any]:
        return await self.call("user_find", username)

    async def user_console(self, expression: str, shard: Optional[str] = None) -> Dict[str, Any]:
        return await self.call("user_console", expression, shard=shard)

    async def user_memory_get(self, path: str = "", shard: Optional[str] = None) -> Any:
        """Memory at ``path``; gz-compressed payloads are returned as text."""
        res = await self.call("user_memory_get", path or None, shard=shard)
        return _unpack_data(res)

    async def user_memory_post(self, path: str, value: Any, shard: Optional[str] = None) -> Dict[str, Any]:
        return await self.call("user_memory_post", path, value, shard=shard)

    async def user_memory_segment_get(self, segment: int, shard: Optional[str] = None) -> Any:
        res = await self.call("user_memory_segment_get", segment, shard=shard)
        return _unpack_data(res)

    async def user_memory_segment_post(
        self, segment: int, data: str, shard: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.call("user_memory_segment_post", segment, data, shard=shard)

    async def user_code_get(self, branch: str) -> Dict[str, Any]:
        return await self.call("user_code_get", branch)

    async def user_code_post(
        self, branch: str, modules: Dict[str, Any], _hash: Optional[str] = None
    ) -> Dict[str, Any]:
        if not _hash:
            _hash = str(int(time.time() * 1000))
        return await self.call("user_code_post", branch, modules, _hash)

    async def game_time(self, shard: Optional[str] = None) -> Dict[str, Any]:
        return await self.call("game_time", shard=shard)

    async def game_market_my_orders(self) -> Dict[str, Any]:
        return self.map_to_shard(await self.call("game_market_my_orders"))

    async def experimental_nukes(self) -> Dict[str, Any]:
        return self.map_to_shard(await self.call("experimental_nukes"))

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def token_info(self) -> Dict[str, Any]:
        """
        Describe the current token.

        Tokens from configuration are queried (they may be limited);
        tokens from sign-in are always full.
        """
        if self._token_info is None:
            if self.server.token and self._token:
                res = await self.auth_query_token(self._token)
                self._token_info = res.get("token") or {}
            else:
                self._token_info = {"full": True}
        return self._token_info

    async def me(self) -> Dict[str, Any]:
        """Current user, fetched once and cached."""
        async with self._me_lock:
            if self._user is not None:
                return self._user
            if not self._token:
                await self.auth()

            info = await self.token_info()
            if info.get("full"):
                user = await self.auth_me()
            else:
                username = (await self.user_name())["username"]
                user = (await self.user_find(username))["user"]
            self._user = user
            logger.debug("[API] Resolved user %s", user.get("username"))
            return user

    async def user_id(self) -> str:
        user = await self.me()
        return user["_id"]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def current_season() -> str:
        """Season id for the current UTC month, e.g. ``2024-05``."""
        return datetime.now(timezone.utc).strftime("%Y-%m")

    @staticmethod
    def map_to_shard(res: Dict[str, Any]) -> Dict[str, Any]:
        """Give private-server responses the official ``shards`` shape."""
        if "shards" not in res:
            res["shards"] = {"privSrv": res.get("list") or res.get("rooms")}
        return res

    def get_rate_limit(self, method: str, path: str) -> RateLimitRecord:
        return self.rate_limits.for_request(method, path)

    @property
    def rate_limit_reset_url(self) -> str:
        if not self._token:
            raise AuthenticationError("No token to build a rate limit reset URL for")
        return RATE_LIMIT_RESET_URL.format(self._token[:8])

    def __repr__(self) -> str:
        return f"ScreepsAPI({self.server.base_url}, shard={self.shard})"


def _unpack_data(res: Any) -> Any:
    data = res.get("data") if isinstance(res, dict) else res
    if isinstance(data, str) and data.startswith(GZ_TAG):
        return decompress(data, Compression.GZIP)
    return data
