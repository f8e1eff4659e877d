"""
Socket Session

Persistent, authenticated, auto-reconnecting connection to the game
server's socket endpoint.

Features:
- Auth handshake over the socket, with one token refresh on rejection
- Outbound queue held until the handshake succeeds, then flushed FIFO
- Reference-counted subscriptions replayed after every reconnect
- Exponential backoff reconnection with a bounded retry budget
- Demultiplexing of data frames by key, kind and topic
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
import time
from enum import Enum, auto
from typing import Any, Dict, List, Mapping, Optional, Protocol

from screepsapi.core.config import Compression, SocketConfig
from screepsapi.core.events import EventEmitter, Listener
from screepsapi.core.exceptions import (
    AuthenticationError,
    ConnectionError,
    DecodeError,
    ReconnectExhausted,
    ScreepsAPIError,
    wrap_exception,
)
from screepsapi.core.structured_logging import generate_trace_id
from screepsapi.realtime.codec import Envelope, MessageCodec, ServerEvent
from screepsapi.realtime.subscriptions import SubscriptionRegistry
from screepsapi.realtime.transport import SocketTransport, TransportFactory, open_websocket

logger = logging.getLogger(__name__)

NAMESPACED_TOPIC_RE = re.compile(r"^(\w+):(.+?)$")


class ConnectionState(Enum):
    """Socket session states."""

    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    AUTHENTICATING = auto()
    AUTHENTICATED = auto()
    RECONNECTING = auto()
    CLOSING = auto()


class TokenProvider(Protocol):
    """What the session needs from the HTTP side."""

    token: Optional[str]
    socket_url: str

    async def auth(self) -> Any: ...

    async def user_id(self) -> str: ...

    def set_token(self, token: str) -> None: ...

    def on(self, event: str, listener: Listener) -> Any: ...


def is_namespaced(topic: str) -> bool:
    return NAMESPACED_TOPIC_RE.match(topic) is not None


def scope_topic(topic: str, user_id: str) -> str:
    """Prefix a bare suffix such as ``console`` with ``user:<id>/``."""
    if is_namespaced(topic):
        return topic
    return f"user:{user_id}/{topic.lstrip('/')}"


class Socket(EventEmitter):
    """
    Socket session bound to one API client.

    Events:
        connected, disconnected, authed, reconnected, auth, subscribe,
        unsubscribe, error, message, and one event per data frame key,
        kind and topic (e.g. ``"console"``) or control channel
        (e.g. ``"time"``).

    Example:
        await api.socket.subscribe("console", on_console)
        await api.socket.connect()
    """

    def __init__(
        self,
        api: TokenProvider,
        config: Optional[SocketConfig] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
        compression: Compression = Compression.DEFLATE,
    ):
        """
        Initialize socket session.

        Args:
            api: Token provider (normally the owning ScreepsAPI)
            config: Reconnect/resubscribe/keep-alive settings
            transport_factory: Coroutine opening a transport for a URL
            compression: Decompression used for gz: frames
        """
        super().__init__()
        self.api = api
        self.config = config or SocketConfig()
        self.codec = MessageCodec(compression)
        self._transport_factory = transport_factory or open_websocket

        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[SocketTransport] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._send_queue: List[str] = []
        self._registry = SubscriptionRegistry()

        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._auth_future: Optional[asyncio.Future] = None
        self._auth_token: Optional[str] = None
        self._reconnecting = False
        self._reconnect_attempt = 0
        # Bumped by disconnect(); in-flight work from an older epoch is stale
        self._epoch = 0

        self._stats = {
            "messages_received": 0,
            "decode_errors": 0,
            "reconnect_count": 0,
            "last_connect_time": None,
        }

        api.on("token", self._on_token_changed)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._transport is not None

    @property
    def is_authenticated(self) -> bool:
        return self._state == ConnectionState.AUTHENTICATED

    @property
    def reconnecting(self) -> bool:
        return self._reconnecting

    @property
    def reconnect_attempt(self) -> int:
        return self._reconnect_attempt

    @property
    def subscriptions(self) -> Mapping[str, int]:
        """Active topics and their reference counts."""
        return self._registry.snapshot()

    @property
    def stats(self) -> Dict[str, Any]:
        return self._stats.copy()

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug("[Socket] %s -> %s", self._state.name, state.name)
            self._state = state

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, **options: Any) -> None:
        """
        Open the socket and authenticate.

        Concurrent calls share the in-flight attempt.

        Args:
            **options: SocketConfig fields to override (reconnect, ...)

        Raises:
            ConnectionError: Transport could not be opened or closed early
            AuthenticationError: Server rejected the token
            ReconnectExhausted: Joined a reconnect loop that gave up
        """
        if options:
            self.config = SocketConfig.model_validate({**self.config.model_dump(), **options})

        if self._state == ConnectionState.AUTHENTICATED:
            return

        if self._reconnecting and self._reconnect_task and not self._reconnect_task.done():
            await self._join_reconnect(self._reconnect_task)
            return

        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.ensure_future(self._open_session())
            self._connect_task.add_done_callback(
                functools.partial(self._connect_done, self._epoch)
            )
        await asyncio.shield(self._connect_task)

    def _connect_done(self, epoch: int, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        self.emit("error", error)
        if (
            isinstance(error, ConnectionError)
            and self.config.reconnect
            and epoch == self._epoch
        ):
            self._start_reconnect()

    async def _open_session(self) -> None:
        """One full attempt: token, transport, handshake, flush."""
        epoch = self._epoch
        generate_trace_id()

        if not self.api.token:
            await self.api.auth()
            self._check_epoch(epoch)

        url = self.api.socket_url
        self._set_state(ConnectionState.CONNECTING)
        logger.info("[Socket] Connecting to %s", url)

        try:
            transport = await self._transport_factory(url)
        except Exception as e:
            if epoch == self._epoch:
                self._set_state(ConnectionState.DISCONNECTED)
            raise wrap_exception(e, ConnectionError, f"Cannot open socket to {url}: {e}")

        if epoch != self._epoch:
            await self._close_quietly(transport)
            raise ConnectionError("Socket was disconnected while connecting")

        self._attach(transport)
        try:
            await self._handshake()
        except BaseException:
            await self._drop_transport(transport)
            raise

    def _check_epoch(self, epoch: int) -> None:
        if epoch != self._epoch:
            raise ConnectionError("Socket was disconnected while connecting")

    def _attach(self, transport: SocketTransport) -> None:
        self._transport = transport
        self._outbox = asyncio.Queue()
        self._set_state(ConnectionState.CONNECTED)
        self._stats["last_connect_time"] = time.time()
        self._reader_task = asyncio.ensure_future(self._receive_loop(transport))
        self._writer_task = asyncio.ensure_future(self._send_loop(transport, self._outbox))
        logger.info("[Socket] Connected")
        self.emit("connected")

    async def _handshake(self) -> None:
        token = self.api.token
        try:
            await self._authenticate(token)
        except AuthenticationError as e:
            # Only a token that worked before is treated as expired
            if e.details.get("reason") != "rejected" or token != self._auth_token:
                raise
            logger.info("[Socket] Token rejected, requesting a fresh one")
            await self.api.auth()
            await self._authenticate(self.api.token)

    async def _authenticate(self, token: Optional[str]) -> None:
        if self._auth_future is not None and not self._auth_future.done():
            raise AuthenticationError("Socket auth already in progress")

        future = asyncio.get_running_loop().create_future()
        self._auth_future = future
        self._set_state(ConnectionState.AUTHENTICATING)
        self._write(self.codec.auth(token))

        try:
            status, new_token = await asyncio.wait_for(future, self.config.auth_timeout)
        except asyncio.TimeoutError as e:
            raise AuthenticationError(
                f"Socket auth timed out after {self.config.auth_timeout}s",
                error_code="AUTH_TIMEOUT",
                details={"reason": "timeout"},
                cause=e,
            ) from e
        finally:
            if self._auth_future is future:
                self._auth_future = None

        if status != "ok":
            logger.error("[Socket] Auth failed (status=%s)", status)
            raise AuthenticationError(
                "Socket auth failed", details={"reason": "rejected", "status": status}
            )

        self._auth_token = new_token or token
        if new_token and new_token != self.api.token:
            self.api.set_token(new_token)
        self._on_authenticated()

    def _on_authenticated(self) -> None:
        """Flush queued frames, replay subscriptions, start keep-alive."""
        self._set_state(ConnectionState.AUTHENTICATED)
        self._reconnect_attempt = 0

        pending, self._send_queue = self._send_queue, []
        for frame in pending:
            self._write(frame)

        if self.config.resubscribe:
            topics = self._registry.active_topics()
            if topics:
                logger.info("[Socket] Resubscribing to %d topics", len(topics))
            for topic in topics:
                self._write(self.codec.subscribe(topic))

        self._keepalive_task = asyncio.ensure_future(self._keepalive_loop(self._transport))
        logger.info("[Socket] Authenticated")
        self.emit("authed")

    async def disconnect(self, clear_subscriptions: bool = False) -> None:
        """
        Close the socket without reconnecting.

        Subscriptions survive so a later connect() replays them, unless
        ``clear_subscriptions`` is set.
        """
        logger.info("[Socket] Disconnecting")
        self._epoch += 1
        self._reconnecting = False
        self._set_state(ConnectionState.CLOSING)

        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None

        if self._auth_future is not None and not self._auth_future.done():
            self._auth_future.set_exception(
                ConnectionError("Socket disconnected during authentication")
            )

        transport = self._transport
        self._teardown_transport()
        if transport is not None:
            await self._close_quietly(transport)

        self._send_queue.clear()
        if clear_subscriptions:
            self._registry.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        self.emit("disconnected")

    def _teardown_transport(self) -> None:
        current = asyncio.current_task()
        for task in (self._keepalive_task, self._writer_task, self._reader_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._keepalive_task = None
        self._writer_task = None
        self._reader_task = None
        self._transport = None
        self._outbox = None

    async def _drop_transport(self, transport: SocketTransport) -> None:
        """Close a transport whose handshake failed; never reconnects."""
        if transport is self._transport:
            self._teardown_transport()
            self._set_state(ConnectionState.DISCONNECTED)
        await self._close_quietly(transport)

    @staticmethod
    async def _close_quietly(transport: SocketTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug("[Socket] Error closing transport: %s", e)

    def _on_transport_closed(
        self, transport: SocketTransport, error: Optional[BaseException] = None
    ) -> None:
        if transport is not self._transport:
            return

        was_authenticated = self._state == ConnectionState.AUTHENTICATED
        self._teardown_transport()
        self._set_state(ConnectionState.DISCONNECTED)

        if self._auth_future is not None and not self._auth_future.done():
            self._auth_future.set_exception(
                ConnectionError("Socket closed before authentication", cause=error)
            )

        logger.info("[Socket] Disconnected%s", f" ({error})" if error else "")
        self.emit("disconnected")

        if was_authenticated and self.config.reconnect:
            self._start_reconnect()

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def _start_reconnect(self) -> None:
        if self._reconnecting:
            return
        self._reconnecting = True
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.ensure_future(self._reconnect_loop())
        self._reconnect_task.add_done_callback(self._reconnect_done)

    def _reconnect_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        logger.debug("[Socket] Reconnect loop ended: %s", error)
        if self._reconnecting and task is self._reconnect_task:
            # Failed with something other than a screepsapi error
            logger.error("[Socket] Reconnect loop crashed: %r", error)
            self._finish_reconnect(ConnectionState.DISCONNECTED)
            self.emit("error", error)

    async def reconnect(self) -> None:
        """Start (or join) the reconnect loop and wait for its outcome."""
        self._start_reconnect()
        if self._reconnect_task is not None:
            await self._join_reconnect(self._reconnect_task)

    async def _join_reconnect(self, task: asyncio.Task) -> None:
        """
        Wait for a reconnect loop without cancelling it.

        Raises:
            ConnectionError: The loop was stopped by disconnect() before
                the session authenticated
        """
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            raise ConnectionError("Socket was disconnected while connecting") from None
        if not self.is_authenticated:
            raise ConnectionError("Socket was disconnected while connecting")

    async def _reconnect_loop(self) -> None:
        epoch = self._epoch
        attempt = 0
        max_retries = self.config.max_retries

        while True:
            delay = self.config.retry_delay(attempt)
            logger.info(
                "[Socket] Reconnecting in %.1fs (attempt %d/%d)",
                delay,
                attempt + 1,
                max_retries,
            )
            await self.sleep(delay)

            # disconnect() may have run during the sleep
            if not self._reconnecting or epoch != self._epoch:
                return

            try:
                await self._open_session()
            except AuthenticationError as e:
                self._finish_reconnect(ConnectionState.DISCONNECTED)
                self.emit("error", e)
                raise
            except ScreepsAPIError as e:
                attempt += 1
                self._reconnect_attempt = attempt
                self._stats["reconnect_count"] += 1
                logger.warning(
                    "[Socket] Reconnect attempt %d/%d failed: %s", attempt, max_retries, e
                )
                if attempt >= max_retries:
                    self._finish_reconnect(ConnectionState.DISCONNECTED)
                    error = ReconnectExhausted(
                        f"Reconnection failed after {max_retries} retries",
                        attempts=attempt,
                        cause=e,
                    )
                    logger.error("[Socket] %s", error.message)
                    self.emit("error", error)
                    raise error
                if epoch == self._epoch:
                    self._set_state(ConnectionState.RECONNECTING)
                continue

            self._finish_reconnect(self._state)
            logger.info("[Socket] Reconnected")
            self.emit("reconnected")
            return

    def _finish_reconnect(self, state: ConnectionState) -> None:
        self._reconnecting = False
        self._set_state(state)

    # ------------------------------------------------------------------
    # I/O loops
    # ------------------------------------------------------------------

    def _write(self, frame: str) -> None:
        logger.debug("[Socket] send %s", frame)
        self._outbox.put_nowait(frame)

    async def _send_loop(self, transport: SocketTransport, outbox: asyncio.Queue) -> None:
        while True:
            frame = await outbox.get()
            try:
                await transport.send(frame)
            except Exception as e:
                # Close detection belongs to the receive loop
                logger.warning("[Socket] Send failed: %s", e)
                return

    async def _receive_loop(self, transport: SocketTransport) -> None:
        error: Optional[BaseException] = None
        try:
            async for frame in transport:
                self._stats["messages_received"] += 1
                self._handle_frame(frame)
        except Exception as e:
            logger.error("[Socket] Receive error: %s", e)
            error = e
            await self._close_quietly(transport)
        self._on_transport_closed(transport, error)

    async def _keepalive_loop(self, transport: SocketTransport) -> None:
        while True:
            await asyncio.sleep(self.config.ping_interval)
            try:
                await transport.ping()
                logger.debug("[Socket] Ping sent")
            except Exception as e:
                logger.debug("[Socket] Ping failed: %s", e)

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    def _handle_frame(self, frame) -> None:
        try:
            message = self.codec.decode(frame)
        except Exception as e:
            error = wrap_exception(e, DecodeError, f"Cannot decode frame: {e!r}")
            self._stats["decode_errors"] += 1
            logger.warning("[Socket] Dropping undecodable frame: %s", error)
            self.emit("error", error)
            return

        if isinstance(message, Envelope):
            logger.debug("[Socket] message %s", message.key)
            for event in dict.fromkeys((message.key, message.kind, message.topic)):
                self.emit(event, message)
            self.emit("message", message)
            return

        logger.debug("[Socket] server %s %s", message.channel, message.data)
        self.emit("message", message)
        if message.channel == "auth":
            self._handle_auth(message)
            self.emit("auth", message.data)
            return
        self.emit(message.channel, message)

    def _handle_auth(self, message: ServerEvent) -> None:
        status = message.data.get("status")
        token = message.data.get("token")

        future = self._auth_future
        if future is not None and not future.done():
            future.set_result((status, token))
            return

        # Reply to a re-auth after token rotation
        if status == "ok":
            if token:
                self._auth_token = token
                if token != self.api.token:
                    self.api.set_token(token)
            return
        error = AuthenticationError(
            "Socket re-authentication failed", details={"reason": "rejected"}
        )
        logger.error("[Socket] %s", error.message)
        self.emit("error", error)

    def _on_token_changed(self, token: str) -> None:
        if not token or token == self._auth_token:
            return
        if self.is_authenticated:
            logger.info("[Socket] Token rotated, re-authenticating")
            self._auth_token = token
            self._write(self.codec.auth(token))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def send(self, frame: str) -> None:
        """Write a raw command, or queue it until authenticated."""
        if self.is_authenticated and self._outbox is not None:
            self._write(frame)
        else:
            logger.debug("[Socket] queue %s", frame)
            self._send_queue.append(frame)

    def gzip(self, enabled: bool) -> None:
        self.send(self.codec.gzip(enabled))

    async def normalize_topic(self, topic: str) -> str:
        """
        Scope a bare suffix to the current user.

        ``console`` -> ``user:<id>/console``; namespaced topics such as
        ``roomMap2:W1N1`` are returned unchanged without a user lookup.
        """
        if is_namespaced(topic):
            return topic
        user_id = await self.api.user_id()
        return scope_topic(topic, user_id)

    async def subscribe(self, topic: str, listener: Optional[Listener] = None) -> Optional[str]:
        """
        Subscribe to a topic.

        Args:
            topic: Namespaced topic or bare user suffix (``console``)
            listener: Optional listener registered on the normalized topic

        Returns:
            The normalized topic, or None for an empty topic
        """
        if not topic:
            return None
        topic = await self.normalize_topic(topic)
        if listener is not None:
            self.on(topic, listener)

        self._registry.increment(topic)
        if self.is_authenticated:
            self._write(self.codec.subscribe(topic))
        elif not self.config.resubscribe:
            self._send_queue.append(self.codec.subscribe(topic))
        # otherwise the registry replay after auth sends it

        self.emit("subscribe", topic)
        return topic

    async def unsubscribe(self, topic: str, listener: Optional[Listener] = None) -> Optional[str]:
        """
        Drop one reference to a topic.

        The wire command goes out whenever the topic was subscribed during
        this session, even if its count is already zero.
        """
        if not topic:
            return None
        topic = await self.normalize_topic(topic)
        if listener is not None:
            self.off(topic, listener)

        self._registry.decrement(topic)
        if self._registry.was_subscribed(topic):
            frame = self.codec.unsubscribe(topic)
            if self.is_authenticated:
                self._write(frame)
            elif not self.config.resubscribe:
                self._send_queue.append(frame)
        else:
            logger.debug("[Socket] %s was never subscribed", topic)

        self.emit("unsubscribe", topic)
        return topic
