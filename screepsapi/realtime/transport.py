"""
Socket transport abstraction.

The session only needs: open (the factory), send, ping, close, and an
async iterator of inbound frames that ends when the connection closes.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Awaitable, Callable, Protocol, Union

import websockets
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)


class SocketTransport(Protocol):
    """What the session requires from a connection."""

    async def send(self, frame: str) -> None: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[Union[str, bytes]]: ...


TransportFactory = Callable[[str], Awaitable[SocketTransport]]


class WebSocketTransport:
    """SocketTransport backed by a ``websockets`` client connection."""

    def __init__(self, connection):
        self._ws = connection

    async def send(self, frame: str) -> None:
        await self._ws.send(frame)

    async def ping(self) -> None:
        # Fire the ping without waiting for the pong
        await self._ws.ping()

    async def close(self) -> None:
        await self._ws.close()

    async def __aiter__(self) -> AsyncIterator[Union[str, bytes]]:
        try:
            async for message in self._ws:
                yield message
        except ConnectionClosed as e:
            logger.debug("[Transport] Connection closed: %s", e)


async def open_websocket(
    url: str,
    *,
    open_timeout: float = 30.0,
    close_timeout: float = 10.0,
) -> WebSocketTransport:
    """Default transport factory."""
    logger.debug("[Transport] Opening %s", url)
    connection = await websockets.connect(
        url,
        ping_interval=None,  # the session sends its own keep-alive pings
        ping_timeout=None,
        open_timeout=open_timeout,
        close_timeout=close_timeout,
        max_size=None,
    )
    return WebSocketTransport(connection)
