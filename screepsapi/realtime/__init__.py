# Socket session and wire codec
from screepsapi.realtime.codec import (
    Envelope,
    Message,
    MessageCodec,
    ServerEvent,
    compress,
    decompress,
    split_topic_key,
)
from screepsapi.realtime.socket import ConnectionState, Socket, is_namespaced, scope_topic
from screepsapi.realtime.subscriptions import SubscriptionRegistry
from screepsapi.realtime.transport import (
    SocketTransport,
    TransportFactory,
    WebSocketTransport,
    open_websocket,
)

__all__ = [
    "Envelope",
    "Message",
    "MessageCodec",
    "ServerEvent",
    "compress",
    "decompress",
    "split_topic_key",
    "ConnectionState",
    "Socket",
    "is_namespaced",
    "scope_topic",
    "SubscriptionRegistry",
    "SocketTransport",
    "TransportFactory",
    "WebSocketTransport",
    "open_websocket",
]
