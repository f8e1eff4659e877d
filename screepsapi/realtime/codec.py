"""
Socket frame codec.

Inbound frames come in three shapes:

    gz:<base64>                 compressed body of either shape below
    ["<kind>:<id>[/<topic>]", payload]   data frame
    <channel> <arg> <arg>...    control frame ("auth ok <token>", "time 123")

Outbound frames are plain space-delimited commands.
"""

from __future__ import annotations

import base64
import binascii
import json
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from screepsapi.core.config import Compression
from screepsapi.core.exceptions import DecodeError

GZ_TAG = "gz:"

# Control channels whose single argument is wrapped under the channel name
SCALAR_CHANNELS = ("protocol", "time", "package")

_WBITS = {
    Compression.DEFLATE: zlib.MAX_WBITS,
    Compression.RAW_DEFLATE: -zlib.MAX_WBITS,
    Compression.GZIP: zlib.MAX_WBITS | 16,
}


@dataclass
class Envelope:
    """Decoded data frame."""

    key: str
    kind: str
    entity_id: str
    topic: str
    payload: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind,
            "entity_id": self.entity_id,
            "topic": self.topic,
            "payload": self.payload,
        }


@dataclass
class ServerEvent:
    """Decoded control frame."""

    channel: str
    data: Union[List[str], Dict[str, Any]] = field(default_factory=list)
    kind: str = "server"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "channel": self.channel, "data": self.data}


Message = Union[Envelope, ServerEvent]


def decompress(data: str, compression: Compression = Compression.DEFLATE) -> str:
    """
    Decode a ``gz:`` tagged payload to text.

    Args:
        data: Tagged payload; the first three characters are skipped
        compression: Algorithm the server used

    Raises:
        DecodeError: Bad base64, bad compressed stream or non UTF-8 text
    """
    try:
        raw = base64.b64decode(data[len(GZ_TAG):], validate=False)
        return zlib.decompress(raw, _WBITS[Compression(compression)]).decode("utf-8")
    except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError) as e:
        raise DecodeError(
            f"Cannot decompress frame ({compression}): {e}", frame=data, cause=e
        ) from e


def compress(text: str, compression: Compression = Compression.DEFLATE) -> str:
    """Inverse of ``decompress``; produces a ``gz:`` tagged payload."""
    compressor = zlib.compressobj(wbits=_WBITS[Compression(compression)])
    raw = compressor.compress(text.encode("utf-8")) + compressor.flush()
    return GZ_TAG + base64.b64encode(raw).decode("ascii")


def split_topic_key(key: str) -> tuple:
    """
    ``console:u1/console`` -> ``("console", "u1", "console")``.

    The kind ends at the first ``:``, the entity id at the next ``/``;
    without a ``/`` part the topic defaults to the kind.
    """
    kind, sep, rest = key.partition(":")
    if not sep or not kind or not rest:
        raise DecodeError(f"Malformed topic key: {key!r}", frame=key)
    entity_id, slash, topic = rest.partition("/")
    if not entity_id:
        raise DecodeError(f"Malformed topic key: {key!r}", frame=key)
    return kind, entity_id, (topic if slash and topic else kind)


class MessageCodec:
    """Stateless frame encoder/decoder bound to one compression variant."""

    def __init__(self, compression: Compression = Compression.DEFLATE):
        self.compression = Compression(compression)

    def decode(self, frame: Union[str, bytes]) -> Message:
        """
        Decode one inbound frame.

        Raises:
            DecodeError: Undecodable frame
        """
        if isinstance(frame, (bytes, bytearray)):
            try:
                frame = bytes(frame).decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeError("Frame is not UTF-8", cause=e) from e

        if len(frame) >= len(GZ_TAG) and frame.startswith(GZ_TAG):
            frame = decompress(frame, self.compression)

        if frame.startswith("["):
            return self._decode_data(frame)
        return self._decode_control(frame)

    def _decode_data(self, frame: str) -> Envelope:
        try:
            message = json.loads(frame)
        except (ValueError, RecursionError) as e:
            raise DecodeError(f"Malformed JSON frame: {e}", frame=frame, cause=e) from e

        if not isinstance(message, list) or len(message) != 2 or not isinstance(message[0], str):
            raise DecodeError("Data frame is not a [key, payload] pair", frame=frame)

        key, payload = message
        kind, entity_id, topic = split_topic_key(key)
        return Envelope(key=key, kind=kind, entity_id=entity_id, topic=topic, payload=payload)

    @staticmethod
    def _decode_control(frame: str) -> ServerEvent:
        channel, *data = frame.split(" ")
        if not channel:
            raise DecodeError("Empty control frame", frame=frame)
        if channel == "auth":
            return ServerEvent(
                channel=channel,
                data={
                    "status": data[0] if data else None,
                    "token": data[1] if len(data) > 1 else None,
                },
            )
        if channel in SCALAR_CHANNELS:
            return ServerEvent(channel=channel, data={channel: data[0] if data else None})
        return ServerEvent(channel=channel, data=data)

    @staticmethod
    def encode(command: str, *args: Any) -> str:
        """``encode("subscribe", "roomMap2:W1N1")`` -> ``"subscribe roomMap2:W1N1"``."""
        return " ".join([command, *(str(a) for a in args)])

    def auth(self, token: str) -> str:
        return self.encode("auth", token)

    def subscribe(self, topic: str) -> str:
        return self.encode("subscribe", topic)

    def unsubscribe(self, topic: str) -> str:
        return self.encode("unsubscribe", topic)

    def gzip(self, enabled: bool) -> str:
        return self.encode("gzip", "on" if enabled else "off")
