"""Replicated events: subscriptions, banned keys and client connections."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Union

from emitter.crdt import _put_uvarint, _read_uvarint

_IDS = struct.Struct(">QQ")
_PART = struct.Struct(">I")


class EventType(IntEnum):
    """The kinds of events kept in the replicated state."""

    SUBSCRIPTION = 0
    BAN = 1
    CONNECTION = 2


def _pack_bytes(out: bytearray, data: bytes) -> None:
    _put_uvarint(out, len(data))
    out += data


class _Reader:
    """Reads the length-prefixed binary layout used for event values."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def byte(self) -> int:
        if self._pos >= len(self._data):
            raise ValueError("truncated event value")
        value = self._data[self._pos]
        self._pos += 1
        return value

    def bytes(self) -> bytes:
        length, self._pos = _read_uvarint(self._data, self._pos)
        end = self._pos + length
        if end > len(self._data):
            raise ValueError("truncated event value")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk


def _split_ids(key: bytes | str) -> tuple[int, int, bytes]:
    raw = key.encode() if isinstance(key, str) else bytes(key)
    if len(raw) < _IDS.size:
        raise ValueError("event key is shorter than 16 bytes")
    peer, conn = _IDS.unpack_from(raw)
    return peer, conn, raw[_IDS.size:]


@dataclass
class Subscription:
    """A client subscribed to a channel on a peer."""

    event_type: ClassVar[EventType] = EventType.SUBSCRIPTION

    peer: int = 0
    conn: int = 0
    ssid: tuple[int, ...] = ()
    user: str = ""
    channel: bytes = b""

    def __post_init__(self) -> None:
        self.ssid = tuple(self.ssid)
        self.channel = bytes(self.channel)

    def key(self) -> bytes:
        """Peer, connection and every SSID part, all big-endian."""
        return _IDS.pack(self.peer, self.conn) + b"".join(
            _PART.pack(part) for part in self.ssid
        )

    def value(self) -> bytes:
        """The username and the channel, each prefixed with its length."""
        out = bytearray()
        _pack_bytes(out, self.user.encode())
        _pack_bytes(out, self.channel)
        return bytes(out)


def decode_subscription(key: bytes | str, value: bytes = b"") -> Subscription:
    """Rebuild a subscription from its key and value."""
    peer, conn, rest = _split_ids(key)
    if len(rest) % _PART.size:
        raise ValueError("subscription key has a partial SSID")
    ssid = tuple(part for (part,) in _PART.iter_unpack(rest))
    user, channel = "", b""
    if value:
        reader = _Reader(value)
        user = reader.bytes().decode()
        channel = reader.bytes()
    return Subscription(peer=peer, conn=conn, ssid=ssid, user=user, channel=channel)


class Ban(str):
    """A banned key."""

    event_type: ClassVar[EventType] = EventType.BAN

    def key(self) -> bytes:
        """The banned key itself."""
        return self.encode()

    def value(self) -> bytes:
        """Bans carry no value."""
        return b""


def decode_ban(key: bytes | str) -> Ban:
    """Rebuild a ban from its key."""
    return Ban(key.decode() if isinstance(key, (bytes, bytearray)) else key)


@dataclass
class Connection:
    """A client connection on a peer, with its last-will settings."""

    event_type: ClassVar[EventType] = EventType.CONNECTION

    peer: int = 0
    conn: int = 0
    will_flag: bool = False
    will_retain: bool = False
    will_qos: int = 0
    will_topic: bytes = b""
    will_message: bytes = b""
    client_id: bytes = b""
    username: bytes = b""

    def key(self) -> bytes:
        """Peer and connection ids, big-endian."""
        return _IDS.pack(self.peer, self.conn)

    def value(self) -> bytes:
        """The flags followed by the length-prefixed byte fields."""
        out = bytearray(bytes([int(self.will_flag), int(self.will_retain), self.will_qos]))
        for field in (self.will_topic, self.will_message, self.client_id, self.username):
            _pack_bytes(out, bytes(field))
        return bytes(out)


def decode_connection(key: bytes | str, value: bytes = b"") -> Connection:
    """Rebuild a connection from its key and value."""
    peer, conn, _ = _split_ids(key)
    event = Connection(peer=peer, conn=conn)
    if value:
        reader = _Reader(value)
        event.will_flag = bool(reader.byte())
        event.will_retain = bool(reader.byte())
        event.will_qos = reader.byte()
        event.will_topic = reader.bytes()
        event.will_message = reader.bytes()
        event.client_id = reader.bytes()
        event.username = reader.bytes()
    return event


Event = Union[Subscription, Ban, Connection]