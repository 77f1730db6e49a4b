"""The globally replicated state of the cluster."""

from __future__ import annotations

import os
import struct
import zlib
from typing import Iterator

from emitter.crdt import Clock, Value, Volatile, _put_uvarint, _read_uvarint, decode_volatile
from emitter.durable import Durable, new_map
from emitter.events import (
    Connection,
    Event,
    EventType,
    Subscription,
    decode_connection,
    decode_subscription,
)

_PEER = struct.Struct(">Q")


def _file_of(directory: str) -> str:
    if directory == ":memory:":
        return directory
    return os.path.join(directory, "ban.db")


class State:
    """Replicated sets of subscriptions, bans and connections.

    With a directory the sets are durable and bans persist in that directory
    (``":memory:"`` keeps them in memory); without one the sets are volatile.
    """

    def __init__(self, directory: str = "", clock: Clock | None = None) -> None:
        self._durable = directory != ""
        ban_path = _file_of(directory) if self._durable else ""
        self._subsets: dict[EventType, Durable | Volatile] = {
            EventType.SUBSCRIPTION: new_map(self._durable, "", clock),
            EventType.BAN: new_map(self._durable, ban_path, clock),
            EventType.CONNECTION: new_map(self._durable, "", clock),
        }

    def __enter__(self) -> State:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def add(self, event: Event) -> None:
        """Record the event as added."""
        self._subsets[event.event_type].add(event.key(), event.value())

    def delete(self, event: Event) -> None:
        """Record the event as removed."""
        self._subsets[event.event_type].delete(event.key())

    def has(self, event: Event) -> bool:
        """Whether the event is currently present."""
        return self._subsets[event.event_type].has(event.key())

    def subscriptions(self) -> Iterator[tuple[Subscription, Value]]:
        """Yield every subscription, removed ones included, with its timestamps."""
        for key, value in self._subsets[EventType.SUBSCRIPTION].range(None, True):
            try:
                event = decode_subscription(key, value.payload)
            except ValueError:
                continue
            yield event, value

    def subscriptions_of(self, peer: int) -> Iterator[Subscription]:
        """Yield the live subscriptions held by a peer."""
        for key, value in self._find(EventType.SUBSCRIPTION, peer):
            try:
                yield decode_subscription(key, value.payload)
            except ValueError:
                continue

    def connections_of(self, peer: int) -> Iterator[Connection]:
        """Yield the live connections held by a peer."""
        for key, value in self._find(EventType.CONNECTION, peer):
            try:
                yield decode_connection(key, value.payload)
            except ValueError:
                continue

    def _find(self, event_type: EventType, peer: int) -> list[tuple[bytes, Value]]:
        return self._subsets[event_type].range(_PEER.pack(peer), False)

    def encode(self) -> bytes:
        """Serialise and compress the whole state."""
        out = bytearray()
        _put_uvarint(out, len(self._subsets))
        for event_type, subset in self._subsets.items():
            blob = subset.encode()
            out.append(event_type)
            _put_uvarint(out, len(blob))
            out += blob
        return zlib.compress(bytes(out))

    def merge(self, other: State) -> State | None:
        """Merge ``other`` in, reducing it to the delta.

        Returns ``other`` when it brought anything new, otherwise None.
        """
        if not isinstance(other, State):
            raise TypeError("can only merge another State")
        count = 0
        for event_type, subset in self._subsets.items():
            incoming = other._subsets[event_type]
            subset.merge(incoming)
            count += incoming.count()
        return other if count else None

    def close(self) -> None:
        """Close the durable sets."""
        for subset in self._subsets.values():
            if isinstance(subset, Durable):
                subset.close()


def decode_state(data: bytes, clock: Clock | None = None) -> State:
    """Rebuild a volatile state from :meth:`State.encode` output."""
    try:
        raw = zlib.decompress(data)
    except zlib.error as exc:
        raise ValueError(f"invalid state encoding: {exc}") from exc

    state = State(clock=clock)
    count, pos = _read_uvarint(raw, 0)
    for _ in range(count):
        if pos >= len(raw):
            raise ValueError("truncated state")
        event_type = EventType(raw[pos])
        length, pos = _read_uvarint(raw, pos + 1)
        if pos + length > len(raw):
            raise ValueError("truncated state")
        state._subsets[event_type] = decode_volatile(raw[pos:pos + length], clock)
        pos += length
    return state