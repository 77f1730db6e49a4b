"""Last-write-wins CRDT values and the in-memory replicated set."""

from __future__ import annotations

import struct
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Mapping

Clock = Callable[[], int]

_TIMES = struct.Struct(">qq")


def now() -> int:
    """Return the current time in Unix nanoseconds."""
    return time.time_ns()


@dataclass
class Value:
    """Add and delete timestamps of an entry, with its payload."""

    add_time: int = 0
    del_time: int = 0
    payload: bytes = b""

    def is_zero(self) -> bool:
        """True when neither timestamp is set."""
        return self.add_time == 0 and self.del_time == 0

    def is_added(self) -> bool:
        """True when the entry was added and not removed since."""
        return self.add_time != 0 and self.add_time >= self.del_time

    def is_removed(self) -> bool:
        """True when the removal happened after the addition."""
        return self.add_time < self.del_time

    def encode(self) -> bytes:
        """Encode as two big-endian 64-bit times followed by the payload."""
        return _TIMES.pack(self.add_time, self.del_time) + bytes(self.payload)


def decode_value(data: bytes) -> Value:
    """Decode a value produced by :meth:`Value.encode`."""
    if len(data) < _TIMES.size:
        raise ValueError("encoded value is shorter than 16 bytes")
    add_time, del_time = _TIMES.unpack_from(data)
    return Value(add_time, del_time, bytes(data[_TIMES.size:]))


def _as_key(item: str | bytes) -> bytes:
    return item.encode() if isinstance(item, str) else bytes(item)


def _merge_value(current: Value, incoming: Value) -> bool:
    """Merge ``incoming`` into ``current``; strip ``incoming`` down to its news.

    Returns True when ``incoming`` carried anything new.
    """
    if current.add_time < incoming.add_time:
        current.add_time = incoming.add_time
    else:
        incoming.add_time = 0

    if current.del_time < incoming.del_time:
        current.del_time = incoming.del_time
    else:
        incoming.del_time = 0

    if incoming.is_zero():
        return False
    current.payload = incoming.payload
    return True


def _put_uvarint(out: bytearray, number: int) -> None:
    while number >= 0x80:
        out.append((number & 0x7F) | 0x80)
        number >>= 7
    out.append(number)


def _read_uvarint(data: bytes, pos: int) -> tuple[int, int]:
    result = shift = 0
    while True:
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if byte < 0x80:
            return result, pos
        shift += 7
        if shift >= 64:
            raise ValueError("varint overflows 64 bits")


def _encode_entries(entries: list[tuple[bytes, bytes]]) -> bytes:
    out = bytearray()
    _put_uvarint(out, len(entries))
    for key, raw in entries:
        for part in (key, raw):
            _put_uvarint(out, len(part))
            out += part
    return bytes(out)


def _decode_entries(data: bytes) -> list[tuple[bytes, bytes]]:
    data = bytes(data)
    size, pos = _read_uvarint(data, 0)
    entries = []
    for _ in range(size):
        parts = []
        for _ in range(2):
            length, pos = _read_uvarint(data, pos)
            if pos + length > len(data):
                raise ValueError("truncated entry")
            parts.append(data[pos:pos + length])
            pos += length
        entries.append((parts[0], parts[1]))
    return entries


class Volatile:
    """An in-memory last-write-wins set with a bias for adds."""

    def __init__(
        self,
        items: Mapping[str | bytes, Value] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock or now
        self._data: dict[bytes, Value] = {
            _as_key(k): v for k, v in (items or {}).items()
        }

    def _fetch(self, key: bytes) -> Value:
        found = self._data.get(key)
        return replace(found) if found is not None else Value()

    def _store(self, key: bytes, value: Value) -> None:
        self._data[key] = value

    def add(self, item: str | bytes, value: bytes = b"") -> None:
        """Mark the item as added now, with the given payload."""
        key = _as_key(item)
        with self._lock:
            current, stamp = self._fetch(key), self._clock()
            if current.add_time < stamp:
                current.add_time = stamp
                current.payload = bytes(value or b"")
                self._data[key] = current

    def delete(self, item: str | bytes) -> None:
        """Mark the item as removed now."""
        key = _as_key(item)
        with self._lock:
            current, stamp = self._fetch(key), self._clock()
            if current.del_time < stamp:
                current.del_time = stamp
                self._data[key] = current

    def has(self, item: str | bytes) -> bool:
        """Whether the item is currently present."""
        with self._lock:
            return self._fetch(_as_key(item)).is_added()

    def get(self, item: str | bytes) -> Value:
        """Return the timestamps of an item (zero when unknown)."""
        with self._lock:
            return self._fetch(_as_key(item))

    def merge(self, other: Volatile) -> None:
        """Merge ``other`` into this set, leaving only the delta in ``other``."""
        if not isinstance(other, Volatile):
            raise TypeError("can only merge a Volatile set")
        if other is self:
            return
        first, second = sorted((self._lock, other._lock), key=id)
        with first, second:
            other._merge_locked(self._fetch, self._store)

    def _merge_into(
        self,
        fetch: Callable[[bytes], Value],
        store: Callable[[bytes, Value], None],
    ) -> None:
        """Merge this set into a target given by its fetch/store functions."""
        with self._lock:
            self._merge_locked(fetch, store)

    def _merge_locked(
        self,
        fetch: Callable[[bytes], Value],
        store: Callable[[bytes, Value], None],
    ) -> None:
        for key, incoming in list(self._data.items()):
            current = fetch(key)
            if _merge_value(current, incoming):
                store(key, current)
            else:
                del self._data[key]

    def range(
        self, prefix: str | bytes | None = None, tombstones: bool = False
    ) -> list[tuple[bytes, Value]]:
        """Return the entries whose keys start with ``prefix``.

        Removed entries are included only when ``tombstones`` is true.
        """
        start = _as_key(prefix) if prefix else b""
        with self._lock:
            return [
                (key, replace(value))
                for key, value in self._data.items()
                if key.startswith(start) and (tombstones or value.is_added())
            ]

    def count(self) -> int:
        """Number of entries, removed ones included."""
        with self._lock:
            return len(self._data)

    def __len__(self) -> int:
        return self.count()

    def encode(self) -> bytes:
        """Serialise the whole set."""
        with self._lock:
            entries = [(k, v.encode()) for k, v in self._data.items()]
        return _encode_entries(entries)


def decode_volatile(data: bytes, clock: Clock | None = None) -> Volatile:
    """Rebuild a set produced by :meth:`Volatile.encode`."""
    items = {key: decode_value(raw) for key, raw in _decode_entries(data)}
    return Volatile(items, clock=clock)