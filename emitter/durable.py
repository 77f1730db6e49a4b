"""A last-write-wins CRDT set persisted in SQLite."""

from __future__ import annotations

import os
import random
import sqlite3
import threading
import time
from typing import Mapping

from emitter.crdt import (
    Clock,
    Value,
    Volatile,
    _as_key,
    _decode_entries,
    _encode_entries,
    decode_value,
    now,
)

TOMBSTONE_TTL = 6 * 60 * 60  # seconds a removed entry is kept
RESERVOIR_SIZE = 50000  # most entries written by encode()

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS entries "
    "(key BLOB PRIMARY KEY, value BLOB NOT NULL, expires REAL)",
    "CREATE INDEX IF NOT EXISTS entries_expires ON entries(expires)",
)


class Durable:
    """A last-write-wins set with a bias for adds, stored on disk or in memory."""

    def __init__(
        self,
        path: str | os.PathLike[str] = "",
        items: Mapping[str | bytes, Value] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._clock = clock or now
        self._lock = threading.RLock()
        self._db = sqlite3.connect(
            os.fspath(path) or ":memory:", check_same_thread=False
        )
        with self._lock, self._db:
            for statement in _SCHEMA:
                self._db.execute(statement)
            for key, value in (items or {}).items():
                self._store(_as_key(key), value)

    def __enter__(self) -> Durable:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _fetch(self, key: bytes) -> Value:
        row = self._db.execute(
            "SELECT value FROM entries WHERE key = ? "
            "AND (expires IS NULL OR expires > ?)",
            (key, time.time()),
        ).fetchone()
        return decode_value(row[0]) if row else Value()

    def _store(self, key: bytes, value: Value) -> None:
        expires = time.time() + TOMBSTONE_TTL if value.is_removed() else None
        self._db.execute(
            "INSERT OR REPLACE INTO entries (key, value, expires) VALUES (?, ?, ?)",
            (key, value.encode(), expires),
        )

    def _purge(self) -> None:
        self._db.execute("DELETE FROM entries WHERE expires <= ?", (time.time(),))

    def _rows(self) -> list[tuple[bytes, bytes]]:
        with self._lock:
            return [
                (bytes(k), bytes(v))
                for k, v in self._db.execute(
                    "SELECT key, value FROM entries "
                    "WHERE expires IS NULL OR expires > ? ORDER BY key",
                    (time.time(),),
                )
            ]

    def add(self, item: str | bytes, value: bytes = b"") -> None:
        """Mark the item as added now, with the given payload."""
        key = _as_key(item)
        with self._lock, self._db:
            self._purge()
            current, stamp = self._fetch(key), self._clock()
            if current.add_time < stamp:
                current.add_time = stamp
                current.payload = bytes(value or b"")
                self._store(key, current)

    def delete(self, item: str | bytes) -> None:
        """Mark the item as removed now."""
        key = _as_key(item)
        with self._lock, self._db:
            self._purge()
            current, stamp = self._fetch(key), self._clock()
            if current.del_time < stamp:
                current.del_time = stamp
                self._store(key, current)

    def has(self, item: str | bytes) -> bool:
        """Whether the item is currently present."""
        return self.get(item).is_added()

    def get(self, item: str | bytes) -> Value:
        """Return the timestamps of an item (zero when unknown)."""
        with self._lock:
            return self._fetch(_as_key(item))

    def merge(self, other: Volatile) -> None:
        """Merge a volatile set in, leaving only the delta in ``other``."""
        if not isinstance(other, Volatile):
            raise TypeError("can only merge a Volatile set")
        with self._lock, self._db:
            self._purge()
            other._merge_into(self._fetch, self._store)

    def range(
        self, prefix: str | bytes | None = None, tombstones: bool = False
    ) -> list[tuple[bytes, Value]]:
        """Return entries whose keys start with ``prefix``, in key order.

        Removed entries are included only when ``tombstones`` is true.
        """
        start = _as_key(prefix) if prefix else b""
        result = []
        for key, raw in self._rows():
            if not key.startswith(start):
                continue
            value = decode_value(raw)
            if tombstones or value.is_added():
                result.append((key, value))
        return result

    def count(self) -> int:
        """Number of entries, removed ones included."""
        with self._lock:
            (total,) = self._db.execute(
                "SELECT COUNT(*) FROM entries WHERE expires IS NULL OR expires > ?",
                (time.time(),),
            ).fetchone()
        return total

    def __len__(self) -> int:
        return self.count()

    def encode(self) -> bytes:
        """Serialise a random sample of at most RESERVOIR_SIZE entries, sorted by key."""
        sample: list[tuple[bytes, bytes]] = []
        for seen, entry in enumerate(self._rows(), start=1):
            if seen <= RESERVOIR_SIZE:
                sample.append(entry)
            else:
                slot = random.randrange(seen)
                if slot < RESERVOIR_SIZE:
                    sample[slot] = entry
        sample.sort(key=lambda entry: entry[0])
        return _encode_entries(sample)

    def close(self) -> None:
        """Close the underlying database."""
        with self._lock:
            self._db.close()


def decode_durable(data: bytes, clock: Clock | None = None) -> Durable:
    """Rebuild an in-memory set from :meth:`Durable.encode` output."""
    entries = _decode_entries(data)
    for _, raw in entries:
        decode_value(raw)
    out = Durable(clock=clock)
    with out._lock, out._db:
        out._db.executemany(
            "INSERT OR REPLACE INTO entries (key, value, expires) VALUES (?, ?, NULL)",
            entries,
        )
    return out


def new_map(
    durable: bool, path: str | os.PathLike[str] = "", clock: Clock | None = None
) -> Durable | Volatile:
    """Create a durable or a volatile set."""
    if durable:
        return Durable(path, clock=clock)
    return Volatile(clock=clock)