# emitter

Building blocks for keeping a message broker's state in step across a
cluster. It has last-write-wins sets, the events that are replicated through
them, the broker configuration, and a few helpers. The package uses only the
standard library.

## Modules

### `emitter.crdt`

- `Value` is a dataclass holding `add_time`, `del_time` (Unix nanoseconds)
  and a `payload`. It has `is_zero()`, `is_added()` and `is_removed()`.
  `encode()` writes the two times as big-endian 64-bit integers followed by
  the payload. `decode_value(data)` reads that form back.
- `Volatile` is an in-memory last-write-wins set with a bias for adds. It is
  safe to use from several threads. Its methods:
  - `add(item, value)` and `delete(item)` stamp the item with the clock.
  - `has(item)` and `get(item)` look an item up.
  - `range(prefix, tombstones)` returns a list of `(key, Value)` pairs.
    Removed entries are included only when `tombstones` is true.
  - `count()` (also `len()`) counts the entries, removed ones included.
  - `merge(other)` folds another `Volatile` into this one and leaves only the
    delta in `other`.
  - `encode()` serialises the set. `decode_volatile(data, clock)` reads it
    back.
- `now()` is the default clock. Every set takes a `clock` argument, so tests
  can fix the time.

### `emitter.durable`

- `Durable` is the same set, stored in SQLite: in a file given by `path`, or
  in memory when the path is empty. It is a context manager and has
  `close()`. Removed entries expire after `TOMBSTONE_TTL` seconds (6 hours).
  `range` returns entries in key order. `merge` accepts a `Volatile`.
- `encode()` writes a random sample of at most `RESERVOIR_SIZE` entries,
  sorted by key. `decode_durable(data, clock)` rebuilds an in-memory
  `Durable` from it.
- `new_map(durable, path, clock)` returns a `Durable` or a `Volatile`.

### `emitter.events`

- `EventType` lists the kinds of event: `SUBSCRIPTION`, `BAN` and
  `CONNECTION`.
- There are three event types, and each has a binary `key()` and `value()`:
  - `Subscription` has peer, connection, SSID, user and channel.
  - `Ban` is a banned key, a `str` subclass.
  - `Connection` has peer, connection, last-will settings, client id and
    username.
- `decode_subscription`, `decode_ban` and `decode_connection` rebuild the
  events.

### `emitter.state`

- `State(directory, clock)` holds one set per event type.
  - With an empty directory all sets are volatile.
  - Otherwise all sets are durable. Bans are stored in `ban.db` inside the
    directory, or in memory for `":memory:"`.
- `add`, `delete` and `has` take any event.
- `subscriptions()` yields every subscription with its `Value`, removed ones
  included.
- `subscriptions_of(peer)` and `connections_of(peer)` yield a peer's live
  events.
- `merge(other)` reduces `other` to the delta. It returns `other`, or `None`
  when nothing was new.
- `encode()` produces zlib-compressed bytes. `decode_state(data, clock)` reads
  them back into a volatile state.

### `emitter.config`

- `Config` is made up of `LimitConfig`, `TLSConfig`, `ClusterConfig` and
  `ProviderConfig` entries. It has these methods:
  - `to_dict()` and `Config.from_dict()` convert to and from the JSON form.
  - `max_message_bytes()` returns the message size limit, capped at 64 KiB.
  - `addr()` returns the parsed listen address as an `Address` and raises
    `ValueError` when the address is invalid.
- `parse_address(text, default_port)` accepts an IP address, `localhost`, or
  `private` / `public` / `external`, which resolve to this machine's outbound
  IP.
- `new_default()` gives the default configuration.
- `load_config(filename)` reads a JSON file. If the file is missing, it writes
  the defaults to it first.

### `emitter.errors`

- `EmitterError(status, message, request)` is an exception to report to a
  client.
  - `copy()` returns an independent copy.
  - `for_request(request_id)` sets the request id, which must fit in 16 bits.
  - `to_dict()` gives the JSON form and leaves `req` out when it is zero.
- `new_error(message)` makes a status-500 error.
- Ready-made errors are provided, such as `ERR_BAD_REQUEST`,
  `ERR_UNAUTHORIZED` and `ERR_NOT_FOUND`.

### `emitter.timer`

- `repeat(interval, action)` runs `action` once straight away, then every
  `interval` seconds on a daemon thread. Exceptions raised by the action are
  logged and do not stop the schedule. Call the returned function to stop it.
  A non-positive interval raises `ValueError`.

## Installing

```
pip install .
```

To run the test suite as well:

```
pip install .[test]
pytest
```

## Example

```python
from emitter.crdt import Volatile

local = Volatile()
local.add("alpha", b"payload")
print(local.has("alpha"))  # True

remote = Volatile()
remote.delete("alpha")
local.merge(remote)        # remote now holds only what was new to local
```

## Command line

Print the version:

```
emitter-version
```

## What it does not do

This package is not a broker. It has no MQTT or WebSocket server and no
network listener. It does not carry gossip between peers, and it has no
commands other than `emitter-version`. `State.encode` and `decode_state`
produce and read the bytes that peers would exchange. Sending those bytes is
left to the caller.