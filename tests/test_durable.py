import threading

import pytest

from emitter.crdt import Value, Volatile
from emitter.durable import Durable, decode_durable, new_map


class FakeClock:
    def __init__(self, t=0):
        self.t = t

    def __call__(self):
        return self.t


def T(key, add, dele, payload=""):
    return key, Value(add, dele, payload.encode())


def equal_sets(expected, current):
    for key, value in expected.range(None, True):
        assert current.get(key) == value


@pytest.mark.parametrize(
    "initial, expected, actions",
    [
        (T("A", 10, 0, "A1"), T("A", 20, 0, "A2"), [T("A", 20, 0, "A2")]),
        (T("A", 10, 0, "A1"), T("A", 10, 20, "A1"), [T("A", 0, 20, "A1")]),
        (
            T("A", 10, 0, "A1"),
            T("A", 20, 0, "A2"),
            [T("A", 20, 0, "A2"), T("A", 15, 0, "A3")],
        ),
        (T("A", 10, 0, "A1"), T("A", 10, 20, "A1"), [T("A", 0, 20), T("A", 0, 15)]),
    ],
)
def test_add_remove(initial, expected, actions):
    clock = FakeClock()
    with Durable(items=dict([initial]), clock=clock) as current, Durable(
        items=dict([expected])
    ) as want:
        for key, value in actions:
            if value.is_added():
                clock.t = value.add_time
                current.add(key, value.payload)
            if value.is_removed():
                clock.t = value.del_time
                current.delete(key)
            equal_sets(want, current)
            assert want.count() == current.count()


MERGE_CASES = [
    (
        [T("A", 10, 0, "A1"), T("B", 20, 0, "B1")],
        [T("A", 0, 20, "A2"), T("B", 0, 20, "B2")],
        [T("A", 10, 20, "A2"), T("B", 20, 20, "B2")],
        [T("A", 0, 20, "A2"), T("B", 0, 20, "B2")],
        ["B"],
        ["A"],
    ),
    (
        [T("A", 10, 0, "A1"), T("B", 20, 0, "B1")],
        [T("A", 0, 20), T("B", 10, 0, "B2")],
        [T("A", 10, 20), T("B", 20, 0, "B1")],
        [T("A", 0, 20)],
        ["B"],
        ["A"],
    ),
    (
        [T("A", 30, 0, "A1"), T("B", 20, 0, "B1")],
        [T("A", 20, 0, "A2"), T("B", 10, 0, "B2")],
        [T("A", 30, 0, "A1"), T("B", 20, 0, "B1")],
        [],
        ["A", "B"],
        [],
    ),
    (
        [T("A", 10, 0, "A1"), T("B", 0, 20)],
        [T("C", 10, 0, "C1"), T("D", 0, 20)],
        [T("A", 10, 0, "A1"), T("B", 0, 20), T("C", 10, 0, "C1"), T("D", 0, 20)],
        [T("C", 10, 0, "C1"), T("D", 0, 20)],
        ["A", "C"],
        ["B", "D"],
    ),
    (
        [T("A", 10, 0, "A1"), T("B", 30, 0, "B1")],
        [T("A", 20, 0, "A2"), T("B", 20, 0, "B2")],
        [T("A", 20, 0, "A2"), T("B", 30, 0, "B1")],
        [T("A", 20, 0, "A2")],
        ["A", "B"],
        [],
    ),
    (
        [T("A", 0, 10), T("B", 0, 30)],
        [T("A", 0, 20), T("B", 0, 20)],
        [T("A", 0, 20), T("B", 0, 30)],
        [T("A", 0, 20)],
        [],
        ["A", "B"],
    ),
]


@pytest.mark.parametrize("lww1, lww2, expected, delta, valid, invalid", MERGE_CASES)
def test_merge_volatile_into_durable(lww1, lww2, expected, delta, valid, invalid):
    with Durable(items=dict(lww1)) as left, Durable(items=dict(expected)) as want:
        right = Volatile(dict(lww2))
        left.merge(right)
        equal_sets(want, left)
        equal_sets(Volatile(dict(delta)), right)
        assert right.count() == len(delta)
        for key in valid:
            assert left.has(key)
        for key in invalid:
            assert not left.has(key)


def test_merge_rejects_durable():
    with Durable() as left, Durable() as right:
        with pytest.raises(TypeError):
            left.merge(right)


def test_range():
    with Durable(
        items={
            "AC": Value(60, 50),
            "AB": Value(60, 50),
            "AA": Value(10, 50),
            "BA": Value(60, 50),
            "BB": Value(60, 50),
            "BC": Value(60, 50),
        }
    ) as state:
        assert len(state.range(b"A", False)) == 2
        assert len(state.range(None, False)) == 5
        assert [k for k, _ in state.range("A", True)] == [b"AA", b"AB", b"AC"]
        assert state.count() == 6


def test_marshal():
    with Durable(items={"A": Value(10, 50)}) as state:
        enc = state.encode()
        assert enc == bytes(
            [0x1, 0x1, 0x41, 0x10, 0, 0, 0, 0, 0, 0, 0, 0xA, 0, 0, 0, 0, 0, 0, 0, 0x32]
        )
        with decode_durable(enc) as dec:
            assert dec.range(None, True) == state.range(None, True)


def test_encode_is_sorted_by_key():
    with Durable(items={"B": Value(1, 0), "A": Value(2, 0), "C": Value(3, 0)}) as state:
        with decode_durable(state.encode()) as dec:
            assert [k for k, _ in dec.range(None, True)] == [b"A", b"B", b"C"]


def test_decode_truncated():
    with Durable(items={"A": Value(10, 50)}) as state:
        enc = state.encode()
    with pytest.raises(ValueError):
        decode_durable(enc[:-3])


def test_persists_to_file(tmp_path):
    path = tmp_path / "ban.db"
    clock = FakeClock(5)
    with Durable(path, clock=clock) as store:
        store.add("key", b"payload")
    with Durable(path) as reopened:
        assert reopened.has("key")
        assert reopened.get("key") == Value(5, 0, b"payload")


@pytest.mark.parametrize("durable", [True, False])
def test_new_map(durable):
    clock = FakeClock(7)
    created = new_map(durable, "", clock)
    try:
        assert isinstance(created, Durable) is durable
        created.add("A", b"x")
        assert created.has("A")
        assert created.get("A") == Value(7, 0, b"x")
    finally:
        if durable:
            created.close()