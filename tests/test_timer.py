import queue
import threading
import time

import pytest

from emitter.timer import repeat


class _Recorder:
    """Callable that counts its calls and optionally raises."""

    def __init__(self, fail=False, threshold=None):
        self.calls = 0
        self.fail = fail
        self.threshold = threshold
        self.reached = threading.Event()
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            if self.threshold is not None and self.calls > self.threshold:
                self.reached.set()
        if self.fail:
            raise RuntimeError("test")


def test_repeat_runs_action_more_than_once():
    out = queue.Queue()
    cancel = repeat(1e-8, lambda: out.put(True))
    try:
        assert out.get(timeout=5) is True
        assert out.get(timeout=5) is True
    finally:
        cancel()


def test_first_action_runs_synchronously():
    calls = []
    cancel = repeat(60, lambda: calls.append(1))
    cancel()
    assert calls == [1]


def test_first_action_exception_is_swallowed():
    recorder = _Recorder(fail=True)
    cancel = repeat(60, recorder)
    cancel()
    assert recorder.calls == 1


def test_repeat_keeps_going_after_exceptions():
    recorder = _Recorder(fail=True, threshold=10)
    cancel = repeat(1e-8, recorder)
    try:
        reached = recorder.reached.wait(timeout=5)
    finally:
        cancel()
    assert reached is True
    assert recorder.calls > 10


def test_cancel_stops_the_schedule():
    recorder = _Recorder()
    cancel = repeat(0.001, recorder)
    time.sleep(0.05)
    cancel()
    time.sleep(0.05)
    snapshot = recorder.calls
    time.sleep(0.05)
    assert snapshot >= 1
    assert recorder.calls == snapshot


@pytest.mark.parametrize("interval", [0, -1])
def test_non_positive_interval_is_rejected(interval):
    with pytest.raises(ValueError):
        repeat(interval, lambda: None)