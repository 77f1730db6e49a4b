"""Running an action repeatedly on a background thread."""

from __future__ import annotations

import logging
import threading
from typing import Callable

_log = logging.getLogger("emitter.async")


def repeat(interval: float, action: Callable[[], object]) -> Callable[[], None]:
    """Run ``action`` now, then every ``interval`` seconds until cancelled.

    The first run happens synchronously. Exceptions raised by the action are
    logged and swallowed so the schedule keeps going. Returns a function that
    stops the schedule.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")

    stopped = threading.Event()

    def run_safely() -> None:
        try:
            action()
        except Exception:
            _log.exception("panic recovered")

    run_safely()

    def loop() -> None:
        while not stopped.wait(interval):
            run_safely()

    threading.Thread(target=loop, name="repeat", daemon=True).start()
    return stopped.set