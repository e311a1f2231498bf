"""Per-path leading-edge debounce used by the watch engine."""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict

from .config import DEBOUNCE_SECS


class Debouncer:
    """Lets the first event for a path through, then drops repeats within the window.

    The window is measured from the last *emitted* event, so a steady stream
    of writes produces one change per interval rather than none.
    """

    def __init__(self, interval: float = DEBOUNCE_SECS,
                 clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._last: Dict[str, float] = {}
        self._lock = threading.Lock()

    def should_emit(self, path: str) -> bool:
        now = self._clock()
        with self._lock:
            last = self._last.get(path)
            if last is not None and now - last < self.interval:
                return False
            self._last[path] = now
            return True

    def forget(self, path: str) -> None:
        with self._lock:
            self._last.pop(path, None)

    def clear(self) -> None:
        with self._lock:
            self._last.clear()


__all__ = ["Debouncer"]
