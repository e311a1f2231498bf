"""Building blocks of the file watch engine.

Modules:
    config: debounce interval, observer mode and logger
    debounce: per-path leading-edge debounce
    handler: watchdog event handler that filters to tracked files
    engine: directory watch bookkeeping and change message emission
"""

from . import config, debounce, handler, engine
from .engine import WatchEngine

__all__ = [
    "config",
    "debounce",
    "handler",
    "engine",
    "WatchEngine",
]
