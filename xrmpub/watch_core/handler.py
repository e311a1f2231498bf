"""Watchdog event handler that forwards events for tracked files to the engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

from watchdog.events import FileSystemEventHandler

from xrmpub.logger import ContextLogger

from .config import LOGGER

if TYPE_CHECKING:
    from .engine import WatchEngine


class BindingEventHandler(FileSystemEventHandler):
    """Receives events for watched directories; sibling files are filtered by the engine."""

    def __init__(self, engine: "WatchEngine"):
        super().__init__()
        self.engine = engine

    def _notify(self, src_path) -> None:
        try:
            self.engine.notify(src_path)
        except Exception as exc:
            # An error for one path must not stop delivery for the others
            ContextLogger(LOGGER, path=str(src_path)).error(
                f"[watch] Failed to handle filesystem event: {exc}", exc_info=True
            )

    def on_modified(self, event):
        if not event.is_directory:
            self._notify(event.src_path)

    def on_created(self, event):
        if not event.is_directory:
            self._notify(event.src_path)

    def on_moved(self, event):
        # Atomic saves write a temp file and rename it over the tracked path
        if not event.is_directory:
            self._notify(event.dest_path)


__all__ = ["BindingEventHandler"]
