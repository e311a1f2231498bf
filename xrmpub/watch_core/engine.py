"""Directory-level watches for bound files, emitting debounced change messages.

Each tracked file is watched through its parent directory, never its inode:
editors that save by writing a temp file and renaming it over the original
would otherwise leave a stale watch behind. Changes are put on the
orchestrator's inbox as ``FileChanged`` messages stamped with the engine's
generation; ``clear()`` bumps the generation so changes queued before an
environment switch can be recognized and dropped.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Optional, Set

from watchdog.observers import Observer

from xrmpub.errors import WatchError
from xrmpub.logger import ContextLogger
from xrmpub.messages import FileChanged

from .config import DEBOUNCE_SECS, LOGGER, USE_POLLING
from .debounce import Debouncer
from .handler import BindingEventHandler


def normalize_path(path: str | os.PathLike) -> str:
    return str(Path(path).expanduser().resolve())


def create_observer(use_polling: bool, observer_cls: Callable[[], Any] = Observer):
    """Create a watchdog observer based on configuration."""
    if use_polling:
        from watchdog.observers.polling import PollingObserver

        LOGGER.info("[watch] Using polling observer for filesystem events")
        return PollingObserver()
    return observer_cls()


class WatchEngine:
    def __init__(
        self,
        inbox,
        *,
        debounce_secs: float = DEBOUNCE_SECS,
        use_polling: bool = USE_POLLING,
        observer: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.inbox = inbox
        self._observer = observer if observer is not None else create_observer(use_polling)
        self._handler = BindingEventHandler(self)
        self._debouncer = Debouncer(debounce_secs, clock)
        self._lock = threading.RLock()
        self._files: Set[str] = set()
        self._dirs: Dict[str, Set[str]] = {}
        self._watches: Dict[str, Any] = {}
        self._generation = 0
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._observer.start()
            self._started = True

    def stop(self) -> None:
        self.clear()
        with self._lock:
            if not self._started:
                return
            self._started = False
        self._observer.stop()
        self._observer.join(timeout=5)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------
    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def files(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._files)

    def is_tracked(self, path: str | os.PathLike) -> bool:
        with self._lock:
            return normalize_path(path) in self._files

    def add_file(self, path: str | os.PathLike) -> str:
        """Track ``path``; returns the normalized path. Raises WatchError."""
        file_path = normalize_path(path)
        directory = os.path.dirname(file_path)
        with self._lock:
            if file_path in self._files:
                return file_path
            if directory not in self._watches:
                if not os.path.isdir(directory):
                    raise WatchError(file_path, f"directory {directory} does not exist")
                try:
                    watch = self._observer.schedule(self._handler, directory, recursive=False)
                except OSError as exc:
                    raise WatchError(file_path, str(exc)) from exc
                self._watches[directory] = watch
                LOGGER.debug(f"[watch] Watching directory {directory}")
            self._dirs.setdefault(directory, set()).add(file_path)
            self._files.add(file_path)
        LOGGER.info(f"[watch] Tracking {file_path}")
        return file_path

    def remove_file(self, path: str | os.PathLike) -> None:
        file_path = normalize_path(path)
        directory = os.path.dirname(file_path)
        with self._lock:
            if file_path not in self._files:
                return
            self._files.discard(file_path)
            siblings = self._dirs.get(directory)
            if siblings is not None:
                siblings.discard(file_path)
                if not siblings:
                    del self._dirs[directory]
                    self._release(directory)
        self._debouncer.forget(file_path)
        LOGGER.info(f"[watch] Stopped tracking {file_path}")

    def clear(self) -> None:
        """Drop every tracked file and directory watch and start a new generation."""
        with self._lock:
            for directory in list(self._watches):
                self._release(directory)
            self._files.clear()
            self._dirs.clear()
            self._generation += 1
            generation = self._generation
        self._debouncer.clear()
        LOGGER.debug(f"[watch] Cleared watch set (generation {generation})")

    def _release(self, directory: str) -> None:
        watch = self._watches.pop(directory, None)
        if watch is None:
            return
        try:
            self._observer.unschedule(watch)
        except (KeyError, OSError) as exc:
            ContextLogger(LOGGER, directory=directory).warning(
                f"[watch] Failed to release directory watch: {exc}"
            )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def notify(self, src_path: str | os.PathLike) -> bool:
        """Called from the observer thread; returns True when a change was emitted."""
        file_path = normalize_path(src_path)
        with self._lock:
            if file_path not in self._files:
                return False
            generation = self._generation
        if not self._debouncer.should_emit(file_path):
            return False
        self.inbox.put(FileChanged(path=file_path, generation=generation))
        LOGGER.debug(f"[watch] Change detected: {file_path}")
        return True


__all__ = ["WatchEngine", "create_observer", "normalize_path"]
