"""Shared configuration and logger for the watch engine."""

from __future__ import annotations

from xrmpub.logger import get_logger
from xrmpub.settings import DEBOUNCE_MS, WATCH_USE_POLLING

LOGGER = get_logger("xrmpub.watch")

# Minimum spacing between two emitted changes for the same file
DEBOUNCE_SECS = max(0, DEBOUNCE_MS) / 1000.0

# Polling observer for network filesystems where native events are unreliable
USE_POLLING = WATCH_USE_POLLING
