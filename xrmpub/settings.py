"""Runtime settings resolved from environment variables.

Values are read once at import time. The CLI loads a ``.env`` file before
importing anything from ``xrmpub`` so overrides placed there apply too.
"""

from __future__ import annotations

import os
from pathlib import Path

from xrmpub.logger import get_logger, safe_bool, safe_float, safe_int

LOGGER = get_logger("xrmpub.settings")


def get_config_dir() -> Path:
    """Directory holding config.json and per-environment token files."""
    raw = (os.environ.get("XRMPUB_CONFIG_DIR") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".xrmpub"


CLIENT_ID = os.environ.get("XRMPUB_CLIENT_ID", "51f81489-12ee-4a9e-aaae-a2591f45987d")
AUTHORITY = os.environ.get(
    "XRMPUB_AUTHORITY", "https://login.microsoftonline.com/common/oauth2/v2.0"
).rstrip("/")
# MSAL takes the tenant authority without the protocol path
LOGIN_AUTHORITY = os.environ.get(
    "XRMPUB_LOGIN_AUTHORITY", AUTHORITY.split("/oauth2/", 1)[0]
).rstrip("/")
BROWSER_REDIRECT_PORT = safe_int(
    os.environ.get("XRMPUB_REDIRECT_PORT"), 8400, LOGGER, "XRMPUB_REDIRECT_PORT"
)

REQUEST_TIMEOUT_SECS = safe_float(
    os.environ.get("XRMPUB_REQUEST_TIMEOUT"), 30.0, LOGGER, "XRMPUB_REQUEST_TIMEOUT"
)
AUTH_TIMEOUT_SECS = safe_float(
    os.environ.get("XRMPUB_AUTH_TIMEOUT_SECS"), 300.0, LOGGER, "XRMPUB_AUTH_TIMEOUT_SECS"
)
# Token considered expired this many seconds before its real expiry
TOKEN_EXPIRY_SKEW_SECS = 5 * 60

DEBOUNCE_MS = safe_int(os.environ.get("XRMPUB_DEBOUNCE_MS"), 300, LOGGER, "XRMPUB_DEBOUNCE_MS")
WATCH_USE_POLLING = safe_bool(
    os.environ.get("XRMPUB_WATCH_USE_POLLING"), False, LOGGER, "XRMPUB_WATCH_USE_POLLING"
)

# Atomic-save editors briefly delete the file before the rename lands
READ_ATTEMPTS = 5
READ_RETRY_DELAY_SECS = 0.05

MAX_WORKERS = safe_int(os.environ.get("XRMPUB_MAX_WORKERS"), 4, LOGGER, "XRMPUB_MAX_WORKERS")

DEFAULT_PUBLISHER_PREFIX = "new"
INITIAL_BINDING_VERSION = "1.0.0"
