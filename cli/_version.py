"""Installed distribution version of xrmpub."""
from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

DIST_NAME = "xrmpub"

try:
    __version__ = version(DIST_NAME)
except PackageNotFoundError:
    # Running from a source checkout without `pip install -e .`
    __version__ = "0.0.0+local"
