"""Credential store: one token file per environment, owner read/write only."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from xrmpub.config_store import _atomic_write_json
from xrmpub.logger import get_logger
from xrmpub.models import Token
from xrmpub.settings import get_config_dir

logger = get_logger(__name__)


class TokenStore:
    """Loads, saves and deletes ``token-<environment>.json`` files."""

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory) if directory is not None else get_config_dir()

    def path_for(self, environment: str) -> Path:
        safe_name = environment.replace("/", "_").replace("\\", "_")
        return self.directory / f"token-{safe_name}.json"

    def load(self, environment: str) -> Optional[Token]:
        """Return the cached token, or None when missing or unreadable."""
        path = self.path_for(environment)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning(f"[auth] Ignoring unreadable token file {path}: {exc}")
            return None
        token = Token.from_dict(raw)
        if not token.access_token:
            return None
        return token

    def load_valid(self, environment: str) -> Optional[Token]:
        """Return the cached token only if it is not (about to be) expired."""
        token = self.load(environment)
        if token is None or token.is_expired():
            return None
        return token

    def save(self, environment: str, token: Token) -> None:
        _atomic_write_json(self.path_for(environment), token.to_dict())

    def delete(self, environment: str) -> bool:
        """Remove the token file; returns False if there was none."""
        path = self.path_for(environment)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"[auth] Cleared cached token for {environment}")
        return True
