"""Per-environment token lifecycle: cached token, silent refresh, persistence."""

from __future__ import annotations

import threading
from typing import Optional

import requests

from xrmpub.auth.device_code import refresh_with_token
from xrmpub.auth.token_store import TokenStore
from xrmpub.errors import RefreshFailedError
from xrmpub.logger import get_logger
from xrmpub.models import Environment, Token

logger = get_logger(__name__)


def refresh_silently(
    environment: Environment,
    token_store: TokenStore,
    session: Optional[requests.Session] = None,
) -> Token:
    """Refresh using the cached credentials of ``environment`` and persist the result.

    Raises RefreshFailedError when nothing is cached or the grant fails; the
    caller must then start a new device code flow.
    """
    cached = token_store.load(environment.name)
    if cached is None:
        raise RefreshFailedError(f"no cached credentials for {environment.name}")
    token = refresh_with_token(cached.refresh_token, environment.url, session=session)
    token_store.save(environment.name, token)
    logger.info(f"[auth] Token refreshed for {environment.name}")
    return token


class TokenManager:
    """Holds the live token of one environment for the remote client.

    ``refresh`` may be called from several worker threads at once; only one
    refresh grant runs and the others reuse its result.
    """

    def __init__(
        self,
        environment: Environment,
        token: Token,
        token_store: TokenStore,
        session: Optional[requests.Session] = None,
    ):
        self.environment = environment
        self.token_store = token_store
        self.session = session
        self._token = token
        self._lock = threading.Lock()

    @property
    def token(self) -> Token:
        with self._lock:
            return self._token

    @property
    def access_token(self) -> str:
        return self.token.access_token

    def replace(self, token: Token) -> None:
        with self._lock:
            self._token = token

    def refresh(self, stale_access_token: Optional[str] = None) -> str:
        """Return a fresh access token or raise RefreshFailedError.

        When ``stale_access_token`` is given and another thread already
        replaced it, the newer token is returned without a second grant.
        """
        with self._lock:
            if stale_access_token is not None and self._token.access_token != stale_access_token:
                return self._token.access_token
            token = refresh_silently(self.environment, self.token_store, session=self.session)
            self._token = token
            return token.access_token
