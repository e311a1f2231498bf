"""Interactive browser sign-in through MSAL.

MSAL opens the system browser and listens on a localhost redirect port for
the authorization code. Accounts from earlier sign-ins of the same process
are tried silently first. Results come back as ``Token`` so the credential
store and the refresh grant treat them like device code sign-ins.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import msal

from xrmpub.errors import AuthDeniedError, ChallengeFailedError
from xrmpub.logger import get_logger
from xrmpub.models import Token
from xrmpub.settings import AUTH_TIMEOUT_SECS, BROWSER_REDIRECT_PORT, CLIENT_ID, LOGIN_AUTHORITY

logger = get_logger(__name__)


def browser_scopes(org_url: str) -> List[str]:
    # MSAL adds offline_access itself and rejects it when passed explicitly
    return [f"{org_url.rstrip('/')}/.default"]


def token_from_result(result: Optional[Dict[str, Any]]) -> Token:
    """Convert an MSAL result dict, raising AuthDeniedError for error results."""
    if not result:
        raise AuthDeniedError("no_result", "sign-in returned nothing")
    if result.get("error"):
        raise AuthDeniedError(str(result["error"]), str(result.get("error_description") or ""))
    access_token = result.get("access_token")
    if not access_token:
        raise AuthDeniedError("no_access_token", "sign-in result carried no access_token")
    return Token.from_expires_in(
        str(access_token),
        str(result.get("refresh_token") or ""),
        int(result.get("expires_in") or 0),
    )


class BrowserSignIn:
    """Callable ``org_url -> Token`` that keeps one MSAL application per process."""

    def __init__(
        self,
        app: Optional[Any] = None,
        *,
        port: int = BROWSER_REDIRECT_PORT,
        timeout: float = AUTH_TIMEOUT_SECS,
        app_factory: Callable[..., Any] = msal.PublicClientApplication,
    ):
        self.app = app if app is not None else app_factory(CLIENT_ID, authority=LOGIN_AUTHORITY)
        self.port = port
        self.timeout = timeout

    def _silent(self, scopes: List[str]) -> Optional[Token]:
        accounts = self.app.get_accounts()
        if not accounts:
            return None
        result = self.app.acquire_token_silent(scopes, account=accounts[0])
        if not result or "access_token" not in result:
            return None
        logger.info("[auth] Reused cached browser sign-in")
        return token_from_result(result)

    def __call__(self, org_url: str) -> Token:
        scopes = browser_scopes(org_url)
        token = self._silent(scopes)
        if token is not None:
            return token
        logger.info(f"[auth] Opening browser to sign in to {org_url}")
        try:
            result = self.app.acquire_token_interactive(
                scopes,
                prompt="select_account",
                port=self.port,
                timeout=int(self.timeout),
            )
        except OSError as exc:
            raise ChallengeFailedError(
                f"browser sign-in could not listen on localhost:{self.port}: {exc}"
            ) from exc
        token = token_from_result(result)
        logger.info(f"[auth] Signed in to {org_url} through the browser")
        return token


__all__ = ["BrowserSignIn", "browser_scopes", "token_from_result"]
