"""OAuth device code flow against the Microsoft identity platform.

``begin_device_auth`` issues a challenge, ``poll_for_token`` waits for the
user to finish signing in out-of-band, and ``refresh_with_token`` performs a
silent refresh-token grant.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional

import requests

from xrmpub.errors import (
    AuthCancelledError,
    AuthDeniedError,
    AuthTimeoutError,
    ChallengeFailedError,
    RefreshFailedError,
)
from xrmpub.logger import get_logger
from xrmpub.models import DeviceChallenge, Token
from xrmpub.settings import AUTH_TIMEOUT_SECS, AUTHORITY, CLIENT_ID, REQUEST_TIMEOUT_SECS
from xrmpub.transport import build_session

logger = get_logger(__name__)

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
SLOW_DOWN_STEP_SECS = 5


def scope_for(org_url: str) -> str:
    # offline_access makes the token endpoint hand out a refresh token
    return f"{org_url.rstrip('/')}/.default offline_access"


def _decode(response: requests.Response) -> Dict[str, Any]:
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


def begin_device_auth(org_url: str, session: Optional[requests.Session] = None) -> DeviceChallenge:
    """Request a device code challenge scoped to ``org_url``."""
    session = session or build_session()
    try:
        response = session.post(
            f"{AUTHORITY}/devicecode",
            data={"client_id": CLIENT_ID, "scope": scope_for(org_url)},
            timeout=REQUEST_TIMEOUT_SECS,
        )
    except requests.RequestException as exc:
        raise ChallengeFailedError(f"device code request failed: {exc}") from exc

    if not 200 <= response.status_code < 300:
        raise ChallengeFailedError(
            f"device code request failed ({response.status_code}): {response.text[:500]}"
        )
    try:
        challenge = DeviceChallenge.from_dict(_decode(response))
    except ValueError as exc:
        raise ChallengeFailedError(f"device code response was not valid JSON: {exc}") from exc
    if not challenge.device_code:
        raise ChallengeFailedError("device code response carried no device_code")

    logger.info(f"[auth] Device code issued for {org_url}: visit {challenge.verification_uri}")
    return challenge


def poll_for_token(
    challenge: DeviceChallenge,
    org_url: str,
    *,
    session: Optional[requests.Session] = None,
    cancel: Optional[threading.Event] = None,
    timeout: float = AUTH_TIMEOUT_SECS,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Token:
    """Poll the token endpoint until the user signs in, is denied, or time runs out.

    A single failed poll (network error, undecodable body) is logged and the
    loop continues; only the overall deadline, a terminal error code, or the
    ``cancel`` flag end it.
    """
    session = session or build_session()
    payload = {
        "client_id": CLIENT_ID,
        "grant_type": DEVICE_CODE_GRANT,
        "device_code": challenge.device_code,
        "scope": scope_for(org_url),
    }
    interval = max(1, int(challenge.interval))
    deadline = clock() + timeout

    while True:
        if cancel is not None and cancel.is_set():
            raise AuthCancelledError("device code flow was cancelled")
        remaining = deadline - clock()
        if remaining <= 0:
            raise AuthTimeoutError("authentication timed out")
        sleep(min(interval, remaining))
        if cancel is not None and cancel.is_set():
            raise AuthCancelledError("device code flow was cancelled")
        if clock() >= deadline:
            raise AuthTimeoutError("authentication timed out")

        try:
            response = session.post(
                f"{AUTHORITY}/token", data=payload, timeout=REQUEST_TIMEOUT_SECS
            )
            body = _decode(response)
        except (requests.RequestException, ValueError) as exc:
            logger.warning(f"[auth] Token poll failed, retrying: {exc}")
            continue

        error = body.get("error") or ""
        if error == "authorization_pending":
            continue
        if error == "slow_down":
            interval += SLOW_DOWN_STEP_SECS
            logger.debug(f"[auth] slow_down received, polling every {interval}s")
            continue
        if error:
            raise AuthDeniedError(str(error), str(body.get("error_description") or ""))

        access_token = body.get("access_token")
        if access_token:
            logger.info(f"[auth] Signed in to {org_url}")
            return Token.from_expires_in(
                str(access_token),
                str(body.get("refresh_token") or ""),
                int(body.get("expires_in") or 0),
            )


def refresh_with_token(
    refresh_token: str, org_url: str, session: Optional[requests.Session] = None
) -> Token:
    """Exchange a refresh token for a new token; any failure is RefreshFailedError."""
    if not refresh_token:
        raise RefreshFailedError("no refresh token cached, re-authentication required")
    session = session or build_session()
    try:
        response = session.post(
            f"{AUTHORITY}/token",
            data={
                "client_id": CLIENT_ID,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": scope_for(org_url),
            },
            timeout=REQUEST_TIMEOUT_SECS,
        )
        body = _decode(response)
    except (requests.RequestException, ValueError) as exc:
        raise RefreshFailedError(f"token refresh failed: {exc}") from exc

    if body.get("error"):
        raise RefreshFailedError(
            f"refresh error: {body.get('error')} - {body.get('error_description') or ''}"
        )
    access_token = body.get("access_token")
    if not access_token:
        raise RefreshFailedError("refresh response carried no access_token")
    return Token.from_expires_in(
        str(access_token),
        # Some tenants do not rotate refresh tokens
        str(body.get("refresh_token") or refresh_token),
        int(body.get("expires_in") or 0),
    )
