"""Shared helpers for CLI commands."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Optional

# Ensure project root is on sys.path (fallback for development mode)
try:
    import xrmpub.settings  # noqa: F401
except ImportError:
    ROOT_DIR = Path(__file__).resolve().parent.parent
    if str(ROOT_DIR) not in sys.path:
        sys.path.insert(0, str(ROOT_DIR))

from xrmpub.auth import (
    BrowserSignIn,
    TokenManager,
    TokenStore,
    begin_device_auth,
    poll_for_token,
    refresh_silently,
)
from xrmpub.client import RemoteClient
from xrmpub.config_store import ConfigStore
from xrmpub.errors import EnvironmentNotFoundError, RefreshFailedError
from xrmpub.logger import get_logger
from xrmpub.models import Environment, Token

logger = get_logger("xrmpub.cli")


def output_json(data: Any) -> None:
    """Write JSON to stdout; every command reports through here."""
    json.dump(data, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def open_store() -> ConfigStore:
    return ConfigStore.load()


def resolve_environment(store: ConfigStore, name: Optional[str] = None) -> Environment:
    """Explicit ``--env`` wins, otherwise the current environment."""
    name = name or store.current_environment
    if not name:
        raise EnvironmentNotFoundError("no environment selected; pass --env or run env-use")
    env = store.get_environment(name)
    if env is None:
        raise EnvironmentNotFoundError(f"environment {name!r} not found")
    return env


def sign_in(
    env: Environment, token_store: TokenStore, *, force: bool = False, browser: bool = False
) -> Token:
    """Return a usable token: cached, silently refreshed, or from an interactive sign-in.

    ``browser`` picks MSAL browser sign-in over the device code flow.

    The device code prompt goes to stderr so stdout stays machine readable.
    """
    if not force:
        token = token_store.load_valid(env.name)
        if token is not None:
            return token
        try:
            return refresh_silently(env, token_store)
        except RefreshFailedError as exc:
            logger.info(f"[auth] Silent refresh unavailable: {exc}")

    if browser:
        token = BrowserSignIn()(env.url)
        token_store.save(env.name, token)
        return token

    challenge = begin_device_auth(env.url)
    print(
        challenge.message
        or f"To sign in, visit {challenge.verification_uri} and enter code {challenge.user_code}",
        file=sys.stderr,
    )
    token = poll_for_token(challenge, env.url)
    token_store.save(env.name, token)
    return token


def connect(env: Environment, token_store: Optional[TokenStore] = None) -> RemoteClient:
    token_store = token_store or TokenStore()
    token = sign_in(env, token_store)
    return RemoteClient(env.url, TokenManager(env, token, token_store))
