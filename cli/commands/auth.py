"""Auth commands: login, clear-auth."""
from __future__ import annotations

import argparse

from cli.core import open_store, output_json, resolve_environment, sign_in
from xrmpub.auth import TokenStore


def cmd_login(args: argparse.Namespace) -> None:
    """Sign in to an environment and cache the token."""
    store = open_store()
    env = resolve_environment(store, args.env)
    token = sign_in(env, TokenStore(), force=args.force, browser=getattr(args, "browser", False))
    output_json({
        "ok": True,
        "environment": env.name,
        "expires_at": token.expires_at.isoformat(),
    })


def cmd_clear_auth(args: argparse.Namespace) -> None:
    store = open_store()
    env = resolve_environment(store, args.env)
    removed = TokenStore().delete(env.name)
    output_json({"ok": True, "environment": env.name, "removed": removed})
