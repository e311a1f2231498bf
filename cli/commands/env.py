"""Environment commands: env-list, env-add, env-update, env-delete, env-use, prefix."""
from __future__ import annotations

import argparse
import sys

from cli.core import open_store, output_json
from xrmpub.auth import TokenStore


def cmd_env_list(args: argparse.Namespace) -> None:
    store = open_store()
    output_json({
        "ok": True,
        "current": store.current_environment,
        "environments": [
            {**env.to_dict(), "bindings": len(store.bindings_for_environment(env.name))}
            for env in store.environments
        ],
    })


def cmd_env_add(args: argparse.Namespace) -> None:
    store = open_store()
    env = store.add_environment(args.name, args.url)
    output_json({"ok": True, "environment": env.to_dict()})


def cmd_env_update(args: argparse.Namespace) -> None:
    store = open_store()
    env = store.update_environment(args.old_name, args.new_name, args.url)
    if args.old_name != env.name:
        token_store = TokenStore()
        token = token_store.load(args.old_name)
        if token is not None:
            token_store.save(env.name, token)
            token_store.delete(args.old_name)
    output_json({"ok": True, "environment": env.to_dict()})


def cmd_env_delete(args: argparse.Namespace) -> None:
    store = open_store()
    if store.get_environment(args.name) is not None and not args.yes:
        count = len(store.bindings_for_environment(args.name))
        answer = input(f"Delete {args.name} and its {count} binding(s)? [y/N] ")
        if answer.strip().lower() not in {"y", "yes"}:
            print("Aborted", file=sys.stderr)
            output_json({"ok": False, "error": "aborted"})
            return
    removed = store.delete_environment(args.name)
    TokenStore().delete(args.name)
    output_json({"ok": True, "deleted": args.name, "bindings_removed": removed})


def cmd_env_use(args: argparse.Namespace) -> None:
    store = open_store()
    store.set_current_environment(args.name)
    output_json({"ok": True, "current": store.current_environment})


def cmd_prefix(args: argparse.Namespace) -> None:
    store = open_store()
    if args.value is not None:
        store.set_publisher_prefix(args.value)
    output_json({"ok": True, "publisherPrefix": store.publisher_prefix})
