"""Binding commands: bindings, bind, unbind, auto-publish, publish."""
from __future__ import annotations

import argparse
from pathlib import Path

from cli.core import connect, open_store, output_json, resolve_environment
from xrmpub.errors import BindingNotFoundError, RemoteAPIError
from xrmpub.models import Binding
from xrmpub.publish import PublishPipeline


def cmd_bindings(args: argparse.Namespace) -> None:
    store = open_store()
    env = resolve_environment(store, args.env)
    output_json({
        "ok": True,
        "environment": env.name,
        "bindings": [b.to_dict() for b in store.bindings_for_environment(env.name)],
    })


def cmd_bind(args: argparse.Namespace) -> None:
    store = open_store()
    env = resolve_environment(store, args.env)
    path = Path(args.path).expanduser().resolve()
    if not path.is_file():
        raise FileNotFoundError(f"no such file: {path}")

    name = args.name
    if not name:
        matches = [r for r in connect(env).list_web_resources() if r.id == args.resource_id]
        if not matches:
            raise RemoteAPIError(404, f"web resource {args.resource_id} not found in {env.name}")
        name = matches[0].name

    binding = store.add_or_update_binding(
        Binding(
            environment=env.name,
            local_path=str(path),
            web_resource_name=name,
            web_resource_id=args.resource_id,
            auto_publish=not args.no_auto_publish,
        )
    )
    output_json({"ok": True, "binding": binding.to_dict()})


def cmd_unbind(args: argparse.Namespace) -> None:
    store = open_store()
    env = resolve_environment(store, args.env)
    removed = store.delete_binding(env.name, args.resource_id)
    output_json({"ok": True, "removed": removed.to_dict()})


def cmd_auto_publish(args: argparse.Namespace) -> None:
    store = open_store()
    env = resolve_environment(store, args.env)
    binding = store.get_binding(env.name, args.resource_id)
    if binding is None:
        raise BindingNotFoundError(f"no binding for {args.resource_id} in {env.name!r}")
    enabled = {"on": True, "off": False}.get(args.state, not binding.auto_publish)
    binding = store.set_auto_publish(env.name, args.resource_id, enabled)
    output_json({"ok": True, "binding": binding.to_dict()})


def cmd_publish(args: argparse.Namespace) -> None:
    """Publish one binding now and bump its version."""
    store = open_store()
    env = resolve_environment(store, args.env)
    pipeline = PublishPipeline(store)
    binding = pipeline.prepare(env.name, args.resource_id)
    pipeline.client = connect(env)
    binding = pipeline.commit(pipeline.upload(binding))
    output_json({"ok": True, "binding": binding.to_dict()})
