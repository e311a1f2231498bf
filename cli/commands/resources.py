"""Remote resource commands: resources, solutions, add-to-solution, create."""
from __future__ import annotations

import argparse
from pathlib import Path

from cli.core import connect, open_store, output_json, resolve_environment
from xrmpub.create import ResourceCreator
from xrmpub.models import Binding
from xrmpub.webresources import scan_folder, single_file


def cmd_resources(args: argparse.Namespace) -> None:
    store = open_store()
    env = resolve_environment(store, args.env)
    resources = connect(env).list_web_resources()
    needle = (args.filter or "").lower()
    bound = {b.web_resource_id for b in store.bindings_for_environment(env.name)}
    output_json({
        "ok": True,
        "environment": env.name,
        "resources": [
            {**r.to_dict(), "bound": r.id in bound}
            for r in resources
            if not needle or needle in r.name.lower()
        ],
    })


def cmd_solutions(args: argparse.Namespace) -> None:
    store = open_store()
    env = resolve_environment(store, args.env)
    solutions = connect(env).list_solutions()
    output_json({
        "ok": True,
        "environment": env.name,
        "solutions": [s.to_dict() for s in solutions],
    })


def cmd_add_to_solution(args: argparse.Namespace) -> None:
    store = open_store()
    env = resolve_environment(store, args.env)
    connect(env).add_web_resource_to_solution(args.solution, args.resource_id)
    output_json({"ok": True, "solution": args.solution, "resource_id": args.resource_id})


def cmd_create(args: argparse.Namespace) -> None:
    """Create, publish and bind web resources for a file or every supported file in a folder."""
    store = open_store()
    env = resolve_environment(store, args.env)
    path = Path(args.path).expanduser()

    if path.is_dir():
        prefix = args.prefix if args.prefix is not None else f"{store.publisher_prefix}_/"
        files = scan_folder(path, prefix)
    else:
        name = args.name or f"{store.publisher_prefix}_/{path.name}"
        files = [single_file(path, name)]
    if not files:
        output_json({"ok": False, "error": f"no supported files under {path}"})
        return

    report = ResourceCreator(connect(env)).create_all(files, args.solution)
    for created in report.created:
        store.add_or_update_binding(
            Binding(
                environment=env.name,
                local_path=created.file.local_path,
                web_resource_name=created.file.web_resource_name,
                web_resource_id=created.resource_id,
            )
        )
    output_json({
        "ok": report.ok,
        "message": report.summary(),
        "created": [
            {"name": c.file.web_resource_name, "id": c.resource_id, "path": c.file.local_path}
            for c in report.created
        ],
        "failed": [{"name": f.name, "error": f.error} for f in report.failed],
    })
