"""CLI entry point: argparse dispatcher for all subcommands."""
from __future__ import annotations

import argparse
import json
import sys
import traceback


# ---------------------------------------------------------------------------
# Command registry: command name → (module_path, function_name)
# Lazy-imported at dispatch time to keep startup fast.
# ---------------------------------------------------------------------------
COMMANDS = {
    "env-list":        ("cli.commands.env",       "cmd_env_list"),
    "env-add":         ("cli.commands.env",       "cmd_env_add"),
    "env-update":      ("cli.commands.env",       "cmd_env_update"),
    "env-delete":      ("cli.commands.env",       "cmd_env_delete"),
    "env-use":         ("cli.commands.env",       "cmd_env_use"),
    "prefix":          ("cli.commands.env",       "cmd_prefix"),
    "login":           ("cli.commands.auth",      "cmd_login"),
    "clear-auth":      ("cli.commands.auth",      "cmd_clear_auth"),
    "resources":       ("cli.commands.resources", "cmd_resources"),
    "solutions":       ("cli.commands.resources", "cmd_solutions"),
    "add-to-solution": ("cli.commands.resources", "cmd_add_to_solution"),
    "create":          ("cli.commands.resources", "cmd_create"),
    "bindings":        ("cli.commands.bindings",  "cmd_bindings"),
    "bind":            ("cli.commands.bindings",  "cmd_bind"),
    "unbind":          ("cli.commands.bindings",  "cmd_unbind"),
    "auto-publish":    ("cli.commands.bindings",  "cmd_auto_publish"),
    "publish":         ("cli.commands.bindings",  "cmd_publish"),
    "watch":           ("cli.commands.watch",     "cmd_watch"),
}


# ---------------------------------------------------------------------------
# Shared argparse helpers
# ---------------------------------------------------------------------------
def _add_env_arg(p: argparse.ArgumentParser) -> None:
    p.add_argument("-e", "--env", help="Environment name (defaults to the current one)")


# ---------------------------------------------------------------------------
# Parser builder
# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    from cli._version import __version__

    parser = argparse.ArgumentParser(
        prog="xrmpub",
        description="Bind local files to Dynamics 365 web resources and publish them on save",
    )
    parser.add_argument("--debug", action="store_true", help="Show stack traces on error")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    # environments
    sub.add_parser("env-list", help="List configured environments")

    p = sub.add_parser("env-add", help="Add an environment")
    p.add_argument("name", help="Environment name")
    p.add_argument("url", help="Organization URL, e.g. https://myorg.crm.dynamics.com")

    p = sub.add_parser("env-update", help="Rename an environment or change its URL")
    p.add_argument("old_name", help="Current environment name")
    p.add_argument("new_name", help="New environment name")
    p.add_argument("url", help="Organization URL")

    p = sub.add_parser("env-delete", help="Delete an environment and its bindings")
    p.add_argument("name", help="Environment name")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    p = sub.add_parser("env-use", help="Set the current environment")
    p.add_argument("name", help="Environment name")

    p = sub.add_parser("prefix", help="Show or set the publisher prefix for new resources")
    p.add_argument("value", nargs="?", help="New prefix")

    # auth
    p = sub.add_parser("login", help="Sign in with the device code flow or the browser")
    _add_env_arg(p)
    p.add_argument("--force", action="store_true", help="Ignore cached credentials")
    p.add_argument("--browser", action="store_true", help="Sign in through the system browser")

    p = sub.add_parser("clear-auth", help="Remove cached credentials")
    _add_env_arg(p)

    # remote resources
    p = sub.add_parser("resources", help="List unmanaged HTML/CSS/JS web resources")
    _add_env_arg(p)
    p.add_argument("--filter", help="Only names containing this text")

    p = sub.add_parser("solutions", help="List unmanaged solutions")
    _add_env_arg(p)

    p = sub.add_parser("add-to-solution", help="Add a web resource to a solution")
    _add_env_arg(p)
    p.add_argument("solution", help="Solution unique name")
    p.add_argument("resource_id", help="Web resource id")

    p = sub.add_parser("create", help="Create web resources from a file or folder")
    _add_env_arg(p)
    p.add_argument("path", help="File or folder to create resources from")
    p.add_argument("--name", help="Web resource name (single file only)")
    p.add_argument("--prefix", help="Name prefix for folder scans (default: <publisherPrefix>_/)")
    p.add_argument("--solution", help="Solution unique name to add the resources to")

    # bindings
    p = sub.add_parser("bindings", help="List bindings")
    _add_env_arg(p)

    p = sub.add_parser("bind", help="Bind a local file to a web resource")
    _add_env_arg(p)
    p.add_argument("resource_id", help="Web resource id")
    p.add_argument("path", help="Local file path")
    p.add_argument("--name", help="Web resource name (looked up remotely when omitted)")
    p.add_argument("--no-auto-publish", action="store_true", help="Do not publish on save")

    p = sub.add_parser("unbind", help="Remove a binding")
    _add_env_arg(p)
    p.add_argument("resource_id", help="Web resource id")

    p = sub.add_parser("auto-publish", help="Turn auto-publish on or off for a binding")
    _add_env_arg(p)
    p.add_argument("resource_id", help="Web resource id")
    p.add_argument("state", choices=["on", "off", "toggle"], default="toggle", nargs="?")

    p = sub.add_parser("publish", help="Upload and publish a bound file now")
    _add_env_arg(p)
    p.add_argument("resource_id", help="Web resource id")

    # watch
    p = sub.add_parser("watch", help="Publish bound files whenever they change")
    _add_env_arg(p)
    p.add_argument("--browser", action="store_true", help="Sign in through the system browser")

    return parser


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
def main() -> None:
    from dotenv import load_dotenv

    # Settings are read at import time, so .env must be applied first
    load_dotenv()

    parser = build_parser()
    argv = sys.argv[1:]
    debug = False
    if "--debug" in argv:
        debug = True
        argv = [arg for arg in argv if arg != "--debug"]
    args = parser.parse_args(argv)
    args.debug = bool(debug or getattr(args, "debug", False))

    entry = COMMANDS.get(args.command)
    if not entry:
        parser.print_help()
        sys.exit(1)

    mod_path, fn_name = entry
    try:
        import importlib
        mod = importlib.import_module(mod_path)
        fn = getattr(mod, fn_name)
        fn(args)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as exc:
        json.dump({"ok": False, "error": str(exc)}, sys.stdout, default=str)
        sys.stdout.write("\n")
        if args.debug:
            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
