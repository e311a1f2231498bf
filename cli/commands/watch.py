"""Watch command: publish bound files on change (daemon mode)."""
from __future__ import annotations

import argparse
import sys

from cli.core import open_store, resolve_environment
from xrmpub.auth import BrowserSignIn
from xrmpub.orchestrator import Orchestrator
from xrmpub.screens import EnvironmentSelect, Status


def cmd_watch(args: argparse.Namespace) -> None:
    """Sign in, watch every auto-publish binding and publish on save until interrupted."""
    store = open_store()
    env = resolve_environment(store, args.env)

    browser_auth = BrowserSignIn() if getattr(args, "browser", False) else None
    orch = Orchestrator(store, browser_auth=browser_auth)
    orch.start()
    orch.select_environment(env.name)

    watched = sorted(orch.watch.files)
    print(f"Watching {len(watched)} file(s) for {env.name}", file=sys.stderr)
    for path in watched:
        print(f"  {path}", file=sys.stderr)

    last_status = Status()
    try:
        while True:
            orch.run_once(timeout=0.5)
            if orch.status != last_status and orch.status.text:
                prefix = "error: " if orch.status.is_error else ""
                print(f"{prefix}{orch.status.text}", file=sys.stderr)
                last_status = orch.status
            if isinstance(orch.screen, EnvironmentSelect):
                # Sign-in failed or was abandoned; nothing left to watch
                raise RuntimeError(orch.status.text or "signed out")
    except KeyboardInterrupt:
        print("\nStopping watcher...", file=sys.stderr)
    finally:
        orch.shutdown()
