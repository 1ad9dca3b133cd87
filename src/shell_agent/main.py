"""shell_agent.main

Entry point.

Run:
    shell-agent user@host[:port] [-p PORT] [-i KEY] [-o OPTION]...
    shell-agent --local
    python -m shell_agent.main --fake --local
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .config import SUPPORTED_PROVIDERS, apply_overrides, load_config
from .connection import Connection, LocalShellConnection, parse_destination


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="shell-agent", description="SSH terminal with an AI assistant that proposes commands.")
    ap.add_argument("destination", nargs="?", help="[user@]host[:port] to connect to on start")
    ap.add_argument("-p", "--port", type=int, default=None, help="SSH port")
    ap.add_argument("-i", "--identity", default=None, help="SSH identity file")
    ap.add_argument("-o", "--option", action="append", default=[], help="Extra SSH option (repeatable)")
    ap.add_argument("--local", action="store_true", help="Open a local shell instead of SSH")
    ap.add_argument("--config", type=Path, default=None, help="Path to a JSON config file")
    ap.add_argument("--fake", action="store_true", help="Use the offline fake assistant")
    ap.add_argument("--provider", choices=SUPPORTED_PROVIDERS, default=None, help="Assistant backend")
    ap.add_argument("--model", default=None, help="Model name (defaults per provider)")
    return ap


def connection_from_args(args: argparse.Namespace) -> Optional[Connection]:
    if args.local:
        return LocalShellConnection()
    if not args.destination:
        return None
    return parse_destination(
        args.destination,
        port=args.port,
        identity_file=args.identity,
        options=tuple(args.option or ()),
    )


def main(argv: Optional[list[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    try:
        connection = connection_from_args(args)
    except ValueError as e:
        ap.error(str(e))

    cfg = load_config(args.config)
    overrides = {}
    if args.provider:
        overrides["provider"] = args.provider
    if args.model:
        overrides["model"] = args.model
    if overrides:
        cfg = apply_overrides(cfg, overrides)
    if args.fake:
        cfg = replace(cfg, fake_mode=True)

    from .ui import run  # noqa: WPS433

    return run(cfg, connection)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
