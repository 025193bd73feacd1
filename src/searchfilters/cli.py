# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Search Filters CLI: inspect and drive the engine against a per-origin JSON store.

Usage:
    search-filters sync URL
    search-filters select CATEGORY CODE [--url URL]
    search-filters clear [CATEGORY] [--url URL]
    search-filters persist CATEGORY on|off
    search-filters auto-open on|off
    search-filters sites list | add NAME DOMAIN [--short LABEL] | remove KEY
    search-filters state

Every command prints one JSON document on stdout.  Navigations that the
engine would schedule are committed immediately and reported as
``navigated_to``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

from . import FilterCategory, __version__
from .config import EngineConfig
from .logging_config import bind_origin, configure
from .notifications import CollectingSink
from .session import Command, CommandResult, FilterSession, RecordingNavigator
from .storage import JsonFileBackend

DEFAULT_ORIGIN = "https://www.google.com"

_CATEGORIES = [c.value for c in FilterCategory]


def _default_store_dir() -> str:
    return os.environ.get("SEARCHFILTERS_STORE_DIR") or str(Path.home() / ".search-filters")


def _on_off(value: str) -> bool:
    return value == "on"


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def _snapshot(session: FilterSession) -> dict[str, Any]:
    manager = session.manager
    count, summary = manager.active_summary()
    return {
        "state": {category.value: code for category, code in manager.state.items()},
        "persistence": {category.value: flag for category, flag in manager.persistence.items()},
        "auto_open": manager.auto_open,
        "active": {"count": count, "summary": summary},
    }


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _result_payload(session: FilterSession, sink: CollectingSink, result: CommandResult, navigated: str | None) -> dict:
    payload: dict[str, Any] = {"ok": result.ok, "message": result.message}
    if result.error is not None:
        payload["error"] = type(result.error).__name__
    payload.update(_snapshot(session))
    payload["notices"] = sink.messages
    payload["navigated_to"] = navigated
    return payload


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _command_for(args: argparse.Namespace) -> Command | None:
    """Translate parsed arguments into a session command; None for read-only commands."""
    match args.command:
        case "select":
            return Command.select(FilterCategory(args.category), args.code)
        case "clear":
            if args.category is None:
                return Command.clear_all()
            return Command.clear(FilterCategory(args.category))
        case "persist":
            return Command.persistence(FilterCategory(args.category), _on_off(args.value))
        case "auto-open":
            return Command.auto_open(_on_off(args.value))
        case "sites" if args.sites_command == "add":
            return Command.add_site(args.name, args.domain, args.short)
        case "sites" if args.sites_command == "remove":
            return Command.remove_site(args.key)
        case _:
            return None


def _list_sites(session: FilterSession) -> dict[str, Any]:
    catalog = session.catalog
    sites = []
    for definition in catalog.get(FilterCategory.SITE):
        if definition.code == "all":
            continue
        sites.append(
            {
                "key": definition.code,
                "name": definition.display_name,
                "short": definition.short_label,
                "query": getattr(definition.payload, "fragment", ""),
                "builtin": catalog.is_builtin_site(definition.code),
            }
        )
    return {"sites": sites, "custom": catalog.custom_count, "capacity": catalog.capacity}


async def _run(args: argparse.Namespace) -> int:
    sink = CollectingSink()
    navigator = RecordingNavigator()
    address = getattr(args, "url", None) or f"{args.origin.rstrip('/')}/"
    session = FilterSession(
        address,
        backend=JsonFileBackend(args.store_dir, args.origin),
        navigator=navigator,
        config=EngineConfig.from_env(),
        loop=asyncio.get_running_loop(),
        sink=sink,
    )
    try:
        report = session.load()

        if args.command == "sync":
            payload: dict[str, Any] = {
                "results_page": report.results_page,
                "consistent": report.consistent,
                "skipped": report.skipped,
            }
            payload.update(_snapshot(session))
            payload["navigated_to"] = report.navigated_to
            _emit(payload)
            return 0

        if args.command == "state":
            _emit(_snapshot(session))
            return 0

        if args.command == "sites" and args.sites_command == "list":
            _emit(_list_sites(session))
            return 0

        command = _command_for(args)
        if command is None:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return 2
        result = session.dispatch(command)
        navigated = session.commit(result.navigation) if result.navigation is not None else None
        _emit(_result_payload(session, sink, result, navigated))
        return 0 if result.ok else 1
    finally:
        session.teardown()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Search filter state and address synchronization",
        prog="search-filters",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Log as JSON lines on stderr")
    parser.add_argument("--store-dir", default=_default_store_dir(), metavar="DIR", help="Directory for store files")
    parser.add_argument("--origin", default=DEFAULT_ORIGIN, help=f"Store origin (default: {DEFAULT_ORIGIN})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_sync = subparsers.add_parser("sync", help="Load-time synchronization for a page address")
    p_sync.add_argument("url", metavar="URL")

    p_select = subparsers.add_parser("select", help="Select a filter value")
    p_select.add_argument("category", choices=_CATEGORIES)
    p_select.add_argument("code")
    p_select.add_argument("--url", metavar="URL", help="Current page address")

    p_clear = subparsers.add_parser("clear", help="Clear one category, or every category when none is given")
    p_clear.add_argument("category", nargs="?", choices=_CATEGORIES)
    p_clear.add_argument("--url", metavar="URL", help="Current page address")

    p_persist = subparsers.add_parser("persist", help="Remember a category across navigations")
    p_persist.add_argument("category", choices=_CATEGORIES)
    p_persist.add_argument("value", choices=["on", "off"])

    p_auto = subparsers.add_parser("auto-open", help="Open the filter panel automatically")
    p_auto.add_argument("value", choices=["on", "off"])

    p_sites = subparsers.add_parser("sites", help="Manage custom site filters")
    sites_sub = p_sites.add_subparsers(dest="sites_command", required=True)
    sites_sub.add_parser("list", help="List site filters")
    p_add = sites_sub.add_parser("add", help="Add a custom site")
    p_add.add_argument("name")
    p_add.add_argument("domain")
    p_add.add_argument("--short", metavar="LABEL", help="Short label (default: upper-cased name)")
    p_remove = sites_sub.add_parser("remove", help="Remove a custom site")
    p_remove.add_argument("key")

    subparsers.add_parser("state", help="Show the stored state")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure(json_output=args.json_logs, level="DEBUG" if args.verbose else "WARNING")
    bind_origin(args.origin)

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(code)


if __name__ == "__main__":
    main()
