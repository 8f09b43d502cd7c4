from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List

from .config import Settings, load_settings
from .logging_config import setup_logging
from .state import (
    AppState,
    add_links_from_text,
    format_links,
    go_to_page,
    page_links,
    random_recommendations,
    remove_link,
    total_pages,
)
from .sync import LinkSyncEngine, LocalCache, RemoteLinksClient

DEFAULT_CACHE = Path.home() / ".tubelinks" / "cache.json"


def _notify(level: str, message: str) -> None:
    print(f"[{level}] {message}", file=sys.stderr)


def _read_text(parts: List[str]) -> str:
    if parts == ["-"]:
        return sys.stdin.read()
    return "\n".join(parts)


def build_engine(args: argparse.Namespace, settings: Settings) -> LinkSyncEngine:
    api = args.api or f"http://{settings.server.host}:{settings.server.port}/api"
    local = LocalCache(args.cache, settings.storage_key)
    remote = RemoteLinksClient(api, timeout=settings.server.write_timeout)
    return LinkSyncEngine(local, remote, notify=_notify)


def _load_state(engine: LinkSyncEngine, settings: Settings) -> AppState:
    links = engine.load_links()
    return AppState(links=links, items_per_page=settings.pagination.items_per_page)


def cmd_list(engine: LinkSyncEngine, settings: Settings, args: argparse.Namespace) -> int:
    state = go_to_page(_load_state(engine, settings), args.page)
    for link in page_links(state):
        print(f"{link.timestamp}  {link.url}")
    suffix = " (offline)" if engine.offline else ""
    print(f"Page {state.current_page}/{total_pages(state)}, {len(state.links)} link(s){suffix}")
    return 0


def cmd_add(engine: LinkSyncEngine, settings: Settings, args: argparse.Namespace) -> int:
    text = _read_text(args.text).strip()
    if not text:
        _notify("error", "Paste or type at least one YouTube link")
        return 1
    state, report = add_links_from_text(_load_state(engine, settings), text)
    if report.ok:
        outcome = engine.save_links(state.links, silent=True)
        if not outcome.success:
            return 1
    print(report.message())
    return 0 if report.ok else 1


def cmd_format(engine: LinkSyncEngine, settings: Settings, args: argparse.Namespace) -> int:
    links = format_links(_read_text(args.text))
    if not links:
        _notify("error", "No valid YouTube links found")
        return 1
    print("\n".join(links))
    return 0


def cmd_delete(engine: LinkSyncEngine, settings: Settings, args: argparse.Namespace) -> int:
    state = _load_state(engine, settings)
    updated = remove_link(state, args.key)
    if len(updated.links) == len(state.links):
        _notify("error", f"Link not found: {args.key}")
        return 1
    outcome = engine.delete_link(args.key, updated.links)
    return 0 if outcome.success else 1


def cmd_clear(engine: LinkSyncEngine, settings: Settings, args: argparse.Namespace) -> int:
    if not args.yes:
        _notify("error", "Refusing to clear all links without --yes")
        return 1
    outcome = engine.clear_links()
    return 0 if outcome.success else 1


def cmd_sync(engine: LinkSyncEngine, settings: Settings, args: argparse.Namespace) -> int:
    engine.handle_online()
    links = engine.load_links()
    pending = len(engine.local.read_pending())
    print(f"{len(links)} link(s), {pending} pending operation(s)")
    return 0 if not pending else 1


def cmd_random(engine: LinkSyncEngine, settings: Settings, args: argparse.Namespace) -> int:
    for link in random_recommendations(engine.load_links(), args.count):
        print(link.url)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tubelinks", description="Manage a saved list of YouTube links")
    parser.add_argument("--api", help="Base URL of the links API, e.g. http://127.0.0.1:8765/api")
    parser.add_argument("--cache", type=Path, default=DEFAULT_CACHE, help="Local cache file")
    parser.add_argument("--config", help="Path to config.json")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="Show stored links")
    p.add_argument("--page", type=int, default=1)
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("add", help="Add links found in TEXT ('-' reads stdin)")
    p.add_argument("text", nargs="+")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("format", help="Extract and print links found in TEXT")
    p.add_argument("text", nargs="+")
    p.set_defaults(func=cmd_format)

    p = sub.add_parser("delete", help="Delete one link by URL or id")
    p.add_argument("key")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("clear", help="Delete every link")
    p.add_argument("--yes", action="store_true")
    p.set_defaults(func=cmd_clear)

    p = sub.add_parser("sync", help="Push pending changes and reconcile with the server")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("random", help="Pick random links")
    p.add_argument("-n", "--count", type=int, default=5)
    p.set_defaults(func=cmd_random)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.INFO if args.verbose else logging.WARNING)
    settings = load_settings(args.config)
    engine = build_engine(args, settings)
    return args.func(engine, settings, args)


if __name__ == "__main__":
    sys.exit(main())
