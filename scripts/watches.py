#!/usr/bin/env python3
"""Manage watches and inspect results from the command line.

Usage:
    python scripts/watches.py add "term one" ["term two" ...] [--name N] [--loose] [--exclude T ...]
    python scripts/watches.py list
    python scripts/watches.py results WATCH_ID
    python scripts/watches.py ack WATCH_ID | --all
    python scripts/watches.py toggle WATCH_ID
    python scripts/watches.py remove WATCH_ID
    python scripts/watches.py run WATCH_ID      # one immediate run, ignores cadence
    python scripts/watches.py block URL [--title T]
    python scripts/watches.py unblock URL
    python scripts/watches.py blocked

DB_PATH and CONFIG_PATH are read from the environment like main.py.
"""

import json
import os
import sys
from pathlib import Path

# Add parent dir to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from blocklist import BlockedItemRepository
from config import AppConfig, load_config
from database import Database
from errors import StoreNotFound
from main import build_scheduler
from store import ResultStore
from watchlist import WatchRepository


def _load_config() -> AppConfig:
    config_path = os.environ.get("CONFIG_PATH", "config.json")
    if not Path(config_path).exists():
        return AppConfig()
    return load_config(config_path, os.environ.get("ENV_PATH", ".env"))


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Manage marketplace watches")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Create a watch")
    add.add_argument("terms", nargs="+")
    add.add_argument("--name", default="")
    add.add_argument("--loose", action="store_true", help="Disable strict title matching")
    add.add_argument("--exclude", nargs="*", default=[], help="Exclude titles containing these")
    add.add_argument("--site", action="append", default=[], metavar="NAME=on|off")

    sub.add_parser("list", help="List watches with unread counts")

    for name in ("results", "toggle", "remove", "run"):
        p = sub.add_parser(name)
        p.add_argument("watch_id")

    ack = sub.add_parser("ack", help="Mark results as read")
    ack.add_argument("watch_id", nargs="?")
    ack.add_argument("--all", action="store_true")

    block = sub.add_parser("block", help="Never store this link again, for any watch")
    block.add_argument("url")
    block.add_argument("--title", default="")

    unblock = sub.add_parser("unblock")
    unblock.add_argument("url")

    sub.add_parser("blocked", help="List blocked links")

    args = parser.parse_args()

    db = Database(os.environ.get("DB_PATH", "market_watch.db"))
    repo = WatchRepository(db)
    store = ResultStore(db)
    blocked = BlockedItemRepository(db)

    try:
        if args.command == "add":
            sites = {}
            for entry in args.site:
                site, _, state = entry.partition("=")
                sites[site] = state.lower() in ("on", "true", "1", "yes")
            watch = repo.add(
                args.terms,
                name=args.name,
                strict=not args.loose,
                exclude_terms=args.exclude,
                enabled_sites=sites,
            )
            print(f"{watch.id}  {watch.name}")

        elif args.command == "list":
            counts = store.new_counts()
            for watch in repo.list_all():
                flag = " " if watch.active else "x"
                last = watch.last_run.isoformat(timespec="seconds") if watch.last_run else "never"
                print(f"[{flag}] {watch.id}  {watch.name:<30} new={counts.get(watch.id, 0):<4} last_run={last}")

        elif args.command == "results":
            for item in store.get_results(args.watch_id):
                marker = "*" if item.is_new else " "
                print(f"{marker} {item.source:<12} {item.price:<10} {item.title}\n    {item.link}")

        elif args.command == "ack":
            if args.all:
                print(f"Cleared {store.acknowledge_all()} watch(es)")
            elif args.watch_id:
                store.acknowledge(args.watch_id)
            else:
                parser.error("ack needs WATCH_ID or --all")

        elif args.command == "toggle":
            watch = repo.get(args.watch_id)
            if watch is None:
                raise StoreNotFound(args.watch_id)
            watch = repo.set_active(args.watch_id, not watch.active)
            print(f"{watch.id} active={watch.active}")

        elif args.command == "remove":
            repo.remove(args.watch_id)

        elif args.command == "run":
            watch = repo.get(args.watch_id)
            if watch is None:
                raise StoreNotFound(args.watch_id)
            scheduler = build_scheduler(_load_config(), db)
            try:
                delta = scheduler.run_watch(watch)
            finally:
                scheduler.shutdown()
            if delta is not None:
                print(json.dumps(delta.model_dump(mode="json"), indent=2, ensure_ascii=False))

        elif args.command == "block":
            if not args.url.strip():
                parser.error("block needs a non-empty URL")
            if blocked.add(args.url, title=args.title) is None:
                print(f"Already blocked: {args.url}")

        elif args.command == "unblock":
            if not blocked.remove(args.url):
                print(f"Not blocked: {args.url}", file=sys.stderr)
                sys.exit(1)

        elif args.command == "blocked":
            for item in blocked.list_all():
                print(f"{item.blocked_at.isoformat(timespec='seconds')}  {item.url}  {item.title}")

    except StoreNotFound as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
