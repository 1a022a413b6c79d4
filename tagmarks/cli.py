from __future__ import annotations

import argparse
import asyncio
import sqlite3
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import Settings, load_settings
from .index import BookmarkIndex
from .log import LogConfig, get_logger, module_levels, setup_logging
from .model import BookmarkRecord
from .netscape_tree import NetscapeTree
from .overlay_sqlite import SqliteKeyValueStore
from .places_tree import PlacesTree
from .query import ORDERS, search

log = get_logger(__name__)


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="tagmarks",
        description="Search browser bookmarks by folder and custom tags.",
    )
    p.add_argument("-V", "--version", action="version", version=f"tagmarks {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    p.add_argument("--places", default=None, help="Firefox profile dir or places.sqlite (read/write).")
    p.add_argument("--html", default=None, help="Bookmarks HTML export (read-only).")
    p.add_argument("--overlay-db", default=None, help="SQLite file holding custom tags.")
    p.add_argument("--log-level", default=None, help="DEBUG/INFO/WARN/ERROR (overrides env/config).")
    p.add_argument("--no-color", action="store_true", help="Disable colored logging.")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("search", help="List bookmarks matching a search string, e.g. 'rust tag:lang'.")
    s.add_argument("query", nargs="?", default="", help="Free text or field:pattern qualifiers.")
    s.add_argument("--order", choices=ORDERS, default=None, help="Sort order (default from config).")
    s.add_argument("--limit", type=int, default=0, help="Show at most N bookmarks (0 = all).")

    sub.add_parser("tags", help="List every folder and custom tag.")

    t = sub.add_parser("tag", help="Set the custom tags of a bookmark URL.")
    t.add_argument("url")
    t.add_argument("tags", nargs="*")
    t.add_argument("--title", default=None, help="Also rename the bookmark.")
    t.add_argument("--append", action="store_true", help="Keep existing custom tags and add these.")

    u = sub.add_parser("untag", help="Remove all custom tags of a bookmark URL.")
    u.add_argument("url")

    r = sub.add_parser("remove", help="Delete a bookmark by id.")
    r.add_argument("id")

    args = p.parse_args(argv)
    cfg = load_settings(args.config)
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    setup_logging(
        LogConfig(level=cfg.log_level, no_color=cfg.no_color, module_levels=module_levels(cfg.log_levels or {}))
    )

    try:
        return asyncio.run(_run(args, cfg))
    except (sqlite3.Error, OSError, RuntimeError, ValueError) as e:
        log.error("%s failed: %s", args.cmd, e)
        return 2


async def _run(args, cfg: Settings) -> int:
    tree = _open_tree(args, cfg)
    if tree is None:
        log.error("No bookmark source: pass --places or --html (or set places_db / bookmarks_html).")
        return 2
    store = SqliteKeyValueStore(Path(args.overlay_db or cfg.overlay_db).expanduser())
    index = BookmarkIndex.from_settings(tree, tree, store, cfg)
    try:
        await index.initialize()
        if args.cmd == "search":
            return _cmd_search(index, args.query, args.order or cfg.default_order, args.limit)
        if args.cmd == "tags":
            for text in index.tag_texts():
                print(text)
            return 0
        if args.cmd == "tag":
            return await _cmd_tag(index, args.url, args.tags, title=args.title, append=args.append)
        if args.cmd == "untag":
            return await _cmd_untag(index, args.url)
        if args.cmd == "remove":
            return await _cmd_remove(index, args.id)
        return 2
    finally:
        index.close()


def _open_tree(args, cfg: Settings):
    places = args.places or cfg.places_db
    html = args.html or cfg.bookmarks_html
    if places:
        return PlacesTree(Path(places).expanduser(), busy_timeout_ms=cfg.busy_timeout_ms)
    if html:
        return NetscapeTree(Path(html).expanduser())
    return None


def _cmd_search(index: BookmarkIndex, query: str, order: str, limit: int) -> int:
    found = search(index.records, query, order)
    shown = found[:limit] if limit > 0 else found
    for rec in shown:
        print(format_record(rec))
    log.info("%d of %d bookmarks match.", len(found), len(index.records))
    return 0


async def _cmd_tag(
    index: BookmarkIndex,
    url: str,
    tags: List[str],
    *,
    title: Optional[str],
    append: bool,
) -> int:
    records = index.find_by_url(url)
    if not records:
        log.error("No bookmark with URL %s", url)
        return 2
    target = records[0]
    new_tags = [t.strip() for t in tags if t.strip()]
    if append:
        new_tags = target.custom_tags() + new_tags
    await index.update_tags(target, new_tags, title=title)
    print(format_record(target))
    return 0


async def _cmd_untag(index: BookmarkIndex, url: str) -> int:
    records = index.find_by_url(url)
    if not records:
        log.error("No bookmark with URL %s", url)
        return 2
    await index.remove_tags(records[0])
    return 0


async def _cmd_remove(index: BookmarkIndex, record_id: str) -> int:
    record = index.find_by_id(record_id)
    if record is None:
        log.error("No bookmark with id %s", record_id)
        return 2
    await index.remove(record)
    return 0


def format_record(rec: BookmarkRecord) -> str:
    tags = ", ".join(f"{t.text}*" if t.custom else t.text for t in rec.tag)
    line = f"[{rec.id}] {rec.title} <{rec.url}>"
    return f"{line} ({tags})" if tags else line
