from __future__ import annotations

import asyncio
import sqlite3
import time
from pathlib import Path
from typing import Dict, List, Optional

from .log import get_logger
from .model import TreeNode

log = get_logger(__name__)

_ROOT_LABELS = {
    "toolbar": "Bookmarks Toolbar",
    "menu": "Bookmarks Menu",
    "unfiled": "Other Bookmarks",
    "mobile": "Mobile Bookmarks",
    "tags": "Tags",
}

_ROOT_GUID_TO_NAME = {
    "menu________": "menu",
    "toolbar_____": "toolbar",
    "tags________": "tags",
    "unfiled_____": "unfiled",
    "mobile______": "mobile",
}

_TYPE_LINK = 1
_TYPE_FOLDER = 2


class PlacesTree:
    """Bookmark tree stored in a Firefox ``places.sqlite`` database.

    Top-level roots are titled the way Firefox shows them ("Bookmarks
    Menu", "Bookmarks Toolbar", ...). Firefox's own tag folders and
    ``place:`` smart queries are left out of the tree.
    """

    def __init__(self, profile_or_db_path: Path | str, *, readonly: bool = False, busy_timeout_ms: int = 5000):
        self.db_path = resolve_places_path(Path(profile_or_db_path))
        self.readonly = readonly
        self.busy_timeout_ms = max(0, int(busy_timeout_ms))

    async def get_tree(self) -> TreeNode:
        return await asyncio.to_thread(self.read_tree)

    async def rename(self, node_id: str, title: str) -> None:
        await asyncio.to_thread(self.rename_sync, node_id, title)

    async def remove_leaf(self, node_id: str) -> None:
        await asyncio.to_thread(self.remove_leaf_sync, node_id)

    def read_tree(self) -> TreeNode:
        conn = self._connect(readonly=True)
        try:
            guid_expr = "b.guid" if _has_column(conn, "moz_bookmarks", "guid") else "NULL AS guid"
            rows = conn.execute(
                f"""
                SELECT
                  b.id, b.parent, b.type, b.title, b.position, {guid_expr}, b.dateAdded,
                  p.url, p.hidden
                FROM moz_bookmarks b
                LEFT JOIN moz_places p ON p.id = b.fk
                ORDER BY b.parent, b.position, b.id
                """
            ).fetchall()
            roots_by_id = _discover_roots(conn, rows)
        finally:
            conn.close()

        ids = {int(r["id"]) for r in rows}
        children_by_parent: Dict[int, List[sqlite3.Row]] = {}
        top: List[sqlite3.Row] = []
        for r in rows:
            parent = int(r["parent"] or 0)
            if parent in ids:
                children_by_parent.setdefault(parent, []).append(r)
            else:
                top.append(r)

        tags_root_id = next((rid for rid, name in roots_by_id.items() if name == "tags"), None)
        root = TreeNode(id="0", title="", children=[])
        # Rows are ordered by (parent, position, id) so children keep their
        # on-screen order. Each folder is expanded once, top-down.
        stack: List[tuple[sqlite3.Row, TreeNode]] = []
        if len(top) == 1 and int(top[0]["type"] or 0) == _TYPE_FOLDER:
            root.id = str(int(top[0]["id"]))
            stack.append((top[0], root))
        else:
            for r in top:
                if tags_root_id is not None and int(r["id"]) == tags_root_id:
                    continue
                node = self._node_for(r, roots_by_id)
                if node is not None:
                    root.children.append(node)
                    if node.children is not None:
                        stack.append((r, node))

        skipped = 0
        while stack:
            row, node = stack.pop()
            for child_row in children_by_parent.get(int(row["id"]), []):
                if tags_root_id is not None and int(child_row["id"]) == tags_root_id:
                    continue
                child = self._node_for(child_row, roots_by_id)
                if child is None:
                    skipped += 1
                    continue
                node.children.append(child)
                if child.children is not None:
                    stack.append((child_row, child))
        if skipped:
            log.debug("Skipped %d non-bookmark rows in %s", skipped, self.db_path)
        return root

    def rename_sync(self, node_id: str, title: str) -> None:
        self._assert_writable()
        bid = _parse_id(node_id)
        conn = self._connect(readonly=False)
        try:
            row = _require_link(conn, bid)
            now = _now_us()
            conn.execute(
                "UPDATE moz_bookmarks SET title = ?, lastModified = ? WHERE id = ?",
                (title, now, bid),
            )
            _touch_folder(conn, int(row["parent"] or 0), now)
            conn.commit()
        finally:
            conn.close()
        log.debug("Renamed bookmark %s in %s", node_id, self.db_path)

    def remove_leaf_sync(self, node_id: str) -> None:
        self._assert_writable()
        bid = _parse_id(node_id)
        conn = self._connect(readonly=False)
        try:
            row = _require_link(conn, bid)
            conn.execute("DELETE FROM moz_bookmarks WHERE id = ?", (bid,))
            fk = row["fk"]
            if fk is not None and _has_column(conn, "moz_places", "foreign_count"):
                conn.execute(
                    "UPDATE moz_places SET foreign_count = MAX(foreign_count - 1, 0) WHERE id = ?",
                    (int(fk),),
                )
            _touch_folder(conn, int(row["parent"] or 0), _now_us())
            conn.commit()
        finally:
            conn.close()
        log.debug("Removed bookmark %s from %s", node_id, self.db_path)

    def _node_for(self, row: sqlite3.Row, roots_by_id: Dict[int, str]) -> Optional[TreeNode]:
        row_id = int(row["id"])
        btype = int(row["type"] or 0)
        if btype == _TYPE_FOLDER:
            root_name = roots_by_id.get(row_id)
            if root_name:
                title = _ROOT_LABELS.get(root_name, root_name.title())
            else:
                title = (row["title"] or "").strip()
            return TreeNode(id=str(row_id), title=title, children=[])
        if btype != _TYPE_LINK:
            return None
        url = (row["url"] or "").strip()
        if not url or url.startswith("place:"):
            return None
        if int(row["hidden"] or 0) != 0:
            return None
        return TreeNode(
            id=str(row_id),
            title=(row["title"] or "").strip() or url,
            url=url,
            date_added=_moz_time_to_unix_ms(row["dateAdded"]),
        )

    def _connect(self, *, readonly: bool) -> sqlite3.Connection:
        mode = "ro" if readonly else "rw"
        uri = f"file:{self.db_path.as_posix()}?mode={mode}"
        timeout_s = max(0.1, self.busy_timeout_ms / 1000.0) if self.busy_timeout_ms > 0 else 0.1
        conn = sqlite3.connect(uri, uri=True, timeout=timeout_s)
        conn.row_factory = sqlite3.Row
        if self.busy_timeout_ms > 0:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        return conn

    def _assert_writable(self) -> None:
        if self.readonly:
            raise RuntimeError("database opened in readonly mode")


def resolve_places_path(profile_or_db_path: Path) -> Path:
    p = Path(profile_or_db_path)
    if p.is_file():
        return p
    db = p / "places.sqlite"
    if db.exists():
        return db
    raise FileNotFoundError(f"places.sqlite not found in {p}")


def _discover_roots(conn: sqlite3.Connection, rows) -> Dict[int, str]:
    out: Dict[int, str] = {}
    if _has_table(conn, "moz_bookmarks_roots"):
        for r in conn.execute("SELECT root_name, folder_id FROM moz_bookmarks_roots").fetchall():
            out[int(r["folder_id"])] = str(r["root_name"])
    if not out:
        # Newer desktop profiles can lack moz_bookmarks_roots; derive roots by stable GUIDs.
        for r in rows:
            name = _ROOT_GUID_TO_NAME.get(str(r["guid"] or ""))
            if name:
                out[int(r["id"])] = name
    return out


def _require_link(conn: sqlite3.Connection, bid: int) -> sqlite3.Row:
    row = conn.execute("SELECT type, fk, parent FROM moz_bookmarks WHERE id = ?", (bid,)).fetchone()
    if not row:
        raise ValueError(f"link id not found: {bid}")
    if int(row["type"] or 0) != _TYPE_LINK:
        raise ValueError(f"id is not a link: {bid}")
    return row


def _touch_folder(conn: sqlite3.Connection, folder_id: int, now: int) -> None:
    if folder_id:
        conn.execute("UPDATE moz_bookmarks SET lastModified = ? WHERE id = ?", (now, folder_id))


def _has_table(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=? LIMIT 1",
        (name,),
    ).fetchone()
    return row is not None


def _has_column(conn: sqlite3.Connection, table_name: str, column_name: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return any(str(r[1]) == column_name for r in rows)


def _parse_id(node_id: str) -> int:
    try:
        return int(node_id)
    except (TypeError, ValueError):
        raise ValueError(f"not a places bookmark id: {node_id!r}") from None


def _now_us() -> int:
    return int(time.time() * 1_000_000)


def _moz_time_to_unix_ms(value) -> Optional[int]:
    if value is None:
        return None
    try:
        iv = int(value)
    except (TypeError, ValueError):
        return None
    # Firefox PRTime is microseconds since Unix epoch.
    if iv > 10_000_000_000_000:
        return iv // 1000
    return iv
