from __future__ import annotations

import asyncio
import itertools
import re
from pathlib import Path
from typing import Iterator, Optional

from bs4 import BeautifulSoup  # type: ignore

from .log import get_logger
from .model import TreeNode

log = get_logger(__name__)
_WS_RE = re.compile(r"\s+")


class NetscapeTree:
    """Read-only bookmark tree from a Netscape bookmarks HTML export.

    Node ids are ``h0`` (the root) to ``hN`` in document order, so they stay
    stable for as long as the file does not change.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    async def get_tree(self) -> TreeNode:
        return await asyncio.to_thread(parse_bookmarks_tree, self.path)

    async def rename(self, node_id: str, title: str) -> None:
        raise RuntimeError(f"bookmarks export is read-only: {self.path}")

    async def remove_leaf(self, node_id: str) -> None:
        raise RuntimeError(f"bookmarks export is read-only: {self.path}")


def parse_bookmarks_tree(path: Path) -> TreeNode:
    text = path.read_text(encoding="utf-8", errors="replace")
    soup = BeautifulSoup(text, "lxml")

    dl = soup.find("dl")
    if dl is None:
        raise ValueError("Could not find <DL> root in bookmarks file")

    ids = (f"h{i}" for i in itertools.count())
    root = TreeNode(id=next(ids), title="", children=[])
    _walk_dl(dl, root, ids)
    return root


def _walk_dl(dl, parent: TreeNode, ids: Iterator[str]) -> None:
    children = parent.children if parent.children is not None else []
    for dt in _own_items(dl):
        h3 = dt.find("h3", recursive=False)
        if h3 is not None:
            name = _WS_RE.sub(" ", h3.get_text(strip=True))
            sub_dl = _folder_list(dt)
            if sub_dl is None:
                log.warning("Folder without DL: %s", name)
                continue
            folder = TreeNode(id=next(ids), title=name, children=[])
            children.append(folder)
            _walk_dl(sub_dl, folder, ids)
            continue

        a = dt.find("a", recursive=False)
        if a is not None and a.get("href"):
            children.append(
                TreeNode(
                    id=next(ids),
                    title=_WS_RE.sub(" ", a.get_text(strip=True)),
                    url=a.get("href"),
                    date_added=_seconds_to_ms(a.get("add_date")),
                )
            )
    parent.children = children


def _own_items(dl):
    # Exports leave <DT> unclosed, so the parser nests each entry inside the
    # previous one. An entry belongs to the nearest enclosing DL.
    return [dt for dt in dl.find_all("dt") if dt.find_parent("dl") is dl]


def _folder_list(dt):
    # The folder's DL ends up inside its DT or right after it, depending on
    # the parser.
    for sub_dl in dt.find_all("dl"):
        if sub_dl.find_parent("dt") is dt:
            return sub_dl
    return dt.find_next_sibling("dl")


def _seconds_to_ms(v) -> Optional[int]:
    if v is None:
        return None
    try:
        return int(v) * 1000
    except (TypeError, ValueError):
        return None
