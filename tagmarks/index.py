"""Flat, tag-annotated view over a bookmark tree.

Every bookmark gets the titles of its enclosing folders as tags, followed
by the user's custom tags for its URL. Custom tags live in a single
overlay entry of a key-value store (``URL -> [tag, ...]``) that other
processes may share. The index keeps a copy of that overlay and
re-applies it whenever the store reports a change, including the ones it
wrote itself.

Overlay writes replace the whole mapping. Two processes that each read,
edit and write the overlay without seeing each other's change in between
lose one of the edits; ``SqliteKeyValueStore.poll`` narrows that window
but does not close it.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional

from .config import Settings
from .log import get_logger
from .model import BookmarkRecord, IndexState, Overlay, StorageChange, Tag, TreeNode
from .providers import KeyValueStore, TreeSink, TreeSource

log = get_logger(__name__)

DEFAULT_OVERLAY_KEY = "customTags"


def flatten_tree(root: TreeNode, overlay: Overlay) -> List[BookmarkRecord]:
    """Return one record per bookmark leaf, in document order."""
    out: List[BookmarkRecord] = []
    stack: List[tuple[TreeNode, List[str]]] = [(root, [])]
    while stack:
        node, folder_tags = stack.pop()
        if node.is_leaf:
            url = node.url or ""
            record = BookmarkRecord(
                id=str(node.id),
                title=node.title or "",
                url=url,
                date=node.date_added,
                tag=[Tag(text=t, custom=False) for t in folder_tags],
            )
            record.tag.extend(_custom_tags(overlay.get(url)))
            out.append(record)
            continue
        child_tags = folder_tags + [node.title] if node.title else folder_tags
        # Reversed so the first child is popped first.
        for child in reversed(node.children or []):
            stack.append((child, child_tags))
    return out


def coerce_overlay(value: Any) -> Overlay:
    if not value:
        return {}
    if not isinstance(value, dict):
        log.warning("Ignoring overlay of unexpected type %s", type(value).__name__)
        return {}
    out: Overlay = {}
    for url, tags in value.items():
        if not isinstance(tags, list):
            log.warning("Ignoring overlay entry for %s: expected a list, got %s", url, type(tags).__name__)
            continue
        out[str(url)] = [str(t) for t in tags]
    return out


class BookmarkIndex:
    def __init__(
        self,
        source: TreeSource,
        sink: TreeSink,
        store: KeyValueStore,
        *,
        overlay_key: str = DEFAULT_OVERLAY_KEY,
        write_back_on_remove: bool = False,
    ):
        self.overlay_key = overlay_key
        self.write_back_on_remove = write_back_on_remove
        self._source = source
        self._sink = sink
        self._store = store
        self._records: List[BookmarkRecord] = []
        self._overlay: Overlay = {}
        self._state = IndexState.UNINITIALIZED
        self._unsubscribe = store.subscribe(self.handle_storage_change)

    @classmethod
    def from_settings(
        cls,
        source: TreeSource,
        sink: TreeSink,
        store: KeyValueStore,
        cfg: Settings,
    ) -> "BookmarkIndex":
        return cls(
            source,
            sink,
            store,
            overlay_key=cfg.overlay_key,
            write_back_on_remove=cfg.write_back_on_remove,
        )

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def records(self) -> List[BookmarkRecord]:
        return list(self._records)

    @property
    def overlay(self) -> Overlay:
        return {url: list(tags) for url, tags in self._overlay.items()}

    async def initialize(self) -> List[BookmarkRecord]:
        self._state = IndexState.LOADING
        stored = await self._store.get(self.overlay_key)
        self._overlay = coerce_overlay(stored)
        tree = await self._source.get_tree()
        # Uses the overlay as of now: a change delivered while the tree was
        # being read has already replaced self._overlay.
        self._records = flatten_tree(tree, self._overlay)
        self._state = IndexState.READY
        log.info(
            "Indexed %d bookmarks (%d URLs with custom tags).",
            len(self._records),
            len(self._overlay),
        )
        return self.records

    def handle_storage_change(self, change: StorageChange) -> None:
        if change.key != self.overlay_key:
            return
        self.on_overlay_changed(change.new_value)

    def on_overlay_changed(self, new_overlay: Any) -> None:
        self._overlay = coerce_overlay(new_overlay)
        for record in self._records:
            record.tag = record.folder_tags() + _custom_tags(self._overlay.get(record.url))
        log.debug("Re-applied overlay (%d URLs) to %d bookmarks.", len(self._overlay), len(self._records))

    async def update_tags(
        self,
        record: BookmarkRecord,
        custom_tags: Iterable[str],
        *,
        title: Optional[str] = None,
    ) -> None:
        if title is not None and title != record.title:
            await self._sink.rename(record.id, title)
            record.title = title

        tags = list(custom_tags)
        self._overlay.pop(record.url, None)
        record.tag = record.folder_tags()
        if tags:
            self._overlay[record.url] = tags
            record.tag.extend(_custom_tags(tags))
        log.info("Set %d custom tags on %s", len(tags), record.url)
        await self._write_overlay()

    async def remove_tags(self, record: BookmarkRecord) -> None:
        self._overlay.pop(record.url, None)
        record.tag = record.folder_tags()
        log.info("Cleared custom tags on %s", record.url)
        await self._write_overlay()

    async def remove(self, record: BookmarkRecord) -> None:
        # The sink goes first: if it refuses, nothing here has changed.
        await self._sink.remove_leaf(record.id)
        self._records = [r for r in self._records if r.id != record.id]
        self._overlay.pop(record.url, None)
        if self.write_back_on_remove:
            await self._write_overlay()
        log.info("Removed bookmark %s (%s)", record.id, record.url)

    def find_by_url(self, url: str) -> List[BookmarkRecord]:
        return [r for r in self._records if r.url == url]

    def find_by_id(self, record_id: str) -> Optional[BookmarkRecord]:
        for r in self._records:
            if r.id == record_id:
                return r
        return None

    def tag_texts(self) -> List[str]:
        seen: dict[str, None] = {}
        for r in self._records:
            for t in r.tag:
                seen.setdefault(t.text, None)
        return list(seen)

    def close(self) -> None:
        self._unsubscribe()

    async def _write_overlay(self) -> None:
        await self._store.set(self.overlay_key, self.overlay)


def _custom_tags(texts: Optional[List[str]]) -> List[Tag]:
    return [Tag(text=t, custom=True) for t in texts or []]
