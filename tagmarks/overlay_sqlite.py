from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .log import get_logger
from .model import StorageChange
from .providers import ChangeListener, ListenerSet

log = get_logger(__name__)


def init_store(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value_json TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
            """
        )


class SqliteKeyValueStore:
    """Key-value store in a SQLite file that several processes may share.

    Writes through this instance notify its subscribers right away. Writes
    made by other processes are only noticed by ``poll`` (or ``watch``),
    which compares each key's version counter with the last one seen here.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        init_store(self.db_path)
        self._listeners = ListenerSet()
        self._seen: Dict[str, Tuple[int, Any]] = {}
        for key, version, value in self._read_all():
            self._seen[key] = (version, value)

    async def get(self, key: str) -> Any:
        return await asyncio.to_thread(self.get_sync, key)

    async def set(self, key: str, value: Any) -> None:
        old, version = await asyncio.to_thread(self.set_sync, key, value)
        self._listeners.emit(StorageChange(key=key, old_value=old, new_value=_decode(_encode(value), key)))
        log.debug("Stored %s (version %d) in %s", key, version, self.db_path)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        return self._listeners.add(listener)

    async def poll(self) -> List[StorageChange]:
        changes = await asyncio.to_thread(self.poll_sync)
        for change in changes:
            self._listeners.emit(change)
        if changes:
            log.info("Picked up %d external change(s) from %s", len(changes), self.db_path)
        return changes

    async def watch(self, interval_s: float) -> None:
        """Poll for external changes until cancelled."""
        while True:
            await self.poll()
            await asyncio.sleep(interval_s)

    def get_sync(self, key: str) -> Any:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT value_json, version FROM kv_store WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        value = _decode(row[0], key)
        self._seen[key] = (int(row[1]), value)
        return value

    def set_sync(self, key: str, value: Any) -> Tuple[Any, int]:
        encoded = _encode(value)
        now = datetime.now(timezone.utc).isoformat()
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        try:
            # Read and bump the version under one write lock so every write
            # gets a distinct version, whichever process makes it.
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT value_json, version FROM kv_store WHERE key = ?", (key,)).fetchone()
                old = _decode(row[0], key) if row else None
                version = (int(row[1]) if row else 0) + 1
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value_json, version, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json=excluded.value_json,
                        version=excluded.version,
                        updated_at=excluded.updated_at
                    """,
                    (key, encoded, version, now),
                )
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()
        self._seen[key] = (version, _decode(encoded, key))
        return old, version

    def poll_sync(self) -> List[StorageChange]:
        changes: List[StorageChange] = []
        for key, version, value in self._read_all():
            seen = self._seen.get(key)
            if seen is not None and seen[0] == version:
                continue
            old = seen[1] if seen is not None else None
            self._seen[key] = (version, value)
            changes.append(StorageChange(key=key, old_value=old, new_value=value))
        return changes

    def _read_all(self) -> List[Tuple[str, int, Any]]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute("SELECT key, version, value_json FROM kv_store ORDER BY key").fetchall()
        return [(str(r[0]), int(r[1]), _decode(r[2], str(r[0]))) for r in rows]


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _decode(text: Optional[str], key: str) -> Any:
    if text is None:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        log.warning("Ignoring unreadable value for %s", key)
        return None
