import asyncio
import sqlite3
import threading
from pathlib import Path

import pytest

from tagmarks.overlay_sqlite import SqliteKeyValueStore, init_store


def test_init_store_creates_schema_and_parent_dirs(tmp_path: Path):
    db = tmp_path / "nested" / "overlay.sqlite"
    init_store(db)
    init_store(db)
    with sqlite3.connect(db) as conn:
        cols = [r[1] for r in conn.execute("PRAGMA table_info(kv_store)").fetchall()]
    assert cols == ["key", "value_json", "version", "updated_at"]


def test_get_missing_key_returns_none(tmp_path: Path):
    store = SqliteKeyValueStore(tmp_path / "o.sqlite")
    assert asyncio.run(store.get("customTags")) is None


def test_set_persists_and_notifies_writer(tmp_path: Path):
    store = SqliteKeyValueStore(tmp_path / "o.sqlite")
    seen = []
    store.subscribe(seen.append)

    asyncio.run(store.set("customTags", {"https://a/": ["x"]}))
    asyncio.run(store.set("customTags", {"https://a/": ["x", "y"]}))

    assert [c.new_value for c in seen] == [{"https://a/": ["x"]}, {"https://a/": ["x", "y"]}]
    assert seen[0].old_value is None
    assert seen[1].old_value == {"https://a/": ["x"]}
    assert SqliteKeyValueStore(tmp_path / "o.sqlite").get_sync("customTags") == {"https://a/": ["x", "y"]}


def test_notified_value_is_a_copy(tmp_path: Path):
    store = SqliteKeyValueStore(tmp_path / "o.sqlite")
    seen = []
    store.subscribe(seen.append)
    value = {"https://a/": ["x"]}

    asyncio.run(store.set("k", value))
    value["https://a/"].append("mutated")

    assert seen[0].new_value == {"https://a/": ["x"]}


def test_poll_reports_writes_from_other_instances_once(tmp_path: Path):
    db = tmp_path / "o.sqlite"
    mine = SqliteKeyValueStore(db)
    theirs = SqliteKeyValueStore(db)
    seen = []
    mine.subscribe(seen.append)

    assert asyncio.run(mine.poll()) == []
    asyncio.run(theirs.set("customTags", {"https://b/": ["z"]}))

    changes = asyncio.run(mine.poll())
    assert [(c.key, c.new_value) for c in changes] == [("customTags", {"https://b/": ["z"]})]
    assert seen == changes
    assert asyncio.run(mine.poll()) == []


def test_poll_ignores_own_writes(tmp_path: Path):
    store = SqliteKeyValueStore(tmp_path / "o.sqlite")
    asyncio.run(store.set("customTags", {}))
    assert asyncio.run(store.poll()) == []


def test_existing_rows_are_the_poll_baseline(tmp_path: Path):
    db = tmp_path / "o.sqlite"
    asyncio.run(SqliteKeyValueStore(db).set("customTags", {"https://a/": ["x"]}))
    assert asyncio.run(SqliteKeyValueStore(db).poll()) == []


def test_unsubscribe(tmp_path: Path):
    store = SqliteKeyValueStore(tmp_path / "o.sqlite")
    seen = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    asyncio.run(store.set("k", 1))
    assert seen == []


def test_unreadable_value_reads_as_none(tmp_path: Path):
    db = tmp_path / "o.sqlite"
    store = SqliteKeyValueStore(db)
    with sqlite3.connect(db) as conn:
        conn.execute(
            "INSERT INTO kv_store(key, value_json, version, updated_at) VALUES('customTags', '{broken', 1, 'now')"
        )
    assert store.get_sync("customTags") is None


def test_watch_polls_until_cancelled(tmp_path: Path):
    db = tmp_path / "o.sqlite"
    mine = SqliteKeyValueStore(db)
    theirs = SqliteKeyValueStore(db)
    seen = []
    mine.subscribe(seen.append)

    async def scenario():
        task = asyncio.create_task(mine.watch(0.01))
        await theirs.set("customTags", {"https://c/": ["w"]})
        for _ in range(200):
            if seen:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert seen[0].new_value == {"https://c/": ["w"]}


def test_concurrent_writers_get_distinct_versions(tmp_path: Path):
    db = tmp_path / "o.sqlite"
    stores = [SqliteKeyValueStore(db), SqliteKeyValueStore(db)]
    start = threading.Barrier(len(stores))
    errors = []

    def write(n, store):
        start.wait()
        try:
            for i in range(30):
                store.set_sync("customTags", {"writer": n, "i": i})
        except Exception as e:  # surfaced by the assert below
            errors.append(e)

    threads = [threading.Thread(target=write, args=(n, s)) for n, s in enumerate(stores)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    with sqlite3.connect(db) as conn:
        (version,) = conn.execute("SELECT version FROM kv_store").fetchone()
    assert version == 60
    final = SqliteKeyValueStore(db).get_sync("customTags")

    # The last writer already knows the final value; the other one learns it by polling.
    changes = [s.poll_sync() for s in stores]
    assert sorted(len(c) for c in changes) == [0, 1]
    (change,) = [c for batch in changes for c in batch]
    assert change.new_value == final
