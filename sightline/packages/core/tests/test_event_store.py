"""SqliteEventStore 测试

测试内容：
1. append 分配 event_id / ts，持久化后可读回
2. query 按条件过滤、按 ts 正序、惰性、limit
3. 并发 append 不丢事件
4. 聚合辅助查询
5. 连接不可用时抛 StorageError
6. 超时取消后不残留写事务、游标及时关闭、写锁共享
"""

import asyncio
import time
from datetime import UTC, datetime, timedelta

import aiosqlite
import pytest
from sightline.core.exceptions import StorageError
from sightline.core.models import ActionKind, EventFilter, NewEvent, OriginToken
from sightline.core.store import StoreGroup
from sightline.core.store.event_store import SqliteEventStore, format_ts
from sightline.core.store.sqlite_init import init_db, verify_wal_mode


def _new(path: str = "/home", token_id: str = "proj-1", action=ActionKind.VIEW, visitor="v1"):
    return NewEvent(token_id=token_id, action=action, resource_path=path, visitor_id=visitor)


async def _collect(store, flt=None, limit=None):
    return [e async for e in store.query(flt, limit=limit)]


class TestAppend:
    async def test_append_assigns_id_and_timestamp(self, event_store, utc_clock):
        event_id = await event_store.append(_new())
        assert len(event_id) == 26  # ULID 长度

        event = await event_store.get_event(event_id)
        assert event is not None
        assert event.ts == utc_clock.now
        assert event.token_id == "proj-1"
        assert event.action is ActionKind.VIEW
        assert event.visitor_id == "v1"

    async def test_append_commits_immediately(self, event_store, tmp_db_path):
        """写入后其他连接立即可见"""
        await event_store.append(_new())
        async with aiosqlite.connect(str(tmp_db_path)) as other:
            cursor = await other.execute("SELECT COUNT(*) FROM events")
            assert (await cursor.fetchone())[0] == 1

    async def test_unknown_token_violates_foreign_key(self, event_store):
        with pytest.raises(StorageError):
            await event_store.append(_new(token_id="ghost"))
        assert await event_store.count() == 0

    async def test_concurrent_appends_no_loss(self, event_store):
        ids = await asyncio.gather(
            *(event_store.append(_new(path=f"/p/{i}", visitor=f"v{i}")) for i in range(50))
        )
        assert len(set(ids)) == 50
        assert await event_store.count() == 50


class TestQuery:
    async def test_order_by_timestamp(self, event_store, utc_clock):
        for path in ("/a", "/b", "/c"):
            await event_store.append(_new(path=path))
            utc_clock.advance(seconds=1)

        events = await _collect(event_store)
        assert [e.resource_path for e in events] == ["/a", "/b", "/c"]

    async def test_same_timestamp_keeps_persistence_order(self, event_store):
        for path in ("/z", "/y", "/x"):
            await event_store.append(_new(path=path))
        events = await _collect(event_store)
        assert [e.resource_path for e in events] == ["/z", "/y", "/x"]

    async def test_filters(self, event_store, utc_clock):
        start = utc_clock.now
        await event_store.append(_new(path="/home", token_id="proj-1"))
        utc_clock.advance(minutes=5)
        await event_store.append(_new(path="/about", token_id="proj-2", action=ActionKind.CLICK))
        utc_clock.advance(minutes=5)
        await event_store.append(_new(path="/home", token_id="proj-2"))

        by_token = await _collect(event_store, EventFilter(token_id="proj-2"))
        assert len(by_token) == 2

        by_action = await _collect(event_store, EventFilter(action=ActionKind.CLICK))
        assert [e.resource_path for e in by_action] == ["/about"]

        by_path = await _collect(event_store, EventFilter(resource_path="/home"))
        assert len(by_path) == 2

        window = await _collect(
            event_store,
            EventFilter(since=start + timedelta(minutes=5), until=start + timedelta(minutes=10)),
        )
        assert [e.resource_path for e in window] == ["/about"]

    async def test_naive_since_is_treated_as_utc(self, event_store, utc_clock):
        await event_store.append(_new())
        naive = utc_clock.now.replace(tzinfo=None)
        assert len(await _collect(event_store, EventFilter(since=naive))) == 1

    async def test_limit(self, event_store):
        for i in range(5):
            await event_store.append(_new(path=f"/{i}"))
        assert len(await _collect(event_store, limit=2)) == 2
        assert len(await _collect(event_store)) == 5

    async def test_query_is_lazy(self, event_store):
        for i in range(3):
            await event_store.append(_new(path=f"/{i}"))
        iterator = event_store.query()
        first = await anext(iterator)
        assert first.resource_path == "/0"
        await iterator.aclose()


class TestAggregateHelpers:
    async def test_count_and_distinct(self, event_store):
        await event_store.append(_new(visitor="a"))
        await event_store.append(_new(visitor="a"))
        await event_store.append(_new(visitor="b"))
        assert await event_store.count() == 3
        assert await event_store.count_distinct_visitors() == 2

    async def test_count_by_resource_ordering(self, event_store):
        for path in ["/b", "/a", "/c", "/c", "/b", "/a", "/d"]:
            await event_store.append(_new(path=path))
        rows = await event_store.count_by_resource(limit=3)
        assert rows == [("/a", 2), ("/b", 2), ("/c", 2)]

    async def test_count_by_action(self, event_store):
        await event_store.append(_new(action=ActionKind.VIEW))
        await event_store.append(_new(action=ActionKind.SHARE))
        await event_store.append(_new(action=ActionKind.SHARE))
        assert await event_store.count_by_action() == {
            ActionKind.VIEW: 1,
            ActionKind.SHARE: 2,
        }

    async def test_count_by_day(self, event_store, utc_clock):
        await event_store.append(_new())
        utc_clock.advance(days=1)
        await event_store.append(_new())
        await event_store.append(_new())
        assert await event_store.count_by_day() == [("2026-03-01", 1), ("2026-03-02", 2)]


class TestStorageFailure:
    async def test_closed_connection_raises_storage_error(self, tmp_path):
        conn = await aiosqlite.connect(str(tmp_path / "closed.db"))
        await init_db(conn)
        store = SqliteEventStore(conn)
        await conn.close()

        with pytest.raises(StorageError):
            await store.append(_new())
        with pytest.raises(StorageError):
            await store.count()
        with pytest.raises(StorageError):
            await _collect(store)


class TestSchema:
    async def test_wal_mode(self, db_conn):
        assert await verify_wal_mode(db_conn)

    async def test_indexes_exist(self, db_conn):
        cursor = await db_conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'events'"
        )
        names = {row[0] for row in await cursor.fetchall()}
        assert {"idx_events_ts", "idx_events_token_ts", "idx_events_resource_path"} <= names

    def test_format_ts_is_sortable(self):
        base = datetime(2026, 1, 1, tzinfo=UTC)
        stamps = [format_ts(base), format_ts(base + timedelta(microseconds=1))]
        assert stamps == sorted(stamps)
        assert stamps[0].endswith("+00:00")


def _slow_insert_hook() -> None:
    time.sleep(0.3)


class TestConnectionHygiene:
    async def test_cancelled_append_leaves_no_open_transaction(
        self, db_conn, event_store, tmp_db_path
    ):
        """append 被 wait_for 取消后写事务已回滚，其他连接可立即写入"""
        await db_conn.create_function("slow_insert_hook", 0, _slow_insert_hook)
        await db_conn.execute(
            "CREATE TEMP TRIGGER slow_insert BEFORE INSERT ON events "
            "BEGIN SELECT slow_insert_hook(); END;"
        )

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(event_store.append(_new()), 0.1)

        assert not db_conn.in_transaction
        async with aiosqlite.connect(str(tmp_db_path), timeout=0.5) as other:
            await other.execute("UPDATE origin_tokens SET enabled = 0 WHERE token_id = 'proj-1'")
            await other.commit()
        assert await event_store.count() == 0

    async def test_read_helpers_close_cursors(self, event_store, token_store, monkeypatch):
        closed = []
        original_close = aiosqlite.Cursor.close

        async def tracking_close(cursor):
            closed.append(cursor)
            await original_close(cursor)

        monkeypatch.setattr(aiosqlite.Cursor, "close", tracking_close)

        await event_store.count()
        await event_store.count_by_resource(limit=5)
        await token_store.get_token("proj-1")
        await token_store.list_tokens()
        assert len(closed) == 4

    async def test_store_group_serializes_token_and_event_writes(self, db_conn):
        """token 写入与事件写入共用一把写锁"""
        group = StoreGroup(db_conn)
        token = OriginToken(
            token_id="late",
            secret_hash="$argon2id$placeholder",
            rate_limit=1,
            window_s=1,
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
        )

        async with group.write_lock:
            pending = asyncio.create_task(group.token_store.create_token(token))
            await asyncio.sleep(0.05)
            assert not pending.done()

        await pending
        assert await group.token_store.get_token("late") is not None
