"""EventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除。
event_id / ts 在持久化时于写锁内分配，因此 ts 顺序即持久化顺序。
所有驱动层异常统一包装为 StorageError。
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from typing import Any

import aiosqlite
from ulid import ULID

from ..exceptions import StorageError
from ..models.enums import ActionKind
from ..models.event import Event, EventFilter, NewEvent

# 连接关闭后 aiosqlite 抛出 ValueError
STORAGE_ERRORS = (aiosqlite.Error, ValueError)

_EVENT_COLUMNS = "event_id, token_id, action, resource_path, visitor_id, ts"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def format_ts(ts: datetime) -> str:
    """统一时间戳存储格式：UTC + 微秒精度，保证字典序与时间序一致

    naive datetime 视为 UTC。
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat(timespec="microseconds")


def build_where(flt: EventFilter | None) -> tuple[str, list[Any]]:
    """将 EventFilter 转换为 WHERE 子句和参数"""
    if flt is None:
        return "", []

    clauses: list[str] = []
    params: list[Any] = []
    if flt.token_id is not None:
        clauses.append("token_id = ?")
        params.append(flt.token_id)
    if flt.since is not None:
        clauses.append("ts >= ?")
        params.append(format_ts(flt.since))
    if flt.until is not None:
        clauses.append("ts < ?")
        params.append(format_ts(flt.until))
    if flt.action is not None:
        clauses.append("action = ?")
        params.append(flt.action.value)
    if flt.resource_path is not None:
        clauses.append("resource_path = ?")
        params.append(flt.resource_path)

    if not clauses:
        return "", []
    return " WHERE " + " AND ".join(clauses), params


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        clock: Callable[[], datetime] = _utcnow,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        self._clock = clock
        # 共享连接上所有写事务需串行，避免并发 rollback 误伤他人未提交的写入
        self._write_lock = write_lock or asyncio.Lock()

    async def append(self, new_event: NewEvent) -> str:
        """追加事件（append-only），分配 event_id 与 ts 并立即提交

        Returns:
            新事件的 event_id

        Raises:
            StorageError: 持久化失败
        """
        async with self._write_lock:
            event_id = str(ULID())
            ts = self._clock()
            try:
                await self._conn.execute(
                    f"INSERT INTO events ({_EVENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        event_id,
                        new_event.token_id,
                        new_event.action.value,
                        new_event.resource_path,
                        new_event.visitor_id,
                        format_ts(ts),
                    ),
                )
                await self._conn.commit()
            except STORAGE_ERRORS as e:
                await self._rollback_quietly()
                raise StorageError("failed to append event", e) from e
            except asyncio.CancelledError:
                # 被取消时 INSERT 仍会在 aiosqlite 线程里执行完，必须回滚释放写事务
                await asyncio.shield(self._rollback_quietly())
                raise
        return event_id

    async def query(
        self,
        flt: EventFilter | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[Event]:
        """按条件惰性查询事件，按 ts 正序（同一时间戳按持久化顺序）

        未指定 limit 时不做隐式截断。
        """
        where, params = build_where(flt)
        sql = f"SELECT {_EVENT_COLUMNS} FROM events{where} ORDER BY ts ASC, rowid ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        try:
            async with self._conn.execute(sql, params) as cursor:
                async for row in cursor:
                    yield self._row_to_event(row)
        except STORAGE_ERRORS as e:
            raise StorageError("failed to query events", e) from e

    async def get_event(self, event_id: str) -> Event | None:
        """根据 event_id 查询单个事件"""
        row = await self._fetchone(
            f"SELECT {_EVENT_COLUMNS} FROM events WHERE event_id = ?",
            [event_id],
        )
        return self._row_to_event(row) if row else None

    async def count(self, flt: EventFilter | None = None) -> int:
        """统计事件数"""
        where, params = build_where(flt)
        row = await self._fetchone(f"SELECT COUNT(*) FROM events{where}", params)
        return row[0] if row else 0

    async def count_distinct_visitors(self, flt: EventFilter | None = None) -> int:
        """统计不同匿名访客数"""
        where, params = build_where(flt)
        row = await self._fetchone(
            f"SELECT COUNT(DISTINCT visitor_id) FROM events{where}", params
        )
        return row[0] if row else 0

    async def count_by_resource(
        self,
        flt: EventFilter | None = None,
        limit: int | None = None,
    ) -> list[tuple[str, int]]:
        """按 resource_path 分组计数，count 倒序、path 正序"""
        where, params = build_where(flt)
        sql = (
            f"SELECT resource_path, COUNT(*) AS hits FROM events{where} "
            "GROUP BY resource_path ORDER BY hits DESC, resource_path ASC"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self._fetchall(sql, params)
        return [(row[0], row[1]) for row in rows]

    async def count_by_action(self, flt: EventFilter | None = None) -> dict[ActionKind, int]:
        """按 action 分组计数"""
        where, params = build_where(flt)
        rows = await self._fetchall(
            f"SELECT action, COUNT(*) FROM events{where} GROUP BY action", params
        )
        return {ActionKind(row[0]): row[1] for row in rows}

    async def count_by_day(self, flt: EventFilter | None = None) -> list[tuple[str, int]]:
        """按 UTC 日期分组计数，日期正序"""
        where, params = build_where(flt)
        rows = await self._fetchall(
            f"SELECT substr(ts, 1, 10) AS day, COUNT(*) FROM events{where} "
            "GROUP BY day ORDER BY day ASC",
            params,
        )
        return [(row[0], row[1]) for row in rows]

    async def _fetchone(self, sql: str, params: list[Any]):
        try:
            async with self._conn.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except STORAGE_ERRORS as e:
            raise StorageError("failed to read events", e) from e

    async def _fetchall(self, sql: str, params: list[Any]):
        try:
            async with self._conn.execute(sql, params) as cursor:
                return await cursor.fetchall()
        except STORAGE_ERRORS as e:
            raise StorageError("failed to read events", e) from e

    async def _rollback_quietly(self) -> None:
        """写入失败后的回滚；连接已不可用时回滚本身也会失败，此时以原始错误为准"""
        try:
            await self._conn.rollback()
        except STORAGE_ERRORS:
            pass

    @staticmethod
    def _row_to_event(row) -> Event:
        """将数据库行转换为 Event 模型"""
        return Event(
            event_id=row[0],
            token_id=row[1],
            action=ActionKind(row[2]),
            resource_path=row[3],
            visitor_id=row[4],
            ts=datetime.fromisoformat(row[5]),
        )
