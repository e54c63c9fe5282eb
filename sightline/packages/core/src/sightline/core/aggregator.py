"""Aggregator -- Dashboard 统计查询

所有查询只读、彼此独立，可与摄入并发执行，也可并发互相执行；
不提供时间点快照保证（读取的是可能仍在增长的数据集）。
统计通过 EventStore 的过滤查询在 SQLite 侧完成聚合，避免全表拉取到内存。
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from .models.enums import ActionKind
from .models.event import EventFilter
from .models.stats import DailyCount, DashboardStats, ResourceCount
from .store.protocols import EventStore

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Aggregator:
    """Dashboard 统计聚合器"""

    def __init__(
        self,
        event_store: EventStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._events = event_store
        self._clock = clock

    async def total_count(self, token_id: str | None = None) -> int:
        return await self._events.count(EventFilter(token_id=token_id))

    async def unique_visitors(
        self,
        token_id: str | None = None,
        since: datetime | None = None,
    ) -> int:
        """不同匿名访客数，按 visitor_id 去重"""
        return await self._events.count_distinct_visitors(
            EventFilter(token_id=token_id, since=since)
        )

    async def top_resources(
        self,
        token_id: str | None = None,
        limit: int = 5,
    ) -> list[ResourceCount]:
        """事件数最多的资源，count 倒序，同 count 按路径正序，最多 limit 条"""
        if limit <= 0:
            return []
        rows = await self._events.count_by_resource(EventFilter(token_id=token_id), limit=limit)
        return [ResourceCount(resource_path=path, count=count) for path, count in rows]

    async def activity_in_window(self, token_id: str | None = None, *, since: datetime) -> int:
        """since 之后（含）的事件数"""
        return await self._events.count(EventFilter(token_id=token_id, since=since))

    async def action_breakdown(
        self,
        token_id: str | None = None,
        since: datetime | None = None,
    ) -> dict[ActionKind, int]:
        """按行为类型计数，未出现的类型计 0"""
        counts = await self._events.count_by_action(EventFilter(token_id=token_id, since=since))
        return {kind: counts.get(kind, 0) for kind in ActionKind}

    async def daily_activity(
        self,
        token_id: str | None = None,
        days: int = 30,
    ) -> list[DailyCount]:
        """最近 days 天（UTC，含今天）的逐日事件数，无事件的日期补 0"""
        today = self._clock().astimezone(UTC).date()
        first_day = today - timedelta(days=days - 1)
        since = datetime(first_day.year, first_day.month, first_day.day, tzinfo=UTC)
        rows = dict(await self._events.count_by_day(EventFilter(token_id=token_id, since=since)))
        return [
            DailyCount(day=day.isoformat(), count=rows.get(day.isoformat(), 0))
            for day in (first_day + timedelta(days=i) for i in range(days))
        ]

    async def snapshot(
        self,
        token_id: str | None = None,
        since: datetime | None = None,
        top: int = 5,
        window_s: int = 300,
    ) -> DashboardStats:
        """并发计算四项核心统计并合并

        任一子查询失败则整体失败（StorageError 向上传播），不返回部分结果。
        """
        now = self._clock()
        recent_since = since if since is not None else now - timedelta(seconds=window_s)

        total, uniques, recent, resources = await asyncio.gather(
            self.total_count(token_id),
            self.unique_visitors(token_id, since),
            self.activity_in_window(token_id, since=recent_since),
            self.top_resources(token_id, top),
        )
        log.debug(
            "stats_snapshot_computed",
            token_id=token_id,
            total_count=total,
            unique_visitors=uniques,
        )
        return DashboardStats(
            token_id=token_id,
            since=since,
            total_count=total,
            unique_visitors=uniques,
            recent_count=recent,
            recent_since=recent_since,
            top_resources=resources,
            generated_at=now,
        )
