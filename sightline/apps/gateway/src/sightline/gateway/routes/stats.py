"""Dashboard 统计路由

GET /api/stats: 统计快照（total / uniques / 近期窗口 / Top-N 资源）。
GET /api/stats/daily: 逐日事件数。
GET /api/stats/actions: 按行为类型计数。

配置了 SIGHTLINE_DASHBOARD_TOKEN 时需携带 Bearer 令牌。
查询失败返回 503，不返回陈旧或部分数据。
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query
from sightline.core.aggregator import Aggregator
from sightline.core.config import AnalyticsConfig
from sightline.core.exceptions import StorageError
from sightline.core.models import DailyCount, DashboardStats
from starlette.responses import JSONResponse

from ..deps import get_aggregator, get_config, require_dashboard_token

log = structlog.get_logger()

router = APIRouter(dependencies=[Depends(require_dashboard_token)])


def _storage_unavailable(e: StorageError) -> JSONResponse:
    log.warning("stats_query_failed", error=str(e))
    return JSONResponse(
        status_code=503,
        content={
            "error": {
                "code": "STORAGE_ERROR",
                "message": "Statistics temporarily unavailable",
            }
        },
    )


@router.get("/api/stats", response_model=DashboardStats)
async def get_stats(
    token_id: str | None = Query(default=None, description="仅统计该 token"),
    since: datetime | None = Query(default=None, description="uniques / 近期窗口起点"),
    top: int | None = Query(default=None, ge=1, le=100, description="Top-N 资源数"),
    window_s: int | None = Query(default=None, ge=1, description="近期窗口（秒）"),
    aggregator: Aggregator = Depends(get_aggregator),
    config: AnalyticsConfig = Depends(get_config),
):
    """查询 Dashboard 统计快照"""
    try:
        return await aggregator.snapshot(
            token_id=token_id,
            since=since,
            top=top or config.top_resources,
            window_s=window_s or config.recent_window_s,
        )
    except StorageError as e:
        return _storage_unavailable(e)


@router.get("/api/stats/daily", response_model=list[DailyCount])
async def get_daily_stats(
    token_id: str | None = Query(default=None),
    days: int = Query(default=30, ge=1, le=366),
    aggregator: Aggregator = Depends(get_aggregator),
):
    """查询最近 days 天的逐日事件数"""
    try:
        return await aggregator.daily_activity(token_id=token_id, days=days)
    except StorageError as e:
        return _storage_unavailable(e)


@router.get("/api/stats/actions")
async def get_action_stats(
    token_id: str | None = Query(default=None),
    since: datetime | None = Query(default=None),
    aggregator: Aggregator = Depends(get_aggregator),
):
    """按行为类型计数"""
    try:
        breakdown = await aggregator.action_breakdown(token_id=token_id, since=since)
    except StorageError as e:
        return _storage_unavailable(e)
    return {"actions": {kind.value: count for kind, count in breakdown.items()}}
