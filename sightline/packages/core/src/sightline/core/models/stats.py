"""Dashboard 统计结果模型"""

from datetime import datetime

from pydantic import BaseModel, Field


class ResourceCount(BaseModel):
    """资源路径及其事件数"""

    resource_path: str
    count: int


class DailyCount(BaseModel):
    """按天（UTC）聚合的事件数"""

    day: str = Field(description="YYYY-MM-DD")
    count: int


class DashboardStats(BaseModel):
    """Dashboard 轮询返回的统计快照"""

    token_id: str | None = Field(default=None, description="统计范围，None 表示全部 token")
    since: datetime | None = Field(default=None, description="uniques 统计起点")
    total_count: int
    unique_visitors: int
    recent_count: int = Field(description="近期窗口内事件数")
    recent_since: datetime = Field(description="近期窗口起点")
    top_resources: list[ResourceCount]
    generated_at: datetime
