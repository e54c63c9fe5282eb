"""Event Domain Model

事件表 append-only，不允许更新或删除。
event_id 使用 ULID 格式，与 ts 一同在持久化时由 EventStore 赋值。
visitor_id 只保存匿名化后的标识，原始标识永不落盘。
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import ActionKind


class NewEvent(BaseModel):
    """待写入事件（尚未分配 event_id / ts）"""

    model_config = ConfigDict(frozen=True)

    token_id: str = Field(description="来源 token ID")
    action: ActionKind = Field(description="访客行为类型")
    resource_path: str = Field(min_length=1, description="资源路径")
    visitor_id: str = Field(min_length=1, description="匿名化访客标识")


class Event(BaseModel):
    """已持久化事件，创建后不可变"""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(description="唯一标识，ULID 格式")
    token_id: str = Field(description="来源 token ID")
    action: ActionKind = Field(description="访客行为类型")
    resource_path: str = Field(description="资源路径")
    visitor_id: str = Field(description="匿名化访客标识")
    ts: datetime = Field(description="持久化时间戳（UTC）")


class EventFilter(BaseModel):
    """事件查询条件，所有字段可选，组合为 AND"""

    token_id: str | None = Field(default=None, description="按来源 token 过滤")
    since: datetime | None = Field(default=None, description="起始时间（含）")
    until: datetime | None = Field(default=None, description="结束时间（不含）")
    action: ActionKind | None = Field(default=None, description="按行为类型过滤")
    resource_path: str | None = Field(default=None, description="按资源路径过滤")
