"""Store Protocol 接口定义

定义 TokenStore、EventStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from collections.abc import AsyncIterator
from typing import Protocol

from ..models.enums import ActionKind
from ..models.event import Event, EventFilter, NewEvent
from ..models.token import OriginToken


class TokenStore(Protocol):
    """Origin token 存储接口"""

    async def create_token(self, token: OriginToken) -> None:
        """写入新 token"""
        ...

    async def get_token(self, token_id: str) -> OriginToken | None:
        """根据 token_id 查询 token"""
        ...

    async def list_tokens(self) -> list[OriginToken]:
        """查询全部 token"""
        ...

    async def set_enabled(self, token_id: str, enabled: bool) -> bool:
        """启用/禁用 token"""
        ...

    async def update_rate_config(self, token_id: str, rate_limit: int, window_s: int) -> bool:
        """更新限流参数"""
        ...


class EventStore(Protocol):
    """Event 存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def append(self, new_event: NewEvent) -> str:
        """追加事件，返回 event_id"""
        ...

    def query(
        self,
        flt: EventFilter | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[Event]:
        """按条件惰性查询事件，按 ts 正序"""
        ...

    async def count(self, flt: EventFilter | None = None) -> int:
        """统计事件数"""
        ...

    async def count_distinct_visitors(self, flt: EventFilter | None = None) -> int:
        """统计不同匿名访客数"""
        ...

    async def count_by_resource(
        self,
        flt: EventFilter | None = None,
        limit: int | None = None,
    ) -> list[tuple[str, int]]:
        """按 resource_path 分组计数"""
        ...

    async def count_by_action(self, flt: EventFilter | None = None) -> dict[ActionKind, int]:
        """按 action 分组计数"""
        ...

    async def count_by_day(self, flt: EventFilter | None = None) -> list[tuple[str, int]]:
        """按 UTC 日期分组计数"""
        ...
