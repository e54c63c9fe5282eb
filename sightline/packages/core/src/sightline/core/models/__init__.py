"""Sightline Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import Admission, ActionKind, RejectReason, parse_action
from .event import Event, EventFilter, NewEvent
from .stats import DailyCount, DashboardStats, ResourceCount
from .token import OriginToken, RateConfig

__all__ = [
    # 枚举
    "ActionKind",
    "Admission",
    "RejectReason",
    "parse_action",
    # Event
    "Event",
    "EventFilter",
    "NewEvent",
    # Token
    "OriginToken",
    "RateConfig",
    # Stats
    "DailyCount",
    "DashboardStats",
    "ResourceCount",
]
