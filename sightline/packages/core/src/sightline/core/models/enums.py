"""枚举定义

包含 ActionKind 访客行为闭集、RejectReason 拒绝原因与 Admission 限流判定。
"""

from enum import StrEnum


class ActionKind(StrEnum):
    """访客行为类型（闭集），不在此集合内的 action 一律 InvalidInput"""

    VIEW = "view"
    CLICK = "click"
    SCROLL = "scroll"
    DOWNLOAD = "download"
    SHARE = "share"


class RejectReason(StrEnum):
    """摄入拒绝原因"""

    INVALID_INPUT = "InvalidInput"
    UNAUTHORIZED = "Unauthorized"
    RATE_LIMITED = "RateLimited"
    STORAGE_ERROR = "StorageError"


class Admission(StrEnum):
    """限流判定结果"""

    ALLOWED = "allowed"
    RATE_LIMITED = "rate_limited"


def parse_action(value: str) -> ActionKind | None:
    """将外部输入解析为 ActionKind，非法值返回 None

    Args:
        value: 调用方传入的 action 字符串

    Returns:
        ActionKind 或 None
    """
    try:
        return ActionKind(value)
    except ValueError:
        return None
