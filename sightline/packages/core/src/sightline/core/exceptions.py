"""Sightline 异常体系

AuthError 的子类仅用于内部日志区分，对外统一表现为 Unauthorized，
避免泄露某个 token 是否存在。
"""


class SightlineError(Exception):
    """基础异常"""

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 调用方是否可通过退避重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class InvalidInputError(SightlineError):
    """输入不合法（action 不在闭集内、路径为空等），属于调用方 bug，不应重试"""


class AuthError(SightlineError):
    """认证失败"""

    def __init__(self, message: str = "authentication failed") -> None:
        super().__init__(message, recoverable=False)


class TokenNotFoundError(AuthError):
    """token 不存在或已禁用"""


class InvalidSecretError(AuthError):
    """secret 与存储的哈希不匹配"""


class TokenExistsError(SightlineError):
    """重复签发同一 token_id"""

    def __init__(self, token_id: str) -> None:
        super().__init__(f"token already exists: {token_id}")
        self.token_id = token_id


class StorageError(SightlineError):
    """持久化介质不可用或超时，瞬时错误，调用方可退避重试"""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message, recoverable=True)
        self.original_error = original_error
