"""SecretStore -- origin token 的签发与校验

只保存 secret 的 Argon2id 哈希（argon2-cffi，自带随机 salt，校验为常量时间比较）。
哈希计算是 CPU 密集操作，通过 asyncio.to_thread 移出事件循环。

校验失败时：
- token 不存在或已禁用 -> TokenNotFoundError
- secret 不匹配 -> InvalidSecretError
两者对外统一为 Unauthorized。不存在的 token 同样执行一次哑哈希校验，
避免通过响应时间探测 token 是否存在。
"""

import asyncio
import re
import secrets
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from .config import MAX_TOKEN_ID_LENGTH
from .exceptions import InvalidInputError, InvalidSecretError, TokenNotFoundError
from .models.token import OriginToken, RateConfig
from .store.protocols import TokenStore

log = structlog.get_logger()

_TOKEN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# 签发 secret 的随机字节数
SECRET_NBYTES = 32


def _utcnow() -> datetime:
    return datetime.now(UTC)


def validate_token_id(token_id: str) -> None:
    """校验 token_id 格式

    Raises:
        InvalidInputError: 为空、过长或包含非法字符
    """
    if not token_id or len(token_id) > MAX_TOKEN_ID_LENGTH or not _TOKEN_ID_RE.match(token_id):
        raise InvalidInputError(f"invalid token_id: {token_id!r}")


class SecretStore:
    """Origin token secret 存储与校验"""

    def __init__(
        self,
        token_store: TokenStore,
        hasher: PasswordHasher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._tokens = token_store
        self._hasher = hasher or PasswordHasher()
        self._clock = clock
        # 未知 token 时用于等时校验的哑哈希
        self._dummy_hash = self._hasher.hash(secrets.token_urlsafe(SECRET_NBYTES))

    async def verify(self, token_id: str, presented_secret: str) -> RateConfig:
        """校验 token secret，成功时返回其限流配置

        Raises:
            TokenNotFoundError: token 不存在或已禁用
            InvalidSecretError: secret 不匹配
            StorageError: token 读取失败
        """
        token = await self._tokens.get_token(token_id)
        if token is None or not token.enabled:
            await asyncio.to_thread(self._check, self._dummy_hash, presented_secret)
            raise TokenNotFoundError()

        matched = await asyncio.to_thread(self._check, token.secret_hash, presented_secret)
        if not matched:
            raise InvalidSecretError()
        return token.rate_config

    async def issue(self, token_id: str, rate_limit: int, window_s: int) -> str:
        """签发新 token，原始 secret 仅在此返回一次

        Raises:
            InvalidInputError: token_id 非法
            TokenExistsError: token_id 已存在
        """
        validate_token_id(token_id)
        raw_secret = secrets.token_urlsafe(SECRET_NBYTES)
        secret_hash = await asyncio.to_thread(self._hasher.hash, raw_secret)
        token = OriginToken(
            token_id=token_id,
            secret_hash=secret_hash,
            rate_limit=rate_limit,
            window_s=window_s,
            created_at=self._clock(),
        )
        await self._tokens.create_token(token)
        log.info(
            "origin_token_issued",
            token_id=token_id,
            rate_limit=rate_limit,
            window_s=window_s,
        )
        return raw_secret

    async def disable(self, token_id: str) -> bool:
        """禁用 token（软删除）"""
        updated = await self._tokens.set_enabled(token_id, False)
        log.info("origin_token_disabled", token_id=token_id, found=updated)
        return updated

    async def update_rate_limit(self, token_id: str, rate_limit: int, window_s: int) -> bool:
        """更新 token 限流参数"""
        # 参数范围校验（ge=1），不合法时抛出 ValidationError
        RateConfig(rate_limit=rate_limit, window_s=window_s)
        updated = await self._tokens.update_rate_config(token_id, rate_limit, window_s)
        log.info(
            "origin_token_rate_updated",
            token_id=token_id,
            rate_limit=rate_limit,
            window_s=window_s,
            found=updated,
        )
        return updated

    async def list_tokens(self) -> list[OriginToken]:
        return await self._tokens.list_tokens()

    def _check(self, secret_hash: str, presented_secret: str) -> bool:
        try:
            return self._hasher.verify(secret_hash, presented_secret)
        except (VerificationError, InvalidHashError):
            return False
