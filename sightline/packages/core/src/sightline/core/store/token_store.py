"""TokenStore SQLite 实现

secret_hash 写入后不可修改，仅提供 enabled / 限流参数的更新。
token 只做软删除（enabled=0），保留审计与限流历史。
"""

import asyncio
from datetime import datetime

import aiosqlite

from ..exceptions import StorageError, TokenExistsError
from ..models.token import OriginToken
from .event_store import STORAGE_ERRORS, format_ts

_TOKEN_COLUMNS = "token_id, secret_hash, rate_limit, window_s, created_at, enabled"


class SqliteTokenStore:
    """TokenStore 的 SQLite 实现，写操作自动提交"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        # 与 EventStore 共用同一把写锁（见 StoreGroup）
        self._write_lock = write_lock or asyncio.Lock()

    async def create_token(self, token: OriginToken) -> None:
        """写入新 token

        Raises:
            TokenExistsError: token_id 已存在（含已禁用的 token）
            StorageError: 持久化失败
        """
        async with self._write_lock:
            try:
                await self._conn.execute(
                    f"INSERT INTO origin_tokens ({_TOKEN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        token.token_id,
                        token.secret_hash,
                        token.rate_limit,
                        token.window_s,
                        format_ts(token.created_at),
                        int(token.enabled),
                    ),
                )
                await self._conn.commit()
            except aiosqlite.IntegrityError as e:
                await self._rollback_quietly()
                raise TokenExistsError(token.token_id) from e
            except STORAGE_ERRORS as e:
                await self._rollback_quietly()
                raise StorageError("failed to create token", e) from e
            except asyncio.CancelledError:
                await asyncio.shield(self._rollback_quietly())
                raise

    async def get_token(self, token_id: str) -> OriginToken | None:
        """根据 token_id 查询 token（含已禁用）"""
        try:
            async with self._conn.execute(
                f"SELECT {_TOKEN_COLUMNS} FROM origin_tokens WHERE token_id = ?",
                (token_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except STORAGE_ERRORS as e:
            raise StorageError("failed to read token", e) from e
        return self._row_to_token(row) if row else None

    async def list_tokens(self) -> list[OriginToken]:
        """查询全部 token，按签发时间正序"""
        try:
            async with self._conn.execute(
                f"SELECT {_TOKEN_COLUMNS} FROM origin_tokens ORDER BY created_at ASC"
            ) as cursor:
                rows = await cursor.fetchall()
        except STORAGE_ERRORS as e:
            raise StorageError("failed to list tokens", e) from e
        return [self._row_to_token(row) for row in rows]

    async def set_enabled(self, token_id: str, enabled: bool) -> bool:
        """启用/禁用 token

        Returns:
            True 如果 token 存在并已更新
        """
        return await self._update(
            "UPDATE origin_tokens SET enabled = ? WHERE token_id = ?",
            (int(enabled), token_id),
        )

    async def update_rate_config(self, token_id: str, rate_limit: int, window_s: int) -> bool:
        """更新限流参数

        Returns:
            True 如果 token 存在并已更新
        """
        return await self._update(
            "UPDATE origin_tokens SET rate_limit = ?, window_s = ? WHERE token_id = ?",
            (rate_limit, window_s, token_id),
        )

    async def _update(self, sql: str, params: tuple) -> bool:
        async with self._write_lock:
            try:
                async with self._conn.execute(sql, params) as cursor:
                    changed = cursor.rowcount > 0
                await self._conn.commit()
            except STORAGE_ERRORS as e:
                await self._rollback_quietly()
                raise StorageError("failed to update token", e) from e
            except asyncio.CancelledError:
                await asyncio.shield(self._rollback_quietly())
                raise
        return changed

    async def _rollback_quietly(self) -> None:
        try:
            await self._conn.rollback()
        except STORAGE_ERRORS:
            pass

    @staticmethod
    def _row_to_token(row) -> OriginToken:
        """将数据库行转换为 OriginToken 模型"""
        return OriginToken(
            token_id=row[0],
            secret_hash=row[1],
            rate_limit=row[2],
            window_s=row[3],
            created_at=datetime.fromisoformat(row[4]),
            enabled=bool(row[5]),
        )
