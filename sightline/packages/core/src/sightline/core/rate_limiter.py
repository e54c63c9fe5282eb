"""固定窗口限流器

每个 token 一个计数窗口：
- 无窗口或窗口已过期 -> 开启新窗口，count=1，放行
- 否则 count+1，超过 limit 则拒绝；被拒绝的请求同样消耗额度，
  避免重试风暴重置预算

窗口边界处最多出现 2×limit 的突发，换取每个 token O(1) 内存且无需后台压缩。
状态仅保存在进程内，重启后丢失。

"自增并比较" 在 token 级 asyncio.Lock 内完成，并发请求不会同时越过边界。
时钟通过构造参数注入，测试中推进假时钟而不是真实 sleep。
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

import structlog

from .models.enums import Admission

log = structlog.get_logger()


@dataclass
class RateWindow:
    """单个 token 的当前窗口状态"""

    token_id: str
    window_start: float
    window_s: float
    count: int

    def expired(self, now: float) -> bool:
        return now - self.window_start >= self.window_s


class FixedWindowRateLimiter:
    """按 token 的固定窗口计数限流器"""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_guard = asyncio.Lock()

    async def admit(self, token_id: str, limit: int, window_s: float) -> Admission:
        """判定一次请求是否放行

        Args:
            token_id: 来源 token
            limit: 窗口内允许的请求数
            window_s: 窗口时长（秒）
        """
        lock = await self._get_lock(token_id)
        async with lock:
            now = self._clock()
            window = self._windows.get(token_id)
            if window is None or window.expired(now):
                self._windows[token_id] = RateWindow(
                    token_id=token_id,
                    window_start=now,
                    window_s=window_s,
                    count=1,
                )
                return Admission.ALLOWED

            # 限流参数可能在窗口中途被修改，以最新值为准
            window.window_s = window_s
            window.count += 1
            if window.count > limit:
                return Admission.RATE_LIMITED
            return Admission.ALLOWED

    def retry_after(self, token_id: str) -> float:
        """距当前窗口结束的秒数；无活动窗口时为 0"""
        window = self._windows.get(token_id)
        if window is None:
            return 0.0
        remaining = window.window_start + window.window_s - self._clock()
        return max(0.0, remaining)

    def get_window(self, token_id: str) -> RateWindow | None:
        """返回窗口状态副本（只读）"""
        window = self._windows.get(token_id)
        return replace(window) if window is not None else None

    async def prune(self) -> int:
        """清理已过期窗口及空闲锁，避免字典无限增长

        Returns:
            清理的窗口数
        """
        now = self._clock()
        removed = 0
        async with self._locks_guard:
            for token_id, window in list(self._windows.items()):
                lock = self._locks.get(token_id)
                if window.expired(now) and (lock is None or not lock.locked()):
                    self._windows.pop(token_id, None)
                    self._locks.pop(token_id, None)
                    removed += 1
        if removed:
            log.debug("rate_windows_pruned", removed=removed)
        return removed

    async def _get_lock(self, token_id: str) -> asyncio.Lock:
        """获取 token 级别锁，序列化同一 token 的计数更新"""
        async with self._locks_guard:
            lock = self._locks.get(token_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[token_id] = lock
            return lock
