"""Anonymizer -- 访客标识单向匿名化

pseudonymize(raw) = HMAC-SHA256(salt, raw) 的十六进制摘要。
- 同一 salt 下结果确定，可用于 unique visitor 统计
- 没有 salt 无法反推原始标识
- 轮换 salt 后同一访客得到新的匿名 ID，历史事件不做重新关联

salt 来自配置，进程启动时加载一次，不与事件一同持久化。
"""

import hashlib
import hmac


class Anonymizer:
    """访客标识匿名化器"""

    def __init__(self, salt: str | bytes) -> None:
        if isinstance(salt, str):
            salt = salt.encode("utf-8")
        if not salt:
            raise ValueError("anonymizer salt must not be empty")
        self._salt = salt

    def pseudonymize(self, raw_identifier: str) -> str:
        """将原始访客标识转换为匿名 ID"""
        return hmac.new(
            self._salt,
            raw_identifier.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    @property
    def fingerprint(self) -> str:
        """salt 指纹，用于日志中区分 salt 代际，不可反推 salt"""
        return hashlib.sha256(b"sightline-salt-fingerprint:" + self._salt).hexdigest()[:12]
