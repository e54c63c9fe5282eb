"""OriginToken Domain Model

secret_hash 签发后不可变；仅 enabled / rate_limit / window_s 可修改。
token 只会被禁用（软删除），不会被物理删除。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class RateConfig(BaseModel):
    """单个 token 的限流配置"""

    rate_limit: int = Field(ge=1, description="每个窗口允许的请求数")
    window_s: int = Field(ge=1, description="窗口时长（秒）")


class OriginToken(BaseModel):
    """外部调用方凭证"""

    token_id: str = Field(min_length=1, description="token 标识")
    secret_hash: str = Field(description="secret 的 Argon2 哈希，永不保存明文")
    rate_limit: int = Field(ge=1, description="每个窗口允许的请求数")
    window_s: int = Field(ge=1, description="窗口时长（秒）")
    created_at: datetime = Field(description="签发时间")
    enabled: bool = Field(default=True, description="是否启用")

    @property
    def rate_config(self) -> RateConfig:
        return RateConfig(rate_limit=self.rate_limit, window_s=self.window_s)
