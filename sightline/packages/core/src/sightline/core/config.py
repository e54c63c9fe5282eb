"""配置模块 -- 可通过环境变量覆盖

包含数据库路径、访客匿名化 salt、默认限流参数、超时与 Dashboard 相关配置。
路径类配置使用 getter（每次读取环境变量），其余通过 load_analytics_config() 加载。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("SIGHTLINE_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "SIGHTLINE_DB_PATH",
        str(_get_base_dir() / "sqlite" / "sightline.db"),
    )


# resource_path 最大长度（超出部分截断）
MAX_RESOURCE_PATH_LENGTH: int = 500

# token_id 最大长度
MAX_TOKEN_ID_LENGTH: int = 64

# 仅用于本地开发的 salt，生产环境必须通过 SIGHTLINE_VISITOR_SALT 覆盖
DEV_VISITOR_SALT = "sightline-dev-salt-change-me"


class AnalyticsConfig(BaseModel):
    """分析管道配置 -- 从环境变量加载

    环境变量:
        SIGHTLINE_VISITOR_SALT: 访客标识匿名化 salt（进程级，仅启动时加载一次）
        SIGHTLINE_DEFAULT_RATE_LIMIT: 新签发 token 的默认窗口请求数
        SIGHTLINE_DEFAULT_WINDOW_S: 新签发 token 的默认窗口时长（秒）
        SIGHTLINE_AUTH_TIMEOUT_S: Secret 校验超时（秒）
        SIGHTLINE_STORE_TIMEOUT_S: 事件写入超时（秒）
        SIGHTLINE_RECENT_WINDOW_S: Dashboard 近期活跃窗口（秒）
        SIGHTLINE_TOP_RESOURCES: Dashboard 默认 Top-N
        SIGHTLINE_DASHBOARD_TOKEN: Dashboard 访问令牌（为空则不校验）
        SIGHTLINE_CORS_ORIGINS: 允许跨域的 Origin 列表（逗号分隔）
    """

    visitor_salt: SecretStr = Field(
        default=SecretStr(DEV_VISITOR_SALT),
        description="访客标识 HMAC salt，不与事件一同持久化",
    )
    default_rate_limit: int = Field(default=60, ge=1, description="默认窗口请求数")
    default_window_s: int = Field(default=60, ge=1, description="默认窗口时长（秒）")
    auth_timeout_s: float = Field(default=5.0, gt=0, description="Secret 校验超时（秒）")
    store_timeout_s: float = Field(default=5.0, gt=0, description="事件写入超时（秒）")
    recent_window_s: int = Field(default=300, ge=1, description="近期活跃窗口（秒）")
    top_resources: int = Field(default=5, ge=1, le=100, description="默认 Top-N")
    dashboard_token: SecretStr | None = Field(
        default=None,
        description="Dashboard 访问令牌，None 表示不校验",
    )
    cors_origins: list[str] = Field(default_factory=list, description="CORS 白名单")

    @property
    def uses_dev_salt(self) -> bool:
        return self.visitor_salt.get_secret_value() == DEV_VISITOR_SALT


# 数值型配置：环境变量 -> (字段名, 类型)
_NUMERIC_ENV: dict[str, tuple[str, type]] = {
    "SIGHTLINE_DEFAULT_RATE_LIMIT": ("default_rate_limit", int),
    "SIGHTLINE_DEFAULT_WINDOW_S": ("default_window_s", int),
    "SIGHTLINE_AUTH_TIMEOUT_S": ("auth_timeout_s", float),
    "SIGHTLINE_STORE_TIMEOUT_S": ("store_timeout_s", float),
    "SIGHTLINE_RECENT_WINDOW_S": ("recent_window_s", int),
    "SIGHTLINE_TOP_RESOURCES": ("top_resources", int),
}


def load_analytics_config() -> AnalyticsConfig:
    """从环境变量加载分析管道配置

    数值解析失败时记录 warning 并使用默认值，不阻塞启动。

    Returns:
        AnalyticsConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("SIGHTLINE_VISITOR_SALT"):
        kwargs["visitor_salt"] = SecretStr(val)

    for env_var, (field_name, cast) in _NUMERIC_ENV.items():
        if val := os.environ.get(env_var):
            try:
                kwargs[field_name] = cast(val)
            except ValueError:
                log.warning(
                    "invalid_numeric_config",
                    env_var=env_var,
                    value=val,
                    fallback=AnalyticsConfig.model_fields[field_name].default,
                )

    if val := os.environ.get("SIGHTLINE_DASHBOARD_TOKEN"):
        kwargs["dashboard_token"] = SecretStr(val)

    if val := os.environ.get("SIGHTLINE_CORS_ORIGINS"):
        kwargs["cors_origins"] = [o.strip() for o in val.split(",") if o.strip()]

    config = AnalyticsConfig(**kwargs)
    if config.uses_dev_salt:
        log.warning(
            "dev_visitor_salt_in_use",
            message="SIGHTLINE_VISITOR_SALT 未设置，使用开发默认 salt",
        )
    return config
