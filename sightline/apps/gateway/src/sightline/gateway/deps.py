"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

服务实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

import hmac

from fastapi import Header, HTTPException, Request
from sightline.core.aggregator import Aggregator
from sightline.core.config import AnalyticsConfig
from sightline.core.store import StoreGroup

from .services.ingestion_service import IngestionService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_config(request: Request) -> AnalyticsConfig:
    return request.app.state.config


def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def get_aggregator(request: Request) -> Aggregator:
    return request.app.state.aggregator


def parse_bearer(authorization: str | None) -> str:
    """从 Authorization 头中提取 Bearer 凭证，缺失或格式不符返回空串"""
    if not authorization:
        return ""
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return credentials.strip()


def require_dashboard_token(
    request: Request,
    authorization: str | None = Header(default=None),
) -> None:
    """Dashboard 访问校验：未配置令牌时放行，否则要求匹配的 Bearer 令牌"""
    expected = get_config(request).dashboard_token
    if expected is None:
        return
    presented = parse_bearer(authorization)
    if not hmac.compare_digest(
        presented.encode("utf-8"),
        expected.get_secret_value().encode("utf-8"),
    ):
        raise HTTPException(status_code=403, detail="forbidden")
