"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 摄入/聚合组件装配 + 路由注册。
"""

import asyncio
import contextlib
import time
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

import structlog
from argon2 import PasswordHasher
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sightline.core.aggregator import Aggregator
from sightline.core.anonymizer import Anonymizer
from sightline.core.config import AnalyticsConfig, get_db_path, load_analytics_config
from sightline.core.rate_limiter import FixedWindowRateLimiter
from sightline.core.secret_store import SecretStore
from sightline.core.store import StoreGroup, create_store_group
from starlette.responses import JSONResponse

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import collect, health, stats
from .services.ingestion_service import IngestionService

log = structlog.get_logger()

# 过期限流窗口清理间隔（秒）
RATE_WINDOW_PRUNE_INTERVAL_S = 60


def attach_pipeline(
    app: FastAPI,
    store_group: StoreGroup,
    config: AnalyticsConfig,
    *,
    hasher: PasswordHasher | None = None,
    rate_clock: Callable[[], float] = time.monotonic,
) -> None:
    """装配摄入与聚合组件并挂到 app.state

    lifespan 与测试共用；测试可注入低成本 hasher 与假时钟。
    """
    anonymizer = Anonymizer(config.visitor_salt.get_secret_value())
    secret_store = SecretStore(store_group.token_store, hasher=hasher)
    rate_limiter = FixedWindowRateLimiter(clock=rate_clock)

    app.state.store_group = store_group
    app.state.config = config
    app.state.secret_store = secret_store
    app.state.rate_limiter = rate_limiter
    app.state.ingestion_service = IngestionService(
        secret_store=secret_store,
        rate_limiter=rate_limiter,
        anonymizer=anonymizer,
        event_store=store_group.event_store,
        auth_timeout_s=config.auth_timeout_s,
        store_timeout_s=config.store_timeout_s,
    )
    app.state.aggregator = Aggregator(store_group.event_store)

    log.info(
        "pipeline_initialized",
        salt_fingerprint=anonymizer.fingerprint,
        auth_timeout_s=config.auth_timeout_s,
        store_timeout_s=config.store_timeout_s,
        dashboard_auth=config.dashboard_token is not None,
    )


async def prune_rate_windows(
    rate_limiter: FixedWindowRateLimiter,
    interval_s: float = RATE_WINDOW_PRUNE_INTERVAL_S,
) -> None:
    """后台循环：定期清理过期限流窗口"""
    while True:
        await asyncio.sleep(interval_s)
        await rate_limiter.prune()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 与管道组件，关闭时清理连接"""
    db_path = get_db_path()
    store_group = await create_store_group(db_path)
    app.state.db_path = db_path
    attach_pipeline(app, store_group, app.state.config)

    pruner = asyncio.create_task(prune_rate_windows(app.state.rate_limiter))

    yield

    pruner.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await pruner
    await store_group.conn.close()


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求体/参数校验失败统一返回 400 INVALID_INPUT"""
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": "INVALID_INPUT",
                "message": "Malformed request",
                "details": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
                    for err in exc.errors()
                ],
            }
        },
    )


def create_app(config: AnalyticsConfig | None = None) -> FastAPI:
    """创建 FastAPI 应用实例"""
    config = config or load_analytics_config()

    app = FastAPI(
        title="Sightline Gateway",
        version="0.1.0",
        description="隐私保护的访客事件摄入与聚合 API",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(LoggingMiddleware)
    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
            max_age=600,
        )

    app.add_exception_handler(RequestValidationError, validation_error_handler)

    setup_logging()
    setup_logfire(app)

    app.include_router(collect.router, tags=["collect"])
    app.include_router(stats.router, tags=["stats"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
