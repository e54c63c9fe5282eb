"""apps/gateway 测试配置 -- FastAPI app + httpx AsyncClient fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sightline.core.config import AnalyticsConfig
from sightline.core.store import create_store_group


@pytest_asyncio.fixture
async def gateway_config() -> AnalyticsConfig:
    return AnalyticsConfig(visitor_salt=SecretStr("gateway-test-salt"))


@pytest_asyncio.fixture
async def test_app(tmp_path: Path, gateway_config, cheap_hasher, fake_clock, monkeypatch):
    """创建测试用 FastAPI app，手动装配管道（绕过 lifespan）"""
    monkeypatch.setenv("SIGHTLINE_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")

    from sightline.gateway.main import attach_pipeline, create_app

    app = create_app(gateway_config)
    store_group = await create_store_group(str(tmp_path / "sqlite" / "test.db"))
    app.state.db_path = str(tmp_path / "sqlite" / "test.db")
    attach_pipeline(
        app,
        store_group,
        gateway_config,
        hasher=cheap_hasher,
        rate_clock=fake_clock,
    )

    yield app

    await store_group.conn.close()


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient"""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def proj1_secret(test_app) -> str:
    """签发 proj-1（limit=2, window=60s），返回原始 secret"""
    return await test_app.state.secret_store.issue("proj-1", rate_limit=2, window_s=60)
