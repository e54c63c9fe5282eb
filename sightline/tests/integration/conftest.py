"""集成测试共享 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sightline.core.config import AnalyticsConfig
from sightline.core.store import create_store_group

INTEGRATION_SALT = "integration-salt"


async def build_app(db_path: Path, hasher, rate_clock):
    """在指定数据库上创建完整装配的 app，返回 (app, store_group)"""
    from sightline.gateway.main import attach_pipeline, create_app

    config = AnalyticsConfig(visitor_salt=SecretStr(INTEGRATION_SALT))
    app = create_app(config)
    store_group = await create_store_group(str(db_path))
    app.state.db_path = str(db_path)
    attach_pipeline(app, store_group, config, hasher=hasher, rate_clock=rate_clock)
    return app, store_group


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path, cheap_hasher, fake_clock, monkeypatch):
    """集成测试用 FastAPI app"""
    monkeypatch.setenv("SIGHTLINE_DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")

    app, store_group = await build_app(tmp_path / "test.db", cheap_hasher, fake_clock)

    yield app

    await store_group.conn.close()


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def app_factory(cheap_hasher, fake_clock):
    """按数据库路径创建 app，用于模拟重启"""

    async def factory(db_path: Path):
        return await build_app(db_path, cheap_hasher, fake_clock)

    return factory
