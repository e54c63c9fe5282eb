"""packages/core 测试配置 -- 核心层 fixture"""

import asyncio
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from sightline.core.models import OriginToken
from sightline.core.store.event_store import SqliteEventStore
from sightline.core.store.token_store import SqliteTokenStore

SEEDED_TOKENS = ("proj-1", "proj-2")


@pytest.fixture
def write_lock() -> asyncio.Lock:
    """token 与 event 写入共用的写锁，与 StoreGroup 一致"""
    return asyncio.Lock()


@pytest_asyncio.fixture
async def token_store(db_conn, write_lock) -> SqliteTokenStore:
    return SqliteTokenStore(db_conn, write_lock=write_lock)


@pytest_asyncio.fixture
async def seeded_tokens(token_store) -> tuple[str, ...]:
    """写入事件外键所需的 token（哈希为占位值，不参与校验）"""
    for token_id in SEEDED_TOKENS:
        await token_store.create_token(
            OriginToken(
                token_id=token_id,
                secret_hash="$argon2id$placeholder",
                rate_limit=10,
                window_s=60,
                created_at=datetime(2026, 1, 1, tzinfo=UTC),
            )
        )
    return SEEDED_TOKENS


@pytest_asyncio.fixture
async def event_store(db_conn, seeded_tokens, utc_clock, write_lock) -> SqliteEventStore:
    """使用假 UTC 时钟的 EventStore"""
    return SqliteEventStore(db_conn, clock=utc_clock, write_lock=write_lock)
