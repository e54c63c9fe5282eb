"""SQLite 数据库初始化

PRAGMA 配置 + 两张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# origin_tokens 表 DDL
_TOKENS_DDL = """
CREATE TABLE IF NOT EXISTS origin_tokens (
    token_id     TEXT PRIMARY KEY,
    secret_hash  TEXT NOT NULL,
    rate_limit   INTEGER NOT NULL,
    window_s     INTEGER NOT NULL,
    created_at   TEXT NOT NULL,
    enabled      INTEGER NOT NULL DEFAULT 1
);
"""

# events 表 DDL（append-only）
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id       TEXT PRIMARY KEY,
    token_id       TEXT NOT NULL,
    action         TEXT NOT NULL,
    resource_path  TEXT NOT NULL,
    visitor_id     TEXT NOT NULL,
    ts             TEXT NOT NULL,

    FOREIGN KEY (token_id) REFERENCES origin_tokens(token_id)
);
"""

_EVENTS_INDEXES = [
    # 全局时间范围扫描
    "CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);",
    # 按 token 的时间范围扫描
    "CREATE INDEX IF NOT EXISTS idx_events_token_ts ON events(token_id, ts);",
    # Top resources 聚合
    "CREATE INDEX IF NOT EXISTS idx_events_resource_path ON events(resource_path);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_TOKENS_DDL)
    await conn.execute(_EVENTS_DDL)

    for idx_sql in _EVENTS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
