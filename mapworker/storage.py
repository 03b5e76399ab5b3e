# -*- coding: utf-8 -*-
"""
mapworker/storage.py
SQLite（aiosqlite）持久化：
- 初始化/建表
- prefs：按 file 分命名空间的 key/value（值一律是字符串）
- metrics：统计上报流水
- 查询最近上报（给调试/测试用）
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiosqlite

from mapworker.utils import now_ms

# --------- 建表 SQL ---------
SCHEMA_PREFS = """
CREATE TABLE IF NOT EXISTS prefs (
    file   TEXT NOT NULL,
    key    TEXT NOT NULL,
    value  TEXT NOT NULL,
    PRIMARY KEY (file, key)
);
"""

SCHEMA_METRICS = """
CREATE TABLE IF NOT EXISTS metrics (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    ts_utc      INTEGER NOT NULL,
    event       TEXT NOT NULL,
    outcome     INTEGER NOT NULL,
    elapsed_ms  INTEGER
);
"""

SCHEMA_IDX = """
CREATE INDEX IF NOT EXISTS idx_metrics_event ON metrics(event);
CREATE INDEX IF NOT EXISTS idx_metrics_ts    ON metrics(ts_utc DESC);
"""


# --------- 初始化 ---------
async def init_db(db_path: Union[str, Path]) -> aiosqlite.Connection:
    """
    初始化数据库并返回连接。
    传 ":memory:" 时不建目录。
    """
    if str(db_path) != ":memory:":
        p = Path(db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        db_path = str(p)
    db = await aiosqlite.connect(db_path)
    # 性能相关 pragma
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute(SCHEMA_PREFS)
    await db.execute(SCHEMA_METRICS)
    for stmt in filter(None, SCHEMA_IDX.split(";")):
        s = stmt.strip()
        if s:
            await db.execute(s + ";")
    await db.commit()
    return db


# --------- prefs 读写 ---------
async def get_pref(db: aiosqlite.Connection, file: str, key: str) -> Optional[str]:
    async with db.execute(
        "SELECT value FROM prefs WHERE file = ? AND key = ? LIMIT 1;", (file, key)
    ) as cur:
        row = await cur.fetchone()
    return None if row is None else row[0]


async def put_pref(db: aiosqlite.Connection, file: str, key: str, value: str) -> None:
    """幂等写入（ON CONFLICT DO UPDATE），每个 key 只保留一个值。"""
    sql = """
    INSERT INTO prefs(file, key, value) VALUES(?,?,?)
    ON CONFLICT(file, key) DO UPDATE SET value = excluded.value
    """
    await db.execute(sql, (file, key, str(value)))
    await db.commit()


# --------- metrics ---------
async def insert_metric(
    db: aiosqlite.Connection,
    event: str,
    outcome: bool,
    elapsed_ms: Optional[int] = None,
    ts_utc: Optional[int] = None,
) -> None:
    if not event:
        raise ValueError("insert_metric: missing event")
    await db.execute(
        "INSERT INTO metrics(ts_utc, event, outcome, elapsed_ms) VALUES(?,?,?,?);",
        (int(ts_utc) if ts_utc is not None else now_ms(), event, 1 if outcome else 0,
         int(elapsed_ms) if elapsed_ms is not None else None),
    )
    await db.commit()


async def get_recent_metrics(
    db: aiosqlite.Connection,
    *,
    event: Optional[str] = None,
    limit: int = 200,
) -> List[Dict[str, Any]]:
    """
    按写入顺序（id 升序）返回最近的上报。
    """
    sql = "SELECT id, ts_utc, event, outcome, elapsed_ms FROM metrics"
    params: List[Any] = []
    if event:
        sql += " WHERE event = ?"
        params.append(event)
    sql += " ORDER BY id DESC LIMIT ?;"
    params.append(int(limit))

    out: List[Dict[str, Any]] = []
    async with db.execute(sql, params) as cur:
        async for row in cur:
            out.append({
                "id": row[0],
                "ts_utc": row[1],
                "event": row[2],
                "outcome": bool(row[3]),
                "elapsed_ms": row[4],
            })
    out.reverse()
    return out
