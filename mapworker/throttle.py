# -*- coding: utf-8 -*-
"""
mapworker/throttle.py
下载建议通知的节流：同一个地点在窗口（默认 180 天）内只提示一次。
- should_notify 只读不写
- record_notified 只在通知真正发出后调用
- guard(place_key) 把“读 -> 发 -> 写”串行化，进程内同一地点不会重复提示
"""

from __future__ import annotations

import asyncio
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import aiosqlite

from mapworker.errors import CorruptRecord
from mapworker.storage import get_pref, put_pref
from mapworker.utils import days_to_ms

PREF_FILE = "download_suggest"
SUPPRESSION_DAYS = 180
SUPPRESSION_WINDOW_MS = days_to_ms(SUPPRESSION_DAYS)

_INT_RE = re.compile(r"-?[0-9]+")


class NotificationThrottle:
    def __init__(self, db: aiosqlite.Connection, window_ms: int = SUPPRESSION_WINDOW_MS):
        self._db = db
        self.window_ms = int(window_ms)
        self._locks: Dict[str, asyncio.Lock] = {}

    async def last_notified(self, place_key: str) -> Optional[int]:
        """
        读取上次提示时间；从未提示返回 None。
        非整数的值抛 CorruptRecord，不做任何兜底转换。
        """
        raw = await get_pref(self._db, PREF_FILE, place_key)
        if raw is None or raw == "":
            return None
        if not _INT_RE.fullmatch(raw):
            raise CorruptRecord(place_key, raw)
        return int(raw)

    async def should_notify(self, place_key: str, now: int) -> bool:
        last = await self.last_notified(place_key)
        if last is None:
            return True
        # 严格大于：恰好满窗口时仍然静默
        return now - last > self.window_ms

    async def record_notified(self, place_key: str, now: int) -> None:
        await put_pref(self._db, PREF_FILE, place_key, str(int(now)))

    @asynccontextmanager
    async def guard(self, place_key: str) -> AsyncIterator[None]:
        # 每个地点一把锁，数量受区域表大小限制，不回收
        lock = self._locks.get(place_key)
        if lock is None:
            lock = self._locks[place_key] = asyncio.Lock()
        async with lock:
            yield
