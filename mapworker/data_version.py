# mapworker/data_version.py
# 数据版本检查：区域表版本号 vs. 上次保存的版本号

from __future__ import annotations

import aiosqlite

from mapworker.resolver import RegionTable
from mapworker.storage import get_pref, put_pref

PREF_FILE = "data_version"
SAVED_KEY = "saved"


class DataVersion:
    def __init__(self, db: aiosqlite.Connection, table: RegionTable):
        self._db = db
        self.table = table

    async def saved_version(self) -> int:
        raw = await get_pref(self._db, PREF_FILE, SAVED_KEY)
        try:
            return int(raw) if raw else 0
        except ValueError:
            # 版本号坏了就当作从未保存，下次 mark 会覆盖
            print(f"[data_version] 保存的版本号无法解析: {raw!r}")
            return 0

    async def is_data_version_changed(self) -> bool:
        return await self.saved_version() != self.table.data_version

    def get_outdated_countries_string(self) -> str:
        """已下载但版本落后的区域名，逗号分隔；没有则为空串。"""
        names = [
            r.name for r in self.table.regions
            if r.downloaded and r.version < self.table.data_version
        ]
        return ", ".join(names)

    async def mark_data_version_updated(self) -> None:
        await put_pref(self._db, PREF_FILE, SAVED_KEY, str(self.table.data_version))
