# mapworker/metrics.py
# 统计上报：构造时注入，各组件共用同一个句柄

from __future__ import annotations

from typing import Callable, Optional

import aiosqlite

from mapworker.storage import insert_metric
from mapworker.utils import now_ms

EVENT_PROBE_INITIAL = "location_probe_initial"
EVENT_PROBE_DELAYED = "location_probe_delayed"


class MetricsSink:
    def __init__(self, db: aiosqlite.Connection, clock: Callable[[], int] = now_ms):
        self._db = db
        self._clock = clock

    async def report(self, event: str, outcome: bool, elapsed_ms: Optional[int] = None) -> None:
        extra = f" elapsed={elapsed_ms}ms" if elapsed_ms is not None else ""
        print(f"[metrics] {event} -> {bool(outcome)}{extra}")
        await insert_metric(self._db, event, outcome, elapsed_ms, ts_utc=self._clock())
