# tests/conftest.py
# 测试公用的假时钟 / 假定位源 / 记录型通知通道，以及组装 WorkerService 的工厂
import asyncio
from collections import deque
from types import SimpleNamespace

import pytest

from mapworker.data_version import DataVersion
from mapworker.location import LocationProbe, LocationSource
from mapworker.metrics import MetricsSink
from mapworker.models import Region
from mapworker.notifier import Notifier
from mapworker.resolver import CountryResolver, RegionTable
from mapworker.storage import init_db
from mapworker.throttle import NotificationThrottle
from mapworker.worker import WorkerService

T0 = 1_700_000_000_000

MOSCOW = (55.7558, 37.6173)
BERLIN = (52.52, 13.405)
OCEAN = (0.0, -30.0)

DEFAULT_REGIONS = [
    Region("Russia_Moscow", "Moscow", (55.14, 36.80, 56.02, 37.97), downloaded=False),
    Region("Germany_Berlin", "Berlin", (52.33, 13.08, 52.68, 13.77), downloaded=True, version=230801),
]


class FakeClock:
    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class ScriptedLocationSource(LocationSource):
    """
    script: 每次调用依次返回的 LocationFix / None；
    只剩最后一个时不再弹出，之后一直返回它。
    """
    def __init__(self, script):
        self.script = deque(script)
        self.calls = 0

    def get_last_known_location(self):
        self.calls += 1
        if len(self.script) > 1:
            return self.script.popleft()
        return self.script[0] if self.script else None


class RecordingAdapter:
    def __init__(self, ok: bool = True, error: Exception = None):
        self.sent = []
        self.ok = ok
        self.error = error

    async def send(self, text: str) -> bool:
        # 让出一次事件循环，方便并发测试里交错执行
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        self.sent.append(text)
        return self.ok

    async def close(self):
        return


@pytest.fixture
def build_harness(tmp_path):
    async def _build(script, *, regions=None, data_version=0, retry_delay_ms=60_000, send_ok=True,
                     send_error=None, source=None):
        clock = FakeClock()
        db = await init_db(tmp_path / "worker.db")
        table = RegionTable(DEFAULT_REGIONS if regions is None else regions, data_version)
        if source is None:
            source = ScriptedLocationSource(script)
        notifier = Notifier({"notify_channels": ["stdout"]})
        adapter = RecordingAdapter(ok=send_ok, error=send_error)
        notifier._adapter = adapter
        service = WorkerService(
            probe=LocationProbe(source, clock=clock),
            resolver=CountryResolver(table),
            throttle=NotificationThrottle(db),
            notifier=notifier,
            metrics=MetricsSink(db, clock=clock),
            data_version=DataVersion(db, table),
            retry_delay_ms=retry_delay_ms,
            clock=clock,
        )
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            clock.advance(int(seconds * 1000))
            await asyncio.sleep(0)

        service._sleep = fake_sleep
        return SimpleNamespace(service=service, db=db, clock=clock, source=source,
                               adapter=adapter, sleeps=sleeps)

    return _build
