# -*- coding: utf-8 -*-
"""
mapworker/worker.py
后台任务分发：
- check_update：数据版本变化时提示可更新的区域
- download_country：读缓存定位 -> 解析区域 -> 节流 -> 下载建议
  首次定位失败时排一次 60s 后的延迟重试，之后无论结果如何都结束
同一时间只跑一个触发；延迟重试是独立的 asyncio 任务，close() 时取消。
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Set

from mapworker.data_version import DataVersion
from mapworker.errors import CorruptRecord, LocationUnavailable, ResolutionFailure
from mapworker.location import LocationProbe
from mapworker.metrics import EVENT_PROBE_DELAYED, EVENT_PROBE_INITIAL, MetricsSink
from mapworker.models import LocationFix, ProbeAttempt
from mapworker.notifier import Notifier
from mapworker.resolver import CountryResolver
from mapworker.throttle import NotificationThrottle
from mapworker.utils import now_ms

ACTION_CHECK_UPDATE = "check_update"
ACTION_DOWNLOAD_COUNTRY = "download_country"

RETRY_DELAY_MS = 60_000


class WorkerService:
    def __init__(self,
                 probe: LocationProbe,
                 resolver: CountryResolver,
                 throttle: NotificationThrottle,
                 notifier: Notifier,
                 metrics: MetricsSink,
                 data_version: DataVersion,
                 retry_delay_ms: int = RETRY_DELAY_MS,
                 clock: Callable[[], int] = now_ms):
        self.probe = probe
        self.resolver = resolver
        self.throttle = throttle
        self.notifier = notifier
        self.metrics = metrics
        self.data_version = data_version
        self.retry_delay_ms = int(retry_delay_ms)
        self._clock = clock
        self._sleep = asyncio.sleep
        self._pending: Set[asyncio.Task] = set()

    # --------------- 分发 ---------------

    async def handle(self, action: str) -> None:
        if action == ACTION_CHECK_UPDATE:
            await self.check_update()
        elif action == ACTION_DOWNLOAD_COUNTRY:
            await self.check_location()
        else:
            print(f"[worker] 未知动作: {action!r}，跳过")

    # --------------- check_update ---------------

    async def check_update(self) -> bool:
        """返回是否发出了更新提示。"""
        if not await self.data_version.is_data_version_changed():
            return False

        countries = self.data_version.get_outdated_countries_string()
        sent = False
        if countries:
            sent = await self.notifier.place_update_available(countries)
        # 当前版本处理完毕
        await self.data_version.mark_data_version_updated()
        return sent

    # --------------- download_country ---------------

    async def check_location(self) -> bool:
        """
        首次探测并上报；失败则排一次延迟重试（不等待它完成）。
        返回首次探测是否拿到有效定位。
        """
        attempt = ProbeAttempt()
        fix = self._probe_once(attempt)
        # 先上报探测结果，后面的通知出错也不会丢统计
        await self.metrics.report(EVENT_PROBE_INITIAL, fix is not None)
        if fix is None:
            self._schedule_retry(attempt)
            return False
        await self._notify_quietly(fix)
        return True

    def _schedule_retry(self, attempt: ProbeAttempt) -> asyncio.Task:
        attempt.attempt = 1
        attempt.scheduled_retry_at = self._clock() + self.retry_delay_ms
        task = asyncio.create_task(self._delayed_retry(attempt))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        print(f"[worker] 定位无效，{self.retry_delay_ms}ms 后重试一次")
        return task

    async def _delayed_retry(self, attempt: ProbeAttempt) -> None:
        await self._sleep(self.retry_delay_ms / 1000.0)
        fix = self._probe_once(attempt)
        try:
            await self.metrics.report(EVENT_PROBE_DELAYED, fix is not None,
                                      elapsed_ms=self.retry_delay_ms)
        except Exception as e:
            # 重试没有调用方可以接住异常，只能记录
            print(f"[worker] 延迟重试上报失败: {e!r}")
        if fix is not None:
            await self._notify_quietly(fix)

    def _probe_once(self, attempt: ProbeAttempt) -> Optional[LocationFix]:
        """取一次有效定位；不可用返回 None。"""
        try:
            return self.probe.probe(self._clock())
        except LocationUnavailable as e:
            tag = "重试" if attempt.is_retry else "首次"
            print(f"[worker] {tag}定位不可用: {e}")
            return None

    async def _notify_quietly(self, fix: LocationFix) -> bool:
        """下载建议失败只记录，不影响本次触发的其余流程。"""
        try:
            return await self._place_download_notification(fix)
        except Exception as e:
            print(f"[worker] 下载建议失败: {e!r}")
            return False

    async def _place_download_notification(self, fix: LocationFix) -> bool:
        country = self.resolver.resolve_country(fix.latitude, fix.longitude)
        if not country:
            return False

        async with self.throttle.guard(country):
            now = self._clock()
            try:
                allowed = await self.throttle.should_notify(country, now)
            except CorruptRecord as e:
                # 坏记录不当作“从未提示”：本轮跳过，原值保留
                print(f"[worker] 节流记录损坏，跳过本轮: {e}")
                return False
            if not allowed:
                print(f"[worker] {country} 在静默期内，跳过")
                return False

            try:
                region_id = self.resolver.resolve_country_index(fix.latitude, fix.longitude)
            except ResolutionFailure as e:
                print(f"[worker] 区域解析失败: {e}")
                return False

            text = self.notifier.format_download_text(country)
            sent = await self.notifier.place_download_suggest(country, text, region_id)
            if sent:
                await self.throttle.record_notified(country, now)
            return sent

    # --------------- 生命周期 ---------------

    @property
    def pending_retries(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """等待所有已排队的延迟重试跑完。"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """取消未执行的重试；被取消的重试不会上报任何统计。"""
        for t in list(self._pending):
            t.cancel()
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        self._pending.clear()


async def run_worker_loop(q_triggers: "asyncio.Queue", service: WorkerService):
    """逐个消费触发；同一时间只处理一个，后来的排队。"""
    print("[worker] started")
    try:
        while True:
            action = await q_triggers.get()
            try:
                await service.handle(action)
            except Exception as e:
                print(f"[worker] {action} error: {e!r}")
            finally:
                q_triggers.task_done()
    except asyncio.CancelledError:
        print("[worker] cancelled")
        raise
    finally:
        print("[worker] finished")


async def run_trigger_timer(q_triggers: "asyncio.Queue", action: str, every_sec: int,
                            initial_delay_sec: float = 0.0):
    """定期投递某类触发，相当于宿主的定时广播。"""
    try:
        if initial_delay_sec > 0:
            await asyncio.sleep(initial_delay_sec)
        while True:
            await q_triggers.put(action)
            await asyncio.sleep(every_sec)
    except asyncio.CancelledError:
        print(f"[timer] {action} cancelled")
        raise
