# -*- coding: utf-8 -*-
"""
models.py
位置探测 / 节流 / 区域表用到的数据模型。
时间统一用 UTC 毫秒（int）。
"""

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class LocationFix:
    # 最近一次缓存的定位结果（被动读取，不持久化）
    latitude: float
    longitude: float
    timestamp_ms: int

    def age_ms(self, now: int) -> int:
        return now - self.timestamp_ms


@dataclass
class ProbeAttempt:
    # 单次 download_country 触发的状态：0 = 首次，1 = 延迟重试
    attempt: int = 0
    scheduled_retry_at: Optional[int] = None

    @property
    def is_retry(self) -> bool:
        return self.attempt > 0


@dataclass
class Region:
    # 区域表中的一行；id 即通知里携带的不透明区域编号
    id: str
    name: str
    # (min_lat, min_lon, max_lat, max_lon)
    bbox: Tuple[float, float, float, float]
    downloaded: bool = False
    version: int = 0

    def contains(self, lat: float, lon: float) -> bool:
        min_lat, min_lon, max_lat, max_lon = self.bbox
        return min_lat <= lat <= max_lat and min_lon <= lon <= max_lon
