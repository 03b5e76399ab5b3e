# mapworker/location.py
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Union

import yaml

from mapworker.errors import LocationUnavailable
from mapworker.models import LocationFix
from mapworker.utils import now_ms, read_yaml

# 缓存定位的有效期：6 小时
LOCATION_EXPIRATION_MS = 6 * 60 * 60 * 1000


class LocationSource(ABC):
    @abstractmethod
    def get_last_known_location(self) -> Optional[LocationFix]:
        """Return the most recent cached fix without requesting a new one."""
        raise NotImplementedError


class FileLocationSource(LocationSource):
    """
    被动读取宿主写入的缓存定位文件（YAML）：
        latitude: 55.75
        longitude: 37.62
        timestamp_ms: 1700000000000
    文件不存在、写了一半（YAML 解析失败）或字段缺失时视为“没有缓存定位”。
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def get_last_known_location(self) -> Optional[LocationFix]:
        try:
            data = read_yaml(self.path)
        except (yaml.YAMLError, OSError) as e:
            print(f"[location] 缓存定位读取失败，忽略: {self.path} ({e.__class__.__name__})")
            return None
        try:
            return LocationFix(
                latitude=float(data["latitude"]),
                longitude=float(data["longitude"]),
                timestamp_ms=int(data["timestamp_ms"]),
            )
        except (KeyError, TypeError, ValueError):
            if data:
                print(f"[location] 缓存定位格式不对，忽略: {self.path}")
            return None


class LocationProbe:
    def __init__(self,
                 source: LocationSource,
                 expiration_ms: int = LOCATION_EXPIRATION_MS,
                 clock: Callable[[], int] = now_ms):
        self.source = source
        self.expiration_ms = int(expiration_ms)
        self._clock = clock

    def probe(self, now: Optional[int] = None) -> LocationFix:
        """
        取一次有效定位。
        没有缓存、或 now - timestamp_ms > expiration_ms 时抛 LocationUnavailable；
        恰好等于有效期仍算有效。
        """
        now = self._clock() if now is None else now
        fix = self.source.get_last_known_location()
        if fix is None:
            raise LocationUnavailable("no cached location")
        age = fix.age_ms(now)
        if age > self.expiration_ms:
            raise LocationUnavailable(f"cached location expired ({age} ms old)")
        return fix
