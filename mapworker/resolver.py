# -*- coding: utf-8 -*-
"""
mapworker/resolver.py
坐标 -> 区域。区域表来自 ops/regions.yml：

data_version: 231015
regions:
  - id: Russia_Moscow
    name: Moscow
    bbox: [55.14, 36.80, 56.02, 37.97]   # min_lat, min_lon, max_lat, max_lon
    downloaded: false
    version: 0
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from mapworker.errors import ResolutionFailure
from mapworker.models import Region
from mapworker.utils import read_yaml


def _region_from_dict(d: Dict[str, Any]) -> Region:
    bbox = d.get("bbox") or []
    if len(bbox) != 4:
        raise ValueError(f"region {d.get('id')!r}: bbox 需要 4 个数")
    return Region(
        id=str(d["id"]),
        name=str(d.get("name") or d["id"]),
        bbox=tuple(float(x) for x in bbox),
        downloaded=bool(d.get("downloaded", False)),
        version=int(d.get("version", 0) or 0),
    )


class RegionTable:
    def __init__(self, regions: List[Region], data_version: int = 0):
        self.regions = list(regions)
        self.data_version = int(data_version)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "RegionTable":
        data = read_yaml(path)
        regions = [_region_from_dict(d) for d in (data.get("regions") or [])]
        print(f"[resolver] 加载 {len(regions)} 个区域 (data_version={data.get('data_version', 0)})")
        return cls(regions, data.get("data_version", 0))

    def find(self, lat: float, lon: float) -> Optional[Region]:
        """多个区域重叠时取面积最小的那个。"""
        hits = [r for r in self.regions if r.contains(lat, lon)]
        if not hits:
            return None

        def area(r: Region) -> float:
            return (r.bbox[2] - r.bbox[0]) * (r.bbox[3] - r.bbox[1])

        return min(hits, key=area)


class CountryResolver:
    def __init__(self, table: RegionTable):
        self.table = table

    def resolve_country(self, lat: float, lon: float) -> Optional[str]:
        """只在该区域地图尚未下载时返回名称，否则返回 None。"""
        region = self.table.find(lat, lon)
        if region is None or region.downloaded:
            return None
        return region.name

    def resolve_country_index(self, lat: float, lon: float) -> str:
        region = self.table.find(lat, lon)
        if region is None:
            raise ResolutionFailure(f"no region at ({lat}, {lon})")
        return region.id
