# mapworker/utils.py
# 通用辅助函数：时间戳、窗口换算、YAML 读取

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict, Union

import yaml

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """
    获取当前时间的UTC毫秒时间戳

    返回:
        当前时间的毫秒时间戳
    """
    return int(time.time() * 1000)


def days_to_ms(days: Union[int, float]) -> int:
    return int(days * DAY_MS)


def read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """读取 YAML 文件；文件不存在时返回空 dict，解析失败直接抛出。"""
    p = Path(path)
    if not p.exists():
        return {}
    with open(p, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}
