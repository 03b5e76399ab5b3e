# mapworker/main.py
# 串起：定时触发 -> 队列 -> WorkerService（check_update / download_country）
# 单次模式：--once <action> 跑完一个动作（含延迟重试）后退出

from __future__ import annotations
import asyncio
from pathlib import Path

import yaml

from .data_version import DataVersion
from .location import FileLocationSource, LocationProbe
from .metrics import MetricsSink
from .notifier import Notifier
from .resolver import CountryResolver, RegionTable
from .storage import init_db
from .throttle import NotificationThrottle
from .utils import days_to_ms
from .worker import (
    ACTION_CHECK_UPDATE,
    ACTION_DOWNLOAD_COUNTRY,
    WorkerService,
    run_trigger_timer,
    run_worker_loop,
)

ROOT = Path(__file__).resolve().parents[1]

DEFAULT_CFG = {
    "worker": {
        "db_path": "mapworker.db",
        "retry_delay_ms": 60_000,
        "location_expiration_ms": 6 * 60 * 60 * 1000,
        "suppression_days": 180,
        "check_update_every_sec": 6 * 3600,
        "check_download_every_sec": 3600,
    },
    "location": {
        "path": "ops/last_location.yml",
    },
    "resolver": {
        "regions": "ops/regions.yml",
    },
    "notifier": {
        "notify_channels": ["stdout"],
        "retry": {"max_times": 3, "backoff_sec": 2},
    },
}


def load_cfg(path: Path = ROOT / "ops" / "config.yml") -> dict:
    """ops/config.yml 可选；不存在就用默认。每个小节做一层浅合并。"""
    out = {k: dict(v) for k, v in DEFAULT_CFG.items()}
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            print(f"[main] 读取 {path} 失败，使用默认。err={e}")
            return out
        for section, values in data.items():
            if isinstance(values, dict) and section in out:
                out[section] = {**out[section], **values}
            else:
                out[section] = values
    return out


def _resolve_path(p: str) -> Path:
    q = Path(p)
    return q if q.is_absolute() else ROOT / q


def build_service(cfg: dict, db) -> WorkerService:
    w = cfg["worker"]
    table = RegionTable.load(_resolve_path(cfg["resolver"]["regions"]))
    probe = LocationProbe(
        FileLocationSource(_resolve_path(cfg["location"]["path"])),
        expiration_ms=int(w["location_expiration_ms"]),
    )
    throttle = NotificationThrottle(db, window_ms=days_to_ms(w["suppression_days"]))
    return WorkerService(
        probe=probe,
        resolver=CountryResolver(table),
        throttle=throttle,
        notifier=Notifier(cfg),
        metrics=MetricsSink(db),
        data_version=DataVersion(db, table),
        retry_delay_ms=int(w["retry_delay_ms"]),
    )


async def main(run_seconds: int = 0, once: str = "", cfg_path: str = ""):
    cfg = load_cfg(Path(cfg_path)) if cfg_path else load_cfg()
    db = await init_db(_resolve_path(cfg["worker"]["db_path"]))
    service = build_service(cfg, db)

    if once:
        try:
            await service.handle(once)
            # 单次模式下等延迟重试跑完再退出
            await service.drain()
        finally:
            await service.close()
            await service.notifier.close()
            await db.close()
        return

    q_triggers: asyncio.Queue = asyncio.Queue()
    w = cfg["worker"]
    tasks = [
        asyncio.create_task(run_worker_loop(q_triggers, service)),
        asyncio.create_task(run_trigger_timer(q_triggers, ACTION_CHECK_UPDATE,
                                              int(w["check_update_every_sec"]))),
        asyncio.create_task(run_trigger_timer(q_triggers, ACTION_DOWNLOAD_COUNTRY,
                                              int(w["check_download_every_sec"]))),
    ]

    print(f"[main] running for {run_seconds or '∞'}s …")
    try:
        if run_seconds and run_seconds > 0:
            await asyncio.sleep(run_seconds)
        else:
            # 0 或负数 => 永久运行
            await asyncio.Event().wait()
    except asyncio.CancelledError:
        print("[main] cancelled")
        raise
    finally:
        # 优雅退出：未到点的延迟重试直接放弃
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await service.close()
        await service.notifier.close()
        await db.close()
        print("[main] finished")


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Map data background worker")
    parser.add_argument("--run-seconds", type=int, default=0)
    parser.add_argument("--once", choices=[ACTION_CHECK_UPDATE, ACTION_DOWNLOAD_COUNTRY], default="")
    parser.add_argument("--config", default="", help="config.yml 路径（默认 ops/config.yml）")
    args = parser.parse_args()

    asyncio.run(main(run_seconds=args.run_seconds, once=args.once, cfg_path=args.config))
