# tests/test_main.py
# 配置加载 + 单次模式端到端（临时目录里的配置 / 区域表 / 缓存定位 / 数据库）
import asyncio
import time

import yaml

from mapworker.main import DEFAULT_CFG, load_cfg, main
from mapworker.metrics import EVENT_PROBE_DELAYED, EVENT_PROBE_INITIAL
from mapworker.storage import get_pref, get_recent_metrics, init_db
from mapworker.throttle import PREF_FILE


def _write_setup(tmp_path, *, location=None):
    regions = {
        "data_version": 3,
        "regions": [
            {"id": "Russia_Moscow", "name": "Moscow", "bbox": [55.14, 36.80, 56.02, 37.97]},
            {"id": "Germany_Berlin", "name": "Berlin", "bbox": [52.33, 13.08, 52.68, 13.77],
             "downloaded": True, "version": 1},
        ],
    }
    (tmp_path / "regions.yml").write_text(yaml.safe_dump(regions), encoding="utf-8")
    if location is not None:
        (tmp_path / "loc.yml").write_text(yaml.safe_dump(location), encoding="utf-8")
    cfg = {
        "worker": {"db_path": str(tmp_path / "w.db"), "retry_delay_ms": 10},
        "location": {"path": str(tmp_path / "loc.yml")},
        "resolver": {"regions": str(tmp_path / "regions.yml")},
        "notifier": {"notify_channels": ["stdout"]},
    }
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return cfg_path


def _query(tmp_path, fn):
    async def run():
        db = await init_db(tmp_path / "w.db")
        try:
            return await fn(db)
        finally:
            await db.close()

    return asyncio.run(run())


def test_load_cfg_defaults_when_missing(tmp_path):
    cfg = load_cfg(tmp_path / "missing.yml")
    assert cfg == DEFAULT_CFG
    assert cfg["worker"]["retry_delay_ms"] == 60_000
    assert cfg["worker"]["suppression_days"] == 180


def test_load_cfg_merges_sections(tmp_path):
    p = tmp_path / "config.yml"
    p.write_text("worker:\n  retry_delay_ms: 5\nextra: 1\n", encoding="utf-8")
    cfg = load_cfg(p)
    assert cfg["worker"]["retry_delay_ms"] == 5
    assert cfg["worker"]["suppression_days"] == 180
    assert cfg["extra"] == 1
    # 默认值本身不被改动
    assert DEFAULT_CFG["worker"]["retry_delay_ms"] == 60_000


def test_once_download_with_fresh_location(tmp_path, capsys):
    now = int(time.time() * 1000)
    cfg_path = _write_setup(tmp_path, location={"latitude": 55.75, "longitude": 37.61, "timestamp_ms": now})

    asyncio.run(main(once="download_country", cfg_path=str(cfg_path)))

    assert "Moscow" in capsys.readouterr().out
    rows = _query(tmp_path, get_recent_metrics)
    assert [(r["event"], r["outcome"]) for r in rows] == [(EVENT_PROBE_INITIAL, True)]
    stored = _query(tmp_path, lambda db: get_pref(db, PREF_FILE, "Moscow"))
    assert stored is not None and int(stored) >= now


def test_once_download_without_location_retries_once(tmp_path):
    cfg_path = _write_setup(tmp_path)

    asyncio.run(main(once="download_country", cfg_path=str(cfg_path)))

    rows = _query(tmp_path, get_recent_metrics)
    assert [(r["event"], r["outcome"], r["elapsed_ms"]) for r in rows] == [
        (EVENT_PROBE_INITIAL, False, None),
        (EVENT_PROBE_DELAYED, False, 10),
    ]


def test_once_check_update(tmp_path, capsys):
    cfg_path = _write_setup(tmp_path)

    asyncio.run(main(once="check_update", cfg_path=str(cfg_path)))
    assert "Berlin" in capsys.readouterr().out

    asyncio.run(main(once="check_update", cfg_path=str(cfg_path)))
    assert "Map updates available" not in capsys.readouterr().out
