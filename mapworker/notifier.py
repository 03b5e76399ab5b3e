
"""
mapworker/notifier.py
通知模块：下载建议 / 数据更新提示，发送到 Telegram（或回退到 stdout）
- 文案模板来自 config.yml 的 notifier.templates
- Telegram 429/5xx 指数退避重试
"""

from __future__ import annotations
import asyncio
import os
import random
from typing import Optional

import httpx


# ------------------------------------------------------------
# 工具函数
# ------------------------------------------------------------

DEFAULT_TEMPLATES = {
    "download_location_country": "Download the map of your current location: {country}?",
    "download_suggest_title": "📍 {text}\nRegion: {region_id}",
    "update_available": "🗺️ Map updates available: {countries}",
}


def _truncate(s: str, limit: int = 3500) -> str:
    if s is None:
        return ""
    return s if len(s) <= limit else s[:limit - 3] + "..."


# ------------------------------------------------------------
# 渠道适配器
# ------------------------------------------------------------

class _TelegramAdapter:
    def __init__(self, token: str, chat_id: str, retry: dict,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._token = token
        self._chat_id = chat_id
        self._retry = retry or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _client_get(self) -> httpx.AsyncClient:
        # 复用连接池；trust_env 读取系统代理/CERT
        if self._client is None:
            timeout = httpx.Timeout(connect=5.0, read=10.0, write=10.0, pool=30.0)
            self._client = httpx.AsyncClient(
                timeout=timeout,
                http2=True,
                trust_env=True,
                transport=self._transport,
            )
        return self._client

    async def send(self, text: str) -> bool:
        """
        发送 Telegram；尊重 429/5xx；最终失败才简短打印。
        """
        url = f"https://api.telegram.org/bot{self._token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }

        max_times = int(self._retry.get("max_times", 3))
        backoff = int(self._retry.get("backoff_sec", 2))

        last_err = None

        for attempt in range(1, max_times + 1):
            try:
                r = await self._client_get().post(url, data=payload)
                try:
                    data = r.json()
                except ValueError:
                    data = None

                if r.status_code == 200 and (data is None or data.get("ok", True) is True):
                    return True

                # 429/5xx：可重试
                if r.status_code == 429 or 500 <= r.status_code < 600:
                    retry_after = 0
                    if isinstance(data, dict):
                        try:
                            retry_after = int(data.get("parameters", {}).get("retry_after", 0))
                        except (TypeError, ValueError):
                            retry_after = 0
                    # 指数退避 + 抖动，优先使用服务端给的 retry_after
                    sleep_sec = retry_after or (backoff * (2 ** (attempt - 1)))
                    sleep_sec = min(sleep_sec, 30)
                    sleep_sec += random.uniform(0, 0.6)
                    last_err = f"http {r.status_code}"
                    if attempt < max_times:
                        await asyncio.sleep(sleep_sec)
                    continue

                # 其他 4xx：直接失败，记录头 300 字符即可
                last_err = f"http {r.status_code}: {(r.text or '')[:300]}"
                break

            except httpx.HTTPError as e:
                last_err = repr(e)
                # 网络抖动：也按退避重试
                if attempt < max_times:
                    sleep_sec = backoff * (2 ** (attempt - 1)) + random.uniform(0, 0.6)
                    await asyncio.sleep(min(sleep_sec, 20))
                continue

        print(f"[notifier] telegram send failed after {max_times} attempts: {last_err}")
        return False

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class _StdoutAdapter:
    async def send(self, text: str) -> bool:
        print("\n" + text + "\n")
        return True

    async def close(self):
        return


# ------------------------------------------------------------
# Notifier 主体
# ------------------------------------------------------------

class Notifier:
    def __init__(self, cfg: Optional[dict] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        raw = cfg or {}
        # 允许传进来“整份 cfg”或“notifier 子配置”
        self._cfg = raw["notifier"] if "notifier" in raw else raw

        self._templates = {**DEFAULT_TEMPLATES, **(self._cfg.get("templates") or {})}

        # 从环境变量读取 token/chat_id（配置里也允许覆盖）
        token = (self._cfg.get("token") or os.environ.get("TELEGRAM_BOT_TOKEN", "")).strip()
        chat_id = str(self._cfg.get("chat_id") or os.environ.get("TELEGRAM_CHAT_ID", "")).strip()
        retry = self._cfg.get("retry") or {"max_times": 3, "backoff_sec": 2}

        channels = self._cfg.get("notify_channels") or []
        if "telegram" in channels and token and chat_id:
            self._adapter = _TelegramAdapter(token, chat_id, retry, transport=transport)
            self.channel = "telegram"
        else:
            self._adapter = _StdoutAdapter()
            self.channel = "stdout"
            if "telegram" in channels:
                print("[notifier] TELEGRAM_BOT_TOKEN/CHAT_ID 缺失，自动降级为 stdout")

    def format_download_text(self, country: str) -> str:
        return self._templates["download_location_country"].format(country=country)

    async def place_download_suggest(self, country: str, text: str, region_id: str) -> bool:
        """下载当前所在区域地图的建议。"""
        body = self._templates["download_suggest_title"].format(
            text=text, country=country, region_id=region_id)
        ok = await self._adapter.send(_truncate(body))
        print(f"[notifier] download suggest {country} ({region_id}) -> {ok}")
        return ok

    async def place_update_available(self, countries_text: str) -> bool:
        body = self._templates["update_available"].format(countries=countries_text)
        ok = await self._adapter.send(_truncate(body))
        print(f"[notifier] update available -> {ok}")
        return ok

    async def close(self):
        await self._adapter.close()
