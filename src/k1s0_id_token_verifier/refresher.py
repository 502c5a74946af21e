"""asyncio Task ベースのキーセット先行更新"""

from __future__ import annotations

import asyncio
import contextlib

import structlog

from .cache import KeySetCache
from .exceptions import RefreshError

logger = structlog.get_logger(__name__)


class BackgroundRefresher:
    """キャッシュエントリの期限切れ前にキーセットを更新するタスク。

    エントリの期限の lead 秒前まで待機し、refresh_if_needed(lead) を呼ぶ。
    失敗した場合はログとイベントに記録し、min_interval 秒待ってから再試行する。
    """

    def __init__(
        self,
        cache: KeySetCache,
        *,
        lead: float | None = None,
        min_interval: float = 1.0,
        verifier_name: str = "default",
    ) -> None:
        if min_interval <= 0:
            raise ValueError("min_interval must be positive")
        self._cache = cache
        self._lead = lead if lead is not None else cache.ttl * 0.2
        self._min_interval = min_interval
        self._logger = logger.bind(verifier_name=verifier_name)
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def lead(self) -> float:
        return self._lead

    def start(self) -> None:
        """更新タスクを開始する。既に動作中なら何もしない。"""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        self._logger.info("background_refresher_started", lead=self._lead, min_interval=self._min_interval)

    async def stop(self) -> None:
        """更新タスクを停止する。"""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            self._logger.info("background_refresher_stopped")

    def next_delay(self) -> float:
        """次の更新チェックまでの待機秒数。エントリがなければ 0。"""
        entry = self._cache.entry
        if entry is None:
            return 0.0
        delay = entry.expires_at - self._lead - self._cache.now()
        return max(delay, self._min_interval)

    async def _run_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.next_delay())
            try:
                await self._cache.refresh_if_needed(self._lead)
            except RefreshError as e:
                self._logger.error("background_refresh_failed", error=str(e), attempts=e.attempts)
                await asyncio.sleep(self._min_interval)
