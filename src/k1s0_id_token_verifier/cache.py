"""署名鍵セットのキャッシュ (更新の合流と stale-while-revalidate)"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable

import structlog

from .events import EventEmitter, EventNames
from .exceptions import (
    FetchError,
    KeyFetchFailedError,
    KeyNotFoundError,
    RefreshError,
)
from .fetcher import JwksFetcher
from .jwks import parse_jwks
from .key_source import KeySourceResolver
from .models import CacheEntry, SigningKey, SigningKeySet
from .retry import ExponentialBackoff, RetryPolicy, with_retry

logger = structlog.get_logger(__name__)


class KeySetCache:
    """JWKS から構築した SigningKeySet を TTL 付きで保持するキャッシュ。

    同時に発生した更新要求は 1 つの asyncio.Task に合流し、ネットワーク取得は
    1 回だけ行われる。待機側は asyncio.shield 越しに待つため、呼び出し元の
    キャンセルが更新自体を止めることはない。エントリの差し替えは 1 回の代入で
    行われ、読み手は常に旧エントリか新エントリのどちらか全体を見る。

    Args:
        resolver: JWKS URL の解決器
        fetcher: JSON 文書フェッチャー
        retry_policy: 更新時のリトライポリシー (省略時は 3 回までの指数バックオフ)
        ttl: エントリの有効期間 (秒)
        serve_stale: 更新失敗時に既知 kid の旧鍵を返すか
        stale_grace: 期限切れ後、旧鍵を返しつつ裏で更新する猶予 (秒)
        refresh_on_unknown_key: 未知の kid で 1 回だけ更新を試みるか
        key_wait_timeout: 更新待ちの上限 (秒)。None なら無制限
        allow_missing_alg: alg のない JWK を受け付けるか
        clock: 単調増加する時計
        events: イベント発行器
    """

    def __init__(
        self,
        resolver: KeySourceResolver,
        fetcher: JwksFetcher,
        retry_policy: RetryPolicy | None = None,
        *,
        ttl: float = 300.0,
        serve_stale: bool = True,
        stale_grace: float = 0.0,
        refresh_on_unknown_key: bool = True,
        key_wait_timeout: float | None = None,
        allow_missing_alg: bool = False,
        clock: Callable[[], float] = time.monotonic,
        events: EventEmitter | None = None,
    ) -> None:
        if ttl < 0:
            raise ValueError("ttl must not be negative")
        if stale_grace < 0:
            raise ValueError("stale_grace must not be negative")
        self._resolver = resolver
        self._fetcher = fetcher
        self._retry_policy = retry_policy if retry_policy is not None else ExponentialBackoff()
        self._ttl = ttl
        self._serve_stale = serve_stale
        self._stale_grace = stale_grace
        self._refresh_on_unknown_key = refresh_on_unknown_key
        self._key_wait_timeout = key_wait_timeout
        self._allow_missing_alg = allow_missing_alg
        self._clock = clock
        self._events = events if events is not None else EventEmitter()
        self._logger = logger.bind(verifier_name=self._events.verifier_name)
        self._entry: CacheEntry | None = None
        self._refresh_task: asyncio.Task[CacheEntry] | None = None

    @property
    def entry(self) -> CacheEntry | None:
        """現在のキャッシュエントリ。未取得なら None。"""
        return self._entry

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def now(self) -> float:
        return self._clock()

    async def get_key(self, kid: str) -> SigningKey:
        """kid に対応する署名鍵を返す。

        Raises:
            KeyNotFoundError: 更新後のキーセットにも kid が存在しない場合
            KeyFetchFailedError: キーセットを取得できなかった場合
        """
        entry = self._entry
        now = self._clock()

        if entry is not None and not entry.is_expired(now):
            key = entry.key_set.get(kid)
            if key is not None:
                return key
            if not self._refresh_on_unknown_key:
                raise KeyNotFoundError(kid)
            self._logger.info("unknown_kid_refresh", kid=kid)
            return await self._refresh_and_lookup(kid, fallback=None)

        if entry is not None and now < entry.expires_at + self._stale_grace:
            key = entry.key_set.get(kid)
            if key is not None:
                self._start_refresh()
                return key

        return await self._refresh_and_lookup(kid, fallback=entry if self._serve_stale else None)

    async def refresh(self) -> CacheEntry:
        """無条件に更新する。進行中の更新があればそれに合流する。

        Raises:
            RefreshError: 更新に失敗した場合
        """
        return await asyncio.shield(self._start_refresh())

    async def refresh_if_needed(self, lead: float = 0.0) -> CacheEntry | None:
        """エントリがないか、期限の lead 秒前を過ぎていれば更新する。

        Returns:
            更新した場合は新しいエントリ、不要だった場合は None
        """
        entry = self._entry
        if entry is None or self._clock() >= entry.expires_at - lead:
            return await self.refresh()
        return None

    async def aclose(self) -> None:
        """進行中の更新をキャンセルする。"""
        task = self._refresh_task
        self._refresh_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _refresh_and_lookup(self, kid: str, fallback: CacheEntry | None) -> SigningKey:
        try:
            entry = await self._wait_for_refresh()
        except asyncio.TimeoutError as e:
            raise KeyFetchFailedError(
                f"Timed out after {self._key_wait_timeout}s waiting for signing keys",
                timed_out=True,
                cause=e,
            ) from e
        except RefreshError as e:
            if fallback is not None:
                key = fallback.key_set.get(kid)
                if key is not None:
                    self._logger.warning(
                        "serving_stale_key",
                        kid=kid,
                        expired_for=self._clock() - fallback.expires_at,
                        error=str(e),
                    )
                    return key
            raise KeyFetchFailedError(f"Failed to fetch signing keys: {e.message}", cause=e) from e

        key = entry.key_set.get(kid)
        if key is None:
            raise KeyNotFoundError(kid)
        return key

    async def _wait_for_refresh(self) -> CacheEntry:
        task = self._start_refresh()
        if self._key_wait_timeout is None:
            return await asyncio.shield(task)
        return await asyncio.wait_for(asyncio.shield(task), timeout=self._key_wait_timeout)

    def _start_refresh(self) -> asyncio.Task[CacheEntry]:
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.create_task(self._run_refresh())
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        return task

    def _on_refresh_done(self, task: asyncio.Task[CacheEntry]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # 誰も待っていないバックグラウンド更新の例外を回収する
            task.exception()

    async def _run_refresh(self) -> CacheEntry:
        try:
            key_set = await with_retry(self._retry_policy, self._fetch_once, on_retry=self._on_retry)
        except RefreshError as e:
            self._events.emit(EventNames.REFRESH_FAILURE, error=e, attempts=e.attempts)
            raise

        entry = CacheEntry(key_set=key_set, fetched_at=self._clock(), ttl=self._ttl)
        self._entry = entry
        self._events.emit(EventNames.REFRESH_SUCCESS, key_count=len(key_set), kids=key_set.kids)
        return entry

    async def _fetch_once(self) -> SigningKeySet:
        try:
            url = await self._resolver.resolve()
        except FetchError as e:
            self._events.emit(EventNames.FETCH_FAILURE, error=e, url=e.url, retryable=e.retryable)
            raise

        self._events.emit(EventNames.FETCH_ATTEMPT, url=url)
        try:
            document = await self._fetcher.fetch_json(url)
            key_set = parse_jwks(document, allow_missing_alg=self._allow_missing_alg)
        except FetchError as e:
            if e.url is None:
                e.url = url
            self._events.emit(EventNames.FETCH_FAILURE, error=e, url=url, retryable=e.retryable)
            raise
        self._events.emit(EventNames.FETCH_SUCCESS, url=url, key_count=len(key_set))
        return key_set

    def _on_retry(self, attempt: int, delay: float, error: Exception) -> None:
        self._logger.info("refresh_retry_scheduled", attempt=attempt, delay=delay, error=str(error))
