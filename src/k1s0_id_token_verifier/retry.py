"""キーセット取得のリトライポリシーと実行エンジン"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from .exceptions import FetchError, RefreshError

T = TypeVar("T")


class RetryPolicy(Protocol):
    """次の試行までの待機時間を決めるポリシー。"""

    def next_delay(self, attempt: int, elapsed: float) -> float | None:
        """次の試行までの待機秒数を返す。None なら打ち切る。

        Args:
            attempt: 失敗した試行回数 (1 始まり)
            elapsed: これまでの待機時間の合計 (秒)
        """
        ...


def _apply_jitter(delay: float, jitter: bool) -> float:
    if jitter:
        return delay * (0.9 + random.random() * 0.2)
    return delay


@dataclass(frozen=True)
class NoRetry:
    """リトライしない。"""

    def next_delay(self, attempt: int, elapsed: float) -> float | None:
        return None


@dataclass(frozen=True)
class ConstantBackoff:
    """一定間隔でリトライする。"""

    delay: float = 1.0
    max_attempts: int = 3
    jitter: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")

    def next_delay(self, attempt: int, elapsed: float) -> float | None:
        if attempt >= self.max_attempts:
            return None
        return _apply_jitter(self.delay, self.jitter)


@dataclass(frozen=True)
class ExponentialBackoff:
    """指数バックオフでリトライする。

    max_total_delay を指定すると、待機時間の合計がそれを超える試行は行わない。
    """

    initial_delay: float = 0.1
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_attempts: int = 3
    max_total_delay: float | None = None
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def compute_delay(self, attempt: int) -> float:
        """attempt 回目 (0 始まり) のリトライ間隔を秒単位で計算する。"""
        base = self.initial_delay * (self.multiplier**attempt)
        return _apply_jitter(min(base, self.max_delay), self.jitter)

    def next_delay(self, attempt: int, elapsed: float) -> float | None:
        if attempt >= self.max_attempts:
            return None
        delay = self.compute_delay(attempt - 1)
        if self.max_total_delay is not None and elapsed + delay > self.max_total_delay:
            return None
        return delay


async def with_retry(
    policy: RetryPolicy,
    fn: Callable[[], Awaitable[T]],
    *,
    on_retry: Callable[[int, float, Exception], None] | None = None,
) -> T:
    """非同期関数をリトライ付きで実行する。

    retryable な FetchError のみ再試行する。それ以外のエラーは即座に打ち切る。

    Raises:
        RefreshError: 試行が尽きた、またはリトライ不能なエラーが発生した場合
    """
    attempt = 0
    elapsed = 0.0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as e:
            if not isinstance(e, FetchError) or not e.retryable:
                raise RefreshError(attempts=attempt, last_error=e) from e
            delay = policy.next_delay(attempt, elapsed)
            if delay is None:
                raise RefreshError(attempts=attempt, last_error=e) from e
            if on_retry is not None:
                on_retry(attempt, delay, e)
            await asyncio.sleep(delay)
            elapsed += delay
