"""JWKS / ディスカバリー文書のフェッチャー"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

import httpx

from .exceptions import ErrorCodes, FetchError

# リトライ対象となる 4xx ステータス
_RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def is_retryable_status(status: int) -> bool:
    """HTTP ステータスが一時的な失敗を示すかどうかを返す。"""
    return status >= 500 or status in _RETRYABLE_CLIENT_STATUSES


class JwksFetcher(ABC):
    """JSON 文書フェッチャー抽象基底クラス。1 回の呼び出しで 1 回だけ取得を試みる。"""

    @abstractmethod
    async def fetch_json(self, url: str) -> dict[str, Any]:
        """URL から JSON オブジェクトを取得する。

        Raises:
            FetchError: 取得またはデコードに失敗した場合
        """
        ...

    async def aclose(self) -> None:
        """保持しているリソースを解放する。"""
        return None


class HttpJwksFetcher(JwksFetcher):
    """httpx.AsyncClient で GET するフェッチャー。

    client を渡さない場合は内部でクライアントを生成し、aclose() で閉じる。
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient()
        self._timeout = timeout

    async def fetch_json(self, url: str) -> dict[str, Any]:
        try:
            # 本文の受信完了までを 1 回の試行の上限とする
            resp = await asyncio.wait_for(
                self._client.get(
                    url,
                    timeout=self._timeout,
                    headers={"Accept": "application/json"},
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise FetchError(
                ErrorCodes.FETCH_NETWORK_ERROR,
                f"Timed out after {self._timeout}s fetching {url}",
                retryable=True,
                url=url,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(
                ErrorCodes.FETCH_NETWORK_ERROR,
                f"Failed to fetch {url}: {e}",
                retryable=True,
                url=url,
                cause=e,
            ) from e

        if not resp.is_success:
            raise FetchError(
                ErrorCodes.FETCH_HTTP_STATUS,
                f"Unexpected HTTP status {resp.status_code} from {url}",
                retryable=is_retryable_status(resp.status_code),
                url=url,
                status=resp.status_code,
            )

        try:
            data = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FetchError(
                ErrorCodes.FETCH_MALFORMED_JSON,
                f"Response from {url} is not valid JSON: {e}",
                retryable=False,
                url=url,
                status=resp.status_code,
                cause=e,
            ) from e
        if not isinstance(data, dict):
            raise FetchError(
                ErrorCodes.FETCH_MALFORMED_JSON,
                f"Response from {url} is not a JSON object",
                retryable=False,
                url=url,
                status=resp.status_code,
            )
        return data

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
