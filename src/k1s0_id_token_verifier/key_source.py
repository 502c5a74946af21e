"""キーソースから JWKS の URL を解決する"""

from __future__ import annotations

from urllib.parse import urlparse

import structlog

from .exceptions import DiscoveryError, ErrorCodes, FetchError
from .fetcher import JwksFetcher
from .models import AutoDiscoverKeySource, DirectKeySource, KeySource

logger = structlog.get_logger(__name__)


def _is_http_url(value: object) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class KeySourceResolver:
    """キーソースを JWKS の URL に解決し、結果を保持する。

    ディスカバリーは成功後に再実行しない。リトライ不能な失敗は記録し、
    以降の呼び出しでも同じエラーを送出する。
    """

    def __init__(self, source: KeySource, fetcher: JwksFetcher) -> None:
        self._source = source
        self._fetcher = fetcher
        self._jwks_url: str | None = None
        self._failure: DiscoveryError | None = None
        if isinstance(source, DirectKeySource):
            self._jwks_url = source.jwks_url

    @property
    def source(self) -> KeySource:
        return self._source

    @property
    def jwks_url(self) -> str | None:
        """解決済みの JWKS URL。未解決なら None。"""
        return self._jwks_url

    async def resolve(self) -> str:
        """JWKS の URL を返す。

        Raises:
            DiscoveryError: ディスカバリー文書の取得または解釈に失敗した場合
        """
        if self._jwks_url is not None:
            return self._jwks_url
        if self._failure is not None:
            raise self._failure
        if not isinstance(self._source, AutoDiscoverKeySource):
            raise TypeError(f"Unsupported key source: {self._source!r}")

        url = self._source.discovery_url
        try:
            document = await self._fetcher.fetch_json(url)
        except FetchError as e:
            error = DiscoveryError(
                e.code,
                f"OIDC discovery failed: {e.message}",
                retryable=e.retryable,
                url=url,
                status=e.status,
                cause=e,
            )
            if not error.retryable:
                self._failure = error
            raise error from e

        jwks_uri = document.get("jwks_uri")
        if not _is_http_url(jwks_uri):
            self._failure = DiscoveryError(
                ErrorCodes.DISCOVERY_INVALID_DOCUMENT,
                f"Discovery document at {url} has no valid 'jwks_uri'",
                retryable=False,
                url=url,
            )
            raise self._failure

        self._jwks_url = jwks_uri
        logger.info("jwks_uri_discovered", discovery_url=url, jwks_uri=jwks_uri)
        return jwks_uri
