"""OIDC ID トークン検証"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any, TypeVar, overload

import jwt
import structlog
from jwt import PyJWK
from pydantic import TypeAdapter, ValidationError

from .cache import KeySetCache
from .events import EventEmitter, EventHook, EventNames
from .exceptions import (
    ClaimsDeserializationError,
    InvalidSignatureError,
    MalformedTokenError,
    MissingKeyIdError,
    VerificationError,
)
from .fetcher import HttpJwksFetcher, JwksFetcher
from .jwks import is_compatible
from .key_source import KeySourceResolver
from .models import KeySource, SigningKey, ValidationOptions
from .refresher import BackgroundRefresher
from .retry import RetryPolicy
from .validation import validate_claims

if TYPE_CHECKING:
    import httpx

    from .config import IdTokenVerifierConfig

C = TypeVar("C")

logger = structlog.get_logger(__name__)

# 標準クレームの検証は validate_claims で行うため PyJWT 側では無効化する
_DECODE_OPTIONS: dict[str, Any] = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


class IdTokenVerifier:
    """JWKS キャッシュを使って OIDC ID トークンを検証するクラス。

    verify() は署名検証、標準クレーム検証、呼び出し側の型への変換を
    すべて成功した場合のみ結果を返す。

    Args:
        cache: 署名鍵キャッシュ
        options: 標準クレームの検証設定
        refresher: バックグラウンド更新 (省略時は行わない)
        fetcher: aclose() で閉じるフェッチャー
        events: イベント発行器
        wall_clock: exp / nbf / iat 判定に使う UNIX 時刻の時計
    """

    def __init__(
        self,
        cache: KeySetCache,
        options: ValidationOptions,
        *,
        refresher: BackgroundRefresher | None = None,
        fetcher: JwksFetcher | None = None,
        events: EventEmitter | None = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._options = options
        self._refresher = refresher
        self._fetcher = fetcher
        self._events = events if events is not None else EventEmitter()
        self._wall_clock = wall_clock
        self._adapters: dict[Any, TypeAdapter[Any]] = {}
        self._logger = logger.bind(verifier_name=self._events.verifier_name)

    @classmethod
    def create(
        cls,
        key_source: KeySource,
        options: ValidationOptions,
        *,
        fetcher: JwksFetcher | None = None,
        retry_policy: RetryPolicy | None = None,
        verifier_name: str = "default",
        hooks: Iterable[EventHook] = (),
        background_refresh: bool = False,
        refresh_lead: float | None = None,
        min_refresh_interval: float = 1.0,
        **cache_options: Any,
    ) -> IdTokenVerifier:
        """キーソースから検証器一式を構築する。

        cache_options は KeySetCache のキーワード引数 (ttl, serve_stale など) として渡される。
        """
        if fetcher is None:
            fetcher = HttpJwksFetcher()
        events = EventEmitter(verifier_name, hooks)
        cache_options.setdefault("allow_missing_alg", options.allow_missing_jwk_alg)
        cache = KeySetCache(
            KeySourceResolver(key_source, fetcher),
            fetcher,
            retry_policy,
            events=events,
            **cache_options,
        )
        refresher = None
        if background_refresh:
            refresher = BackgroundRefresher(
                cache,
                lead=refresh_lead,
                min_interval=min_refresh_interval,
                verifier_name=verifier_name,
            )
        return cls(cache, options, refresher=refresher, fetcher=fetcher, events=events)

    @classmethod
    def from_config(
        cls,
        config: IdTokenVerifierConfig,
        http_client: httpx.AsyncClient | None = None,
        hooks: Iterable[EventHook] = (),
    ) -> IdTokenVerifier:
        """設定モデルから検証器を構築する。

        http_client を渡した場合、そのクライアントは aclose() で閉じない。
        """
        cache_config = config.cache
        return cls.create(
            config.key_source.to_key_source(),
            config.validation.to_options(),
            fetcher=HttpJwksFetcher(client=http_client, timeout=config.http.timeout),
            retry_policy=config.retry.to_policy(),
            verifier_name=config.verifier_name,
            hooks=hooks,
            background_refresh=cache_config.background_refresh,
            refresh_lead=cache_config.refresh_lead,
            min_refresh_interval=cache_config.min_refresh_interval,
            ttl=cache_config.ttl,
            serve_stale=cache_config.serve_stale,
            stale_grace=cache_config.stale_grace,
            refresh_on_unknown_key=cache_config.refresh_on_unknown_key,
            key_wait_timeout=cache_config.key_wait_timeout,
        )

    @property
    def cache(self) -> KeySetCache:
        return self._cache

    @property
    def options(self) -> ValidationOptions:
        return self._options

    @property
    def refresher(self) -> BackgroundRefresher | None:
        return self._refresher

    def start(self) -> None:
        """バックグラウンド更新を開始する。"""
        if self._refresher is not None:
            self._refresher.start()

    async def warmup(self) -> None:
        """キーセットを事前に取得する。

        Raises:
            RefreshError: 取得に失敗した場合
        """
        entry = await self._cache.refresh()
        self._logger.info("key_set_warmed_up", kids=entry.key_set.kids)

    async def aclose(self) -> None:
        """バックグラウンド更新を停止し、リソースを解放する。"""
        if self._refresher is not None:
            await self._refresher.stop()
        await self._cache.aclose()
        if self._fetcher is not None:
            await self._fetcher.aclose()

    async def __aenter__(self) -> IdTokenVerifier:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @overload
    async def verify(self, token: str) -> dict[str, Any]: ...

    @overload
    async def verify(self, token: str, claims_type: type[C]) -> C: ...

    async def verify(self, token: str, claims_type: Any = dict) -> Any:
        """ID トークンを検証し、クレームを claims_type に変換して返す。

        Args:
            token: compact 形式の ID トークン
            claims_type: pydantic の TypeAdapter が扱える型 (既定は dict)

        Raises:
            VerificationError: 検証のいずれかの段階で失敗した場合
        """
        try:
            payload = await self._verify_payload(token)
            return self._deserialize(payload, claims_type)
        except VerificationError as e:
            self._events.emit(EventNames.VERIFICATION_FAILURE, error=e)
            raise

    async def _verify_payload(self, token: str) -> dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f"Malformed token: {e}", cause=e) from e

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise MissingKeyIdError()

        key = await self._cache.get_key(kid)
        algorithm, verification_key = self._select_algorithm(key, header.get("alg"))

        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                verification_key,
                algorithms=[algorithm],
                options=_DECODE_OPTIONS,
            )
        except jwt.InvalidSignatureError as e:
            raise InvalidSignatureError(cause=e) from e
        except (jwt.InvalidAlgorithmError, jwt.InvalidKeyError) as e:
            raise InvalidSignatureError(f"Invalid token signature: {e}", cause=e) from e
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f"Malformed token: {e}", cause=e) from e

        validate_claims(payload, self._options, self._wall_clock())
        return payload

    def _select_algorithm(self, key: SigningKey, header_alg: Any) -> tuple[str, Any]:
        """検証に使うアルゴリズムと鍵を決める。

        JWK が alg を宣言していればそれだけを許可し、ヘッダーの alg が異なれば拒否する。
        """
        if key.algorithm is not None:
            if header_alg != key.algorithm:
                raise InvalidSignatureError(
                    f"Token algorithm {header_alg!r} does not match key algorithm {key.algorithm!r}"
                )
            return key.algorithm, key.jwk.key

        if not isinstance(header_alg, str) or not is_compatible(key.key_type, header_alg):
            raise InvalidSignatureError(
                f"Token algorithm {header_alg!r} is not allowed for key type {key.key_type}"
            )
        try:
            jwk = PyJWK(dict(key.raw), algorithm=header_alg)
        except (jwt.PyJWKError, jwt.InvalidKeyError) as e:
            raise InvalidSignatureError(f"Invalid token signature: {e}", cause=e) from e
        return header_alg, jwk.key

    def _deserialize(self, payload: dict[str, Any], claims_type: Any) -> Any:
        if claims_type is dict:
            return payload
        adapter = self._adapters.get(claims_type)
        if adapter is None:
            adapter = TypeAdapter(claims_type)
            self._adapters[claims_type] = adapter
        try:
            return adapter.validate_python(payload)
        except ValidationError as e:
            raise ClaimsDeserializationError(f"Claims could not be deserialized: {e}", cause=e) from e
