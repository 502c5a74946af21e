"""ID トークン検証のデータモデル"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Union

from jwt import PyJWK


@dataclass(frozen=True)
class DirectKeySource:
    """JWKS の URL を直接指定するキーソース。"""

    jwks_url: str


@dataclass(frozen=True)
class AutoDiscoverKeySource:
    """OIDC ディスカバリー文書の jwks_uri から JWKS の URL を解決するキーソース。"""

    discovery_url: str


KeySource = Union[DirectKeySource, AutoDiscoverKeySource]


@dataclass(frozen=True)
class SigningKey:
    """JWKS の 1 エントリから構築した検証用公開鍵。

    algorithm は JWK の alg。allow_missing_jwk_alg 有効時のみ None になり得る。
    """

    kid: str
    key_type: str
    algorithm: str | None
    jwk: PyJWK = field(compare=False, repr=False)
    raw: Mapping[str, Any] = field(compare=False, repr=False)


@dataclass(frozen=True)
class SigningKeySet:
    """kid から SigningKey へのイミュータブルなマッピング。"""

    keys: Mapping[str, SigningKey] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "keys", MappingProxyType(dict(self.keys)))

    def get(self, kid: str) -> SigningKey | None:
        return self.keys.get(kid)

    def __contains__(self, kid: object) -> bool:
        return kid in self.keys

    def __len__(self) -> int:
        return len(self.keys)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys)

    @property
    def kids(self) -> list[str]:
        return sorted(self.keys)


@dataclass(frozen=True)
class CacheEntry:
    """現在有効なキーセットと取得時刻。fetched_at はキャッシュの時計 (monotonic) の値。"""

    key_set: SigningKeySet
    fetched_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.fetched_at + self.ttl

    def is_expired(self, now: float) -> bool:
        """now が expires_at ちょうどの場合も期限切れとみなす。"""
        return now >= self.expires_at


def _to_frozenset(values: str | Iterable[str], name: str) -> frozenset[str]:
    if isinstance(values, str):
        result = frozenset({values})
    else:
        result = frozenset(values)
    if not result:
        raise ValueError(f"{name} must not be empty")
    return result


@dataclass(frozen=True)
class ValidationOptions:
    """標準クレームの検証設定。

    Attributes:
        issuers: 許可する iss (1 つ以上)
        audiences: 許可する aud (1 つ以上、トークンの aud と共通部分があれば可)
        leeway: exp / nbf / iat 判定の許容時計ずれ (秒)
        validate_exp: exp を必須とし期限を検証するか
        validate_nbf: nbf を必須とするか (存在すれば常に検証する)
        allow_missing_jwk_alg: alg のない JWK を許可しトークンヘッダーの alg を使うか
    """

    issuers: frozenset[str]
    audiences: frozenset[str]
    leeway: float = 60.0
    validate_exp: bool = True
    validate_nbf: bool = False
    allow_missing_jwk_alg: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "issuers", _to_frozenset(self.issuers, "issuers"))
        object.__setattr__(self, "audiences", _to_frozenset(self.audiences, "audiences"))
        if self.leeway < 0:
            raise ValueError("leeway must not be negative")
