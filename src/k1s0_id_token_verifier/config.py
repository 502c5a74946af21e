"""設定型定義（pydantic BaseModel）"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Annotated, Literal, Union

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .models import AutoDiscoverKeySource, DirectKeySource, KeySource, ValidationOptions
from .retry import ConstantBackoff, ExponentialBackoff, NoRetry, RetryPolicy

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def _to_seconds(value: object) -> object:
    """timedelta や "30s" / "5m" / "1h" / "500ms" 形式の文字列を秒数に変換する。"""
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if match is None:
            raise ValueError(f"invalid duration: {value!r}")
        return float(match.group(1)) * _DURATION_UNITS[match.group(2) or "s"]
    return value


# 秒数。数値のほか timedelta と単位付き文字列を受け付ける
Seconds = Annotated[float, BeforeValidator(_to_seconds)]


class DirectKeySourceSection(BaseModel):
    """JWKS の URL を直接指定する。"""

    type: Literal["direct"] = "direct"
    jwks_url: AnyHttpUrl

    def to_key_source(self) -> KeySource:
        return DirectKeySource(jwks_url=str(self.jwks_url))


class DiscoverKeySourceSection(BaseModel):
    """OIDC ディスカバリー文書から JWKS の URL を解決する。"""

    type: Literal["discover"] = "discover"
    discovery_url: AnyHttpUrl

    def to_key_source(self) -> KeySource:
        return AutoDiscoverKeySource(discovery_url=str(self.discovery_url))


KeySourceSection = Annotated[
    Union[DirectKeySourceSection, DiscoverKeySourceSection],
    Field(discriminator="type"),
]


class RetrySection(BaseModel):
    """キーセット取得のリトライ設定。"""

    strategy: Literal["none", "constant", "exponential"] = "exponential"
    max_attempts: int = Field(default=3, ge=1)
    initial_delay: Seconds = Field(default=0.1, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: Seconds = Field(default=30.0, ge=0.0)
    max_total_delay: Seconds | None = Field(default=None, ge=0.0)
    jitter: bool = True

    def to_policy(self) -> RetryPolicy:
        if self.strategy == "none":
            return NoRetry()
        if self.strategy == "constant":
            return ConstantBackoff(
                delay=self.initial_delay,
                max_attempts=self.max_attempts,
                jitter=self.jitter,
            )
        return ExponentialBackoff(
            initial_delay=self.initial_delay,
            multiplier=self.multiplier,
            max_delay=self.max_delay,
            max_attempts=self.max_attempts,
            max_total_delay=self.max_total_delay,
            jitter=self.jitter,
        )


class CacheSection(BaseModel):
    """キーセットキャッシュ設定。"""

    ttl: Seconds = Field(default=300.0, ge=0.0)
    refresh_lead: Seconds | None = Field(default=None, ge=0.0)
    background_refresh: bool = False
    min_refresh_interval: Seconds = Field(default=1.0, gt=0.0)
    serve_stale: bool = True
    stale_grace: Seconds = Field(default=0.0, ge=0.0)
    refresh_on_unknown_key: bool = True
    key_wait_timeout: Seconds | None = Field(default=None, gt=0.0)


class ValidationSection(BaseModel):
    """標準クレームの検証設定。"""

    allowed_iss: list[str]
    allowed_aud: list[str]
    leeway_seconds: Seconds = Field(default=60.0, ge=0.0)
    validate_exp: bool = True
    validate_nbf: bool = False
    allow_missing_jwk_alg: bool = False

    @field_validator("allowed_iss", "allowed_aud", mode="before")
    @classmethod
    def _single_value_as_list(cls, value: object) -> object:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("allowed_iss", "allowed_aud")
    @classmethod
    def _not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one value is required")
        return value

    def to_options(self) -> ValidationOptions:
        return ValidationOptions(
            issuers=frozenset(self.allowed_iss),
            audiences=frozenset(self.allowed_aud),
            leeway=self.leeway_seconds,
            validate_exp=self.validate_exp,
            validate_nbf=self.validate_nbf,
            allow_missing_jwk_alg=self.allow_missing_jwk_alg,
        )


class HttpSection(BaseModel):
    """HTTP クライアント設定。"""

    timeout: Seconds = Field(default=10.0, gt=0.0)


class IdTokenVerifierConfig(BaseModel):
    """ID トークン検証器の設定全体。"""

    model_config = ConfigDict(extra="forbid")

    verifier_name: str = "default"
    key_source: KeySourceSection
    validation: ValidationSection
    retry: RetrySection = Field(default_factory=RetrySection)
    cache: CacheSection = Field(default_factory=CacheSection)
    http: HttpSection = Field(default_factory=HttpSection)

    @model_validator(mode="after")
    def _refresh_lead_within_ttl(self) -> IdTokenVerifierConfig:
        lead = self.cache.refresh_lead
        if lead is not None and self.cache.ttl > 0 and lead >= self.cache.ttl:
            raise ValueError("cache.refresh_lead must be shorter than cache.ttl")
        return self
