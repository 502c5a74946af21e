"""JWKS 文書のパーサー"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from jwt import InvalidKeyError, PyJWK, PyJWKError

from .exceptions import ErrorCodes, FetchError
from .models import SigningKey, SigningKeySet

# 鍵タイプごとに許可する署名アルゴリズム。対称鍵 (oct / HS*) は受け付けない。
ALGORITHMS_BY_KEY_TYPE: Mapping[str, frozenset[str]] = {
    "RSA": frozenset({"RS256", "RS384", "RS512", "PS256", "PS384", "PS512"}),
    "EC": frozenset({"ES256", "ES384", "ES512"}),
    "OKP": frozenset({"EdDSA"}),
}

SUPPORTED_ALGORITHMS: frozenset[str] = frozenset().union(*ALGORITHMS_BY_KEY_TYPE.values())


def is_compatible(key_type: str, algorithm: str) -> bool:
    """鍵タイプとアルゴリズムの組み合わせが許可されているかを返す。"""
    return algorithm in ALGORITHMS_BY_KEY_TYPE.get(key_type, frozenset())


def _invalid(message: str, cause: BaseException | None = None) -> FetchError:
    return FetchError(
        ErrorCodes.FETCH_INVALID_JWKS,
        message,
        retryable=False,
        cause=cause,
    )


def _parse_key(raw: Any, index: int, allow_missing_alg: bool) -> SigningKey | None:
    if not isinstance(raw, dict):
        raise _invalid(f"keys[{index}] is not a JSON object")

    kty = raw.get("kty")
    if not isinstance(kty, str) or not kty:
        raise _invalid(f"keys[{index}] is missing 'kty'")
    kid = raw.get("kid")
    if not isinstance(kid, str) or not kid:
        raise _invalid(f"keys[{index}] is missing 'kid'")

    # 暗号化用の鍵は署名検証に使わない
    if raw.get("use") == "enc":
        return None

    alg = raw.get("alg")
    if alg is None:
        if not allow_missing_alg:
            raise _invalid(f"Key '{kid}' is missing 'alg'")
        if kty not in ALGORITHMS_BY_KEY_TYPE:
            raise _invalid(f"Key '{kid}' has unsupported key type: {kty}")
    elif not isinstance(alg, str) or not is_compatible(kty, alg):
        raise _invalid(f"Key '{kid}' has unsupported algorithm {alg!r} for key type {kty}")

    try:
        jwk = PyJWK.from_dict(raw)
    except (PyJWKError, InvalidKeyError, ValueError, TypeError, KeyError) as e:
        raise _invalid(f"Key '{kid}' could not be loaded: {e}", cause=e) from e

    return SigningKey(kid=kid, key_type=kty, algorithm=alg, jwk=jwk, raw=dict(raw))


def parse_jwks(document: Mapping[str, Any], allow_missing_alg: bool = False) -> SigningKeySet:
    """JWKS 文書から SigningKeySet を構築する。

    Args:
        document: JWKS の JSON オブジェクト
        allow_missing_alg: alg のない鍵を受け付けるか

    Raises:
        FetchError: 文書の構造が不正な場合 (FETCH_INVALID_JWKS、リトライ不能)
    """
    keys = document.get("keys")
    if not isinstance(keys, list):
        raise _invalid("JWKS document has no 'keys' array")

    parsed: dict[str, SigningKey] = {}
    for index, raw in enumerate(keys):
        key = _parse_key(raw, index, allow_missing_alg)
        if key is None:
            continue
        if key.kid in parsed:
            raise _invalid(f"Duplicate key id in JWKS: {key.kid}")
        parsed[key.kid] = key
    return SigningKeySet(parsed)
