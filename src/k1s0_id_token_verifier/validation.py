"""標準クレーム (iss / aud / exp / nbf / iat) の検証"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from .exceptions import ClaimsValidationError
from .models import ValidationOptions


def _numeric(payload: Mapping[str, Any], claim: str) -> float | None:
    if claim not in payload:
        return None
    value = payload[claim]
    # bool は int のサブクラスだが数値クレームとしては認めない
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ClaimsValidationError(claim, f"Claim '{claim}' must be a number")
    try:
        number = float(value)
    except OverflowError:
        number = math.inf
    # NaN / Infinity は JSON 拡張として PyJWT が受け付けてしまう
    if not math.isfinite(number):
        raise ClaimsValidationError(claim, f"Claim '{claim}' must be a finite number")
    return number


def validate_issuer(payload: Mapping[str, Any], options: ValidationOptions) -> None:
    iss = payload.get("iss")
    if not isinstance(iss, str):
        raise ClaimsValidationError("iss", "Token has no issuer")
    if iss not in options.issuers:
        raise ClaimsValidationError("iss", f"Issuer not allowed: {iss}")


def validate_audience(payload: Mapping[str, Any], options: ValidationOptions) -> None:
    aud = payload.get("aud")
    if isinstance(aud, str):
        audiences = {aud}
    elif isinstance(aud, list) and aud and all(isinstance(a, str) for a in aud):
        audiences = set(aud)
    else:
        raise ClaimsValidationError("aud", "Token has no valid audience")
    if options.audiences.isdisjoint(audiences):
        raise ClaimsValidationError("aud", "Audience not allowed")


def validate_claims(payload: Mapping[str, Any], options: ValidationOptions, now: float) -> None:
    """署名検証済みペイロードの標準クレームを検証する。

    Args:
        payload: デコード済みのクレーム
        options: 検証設定
        now: 現在の UNIX 時刻 (秒)

    Raises:
        ClaimsValidationError: いずれかのクレームが欠落または不正な場合
    """
    validate_issuer(payload, options)
    validate_audience(payload, options)

    leeway = options.leeway
    exp = _numeric(payload, "exp")
    if exp is None:
        if options.validate_exp:
            raise ClaimsValidationError("exp", "Token has no expiration")
    elif options.validate_exp and exp <= now - leeway:
        raise ClaimsValidationError("exp", "Token has expired")

    nbf = _numeric(payload, "nbf")
    if nbf is None:
        if options.validate_nbf:
            raise ClaimsValidationError("nbf", "Token has no not-before time")
    elif nbf > now + leeway:
        raise ClaimsValidationError("nbf", "Token is not yet valid")

    iat = _numeric(payload, "iat")
    if iat is not None and iat > now + leeway:
        raise ClaimsValidationError("iat", "Token was issued in the future")
