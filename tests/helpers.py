"""テスト用の鍵・トークン・フェッチャー"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import jwt
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt.algorithms import ECAlgorithm, RSAAlgorithm
from k1s0_id_token_verifier.fetcher import JwksFetcher

ISSUER = "https://issuer.example.com"
AUDIENCE = "my-client"
DISCOVERY_URL = "https://issuer.example.com/.well-known/openid-configuration"
JWKS_URL = "https://issuer.example.com/.well-known/jwks.json"


def generate_rsa_key() -> rsa.RSAPrivateKey:
    """テスト用 RSA 秘密鍵を生成する。"""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def generate_ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def make_jwk(private_key: Any, kid: str, alg: str | None = "RS256") -> dict[str, Any]:
    """秘密鍵から公開鍵の JWK 辞書を生成する。alg=None なら alg を含めない。"""
    public_key = private_key.public_key()
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        jwk = json.loads(ECAlgorithm.to_jwk(public_key))
    else:
        jwk = json.loads(RSAAlgorithm.to_jwk(public_key))
    jwk["kid"] = kid
    jwk["use"] = "sig"
    if alg is not None:
        jwk["alg"] = alg
    return jwk


def make_jwks(*jwks: dict[str, Any]) -> dict[str, Any]:
    return {"keys": list(jwks)}


def make_claims(**overrides: Any) -> dict[str, Any]:
    now = int(time.time())
    claims: dict[str, Any] = {
        "sub": "user-123",
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + 3600,
        "iat": now,
        "email": "user@example.com",
    }
    for name, value in overrides.items():
        if value is None:
            claims.pop(name, None)
        else:
            claims[name] = value
    return claims


def make_token(
    private_key: Any,
    kid: str | None = "k1",
    alg: str = "RS256",
    **claim_overrides: Any,
) -> str:
    """テスト用 ID トークンを生成する。claim に None を渡すとそのクレームを除く。"""
    headers: dict[str, Any] = {}
    if kid is not None:
        headers["kid"] = kid
    return jwt.encode(make_claims(**claim_overrides), private_key, algorithm=alg, headers=headers)


class FakeFetcher(JwksFetcher):
    """URL ごとに応答を返すフェッチャー。

    応答は dict (成功) または例外 (失敗) のリスト。最後の応答は繰り返し使われる。
    gate を設定すると取得はそのイベントがセットされるまで待機する。
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses: dict[str, list[Any]] = {}
        for url, response in (responses or {}).items():
            self.set_response(url, response)
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.closed = False

    def set_response(self, url: str, *responses: Any) -> None:
        flat: list[Any] = []
        for response in responses:
            if isinstance(response, list):
                flat.extend(response)
            else:
                flat.append(response)
        self.responses[url] = flat

    def call_count(self, url: str) -> int:
        return self.calls.count(url)

    async def fetch_json(self, url: str) -> dict[str, Any]:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        queue = self.responses[url]
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """手動で進める単調時計。"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
