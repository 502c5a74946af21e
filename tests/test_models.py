"""データモデルのユニットテスト"""

import dataclasses

import pytest
from jwt import PyJWK
from k1s0_id_token_verifier.models import CacheEntry, SigningKey, SigningKeySet, ValidationOptions

from helpers import make_jwk


def _key(rsa_key, kid: str) -> SigningKey:
    raw = make_jwk(rsa_key, kid)
    return SigningKey(kid=kid, key_type="RSA", algorithm="RS256", jwk=PyJWK.from_dict(raw), raw=raw)


def test_signing_key_set_lookup(rsa_key) -> None:
    key_set = SigningKeySet({"k2": _key(rsa_key, "k2"), "k1": _key(rsa_key, "k1")})
    assert "k1" in key_set
    assert key_set.get("k1").kid == "k1"
    assert key_set.get("missing") is None
    assert len(key_set) == 2
    assert key_set.kids == ["k1", "k2"]


def test_signing_key_set_is_immutable(rsa_key) -> None:
    """元の辞書を変更してもキーセットに影響しないこと。"""
    source = {"k1": _key(rsa_key, "k1")}
    key_set = SigningKeySet(source)
    source["k2"] = _key(rsa_key, "k2")
    assert "k2" not in key_set
    with pytest.raises(TypeError):
        key_set.keys["k3"] = _key(rsa_key, "k3")  # type: ignore[index]
    with pytest.raises(dataclasses.FrozenInstanceError):
        key_set.keys = {}  # type: ignore[misc]


def test_cache_entry_expiry_boundary() -> None:
    """expires_at ちょうどは期限切れとみなすこと。"""
    entry = CacheEntry(key_set=SigningKeySet(), fetched_at=100.0, ttl=300.0)
    assert entry.expires_at == 400.0
    assert not entry.is_expired(399.999)
    assert entry.is_expired(400.0)
    assert entry.is_expired(401.0)


def test_validation_options_accepts_single_string() -> None:
    options = ValidationOptions(issuers="https://issuer", audiences=["a", "b"])
    assert options.issuers == frozenset({"https://issuer"})
    assert options.audiences == frozenset({"a", "b"})
    assert options.leeway == 60.0
    assert options.validate_exp is True
    assert options.validate_nbf is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"issuers": [], "audiences": ["a"]},
        {"issuers": ["i"], "audiences": []},
        {"issuers": ["i"], "audiences": ["a"], "leeway": -1},
    ],
)
def test_validation_options_rejects_invalid(kwargs) -> None:
    with pytest.raises(ValueError):
        ValidationOptions(**kwargs)
