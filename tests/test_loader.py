"""設定ローダーのユニットテスト"""

from pathlib import Path

import pytest
from k1s0_id_token_verifier.exceptions import ConfigError, ErrorCodes
from k1s0_id_token_verifier.loader import deep_merge, env_to_dict, from_env, load, load_with_env

BASE_YAML = """
verifier_name: web
key_source:
  type: discover
  discovery_url: https://issuer.example.com/.well-known/openid-configuration
validation:
  allowed_iss: https://issuer.example.com
  allowed_aud: [client-a]
cache:
  ttl: 300
"""


def test_load_minimal_config(tmp_path: Path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(BASE_YAML)
    config = load(config_file)
    assert config.verifier_name == "web"
    assert config.key_source.type == "discover"
    assert config.validation.allowed_aud == ["client-a"]


def test_load_with_env_override(tmp_path: Path) -> None:
    """環境別設定がベースにディープマージされること。"""
    base_file = tmp_path / "base.yaml"
    base_file.write_text(BASE_YAML)
    env_file = tmp_path / "prod.yaml"
    env_file.write_text("cache:\n  background_refresh: true\n")
    config = load(base_file, env_file)
    assert config.cache.ttl == 300
    assert config.cache.background_refresh is True


def test_load_env_not_exists(tmp_path: Path) -> None:
    base_file = tmp_path / "base.yaml"
    base_file.write_text(BASE_YAML)
    config = load(base_file, tmp_path / "nonexistent.yaml")
    assert config.cache.background_refresh is False


def test_load_file_not_found(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as exc_info:
        load(tmp_path / "missing.yaml")
    assert exc_info.value.code == ErrorCodes.READ_FILE


def test_load_invalid_yaml(tmp_path: Path) -> None:
    bad_file = tmp_path / "bad.yaml"
    bad_file.write_text("key_source: {invalid: yaml: content:\n")
    with pytest.raises(ConfigError) as exc_info:
        load(bad_file)
    assert exc_info.value.code == ErrorCodes.PARSE_YAML


def test_load_validation_error(tmp_path: Path) -> None:
    bad_config = tmp_path / "bad_config.yaml"
    bad_config.write_text("cache:\n  ttl: 300\n")
    with pytest.raises(ConfigError) as exc_info:
        load(bad_config)
    assert exc_info.value.code == ErrorCodes.VALIDATION


def test_env_to_dict() -> None:
    environ = {
        "IDTV__KEY_SOURCE__TYPE": "direct",
        "IDTV__CACHE__TTL": "120",
        "IDTV__VALIDATION__ALLOWED_AUD": '["a", "b"]',
        "OTHER__CACHE__TTL": "1",
    }
    assert env_to_dict("idtv", environ) == {
        "key_source": {"type": "direct"},
        "cache": {"ttl": "120"},
        "validation": {"allowed_aud": ["a", "b"]},
    }


def test_from_env() -> None:
    environ = {
        "IDTV__VERIFIER_NAME": "api",
        "IDTV__KEY_SOURCE__TYPE": "direct",
        "IDTV__KEY_SOURCE__JWKS_URL": "https://issuer.example.com/jwks",
        "IDTV__VALIDATION__ALLOWED_ISS": "https://issuer.example.com",
        "IDTV__VALIDATION__ALLOWED_AUD": '["a", "b"]',
        "IDTV__CACHE__SERVE_STALE": "false",
        "IDTV__CACHE__TTL": "120",
    }
    config = from_env("IDTV", environ)
    assert config.verifier_name == "api"
    assert config.cache.ttl == 120.0
    assert config.cache.serve_stale is False
    assert config.validation.allowed_aud == ["a", "b"]


def test_from_env_invalid_list() -> None:
    with pytest.raises(ConfigError) as exc_info:
        from_env("IDTV", {"IDTV__VALIDATION__ALLOWED_AUD": "[broken"})
    assert exc_info.value.code == ErrorCodes.VALIDATION


def test_load_with_env_variables(tmp_path: Path) -> None:
    """YAML の値を環境変数で上書きできること。"""
    base_file = tmp_path / "base.yaml"
    base_file.write_text(BASE_YAML)
    config = load_with_env(base_file, prefix="IDTV", environ={"IDTV__CACHE__TTL": "30"})
    assert config.cache.ttl == 30.0
    assert config.verifier_name == "web"


def test_deep_merge_replaces_lists() -> None:
    base = {"validation": {"allowed_aud": ["a", "b"], "leeway_seconds": 60}}
    merged = deep_merge(base, {"validation": {"allowed_aud": ["c"]}})
    assert merged == {"validation": {"allowed_aud": ["c"], "leeway_seconds": 60}}
    assert base["validation"]["allowed_aud"] == ["a", "b"]
