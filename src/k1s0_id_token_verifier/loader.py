"""設定ファイル・環境変数からの設定読み込み"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import IdTokenVerifierConfig
from .exceptions import ConfigError, ErrorCodes

ENV_SEPARATOR = "__"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """base に override を重ねた新しい辞書を返す。

    ネストした辞書は再帰的にマージし、それ以外 (リストを含む) は override の値で置き換える。
    """
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(
            ErrorCodes.READ_FILE,
            f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(
            ErrorCodes.PARSE_YAML,
            f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise ConfigError(ErrorCodes.PARSE_YAML, f"Config root must be a mapping: {path}")
    return data


def _validate(data: dict[str, Any]) -> IdTokenVerifierConfig:
    try:
        return IdTokenVerifierConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            ErrorCodes.VALIDATION,
            f"Config validation failed: {e}",
            cause=e,
        ) from e


def load(base_path: Path, env_path: Path | None = None) -> IdTokenVerifierConfig:
    """YAML 設定ファイルを読み込んで IdTokenVerifierConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。
    """
    return load_with_env(base_path, env_path)


def _parse_env_value(value: str) -> Any:
    stripped = value.strip()
    if stripped.startswith("["):
        try:
            return json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ConfigError(
                ErrorCodes.VALIDATION,
                f"Invalid list value in environment: {value}",
                cause=e,
            ) from e
    return value


def env_to_dict(prefix: str, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """PREFIX__SECTION__FIELD 形式の環境変数をネストした辞書に変換する。"""
    env = os.environ if environ is None else environ
    head = prefix.upper() + ENV_SEPARATOR
    data: dict[str, Any] = {}
    for name, value in env.items():
        if not name.upper().startswith(head):
            continue
        path = [part.lower() for part in name[len(head) :].split(ENV_SEPARATOR) if part]
        if not path:
            continue
        node = data
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[path[-1]] = _parse_env_value(value)
    return data


def from_env(prefix: str, environ: Mapping[str, str] | None = None) -> IdTokenVerifierConfig:
    """環境変数から IdTokenVerifierConfig を構築する。

    例: ``IDTV__KEY_SOURCE__TYPE=discover``, ``IDTV__VALIDATION__ALLOWED_AUD=["a","b"]``
    """
    return _validate(env_to_dict(prefix, environ))


def load_with_env(
    base_path: Path,
    env_path: Path | None = None,
    prefix: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> IdTokenVerifierConfig:
    """YAML を読み込んだ後、prefix の環境変数で上書きする。"""
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data = deep_merge(data, _read_yaml(env_path))
    if prefix is not None:
        data = deep_merge(data, env_to_dict(prefix, environ))
    return _validate(data)
