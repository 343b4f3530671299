"""クライアント設定 (pydantic BaseModel) と YAML ローダー"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError, FeatureflowError
from .models import FeatureFlag, coerce_feature

DEFAULT_BASE_URL = "https://app.featureflow.io"


class RetryPolicy(BaseModel):
    """初回取得・ストリーム再接続のバックオフ設定。"""

    initial_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=60.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True

    def compute_delay(self, attempt: int) -> float:
        """リトライ間隔を秒単位で計算する。"""
        base = self.initial_delay * (self.multiplier**attempt)
        capped = min(base, self.max_delay)
        if self.jitter:
            return capped * (0.9 + random.random() * 0.2)
        return capped


class FeatureflowConfig(BaseModel):
    """Featureflow クライアント設定。"""

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    polling_interval: float = Field(default=300.0, gt=0.0)
    streaming: bool = False
    debug: bool = False
    offline: bool = False
    with_features: list[Any] = Field(default_factory=list)
    init_timeout: float | None = Field(default=None, gt=0.0)
    request_timeout: float = Field(default=10.0, gt=0.0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"

    @field_validator("with_features", mode="before")
    @classmethod
    def _coerce_features(cls, value: Any) -> list[FeatureFlag]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError("with_features must be a list")
        try:
            return [coerce_feature(item) for item in value]
        except FeatureflowError as e:
            raise ValueError(str(e)) from e

    @property
    def is_offline(self) -> bool:
        """ネットワークを使わずローカル宣言だけで動作するかどうか。

        ソースを明示的に渡したクライアントは offline=True のときだけオフラインになる。
        """
        return self.offline or (not self.api_key and bool(self.with_features))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """base と override をディープマージして新しい辞書を返す。

    override の値が優先される。リストは置換（マージしない）。
    """
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file: {path}", cause=e) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML: {path}", cause=e) from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {path}")
    return data


def build_config(data: dict[str, Any]) -> FeatureflowConfig:
    """辞書を検証して FeatureflowConfig を返す。"""
    try:
        return FeatureflowConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Config validation failed: {e}", cause=e) from e


def load_config(base_path: Path, env_path: Path | None = None) -> FeatureflowConfig:
    """YAML 設定ファイルを読み込んで FeatureflowConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。

    設定は ``featureflow:`` セクションの下にあってもトップレベルにあってもよい。
    """
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data = deep_merge(data, _read_yaml(env_path))
    section = data.get("featureflow", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"featureflow section must be a mapping: {base_path}")
    return build_config(section)
