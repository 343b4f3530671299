"""featureflow データモデル"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

import structlog

from .exceptions import FeatureflowError, FeatureflowErrorCodes

logger = structlog.stdlib.get_logger(__name__)

OFF_VARIANT = "off"
ON_VARIANT = "on"
DEFAULT_SALT = "1"

_SCALAR_TYPES = (str, int, float, bool)


def is_off_value(value: Any) -> bool:
    """バリアント値が「オフ」を表すかどうか。

    None・False・文字列 "off" の 3 つだけがオフで、それ以外はすべてオン。
    0 や空文字はオンとして扱う。
    """
    return value is None or value is False or (isinstance(value, str) and value == OFF_VARIANT)


@dataclass(frozen=True)
class Variant:
    """フラグバリアント。"""

    key: str
    name: str = ""
    value: Any = None

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.key)
        if self.value is None:
            object.__setattr__(self, "value", self.key)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Variant:
        return cls(key=data["key"], name=data.get("name", ""), value=data.get("value"))

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "name": self.name, "value": self.value}


@dataclass(frozen=True)
class Condition:
    """ルール条件 (属性名・演算子・比較値)。"""

    target: str
    operator: str
    values: tuple[Any, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Condition:
        if "values" in data:
            raw = data["values"]
            values = tuple(raw) if isinstance(raw, (list, tuple)) else (raw,)
        elif "value" in data:
            values = (data["value"],)
        else:
            values = ()
        return cls(target=data["target"], operator=data["operator"], values=values)

    def to_dict(self) -> dict[str, Any]:
        return {"target": self.target, "operator": self.operator, "values": list(self.values)}


@dataclass(frozen=True)
class VariantSplit:
    """ロールアウト時のバリアント配分 (百分率)。"""

    variant_key: str
    split: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VariantSplit:
        return cls(variant_key=data["variantKey"], split=int(data["split"]))


@dataclass(frozen=True)
class Rule:
    """ターゲティングルール。

    条件はすべて AND で評価する。条件が空のルールは常に一致する。
    一致したときの結果は variant_key か、variant_splits による配分のどちらか。
    """

    conditions: tuple[Condition, ...] = ()
    variant_key: str | None = None
    variant_splits: tuple[VariantSplit, ...] = ()

    def __post_init__(self) -> None:
        if (self.variant_key is None) == (not self.variant_splits):
            raise FeatureflowError(
                FeatureflowErrorCodes.INVALID_DEFINITION,
                "rule must declare exactly one of variant_key or variant_splits",
            )
        if self.variant_splits and sum(s.split for s in self.variant_splits) != 100:
            raise FeatureflowError(
                FeatureflowErrorCodes.INVALID_DEFINITION,
                "variant splits must sum to 100",
            )

    def target_variants(self) -> set[str]:
        if self.variant_key is not None:
            return {self.variant_key}
        return {s.variant_key for s in self.variant_splits}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Rule:
        return cls(
            conditions=tuple(Condition.from_dict(c) for c in data.get("conditions", [])),
            variant_key=data.get("variantKey"),
            variant_splits=tuple(VariantSplit.from_dict(s) for s in data.get("variantSplits", [])),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"conditions": [c.to_dict() for c in self.conditions]}
        if self.variant_key is not None:
            data["variantKey"] = self.variant_key
        else:
            data["variantSplits"] = [
                {"variantKey": s.variant_key, "split": s.split} for s in self.variant_splits
            ]
        return data


@dataclass(frozen=True)
class FeatureFlag:
    """フィーチャーフラグ定義。更新時はフィールド単位ではなく丸ごと置き換える。"""

    key: str
    enabled: bool = True
    default_variant: str = OFF_VARIANT
    off_variant: str = OFF_VARIANT
    variants: Mapping[str, Variant] = field(default_factory=lambda: MappingProxyType({}))
    rules: tuple[Rule, ...] = ()
    salt: str = DEFAULT_SALT

    def __post_init__(self) -> None:
        if not self.key:
            raise FeatureflowError(
                FeatureflowErrorCodes.INVALID_DEFINITION, "feature key must not be empty"
            )
        variants = dict(self.variants)
        # off variant is always implicitly declared
        variants.setdefault(self.off_variant, Variant(self.off_variant))
        object.__setattr__(self, "variants", MappingProxyType(variants))
        object.__setattr__(self, "rules", tuple(self.rules))

        referenced = {self.default_variant}
        for rule in self.rules:
            referenced |= rule.target_variants()
        undeclared = sorted(referenced - variants.keys())
        if undeclared:
            raise FeatureflowError(
                FeatureflowErrorCodes.INVALID_DEFINITION,
                f"feature {self.key!r} references undeclared variants: {', '.join(undeclared)}",
            )

    def value_of(self, variant_key: str) -> Any:
        """バリアントの値を返す。構造化された値はコピーを返す。"""
        value = self.variants[variant_key].value
        if value is None or isinstance(value, _SCALAR_TYPES):
            return value
        return copy.deepcopy(value)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FeatureFlag:
        try:
            variants = {v["key"]: Variant.from_dict(v) for v in data.get("variants", [])}
            return cls(
                key=data["key"],
                enabled=bool(data.get("enabled", True)),
                default_variant=data.get("defaultVariant", OFF_VARIANT),
                off_variant=data.get("offVariant", OFF_VARIANT),
                variants=variants,
                rules=tuple(Rule.from_dict(r) for r in data.get("rules", [])),
                salt=str(data.get("salt", DEFAULT_SALT)),
            )
        except FeatureflowError:
            raise
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise FeatureflowError(
                FeatureflowErrorCodes.INVALID_DEFINITION,
                f"malformed feature definition: {e!r}",
                cause=e,
            ) from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "enabled": self.enabled,
            "defaultVariant": self.default_variant,
            "offVariant": self.off_variant,
            "salt": self.salt,
            "variants": [v.to_dict() for v in self.variants.values()],
            "rules": [r.to_dict() for r in self.rules],
        }


class Feature:
    """コード内で宣言するローカルフィーチャーのビルダー。

    ``Feature("feature-one", "on").build()`` は常に on を返すフラグ、
    ``Feature("feature-two").build()`` は既定で off を返すフラグになる。
    """

    def __init__(self, key: str, failover_variant: str = OFF_VARIANT) -> None:
        self._key = key
        self._failover_variant = failover_variant
        self._variants: dict[str, Variant] = {
            ON_VARIANT: Variant(ON_VARIANT, "On"),
            OFF_VARIANT: Variant(OFF_VARIANT, "Off"),
        }

    def with_variant(self, key: str, name: str = "", value: Any = None) -> Feature:
        self._variants[key] = Variant(key, name, value)
        return self

    def build(self) -> FeatureFlag:
        variants = dict(self._variants)
        variants.setdefault(self._failover_variant, Variant(self._failover_variant))
        return FeatureFlag(
            key=self._key,
            enabled=True,
            default_variant=self._failover_variant,
            variants=variants,
        )


def parse_features(payload: Any) -> list[FeatureFlag]:
    """リモートから受け取った定義セットを解析する。

    ``[...]`` と ``{"features": [...]}`` の両方を受け付ける。不正な定義は
    警告ログを出してスキップし、残りの定義はそのまま使う。

    Raises:
        FeatureflowError: 定義セットの形が不正な場合、または空でないセットの
            定義がすべて不正な場合 (INVALID_DEFINITION)
    """
    if isinstance(payload, Mapping):
        if "features" not in payload:
            raise FeatureflowError(
                FeatureflowErrorCodes.INVALID_DEFINITION,
                f"feature set envelope has no 'features' key: {sorted(payload)}",
            )
        payload = payload["features"]
    if not isinstance(payload, list):
        raise FeatureflowError(
            FeatureflowErrorCodes.INVALID_DEFINITION,
            f"feature set must be a list, got {type(payload).__name__}",
        )
    features: list[FeatureFlag] = []
    for item in payload:
        try:
            features.append(FeatureFlag.from_dict(item))
        except FeatureflowError as e:
            logger.warning("feature_definition_skipped", error=str(e))
    if payload and not features:
        raise FeatureflowError(
            FeatureflowErrorCodes.INVALID_DEFINITION,
            f"all {len(payload)} feature definitions are invalid",
        )
    return features


def coerce_feature(item: FeatureFlag | Mapping[str, Any] | str) -> FeatureFlag:
    """設定で宣言されたローカルフィーチャーを FeatureFlag に揃える。"""
    if isinstance(item, FeatureFlag):
        return item
    if isinstance(item, Feature):
        return item.build()
    if isinstance(item, str):
        return Feature(item).build()
    if isinstance(item, Mapping):
        return FeatureFlag.from_dict(item)
    raise FeatureflowError(
        FeatureflowErrorCodes.INVALID_DEFINITION,
        f"unsupported feature declaration: {type(item).__name__}",
    )


def merge_features(*layers: Iterable[FeatureFlag]) -> dict[str, FeatureFlag]:
    """後のレイヤーがキー単位で前のレイヤーを上書きする。"""
    merged: dict[str, FeatureFlag] = {}
    for layer in layers:
        for feature in layer:
            merged[feature.key] = feature
    return merged


class EvaluationReason(StrEnum):
    """評価結果の理由。"""

    FLAG_NOT_FOUND = "FLAG_NOT_FOUND"
    FLAG_DISABLED = "FLAG_DISABLED"
    RULE_MATCH = "RULE_MATCH"
    DEFAULT = "DEFAULT"
    ERROR = "ERROR"


@dataclass(frozen=True)
class EvaluationResult:
    """フラグ評価結果。評価ごとに新しく生成し、キャッシュしない。"""

    flag_key: str
    variant: str | None
    value: Any
    reason: EvaluationReason

    def is_on(self) -> bool:
        """解決した値がオフ (is_off_value) でなければ True。"""
        return not is_off_value(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "flagKey": self.flag_key,
            "variant": self.variant,
            "value": self.value,
            "reason": str(self.reason),
            "isOn": self.is_on(),
        }
