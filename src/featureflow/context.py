"""評価コンテキストとビルダー"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Union

from .exceptions import FeatureflowError, FeatureflowErrorCodes

Primitive = Union[str, int, float, bool, date, datetime]

ANONYMOUS_KEY = "anonymous"
KEY_ATTRIBUTE = "featureflow.key"

_PRIMITIVE_TYPES = (str, int, float, bool, date, datetime)


def _check_value(name: str, value: Any) -> Primitive:
    if not isinstance(value, _PRIMITIVE_TYPES):
        raise FeatureflowError(
            FeatureflowErrorCodes.INVALID_CONTEXT,
            f"attribute {name!r} has unsupported type {type(value).__name__}",
        )
    return value


def _as_values(value: Any) -> tuple[Any, ...]:
    # scalar values (including str) become a single-value attribute
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return (value,)


@dataclass(frozen=True)
class Context:
    """フラグ評価の対象 (ユーザー・リクエスト・端末など)。

    属性はすべて値のタプルとして保持する。単一値の属性も要素数 1 のタプルになる。
    直接生成する場合、スカラー値はそのまま渡してよい。
    """

    key: str
    attributes: Mapping[str, tuple[Primitive, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key:
            raise FeatureflowError(
                FeatureflowErrorCodes.INVALID_CONTEXT,
                "context key must be a non-empty string",
            )
        frozen = {
            name: tuple(_check_value(name, v) for v in _as_values(values))
            for name, values in self.attributes.items()
        }
        object.__setattr__(self, "attributes", MappingProxyType(frozen))

    def values_of(self, name: str) -> tuple[Primitive, ...] | None:
        """属性値を名前で引く。存在しなければ None。"""
        if name == KEY_ATTRIBUTE:
            return (self.key,)
        return self.attributes.get(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "values": {
                name: list(values) if len(values) != 1 else values[0]
                for name, values in self.attributes.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Context:
        """``{"key": ..., "values": {...}}`` 形式の辞書からコンテキストを作る。"""
        builder = ContextBuilder(data.get("key") or ANONYMOUS_KEY)
        for name, value in (data.get("values") or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                builder.with_attributes(name, value)
            else:
                builder.with_attribute(name, value)
        return builder.build()

    @classmethod
    def from_value(cls, value: Context | Mapping[str, Any] | None) -> Context | None:
        """評価 API が受け付ける任意の形をコンテキストに正規化する。"""
        if value is None or isinstance(value, Context):
            return value
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise FeatureflowError(
            FeatureflowErrorCodes.INVALID_CONTEXT,
            f"unsupported context type: {type(value).__name__}",
        )


class ContextBuilder:
    """属性を蓄積して不変の Context を組み立てるビルダー。

    Example:
        >>> ctx = (
        ...     ContextBuilder("jimmy@example.com")
        ...     .with_attribute("subscription", "premium")
        ...     .with_attributes("hobbies", ["swimming", "skiing"])
        ...     .build()
        ... )
    """

    def __init__(self, key: str = ANONYMOUS_KEY) -> None:
        self._key = key
        self._attributes: dict[str, list[Primitive]] = {}

    def with_attribute(self, name: str, value: Primitive) -> ContextBuilder:
        """単一値の属性を設定する。同名の既存値は置き換える。"""
        self._attributes[name] = [_check_value(name, value)]
        return self

    def with_attributes(self, name: str, values: Iterable[Primitive]) -> ContextBuilder:
        """複数値の属性を設定する。"""
        self._attributes[name] = [_check_value(name, v) for v in values]
        return self

    def build(self) -> Context:
        return Context(
            key=self._key,
            attributes={name: tuple(values) for name, values in self._attributes.items()},
        )
