"""条件演算子レジストリ

演算子は ``fn(attribute_values, condition_values) -> bool`` の形をとる。
肯定演算子はいずれかの属性値がいずれかの比較値を満たせば真、否定演算子は
どの組み合わせも満たさなければ真になる。型の不一致は例外ではなく不一致。
比較値そのものが不正な場合 (正規表現の構文エラーなど) は RuleEvaluationError。
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any

from .exceptions import RuleEvaluationError

Operator = Callable[[Sequence[Any], Sequence[Any]], bool]
Test = Callable[[Any, Any], bool]


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _condition_datetime(value: Any) -> datetime:
    parsed = _as_datetime(value)
    if parsed is None:
        raise RuleEvaluationError(f"condition value {value!r} is not a date")
    return parsed


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise RuleEvaluationError(f"invalid regular expression {pattern!r}", cause=e) from e


def _equals(a: Any, c: Any) -> bool:
    if isinstance(a, bool) or isinstance(c, bool):
        return isinstance(a, bool) and isinstance(c, bool) and a == c
    if isinstance(a, (int, float)) and isinstance(c, (int, float)):
        return a == c
    if type(a) is not type(c):
        return False
    return a == c


def _strings(test: Callable[[str, str], bool]) -> Test:
    def wrapped(a: Any, c: Any) -> bool:
        if not isinstance(a, str) or not isinstance(c, str):
            return False
        return test(a, c)

    return wrapped


def _numbers(test: Callable[[float, float], bool]) -> Test:
    def wrapped(a: Any, c: Any) -> bool:
        left, right = _as_number(a), _as_number(c)
        if left is None or right is None:
            return False
        return test(left, right)

    return wrapped


def _dates(test: Callable[[datetime, datetime], bool]) -> Test:
    def wrapped(a: Any, c: Any) -> bool:
        right = _condition_datetime(c)
        left = _as_datetime(a)
        if left is None:
            return False
        return test(left, right)

    return wrapped


def _matches(a: Any, c: Any) -> bool:
    if not isinstance(c, str):
        raise RuleEvaluationError(f"regular expression must be a string, got {c!r}")
    if not isinstance(a, str):
        return False
    return _compile(c).search(a) is not None


def any_of(test: Test) -> Operator:
    """単一値テストを肯定演算子に持ち上げる。"""

    def operator(attribute_values: Sequence[Any], condition_values: Sequence[Any]) -> bool:
        return any(test(a, c) for a in attribute_values for c in condition_values)

    return operator


def none_of(test: Test) -> Operator:
    """単一値テストを否定演算子に持ち上げる。"""
    positive = any_of(test)

    def operator(attribute_values: Sequence[Any], condition_values: Sequence[Any]) -> bool:
        return not positive(attribute_values, condition_values)

    return operator


def _exists(attribute_values: Sequence[Any], condition_values: Sequence[Any]) -> bool:
    return len(attribute_values) > 0


class OperatorRegistry:
    """名前から演算子を引くレジストリ。独自演算子を register で追加できる。"""

    def __init__(self, operators: dict[str, Operator] | None = None) -> None:
        self._operators: dict[str, Operator] = dict(operators or {})

    def register(self, name: str, operator: Operator) -> OperatorRegistry:
        self._operators[name] = operator
        return self

    def get(self, name: str) -> Operator:
        operator = self._operators.get(name)
        if operator is None:
            raise RuleEvaluationError(f"unsupported operator {name!r}")
        return operator

    def names(self) -> list[str]:
        return sorted(self._operators)

    def copy(self) -> OperatorRegistry:
        return OperatorRegistry(self._operators)

    def __contains__(self, name: object) -> bool:
        return name in self._operators


def default_operators() -> OperatorRegistry:
    """組み込み演算子を登録したレジストリを返す。"""
    return OperatorRegistry(
        {
            "equals": any_of(_equals),
            "notEquals": none_of(_equals),
            "in": any_of(_equals),
            "notIn": none_of(_equals),
            "contains": any_of(_strings(lambda a, c: c in a)),
            "startsWith": any_of(_strings(str.startswith)),
            "endsWith": any_of(_strings(str.endswith)),
            "matches": any_of(_matches),
            "greaterThan": any_of(_numbers(lambda a, c: a > c)),
            "greaterThanOrEqual": any_of(_numbers(lambda a, c: a >= c)),
            "lessThan": any_of(_numbers(lambda a, c: a < c)),
            "lessThanOrEqual": any_of(_numbers(lambda a, c: a <= c)),
            "before": any_of(_dates(lambda a, c: a < c)),
            "after": any_of(_dates(lambda a, c: a > c)),
            "exists": _exists,
        }
    )
