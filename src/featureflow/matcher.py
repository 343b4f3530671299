"""ルールマッチャー

I/O も可変状態も持たない純粋関数群。同じルール列とコンテキストに対して
常に同じ結果を返す。
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence

import structlog

from .context import ANONYMOUS_KEY, Context
from .exceptions import RuleEvaluationError
from .models import DEFAULT_SALT, Condition, Rule, VariantSplit
from .operators import OperatorRegistry, default_operators

logger = structlog.stdlib.get_logger(__name__)

NO_MATCH = None

_DEFAULT_OPERATORS = default_operators()


def bucket(salt: str, flag_key: str, context_key: str) -> int:
    """ロールアウト用のバケット番号 (1〜100) を計算する。"""
    digest = hashlib.sha1(f"{salt}:{flag_key}:{context_key}".encode()).hexdigest()
    return int(digest[:15], 16) % 100 + 1


def _pick_split(splits: Sequence[VariantSplit], position: int) -> str:
    cumulative = 0
    for split in splits:
        cumulative += split.split
        if position <= cumulative:
            return split.variant_key
    return splits[-1].variant_key


def condition_matches(
    condition: Condition,
    context: Context,
    operators: OperatorRegistry,
) -> bool:
    """単一条件を評価する。属性がなければ不一致、不正な条件は警告して不一致。"""
    attribute_values = context.values_of(condition.target)
    if attribute_values is None:
        return False
    try:
        operator = operators.get(condition.operator)
        return bool(operator(attribute_values, condition.values))
    except RuleEvaluationError as e:
        logger.warning(
            "rule_condition_skipped",
            target=condition.target,
            operator=condition.operator,
            error=str(e),
        )
        return False


def rule_matches(rule: Rule, context: Context, operators: OperatorRegistry) -> bool:
    return all(condition_matches(c, context, operators) for c in rule.conditions)


def match(
    rules: Sequence[Rule],
    context: Context | None,
    *,
    flag_key: str,
    salt: str = DEFAULT_SALT,
    operators: OperatorRegistry | None = None,
) -> str | None:
    """最初に一致したルールのバリアント名を返す。どれにも一致しなければ NO_MATCH。

    Args:
        rules: 宣言順のルール列
        context: 評価対象。None ならルールは評価しない
        flag_key: ロールアウトのハッシュに使うフラグキー
        salt: ロールアウトのハッシュソルト
        operators: 演算子レジストリ (省略時は組み込み演算子)

    Returns:
        バリアント名、または NO_MATCH (None)
    """
    if context is None:
        return NO_MATCH
    operators = operators or _DEFAULT_OPERATORS
    for rule in rules:
        if not rule_matches(rule, context, operators):
            continue
        if rule.variant_key is not None:
            return rule.variant_key
        position = bucket(salt, flag_key, context.key or ANONYMOUS_KEY)
        return _pick_split(rule.variant_splits, position)
    return NO_MATCH
