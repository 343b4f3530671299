"""フラグ評価"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from .context import Context
from .exceptions import FeatureflowError
from .matcher import NO_MATCH, match
from .metrics import evaluations_total
from .models import OFF_VARIANT, EvaluationReason, EvaluationResult, FeatureFlag
from .operators import OperatorRegistry, default_operators
from .registry import FlagRegistry, Snapshot

logger = structlog.stdlib.get_logger(__name__)

ContextInput = Context | Mapping[str, Any] | None


class Evaluator:
    """レジストリのスナップショットに対してフラグを評価する。

    優先順位 (最初に該当したものを採用):

    1. レジストリにフラグがない → 呼び出し側のフォールバック
    2. フラグが無効 → オフバリアント
    3. コンテキストがありルールに一致 → そのバリアント
    4. それ以外 → デフォルトバリアント

    評価は例外を送出しない。想定外の失敗はログに残してフォールバックを返す。
    """

    def __init__(
        self,
        registry: FlagRegistry,
        operators: OperatorRegistry | None = None,
    ) -> None:
        self._registry = registry
        self._operators = operators or default_operators()

    def evaluate(
        self,
        flag_key: str,
        context: ContextInput = None,
        fallback: Any = OFF_VARIANT,
    ) -> EvaluationResult:
        return self._evaluate_in(self._registry.current, flag_key, self._context(context), fallback)

    def evaluate_all(self, context: ContextInput = None) -> dict[str, EvaluationResult]:
        """スナップショットにある全フラグを評価する。

        スナップショットは 1 回だけ読むため、同期の途中で呼ばれても
        2 つの世代の結果が混ざることはない。
        """
        snapshot = self._registry.current
        ctx = self._context(context)
        return {key: self._evaluate_in(snapshot, key, ctx, OFF_VARIANT) for key in snapshot.features}

    def _context(self, context: ContextInput) -> Context | None:
        try:
            return Context.from_value(context)
        except (FeatureflowError, AttributeError, TypeError) as e:
            logger.warning("context_ignored", error=str(e))
            return None

    def _evaluate_in(
        self,
        snapshot: Snapshot,
        flag_key: str,
        context: Context | None,
        fallback: Any,
    ) -> EvaluationResult:
        try:
            feature = snapshot.get(flag_key)
            if feature is None:
                result = _fallback(flag_key, fallback, EvaluationReason.FLAG_NOT_FOUND)
            else:
                result = self._resolve(feature, context)
        except Exception as e:
            logger.error("evaluation_failed", flag_key=flag_key, error=str(e))
            result = _fallback(flag_key, fallback, EvaluationReason.ERROR)
        evaluations_total.add(1, {"reason": str(result.reason)})
        logger.debug(
            "flag_evaluated",
            flag_key=flag_key,
            variant=result.variant,
            reason=str(result.reason),
        )
        return result

    def _resolve(self, feature: FeatureFlag, context: Context | None) -> EvaluationResult:
        if not feature.enabled:
            return _result(feature, feature.off_variant, EvaluationReason.FLAG_DISABLED)
        variant = match(
            feature.rules,
            context,
            flag_key=feature.key,
            salt=feature.salt,
            operators=self._operators,
        )
        if variant is not NO_MATCH:
            return _result(feature, variant, EvaluationReason.RULE_MATCH)
        return _result(feature, feature.default_variant, EvaluationReason.DEFAULT)


def _result(feature: FeatureFlag, variant: str, reason: EvaluationReason) -> EvaluationResult:
    return EvaluationResult(
        flag_key=feature.key,
        variant=variant,
        value=feature.value_of(variant),
        reason=reason,
    )


def _fallback(flag_key: str, fallback: Any, reason: EvaluationReason) -> EvaluationResult:
    return EvaluationResult(
        flag_key=flag_key,
        variant=fallback if isinstance(fallback, str) else None,
        value=fallback,
        reason=reason,
    )
