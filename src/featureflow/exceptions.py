"""featureflow SDK の例外型定義"""

from __future__ import annotations


class FeatureflowError(Exception):
    """featureflow SDK のエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class FeatureflowErrorCodes:
    """FeatureflowError のエラーコード定数。"""

    CONFIG_ERROR: str = "CONFIG_ERROR"
    FETCH_ERROR: str = "FETCH_ERROR"
    READY_TIMEOUT: str = "READY_TIMEOUT"
    INVALID_DEFINITION: str = "INVALID_DEFINITION"
    INVALID_CONTEXT: str = "INVALID_CONTEXT"
    RULE_EVALUATION: str = "RULE_EVALUATION"
    CLIENT_CLOSED: str = "CLIENT_CLOSED"


class ConfigurationError(FeatureflowError):
    """認証情報や設定の不備。リトライしても回復しない。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(FeatureflowErrorCodes.CONFIG_ERROR, message, cause)


class TransientFetchError(FeatureflowError):
    """リモート取得の一時的な失敗。バックオフ付きでリトライされる。"""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        code: str = FeatureflowErrorCodes.FETCH_ERROR,
    ) -> None:
        super().__init__(code, message, cause)


class RuleEvaluationError(FeatureflowError):
    """未対応の演算子や不正な比較値を含む条件。条件は不一致として扱われる。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(FeatureflowErrorCodes.RULE_EVALUATION, message, cause)
