"""FeatureflowClient: レジストリ・同期・評価を束ねるクライアント"""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import Any

from .config import FeatureflowConfig, build_config
from .evaluator import ContextInput, Evaluator
from .exceptions import ConfigurationError, FeatureflowErrorCodes, TransientFetchError
from .http_client import HttpFeatureSource
from .logger import new_logger
from .models import OFF_VARIANT, EvaluationResult
from .operators import OperatorRegistry
from .registry import FlagRegistry
from .source import FeatureSource
from .synchronizer import ReadyCallback, Synchronizer, SyncState


class FeatureflowClient:
    """Featureflow SDK クライアント。

    アプリケーションのコンポジションルートで生成し、参照で渡して使う。
    評価は同期的でネットワークに触れない。

    Example:
        >>> client = FeatureflowClient(api_key="srv-env-xxxx")
        >>> await client.start()
        >>> await client.wait_until_ready()
        >>> client.evaluate("example-feature", user).is_on()
        >>> await client.close()
    """

    def __init__(
        self,
        config: FeatureflowConfig | None = None,
        *,
        source: FeatureSource | None = None,
        operators: OperatorRegistry | None = None,
        **options: Any,
    ) -> None:
        if config is None:
            config = build_config(options)
        elif options:
            config = build_config({**dict(config), **options})
        if config.offline:
            source = None
        elif source is None and not config.is_offline:
            if not config.api_key:
                raise ConfigurationError(
                    "api_key is required unless running offline with local features"
                )
            source = HttpFeatureSource(config)

        self._config = config
        self._offline = source is None
        self._logger = new_logger(
            level="DEBUG" if config.debug else config.log_level,
            format=config.log_format,
        )
        self._registry = FlagRegistry(config.with_features)
        self._evaluator = Evaluator(self._registry, operators)
        self._synchronizer = Synchronizer(self._registry, source, config)

    @property
    def config(self) -> FeatureflowConfig:
        return self._config

    @property
    def state(self) -> SyncState:
        return self._synchronizer.state

    @property
    def is_ready(self) -> bool:
        """定義が利用可能になり、エラーなしで準備完了したかどうか。"""
        ready = self._synchronizer.ready
        return ready.fired and ready.error is None

    async def start(self) -> None:
        """定義の同期を開始する。"""
        self._logger.debug(
            "client_starting",
            offline=self._offline,
            streaming=self._config.streaming,
            local_features=len(self._config.with_features),
        )
        await self._synchronizer.start()

    def on_ready(self, callback: ReadyCallback) -> None:
        """準備完了時に一度だけ callback(error) を呼ぶ。

        成功なら error は None。すでに準備完了していても、呼び出しは
        イベントループの次の機会まで遅延される。
        """
        self._synchronizer.ready.add_callback(callback)

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """準備完了を待つ。

        Raises:
            ConfigurationError: 認証情報が拒否された場合
            TransientFetchError: 初期化タイムアウトに達した場合
        """
        try:
            await asyncio.wait_for(self._synchronizer.ready.wait(), timeout)
        except TimeoutError as e:
            raise TransientFetchError(
                f"client not ready after {timeout}s",
                cause=e,
                code=FeatureflowErrorCodes.READY_TIMEOUT,
            ) from e

    def evaluate(
        self,
        flag_key: str,
        context: ContextInput = None,
        fallback: Any = OFF_VARIANT,
    ) -> EvaluationResult:
        """フラグを評価する。例外は送出しない。"""
        return self._evaluator.evaluate(flag_key, context, fallback)

    def evaluate_all(self, context: ContextInput = None) -> dict[str, EvaluationResult]:
        """既知のすべてのフラグを同じスナップショットで評価する。"""
        return self._evaluator.evaluate_all(context)

    async def close(self) -> None:
        """同期を停止する。冪等。閉じた後も最後の定義で評価できる。"""
        await self._synchronizer.close()

    async def __aenter__(self) -> FeatureflowClient:
        await self.start()
        try:
            await self.wait_until_ready()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


async def create_client(
    config: FeatureflowConfig | None = None,
    *,
    source: FeatureSource | None = None,
    operators: OperatorRegistry | None = None,
    timeout: float | None = None,
    **options: Any,
) -> FeatureflowClient:
    """クライアントを生成・開始し、準備完了まで待ってから返す。"""
    client = FeatureflowClient(config, source=source, operators=operators, **options)
    await client.start()
    try:
        await client.wait_until_ready(timeout)
    except BaseException:
        await client.close()
        raise
    return client
