"""Synchronizer: asyncio Task ベースの定義同期 (ポーリング / ストリーミング)"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import structlog

from .config import FeatureflowConfig
from .exceptions import (
    ConfigurationError,
    FeatureflowError,
    FeatureflowErrorCodes,
    TransientFetchError,
)
from .metrics import sync_duration_seconds, sync_fetches_total
from .models import FeatureFlag, merge_features
from .registry import FlagRegistry
from .source import FeatureSource

logger = structlog.stdlib.get_logger(__name__)

ReadyCallback = Callable[[Exception | None], Any]


class SyncState(StrEnum):
    """同期の状態。"""

    UNSTARTED = "UNSTARTED"
    SYNCING = "SYNCING"
    READY = "READY"
    FAILED_RETRYING = "FAILED_RETRYING"
    CLOSED = "CLOSED"


class ReadySignal:
    """一度だけ発火する準備完了シグナル。

    コールバックは成功時 None、失敗時は例外を受け取る。発火済みのシグナルに
    登録されたコールバックも同期的には呼ばず、イベントループ経由で呼ぶ。
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._error: Exception | None = None
        self._callbacks: list[ReadyCallback] = []

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    @property
    def error(self) -> Exception | None:
        return self._error

    def fire(self, error: Exception | None = None) -> bool:
        """シグナルを発火する。2 回目以降は何もせず False を返す。"""
        if self._event.is_set():
            return False
        self._error = error
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        loop = asyncio.get_running_loop()
        for callback in callbacks:
            loop.call_soon(callback, error)
        return True

    def add_callback(self, callback: ReadyCallback) -> None:
        if self._event.is_set():
            asyncio.get_running_loop().call_soon(callback, self._error)
        else:
            self._callbacks.append(callback)

    async def wait(self) -> None:
        """発火を待つ。失敗で発火した場合はその例外を送出する。"""
        await self._event.wait()
        if self._error is not None:
            raise self._error


class Synchronizer:
    """リモートソースからフラグ定義を取得してレジストリに公開する。

    状態遷移::

        UNSTARTED → SYNCING → READY ⇄ SYNCING → CLOSED
        SYNCING → FAILED_RETRYING → SYNCING

    バックグラウンドタスクは 1 つだけで、取得サイクルが重なることはない。
    定常状態での取得失敗はログに残すだけで、公開済みのスナップショットは保持する。
    """

    def __init__(
        self,
        registry: FlagRegistry,
        source: FeatureSource | None,
        config: FeatureflowConfig,
    ) -> None:
        self._registry = registry
        self._source = source
        self._config = config
        self._local: list[FeatureFlag] = list(config.with_features)
        self._state = SyncState.UNSTARTED
        self._task: asyncio.Task[None] | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._last_error: Exception | None = None
        self._closed = False
        self.ready = ReadySignal()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    async def start(self) -> None:
        """同期を開始する。2 回目以降の呼び出しは何もしない。"""
        if self._state is not SyncState.UNSTARTED or self._closed:
            return
        if self._local:
            self._registry.replace_all(self._local)

        if self._config.offline or self._source is None:
            self._state = SyncState.READY
            logger.info("offline_mode", features=len(self._local))
            self.ready.fire(None)
            return

        self._state = SyncState.SYNCING
        if self._config.init_timeout is not None:
            loop = asyncio.get_running_loop()
            self._timeout_handle = loop.call_later(self._config.init_timeout, self._on_init_timeout)
        self._task = asyncio.create_task(self._run(), name="featureflow-sync")

    async def close(self) -> None:
        """バックグラウンドタスクを停止しソースを解放する。冪等。"""
        if self._closed:
            return
        self._closed = True
        self._cancel_timeout()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._state = SyncState.CLOSED
        if self._source is not None:
            await self._source.close()
        self.ready.fire(
            FeatureflowError(
                FeatureflowErrorCodes.CLIENT_CLOSED,
                "client closed before flag definitions were available",
            )
        )
        logger.info("synchronizer_closed", generation=self._registry.current.generation)

    # ------------------------------------------------------------------
    # Background task
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            if self._local:
                await self._register_local()
            await self._initial_sync()
            if self._config.streaming:
                await self._stream_loop()
            else:
                await self._poll_loop()
        except ConfigurationError as e:
            logger.error("sync_aborted", error=str(e))
            self._abort(e)
        except Exception as e:
            logger.exception("sync_crashed", error=str(e))
            self._abort(e)

    def _abort(self, error: Exception) -> None:
        self._last_error = error
        self._state = SyncState.CLOSED
        self._cancel_timeout()
        self.ready.fire(error)

    async def _register_local(self) -> None:
        assert self._source is not None
        try:
            await self._source.register(self._local)
            logger.debug("features_registered", count=len(self._local))
        except FeatureflowError as e:
            logger.warning("feature_registration_failed", error=str(e))

    async def _initial_sync(self) -> None:
        attempt = 0
        while True:
            try:
                await self._sync_once()
                break
            except TransientFetchError as e:
                self._last_error = e
                self._state = SyncState.FAILED_RETRYING
                delay = self._config.retry.compute_delay(attempt)
                logger.warning(
                    "initial_sync_failed",
                    attempt=attempt + 1,
                    retry_in=round(delay, 3),
                    error=str(e),
                )
                attempt += 1
                await asyncio.sleep(delay)
                self._state = SyncState.SYNCING

        self._state = SyncState.READY
        self._cancel_timeout()
        generation = self._registry.current.generation
        if self.ready.fire(None):
            logger.info("client_ready", generation=generation)
        else:
            logger.info("sync_recovered", generation=generation)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.polling_interval)
            self._state = SyncState.SYNCING
            try:
                await self._sync_once()
            except ConfigurationError:
                raise
            except Exception as e:
                self._last_error = e
                logger.warning("refresh_failed", error=str(e))
            self._state = SyncState.READY

    async def _stream_loop(self) -> None:
        assert self._source is not None
        attempt = 0
        while True:
            try:
                async for features in self._source.stream():
                    attempt = 0
                    self._publish(features)
                logger.info("stream_closed")
            except ConfigurationError:
                raise
            except Exception as e:
                self._last_error = e
                logger.warning("stream_failed", error=str(e))

            delay = self._config.retry.compute_delay(attempt)
            attempt += 1
            await asyncio.sleep(delay)
            self._state = SyncState.SYNCING
            try:
                await self._sync_once()
            except ConfigurationError:
                raise
            except Exception as e:
                self._last_error = e
                logger.warning("refresh_failed", error=str(e))
            self._state = SyncState.READY

    # ------------------------------------------------------------------
    # Fetch and publish
    # ------------------------------------------------------------------

    async def _sync_once(self) -> bool:
        assert self._source is not None
        started = time.perf_counter()
        try:
            features = await self._source.fetch_all()
        except FeatureflowError:
            sync_fetches_total.add(1, {"outcome": "error"})
            raise
        except Exception as e:
            sync_fetches_total.add(1, {"outcome": "error"})
            raise TransientFetchError(f"Failed to fetch features: {e}", cause=e) from e
        finally:
            sync_duration_seconds.record(time.perf_counter() - started)

        if features is None:
            sync_fetches_total.add(1, {"outcome": "unchanged"})
            logger.debug("features_not_modified")
            return False
        return self._publish(features)

    def _publish(self, features: list[FeatureFlag]) -> bool:
        merged = merge_features(self._local, features)
        changed = self._registry.replace_all(merged.values())
        sync_fetches_total.add(1, {"outcome": "updated" if changed else "unchanged"})
        if changed:
            snapshot = self._registry.current
            logger.info(
                "features_updated",
                generation=snapshot.generation,
                count=len(snapshot),
            )
        return changed

    def _on_init_timeout(self) -> None:
        self._timeout_handle = None
        if self.ready.fired:
            return
        error = TransientFetchError(
            f"Flag definitions not available after {self._config.init_timeout}s",
            cause=self._last_error,
            code=FeatureflowErrorCodes.READY_TIMEOUT,
        )
        logger.error("ready_timeout", timeout=self._config.init_timeout)
        self.ready.fire(error)

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
