"""InMemoryFeatureSource 実装"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable, Sequence

from .models import FeatureFlag
from .source import FeatureSource

_END_OF_STREAM = object()


class InMemoryFeatureSource(FeatureSource):
    """テスト用インメモリ定義ソース。"""

    def __init__(self, features: Iterable[FeatureFlag] = ()) -> None:
        self._features: list[FeatureFlag] = list(features)
        self._failures: list[Exception] = []
        self._updates: asyncio.Queue[object] = asyncio.Queue()
        self.fetch_count = 0
        self.stream_count = 0
        self.registered: list[FeatureFlag] = []
        self.closed = False

    def set_features(self, features: Iterable[FeatureFlag]) -> None:
        """次回の fetch_all が返す定義セットを設定する。"""
        self._features = list(features)

    def fail_next(self, error: Exception, times: int = 1) -> None:
        """次の fetch_all を times 回だけ error で失敗させる。"""
        self._failures.extend([error] * times)

    def push(self, features: Iterable[FeatureFlag]) -> None:
        """ストリームに定義セットを流す。fetch_all の結果も同じ内容になる。"""
        self.set_features(features)
        self._updates.put_nowait(list(self._features))

    def disconnect(self, error: Exception | None = None) -> None:
        """ストリームを終了させる。error を渡すとその例外で終了する。"""
        self._updates.put_nowait(error if error is not None else _END_OF_STREAM)

    async def fetch_all(self) -> list[FeatureFlag] | None:
        self.fetch_count += 1
        if self._failures:
            raise self._failures.pop(0)
        return list(self._features)

    async def stream(self) -> AsyncIterator[list[FeatureFlag]]:
        self.stream_count += 1
        while True:
            item = await self._updates.get()
            if item is _END_OF_STREAM:
                return
            if isinstance(item, Exception):
                raise item
            yield item  # type: ignore[misc]

    async def register(self, features: Sequence[FeatureFlag]) -> None:
        self.registered.extend(features)

    async def close(self) -> None:
        self.closed = True
