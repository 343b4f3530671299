"""FeatureSource 抽象基底クラス"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from .models import FeatureFlag


class FeatureSource(ABC):
    """フラグ定義の取得元 (リモートサービス・テスト用インメモリなど)。"""

    @abstractmethod
    async def fetch_all(self) -> list[FeatureFlag] | None:
        """定義セット全体を取得する。前回から変化がなければ None を返す。

        Raises:
            ConfigurationError: 認証情報が無効な場合
            TransientFetchError: ネットワーク・リモート側の一時的な失敗
        """
        ...

    @abstractmethod
    def stream(self) -> AsyncIterator[list[FeatureFlag]]:
        """定義セットの更新をプッシュで受け取る非同期イテレータを返す。"""
        ...

    @abstractmethod
    async def register(self, features: Sequence[FeatureFlag]) -> None:
        """コード内で宣言したフィーチャーをリモートに登録する。"""
        ...

    @abstractmethod
    async def close(self) -> None:
        """下位のトランスポートを解放する。"""
        ...
