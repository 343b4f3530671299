"""フラグレジストリ: 参照の差し替えで公開する不変スナップショット"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .models import FeatureFlag


@dataclass(frozen=True)
class Snapshot:
    """ある時点で有効なフラグ定義の全体。"""

    generation: int = 0
    features: Mapping[str, FeatureFlag] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, flag_key: str) -> FeatureFlag | None:
        return self.features.get(flag_key)

    def __len__(self) -> int:
        return len(self.features)


class FlagRegistry:
    """フラグキーから定義を引くインメモリレジストリ。

    読み取り側はロックを取らない。書き込み側は新しいマッピングを別に組み立て、
    ``_snapshot`` 参照の代入 1 回で公開する。
    """

    def __init__(self, features: Iterable[FeatureFlag] = ()) -> None:
        self._snapshot = Snapshot()
        self.replace_all(features)

    @property
    def current(self) -> Snapshot:
        return self._snapshot

    def get(self, flag_key: str) -> FeatureFlag | None:
        """定義を返す。未知のキーは None (NOT_FOUND)。"""
        return self._snapshot.get(flag_key)

    def replace_all(self, features: Iterable[FeatureFlag]) -> bool:
        """定義セットを丸ごと差し替える。

        内容が現在のスナップショットと同じなら何もしない。

        Returns:
            新しいスナップショットを公開した場合 True
        """
        incoming = {feature.key: feature for feature in features}
        current = self._snapshot
        if dict(current.features) == incoming:
            return False
        self._snapshot = Snapshot(
            generation=current.generation + 1,
            features=MappingProxyType(incoming),
        )
        return True
