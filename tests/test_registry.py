"""フラグレジストリのユニットテスト"""

import pytest
from featureflow import Feature, FlagRegistry


def test_empty_registry() -> None:
    """空のレジストリは世代 0 で、未知のキーは None。"""
    registry = FlagRegistry()
    assert registry.current.generation == 0
    assert len(registry.current) == 0
    assert registry.get("missing") is None


def test_initial_features_are_published() -> None:
    registry = FlagRegistry([Feature("a").build(), Feature("b").build()])
    assert registry.current.generation == 1
    assert registry.get("a") is not None


def test_replace_all_publishes_new_generation() -> None:
    """内容が変われば新しい世代を公開すること。"""
    registry = FlagRegistry([Feature("a").build()])
    assert registry.replace_all([Feature("a", "on").build()]) is True
    assert registry.current.generation == 2
    assert registry.get("a").default_variant == "on"


def test_replace_all_identical_content_is_noop() -> None:
    """同じ内容なら再公開しないこと。"""
    registry = FlagRegistry([Feature("a").build()])
    before = registry.current
    assert registry.replace_all([Feature("a").build()]) is False
    assert registry.current is before


def test_replace_all_removes_missing_keys() -> None:
    """定義セットは丸ごと置き換えられること。"""
    registry = FlagRegistry([Feature("a").build(), Feature("b").build()])
    registry.replace_all([Feature("b").build()])
    assert registry.get("a") is None
    assert registry.get("b") is not None


def test_old_snapshot_is_unchanged() -> None:
    """公開済みのスナップショットは差し替え後も変化しないこと。"""
    registry = FlagRegistry([Feature("a").build()])
    old = registry.current
    registry.replace_all([Feature("a", "on").build(), Feature("b").build()])
    assert old.get("a").default_variant == "off"
    assert old.get("b") is None
    with pytest.raises(TypeError):
        old.features["c"] = Feature("c").build()  # type: ignore[index]
