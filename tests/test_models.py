"""データモデルのユニットテスト"""

import pytest
from featureflow import (
    EvaluationReason,
    EvaluationResult,
    Feature,
    FeatureFlag,
    FeatureflowError,
    FeatureflowErrorCodes,
    Rule,
    Variant,
    VariantSplit,
    is_off_value,
)
from featureflow.models import coerce_feature, merge_features, parse_features


def make_definition(**overrides: object) -> dict:
    data: dict = {
        "key": "example-feature",
        "enabled": True,
        "defaultVariant": "off",
        "offVariant": "off",
        "variants": [{"key": "on", "name": "On"}, {"key": "off", "name": "Off"}],
        "rules": [
            {
                "conditions": [
                    {"target": "subscription", "operator": "equals", "values": ["premium"]}
                ],
                "variantKey": "on",
            }
        ],
    }
    data.update(overrides)
    return data


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, True), (False, True), ("off", True), ("on", False), (0, False), ("", False), (True, False)],
)
def test_is_off_value(value: object, expected: bool) -> None:
    """オフ判定は None・False・"off" のみ。"""
    assert is_off_value(value) is expected


def test_variant_defaults() -> None:
    """name と value はキーで補完されること。"""
    variant = Variant("dark")
    assert variant.name == "dark"
    assert variant.value == "dark"
    assert Variant("limit", value=10).value == 10


def test_off_variant_is_implicit() -> None:
    """オフバリアントは宣言しなくても存在すること。"""
    flag = FeatureFlag(key="f", default_variant="off")
    assert "off" in flag.variants
    assert flag.value_of("off") == "off"


def test_undeclared_variant_rejected() -> None:
    """未宣言のバリアント参照で INVALID_DEFINITION が発生すること。"""
    with pytest.raises(FeatureflowError) as exc_info:
        FeatureFlag(key="f", default_variant="blue")
    assert exc_info.value.code == FeatureflowErrorCodes.INVALID_DEFINITION


def test_rule_requires_exactly_one_outcome() -> None:
    """variant_key と variant_splits はどちらか一方のみ。"""
    with pytest.raises(FeatureflowError):
        Rule()
    with pytest.raises(FeatureflowError):
        Rule(variant_key="on", variant_splits=(VariantSplit("on", 100),))


def test_rule_splits_must_sum_to_100() -> None:
    """配分の合計が 100 でなければエラー。"""
    with pytest.raises(FeatureflowError) as exc_info:
        Rule(variant_splits=(VariantSplit("on", 30), VariantSplit("off", 30)))
    assert exc_info.value.code == FeatureflowErrorCodes.INVALID_DEFINITION


def test_feature_flag_from_dict() -> None:
    """ワイヤ形式からの変換。"""
    flag = FeatureFlag.from_dict(make_definition())
    assert flag.key == "example-feature"
    assert flag.default_variant == "off"
    assert flag.rules[0].variant_key == "on"
    assert flag.rules[0].conditions[0].values == ("premium",)
    assert flag.variants["on"].name == "On"


def test_feature_flag_from_dict_single_value_condition() -> None:
    """values がスカラーでも受け付けること。"""
    data = make_definition(
        rules=[
            {
                "conditions": [{"target": "age", "operator": "greaterThan", "value": 18}],
                "variantKey": "on",
            }
        ]
    )
    flag = FeatureFlag.from_dict(data)
    assert flag.rules[0].conditions[0].values == (18,)


def test_feature_flag_from_dict_malformed() -> None:
    """必須キー欠落は INVALID_DEFINITION。"""
    with pytest.raises(FeatureflowError) as exc_info:
        FeatureFlag.from_dict({"enabled": True})
    assert exc_info.value.code == FeatureflowErrorCodes.INVALID_DEFINITION


def test_feature_flag_to_dict_roundtrip() -> None:
    """to_dict の結果から同じ定義を復元できること。"""
    flag = FeatureFlag.from_dict(make_definition(salt="abc"))
    assert FeatureFlag.from_dict(flag.to_dict()) == flag


def test_feature_builder_defaults_off() -> None:
    """ローカル宣言のフィーチャーは既定で off。"""
    flag = Feature("feature-two").build()
    assert flag.default_variant == "off"
    assert set(flag.variants) == {"on", "off"}


def test_feature_builder_custom_variant() -> None:
    """独自バリアントを追加できること。"""
    flag = Feature("theme", "light").with_variant("dark").build()
    assert flag.default_variant == "light"
    assert {"light", "dark", "on", "off"} <= set(flag.variants)


def test_parse_features_accepts_envelope() -> None:
    """{"features": [...]} 形式を受け付けること。"""
    features = parse_features({"features": [make_definition()]})
    assert [f.key for f in features] == ["example-feature"]


def test_parse_features_skips_invalid() -> None:
    """不正な定義はスキップされ、残りは使われること。"""
    features = parse_features([make_definition(), {"key": "bad", "defaultVariant": "nope"}])
    assert [f.key for f in features] == ["example-feature"]


def test_parse_features_rejects_non_list() -> None:
    """リストでない定義セットはエラー。"""
    with pytest.raises(FeatureflowError):
        parse_features("not-a-list")


def test_parse_features_rejects_envelope_without_features() -> None:
    """features キーのないマッピングは空のセットではなくエラー。"""
    with pytest.raises(FeatureflowError) as exc_info:
        parse_features({"error": "internal"})
    assert exc_info.value.code == FeatureflowErrorCodes.INVALID_DEFINITION


def test_parse_features_rejects_all_invalid() -> None:
    """空でないセットの定義がすべて不正ならエラー。"""
    with pytest.raises(FeatureflowError) as exc_info:
        parse_features([{"key": "example-feature", "defaultVariant": "ghost"}, "garbage"])
    assert exc_info.value.code == FeatureflowErrorCodes.INVALID_DEFINITION


def test_parse_features_empty_set_is_valid() -> None:
    """空の定義セットはそのまま受け付けること。"""
    assert parse_features([]) == []
    assert parse_features({"features": []}) == []


def test_structured_variant_value_is_copied() -> None:
    """構造化された値は呼び出しごとにコピーが返ること。"""
    flag = FeatureFlag(
        key="cfg",
        default_variant="v1",
        variants={"v1": Variant("v1", value={"limit": 10})},
    )
    first = flag.value_of("v1")
    first["limit"] = 999
    assert flag.value_of("v1") == {"limit": 10}
    assert flag.variants["v1"].value == {"limit": 10}


def test_coerce_feature_variants() -> None:
    """ローカル宣言の各形式を FeatureFlag に揃えること。"""
    built = Feature("a").build()
    assert coerce_feature(built) is built
    assert coerce_feature(Feature("b", "on")).default_variant == "on"
    assert coerce_feature("c").key == "c"
    assert coerce_feature(make_definition()).key == "example-feature"
    with pytest.raises(FeatureflowError):
        coerce_feature(42)  # type: ignore[arg-type]


def test_merge_features_later_layer_wins() -> None:
    """後のレイヤーがキー単位で上書きすること。"""
    local = [Feature("a").build(), Feature("b").build()]
    remote = [Feature("a", "on").build()]
    merged = merge_features(local, remote)
    assert merged["a"].default_variant == "on"
    assert merged["b"].default_variant == "off"


def test_evaluation_result_is_on() -> None:
    """is_on は解決した値で判定すること。"""
    on = EvaluationResult("f", "on", "on", EvaluationReason.RULE_MATCH)
    off = EvaluationResult("f", "off", "off", EvaluationReason.DEFAULT)
    assert on.is_on() is True
    assert off.is_on() is False
    assert on.to_dict() == {
        "flagKey": "f",
        "variant": "on",
        "value": "on",
        "reason": "RULE_MATCH",
        "isOn": True,
    }
