"""HttpFeatureSource のユニットテスト（respx モック）"""

import json

import httpx
import pytest
import respx
from featureflow import (
    ConfigurationError,
    Feature,
    FeatureflowConfig,
    FeatureflowErrorCodes,
    HttpFeatureSource,
    TransientFetchError,
)
from featureflow.http_client import FEATURES_PATH, REGISTER_PATH, STREAM_PATH

BASE_URL = "http://featureflow:8080"

DEFINITIONS = [
    {
        "key": "example-feature",
        "defaultVariant": "off",
        "variants": [{"key": "on"}, {"key": "off"}],
        "rules": [
            {
                "conditions": [
                    {"target": "subscription", "operator": "equals", "values": ["premium"]}
                ],
                "variantKey": "on",
            }
        ],
    }
]


def make_source() -> HttpFeatureSource:
    return HttpFeatureSource(FeatureflowConfig(api_key="srv-key", base_url=BASE_URL))


@respx.mock
async def test_fetch_all_success() -> None:
    """定義セットの取得成功。"""
    route = respx.get(f"{BASE_URL}{FEATURES_PATH}").mock(
        return_value=httpx.Response(200, json=DEFINITIONS)
    )
    source = make_source()
    features = await source.fetch_all()
    await source.close()
    assert features is not None
    assert [f.key for f in features] == ["example-feature"]
    assert route.calls.last.request.headers["Authorization"] == "Bearer srv-key"


@respx.mock
async def test_fetch_all_envelope_payload() -> None:
    """{"features": [...]} 形式の応答も受け付けること。"""
    respx.get(f"{BASE_URL}{FEATURES_PATH}").mock(
        return_value=httpx.Response(200, json={"features": DEFINITIONS})
    )
    source = make_source()
    features = await source.fetch_all()
    await source.close()
    assert features is not None
    assert len(features) == 1


@respx.mock
async def test_fetch_all_not_modified() -> None:
    """ETag が一致すれば None を返すこと。"""

    def respond(request: httpx.Request) -> httpx.Response:
        if request.headers.get("If-None-Match") == '"v1"':
            return httpx.Response(304)
        return httpx.Response(200, json=DEFINITIONS, headers={"ETag": '"v1"'})

    route = respx.get(f"{BASE_URL}{FEATURES_PATH}").mock(side_effect=respond)
    source = make_source()
    assert await source.fetch_all() is not None
    assert await source.fetch_all() is None
    await source.close()
    assert route.call_count == 2
    assert "If-None-Match" not in route.calls[0].request.headers


@pytest.mark.parametrize("status", [401, 403])
@respx.mock
async def test_fetch_all_unauthorized(status: int) -> None:
    """認証エラーで ConfigurationError が発生すること。"""
    respx.get(f"{BASE_URL}{FEATURES_PATH}").mock(return_value=httpx.Response(status))
    source = make_source()
    with pytest.raises(ConfigurationError) as exc_info:
        await source.fetch_all()
    await source.close()
    assert exc_info.value.code == FeatureflowErrorCodes.CONFIG_ERROR


@respx.mock
async def test_fetch_all_server_error() -> None:
    """サーバーエラーで TransientFetchError が発生すること。"""
    respx.get(f"{BASE_URL}{FEATURES_PATH}").mock(
        return_value=httpx.Response(503, text="Service Unavailable")
    )
    source = make_source()
    with pytest.raises(TransientFetchError) as exc_info:
        await source.fetch_all()
    await source.close()
    assert exc_info.value.code == FeatureflowErrorCodes.FETCH_ERROR


@respx.mock
async def test_fetch_all_connection_error() -> None:
    """接続失敗で TransientFetchError が発生すること。"""
    respx.get(f"{BASE_URL}{FEATURES_PATH}").mock(side_effect=httpx.ConnectError("refused"))
    source = make_source()
    with pytest.raises(TransientFetchError):
        await source.fetch_all()
    await source.close()


@respx.mock
async def test_fetch_all_malformed_json() -> None:
    """不正な JSON で TransientFetchError が発生すること。"""
    respx.get(f"{BASE_URL}{FEATURES_PATH}").mock(
        return_value=httpx.Response(200, text="<html>oops</html>")
    )
    source = make_source()
    with pytest.raises(TransientFetchError):
        await source.fetch_all()
    await source.close()


@respx.mock
async def test_stream_yields_update_events() -> None:
    """features.updated イベントだけが定義セットとして返ること。"""
    body = (
        ": connected\n\n"
        "event: ping\n"
        "data: {}\n\n"
        "event: features.updated\n"
        f"data: {json.dumps(DEFINITIONS)}\n\n"
        "event: features.updated\n"
        "data: not-json\n\n"
        "event: features.updated\n"
        "data: []\n\n"
    )
    respx.get(f"{BASE_URL}{STREAM_PATH}").mock(
        return_value=httpx.Response(
            200, content=body.encode(), headers={"Content-Type": "text/event-stream"}
        )
    )
    source = make_source()
    updates = [features async for features in source.stream()]
    await source.close()
    assert len(updates) == 2
    assert [f.key for f in updates[0]] == ["example-feature"]
    assert updates[1] == []


@respx.mock
async def test_stream_unauthorized() -> None:
    """ストリーム接続の認証エラーで ConfigurationError が発生すること。"""
    respx.get(f"{BASE_URL}{STREAM_PATH}").mock(return_value=httpx.Response(401))
    source = make_source()
    with pytest.raises(ConfigurationError):
        async for _ in source.stream():
            pass
    await source.close()


@respx.mock
async def test_stream_connection_error() -> None:
    """ストリーム接続失敗で TransientFetchError が発生すること。"""
    respx.get(f"{BASE_URL}{STREAM_PATH}").mock(side_effect=httpx.ConnectError("refused"))
    source = make_source()
    with pytest.raises(TransientFetchError):
        async for _ in source.stream():
            pass
    await source.close()


@respx.mock
async def test_register_posts_local_features() -> None:
    """ローカル宣言のフィーチャーを登録すること。"""
    route = respx.post(f"{BASE_URL}{REGISTER_PATH}").mock(return_value=httpx.Response(200))
    source = make_source()
    await source.register([Feature("feature-two").build()])
    await source.close()
    body = json.loads(route.calls.last.request.content)
    assert body[0]["key"] == "feature-two"
    assert body[0]["failoverVariant"] == "off"
    assert {v["key"] for v in body[0]["variants"]} == {"on", "off"}


@respx.mock
async def test_register_server_error() -> None:
    """登録失敗で TransientFetchError が発生すること。"""
    respx.post(f"{BASE_URL}{REGISTER_PATH}").mock(return_value=httpx.Response(500))
    source = make_source()
    with pytest.raises(TransientFetchError):
        await source.register([Feature("feature-two").build()])
    await source.close()


@respx.mock
async def test_fetch_all_envelope_without_features() -> None:
    """features キーのない応答は TransientFetchError になること。"""
    respx.get(f"{BASE_URL}{FEATURES_PATH}").mock(
        return_value=httpx.Response(200, json={"error": "internal"})
    )
    source = make_source()
    with pytest.raises(TransientFetchError):
        await source.fetch_all()
    await source.close()
