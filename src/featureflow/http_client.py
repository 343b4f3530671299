"""Featureflow HTTP クライアント実装 (ポーリング取得・SSE ストリーム・登録)"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
import structlog

from .config import FeatureflowConfig
from .exceptions import ConfigurationError, FeatureflowError, TransientFetchError
from .models import FeatureFlag, parse_features
from .source import FeatureSource

logger = structlog.stdlib.get_logger(__name__)

FEATURES_PATH = "/api/sdk/v1/features"
STREAM_PATH = "/api/sdk/v1/stream"
REGISTER_PATH = "/api/sdk/v1/register"

UPDATE_EVENT = "features.updated"
USER_AGENT = "featureflow-python-sdk/0.1.0"


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[tuple[str, str]]:
    """text/event-stream のレスポンスを (event, data) の組に分解する。"""
    event, data = "message", []
    async for line in response.aiter_lines():
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if data:
        yield event, "\n".join(data)


class HttpFeatureSource(FeatureSource):
    """httpx を使った Featureflow HTTP クライアント。"""

    def __init__(self, config: FeatureflowConfig) -> None:
        self._config = config
        self._headers: dict[str, str] = {
            "Authorization": f"Bearer {config.api_key}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        self._etag: str | None = None
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                headers=self._headers,
                timeout=self._config.request_timeout,
            )
        return self._client

    def _handle_error(self, resp: httpx.Response, context: str) -> None:
        if resp.status_code in (401, 403):
            raise ConfigurationError(
                f"{context}: API key rejected (HTTP {resp.status_code})",
            )
        if resp.status_code >= 400:
            raise TransientFetchError(
                f"{context}: HTTP {resp.status_code}: {resp.text}",
            )

    async def fetch_all(self) -> list[FeatureFlag] | None:
        """定義セットを取得する。ETag が一致すれば None を返す。"""
        headers = {"If-None-Match": self._etag} if self._etag else {}
        try:
            resp = await self._get_client().get(FEATURES_PATH, headers=headers)
        except httpx.HTTPError as e:
            raise TransientFetchError(f"Failed to fetch features: {e}", cause=e) from e
        if resp.status_code == 304:
            return None
        self._handle_error(resp, "fetch_all")
        try:
            features = parse_features(resp.json())
        except (ValueError, FeatureflowError) as e:
            raise TransientFetchError(f"Malformed feature payload: {e}", cause=e) from e
        self._etag = resp.headers.get("ETag")
        return features

    async def stream(self) -> AsyncIterator[list[FeatureFlag]]:
        """SSE ストリームに接続し、定義セットの更新を順に返す。

        サーバーが接続を閉じるとイテレーションは正常終了する。
        """
        timeout = httpx.Timeout(self._config.request_timeout, read=None)
        try:
            async with self._get_client().stream(
                "GET",
                STREAM_PATH,
                headers={"Accept": "text/event-stream"},
                timeout=timeout,
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    self._handle_error(resp, "stream")
                async for event, data in iter_sse_events(resp):
                    if event != UPDATE_EVENT:
                        continue
                    try:
                        features = parse_features(json.loads(data))
                    except (ValueError, FeatureflowError) as e:
                        logger.warning("stream_event_skipped", sse_event=event, error=str(e))
                        continue
                    yield features
        except httpx.HTTPError as e:
            raise TransientFetchError(f"Feature stream failed: {e}", cause=e) from e

    async def register(self, features: Sequence[FeatureFlag]) -> None:
        """ローカル宣言のフィーチャーを登録する。"""
        body: list[dict[str, Any]] = [
            {
                "key": feature.key,
                "failoverVariant": feature.default_variant,
                "variants": [v.to_dict() for v in feature.variants.values()],
            }
            for feature in features
        ]
        try:
            resp = await self._get_client().post(REGISTER_PATH, json=body)
        except httpx.HTTPError as e:
            raise TransientFetchError(f"Failed to register features: {e}", cause=e) from e
        self._handle_error(resp, "register")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
