"""OpenTelemetry メトリクス定義"""

from __future__ import annotations

from opentelemetry import metrics

_meter = metrics.get_meter("featureflow", version="0.1.0")

evaluations_total = _meter.create_counter(
    name="featureflow.evaluations",
    description="Total number of flag evaluations",
    unit="1",
)

sync_fetches_total = _meter.create_counter(
    name="featureflow.sync.fetches",
    description="Total number of flag definition fetches",
    unit="1",
)

sync_duration_seconds = _meter.create_histogram(
    name="featureflow.sync.duration",
    description="Flag definition fetch duration in seconds",
    unit="s",
)
