"""OpenTelemetry メトリクスフック"""

from __future__ import annotations

from opentelemetry import metrics

from .events import VerifierEvent


class OtelMetricsHook:
    """VerifierEvent を OpenTelemetry のカウンターに記録するフック。

    属性は verifier_name, event, error_code (失敗時のみ)。
    """

    def __init__(self, meter_provider: metrics.MeterProvider | None = None) -> None:
        if meter_provider is None:
            meter = metrics.get_meter("k1s0_id_token_verifier", version="0.1.0")
        else:
            meter = meter_provider.get_meter("k1s0_id_token_verifier", version="0.1.0")
        self._events_total = meter.create_counter(
            name="id_token_verifier_events_total",
            description="Total number of id token verifier events",
            unit="1",
        )

    def __call__(self, event: VerifierEvent) -> None:
        attributes = {"verifier_name": event.verifier_name, "event": event.name}
        if event.error_code is not None:
            attributes["error_code"] = event.error_code
        self._events_total.add(1, attributes)
