"""OtelMetricsHook のユニットテスト"""

from k1s0_id_token_verifier.events import EventEmitter, EventNames
from k1s0_id_token_verifier.exceptions import ErrorCodes, FetchError
from k1s0_id_token_verifier.metrics import OtelMetricsHook
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader


def _points(reader: InMemoryMetricReader) -> list:
    data = reader.get_metrics_data()
    points = []
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name == "id_token_verifier_events_total":
                    points.extend(metric.data.data_points)
    return points


def test_hook_counts_events_by_name() -> None:
    """イベント名ごとにカウンターが加算されること。"""
    reader = InMemoryMetricReader()
    hook = OtelMetricsHook(MeterProvider(metric_readers=[reader]))
    emitter = EventEmitter("web", [hook])

    emitter.emit(EventNames.FETCH_SUCCESS)
    emitter.emit(EventNames.FETCH_SUCCESS)
    emitter.emit(
        EventNames.FETCH_FAILURE,
        error=FetchError(ErrorCodes.FETCH_HTTP_STATUS, "503", retryable=True, status=503),
    )

    counts = {
        (p.attributes["event"], p.attributes.get("error_code")): p.value for p in _points(reader)
    }
    assert counts[(EventNames.FETCH_SUCCESS, None)] == 2
    assert counts[(EventNames.FETCH_FAILURE, ErrorCodes.FETCH_HTTP_STATUS)] == 1
    assert all(p.attributes["verifier_name"] == "web" for p in _points(reader))


def test_hook_uses_global_meter_by_default() -> None:
    hook = OtelMetricsHook()
    emitter = EventEmitter("web", [hook])
    emitter.emit(EventNames.REFRESH_SUCCESS)
