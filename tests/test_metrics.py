"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from coda.services.metrics import MAX_LOCAL_BUFFER, MetricsClient


def _make_client(*, enabled: bool = False) -> MetricsClient:
    with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
        if enabled:
            with patch.object(MetricsClient, "_start_flush_thread"):
                return MetricsClient()
        return MetricsClient()


def _dims(metric: dict) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in metric["Dimensions"]}


class TestMetricsRecording:
    """Verify that record_* buffer the right data."""

    def test_record_success_appends_two_data_points(self):
        client = _make_client()
        client.record_success("calendly", "GET /event_types", latency_ms=123.4)
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"Dependency/RequestCount", "Dependency/Latency"}

    def test_record_failure_without_latency(self):
        client = _make_client()
        client.record_failure("llm", "complete", error_type="timeout")
        names = [m["MetricName"] for m in client._buffer]
        assert names == ["Dependency/RequestCount", "Dependency/ErrorCount"]

    def test_record_failure_with_latency(self):
        client = _make_client()
        client.record_failure("smtp", "send", error_type="SMTPException", latency_ms=500.0)
        assert len(client._buffer) == 3

    def test_dimensions(self):
        client = _make_client()
        client.record_success("tool", "search_knowledge", latency_ms=5.0)
        client.record_failure("tool", "check_availability", error_type="calendar_unavailable")
        count, latency, failed, error = client._buffer
        assert _dims(count) == {"Service": "tool", "Status": "success"}
        assert _dims(latency) == {"Service": "tool", "Operation": "search_knowledge"}
        assert _dims(failed)["Status"] == "failure"
        assert _dims(error)["ErrorType"] == "calendar_unavailable"

    def test_record_rejection(self):
        client = _make_client()
        client.record_rejection("quota_exhausted")
        (metric,) = client._buffer
        assert metric["MetricName"] == "Chat/Rejections"
        assert _dims(metric) == {"Reason": "quota_exhausted"}

    def test_local_buffer_is_bounded(self):
        client = _make_client()
        for _ in range(MAX_LOCAL_BUFFER + 10):
            client.record_rejection("session_invalid")
        assert len(client._buffer) == MAX_LOCAL_BUFFER


class TestMetricsFlush:
    def test_flush_when_disabled_sends_nothing_and_clears(self):
        client = _make_client()
        client.record_success("calendly", "GET /event_types", latency_ms=100.0)
        assert client.flush() == 0
        assert len(client._buffer) == 0

    def test_flush_when_enabled_calls_put_metric_data(self):
        client = _make_client(enabled=True)
        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_success("calendly", "GET /event_types", latency_ms=100.0)
        assert client.flush() == 2

        kwargs = mock_cw.put_metric_data.call_args[1]
        assert kwargs["Namespace"] == "Coda"
        assert len(kwargs["MetricData"]) == 2

    def test_flush_empty_buffer_returns_zero(self):
        assert _make_client(enabled=True).flush() == 0

    def test_flush_failure_is_logged_not_raised(self):
        client = _make_client(enabled=True)
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")
        client.record_rejection("x")
        assert client.flush() == 0
