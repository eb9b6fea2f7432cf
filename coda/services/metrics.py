"""CloudWatch metrics for the assistant's dependencies and rejections.

Every call the engine makes to something it does not control (the
language model, a tool, Calendly, SMTP) is counted, timed and, on failure,
classified.  Requests turned away at the chat boundary are counted by
reason.

Data points are queued in memory and pushed in batches by a background
thread once a minute.  Publishing only happens with
``METRICS_ENABLED=true``; otherwise points are debug-logged and the queue
keeps just the most recent ``MAX_LOCAL_BUFFER`` of them.

>>> from coda.services.metrics import metrics
>>> metrics.record_success("llm", "complete", latency_ms=812.0)
>>> metrics.record_failure("tool", "check_availability", error_type="calendar_unavailable")
>>> metrics.record_rejection("quota_exhausted")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
from collections import deque
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "Coda"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # PutMetricData limit
MAX_LOCAL_BUFFER = 1_000

REQUEST_COUNT = "Dependency/RequestCount"
LATENCY = "Dependency/Latency"
ERROR_COUNT = "Dependency/ErrorCount"
REJECTIONS = "Chat/Rejections"


def _datum(name: str, value: float, unit: str, **dimensions: str) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
        "Timestamp": datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


class MetricsClient:
    """Queues metric data points and publishes them to CloudWatch."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        # Nothing drains the queue when publishing is off
        self._buffer: deque[dict[str, Any]] = deque(maxlen=None if self._enabled else MAX_LOCAL_BUFFER)
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _cloudwatch(self):
        if self._cw_client is None:
            import boto3  # noqa: PLC0415 — only needed when publishing

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    def _add(self, *points: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.extend(points)

    # ── Recording ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        self._add(
            _datum(REQUEST_COUNT, 1, "Count", Service=service, Status="success"),
            _datum(LATENCY, latency_ms, "Milliseconds", Service=service, Operation=operation),
        )
        logger.debug("Metric: %s %s ok in %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Count a failed call; latency is only recorded when known."""
        points = [
            _datum(REQUEST_COUNT, 1, "Count", Service=service, Status="failure"),
            _datum(ERROR_COUNT, 1, "Count", Service=service, ErrorType=error_type),
        ]
        if latency_ms > 0:
            points.append(_datum(LATENCY, latency_ms, "Milliseconds", Service=service, Operation=operation))
        self._add(*points)
        logger.debug("Metric: %s %s failed (%s)", service, operation, error_type)

    def record_rejection(self, reason: str) -> None:
        """Count a chat request refused before reaching the model."""
        self._add(_datum(REJECTIONS, 1, "Count", Reason=reason))
        logger.debug("Metric: chat rejected (%s)", reason)

    # ── Publishing ───────────────────────────────────────────────────

    def flush(self) -> int:
        """Publish everything queued so far.  Returns the number of points sent."""
        with self._lock:
            batch = list(self._buffer)
            self._buffer.clear()
        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Dropping %d metric point(s): publishing disabled", len(batch))
            return 0

        sent = 0
        try:
            cloudwatch = self._cloudwatch()
            for start in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[start : start + MAX_BATCH_SIZE]
                cloudwatch.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
        except Exception:
            logger.exception("Publishing metrics to CloudWatch failed after %d point(s)", sent)
        else:
            logger.info("Published %d metric point(s) to CloudWatch", sent)
        return sent

    def _start_flush_thread(self) -> None:
        stop = threading.Event()

        def _run() -> None:
            while not stop.wait(FLUSH_INTERVAL_SECONDS):
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_run, daemon=True, name="metrics-flush").start()
        atexit.register(stop.set)
        atexit.register(self.flush)
        logger.info("Metrics publishing every %ds to namespace %s", FLUSH_INTERVAL_SECONDS, NAMESPACE)


metrics = MetricsClient()
