"""Prometheus request metrics.

``RequestMetricsStage`` records per-request counters, latency and in-flight
requests; ``MetricsEndpointStage`` answers scrapes on one path and
short-circuits the rest of the pipeline.
"""

from __future__ import annotations

import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from .context import RequestContext
from .errors import HandlerFault
from .stages import NextStage, Stage


class RequestMetrics:
    """The metric families shared by the metrics stages."""

    def __init__(self, registry: CollectorRegistry | None = None, namespace: str = "stagehand"):
        self.registry = registry or CollectorRegistry()
        self.requests = Counter(
            "requests_total",
            "Requests handled, by method and status",
            ["method", "status"],
            namespace=namespace,
            registry=self.registry,
        )
        self.duration = Histogram(
            "request_duration_seconds",
            "Request latency through the pipeline",
            ["method"],
            namespace=namespace,
            registry=self.registry,
        )
        self.in_flight = Gauge(
            "requests_in_flight",
            "Requests currently inside the pipeline",
            namespace=namespace,
            registry=self.registry,
        )
        self.faults = Counter(
            "handler_faults_total",
            "Requests that failed inside a stage",
            ["stage"],
            namespace=namespace,
            registry=self.registry,
        )

    def exposition(self) -> bytes:
        return generate_latest(self.registry)


class RequestMetricsStage(Stage):
    """Times the remainder of the pipeline; register it early."""

    def __init__(self, metrics: RequestMetrics):
        self.metrics = metrics

    async def __call__(self, context: RequestContext, next_stage: NextStage) -> None:
        started = time.perf_counter()
        self.metrics.in_flight.inc()
        status = 500
        try:
            await next_stage(context)
            status = context.response.status
        except HandlerFault as fault:
            self.metrics.faults.labels(stage=fault.stage).inc()
            raise
        finally:
            self.metrics.in_flight.dec()
            self.metrics.duration.labels(method=context.method).observe(
                time.perf_counter() - started
            )
            self.metrics.requests.labels(method=context.method, status=str(status)).inc()


class MetricsEndpointStage(Stage):
    """Serves the text exposition format on ``path``."""

    def __init__(self, metrics: RequestMetrics, path: str = "/metrics"):
        self.metrics = metrics
        self.path = path

    async def __call__(self, context: RequestContext, next_stage: NextStage) -> None:
        if context.path != self.path:
            await next_stage(context)
            return
        context.response.set_status(200)
        context.response.headers["Content-Type"] = CONTENT_TYPE_LATEST
        context.response.write(self.metrics.exposition().decode("utf-8"))


__all__ = ["RequestMetrics", "RequestMetricsStage", "MetricsEndpointStage"]
