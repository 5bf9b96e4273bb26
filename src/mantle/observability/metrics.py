from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
)
from prometheus_client.exposition import generate_latest


@dataclass(frozen=True)
class PrometheusMetrics:
    registry: CollectorRegistry
    http_requests_total: Counter
    http_request_duration_seconds: Histogram
    webhook_events_total: Counter
    webhook_signature_rejections_total: Counter
    ingestion_runs_total: Counter
    ingestion_stage_duration_seconds: Histogram
    ingestion_triggers_total: Counter
    celery_tasks_total: Counter


_REGISTRY = CollectorRegistry(auto_describe=True)

METRICS = PrometheusMetrics(
    registry=_REGISTRY,
    http_requests_total=Counter(
        "mantle_http_requests_total",
        "Total HTTP requests by method/route/status",
        labelnames=("method", "route", "status"),
        registry=_REGISTRY,
    ),
    http_request_duration_seconds=Histogram(
        "mantle_http_request_duration_seconds",
        "HTTP request duration in seconds by route/method",
        labelnames=("route", "method"),
        registry=_REGISTRY,
    ),
    webhook_events_total=Counter(
        "mantle_webhook_events_total",
        "GitHub webhook events by event type and outcome",
        labelnames=("event", "outcome"),
        registry=_REGISTRY,
    ),
    webhook_signature_rejections_total=Counter(
        "mantle_webhook_signature_rejections_total",
        "Rejected webhook deliveries by reason",
        labelnames=("reason",),
        registry=_REGISTRY,
    ),
    ingestion_runs_total=Counter(
        "mantle_ingestion_runs_total",
        "Repository ingestion runs by outcome",
        labelnames=("outcome",),
        registry=_REGISTRY,
    ),
    ingestion_stage_duration_seconds=Histogram(
        "mantle_ingestion_stage_duration_seconds",
        "Ingestion stage duration in seconds by stage",
        labelnames=("stage",),
        registry=_REGISTRY,
        buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
    ),
    ingestion_triggers_total=Counter(
        "mantle_ingestion_triggers_total",
        "Ingestion jobs scheduled from reconciliation by outcome",
        labelnames=("outcome",),
        registry=_REGISTRY,
    ),
    celery_tasks_total=Counter(
        "mantle_celery_tasks_total",
        "Total Celery task executions by task and status",
        labelnames=("task", "status"),
        registry=_REGISTRY,
    ),
)


def render_prometheus() -> tuple[bytes, str]:
    return generate_latest(METRICS.registry), CONTENT_TYPE_LATEST


def observe_http_request(*, method: str, route: str, status: str, duration_seconds: float) -> None:
    METRICS.http_requests_total.labels(method=method, route=route, status=status).inc()
    METRICS.http_request_duration_seconds.labels(route=route, method=method).observe(
        duration_seconds
    )

