"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from typing import Literal, Mapping

from flask import Flask, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

_chunk_counter = Counter(
    "fundops_importer_chunks_total",
    "Import chunks submitted to the backing store by entity and status.",
    ["entity", "status"],
)
_chunk_duration = Histogram(
    "fundops_importer_chunk_duration_seconds",
    "Duration of a single chunk submission in seconds.",
    ["entity"],
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)
_row_action_counter = Counter(
    "fundops_importer_rows_total",
    "Rows reported by the backing store by entity and action.",
    ["entity", "action"],
)
_validation_status_counter = Counter(
    "fundops_importer_validation_rows_total",
    "Normalized rows by entity and validation status.",
    ["entity", "status"],
)
_run_counter = Counter(
    "fundops_importer_runs_total",
    "Completed import runs by entity and outcome.",
    ["entity", "outcome"],
)


def record_import_chunk(
    *,
    entity: str,
    status: Literal["success", "failure"],
    duration_seconds: float,
) -> None:
    """Capture metrics for one chunk submission."""

    _chunk_counter.labels(entity=entity, status=status).inc()
    _chunk_duration.labels(entity=entity).observe(duration_seconds)


def record_row_actions(entity: str, counts: Mapping[str, int]) -> None:
    """Increment per-action row counters (inserted/updated/skipped)."""

    for action, count in counts.items():
        if count:
            _row_action_counter.labels(entity=entity, action=action).inc(count)


def record_validation_statuses(entity: str, status_counts: Mapping[str, int]) -> None:
    """Increment validation status counters after a summary is accepted."""

    for status, count in status_counts.items():
        if count:
            _validation_status_counter.labels(entity=entity, status=status).inc(count)


def record_import_run(entity: str, outcome: Literal["completed", "failed", "cancelled"]) -> None:
    _run_counter.labels(entity=entity, outcome=outcome).inc()


def register_metrics_endpoint(app: Flask) -> None:
    """Expose the Prometheus registry at ``METRICS_ENDPOINT`` when monitoring is enabled."""

    if not app.config.get("MONITORING_ENABLED", False):
        return
    if "importer_metrics" in app.view_functions:
        return
    if getattr(app, "_got_first_request", False):
        app.logger.warning("Metrics endpoint registration skipped because the app has already handled a request.")
        return
    path = app.config.get("METRICS_ENDPOINT", "/metrics")

    def importer_metrics():
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    app.add_url_rule(path, endpoint="importer_metrics", view_func=importer_metrics)
