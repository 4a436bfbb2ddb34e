"""Prometheus metrics endpoint.

Endpoints:
    GET /metrics - Prometheus scrape endpoint

Metrics Exposed:
    Queue Metrics:
        - relay_queue_rows - rows per queue and status, refreshed each poll
        - relay_queue_oldest_active_age_seconds - age of the oldest PENDING row
        - relay_worker_outcomes_total - published / sent / retried / failed

    Command Metrics:
        - relay_idempotency_decisions_total - proceed / replay / conflict
        - relay_commands_total - executed and rejected commands

    Broker Metrics:
        - relay_broker_publish_total / relay_broker_consumed_total

    Retention Metrics:
        - relay_retention_deleted_total
        - relay_retention_stale_active_rows

Example Prometheus Configuration:
    ```yaml
    scrape_configs:
      - job_name: 'relay-service'
        static_configs:
          - targets: ['localhost:8000']
        metrics_path: '/metrics'
        scrape_interval: 15s
    ```
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from relay_service.infra.metrics.prometheus import REGISTRY

router = APIRouter(tags=["observability"])


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Metrics in Prometheus text exposition format",
    response_class=Response,
    include_in_schema=False,
)
async def metrics() -> Response:
    """Return all metrics from the service registry."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
