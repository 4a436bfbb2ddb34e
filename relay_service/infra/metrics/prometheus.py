"""Prometheus metrics for the command and delivery pipeline.

Queue depth and oldest-row age are gauges set from database counts at poll
time, so every replica exports the same truth instead of its own in-process
tally. Counters only track what this process did.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry so tests and the /metrics endpoint see only our collectors
REGISTRY = CollectorRegistry()

# Covers poll batches from 1ms to 30s
BATCH_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
)

# ============================================================================
# Leased queues (outbox, notifications)
# ============================================================================

queue_rows = Gauge(
    "relay_queue_rows",
    "Rows per status in a leased queue, read from the database",
    ["queue", "status"],
    registry=REGISTRY,
)

queue_oldest_active_age_seconds = Gauge(
    "relay_queue_oldest_active_age_seconds",
    "Age of the oldest PENDING or in-progress row, read from the database",
    ["queue"],
    registry=REGISTRY,
)

worker_outcomes_total = Counter(
    "relay_worker_outcomes_total",
    "Per-row outcomes recorded by leased workers",
    ["queue", "outcome"],
    registry=REGISTRY,
)

worker_poll_errors_total = Counter(
    "relay_worker_poll_errors_total",
    "Poll cycles that failed before or while processing a batch",
    ["queue"],
    registry=REGISTRY,
)

worker_batch_duration_seconds = Histogram(
    "relay_worker_batch_duration_seconds",
    "Time to process one leased batch",
    ["queue"],
    buckets=BATCH_LATENCY_BUCKETS,
    registry=REGISTRY,
)

# ============================================================================
# Commands and idempotency
# ============================================================================

idempotency_decisions_total = Counter(
    "relay_idempotency_decisions_total",
    "Idempotency reservation outcomes",
    ["decision"],
    registry=REGISTRY,
)

commands_total = Counter(
    "relay_commands_total",
    "Executed entitlement commands by action and response status",
    ["action", "status"],
    registry=REGISTRY,
)

# ============================================================================
# Broker
# ============================================================================

broker_publish_total = Counter(
    "relay_broker_publish_total",
    "Outbox events handed to JetStream",
    ["result"],
    registry=REGISTRY,
)

broker_consumed_total = Counter(
    "relay_broker_consumed_total",
    "Consumed JetStream messages by acknowledgement",
    ["ack"],
    registry=REGISTRY,
)

consumer_advisories_total = Counter(
    "relay_consumer_advisories_total",
    "JetStream consumer advisories by kind and result (recorded, duplicate, dropped, retry)",
    ["kind", "result"],
    registry=REGISTRY,
)

# ============================================================================
# Retention
# ============================================================================

retention_deleted_total = Counter(
    "relay_retention_deleted_total",
    "Rows deleted by the retention sweeper",
    ["table"],
    registry=REGISTRY,
)

retention_stale_active_rows = Gauge(
    "relay_retention_stale_active_rows",
    "Active rows older than the retention horizon at the last sweep",
    ["table"],
    registry=REGISTRY,
)
