# SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the bridge runtime."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

MESSAGES_RECEIVED = Counter(
    "sensorbridge_messages_received_total",
    "Messages delivered by the broker subscriber",
)

MESSAGES_REJECTED = Counter(
    "sensorbridge_messages_rejected_total",
    "Messages discarded before reaching the write sink",
    labelnames=("reason",),
)

MESSAGES_COMPLETED = Counter(
    "sensorbridge_messages_completed_total",
    "Messages whose records all reached a terminal state",
)

BACKPRESSURE_WAITS = Counter(
    "sensorbridge_backpressure_waits_total",
    "Times intake was suspended because the write queue was full",
)

RECORDS_WRITTEN = Counter(
    "sensorbridge_records_written_total",
    "Records acknowledged by the store",
    labelnames=("measurement",),
)

RECORDS_DROPPED = Counter(
    "sensorbridge_records_dropped_total",
    "Records abandoned after a fatal error, exhausted retries or shutdown",
    labelnames=("reason",),
)

WRITE_RETRIES = Counter(
    "sensorbridge_write_retries_total",
    "Write attempts rescheduled after a retryable failure",
)

WRITE_LATENCY = Histogram(
    "sensorbridge_write_latency_ms",
    "Duration of single store write attempts (milliseconds)",
    buckets=(1, 2, 5, 10, 20, 50, 100, 200, 500, 1000, 2000, 5000),
)

QUEUE_DEPTH = Gauge(
    "sensorbridge_queue_depth",
    "Records waiting in the write queue",
)
