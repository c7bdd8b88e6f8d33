"""Prometheus metrics for orchestration operations.

Provides:
- track_operation(): Async context manager timing a public operation
- record_message(): Counter for accepted inter-agent messages
- record_circuit_opened(): Counter for circuit breaker trips

Metric recording never affects the result of the operation being measured:
any exception raised by the metrics client is logged and dropped.
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from prometheus_client import Counter, Histogram

logger = structlog.get_logger(__name__)

# ── Operation Metrics ────────────────────────────────────────────────────────

orchestration_operations_total = Counter(
    "orchestration_operations_total",
    "Total orchestration operations",
    ["operation", "status"],
)

orchestration_operation_duration_seconds = Histogram(
    "orchestration_operation_duration_seconds",
    "Orchestration operation duration in seconds",
    ["operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# ── Messaging / Health Metrics ───────────────────────────────────────────────

orchestration_messages_total = Counter(
    "orchestration_messages_total",
    "Inter-agent messages accepted by the communication router",
    ["message_type"],
)

orchestration_circuit_breaker_opened_total = Counter(
    "orchestration_circuit_breaker_opened_total",
    "Number of times an agent circuit breaker transitioned to open",
)


@asynccontextmanager
async def track_operation(operation: str) -> AsyncGenerator[None, None]:
    """Time an orchestration operation and count its outcome.

    Usage:
        async with track_operation("create_session"):
            ...
    """
    start_time = time.perf_counter()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time
        try:
            orchestration_operations_total.labels(
                operation=operation,
                status=status,
            ).inc()
            orchestration_operation_duration_seconds.labels(
                operation=operation,
            ).observe(duration)
        except Exception:
            logger.debug("metrics_record_failed", operation=operation, exc_info=True)


def record_message(message_type: str) -> None:
    """Count an accepted message by type."""
    try:
        orchestration_messages_total.labels(message_type=message_type).inc()
    except Exception:
        logger.debug("metrics_record_failed", metric="messages", exc_info=True)


def record_circuit_opened() -> None:
    """Count a circuit breaker trip."""
    try:
        orchestration_circuit_breaker_opened_total.inc()
    except Exception:
        logger.debug("metrics_record_failed", metric="circuit_breaker", exc_info=True)
