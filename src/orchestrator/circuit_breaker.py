"""Per-agent circuit breakers consulted before dispatching work to an agent.

A circuit opens once an agent has failed ``failure_threshold`` times and
closes again the first time it is checked at least ``reset_seconds`` after
the most recent failure. There is no background timer: state is evaluated
lazily on ``check``.

Two implementations share the same operations:

- CircuitBreaker: in-process dict, synchronous, rebuilt empty on restart
  (cold start means every agent is healthy). Suitable for a single instance.
- RedisCircuitBreaker: a TTL-bearing failure counter in Redis shared by all
  instances. Each failure refreshes the key expiry, so the counter vanishes
  ``reset_seconds`` after the last failure.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone

import redis.asyncio as aioredis
import structlog

from src.orchestrator.core.monitoring import record_circuit_opened

logger = structlog.get_logger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RESET_SECONDS = 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CircuitBreakerEntry:
    """Failure-tracking state for one agent."""

    failure_count: int = 0
    last_failure_at: datetime | None = None
    is_open: bool = False


class CircuitBreaker:
    """In-memory circuit breaker keyed by agent id.

    Designed for a single-threaded event loop: each read-modify-write on an
    entry runs without an await and is therefore atomic with respect to
    other coroutines in the same process.

    Args:
        failure_threshold: Failures needed to open the circuit.
        reset_seconds: Cool-down after the last failure before the circuit closes.
        clock: Returns the current time (injectable for tests).
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_seconds: int = DEFAULT_RESET_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._reset_seconds = reset_seconds
        self._clock = clock
        self._entries: dict[str, CircuitBreakerEntry] = {}

    def check(self, agent_id: str) -> bool:
        """Return True if the agent may receive work (circuit closed).

        An open circuit whose cool-down has elapsed is closed and its
        failure count zeroed before answering.
        """
        entry = self._entries.get(agent_id)
        if entry is None:
            return True

        if entry.is_open and entry.last_failure_at is not None:
            elapsed = (self._clock() - entry.last_failure_at).total_seconds()
            if elapsed >= self._reset_seconds:
                entry.is_open = False
                entry.failure_count = 0
                logger.info("circuit_breaker_closed", agent_id=agent_id, elapsed_seconds=elapsed)

        return not entry.is_open

    def record_failure(self, agent_id: str) -> None:
        """Count a failed call to the agent, opening the circuit at the threshold."""
        entry = self._entries.setdefault(agent_id, CircuitBreakerEntry())
        entry.failure_count += 1
        entry.last_failure_at = self._clock()

        if entry.failure_count >= self._failure_threshold:
            if not entry.is_open:
                record_circuit_opened()
            entry.is_open = True
            logger.warning(
                "circuit_breaker_opened",
                agent_id=agent_id,
                failures=entry.failure_count,
            )

    def get_entry(self, agent_id: str) -> CircuitBreakerEntry | None:
        """Return a copy of the agent's state without triggering a lazy reset."""
        entry = self._entries.get(agent_id)
        return replace(entry) if entry is not None else None

    def reset(self, agent_id: str | None = None) -> None:
        """Forget one agent's state, or every agent's when agent_id is None."""
        if agent_id is None:
            self._entries.clear()
        else:
            self._entries.pop(agent_id, None)


class RedisCircuitBreaker:
    """Circuit breaker backed by a shared Redis hash per agent.

    Key ``{prefix}:{agent_id}`` holds ``failure_count`` and
    ``last_failure_at``; every failure re-arms its TTL to ``reset_seconds``.
    The circuit is open while the stored count is at or above the threshold.

    Args:
        redis: Async Redis client (decode_responses=True).
        failure_threshold: Failures needed to open the circuit.
        reset_seconds: TTL applied after each failure.
        key_prefix: Namespace for breaker keys.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_seconds: int = DEFAULT_RESET_SECONDS,
        key_prefix: str = "orchestration:circuit",
    ) -> None:
        self._redis = redis
        self._failure_threshold = failure_threshold
        self._reset_seconds = reset_seconds
        self._key_prefix = key_prefix

    def _key(self, agent_id: str) -> str:
        return f"{self._key_prefix}:{agent_id}"

    async def check(self, agent_id: str) -> bool:
        """Return True if the agent may receive work (circuit closed)."""
        raw = await self._redis.hget(self._key(agent_id), "failure_count")
        if raw is None:
            return True
        return int(raw) < self._failure_threshold

    async def record_failure(self, agent_id: str) -> None:
        """Atomically increment the shared failure counter and re-arm its TTL."""
        key = self._key(agent_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hincrby(key, "failure_count", 1)
            pipe.hset(key, "last_failure_at", _utcnow().isoformat())
            pipe.expire(key, self._reset_seconds)
            failure_count, _, _ = await pipe.execute()

        if failure_count >= self._failure_threshold:
            if failure_count == self._failure_threshold:
                record_circuit_opened()
            logger.warning(
                "circuit_breaker_opened",
                agent_id=agent_id,
                failures=failure_count,
                backend="redis",
            )

    async def reset(self, agent_id: str) -> None:
        """Forget the agent's shared failure state."""
        await self._redis.delete(self._key(agent_id))
