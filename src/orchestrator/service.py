"""Library facade exposing the orchestration core to an outer API layer.

OrchestrationService wires the capability store, selector, session manager,
communication router and circuit breaker together and exposes one method
per external contract. create_orchestration_service() builds the default
wiring from Settings; get_orchestration_service() returns a process-wide
instance, and orchestration_lifespan() brackets it with store setup and teardown.
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog

from src.orchestrator.capabilities import CapabilityStoreAdapter
from src.orchestrator.circuit_breaker import CircuitBreaker, RedisCircuitBreaker
from src.orchestrator.communication import CommunicationRouter
from src.orchestrator.config import CircuitBreakerBackend, Settings, get_settings
from src.orchestrator.core.database import close_db, get_session, init_db
from src.orchestrator.core.logging_config import configure_structlog
from src.orchestrator.core.monitoring import track_operation
from src.orchestrator.core.redis import close_redis, get_redis_pool
from src.orchestrator.schemas import (
    AgentRelationship,
    AgentSelectionCriteria,
    CreateSessionRequest,
    CreateSessionResponse,
    ListSessionsQuery,
    ListSessionsResponse,
    MessageResponse,
    OrchestrationSession,
    SelectedAgent,
    SendMessageRequest,
    SessionUpdateRequest,
)
from src.orchestrator.selection import AgentSelector
from src.orchestrator.sessions.manager import SessionManager
from src.orchestrator.sessions.repository import OrchestrationRepository

logger = structlog.get_logger(__name__)


class OrchestrationService:
    """Entry point for session, selection, messaging and agent-health calls.

    Args:
        sessions: Session lifecycle manager.
        selector: Agent selector (also used by the session manager).
        router: Inter-agent message router.
        circuit_breaker: In-memory or Redis-backed breaker.
    """

    def __init__(
        self,
        sessions: SessionManager,
        selector: AgentSelector,
        router: CommunicationRouter,
        circuit_breaker: CircuitBreaker | RedisCircuitBreaker,
    ) -> None:
        self._sessions = sessions
        self._selector = selector
        self._router = router
        self._circuit_breaker = circuit_breaker

    # ── Sessions ────────────────────────────────────────────────────────────

    async def create_session(self, request: CreateSessionRequest) -> CreateSessionResponse:
        return await self._sessions.create_session(request)

    async def update_session(
        self, session_id: str, updates: SessionUpdateRequest
    ) -> OrchestrationSession:
        return await self._sessions.update_session(session_id, updates)

    async def get_session(self, session_id: str) -> OrchestrationSession:
        return await self._sessions.get_session(session_id)

    async def list_sessions(self, query: ListSessionsQuery) -> ListSessionsResponse:
        return await self._sessions.list_sessions(query)

    async def get_session_relationships(self, session_id: str) -> list[AgentRelationship]:
        return await self._sessions.get_session_relationships(session_id)

    # ── Selection & Messaging ───────────────────────────────────────────────

    async def select_agents(self, criteria: AgentSelectionCriteria) -> list[SelectedAgent]:
        async with track_operation("select_agents"):
            return await self._selector.select_agents(criteria)

    async def send_message(self, request: SendMessageRequest) -> MessageResponse:
        return await self._router.send_message(request)

    # ── Agent Health ────────────────────────────────────────────────────────

    async def check_circuit_breaker(self, agent_id: str) -> bool:
        """True when the agent may receive work."""
        result = self._circuit_breaker.check(agent_id)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def record_agent_failure(self, agent_id: str) -> None:
        """Record a failed call to the agent."""
        result = self._circuit_breaker.record_failure(agent_id)
        if inspect.isawaitable(result):
            await result


def create_circuit_breaker(settings: Settings) -> CircuitBreaker | RedisCircuitBreaker:
    """Build the breaker selected by CIRCUIT_BREAKER_BACKEND."""
    if settings.CIRCUIT_BREAKER_BACKEND == CircuitBreakerBackend.redis:
        return RedisCircuitBreaker(
            get_redis_pool(),
            failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
            reset_seconds=settings.CIRCUIT_BREAKER_RESET_SECONDS,
            key_prefix=settings.CIRCUIT_BREAKER_KEY_PREFIX,
        )
    return CircuitBreaker(
        failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
        reset_seconds=settings.CIRCUIT_BREAKER_RESET_SECONDS,
    )


def create_orchestration_service(
    settings: Settings | None = None,
    session_factory=get_session,
) -> OrchestrationService:
    """Wire the orchestration core against the configured store."""
    settings = settings or get_settings()

    repository = OrchestrationRepository(session_factory)
    selector = AgentSelector(
        CapabilityStoreAdapter.from_session_factory(session_factory),
        swarm_max_agents=settings.SWARM_MAX_AGENTS,
    )
    sessions = SessionManager(
        repository,
        selector,
        base_duration_ms=settings.BASE_DURATION_MS,
        default_page_limit=settings.DEFAULT_PAGE_LIMIT,
        max_page_limit=settings.MAX_PAGE_LIMIT,
    )
    breaker = create_circuit_breaker(settings)

    logger.info(
        "orchestration_service_initialized",
        circuit_breaker_backend=settings.CIRCUIT_BREAKER_BACKEND.value,
        swarm_max_agents=settings.SWARM_MAX_AGENTS,
    )
    return OrchestrationService(sessions, selector, CommunicationRouter(repository), breaker)


# ── Module-level singleton ───────────────────────────────────────────────────

_service: OrchestrationService | None = None


def get_orchestration_service() -> OrchestrationService:
    """Get the global OrchestrationService, creating it on first call."""
    global _service
    if _service is None:
        _service = create_orchestration_service()
    return _service


def reset_orchestration_service() -> None:
    """Drop the global instance (circuit breaker state included)."""
    global _service
    _service = None


# ── Lifecycle ────────────────────────────────────────────────────────────────


@asynccontextmanager
async def orchestration_lifespan(
    create_tables: bool = False,
) -> AsyncGenerator[OrchestrationService, None]:
    """Configure logging, open the store and yield the global service.

    Intended to be nested inside a host application's own lifespan. Engine,
    Redis pool and the global service are released on exit.

    Args:
        create_tables: Run init_db() (development and tests only).
    """
    configure_structlog()
    if create_tables:
        await init_db()

    service = get_orchestration_service()
    logger.info("orchestration_started", create_tables=create_tables)
    try:
        yield service
    finally:
        reset_orchestration_service()
        await close_redis()
        await close_db()
        logger.info("orchestration_stopped")
