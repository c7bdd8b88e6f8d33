"""Session manager: create, update, read and list orchestration sessions.

Session creation is all-or-nothing: the session row and, for hierarchical
sessions, its supervisor/worker edges are written in one transaction. If
any step raises, nothing is persisted.

Status lifecycle (VALID_TRANSITIONS):
    pending -> active | completed | failed | cancelled
    active  -> completed | failed | cancelled
    completed, failed, cancelled are terminal.

Updates are last-write-wins; there is no version column.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog

from src.orchestrator.core.monitoring import track_operation
from src.orchestrator.errors import (
    InvalidStatusTransitionError,
    OrchestrationError,
    OrchestrationErrorCode,
)
from src.orchestrator.schemas import (
    AgentRelationship,
    CreateSessionRequest,
    CreateSessionResponse,
    ListSessionsQuery,
    ListSessionsResponse,
    OrchestrationSession,
    OrchestrationType,
    SelectedAgent,
    SessionEstimate,
    SessionStatus,
    SessionUpdateRequest,
)
from src.orchestrator.selection import AgentSelector, calculate_agent_cost
from src.orchestrator.sessions.relationships import create_agent_relationships
from src.orchestrator.sessions.repository import OrchestrationRepository

logger = structlog.get_logger(__name__)

# ── Lifecycle Rules ─────────────────────────────────────────────────────────

VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.PENDING: {
        SessionStatus.ACTIVE,
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.CANCELLED,
    },
    SessionStatus.ACTIVE: {
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.CANCELLED,
    },
    SessionStatus.COMPLETED: set(),  # Terminal
    SessionStatus.FAILED: set(),  # Terminal
    SessionStatus.CANCELLED: set(),  # Terminal
}


def validate_status_transition(
    session_id: str, from_status: SessionStatus, to_status: SessionStatus
) -> None:
    """Validate that a session status transition is allowed.

    Raises:
        InvalidStatusTransitionError: If the transition is not allowed.
    """
    if from_status == to_status:
        return  # Same status is always valid (no-op)

    if to_status not in VALID_TRANSITIONS.get(from_status, set()):
        raise InvalidStatusTransitionError(session_id, from_status.value, to_status.value)


# ── Estimation ──────────────────────────────────────────────────────────────

DEFAULT_BASE_DURATION_MS = 60_000

# Wider topologies are assumed to parallelize more of the work.
DURATION_MULTIPLIERS: dict[OrchestrationType, float] = {
    OrchestrationType.SOLO: 1.0,
    OrchestrationType.PAIR: 0.7,
    OrchestrationType.HIERARCHICAL: 0.5,
    OrchestrationType.SWARM: 0.3,
}


def calculate_session_estimate(
    agents: Sequence[SelectedAgent],
    orchestration_type: OrchestrationType,
    base_duration_ms: int = DEFAULT_BASE_DURATION_MS,
) -> SessionEstimate:
    """Estimate session cost (sum of agent costs) and duration (base x topology factor)."""
    return SessionEstimate(
        cost=sum(calculate_agent_cost(a) for a in agents),
        duration_ms=base_duration_ms * DURATION_MULTIPLIERS[orchestration_type],
    )


# ── Manager ─────────────────────────────────────────────────────────────────


class SessionManager:
    """Owns the session lifecycle and the transactional creation boundary.

    Args:
        repository: Persistence for sessions and relationships.
        selector: Chooses participants when selection criteria are supplied.
        base_duration_ms: Base duration used by the estimate.
        default_page_limit: Page size when a listing does not specify one.
        max_page_limit: Upper bound on requested page size.
    """

    def __init__(
        self,
        repository: OrchestrationRepository,
        selector: AgentSelector,
        base_duration_ms: int = DEFAULT_BASE_DURATION_MS,
        default_page_limit: int = 20,
        max_page_limit: int = 100,
    ) -> None:
        self._repository = repository
        self._selector = selector
        self._base_duration_ms = base_duration_ms
        self._default_page_limit = default_page_limit
        self._max_page_limit = max_page_limit

    async def create_session(self, request: CreateSessionRequest) -> CreateSessionResponse:
        """Select participants and persist a new session.

        Args:
            request: Topology, optional selection criteria, metadata, auto_start.

        Returns:
            The persisted session, selected agents, and the cost/duration estimate.

        Raises:
            OrchestrationError: AGENT_NOT_AVAILABLE when criteria were given
                but no agent qualified. Store failures propagate after rollback.
        """
        async with track_operation("create_session"):
            selected: list[SelectedAgent] = []
            criteria = request.agent_selection_criteria
            if criteria is not None:
                if criteria.orchestration_type is None:
                    criteria = criteria.model_copy(
                        update={"orchestration_type": request.orchestration_type}
                    )
                selected = await self._selector.select_agents(criteria)
                if not selected:
                    raise OrchestrationError(
                        OrchestrationErrorCode.AGENT_NOT_AVAILABLE,
                        "No agents match the selection criteria",
                        details={
                            "required_capabilities": [
                                r.skill_id for r in criteria.required_capabilities
                            ],
                        },
                    )

            estimate = calculate_session_estimate(
                selected, request.orchestration_type, self._base_duration_ms
            )
            status = SessionStatus.ACTIVE if request.auto_start else SessionStatus.PENDING

            async with self._repository.transaction() as db:
                session = await self._repository.insert_session(
                    db,
                    orchestration_type=request.orchestration_type,
                    primary_agent_id=selected[0].agent_id if selected else None,
                    session_metadata=request.session_metadata,
                    status=status,
                )
                if (
                    request.orchestration_type == OrchestrationType.HIERARCHICAL
                    and len(selected) > 1
                ):
                    await create_agent_relationships(self._repository, db, session.id, selected)

            logger.info(
                "orchestration_session_created",
                session_id=session.id,
                orchestration_type=request.orchestration_type.value,
                status=status.value,
                agent_count=len(selected),
            )

            return CreateSessionResponse(
                session=session,
                selected_agents=selected,
                estimated_cost=estimate.cost,
                estimated_duration=estimate.duration_ms,
            )

    async def update_session(
        self, session_id: str, updates: SessionUpdateRequest
    ) -> OrchestrationSession:
        """Apply a partial update touching only the fields set in ``updates``.

        Raises:
            OrchestrationError: SESSION_NOT_FOUND if no session has this id.
            InvalidStatusTransitionError: If the status change is not allowed.
        """
        async with track_operation("update_session"):
            values: dict[str, Any] = {}
            if updates.status is not None:
                values["status"] = updates.status.value
            if updates.performance_metrics is not None:
                values["performance_metrics"] = updates.performance_metrics.model_dump(
                    mode="json"
                )
            if updates.ended_at is not None:
                values["ended_at"] = updates.ended_at

            async with self._repository.transaction() as db:
                current = await self._repository.get_session(db, session_id)
                if current is None:
                    raise _session_not_found(session_id)
                if not values:
                    return current
                if updates.status is not None:
                    validate_status_transition(session_id, current.status, updates.status)

                updated = await self._repository.update_session(db, session_id, values)
                if updated is None:
                    raise _session_not_found(session_id)

            logger.info(
                "orchestration_session_updated",
                session_id=session_id,
                fields=sorted(values),
                status=updated.status.value,
            )
            return updated

    async def get_session(self, session_id: str) -> OrchestrationSession:
        """Load one session.

        Raises:
            OrchestrationError: SESSION_NOT_FOUND if no session has this id.
        """
        async with self._repository.session() as db:
            session = await self._repository.get_session(db, session_id)
        if session is None:
            raise _session_not_found(session_id)
        return session

    async def list_sessions(self, query: ListSessionsQuery) -> ListSessionsResponse:
        """List sessions newest first with cursor pagination.

        One extra row is fetched to detect a further page; when present, the
        created_at of the last returned session is the next cursor.
        """
        async with track_operation("list_sessions"):
            limit = min(query.limit or self._default_page_limit, self._max_page_limit)
            async with self._repository.session() as db:
                rows = await self._repository.list_sessions(db, query, limit)

            sessions = rows[:limit]
            has_more = len(rows) > limit
            next_cursor = sessions[-1].created_at if has_more and sessions else None
            return ListSessionsResponse(sessions=sessions, next_cursor=next_cursor)

    async def get_session_relationships(self, session_id: str) -> list[AgentRelationship]:
        """Supervisor/worker edges of a session, oldest first."""
        async with self._repository.session() as db:
            return await self._repository.list_relationships(db, session_id)


def _session_not_found(session_id: str) -> OrchestrationError:
    return OrchestrationError(
        OrchestrationErrorCode.SESSION_NOT_FOUND,
        f"Session {session_id} not found",
        session_id=session_id,
    )
