"""Supervisor/worker edge derivation for hierarchical sessions."""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.orchestrator.schemas import AgentRole, RelationshipType, SelectedAgent
from src.orchestrator.sessions.repository import OrchestrationRepository

logger = structlog.get_logger(__name__)


def plan_relationships(
    agents: Sequence[SelectedAgent],
) -> tuple[SelectedAgent | None, list[SelectedAgent]]:
    """Split selected agents into the supervisor and its workers."""
    supervisor = next((a for a in agents if a.role == AgentRole.SUPERVISOR), None)
    workers = [a for a in agents if a.role == AgentRole.WORKER]
    return supervisor, workers


async def create_agent_relationships(
    repository: OrchestrationRepository,
    db: AsyncSession,
    session_id: str,
    agents: Sequence[SelectedAgent],
) -> int:
    """Persist one supervisor edge per worker inside the caller's transaction.

    Does nothing when there is no supervisor or no worker.

    Returns:
        Number of edges written.
    """
    supervisor, workers = plan_relationships(agents)
    if supervisor is None or not workers:
        return 0

    await repository.insert_relationships(
        db,
        session_id,
        supervisor.agent_id,
        [w.agent_id for w in workers],
        RelationshipType.SUPERVISOR,
    )
    logger.debug(
        "agent_relationships_created",
        session_id=session_id,
        supervisor_agent_id=supervisor.agent_id,
        worker_count=len(workers),
    )
    return len(workers)
