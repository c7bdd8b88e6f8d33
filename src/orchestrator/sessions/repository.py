"""Orchestration repository -- async persistence for sessions, edges and messages.

Provides OrchestrationRepository with the session_factory callable pattern.
Statement-level methods take the AsyncSession to run on as their first
argument so callers can group several writes in one transaction:

    async with repository.transaction() as db:
        session = await repository.insert_session(db, ...)
        await repository.insert_relationships(db, session.id, ...)

transaction() commits when the block exits normally and rolls back when it
raises; session() is a plain read scope.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import Select, false, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from src.orchestrator.models.orchestration import (
    AgentCommunicationModel,
    AgentRegistryModel,
    AgentRelationshipModel,
    AgentSessionModel,
)
from src.orchestrator.schemas import (
    AgentCommunication,
    AgentRelationship,
    ListSessionsQuery,
    MessageType,
    OrchestrationSession,
    OrchestrationType,
    PerformanceMetrics,
    RelationshipType,
    SessionStatus,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def parse_uuid(value: str) -> uuid.UUID | None:
    """Parse an identifier, returning None when it is not a UUID."""
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None


def _model_to_session(model: AgentSessionModel) -> OrchestrationSession:
    """Convert AgentSessionModel to OrchestrationSession schema."""
    metrics = (
        PerformanceMetrics.model_validate(model.performance_metrics)
        if model.performance_metrics
        else None
    )
    return OrchestrationSession(
        id=str(model.id),
        orchestration_type=OrchestrationType(model.orchestration_type),
        primary_agent_id=_optional_str(model.primary_agent_id),
        session_metadata=model.session_metadata or {},
        status=SessionStatus(model.status),
        started_at=model.started_at,
        ended_at=model.ended_at,
        performance_metrics=metrics,
        created_at=model.created_at,
    )


def _model_to_relationship(
    model: AgentRelationshipModel,
    supervisor_name: str | None = None,
    worker_name: str | None = None,
) -> AgentRelationship:
    """Convert AgentRelationshipModel to AgentRelationship schema."""
    return AgentRelationship(
        id=str(model.id),
        session_id=str(model.session_id),
        supervisor_agent_id=str(model.supervisor_agent_id),
        worker_agent_id=str(model.worker_agent_id),
        relationship_type=RelationshipType(model.relationship_type),
        created_at=model.created_at,
        supervisor_name=supervisor_name,
        worker_name=worker_name,
    )


def _model_to_message(model: AgentCommunicationModel) -> AgentCommunication:
    """Convert AgentCommunicationModel to AgentCommunication schema."""
    return AgentCommunication(
        id=str(model.id),
        session_id=str(model.session_id),
        from_agent_id=str(model.from_agent_id),
        to_agent_id=_optional_str(model.to_agent_id),
        message_type=MessageType(model.message_type),
        payload=model.payload or {},
        acknowledged_at=model.acknowledged_at,
        processed_at=model.processed_at,
        created_at=model.created_at,
    )


# ── Statement Builders ──────────────────────────────────────────────────────


def build_list_sessions_statement(query: ListSessionsQuery, limit: int) -> Select:
    """Build the filtered, cursor-paginated session listing.

    Fetches ``limit + 1`` rows so the caller can detect a further page.
    """
    conditions = []
    if query.orchestration_type is not None:
        conditions.append(AgentSessionModel.orchestration_type == query.orchestration_type.value)
    if query.status is not None:
        conditions.append(AgentSessionModel.status == query.status.value)
    if query.primary_agent_id is not None:
        agent_id = parse_uuid(query.primary_agent_id)
        conditions.append(
            AgentSessionModel.primary_agent_id == agent_id if agent_id is not None else false()
        )
    if query.started_after is not None:
        conditions.append(AgentSessionModel.started_at >= query.started_after)
    if query.started_before is not None:
        conditions.append(AgentSessionModel.started_at <= query.started_before)
    if query.cursor is not None:
        conditions.append(AgentSessionModel.created_at < query.cursor)

    stmt = select(AgentSessionModel)
    if conditions:
        stmt = stmt.where(*conditions)
    return stmt.order_by(AgentSessionModel.created_at.desc()).limit(limit + 1)


def build_session_relationships_statement(session_id: uuid.UUID) -> Select:
    """Relationships of a session joined with both agents' names, oldest first."""
    supervisor = aliased(AgentRegistryModel)
    worker = aliased(AgentRegistryModel)
    return (
        select(AgentRelationshipModel, supervisor.name, worker.name)
        .join(supervisor, supervisor.id == AgentRelationshipModel.supervisor_agent_id)
        .join(worker, worker.id == AgentRelationshipModel.worker_agent_id)
        .where(AgentRelationshipModel.session_id == session_id)
        .order_by(AgentRelationshipModel.created_at)
    )


# ── Repository ──────────────────────────────────────────────────────────────


class OrchestrationRepository:
    """Async persistence for orchestration sessions, relationships and messages.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Scopes ──────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read scope: yields a session without an explicit transaction."""
        sessions = self._session_factory()
        db = await anext(sessions)
        try:
            yield db
        finally:
            await sessions.aclose()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Transaction scope: commit on success, roll back on any exception."""
        async with self.session() as db:
            async with db.begin():
                yield db

    # ── Sessions ────────────────────────────────────────────────────────────

    async def insert_session(
        self,
        db: AsyncSession,
        *,
        orchestration_type: OrchestrationType,
        primary_agent_id: str | None,
        session_metadata: dict[str, Any],
        status: SessionStatus,
    ) -> OrchestrationSession:
        """Insert a session row and return it with server defaults applied."""
        stmt = (
            insert(AgentSessionModel)
            .values(
                orchestration_type=orchestration_type.value,
                primary_agent_id=uuid.UUID(primary_agent_id) if primary_agent_id else None,
                session_metadata=session_metadata,
                status=status.value,
            )
            .returning(AgentSessionModel)
        )
        result = await db.execute(stmt)
        return _model_to_session(result.scalar_one())

    async def get_session(
        self, db: AsyncSession, session_id: str
    ) -> OrchestrationSession | None:
        """Load a session by id; None when missing or not a valid id."""
        parsed = parse_uuid(session_id)
        if parsed is None:
            return None
        result = await db.execute(
            select(AgentSessionModel).where(AgentSessionModel.id == parsed)
        )
        model = result.scalar_one_or_none()
        return _model_to_session(model) if model is not None else None

    async def update_session(
        self, db: AsyncSession, session_id: str, values: dict[str, Any]
    ) -> OrchestrationSession | None:
        """Apply a partial update; None when no row matched.

        Args:
            db: Session to execute on.
            session_id: Session UUID string.
            values: Column name -> new value, already in storage form.
        """
        parsed = parse_uuid(session_id)
        if parsed is None:
            return None
        stmt = (
            update(AgentSessionModel)
            .where(AgentSessionModel.id == parsed)
            .values(**values)
            .returning(AgentSessionModel)
        )
        result = await db.execute(stmt)
        model = result.scalar_one_or_none()
        return _model_to_session(model) if model is not None else None

    async def list_sessions(
        self, db: AsyncSession, query: ListSessionsQuery, limit: int
    ) -> list[OrchestrationSession]:
        """Return up to ``limit + 1`` sessions, newest first."""
        result = await db.execute(build_list_sessions_statement(query, limit))
        return [_model_to_session(m) for m in result.scalars().all()]

    # ── Relationships ───────────────────────────────────────────────────────

    async def insert_relationships(
        self,
        db: AsyncSession,
        session_id: str,
        supervisor_agent_id: str,
        worker_agent_ids: Sequence[str],
        relationship_type: RelationshipType = RelationshipType.SUPERVISOR,
    ) -> None:
        """Insert one edge per worker, all pointing at the same supervisor."""
        if not worker_agent_ids:
            return
        rows = [
            {
                "session_id": uuid.UUID(session_id),
                "supervisor_agent_id": uuid.UUID(supervisor_agent_id),
                "worker_agent_id": uuid.UUID(worker_id),
                "relationship_type": relationship_type.value,
            }
            for worker_id in worker_agent_ids
        ]
        await db.execute(insert(AgentRelationshipModel), rows)

    async def list_relationships(
        self, db: AsyncSession, session_id: str
    ) -> list[AgentRelationship]:
        """Relationships for a session, oldest first, with agent names."""
        parsed = parse_uuid(session_id)
        if parsed is None:
            return []
        result = await db.execute(build_session_relationships_statement(parsed))
        return [
            _model_to_relationship(model, supervisor_name, worker_name)
            for model, supervisor_name, worker_name in result.all()
        ]

    # ── Communications ──────────────────────────────────────────────────────

    async def insert_message(
        self,
        db: AsyncSession,
        *,
        session_id: str,
        from_agent_id: str,
        to_agent_id: str | None,
        message_type: MessageType,
        payload: dict[str, Any],
    ) -> AgentCommunication:
        """Insert a message row (to_agent_id None = broadcast)."""
        stmt = (
            insert(AgentCommunicationModel)
            .values(
                session_id=uuid.UUID(session_id),
                from_agent_id=uuid.UUID(from_agent_id),
                to_agent_id=uuid.UUID(to_agent_id) if to_agent_id else None,
                message_type=message_type.value,
                payload=payload,
            )
            .returning(AgentCommunicationModel)
        )
        result = await db.execute(stmt)
        return _model_to_message(result.scalar_one())

    async def acknowledge_message(
        self, db: AsyncSession, message_id: str, acknowledged_at: datetime | None = None
    ) -> None:
        """Stamp acknowledged_at on a message."""
        await db.execute(
            update(AgentCommunicationModel)
            .where(AgentCommunicationModel.id == uuid.UUID(message_id))
            .values(acknowledged_at=acknowledged_at or datetime.now(timezone.utc))
        )
