"""Shared fixtures for orchestration core tests.

Provides:
- InMemoryOrchestrationRepository: repository double with snapshot/rollback
  transactions, so session-creation atomicity can be checked without Postgres
- StubCapabilityStore: fixed candidate list standing in for the capability adapter
"""

from __future__ import annotations

import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from src.orchestrator.schemas import (
    AgentCommunication,
    AgentRelationship,
    CapabilityRequirement,
    ListSessionsQuery,
    MessageType,
    OrchestrationSession,
    OrchestrationType,
    RelationshipType,
    SelectedAgent,
    SessionStatus,
)
from src.orchestrator.selection import AgentSelector
from src.orchestrator.sessions.manager import SessionManager

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


# ── Capability Store Double ──────────────────────────────────────────────────


class StubCapabilityStore:
    """Returns a fixed candidate list and records every lookup."""

    def __init__(self, agents: list[SelectedAgent] | None = None) -> None:
        self.agents = agents or []
        self.calls: list[list[str]] = []

    async def find_agents(self, reqs: list[CapabilityRequirement]) -> list[SelectedAgent]:
        self.calls.append([r.skill_id for r in reqs])
        return list(self.agents)


# ── Repository Double ────────────────────────────────────────────────────────


class InMemoryOrchestrationRepository:
    """In-memory stand-in for OrchestrationRepository.

    transaction() snapshots all tables on entry and restores them if the
    block raises. Set ``fail_on`` to a method name to make that method raise.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, OrchestrationSession] = {}
        self.relationships: list[AgentRelationship] = []
        self.messages: dict[str, AgentCommunication] = {}
        self.agent_names: dict[str, str] = {}
        self.fail_on: str | None = None
        self.commits = 0
        self.rollbacks = 0
        self._tick = 0

    def _now(self) -> datetime:
        self._tick += 1
        return BASE_TIME + timedelta(seconds=self._tick)

    def _maybe_fail(self, name: str) -> None:
        if self.fail_on == name:
            raise RuntimeError(f"simulated store failure in {name}")

    @asynccontextmanager
    async def session(self):
        yield self

    @asynccontextmanager
    async def transaction(self):
        snapshot = (
            copy.deepcopy(self.sessions),
            copy.deepcopy(self.relationships),
            copy.deepcopy(self.messages),
        )
        try:
            yield self
        except BaseException:
            self.sessions, self.relationships, self.messages = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1

    # ── Sessions ──

    async def insert_session(
        self,
        db: Any,
        *,
        orchestration_type: OrchestrationType,
        primary_agent_id: str | None,
        session_metadata: dict[str, Any],
        status: SessionStatus,
    ) -> OrchestrationSession:
        self._maybe_fail("insert_session")
        now = self._now()
        session = OrchestrationSession(
            id=str(uuid.uuid4()),
            orchestration_type=orchestration_type,
            primary_agent_id=primary_agent_id,
            session_metadata=session_metadata,
            status=status,
            started_at=now,
            created_at=now,
        )
        self.sessions[session.id] = session
        return session

    async def get_session(self, db: Any, session_id: str) -> OrchestrationSession | None:
        return self.sessions.get(session_id)

    async def update_session(
        self, db: Any, session_id: str, values: dict[str, Any]
    ) -> OrchestrationSession | None:
        self._maybe_fail("update_session")
        current = self.sessions.get(session_id)
        if current is None:
            return None
        updated = OrchestrationSession.model_validate({**current.model_dump(), **values})
        self.sessions[session_id] = updated
        return updated

    async def list_sessions(
        self, db: Any, query: ListSessionsQuery, limit: int
    ) -> list[OrchestrationSession]:
        rows = sorted(self.sessions.values(), key=lambda s: s.created_at, reverse=True)
        if query.orchestration_type is not None:
            rows = [s for s in rows if s.orchestration_type == query.orchestration_type]
        if query.status is not None:
            rows = [s for s in rows if s.status == query.status]
        if query.primary_agent_id is not None:
            rows = [s for s in rows if s.primary_agent_id == query.primary_agent_id]
        if query.cursor is not None:
            rows = [s for s in rows if s.created_at < query.cursor]
        return rows[: limit + 1]

    # ── Relationships ──

    async def insert_relationships(
        self,
        db: Any,
        session_id: str,
        supervisor_agent_id: str,
        worker_agent_ids: list[str],
        relationship_type: RelationshipType = RelationshipType.SUPERVISOR,
    ) -> None:
        self._maybe_fail("insert_relationships")
        for worker_id in worker_agent_ids:
            self.relationships.append(
                AgentRelationship(
                    id=str(uuid.uuid4()),
                    session_id=session_id,
                    supervisor_agent_id=supervisor_agent_id,
                    worker_agent_id=worker_id,
                    relationship_type=relationship_type,
                    created_at=self._now(),
                )
            )

    async def list_relationships(self, db: Any, session_id: str) -> list[AgentRelationship]:
        return [
            r.model_copy(
                update={
                    "supervisor_name": self.agent_names.get(r.supervisor_agent_id),
                    "worker_name": self.agent_names.get(r.worker_agent_id),
                }
            )
            for r in self.relationships
            if r.session_id == session_id
        ]

    # ── Communications ──

    async def insert_message(
        self,
        db: Any,
        *,
        session_id: str,
        from_agent_id: str,
        to_agent_id: str | None,
        message_type: MessageType,
        payload: dict[str, Any],
    ) -> AgentCommunication:
        self._maybe_fail("insert_message")
        message = AgentCommunication(
            id=str(uuid.uuid4()),
            session_id=session_id,
            from_agent_id=from_agent_id,
            to_agent_id=to_agent_id,
            message_type=message_type,
            payload=payload,
            created_at=self._now(),
        )
        self.messages[message.id] = message
        return message

    async def acknowledge_message(
        self, db: Any, message_id: str, acknowledged_at: datetime | None = None
    ) -> None:
        self._maybe_fail("acknowledge_message")
        message = self.messages[message_id]
        self.messages[message_id] = message.model_copy(
            update={"acknowledged_at": acknowledged_at or self._now()}
        )


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def repository() -> InMemoryOrchestrationRepository:
    return InMemoryOrchestrationRepository()


@pytest.fixture
def capability_store() -> StubCapabilityStore:
    return StubCapabilityStore()


@pytest.fixture
def selector(capability_store: StubCapabilityStore) -> AgentSelector:
    return AgentSelector(capability_store)


@pytest.fixture
def manager(repository: InMemoryOrchestrationRepository, selector: AgentSelector) -> SessionManager:
    return SessionManager(repository, selector)
