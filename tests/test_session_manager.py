"""Tests for SessionManager: creation, updates, reads and cursor listing.

Covers:
- Pair session scenario (roles, primary agent, pending vs active)
- AGENT_NOT_AVAILABLE when criteria match nobody
- Hierarchical sessions persist N-1 supervisor edges
- All-or-nothing creation (relationship failure rolls back the session)
- Cost / duration estimate
- Status lifecycle validation on update
- Cursor pagination (21 rows -> 20 + cursor, 15 rows -> no cursor)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from src.orchestrator.errors import (
    InvalidStatusTransitionError,
    OrchestrationError,
    OrchestrationErrorCode,
)
from src.orchestrator.schemas import (
    AgentCapability,
    AgentRole,
    AgentSelectionCriteria,
    CapabilityRequirement,
    CreateSessionRequest,
    ListSessionsQuery,
    OrchestrationType,
    PerformanceMetrics,
    SelectedAgent,
    SessionStatus,
    SessionUpdateRequest,
)
from src.orchestrator.sessions.manager import (
    VALID_TRANSITIONS,
    SessionManager,
    calculate_session_estimate,
    validate_status_transition,
)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _make_agent(name: str, skill: str = "typescript", cost: float | None = None) -> SelectedAgent:
    agent_id = str(uuid.uuid4())
    return SelectedAgent(
        agent_id=agent_id,
        agent_name=name,
        capabilities=[
            AgentCapability(
                id=str(uuid.uuid4()),
                agent_id=agent_id,
                skill_id=skill,
                cost_per_operation=cost,
            )
        ],
    )


def _request(
    orchestration_type: OrchestrationType,
    *skills: str,
    auto_start: bool = False,
    metadata: dict | None = None,
) -> CreateSessionRequest:
    criteria = None
    if skills:
        criteria = AgentSelectionCriteria(
            required_capabilities=[CapabilityRequirement(skill_id=s) for s in skills],
        )
    return CreateSessionRequest(
        orchestration_type=orchestration_type,
        agent_selection_criteria=criteria,
        session_metadata=metadata or {},
        auto_start=auto_start,
    )


async def _seed_sessions(repository, count: int, status: SessionStatus = SessionStatus.ACTIVE):
    for _ in range(count):
        await repository.insert_session(
            None,
            orchestration_type=OrchestrationType.SOLO,
            primary_agent_id=None,
            session_metadata={},
            status=status,
        )


# ── Create ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_pair_session_pending_by_default(manager, repository, capability_store):
    first, second = _make_agent("first"), _make_agent("second")
    capability_store.agents = [first, second]

    response = await manager.create_session(_request(OrchestrationType.PAIR, "typescript"))

    assert [a.role for a in response.selected_agents] == [AgentRole.PRIMARY, AgentRole.SECONDARY]
    assert response.session.primary_agent_id == first.agent_id
    assert response.session.status == SessionStatus.PENDING
    assert response.session.id in repository.sessions
    assert repository.relationships == []


@pytest.mark.asyncio
async def test_pair_session_auto_start_is_active(manager, capability_store):
    capability_store.agents = [_make_agent("first"), _make_agent("second")]
    response = await manager.create_session(
        _request(OrchestrationType.PAIR, "typescript", auto_start=True)
    )
    assert response.session.status == SessionStatus.ACTIVE


@pytest.mark.asyncio
async def test_criteria_inherit_request_orchestration_type(manager, capability_store):
    capability_store.agents = [_make_agent("only")]
    response = await manager.create_session(_request(OrchestrationType.SOLO, "typescript"))
    assert [a.role for a in response.selected_agents] == [AgentRole.PRIMARY]


@pytest.mark.asyncio
async def test_no_matching_agents_raises_agent_not_available(manager, repository, capability_store):
    capability_store.agents = []

    with pytest.raises(OrchestrationError) as exc_info:
        await manager.create_session(_request(OrchestrationType.SOLO, "cobol"))

    assert exc_info.value.code == OrchestrationErrorCode.AGENT_NOT_AVAILABLE
    assert exc_info.value.details == {"required_capabilities": ["cobol"]}
    assert repository.sessions == {}


@pytest.mark.asyncio
async def test_session_without_criteria_has_no_agents(manager, repository, capability_store):
    response = await manager.create_session(
        _request(OrchestrationType.SWARM, metadata={"task": "triage"})
    )

    assert response.selected_agents == []
    assert response.session.primary_agent_id is None
    assert response.session.session_metadata == {"task": "triage"}
    assert response.estimated_cost == 0
    assert response.estimated_duration == pytest.approx(18_000)
    assert capability_store.calls == []


@pytest.mark.asyncio
async def test_hierarchical_session_persists_worker_edges(manager, repository, capability_store):
    agents = [_make_agent(f"agent-{i}") for i in range(4)]
    capability_store.agents = agents

    response = await manager.create_session(_request(OrchestrationType.HIERARCHICAL, "typescript"))

    edges = [r for r in repository.relationships if r.session_id == response.session.id]
    assert len(edges) == 3
    assert {e.supervisor_agent_id for e in edges} == {agents[0].agent_id}
    assert [e.worker_agent_id for e in edges] == [a.agent_id for a in agents[1:]]


@pytest.mark.asyncio
async def test_hierarchical_single_agent_has_no_edges(manager, repository, capability_store):
    capability_store.agents = [_make_agent("boss")]
    response = await manager.create_session(_request(OrchestrationType.HIERARCHICAL, "typescript"))
    assert response.selected_agents[0].role == AgentRole.SUPERVISOR
    assert repository.relationships == []


@pytest.mark.asyncio
async def test_relationship_failure_rolls_back_session(manager, repository, capability_store):
    capability_store.agents = [_make_agent("boss"), _make_agent("worker")]
    repository.fail_on = "insert_relationships"

    with pytest.raises(RuntimeError):
        await manager.create_session(_request(OrchestrationType.HIERARCHICAL, "typescript"))

    assert repository.sessions == {}
    assert repository.relationships == []
    assert repository.rollbacks == 1
    assert repository.commits == 0


@pytest.mark.asyncio
async def test_create_session_reports_estimate(repository, selector, capability_store):
    capability_store.agents = [_make_agent("a", cost=0.5), _make_agent("b", cost=0.25)]
    manager = SessionManager(repository, selector, base_duration_ms=10_000)

    response = await manager.create_session(_request(OrchestrationType.PAIR, "typescript"))

    assert response.estimated_cost == pytest.approx(0.75)
    assert response.estimated_duration == pytest.approx(7_000)


# ── Estimation ───────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "orchestration_type,expected",
    [
        (OrchestrationType.SOLO, 60_000),
        (OrchestrationType.PAIR, 42_000),
        (OrchestrationType.HIERARCHICAL, 30_000),
        (OrchestrationType.SWARM, 18_000),
    ],
)
def test_duration_multiplier_per_topology(orchestration_type, expected):
    estimate = calculate_session_estimate([], orchestration_type)
    assert estimate.duration_ms == pytest.approx(expected)
    assert estimate.cost == 0


# ── Status Lifecycle ─────────────────────────────────────────────────────────


def test_terminal_statuses_have_no_transitions():
    for status in (SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED):
        assert VALID_TRANSITIONS[status] == set()


def test_same_status_is_always_valid():
    validate_status_transition("s1", SessionStatus.COMPLETED, SessionStatus.COMPLETED)


def test_active_cannot_return_to_pending():
    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        validate_status_transition("s1", SessionStatus.ACTIVE, SessionStatus.PENDING)
    assert exc_info.value.code == OrchestrationErrorCode.INVALID_STATUS_TRANSITION
    assert exc_info.value.details == {"from_status": "active", "to_status": "pending"}


# ── Update ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_unknown_session_raises_not_found(manager):
    with pytest.raises(OrchestrationError) as exc_info:
        await manager.update_session(
            str(uuid.uuid4()), SessionUpdateRequest(status=SessionStatus.ACTIVE)
        )
    assert exc_info.value.code == OrchestrationErrorCode.SESSION_NOT_FOUND


@pytest.mark.asyncio
async def test_update_applies_only_supplied_fields(manager, repository):
    await _seed_sessions(repository, 1, status=SessionStatus.ACTIVE)
    session_id = next(iter(repository.sessions))
    ended = datetime(2026, 2, 1, tzinfo=timezone.utc)

    updated = await manager.update_session(
        session_id,
        SessionUpdateRequest(
            status=SessionStatus.COMPLETED,
            ended_at=ended,
            performance_metrics=PerformanceMetrics(total_duration_ms=1200, tasks_completed=3),
        ),
    )

    assert updated.status == SessionStatus.COMPLETED
    assert updated.ended_at == ended
    assert updated.performance_metrics.tasks_completed == 3
    assert updated.orchestration_type == OrchestrationType.SOLO


@pytest.mark.asyncio
async def test_empty_update_returns_current_session(manager, repository):
    await _seed_sessions(repository, 1, status=SessionStatus.PENDING)
    session_id = next(iter(repository.sessions))

    result = await manager.update_session(session_id, SessionUpdateRequest())

    assert result == repository.sessions[session_id]


@pytest.mark.asyncio
async def test_update_rejects_transition_out_of_terminal(manager, repository):
    await _seed_sessions(repository, 1, status=SessionStatus.CANCELLED)
    session_id = next(iter(repository.sessions))

    with pytest.raises(InvalidStatusTransitionError):
        await manager.update_session(session_id, SessionUpdateRequest(status=SessionStatus.ACTIVE))

    assert repository.sessions[session_id].status == SessionStatus.CANCELLED


@pytest.mark.asyncio
async def test_get_session_not_found(manager):
    with pytest.raises(OrchestrationError) as exc_info:
        await manager.get_session(str(uuid.uuid4()))
    assert exc_info.value.code == OrchestrationErrorCode.SESSION_NOT_FOUND


# ── Listing ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_21_rows_returns_20_and_cursor(manager, repository):
    await _seed_sessions(repository, 21)

    page = await manager.list_sessions(ListSessionsQuery(limit=20))

    assert len(page.sessions) == 20
    assert page.next_cursor == page.sessions[19].created_at
    created = [s.created_at for s in page.sessions]
    assert created == sorted(created, reverse=True)


@pytest.mark.asyncio
async def test_list_15_rows_has_no_cursor(manager, repository):
    await _seed_sessions(repository, 15)

    page = await manager.list_sessions(ListSessionsQuery(limit=20))

    assert len(page.sessions) == 15
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_cursor_fetches_next_page(manager, repository):
    await _seed_sessions(repository, 21)

    first = await manager.list_sessions(ListSessionsQuery(limit=20))
    second = await manager.list_sessions(ListSessionsQuery(limit=20, cursor=first.next_cursor))

    assert len(second.sessions) == 1
    assert second.next_cursor is None
    assert second.sessions[0].id not in {s.id for s in first.sessions}


@pytest.mark.asyncio
async def test_list_uses_default_limit(manager, repository):
    await _seed_sessions(repository, 25)
    page = await manager.list_sessions(ListSessionsQuery())
    assert len(page.sessions) == 20
    assert page.next_cursor is not None


@pytest.mark.asyncio
async def test_list_caps_limit(repository, selector):
    manager = SessionManager(repository, selector, max_page_limit=5)
    await _seed_sessions(repository, 8)
    page = await manager.list_sessions(ListSessionsQuery(limit=50))
    assert len(page.sessions) == 5


@pytest.mark.asyncio
async def test_list_filters_by_status(manager, repository):
    await _seed_sessions(repository, 3, status=SessionStatus.ACTIVE)
    await _seed_sessions(repository, 2, status=SessionStatus.FAILED)
    page = await manager.list_sessions(ListSessionsQuery(status=SessionStatus.FAILED))
    assert [s.status for s in page.sessions] == [SessionStatus.FAILED] * 2


# ── Relationships ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_session_relationships_includes_names(manager, repository, capability_store):
    boss, worker = _make_agent("boss"), _make_agent("worker")
    capability_store.agents = [boss, worker]
    repository.agent_names = {boss.agent_id: "boss", worker.agent_id: "worker"}

    response = await manager.create_session(_request(OrchestrationType.HIERARCHICAL, "typescript"))
    edges = await manager.get_session_relationships(response.session.id)

    assert len(edges) == 1
    assert edges[0].supervisor_name == "boss"
    assert edges[0].worker_name == "worker"
