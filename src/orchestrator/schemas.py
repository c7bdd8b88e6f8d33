"""Pydantic schemas for multi-agent orchestration.

Defines all structured types exchanged with the orchestration core:
- Enums: OrchestrationType, SessionStatus, AgentRole, RelationshipType, MessageType
- Capabilities: ResourceProfile, AgentCapability, CapabilityRequirement
- Selection: AgentSelectionCriteria, SelectedAgent
- Sessions: OrchestrationSession, PerformanceMetrics, CreateSessionRequest/Response,
  SessionUpdateRequest, ListSessionsQuery/Response, SessionEstimate
- Relationships and communication: AgentRelationship, AgentCommunication,
  SendMessageRequest, MessageResponse
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class OrchestrationType(str, Enum):
    """Topology of an orchestration session."""

    SOLO = "solo"
    PAIR = "pair"
    HIERARCHICAL = "hierarchical"
    SWARM = "swarm"


class SessionStatus(str, Enum):
    """Lifecycle status of an orchestration session."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[SessionStatus] = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED}
)


class AgentRole(str, Enum):
    """Role an agent plays within one selection result."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUPERVISOR = "supervisor"
    WORKER = "worker"


class RelationshipType(str, Enum):
    """Kind of directed edge between two agents in a session."""

    SUPERVISOR = "supervisor"
    PEER = "peer"
    SUBORDINATE = "subordinate"


class MessageType(str, Enum):
    """Kinds of inter-agent messages."""

    TASK_ASSIGNMENT = "task_assignment"
    STATUS_UPDATE = "status_update"
    RESULT_SHARE = "result_share"
    ERROR_REPORT = "error_report"
    COORDINATION = "coordination"
    CONTEXT_HANDOFF = "context_handoff"
    CAPABILITY_QUERY = "capability_query"
    RESOURCE_REQUEST = "resource_request"


# ── Capabilities ────────────────────────────────────────────────────────────


class ResourceProfile(BaseModel):
    """Resources an agent capability needs (or a caller can offer)."""

    cpu: float | None = None
    memory: int | None = Field(default=None, description="Memory in MB")
    gpu: bool | None = None
    api_calls: int | None = None
    estimated_time_ms: int | None = None


class AgentCapability(BaseModel):
    """A skill/proficiency fact about one agent."""

    id: str
    agent_id: str
    skill_id: str
    proficiency_level: int = Field(default=5, ge=1, le=10)
    resource_requirements: ResourceProfile = Field(default_factory=ResourceProfile)
    success_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    average_latency_ms: int | None = None
    cost_per_operation: float | None = None
    updated_at: datetime | None = None


class CapabilityRequirement(BaseModel):
    """A required skill, with optional quality thresholds."""

    skill_id: str
    min_proficiency: int | None = Field(default=None, ge=1, le=10)
    max_latency_ms: int | None = None
    min_success_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    max_cost: float | None = None


# ── Selection ───────────────────────────────────────────────────────────────


class AgentSelectionCriteria(BaseModel):
    """Criteria for choosing session participants.

    orchestration_type may be omitted when the criteria are embedded in a
    CreateSessionRequest; the request's type is used in that case.
    """

    required_capabilities: list[CapabilityRequirement] = Field(default_factory=list)
    orchestration_type: OrchestrationType | None = None
    resource_constraints: ResourceProfile | None = None
    cost_budget: float | None = None
    preferred_agents: list[str] = Field(default_factory=list)
    excluded_agents: list[str] = Field(default_factory=list)


class SelectedAgent(BaseModel):
    """An agent chosen for one selection call (not persisted)."""

    agent_id: str
    agent_name: str
    role: AgentRole = AgentRole.WORKER
    capabilities: list[AgentCapability] = Field(default_factory=list)
    assigned_tasks: list[str] | None = None


# ── Sessions ────────────────────────────────────────────────────────────────


class ResourceUsage(BaseModel):
    """Aggregate resource usage of a session."""

    total_cpu_time: float = 0.0
    total_memory_mb: float = 0.0
    api_calls_count: int = 0
    network_bandwidth_mb: float | None = None


class PerformanceMetrics(BaseModel):
    """Performance record attached to a session when it finishes."""

    total_duration_ms: int = 0
    agent_execution_times: dict[str, int] = Field(default_factory=dict)
    messages_exchanged: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    resource_usage: ResourceUsage = Field(default_factory=ResourceUsage)
    cost_incurred: float = 0.0
    efficiency_score: float | None = None


class OrchestrationSession(BaseModel):
    """A persisted orchestration session."""

    id: str
    orchestration_type: OrchestrationType
    primary_agent_id: str | None = None
    session_metadata: dict[str, Any] = Field(default_factory=dict)
    status: SessionStatus
    started_at: datetime | None = None
    ended_at: datetime | None = None
    performance_metrics: PerformanceMetrics | None = None
    created_at: datetime | None = None


class CreateSessionRequest(BaseModel):
    """Request to form a new orchestration session."""

    orchestration_type: OrchestrationType
    agent_selection_criteria: AgentSelectionCriteria | None = None
    session_metadata: dict[str, Any] = Field(default_factory=dict)
    auto_start: bool = False


class SessionEstimate(BaseModel):
    """Estimated cost and duration of a session."""

    cost: float
    duration_ms: float


class CreateSessionResponse(BaseModel):
    """Result of session creation."""

    session: OrchestrationSession
    selected_agents: list[SelectedAgent] = Field(default_factory=list)
    estimated_cost: float | None = None
    estimated_duration: float | None = None


class SessionUpdateRequest(BaseModel):
    """Partial session update; only fields that are set are written."""

    status: SessionStatus | None = None
    performance_metrics: PerformanceMetrics | None = None
    ended_at: datetime | None = None


class ListSessionsQuery(BaseModel):
    """Filters and cursor pagination for listing sessions."""

    orchestration_type: OrchestrationType | None = None
    status: SessionStatus | None = None
    primary_agent_id: str | None = None
    started_after: datetime | None = None
    started_before: datetime | None = None
    cursor: datetime | None = None
    limit: int | None = Field(default=None, ge=1)


class ListSessionsResponse(BaseModel):
    """One page of sessions, newest first."""

    sessions: list[OrchestrationSession] = Field(default_factory=list)
    next_cursor: datetime | None = None


# ── Relationships & Communication ───────────────────────────────────────────


class AgentRelationship(BaseModel):
    """Directed supervisor -> worker edge within a session."""

    id: str
    session_id: str
    supervisor_agent_id: str
    worker_agent_id: str
    relationship_type: RelationshipType = RelationshipType.SUPERVISOR
    created_at: datetime | None = None
    supervisor_name: str | None = None
    worker_name: str | None = None


class AgentCommunication(BaseModel):
    """One persisted inter-agent message."""

    id: str
    session_id: str
    from_agent_id: str
    to_agent_id: str | None = None
    message_type: MessageType
    payload: dict[str, Any] = Field(default_factory=dict)
    acknowledged_at: datetime | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None


class SendMessageRequest(BaseModel):
    """Message submitted by a session participant.

    to_agent_id=None makes the message a broadcast.
    """

    session_id: str
    from_agent_id: str
    to_agent_id: str | None = None
    message_type: MessageType
    payload: dict[str, Any] = Field(default_factory=dict)
    require_acknowledgment: bool = False


class MessageResponse(BaseModel):
    """Outcome of sending a message."""

    message_id: str
    delivered: bool
    acknowledged_by: list[str] = Field(default_factory=list)
