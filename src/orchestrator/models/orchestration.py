"""Orchestration persistence models.

Five SQLAlchemy models on OrchestrationBase:
- AgentRegistryModel: Agent records owned by the registry subsystem (read-only here)
- AgentCapabilityModel: Normalized per-skill capability rows
- AgentSessionModel: Orchestration sessions
- AgentRelationshipModel: Supervisor/worker edges inside a session
- AgentCommunicationModel: Inter-agent messages

Foreign keys and check constraints mirror the production schema; creating
the tables is only done by init_db() in development and tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.orchestrator.config import get_settings
from src.orchestrator.core.database import OrchestrationBase

_SCHEMA = get_settings().DATABASE_SCHEMA


def _fk(table: str) -> str:
    return f"{_SCHEMA}.{table}.id"


class AgentRegistryModel(OrchestrationBase):
    """Agent record maintained by the registry subsystem.

    Only the columns the orchestration core reads are mapped. The
    ``capabilities`` column is the legacy embedded capability array
    (``[{"id": "typescript", ...}, ...]``) used when the normalized
    agent_capabilities table is empty.
    """

    __tablename__ = "agent_registry"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50), default="active", server_default=text("'active'")
    )
    capabilities: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class AgentCapabilityModel(OrchestrationBase):
    """Normalized capability profile row: one skill of one agent."""

    __tablename__ = "agent_capabilities"
    __table_args__ = (
        UniqueConstraint("agent_id", "skill_id", name="uq_agent_capabilities_agent_skill"),
        CheckConstraint(
            "proficiency_level between 1 and 10",
            name="ck_agent_capabilities_proficiency",
        ),
        CheckConstraint(
            "success_rate between 0 and 1",
            name="ck_agent_capabilities_success_rate",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(_fk("agent_registry"), ondelete="CASCADE"),
        nullable=False,
    )
    skill_id: Mapped[str] = mapped_column(Text, nullable=False)
    proficiency_level: Mapped[int] = mapped_column(Integer, nullable=False)
    resource_requirements: Mapped[dict] = mapped_column(
        JSONB, default=dict, server_default=text("'{}'::jsonb")
    )
    average_latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    success_rate: Mapped[float | None] = mapped_column(
        Numeric(5, 4, asdecimal=False), nullable=True
    )
    cost_per_operation: Mapped[float | None] = mapped_column(
        Numeric(10, 4, asdecimal=False), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class AgentSessionModel(OrchestrationBase):
    """Orchestration session: one coordinated unit of work."""

    __tablename__ = "agent_sessions"
    __table_args__ = (
        CheckConstraint(
            "orchestration_type in ('solo', 'pair', 'hierarchical', 'swarm')",
            name="ck_agent_sessions_orchestration_type",
        ),
        CheckConstraint(
            "status in ('pending', 'active', 'completed', 'failed', 'cancelled')",
            name="ck_agent_sessions_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    orchestration_type: Mapped[str] = mapped_column(Text, nullable=False)
    primary_agent_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(_fk("agent_registry")),
        nullable=True,
    )
    session_metadata: Mapped[dict] = mapped_column(
        JSONB, default=dict, server_default=text("'{}'::jsonb")
    )
    status: Mapped[str] = mapped_column(
        Text, default="pending", server_default=text("'pending'")
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    performance_metrics: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class AgentRelationshipModel(OrchestrationBase):
    """Directed supervisor -> worker edge within one session."""

    __tablename__ = "agent_relationships"
    __table_args__ = (
        UniqueConstraint(
            "session_id",
            "supervisor_agent_id",
            "worker_agent_id",
            name="uq_agent_relationships_edge",
        ),
        CheckConstraint(
            "relationship_type in ('supervisor', 'peer', 'subordinate')",
            name="ck_agent_relationships_type",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(_fk("agent_sessions"), ondelete="CASCADE"),
        nullable=False,
    )
    supervisor_agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(_fk("agent_registry")),
        nullable=False,
    )
    worker_agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(_fk("agent_registry")),
        nullable=False,
    )
    relationship_type: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class AgentCommunicationModel(OrchestrationBase):
    """Inter-agent message. to_agent_id is NULL for broadcasts."""

    __tablename__ = "agent_communications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(_fk("agent_sessions"), ondelete="CASCADE"),
        nullable=False,
    )
    from_agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(_fk("agent_registry")),
        nullable=False,
    )
    to_agent_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(_fk("agent_registry")),
        nullable=True,
    )
    message_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
