"""Capability store adapter: find agents that have every required skill.

Capability data lives in one of two physical shapes depending on the
deployment:

1. Structured: normalized ``agent_capabilities`` rows, one per agent/skill.
2. Embedded: a legacy JSON array on the ``agent_registry`` row, where each
   entry only carries an ``id`` (the skill id) and no proficiency, latency,
   success rate or cost.

Each shape is a CapabilityLookup strategy. CapabilityStoreAdapter tries the
strategies in order and returns the first non-empty result, so an empty or
missing structured table transparently falls back to the embedded array.
Both strategies return SelectedAgent records carrying only the capabilities
that matched the requested skills, in the order the store returned them.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Iterable, Sequence
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from sqlalchemy import Select, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.orchestrator.models.orchestration import AgentCapabilityModel, AgentRegistryModel
from src.orchestrator.schemas import (
    AgentCapability,
    CapabilityRequirement,
    ResourceProfile,
    SelectedAgent,
)

logger = structlog.get_logger(__name__)

ACTIVE_AGENT_STATUS = "active"

# Embedded capability entries have no proficiency; they rank as mid-scale.
DEFAULT_EMBEDDED_PROFICIENCY = 5


def unique_skill_ids(requirements: Iterable[CapabilityRequirement]) -> list[str]:
    """Return the distinct required skill ids, in first-seen order."""
    seen: dict[str, None] = {}
    for requirement in requirements:
        seen.setdefault(requirement.skill_id, None)
    return list(seen)


# ── Structured Lookup ───────────────────────────────────────────────────────


def build_structured_capability_query(skill_ids: Sequence[str]) -> Select:
    """Build the normalized-table query.

    An agent qualifies only when the number of distinct matched skill ids
    equals the number of required skill ids. Only the matching capability
    rows are selected.
    """
    qualifying_agents = (
        select(AgentCapabilityModel.agent_id)
        .join(AgentRegistryModel, AgentRegistryModel.id == AgentCapabilityModel.agent_id)
        .where(
            AgentCapabilityModel.skill_id.in_(skill_ids),
            AgentRegistryModel.status == ACTIVE_AGENT_STATUS,
        )
        .group_by(AgentCapabilityModel.agent_id)
        .having(func.count(distinct(AgentCapabilityModel.skill_id)) == len(skill_ids))
        .correlate(None)
    )
    return (
        select(AgentRegistryModel.id, AgentRegistryModel.name, AgentCapabilityModel)
        .join(AgentCapabilityModel, AgentCapabilityModel.agent_id == AgentRegistryModel.id)
        .where(
            AgentCapabilityModel.agent_id.in_(qualifying_agents),
            AgentCapabilityModel.skill_id.in_(skill_ids),
        )
        .order_by(AgentRegistryModel.created_at, AgentRegistryModel.id)
    )


def _capability_from_model(model: AgentCapabilityModel) -> AgentCapability:
    """Convert AgentCapabilityModel to AgentCapability schema."""
    return AgentCapability(
        id=str(model.id),
        agent_id=str(model.agent_id),
        skill_id=model.skill_id,
        proficiency_level=model.proficiency_level,
        resource_requirements=ResourceProfile.model_validate(model.resource_requirements or {}),
        success_rate=model.success_rate,
        average_latency_ms=model.average_latency_ms,
        cost_per_operation=model.cost_per_operation,
        updated_at=model.updated_at,
    )


def group_structured_rows(
    rows: Iterable[tuple[Any, str, AgentCapabilityModel]],
) -> list[SelectedAgent]:
    """Group (agent_id, agent_name, capability) rows into one SelectedAgent per agent.

    Agents keep the order of their first row.
    """
    grouped: dict[str, SelectedAgent] = {}
    for agent_id, agent_name, capability in rows:
        key = str(agent_id)
        agent = grouped.get(key)
        if agent is None:
            agent = SelectedAgent(agent_id=key, agent_name=agent_name)
            grouped[key] = agent
        agent.capabilities.append(_capability_from_model(capability))
    return list(grouped.values())


class CapabilityLookup(Protocol):
    """Strategy for reading capability data in one physical shape."""

    name: str

    async def find(self, skill_ids: Sequence[str]) -> list[SelectedAgent]: ...


class StructuredCapabilityLookup:
    """Lookup against the normalized agent_capabilities table.

    Store errors (e.g. the table does not exist in this deployment) are
    logged and reported as zero candidates so the adapter can fall back.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    name = "structured"

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def find(self, skill_ids: Sequence[str]) -> list[SelectedAgent]:
        stmt = build_structured_capability_query(skill_ids)
        try:
            rows = await self._fetch(stmt)
        except SQLAlchemyError as exc:
            logger.debug(
                "structured_capabilities_query_failed",
                skill_ids=list(skill_ids),
                error=str(exc),
            )
            return []
        return group_structured_rows(rows)

    async def _fetch(self, stmt: Select) -> list[Any]:
        async for session in self._session_factory():
            result = await session.execute(stmt)
            return list(result.all())
        return []


# ── Embedded Lookup ─────────────────────────────────────────────────────────


def build_embedded_capability_query() -> Select:
    """Select every active agent that carries an embedded capability array."""
    return select(
        AgentRegistryModel.id,
        AgentRegistryModel.name,
        AgentRegistryModel.capabilities,
    ).where(
        AgentRegistryModel.status == ACTIVE_AGENT_STATUS,
        AgentRegistryModel.capabilities.is_not(None),
    )


def _embedded_entries(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [entry for entry in raw if isinstance(entry, dict)]


def match_embedded_capabilities(
    rows: Iterable[tuple[Any, str, Any]],
    skill_ids: Sequence[str],
    now: datetime | None = None,
) -> list[SelectedAgent]:
    """Keep agents whose embedded capability ids are a superset of skill_ids.

    Matching entries are normalized into AgentCapability records. Fields the
    embedded shape does not carry are defaulted: proficiency becomes
    DEFAULT_EMBEDDED_PROFICIENCY, latency/success rate/cost stay unset.
    """
    stamp = now or datetime.now(timezone.utc)
    required = set(skill_ids)
    matched: list[SelectedAgent] = []

    for agent_id, agent_name, raw_capabilities in rows:
        entries = _embedded_entries(raw_capabilities)
        available = {entry.get("id") for entry in entries if entry.get("id")}
        if not required.issubset(available):
            continue

        capabilities = [
            AgentCapability(
                id=str(entry["id"]),
                agent_id=str(agent_id),
                skill_id=str(entry["id"]),
                proficiency_level=DEFAULT_EMBEDDED_PROFICIENCY,
                resource_requirements=ResourceProfile(),
                updated_at=stamp,
            )
            for entry in entries
            if entry.get("id") in required
        ]
        matched.append(
            SelectedAgent(
                agent_id=str(agent_id),
                agent_name=agent_name,
                capabilities=capabilities,
            )
        )

    return matched


class EmbeddedCapabilityLookup:
    """Lookup against the legacy capability array on agent_registry.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    name = "embedded"

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def find(self, skill_ids: Sequence[str]) -> list[SelectedAgent]:
        async for session in self._session_factory():
            result = await session.execute(build_embedded_capability_query())
            rows = list(result.all())
            matched = match_embedded_capabilities(rows, skill_ids)
            logger.info(
                "embedded_capabilities_matched",
                skill_ids=list(skill_ids),
                total_agents=len(rows),
                matching_agents=len(matched),
            )
            return matched
        return []


# ── Adapter ─────────────────────────────────────────────────────────────────


class CapabilityStoreAdapter:
    """Uniform candidate lookup over the available capability shapes.

    Args:
        lookups: Strategies to try, in order. The first non-empty result wins.
    """

    def __init__(self, lookups: Sequence[CapabilityLookup]) -> None:
        self._lookups = list(lookups)

    @classmethod
    def from_session_factory(
        cls, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> CapabilityStoreAdapter:
        """Structured lookup first, embedded array as fallback."""
        return cls(
            [
                StructuredCapabilityLookup(session_factory),
                EmbeddedCapabilityLookup(session_factory),
            ]
        )

    async def find_agents(
        self, requirements: Sequence[CapabilityRequirement]
    ) -> list[SelectedAgent]:
        """Return every agent possessing all required skills.

        Args:
            requirements: Required capabilities; only skill ids are matched here.

        Returns:
            Candidate agents with only the matching capabilities attached.
            Empty when no requirement is given or no agent qualifies.
        """
        skill_ids = unique_skill_ids(requirements)
        if not skill_ids:
            return []

        for lookup in self._lookups:
            agents = await lookup.find(skill_ids)
            if agents:
                logger.debug(
                    "capability_candidates_found",
                    strategy=lookup.name,
                    skill_ids=skill_ids,
                    candidate_count=len(agents),
                )
                return agents

        return []
