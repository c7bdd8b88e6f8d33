"""Agent selection: filter capability candidates and assign topology roles.

Selection pipeline (AgentSelector.select_agents):
1. Candidates from the CapabilityStoreAdapter
2. Excluded agents dropped, preferred agents moved to the front
3. Per-requirement quality thresholds
4. Resource constraint policy hook (pass-through)
5. Cost budget
6. Orchestration-pattern role assignment

Role assignment never mutates the candidate records: every strategy returns
new SelectedAgent copies, so candidates that are not selected keep the role
they came in with.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import structlog

from src.orchestrator.capabilities import CapabilityStoreAdapter
from src.orchestrator.errors import OrchestrationError, OrchestrationErrorCode
from src.orchestrator.schemas import (
    AgentCapability,
    AgentRole,
    AgentSelectionCriteria,
    CapabilityRequirement,
    OrchestrationType,
    ResourceProfile,
    SelectedAgent,
)

logger = structlog.get_logger(__name__)

DEFAULT_SWARM_MAX_AGENTS = 10


# ── Filters ─────────────────────────────────────────────────────────────────


def calculate_agent_cost(agent: SelectedAgent) -> float:
    """Sum cost_per_operation over the agent's matched capabilities (missing = 0)."""
    return sum(cap.cost_per_operation or 0.0 for cap in agent.capabilities)


def apply_agent_preferences(
    agents: Sequence[SelectedAgent],
    preferred: Sequence[str],
    excluded: Sequence[str],
) -> list[SelectedAgent]:
    """Drop excluded agents and stably move preferred ones to the front."""
    excluded_ids = set(excluded)
    remaining = [a for a in agents if a.agent_id not in excluded_ids]
    if not preferred:
        return remaining
    preferred_ids = set(preferred)
    return [a for a in remaining if a.agent_id in preferred_ids] + [
        a for a in remaining if a.agent_id not in preferred_ids
    ]


def _meets_requirement(capability: AgentCapability, requirement: CapabilityRequirement) -> bool:
    if (
        requirement.min_proficiency is not None
        and capability.proficiency_level < requirement.min_proficiency
    ):
        return False
    if (
        requirement.max_latency_ms is not None
        and capability.average_latency_ms is not None
        and capability.average_latency_ms > requirement.max_latency_ms
    ):
        return False
    if (
        requirement.min_success_rate is not None
        and capability.success_rate is not None
        and capability.success_rate < requirement.min_success_rate
    ):
        return False
    if (
        requirement.max_cost is not None
        and capability.cost_per_operation is not None
        and capability.cost_per_operation > requirement.max_cost
    ):
        return False
    return True


def filter_by_requirement_thresholds(
    agents: Sequence[SelectedAgent],
    requirements: Sequence[CapabilityRequirement],
) -> list[SelectedAgent]:
    """Drop agents whose matched capability violates a requirement threshold.

    Metrics the capability does not report (typical for embedded
    capabilities) never fail a threshold.
    """
    constrained = [
        r
        for r in requirements
        if r.min_proficiency is not None
        or r.max_latency_ms is not None
        or r.min_success_rate is not None
        or r.max_cost is not None
    ]
    if not constrained:
        return list(agents)

    kept: list[SelectedAgent] = []
    for agent in agents:
        by_skill = {cap.skill_id: cap for cap in agent.capabilities}
        if all(
            r.skill_id in by_skill and _meets_requirement(by_skill[r.skill_id], r)
            for r in constrained
        ):
            kept.append(agent)
    return kept


def filter_by_resource_constraints(
    agents: Sequence[SelectedAgent],
    constraints: ResourceProfile,
) -> list[SelectedAgent]:
    """Resource policy hook. Every candidate currently passes."""
    return list(agents)


def filter_by_cost_budget(
    agents: Sequence[SelectedAgent],
    budget: float,
) -> list[SelectedAgent]:
    """Keep agents whose summed capability cost is within budget."""
    return [a for a in agents if calculate_agent_cost(a) <= budget]


# ── Pattern Strategies ──────────────────────────────────────────────────────


def _with_role(agent: SelectedAgent, role: AgentRole) -> SelectedAgent:
    return agent.model_copy(update={"role": role})


def select_solo(agents: Sequence[SelectedAgent]) -> list[SelectedAgent]:
    if not agents:
        return []
    return [_with_role(agents[0], AgentRole.PRIMARY)]


def select_pair(agents: Sequence[SelectedAgent]) -> list[SelectedAgent]:
    # A single survivor is returned as-is, without promotion to primary.
    if len(agents) >= 2:
        return [
            _with_role(agents[0], AgentRole.PRIMARY),
            _with_role(agents[1], AgentRole.SECONDARY),
        ]
    return list(agents)


def select_hierarchical(agents: Sequence[SelectedAgent]) -> list[SelectedAgent]:
    if not agents:
        return []
    supervisor = _with_role(agents[0], AgentRole.SUPERVISOR)
    return [supervisor] + [_with_role(a, AgentRole.WORKER) for a in agents[1:]]


def select_swarm(
    agents: Sequence[SelectedAgent],
    max_agents: int = DEFAULT_SWARM_MAX_AGENTS,
) -> list[SelectedAgent]:
    return [_with_role(a, AgentRole.WORKER) for a in agents[:max_agents]]


def select_by_orchestration_pattern(
    agents: Sequence[SelectedAgent],
    orchestration_type: OrchestrationType | None,
    swarm_max_agents: int = DEFAULT_SWARM_MAX_AGENTS,
) -> list[SelectedAgent]:
    """Apply the topology-specific role assignment.

    Raises:
        OrchestrationError: INVALID_ORCHESTRATION_TYPE for an unknown type.
    """
    strategies: dict[OrchestrationType, Callable[[Sequence[SelectedAgent]], list[SelectedAgent]]] = {
        OrchestrationType.SOLO: select_solo,
        OrchestrationType.PAIR: select_pair,
        OrchestrationType.HIERARCHICAL: select_hierarchical,
        OrchestrationType.SWARM: lambda a: select_swarm(a, swarm_max_agents),
    }
    strategy = strategies.get(orchestration_type) if orchestration_type else None
    if strategy is None:
        raise OrchestrationError(
            OrchestrationErrorCode.INVALID_ORCHESTRATION_TYPE,
            f"Unsupported orchestration type: {orchestration_type!r}",
            details={"supported": [t.value for t in OrchestrationType]},
        )
    return strategy(agents)


# ── Selector ────────────────────────────────────────────────────────────────


class AgentSelector:
    """Chooses session participants for a set of selection criteria.

    Args:
        capability_store: Source of capability-matched candidates.
        swarm_max_agents: Upper bound on swarm size.
    """

    def __init__(
        self,
        capability_store: CapabilityStoreAdapter,
        swarm_max_agents: int = DEFAULT_SWARM_MAX_AGENTS,
    ) -> None:
        self._capability_store = capability_store
        self._swarm_max_agents = swarm_max_agents

    async def select_agents(self, criteria: AgentSelectionCriteria) -> list[SelectedAgent]:
        """Select agents and assign roles for the requested topology.

        Args:
            criteria: Required capabilities, topology and optional filters.

        Returns:
            Selected agents in role order. Empty when nothing qualifies;
            callers decide whether that is an error.

        Raises:
            OrchestrationError: INVALID_ORCHESTRATION_TYPE if criteria carry no
                usable orchestration type.
        """
        if criteria.orchestration_type is None:
            raise OrchestrationError(
                OrchestrationErrorCode.INVALID_ORCHESTRATION_TYPE,
                "Selection criteria must specify an orchestration type",
            )

        candidates = await self._capability_store.find_agents(criteria.required_capabilities)

        viable = apply_agent_preferences(
            candidates, criteria.preferred_agents, criteria.excluded_agents
        )
        viable = filter_by_requirement_thresholds(viable, criteria.required_capabilities)
        if criteria.resource_constraints is not None:
            viable = filter_by_resource_constraints(viable, criteria.resource_constraints)
        if criteria.cost_budget is not None:
            viable = filter_by_cost_budget(viable, criteria.cost_budget)

        selected = select_by_orchestration_pattern(
            viable, criteria.orchestration_type, self._swarm_max_agents
        )

        logger.info(
            "agents_selected",
            orchestration_type=criteria.orchestration_type.value,
            criteria_capabilities=len(criteria.required_capabilities),
            candidate_count=len(candidates),
            selected_count=len(selected),
        )
        return selected
