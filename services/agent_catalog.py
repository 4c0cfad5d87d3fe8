"""
============================================================================
Agent Session Orchestrator - Agent Catalog
============================================================================

Reliability Level: L5 High
Decimal Integrity: Risk bounds expressed as decimal.Decimal

Read-only catalog of the execution profiles an owner can delegate to.
Agents are provisioned out of band and never mutated at runtime. The
catalog is injected into the orchestrator so tests and deployments can
supply their own profiles.

============================================================================
"""

from decimal import Decimal
from typing import Optional, Dict, List, Iterable
import logging

from services.session_models import Agent, RiskProfile

logger = logging.getLogger(__name__)


# =============================================================================
# Default Profiles
# =============================================================================

DEFAULT_AGENTS: List[Agent] = [
    Agent(
        id="trend-bandit-v1",
        name="Trend Bandit v1",
        description=(
            "Momentum-based futures agent using contextual bandit exploration. "
            "Analyzes recent price trends and volatility to make LONG/SHORT "
            "decisions on BTC perp."
        ),
        payout_address="0x0000000000000000000000000000000000000001",
        risk_profile=RiskProfile(
            max_leverage=5,
            max_position_usd=Decimal("100"),
            max_daily_loss_usd=Decimal("50"),
        ),
        learning_mode="bandit-trend",
        markets=("BTCUSDT_PERP",),
    ),
    Agent(
        id="mean-reversion-v1",
        name="Mean Reversion v1",
        description=(
            "Mean reversion strategy agent that identifies overextended price "
            "moves and trades against the trend. Uses bandit learning to "
            "optimize entry/exit timing."
        ),
        payout_address="0x0000000000000000000000000000000000000002",
        risk_profile=RiskProfile(
            max_leverage=3,
            max_position_usd=Decimal("75"),
            max_daily_loss_usd=Decimal("30"),
        ),
        learning_mode="bandit-mean-reversion",
        markets=("BTCUSDT_PERP", "ETHUSDT_PERP"),
    ),
]


# =============================================================================
# Catalog
# =============================================================================

class AgentCatalog:
    """Immutable, ordered lookup of agent profiles by id."""

    def __init__(self, agents: Iterable[Agent]):
        self._agents: Dict[str, Agent] = {}
        for agent in agents:
            if not agent.markets:
                raise ValueError(f"Agent {agent.id} must declare at least one market")
            if agent.id in self._agents:
                raise ValueError(f"Duplicate agent id: {agent.id}")
            self._agents[agent.id] = agent

    def list_agents(self) -> List[Agent]:
        return list(self._agents.values())

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def __len__(self) -> int:
        return len(self._agents)


def build_default_catalog() -> AgentCatalog:
    catalog = AgentCatalog(DEFAULT_AGENTS)
    logger.info(
        f"[AGENT-CATALOG] Loaded {len(catalog)} agent profile(s) | "
        f"ids={[a.id for a in catalog.list_agents()]}"
    )
    return catalog


__all__ = [
    "DEFAULT_AGENTS",
    "AgentCatalog",
    "build_default_catalog",
]
