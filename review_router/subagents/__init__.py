"""
Review agents and their registry.

The registry maps config agent ids to implementations. Ids can be on the
security allowlist without having an implementation here; the orchestrator
skips those.
"""

from typing import Dict, Iterable, List, Optional

from .base_agent import AgentConfig, AgentContext, AgentError, ReviewAgent
from .llm_review_agent import LLMReviewAgent, LocalLLMAgent
from .semgrep_agent import SemgrepAgent


class AgentRegistry:
    """Agent instances by id."""

    def __init__(self, agents: Optional[Iterable[ReviewAgent]] = None):
        self._agents: Dict[str, ReviewAgent] = {}
        for agent in agents or []:
            self.register(agent)

    def register(self, agent: ReviewAgent) -> None:
        self._agents[agent.id] = agent

    def get(self, agent_id: str) -> Optional[ReviewAgent]:
        return self._agents.get(agent_id)

    def ids(self) -> List[str]:
        return sorted(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents


def default_registry() -> AgentRegistry:
    """Registry with every built-in agent."""
    return AgentRegistry([SemgrepAgent(), LLMReviewAgent(), LocalLLMAgent()])


__all__ = [
    "AgentConfig",
    "AgentContext",
    "AgentError",
    "AgentRegistry",
    "LLMReviewAgent",
    "LocalLLMAgent",
    "ReviewAgent",
    "SemgrepAgent",
    "default_registry",
]
