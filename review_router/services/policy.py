"""
Branch and budget policy predicates.
"""

from typing import Iterable, Mapping, Protocol

FREE_LOCAL_AGENT_ID = "local_llm"

# Agents that post PR conversation and have no meaning on a direct push
MAIN_BRANCH_FORBIDDEN_AGENTS = frozenset({"pr_agent", "ai_semantic_review"})

PROTECTED_BRANCH = "main"


class BudgetedAgent(Protocol):
    id: str
    uses_paid_inference: bool


def is_main_branch_push(env: Mapping[str, str]) -> bool:
    """True when the run was triggered by a direct push to the protected branch."""
    if env.get("GITHUB_EVENT_NAME") == "pull_request":
        return False
    return (
        env.get("GITHUB_REF_NAME") == PROTECTED_BRANCH
        or env.get("GITHUB_REF") == f"refs/heads/{PROTECTED_BRANCH}"
    )


def is_agent_forbidden_on_main(agent_id: str) -> bool:
    return agent_id in MAIN_BRANCH_FORBIDDEN_AGENTS


def needs_budget_gate(agents: Iterable[BudgetedAgent]) -> bool:
    """
    A pass is budget gated only if some agent pays for inference and is not
    the free local model.
    """
    return any(a.uses_paid_inference and a.id != FREE_LOCAL_AGENT_ID for a in agents)
