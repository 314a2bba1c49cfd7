"""
Services module for the review router.

Provides:
- ResultCache: per-agent result cache keyed by PR head and config
- Budget checks: per-PR and monthly limits
- Branch policy and agent environment scoping
"""

from .budget import BudgetCheck, BudgetContext, check_budget
from .cache import ResultCache, generate_cache_key
from .policy import is_main_branch_push, needs_budget_gate
from .security import build_agent_env, is_known_agent_id

__all__ = [
    "BudgetCheck",
    "BudgetContext",
    "ResultCache",
    "build_agent_env",
    "check_budget",
    "generate_cache_key",
    "is_known_agent_id",
    "is_main_branch_push",
    "needs_budget_gate",
]
