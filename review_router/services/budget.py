"""
Budget checks.

Per-PR limits are checked before any paid agent runs; the orchestrator only
consumes the resulting BudgetCheck.allowed flag.
"""

from dataclasses import dataclass
from typing import Optional

from ..schemas.config import LimitsConfig
from ..utils.token_utils import get_default_counter

# USD per 1K tokens, conservative across supported providers
INPUT_COST_PER_1K = 0.01
OUTPUT_COST_PER_1K = 0.03
# Completion size assumed relative to prompt size
OUTPUT_TOKEN_RATIO = 0.2


@dataclass
class BudgetContext:
    """Size of the change under review"""
    file_count: int
    diff_lines: int
    estimated_tokens: int


@dataclass
class BudgetCheck:
    allowed: bool
    reason: Optional[str] = None
    estimated_cost_usd: float = 0.0


@dataclass
class MonthlyUsage:
    spent_usd: float = 0.0
    runs: int = 0


def estimate_tokens(text: str) -> int:
    """Token count of the text the LLM agents will be sent."""
    if not text:
        return 0
    return get_default_counter().count_tokens(text)


def estimate_cost(tokens: int) -> float:
    """Estimated USD for a prompt of `tokens` input tokens plus its completion."""
    input_cost = tokens / 1000 * INPUT_COST_PER_1K
    output_cost = tokens * OUTPUT_TOKEN_RATIO / 1000 * OUTPUT_COST_PER_1K
    return round(input_cost + output_cost, 6)


def check_budget(context: BudgetContext, limits: LimitsConfig) -> BudgetCheck:
    """
    Check a change against per-PR limits.

    Limits are checked in order: files, diff lines, tokens, cost. The first
    violated limit is reported.
    """
    cost = estimate_cost(context.estimated_tokens)

    if context.file_count > limits.max_files:
        return BudgetCheck(
            allowed=False,
            reason=f"File count {context.file_count} exceeds limit {limits.max_files}",
            estimated_cost_usd=cost,
        )

    if context.diff_lines > limits.max_diff_lines:
        return BudgetCheck(
            allowed=False,
            reason=f"Diff lines {context.diff_lines} exceeds limit {limits.max_diff_lines}",
            estimated_cost_usd=cost,
        )

    if context.estimated_tokens > limits.max_tokens_per_pr:
        return BudgetCheck(
            allowed=False,
            reason=(
                f"Estimated tokens {context.estimated_tokens} exceeds limit "
                f"{limits.max_tokens_per_pr}"
            ),
            estimated_cost_usd=cost,
        )

    if cost > limits.max_usd_per_pr:
        return BudgetCheck(
            allowed=False,
            reason=f"Estimated cost ${cost:.4f} exceeds limit ${limits.max_usd_per_pr:.2f}",
            estimated_cost_usd=cost,
        )

    return BudgetCheck(allowed=True, estimated_cost_usd=cost)


def check_monthly_budget(usage: MonthlyUsage, estimated_cost: float, monthly_limit: float) -> BudgetCheck:
    """Check whether one more run of `estimated_cost` fits the monthly budget."""
    projected = usage.spent_usd + estimated_cost
    if projected > monthly_limit:
        return BudgetCheck(
            allowed=False,
            reason=(
                f"Monthly budget exceeded: ${usage.spent_usd:.2f} spent, "
                f"${estimated_cost:.4f} requested, limit ${monthly_limit:.2f}"
            ),
            estimated_cost_usd=estimated_cost,
        )
    return BudgetCheck(allowed=True, estimated_cost_usd=estimated_cost)


def combine_budget_checks(*checks: BudgetCheck) -> BudgetCheck:
    """First failing check wins; otherwise allowed with the largest estimate."""
    for check in checks:
        if not check.allowed:
            return check
    return BudgetCheck(allowed=True, estimated_cost_usd=max((c.estimated_cost_usd for c in checks), default=0.0))
