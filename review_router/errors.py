"""
Error types for the review router.

Agent-level failures are never raised across the orchestrator boundary; they
are carried as failure results and classified by FailureKind. The exceptions
below are for conditions that stop a run before or outside agent execution.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class FailureKind(str, Enum):
    """Why an agent did not contribute complete findings to a run."""
    PREFLIGHT = "preflight"          # agent could not start
    EXECUTION = "execution"          # agent started, then errored or timed out
    CRASH = "crash"                  # unexpected exception escaped the agent
    UNKNOWN_AGENT = "unknown_agent"  # id not in the allowlist or registry
    POLICY = "policy"                # forbidden on protected-branch push
    BUDGET = "budget"                # pass blocked by budget limits
    NOT_APPLICABLE = "not_applicable"  # agent reported itself skipped


class ReviewRouterError(Exception):
    """Base exception for review router errors."""
    pass


class ConfigValidationError(ReviewRouterError):
    """Configuration file is malformed or fails schema validation."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidAgentResultError(ReviewRouterError):
    """A serialized agent result does not match any known result shape."""
    pass
