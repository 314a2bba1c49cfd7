"""
Base Agent

Contract every review agent implements. Provides:
- Async execution with a self-enforced timeout
- Explicit failures carrying a stage and partial findings
- Production logging with timing

Exceptions other than AgentError escape run() on purpose: the orchestrator
classifies them as crashes, distinct from failures an agent reports itself.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..logging_config import get_logger, get_run_id, log_with_data
from ..schemas.common import (
    AgentMetrics,
    AgentResult,
    FailureStage,
    Finding,
    agent_failure,
    agent_skipped,
    agent_success,
)
from ..schemas.config import ReviewConfig
from ..schemas.diff import DiffFile

logger = get_logger(__name__)


@dataclass
class AgentConfig:
    """Configuration for agent execution."""
    timeout_seconds: float = 300.0
    max_files: Optional[int] = None


@dataclass
class AgentContext:
    """
    Everything an agent may read for one run.

    Each agent gets its own copy with an environment scoped by the security
    allowlist; agents never share mutable state.
    """
    repo_path: str
    files: List[DiffFile]
    diff_content: str
    config: ReviewConfig
    now: datetime
    env: Dict[str, str] = field(default_factory=dict)
    pr_number: Optional[int] = None
    head_sha: Optional[str] = None
    base_sha: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None

    def reviewable_files(self) -> List[DiffFile]:
        """Files with new-side content an agent can analyze."""
        return [f for f in self.files if not f.is_deleted and not f.is_binary]


class AgentError(Exception):
    """Failure an agent reports about itself."""

    def __init__(
        self,
        message: str,
        stage: FailureStage = FailureStage.EXEC,
        partial_findings: Optional[List[Finding]] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.partial_findings = partial_findings or []


class ReviewAgent(ABC):
    """
    Abstract base class for review agents.

    Agents must implement:
    - id / name properties
    - _execute(): the analysis (async), returning findings or raising AgentError

    Agents may override supports() to skip changes they cannot analyze.
    """

    uses_paid_inference: bool = False

    def __init__(self, config: Optional[AgentConfig] = None):
        self.config = config or AgentConfig()

    @property
    @abstractmethod
    def id(self) -> str:
        """Stable agent id used in config, cache keys and allowlists."""
        pass

    @property
    def name(self) -> str:
        """Human readable name."""
        return self.id

    def supports(self, context: AgentContext) -> bool:
        return bool(context.reviewable_files())

    async def run(self, context: AgentContext) -> AgentResult:
        """
        Run the agent.

        Returns:
            success, failure or skipped result

        Raises:
            Exception: anything unexpected from _execute propagates unchanged
        """
        start_time = time.perf_counter()
        run_id = get_run_id() or "unknown"

        if not self.supports(context):
            log_with_data(logger, 20, f"Agent not applicable: {self.id}", {
                "agent": self.id,
                "run_id": run_id,
            })
            return agent_skipped(self.id, "No supported files in diff")

        log_with_data(logger, 20, f"Agent starting: {self.id}", {
            "agent": self.id,
            "run_id": run_id,
            "timeout_seconds": self.config.timeout_seconds,
        })

        try:
            findings = await asyncio.wait_for(
                self._execute(context),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            duration_ms = (time.perf_counter() - start_time) * 1000
            log_with_data(logger, 30, f"Agent timed out: {self.id}", {
                "agent": self.id,
                "run_id": run_id,
                "timeout_seconds": self.config.timeout_seconds,
                "duration_ms": round(duration_ms, 2),
            })
            return agent_failure(
                self.id,
                f"Execution timed out after {self.config.timeout_seconds} seconds",
                FailureStage.EXEC,
                metrics=AgentMetrics(duration_ms=duration_ms),
            )
        except AgentError as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            log_with_data(logger, 30, f"Agent reported failure: {self.id} - {e}", {
                "agent": self.id,
                "run_id": run_id,
                "stage": e.stage.value,
                "partial_findings": len(e.partial_findings),
                "duration_ms": round(duration_ms, 2),
            })
            return agent_failure(
                self.id,
                str(e),
                e.stage,
                partial_findings=e.partial_findings,
                metrics=AgentMetrics(
                    duration_ms=duration_ms,
                    files_processed=len(context.reviewable_files()),
                ),
            )

        duration_ms = (time.perf_counter() - start_time) * 1000
        log_with_data(logger, 20, f"Agent completed: {self.id}", {
            "agent": self.id,
            "run_id": run_id,
            "findings": len(findings),
            "duration_ms": round(duration_ms, 2),
        })
        return agent_success(
            self.id,
            findings,
            self._metrics(context, duration_ms),
        )

    def _metrics(self, context: AgentContext, duration_ms: float) -> AgentMetrics:
        return AgentMetrics(
            duration_ms=duration_ms,
            files_processed=len(context.reviewable_files()),
        )

    @abstractmethod
    async def _execute(self, context: AgentContext) -> List[Finding]:
        """
        Perform the analysis.

        Raises:
            AgentError: for failures the agent can describe
        """
        pass
