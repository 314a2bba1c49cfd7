"""
Shared fixtures and agent doubles for the review router tests.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from review_router.schemas.common import FailureStage, Finding, Severity
from review_router.schemas.config import PassConfig, ReviewConfig
from review_router.schemas.diff import DiffFile, DiffHunk
from review_router.services.budget import BudgetCheck
from review_router.subagents import AgentRegistry
from review_router.subagents.base_agent import AgentConfig, AgentContext, AgentError, ReviewAgent


FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

SAMPLE_DIFF = """diff --git a/src/app.py b/src/app.py
index 1111111..2222222 100644
--- a/src/app.py
+++ b/src/app.py
@@ -10,3 +10,6 @@ def handler(event):
     data = load(event)
-    return data
+    if data is None:
+        return {}
+    result = transform(data)
+    return result
     # end
"""


def make_finding(
    file: str = "src/app.py",
    line: Optional[int] = 11,
    message: str = "Possible None dereference",
    severity: Severity = Severity.WARNING,
    source_agent: str = "semgrep",
    rule_id: Optional[str] = "python.none-check",
    **kwargs,
) -> Finding:
    return Finding(
        file=file,
        line=line,
        message=message,
        severity=severity,
        source_agent=source_agent,
        rule_id=rule_id,
        **kwargs,
    )


class FakeAgent(ReviewAgent):
    """Agent double with a configurable id, paid flag and behaviour."""

    def __init__(
        self,
        agent_id: str,
        findings: Optional[List[Finding]] = None,
        error: Optional[AgentError] = None,
        crash: Optional[Exception] = None,
        paid: bool = False,
        applicable: bool = True,
        delay: float = 0.0,
        timeout_seconds: float = 5.0,
    ):
        super().__init__(AgentConfig(timeout_seconds=timeout_seconds))
        self._id = agent_id
        self._findings = findings or []
        self._error = error
        self._crash = crash
        self._applicable = applicable
        self._delay = delay
        self.uses_paid_inference = paid
        self.calls = 0
        self.seen_env: Optional[dict] = None

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return f"Fake {self._id}"

    def supports(self, context: AgentContext) -> bool:
        return self._applicable

    async def _execute(self, context: AgentContext) -> List[Finding]:
        self.calls += 1
        self.seen_env = dict(context.env)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._crash is not None:
            raise self._crash
        if self._error is not None:
            raise self._error
        return list(self._findings)


def failing_agent(agent_id: str, message: str = "tool exited with status 2",
                  stage: FailureStage = FailureStage.EXEC,
                  partial: Optional[List[Finding]] = None, **kwargs) -> FakeAgent:
    return FakeAgent(agent_id, error=AgentError(message, stage, partial), **kwargs)


def crashing_agent(agent_id: str, message: str = "unexpected NoneType", **kwargs) -> FakeAgent:
    return FakeAgent(agent_id, crash=RuntimeError(message), **kwargs)


def config_with_passes(*passes: PassConfig, **kwargs) -> ReviewConfig:
    return ReviewConfig(passes=list(passes), **kwargs)


@pytest.fixture
def sample_files() -> List[DiffFile]:
    return [
        DiffFile(
            path="src/app.py",
            additions=4,
            deletions=1,
            hunks=[DiffHunk(
                old_start=10, old_lines=3, new_start=10, new_lines=6,
                added_lines=[11, 12, 13, 14],
                context_lines=[10, 15],
            )],
        )
    ]


@pytest.fixture
def allowed_budget() -> BudgetCheck:
    return BudgetCheck(allowed=True, estimated_cost_usd=0.01)


@pytest.fixture
def exhausted_budget() -> BudgetCheck:
    return BudgetCheck(allowed=False, reason="Estimated cost $2.0000 exceeds limit $1.00")


@pytest.fixture
def make_context(sample_files):
    def _make(config: Optional[ReviewConfig] = None, env: Optional[dict] = None, **kwargs) -> AgentContext:
        return AgentContext(
            repo_path=".",
            files=sample_files,
            diff_content=SAMPLE_DIFF,
            config=config or ReviewConfig(),
            now=FIXED_NOW,
            env=env if env is not None else {"PATH": "/usr/bin", "GITHUB_TOKEN": "ghs_secret"},
            **kwargs,
        )
    return _make


@pytest.fixture
def registry_of():
    def _make(*agents: ReviewAgent) -> AgentRegistry:
        return AgentRegistry(agents)
    return _make
