"""
Unit tests for the execution orchestrator.

Agents are doubles from conftest; no subprocess or LLM is involved.
"""

import asyncio
import logging

import pytest

from conftest import FakeAgent, config_with_passes, crashing_agent, failing_agent, make_finding
from review_router.errors import FailureKind
from review_router.schemas.common import AgentSuccess, FailureStage, Provenance, agent_success
from review_router.schemas.config import PassConfig
from review_router.services.cache import ResultCache, generate_cache_key
from review_router.supervisor.orchestrator import (
    BUDGET_SKIP_REASON,
    ExecuteOptions,
    ExecutionOrchestrator,
    execute_all_passes,
)


class TestPassExecution:
    """Passes run in order and findings are tagged by provenance."""

    @pytest.mark.asyncio
    async def test_success_findings_are_complete(self, make_context, registry_of, allowed_budget):
        agent = FakeAgent("semgrep", findings=[make_finding()])
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"], required=True))

        result = await execute_all_passes(config, make_context(config), registry_of(agent), allowed_budget)

        assert not result.aborted
        assert len(result.complete_findings) == 1
        assert result.complete_findings[0].provenance == Provenance.COMPLETE
        assert result.partial_findings == []
        assert len(result.all_results) == 1

    @pytest.mark.asyncio
    async def test_agent_supplied_provenance_is_replaced(self, make_context, registry_of, allowed_budget):
        mislabeled = make_finding(provenance=Provenance.PARTIAL)
        salvage = [make_finding(source_agent="pr_agent", provenance=Provenance.COMPLETE)]
        config = config_with_passes(
            PassConfig(name="static", agents=["semgrep"]),
            PassConfig(name="ai", agents=["pr_agent"]),
        )
        registry = registry_of(
            FakeAgent("semgrep", findings=[mislabeled]),
            failing_agent("pr_agent", partial=salvage),
        )

        result = await execute_all_passes(config, make_context(config), registry, allowed_budget)

        assert not result.aborted
        assert [f.provenance for f in result.complete_findings] == [Provenance.COMPLETE]
        assert [f.provenance for f in result.partial_findings] == [Provenance.PARTIAL]

    @pytest.mark.asyncio
    async def test_disabled_pass_is_not_run(self, make_context, registry_of, allowed_budget):
        agent = FakeAgent("semgrep")
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"], enabled=False))

        result = await execute_all_passes(config, make_context(config), registry_of(agent), allowed_budget)

        assert agent.calls == 0
        assert result.all_results == []

    @pytest.mark.asyncio
    async def test_optional_failure_keeps_partial_findings(self, make_context, registry_of, allowed_budget, caplog):
        salvage = [make_finding(source_agent="pr_agent", message="half done")]
        agent = failing_agent("pr_agent", "rate limited", partial=salvage)
        config = config_with_passes(PassConfig(name="ai", agents=["pr_agent"]))

        with caplog.at_level(logging.WARNING, logger="review_router"):
            result = await execute_all_passes(config, make_context(config), registry_of(agent), allowed_budget)

        assert not result.aborted
        assert result.complete_findings == []
        assert len(result.partial_findings) == 1
        assert result.partial_findings[0].provenance == Provenance.PARTIAL
        assert result.skipped_agents[0].kind == FailureKind.EXECUTION
        assert "Optional agent pr_agent failed: rate limited" in caplog.text

    @pytest.mark.asyncio
    async def test_preflight_failure_kind(self, make_context, registry_of, allowed_budget):
        agent = failing_agent("semgrep", "semgrep not installed", stage=FailureStage.PREFLIGHT)
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"]))

        result = await execute_all_passes(config, make_context(config), registry_of(agent), allowed_budget)

        assert result.skipped_agents[0].kind == FailureKind.PREFLIGHT

    @pytest.mark.asyncio
    async def test_not_applicable_agent_is_skipped(self, make_context, registry_of, allowed_budget):
        agent = FakeAgent("semgrep", applicable=False)
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"], required=True))

        result = await execute_all_passes(config, make_context(config), registry_of(agent), allowed_budget)

        assert not result.aborted
        assert result.skipped_agents[0].kind == FailureKind.NOT_APPLICABLE


class TestRequiredFailures:
    """A required failure ends the run; crashes and failures log differently."""

    @pytest.mark.asyncio
    async def test_required_failure_aborts(self, make_context, registry_of, allowed_budget, caplog):
        static = failing_agent("semgrep", "exit status 2")
        later = FakeAgent("reviewdog")
        config = config_with_passes(
            PassConfig(name="static", agents=["semgrep"], required=True),
            PassConfig(name="lint", agents=["reviewdog"]),
        )

        with caplog.at_level(logging.ERROR, logger="review_router"):
            result = await execute_all_passes(config, make_context(config), registry_of(static, later), allowed_budget)

        assert result.aborted
        assert result.abort.pass_name == "static"
        assert result.abort.agent_id == "semgrep"
        assert result.abort.kind == FailureKind.EXECUTION
        assert later.calls == 0
        assert "Required agent semgrep failed: exit status 2" in caplog.text
        assert "crashed" not in caplog.text

    @pytest.mark.asyncio
    async def test_required_crash_logs_crashed(self, make_context, registry_of, allowed_budget, caplog):
        static = crashing_agent("semgrep", "boom")
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"], required=True))

        with caplog.at_level(logging.ERROR, logger="review_router"):
            result = await execute_all_passes(config, make_context(config), registry_of(static), allowed_budget)

        assert result.aborted
        assert result.abort.kind == FailureKind.CRASH
        assert "Required agent semgrep crashed: boom" in caplog.text

    @pytest.mark.asyncio
    async def test_optional_crash_continues(self, make_context, registry_of, allowed_budget):
        crash = crashing_agent("reviewdog")
        ok = FakeAgent("semgrep", findings=[make_finding()])
        config = config_with_passes(PassConfig(name="lint", agents=["reviewdog", "semgrep"]))

        result = await execute_all_passes(config, make_context(config), registry_of(crash, ok), allowed_budget)

        assert not result.aborted
        assert len(result.complete_findings) == 1
        assert result.skipped_agents[0].agent_id == "reviewdog"
        assert result.skipped_agents[0].kind == FailureKind.CRASH

    @pytest.mark.asyncio
    async def test_timeout_is_execution_failure(self, make_context, registry_of, allowed_budget):
        slow = FakeAgent("semgrep", delay=1.0, timeout_seconds=0.05)
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"]))

        result = await execute_all_passes(config, make_context(config), registry_of(slow), allowed_budget)

        assert result.skipped_agents[0].kind == FailureKind.EXECUTION
        assert "timed out" in result.skipped_agents[0].reason


class TestBudgetGate:
    """Exhausted budget skips optional paid passes and aborts required ones."""

    @pytest.mark.asyncio
    async def test_optional_paid_pass_skipped(self, make_context, registry_of, exhausted_budget):
        paid = FakeAgent("ai_semantic_review", paid=True)
        config = config_with_passes(PassConfig(name="ai", agents=["ai_semantic_review"]))

        result = await execute_all_passes(config, make_context(config), registry_of(paid), exhausted_budget)

        assert not result.aborted
        assert paid.calls == 0
        assert result.skipped_agents[0].reason == BUDGET_SKIP_REASON
        assert result.skipped_agents[0].kind == FailureKind.BUDGET

    @pytest.mark.asyncio
    async def test_required_paid_pass_aborts(self, make_context, registry_of, exhausted_budget):
        paid = FakeAgent("ai_semantic_review", paid=True)
        config = config_with_passes(PassConfig(name="ai", agents=["ai_semantic_review"], required=True))

        result = await execute_all_passes(config, make_context(config), registry_of(paid), exhausted_budget)

        assert result.aborted
        assert result.abort.kind == FailureKind.BUDGET
        assert paid.calls == 0

    @pytest.mark.asyncio
    async def test_free_local_pass_never_budget_skipped(self, make_context, registry_of, exhausted_budget):
        local = FakeAgent("local_llm", paid=True, findings=[make_finding(source_agent="local_llm")])
        config = config_with_passes(PassConfig(name="local", agents=["local_llm"], required=True))

        result = await execute_all_passes(config, make_context(config), registry_of(local), exhausted_budget)

        assert not result.aborted
        assert local.calls == 1
        assert len(result.complete_findings) == 1

    @pytest.mark.asyncio
    async def test_unpaid_pass_runs_with_exhausted_budget(self, make_context, registry_of, exhausted_budget):
        static = FakeAgent("semgrep")
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"], required=True))

        result = await execute_all_passes(config, make_context(config), registry_of(static), exhausted_budget)

        assert not result.aborted
        assert static.calls == 1


class TestAgentSelection:
    """Allowlist, registry and protected-branch policy."""

    @pytest.mark.asyncio
    async def test_unknown_agent_skipped(self, make_context, registry_of, allowed_budget):
        config = config_with_passes(PassConfig(name="static", agents=["rm_rf_agent"], required=True))

        result = await execute_all_passes(config, make_context(config), registry_of(), allowed_budget)

        assert not result.aborted
        assert result.skipped_agents[0].kind == FailureKind.UNKNOWN_AGENT
        assert "allowlist" in result.skipped_agents[0].reason

    @pytest.mark.asyncio
    async def test_allowlisted_but_unregistered_skipped(self, make_context, registry_of, allowed_budget):
        config = config_with_passes(PassConfig(name="ai", agents=["opencode"]))

        result = await execute_all_passes(config, make_context(config), registry_of(), allowed_budget)

        assert result.skipped_agents[0].kind == FailureKind.UNKNOWN_AGENT

    @pytest.mark.asyncio
    async def test_pr_only_agent_skipped_on_main_push(self, make_context, registry_of, allowed_budget):
        pr_agent = FakeAgent("pr_agent")
        static = FakeAgent("semgrep")
        config = config_with_passes(PassConfig(name="all", agents=["semgrep", "pr_agent"]))
        env = {"GITHUB_EVENT_NAME": "push", "GITHUB_REF_NAME": "main", "PATH": "/usr/bin"}

        result = await execute_all_passes(
            config, make_context(config, env=env), registry_of(pr_agent, static), allowed_budget,
        )

        assert pr_agent.calls == 0
        assert static.calls == 1
        assert result.skipped_agents[0].agent_id == "pr_agent"
        assert result.skipped_agents[0].kind == FailureKind.POLICY

    @pytest.mark.asyncio
    async def test_agent_env_is_scoped(self, make_context, registry_of, allowed_budget):
        agent = FakeAgent("semgrep")
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"]))

        await execute_all_passes(config, make_context(config), registry_of(agent), allowed_budget)

        assert "GITHUB_TOKEN" not in agent.seen_env
        assert agent.seen_env["PATH"] == "/usr/bin"
        assert agent.seen_env["NO_COLOR"] == "1"


class TestCache:
    """Successful results are cached and served without re-running the agent."""

    def setup_method(self):
        self.cache = ResultCache()
        self.options = ExecuteOptions(pr_number=7, head_sha="abc123", config_hash="0123456789abcdef")

    @pytest.mark.asyncio
    async def test_success_is_cached_then_served(self, make_context, registry_of, allowed_budget, caplog):
        agent = FakeAgent("semgrep", findings=[make_finding()])
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"]))
        orchestrator = ExecutionOrchestrator(
            config=config, registry=registry_of(agent), budget_check=allowed_budget,
            options=self.options, cache=self.cache,
        )

        first = await orchestrator.execute(make_context(config))
        with caplog.at_level(logging.INFO, logger="review_router"):
            second = await orchestrator.execute(make_context(config))

        assert agent.calls == 1
        assert len(first.complete_findings) == 1
        assert len(second.complete_findings) == 1
        assert second.complete_findings[0].provenance == Provenance.COMPLETE
        assert "Cache hit for semgrep" in caplog.text

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, make_context, registry_of, allowed_budget):
        agent = failing_agent("reviewdog")
        config = config_with_passes(PassConfig(name="lint", agents=["reviewdog"]))
        orchestrator = ExecutionOrchestrator(
            config=config, registry=registry_of(agent), budget_check=allowed_budget,
            options=self.options, cache=self.cache,
        )

        await orchestrator.execute(make_context(config))
        await orchestrator.execute(make_context(config))

        assert agent.calls == 2
        assert len(self.cache) == 0

    @pytest.mark.asyncio
    async def test_cache_hit_survives_budget_block(self, make_context, registry_of, exhausted_budget):
        agent = FakeAgent("ai_semantic_review", paid=True)
        self.cache.set(
            generate_cache_key(7, "abc123", "0123456789abcdef", "ai_semantic_review"),
            agent_success("ai_semantic_review", [make_finding(source_agent="ai_semantic_review")]),
        )
        config = config_with_passes(PassConfig(name="ai", agents=["ai_semantic_review"], required=True))

        result = await ExecutionOrchestrator(
            config=config, registry=registry_of(agent), budget_check=exhausted_budget,
            options=self.options, cache=self.cache,
        ).execute(make_context(config))

        assert not result.aborted
        assert agent.calls == 0
        assert len(result.complete_findings) == 1

    @pytest.mark.asyncio
    async def test_no_cache_without_identifiers(self, make_context, registry_of, allowed_budget):
        agent = FakeAgent("semgrep")
        config = config_with_passes(PassConfig(name="static", agents=["semgrep"]))
        orchestrator = ExecutionOrchestrator(
            config=config, registry=registry_of(agent), budget_check=allowed_budget,
            cache=self.cache,
        )

        await orchestrator.execute(make_context(config))

        assert len(self.cache) == 0


class TestConcurrency:
    """Agents in a pass run together; outcomes are merged in declared order."""

    @pytest.mark.asyncio
    async def test_agents_overlap(self, make_context, registry_of, allowed_budget):
        agents = [
            FakeAgent("semgrep", delay=0.2),
            FakeAgent("reviewdog", delay=0.2),
            FakeAgent("local_llm", delay=0.2),
        ]
        config = config_with_passes(PassConfig(name="all", agents=["semgrep", "reviewdog", "local_llm"]))

        loop = asyncio.get_running_loop()
        start = loop.time()
        await execute_all_passes(config, make_context(config), registry_of(*agents), allowed_budget)
        elapsed = loop.time() - start

        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_results_in_declared_order(self, make_context, registry_of, allowed_budget):
        slow = FakeAgent("semgrep", delay=0.1, findings=[make_finding(message="slow")])
        fast = FakeAgent("reviewdog", findings=[make_finding(source_agent="reviewdog", message="fast")])
        config = config_with_passes(PassConfig(name="all", agents=["semgrep", "reviewdog"]))

        result = await execute_all_passes(config, make_context(config), registry_of(slow, fast), allowed_budget)

        assert [r.agent_id for r in result.all_results] == ["semgrep", "reviewdog"]
        assert [f.message for f in result.complete_findings] == ["slow", "fast"]

    @pytest.mark.asyncio
    async def test_required_failure_waits_for_siblings(self, make_context, registry_of, allowed_budget):
        failing = failing_agent("semgrep")
        sibling = FakeAgent("reviewdog", delay=0.1)
        config = config_with_passes(PassConfig(name="static", agents=["semgrep", "reviewdog"], required=True))

        result = await execute_all_passes(config, make_context(config), registry_of(failing, sibling), allowed_budget)

        assert result.aborted
        assert sibling.calls == 1
        assert len(result.all_results) == 1
        assert not any(isinstance(r, AgentSuccess) and r.agent_id == "semgrep" for r in result.all_results)
