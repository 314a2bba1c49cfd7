"""
Execution Orchestrator

Runs configured passes in declared order. For each agent of a pass it applies,
in order: the allowlist, the protected-branch policy, the result cache and the
budget gate, then runs what is left of the pass concurrently and classifies
every outcome in declared order once all of them have settled.

Classification returns CONTINUE or ABORT. The pass loop in execute() is the
only place that acts on ABORT; nothing below it ends the run.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Union

from ..errors import FailureKind, InvalidAgentResultError
from ..logging_config import get_logger, log_agent_complete, log_agent_start, log_with_data
from ..schemas.common import (
    AgentFailure,
    AgentSkipped,
    AgentSuccess,
    FailureStage,
    Finding,
    Provenance,
    SkippedAgent,
    agent_failure,
    parse_agent_result,
)
from ..schemas.config import PassConfig, ReviewConfig
from ..schemas.report import ExecuteResult, RunAbort
from ..services.budget import BudgetCheck
from ..services.cache import ResultCache, generate_cache_key
from ..services.policy import is_agent_forbidden_on_main, is_main_branch_push, needs_budget_gate
from ..services.security import build_agent_env, is_known_agent_id
from ..subagents import AgentRegistry
from ..subagents.base_agent import AgentContext, ReviewAgent

logger = get_logger(__name__)

BUDGET_SKIP_REASON = "Budget limit exceeded"

Result = Union[AgentSuccess, AgentFailure, AgentSkipped]


class Decision(str, Enum):
    """What the pass loop does after an outcome is classified."""
    CONTINUE = "continue"
    ABORT = "abort"


@dataclass
class Classification:
    decision: Decision
    abort: Optional[RunAbort] = None


CONTINUE = Classification(Decision.CONTINUE)


def _tagged(findings: List[Finding], provenance: Provenance) -> List[Finding]:
    # Provenance belongs to the collector; a tag set by the agent is replaced
    return [f.model_copy(update={"provenance": provenance}) for f in findings]


@dataclass
class ExecuteOptions:
    """Cache identifiers for this run; the cache is used only when all are known."""
    pr_number: Optional[int] = None
    head_sha: Optional[str] = None
    config_hash: Optional[str] = None

    @property
    def has_cache_identifiers(self) -> bool:
        return self.pr_number is not None and bool(self.head_sha) and bool(self.config_hash)


@dataclass
class _Slot:
    """One listed agent of a pass, in declared order."""
    agent_id: str
    agent: Optional[ReviewAgent] = None
    skip: Optional[SkippedAgent] = None
    cached: Optional[Result] = None
    outcome: Optional[Union[Result, BaseException]] = None
    needs_run: bool = False


@dataclass
class ExecutionOrchestrator:
    """
    Drives passes and agents, assembling complete and partial finding sets.

    Usage:
        orchestrator = ExecutionOrchestrator(config, registry, budget_check, cache=cache)
        result = await orchestrator.execute(context)
        if result.aborted: ...
    """
    config: ReviewConfig
    registry: AgentRegistry
    budget_check: BudgetCheck
    options: ExecuteOptions = field(default_factory=ExecuteOptions)
    cache: Optional[ResultCache] = None
    router_env: Optional[Mapping[str, str]] = None

    async def execute(self, context: AgentContext) -> ExecuteResult:
        result = ExecuteResult()
        router_env = self.router_env if self.router_env is not None else context.env
        main_push = is_main_branch_push(router_env)

        if main_push:
            logger.info("Push to protected branch: PR-only agents will be skipped")

        for pass_config in self.config.passes:
            if not pass_config.enabled:
                logger.info(f"Pass '{pass_config.name}' disabled, skipping")
                continue

            log_with_data(logger, logging.INFO, f"Running pass: {pass_config.name}", {
                "pass": pass_config.name,
                "agents": pass_config.agents,
                "required": pass_config.required,
            })

            classification = await self._run_pass(pass_config, context, router_env, main_push, result)
            if classification.decision == Decision.ABORT:
                result.abort = classification.abort
                log_with_data(logger, logging.ERROR, f"Run aborted in pass '{pass_config.name}'", {
                    "pass": pass_config.name,
                    "agent": classification.abort.agent_id if classification.abort else None,
                    "reason": classification.abort.reason if classification.abort else None,
                })
                return result

        log_with_data(logger, logging.INFO, "All passes completed", {
            "complete_findings": len(result.complete_findings),
            "partial_findings": len(result.partial_findings),
            "skipped_agents": len(result.skipped_agents),
        })
        return result

    async def _run_pass(
        self,
        pass_config: PassConfig,
        context: AgentContext,
        router_env: Mapping[str, str],
        main_push: bool,
        result: ExecuteResult,
    ) -> Classification:
        slots = [self._prepare_slot(pass_config, agent_id, main_push) for agent_id in pass_config.agents]

        pending = [s for s in slots if s.needs_run]
        if pending and self._pass_blocked_by_budget(slots):
            if pass_config.required:
                reason = self.budget_check.reason or BUDGET_SKIP_REASON
                logger.error(f"Required pass '{pass_config.name}' blocked by budget: {reason}")
                return Classification(
                    Decision.ABORT,
                    RunAbort(
                        pass_name=pass_config.name,
                        agent_id=pending[0].agent_id,
                        reason=f"{BUDGET_SKIP_REASON}: {reason}",
                        kind=FailureKind.BUDGET,
                    ),
                )
            for slot in pending:
                slot.needs_run = False
                slot.skip = self._skipped(slot, pass_config, BUDGET_SKIP_REASON, FailureKind.BUDGET)
            logger.warning(f"Pass '{pass_config.name}' skipped: {BUDGET_SKIP_REASON}")
            pending = []

        if pending:
            await self._run_concurrently(pending, context, router_env)

        for slot in slots:
            classification = self._classify_slot(pass_config, slot, result)
            if classification.decision == Decision.ABORT:
                return classification
        return CONTINUE

    def _prepare_slot(self, pass_config: PassConfig, agent_id: str, main_push: bool) -> _Slot:
        slot = _Slot(agent_id=agent_id)

        if not is_known_agent_id(agent_id):
            logger.warning(f"Rejected agent '{agent_id}': not in agent allowlist")
            slot.skip = self._skipped(
                slot, pass_config,
                f"Agent '{agent_id}' is not in the agent allowlist",
                FailureKind.UNKNOWN_AGENT,
            )
            return slot

        slot.agent = self.registry.get(agent_id)
        if slot.agent is None:
            logger.warning(f"Agent '{agent_id}' is allowlisted but not registered")
            slot.skip = self._skipped(
                slot, pass_config,
                f"Agent '{agent_id}' has no registered implementation",
                FailureKind.UNKNOWN_AGENT,
            )
            return slot

        if main_push and is_agent_forbidden_on_main(agent_id):
            slot.skip = self._skipped(
                slot, pass_config,
                "Not allowed on push to main branch",
                FailureKind.POLICY,
            )
            return slot

        cached = self._cache_lookup(agent_id)
        if cached is not None:
            slot.cached = cached
            return slot

        slot.needs_run = True
        return slot

    def _pass_blocked_by_budget(self, slots: List[_Slot]) -> bool:
        if self.budget_check.allowed:
            return False
        agents = [s.agent for s in slots if s.agent is not None]
        return needs_budget_gate(agents)

    def _cache_key(self, agent_id: str) -> Optional[str]:
        if self.cache is None or not self.config.cache.enabled:
            return None
        if not self.options.has_cache_identifiers:
            return None
        return generate_cache_key(
            self.options.pr_number,
            self.options.head_sha,
            self.options.config_hash,
            agent_id,
        )

    def _cache_lookup(self, agent_id: str) -> Optional[Result]:
        key = self._cache_key(agent_id)
        if key is None:
            return None
        entry = self.cache.get(key)
        if entry is None:
            return None
        log_with_data(logger, logging.INFO, f"Cache hit for {agent_id}", {
            "agent": agent_id,
            "key": key,
            "created_at": entry.created_at,
        })
        return entry.result

    async def _run_concurrently(
        self,
        pending: List[_Slot],
        context: AgentContext,
        router_env: Mapping[str, str],
    ) -> None:
        """Run agents as concurrent tasks and wait for every one to settle."""
        tasks = []
        for slot in pending:
            scoped = dataclasses.replace(
                context,
                env=build_agent_env(slot.agent_id, router_env),
                files=list(context.files),
            )
            tasks.append(self._run_agent(slot.agent, scoped))

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        for slot, outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                # Cancellation and interpreter exits are not agent crashes
                raise outcome
            slot.outcome = outcome

    async def _run_agent(self, agent: ReviewAgent, context: AgentContext) -> Result:
        log_agent_start(logger, agent.id, len(context.reviewable_files()))
        outcome = await agent.run(context)
        if not isinstance(outcome, (AgentSuccess, AgentFailure, AgentSkipped)):
            outcome = parse_agent_result(outcome)
        log_agent_complete(logger, agent.id, outcome.metrics.duration_ms, {"status": outcome.status})
        return outcome

    def _classify_slot(self, pass_config: PassConfig, slot: _Slot, result: ExecuteResult) -> Classification:
        if slot.skip is not None:
            result.skipped_agents.append(slot.skip)
            return CONTINUE

        if slot.cached is not None:
            return self.classify_outcome(pass_config, slot, slot.cached, result, from_cache=True)

        outcome = slot.outcome
        if isinstance(outcome, Exception):
            return self._classify_crash(pass_config, slot, outcome, result)
        return self.classify_outcome(pass_config, slot, outcome, result)

    def classify_outcome(
        self,
        pass_config: PassConfig,
        slot: _Slot,
        outcome: Result,
        result: ExecuteResult,
        from_cache: bool = False,
    ) -> Classification:
        """Merge one settled outcome into the run and decide whether to go on."""
        result.all_results.append(outcome)

        if isinstance(outcome, AgentSuccess):
            result.complete_findings.extend(
                _tagged(outcome.findings, Provenance.COMPLETE)
            )
            if not from_cache:
                self._cache_store(slot.agent_id, outcome)
            return CONTINUE

        if isinstance(outcome, AgentSkipped):
            result.skipped_agents.append(
                self._skipped(slot, pass_config, outcome.reason, FailureKind.NOT_APPLICABLE)
            )
            return CONTINUE

        kind = FailureKind.PREFLIGHT if outcome.failure_stage == FailureStage.PREFLIGHT else FailureKind.EXECUTION
        return self._handle_failure(pass_config, slot, outcome, kind, "failed", result)

    def _classify_crash(
        self,
        pass_config: PassConfig,
        slot: _Slot,
        error: Exception,
        result: ExecuteResult,
    ) -> Classification:
        message = str(error) or type(error).__name__
        if isinstance(error, InvalidAgentResultError):
            message = f"returned an invalid result: {message}"
        failure = agent_failure(slot.agent_id, message, FailureStage.EXEC)
        result.all_results.append(failure)
        return self._handle_failure(pass_config, slot, failure, FailureKind.CRASH, "crashed", result, exc=error)

    def _handle_failure(
        self,
        pass_config: PassConfig,
        slot: _Slot,
        failure: AgentFailure,
        kind: FailureKind,
        verb: str,
        result: ExecuteResult,
        exc: Optional[Exception] = None,
    ) -> Classification:
        result.partial_findings.extend(
            _tagged(failure.partial_findings, Provenance.PARTIAL)
        )
        result.skipped_agents.append(self._skipped(slot, pass_config, failure.error, kind))

        data = {
            "agent": slot.agent_id,
            "pass": pass_config.name,
            "stage": failure.failure_stage.value,
            "partial_findings": len(failure.partial_findings),
            "error": failure.error,
        }
        exc_info = (type(exc), exc, exc.__traceback__) if exc is not None else None

        if pass_config.required:
            log_with_data(
                logger, logging.ERROR,
                f"Required agent {slot.agent_id} {verb}: {failure.error}",
                data, exc_info=exc_info,
            )
            return Classification(
                Decision.ABORT,
                RunAbort(
                    pass_name=pass_config.name,
                    agent_id=slot.agent_id,
                    reason=f"Required agent {slot.agent_id} {verb}: {failure.error}",
                    kind=kind,
                ),
            )

        log_with_data(
            logger, logging.WARNING,
            f"Optional agent {slot.agent_id} {verb}: {failure.error}",
            data, exc_info=exc_info,
        )
        return CONTINUE

    def _cache_store(self, agent_id: str, outcome: AgentSuccess) -> None:
        key = self._cache_key(agent_id)
        if key is None:
            return
        self.cache.set(key, outcome, ttl=self.config.cache.ttl_seconds)
        logger.debug(f"Cached result for {agent_id}")

    def _skipped(self, slot: _Slot, pass_config: PassConfig, reason: str, kind: FailureKind) -> SkippedAgent:
        return SkippedAgent(
            agent_id=slot.agent_id,
            name=slot.agent.name if slot.agent is not None else slot.agent_id,
            reason=reason,
            kind=kind,
            pass_name=pass_config.name,
        )


async def execute_all_passes(
    config: ReviewConfig,
    context: AgentContext,
    registry: AgentRegistry,
    budget_check: BudgetCheck,
    options: Optional[ExecuteOptions] = None,
    cache: Optional[ResultCache] = None,
    router_env: Optional[Mapping[str, str]] = None,
) -> ExecuteResult:
    """Convenience wrapper around ExecutionOrchestrator.execute."""
    orchestrator = ExecutionOrchestrator(
        config=config,
        registry=registry,
        budget_check=budget_check,
        options=options or ExecuteOptions(),
        cache=cache,
        router_env=router_env,
    )
    return await orchestrator.execute(context)
