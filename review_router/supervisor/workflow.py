"""
Review Workflow

LangGraph state machine for one review run:

    execute_passes -> resolve_lines -> deduplicate -> gate -> END
          |
          +-- (required pass aborted) -> END

An aborted run produces no report; the caller turns the abort into a
non-zero exit status.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, TypedDict

from langgraph.graph import END, StateGraph

from ..logging_config import get_logger, log_workflow_transition
from ..schemas.common import Finding, Provenance
from ..schemas.config import ReviewConfig
from ..schemas.report import (
    DriftReport,
    ExecuteResult,
    InvalidLineDetail,
    ReviewReport,
    RunAbort,
    ValidationStats,
)
from ..services.budget import BudgetCheck
from ..services.cache import ResultCache
from ..subagents import AgentRegistry
from ..subagents.base_agent import AgentContext
from .deduplication import deduplicate_complete, deduplicate_partial, sort_findings
from .gating import evaluate_gating
from .line_resolver import (
    build_line_resolver,
    compute_drift_signal,
    compute_inline_drift_signal,
    normalize_findings_for_diff,
)
from .orchestrator import ExecuteOptions, ExecutionOrchestrator

logger = get_logger(__name__)


class ReviewState(TypedDict, total=False):
    """State for the review workflow."""
    context: AgentContext
    execute_result: ExecuteResult

    complete_findings: List[Finding]
    partial_findings: List[Finding]
    validation_stats: ValidationStats
    invalid_details: List[InvalidLineDetail]
    drift: DriftReport

    report: ReviewReport
    current_step: str


@dataclass
class WorkflowOutcome:
    execute_result: ExecuteResult
    report: Optional[ReviewReport] = None

    @property
    def abort(self) -> Optional[RunAbort]:
        return self.execute_result.abort


class ReviewWorkflow:
    """
    Runs the full pipeline for one change.

    Usage:
        workflow = ReviewWorkflow(config, registry, budget_check, cache=cache)
        outcome = await workflow.run(context)
    """

    def __init__(
        self,
        config: ReviewConfig,
        registry: AgentRegistry,
        budget_check: BudgetCheck,
        options: Optional[ExecuteOptions] = None,
        cache: Optional[ResultCache] = None,
        router_env: Optional[Mapping[str, str]] = None,
    ):
        self.config = config
        self.orchestrator = ExecutionOrchestrator(
            config=config,
            registry=registry,
            budget_check=budget_check,
            options=options or ExecuteOptions(),
            cache=cache,
            router_env=router_env,
        )
        self._graph = self._build_graph()
        self._compiled_graph = None

    @property
    def compiled_graph(self):
        if self._compiled_graph is None:
            self._compiled_graph = self._graph.compile()
        return self._compiled_graph

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(ReviewState)

        graph.add_node("execute_passes", self._node_execute_passes)
        graph.add_node("resolve_lines", self._node_resolve_lines)
        graph.add_node("deduplicate", self._node_deduplicate)
        graph.add_node("gate", self._node_gate)

        graph.set_entry_point("execute_passes")
        graph.add_conditional_edges(
            "execute_passes",
            self._route_after_execute,
            {
                "abort": END,
                "continue": "resolve_lines",
            },
        )
        graph.add_edge("resolve_lines", "deduplicate")
        graph.add_edge("deduplicate", "gate")
        graph.add_edge("gate", END)

        return graph

    def _route_after_execute(self, state: ReviewState) -> str:
        if state["execute_result"].aborted:
            log_workflow_transition(logger, "execute_passes", "END", "required pass aborted")
            return "abort"
        log_workflow_transition(logger, "execute_passes", "resolve_lines")
        return "continue"

    async def _node_execute_passes(self, state: ReviewState) -> Dict[str, Any]:
        result = await self.orchestrator.execute(state["context"])
        return {"execute_result": result, "current_step": "execute_passes"}

    async def _node_resolve_lines(self, state: ReviewState) -> Dict[str, Any]:
        result = state["execute_result"]
        resolver = build_line_resolver(state["context"].files)
        line_config = self.config.line_resolution

        # One resolution over both sets so the stats cover every finding
        resolution = normalize_findings_for_diff(
            result.complete_findings + result.partial_findings,
            resolver,
            line_config,
        )

        drift = DriftReport(
            overall=compute_drift_signal(resolution.stats, resolution.invalid_details, line_config),
            inline=compute_inline_drift_signal(resolution.stats, resolution.invalid_details, line_config),
        )
        logger.info(f"Drift: overall={drift.overall.level.value} inline={drift.inline.level.value}")
        log_workflow_transition(logger, "resolve_lines", "deduplicate")

        return {
            "complete_findings": [f for f in resolution.findings if f.provenance == Provenance.COMPLETE],
            "partial_findings": [f for f in resolution.findings if f.provenance == Provenance.PARTIAL],
            "validation_stats": resolution.stats,
            "invalid_details": resolution.invalid_details,
            "drift": drift,
            "current_step": "resolve_lines",
        }

    async def _node_deduplicate(self, state: ReviewState) -> Dict[str, Any]:
        complete = sort_findings(deduplicate_complete(state["complete_findings"]))
        partial = sort_findings(deduplicate_partial(state["partial_findings"]))
        log_workflow_transition(logger, "deduplicate", "gate")
        return {
            "complete_findings": complete,
            "partial_findings": partial,
            "current_step": "deduplicate",
        }

    async def _node_gate(self, state: ReviewState) -> Dict[str, Any]:
        drift = state["drift"]
        verdict = evaluate_gating(self.config.gating, state["complete_findings"], drift.inline)
        result = state["execute_result"]

        report = ReviewReport(
            complete_findings=state["complete_findings"],
            partial_findings=state["partial_findings"],
            drift_signal=drift,
            validation_stats=state["validation_stats"],
            gating_verdict=verdict,
            skipped_agents=result.skipped_agents,
            all_results=result.all_results,
        )
        log_workflow_transition(logger, "gate", "END")
        return {"report": report, "current_step": "gate"}

    async def run(self, context: AgentContext) -> WorkflowOutcome:
        final_state = await self.compiled_graph.ainvoke({"context": context})
        return WorkflowOutcome(
            execute_result=final_state["execute_result"],
            report=final_state.get("report"),
        )
