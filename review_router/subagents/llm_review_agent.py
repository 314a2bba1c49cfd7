"""
LLM Review Agents

Semantic review of the diff by a chat model:
- LLMReviewAgent (ai_semantic_review): hosted provider, paid inference
- LocalLLMAgent (local_llm): Ollama on the runner, free inference

The diff is redacted for secrets and truncated to the token budget before it
leaves the process. The model must answer with a JSON object of findings.
"""

import json
import re
import time
from typing import Any, Dict, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError

from ..llm_factory import DEFAULT_OLLAMA_BASE_URL, LLMFactory, LLMProvider
from ..logging_config import get_logger, log_llm_call
from ..schemas.common import AgentMetrics, FailureStage, Finding, Severity
from ..services.budget import estimate_cost
from ..utils.token_utils import TokenCounter
from .base_agent import AgentConfig, AgentContext, AgentError, ReviewAgent

logger = get_logger(__name__)

REVIEW_SYSTEM_PROMPT = """You are an expert code reviewer. Review the unified diff you are given and report real problems only: bugs, security issues, error handling gaps and clear maintainability hazards.

## Rules:
- Only comment on lines that appear in the diff, using new-file line numbers
- Do not report style preferences
- If nothing is wrong, return an empty list

## Output Format:
Respond with a single JSON object and nothing else:
{"findings": [{"file": "path/in/repo.py", "line": 42, "end_line": null, "severity": "error" | "warning" | "info", "message": "what is wrong and why", "suggestion": "optional fix or null", "rule_id": "short-kebab-case-category"}]}
"""

SECRET_PATTERNS = [
    re.compile(r"ghp_[a-zA-Z0-9]{36}"),
    re.compile(r"gho_[a-zA-Z0-9]{36}"),
    re.compile(r"ghs_[a-zA-Z0-9]{36}"),
    re.compile(r"github_pat_[a-zA-Z0-9_]{82}"),
    re.compile(r"GITHUB_TOKEN=[\"']?[^\"'\s]+[\"']?", re.IGNORECASE),
    re.compile(r"GH_TOKEN=[\"']?[^\"'\s]+[\"']?", re.IGNORECASE),
    re.compile(r"Authorization:\s*Bearer\s+\S+", re.IGNORECASE),
]

MAX_DIFF_LINES = 2000


def redact_secrets(text: str) -> str:
    for pattern in SECRET_PATTERNS:
        text = pattern.sub("[REDACTED]", text)
    return text


def extract_json_block(response: str) -> str:
    """Pull the JSON payload out of a reply that may wrap it in a code fence."""
    if "```json" in response:
        start = response.find("```json") + 7
        end = response.find("```", start)
        return response[start:end].strip()
    if "```" in response:
        start = response.find("```") + 3
        end = response.find("```", start)
        return response[start:end].strip()
    return response.strip()


SEVERITY_MAP = {
    "error": Severity.ERROR,
    "critical": Severity.ERROR,
    "high": Severity.ERROR,
    "warning": Severity.WARNING,
    "medium": Severity.WARNING,
    "info": Severity.INFO,
    "low": Severity.INFO,
}


class LLMReviewAgent(ReviewAgent):
    """Semantic review through a hosted chat model."""

    uses_paid_inference = True
    provider: LLMProvider = LLMProvider.OPENAI

    def __init__(self, config: Optional[AgentConfig] = None, llm: Optional[BaseChatModel] = None):
        super().__init__(config or AgentConfig(timeout_seconds=180.0))
        self._llm = llm
        self._last_usage: Dict[str, Any] = {}
        self._run_provider: LLMProvider = self.provider

    @property
    def id(self) -> str:
        return "ai_semantic_review"

    @property
    def name(self) -> str:
        return "AI Semantic Review"

    def _resolve_provider(self, context: AgentContext) -> LLMProvider:
        name = context.provider or context.env.get("LLM_PROVIDER")
        if name:
            try:
                return LLMProvider(name.lower())
            except ValueError as e:
                raise AgentError(f"unknown LLM provider '{name}'", FailureStage.PREFLIGHT) from e
        return self.provider

    def _resolve_model(self, context: AgentContext) -> Optional[str]:
        return context.model or context.env.get("MODEL") or context.config.models.default

    def _build_llm(self, context: AgentContext, provider: LLMProvider) -> BaseChatModel:
        if self._llm is not None:
            return self._llm

        valid, message = LLMFactory.validate_config(provider, context.env)
        if not valid:
            raise AgentError(message, FailureStage.PREFLIGHT)

        return LLMFactory.create(
            provider,
            model=self._resolve_model(context),
            max_tokens=context.config.limits.max_completion_tokens,
            env=context.env,
        )

    def _prepare_diff(self, context: AgentContext) -> str:
        diff = redact_secrets(context.diff_content)
        lines = diff.split("\n")
        if len(lines) > MAX_DIFF_LINES:
            diff = "\n".join(lines[:MAX_DIFF_LINES])
            diff += f"\n\n[... truncated {len(lines) - MAX_DIFF_LINES} lines ...]"

        counter = TokenCounter(self._resolve_model(context))
        diff, _ = counter.truncate_to_tokens(diff, context.config.limits.max_tokens_per_pr)
        return diff

    def _build_messages(self, context: AgentContext, diff: str) -> List[Any]:
        files = ", ".join(f.path for f in context.reviewable_files())
        human = (
            f"Review date: {context.now.date().isoformat()}\n"
            f"Changed files: {files}\n\n"
            f"```diff\n{diff}\n```"
        )
        return [SystemMessage(content=REVIEW_SYSTEM_PROMPT), HumanMessage(content=human)]

    async def _execute(self, context: AgentContext) -> List[Finding]:
        self._last_usage = {}
        # Costing follows the provider this run resolved, not the class default
        self._run_provider = self._resolve_provider(context)
        llm = self._build_llm(context, self._run_provider)
        diff = self._prepare_diff(context)
        if not diff.strip():
            return []

        messages = self._build_messages(context, diff)
        start = time.perf_counter()
        try:
            response = await llm.ainvoke(messages)
        except Exception as e:
            raise AgentError(f"LLM request failed: {e}", FailureStage.EXEC) from e
        duration_ms = (time.perf_counter() - start) * 1000

        usage = getattr(response, "usage_metadata", None) or {}
        self._last_usage = usage
        log_llm_call(
            logger,
            getattr(llm, "model_name", None) or getattr(llm, "model", None) or self.id,
            usage.get("input_tokens", 0),
            usage.get("output_tokens", 0),
            duration_ms,
        )

        content = response.content if isinstance(response.content, str) else str(response.content)
        return self._parse_response(content)

    def _metrics(self, context: AgentContext, duration_ms: float) -> AgentMetrics:
        usage = self._last_usage
        tokens = usage.get("total_tokens")
        cost = None
        if tokens is not None and LLMFactory.is_paid(self._run_provider):
            cost = estimate_cost(usage.get("input_tokens", tokens))
        return AgentMetrics(
            duration_ms=duration_ms,
            files_processed=len(context.reviewable_files()),
            tokens_used=tokens,
            estimated_cost_usd=cost,
        )

    def _parse_response(self, response: str) -> List[Finding]:
        """Parse the model reply into findings."""
        try:
            parsed = json.loads(extract_json_block(response))
        except json.JSONDecodeError as e:
            raise AgentError(f"LLM reply is not valid JSON: {e.msg}", FailureStage.POSTPROCESS) from e

        if isinstance(parsed, dict):
            items = parsed.get("findings", [])
        elif isinstance(parsed, list):
            items = parsed
        else:
            raise AgentError("LLM reply has no findings list", FailureStage.POSTPROCESS)

        findings: List[Finding] = []
        for item in items:
            finding = self._to_finding(item)
            if finding is not None:
                findings.append(finding)
        return findings

    def _to_finding(self, item: Dict[str, Any]) -> Optional[Finding]:
        if not isinstance(item, dict) or not item.get("file") or not item.get("message"):
            logger.warning(f"Dropping malformed LLM finding: {str(item)[:200]}")
            return None

        severity = SEVERITY_MAP.get(str(item.get("severity", "warning")).lower(), Severity.WARNING)
        try:
            return Finding(
                severity=severity,
                file=item["file"],
                line=item.get("line"),
                end_line=item.get("end_line"),
                message=item["message"],
                suggestion=item.get("suggestion"),
                rule_id=item.get("rule_id"),
                source_agent=self.id,
            )
        except ValidationError as e:
            logger.warning(f"Dropping invalid LLM finding: {e.error_count()} errors")
            return None


class LocalLLMAgent(LLMReviewAgent):
    """Semantic review through a local Ollama model; no per-token cost."""

    provider = LLMProvider.OLLAMA

    @property
    def id(self) -> str:
        return "local_llm"

    @property
    def name(self) -> str:
        return "Local LLM"

    def _resolve_provider(self, context: AgentContext) -> LLMProvider:
        return LLMProvider.OLLAMA

    def _resolve_model(self, context: AgentContext) -> Optional[str]:
        return context.env.get("OLLAMA_MODEL") or "codellama:7b"

    def _build_llm(self, context: AgentContext, provider: LLMProvider) -> BaseChatModel:
        if self._llm is not None:
            return self._llm
        return LLMFactory.create(
            provider,
            model=self._resolve_model(context),
            base_url=context.env.get("OLLAMA_BASE_URL", DEFAULT_OLLAMA_BASE_URL),
            max_tokens=context.config.limits.max_completion_tokens,
            seed=42,
        )
