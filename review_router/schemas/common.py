"""
Common Schema Definitions

Findings and the agent result union shared by agents, the cache and the
reconciliation pipeline.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import FailureKind, InvalidAgentResultError


class Severity(str, Enum):
    """Severity levels for findings"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Lower rank sorts first and gates harder."""
        return SEVERITY_RANK[self]


SEVERITY_RANK: Dict[Severity, int] = {
    Severity.ERROR: 0,
    Severity.WARNING: 1,
    Severity.INFO: 2,
}


class Provenance(str, Enum):
    """Where a finding came from"""
    COMPLETE = "complete"
    PARTIAL = "partial"


class FailureStage(str, Enum):
    """Stage at which an agent failed"""
    PREFLIGHT = "preflight"
    EXEC = "exec"
    POSTPROCESS = "postprocess"


class Finding(BaseModel):
    """A single reported issue."""
    model_config = ConfigDict(frozen=True)

    severity: Severity = Field(..., description="error, warning or info")
    file: str = Field(..., description="File path relative to repo root")
    line: Optional[int] = Field(default=None, description="New-side line number")
    end_line: Optional[int] = Field(default=None, description="Last line of a multi-line range")
    message: str = Field(..., description="Human readable description")
    source_agent: str = Field(..., description="Id of the agent that reported it")
    rule_id: Optional[str] = Field(default=None, description="Analyzer rule identifier")
    fingerprint: Optional[str] = Field(default=None, description="Agent supplied fingerprint")
    suggestion: Optional[str] = Field(default=None, description="Suggested fix")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Free-form agent data")
    provenance: Optional[Provenance] = Field(
        default=None,
        description="Assigned once when the orchestrator collects the finding",
    )

    @property
    def is_inline(self) -> bool:
        return self.line is not None


class AgentMetrics(BaseModel):
    """Execution metrics reported by an agent"""
    model_config = ConfigDict(frozen=True)

    duration_ms: float = 0.0
    files_processed: int = 0
    tokens_used: Optional[int] = None
    estimated_cost_usd: Optional[float] = None


class _AgentResultBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    agent_id: str = Field(..., min_length=1)
    metrics: AgentMetrics = Field(default_factory=AgentMetrics)


class AgentSuccess(_AgentResultBase):
    """Agent finished and reported everything it found."""
    status: Literal["success"] = "success"
    findings: List[Finding] = Field(default_factory=list)


class AgentFailure(_AgentResultBase):
    """Agent failed; anything it produced before failing is partial."""
    status: Literal["failure"] = "failure"
    error: str = Field(..., min_length=1)
    failure_stage: FailureStage
    partial_findings: List[Finding] = Field(default_factory=list)


class AgentSkipped(_AgentResultBase):
    """Agent decided it had nothing to do for this change."""
    status: Literal["skipped"] = "skipped"
    reason: str = Field(..., min_length=1)


AgentResult = Annotated[
    Union[AgentSuccess, AgentFailure, AgentSkipped],
    Field(discriminator="status"),
]

_agent_result_adapter: TypeAdapter = TypeAdapter(AgentResult)


def agent_success(
    agent_id: str,
    findings: Optional[List[Finding]] = None,
    metrics: Optional[AgentMetrics] = None,
) -> AgentSuccess:
    return AgentSuccess(
        agent_id=agent_id,
        findings=findings or [],
        metrics=metrics or AgentMetrics(),
    )


def agent_failure(
    agent_id: str,
    error: str,
    failure_stage: FailureStage,
    partial_findings: Optional[List[Finding]] = None,
    metrics: Optional[AgentMetrics] = None,
) -> AgentFailure:
    return AgentFailure(
        agent_id=agent_id,
        error=error or "unknown error",
        failure_stage=failure_stage,
        partial_findings=partial_findings or [],
        metrics=metrics or AgentMetrics(),
    )


def agent_skipped(
    agent_id: str,
    reason: str,
    metrics: Optional[AgentMetrics] = None,
) -> AgentSkipped:
    return AgentSkipped(agent_id=agent_id, reason=reason, metrics=metrics or AgentMetrics())


def parse_agent_result(data: Union[str, bytes, Dict[str, Any]]) -> Union[AgentSuccess, AgentFailure, AgentSkipped]:
    """
    Validate a serialized agent result.

    Accepts a JSON string or an already decoded mapping. Anything without a
    recognised ``status`` discriminant, including the older boolean
    ``success`` shape, is rejected.

    Raises:
        InvalidAgentResultError: if the payload is not a valid result
    """
    try:
        if isinstance(data, (str, bytes)):
            return _agent_result_adapter.validate_json(data)
        return _agent_result_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidAgentResultError(
            f"invalid agent result ({e.error_count()} validation errors): "
            f"{e.errors()[0]['msg']}"
        ) from e


def dump_agent_result(result: Union[AgentSuccess, AgentFailure, AgentSkipped]) -> str:
    """Serialize a result to JSON text."""
    return result.model_dump_json()


class SkippedAgent(BaseModel):
    """An agent that did not contribute complete findings, and why"""
    agent_id: str
    name: str
    reason: str
    kind: FailureKind
    pass_name: Optional[str] = None
