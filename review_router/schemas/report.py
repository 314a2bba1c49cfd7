"""
Report Schema Definitions

Outputs of the reconciliation pipeline handed to reporting adapters.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..errors import FailureKind
from .common import AgentResult, Finding, Severity, SkippedAgent


class LineOutcome(str, Enum):
    """What line resolution did with a finding"""
    VALID = "valid"
    NORMALIZED = "normalized"
    DOWNGRADED = "downgraded"
    DROPPED = "dropped"


class ValidationStats(BaseModel):
    """Counters from one line resolution run"""
    total: int = 0
    valid: int = 0
    normalized: int = 0
    downgraded: int = 0
    dropped: int = 0
    # Only findings that arrived with a line number
    inline_total: int = 0
    inline_downgraded: int = 0
    inline_normalized: int = 0
    deleted_files: int = 0
    ambiguous_renames: int = 0
    remapped_paths: int = 0


class InvalidLineDetail(BaseModel):
    """A finding whose reported line did not resolve as-is"""
    file: str
    line: Optional[int] = None
    outcome: LineOutcome
    reason: str
    source_agent: str
    nearest_valid_line: Optional[int] = None


class DriftLevel(str, Enum):
    OK = "ok"
    WARN = "warn"
    FAIL = "fail"


class DriftSignal(BaseModel):
    """Line drift health for one scope"""
    level: DriftLevel
    degradation_percent: float
    auto_fix_percent: float
    message: str
    samples: List[InvalidLineDetail] = Field(default_factory=list)


class DriftReport(BaseModel):
    overall: DriftSignal
    inline: DriftSignal


class GatingVerdict(BaseModel):
    """Pass/fail decision for the change"""
    passed: bool
    enabled: bool
    threshold: Severity
    blocking_count: int = 0
    suppress_inline: bool = False
    drift_level: Optional[DriftLevel] = None
    reason: str = ""


class RunAbort(BaseModel):
    """A required pass failed and ended the run"""
    pass_name: str
    agent_id: str
    reason: str
    kind: FailureKind


class ExecuteResult(BaseModel):
    """Everything collected by the orchestrator"""
    complete_findings: List[Finding] = Field(default_factory=list)
    partial_findings: List[Finding] = Field(default_factory=list)
    all_results: List[AgentResult] = Field(default_factory=list)
    skipped_agents: List[SkippedAgent] = Field(default_factory=list)
    abort: Optional[RunAbort] = None

    @property
    def aborted(self) -> bool:
        return self.abort is not None


class ReviewReport(BaseModel):
    """What reporting adapters receive"""
    complete_findings: List[Finding] = Field(default_factory=list)
    partial_findings: List[Finding] = Field(default_factory=list)
    drift_signal: DriftReport
    validation_stats: ValidationStats
    gating_verdict: GatingVerdict
    skipped_agents: List[SkippedAgent] = Field(default_factory=list)
    all_results: List[AgentResult] = Field(default_factory=list)
