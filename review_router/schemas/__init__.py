"""
Schemas module for the review pipeline.

Provides structured data types for:
- Findings and agent results
- The diff under review
- Review configuration
- Reconciliation outputs (line stats, drift, gating)
"""

from .common import (
    AgentFailure,
    AgentMetrics,
    AgentResult,
    AgentSkipped,
    AgentSuccess,
    FailureStage,
    Finding,
    Provenance,
    Severity,
    SEVERITY_RANK,
    SkippedAgent,
    agent_failure,
    agent_skipped,
    agent_success,
    dump_agent_result,
    parse_agent_result,
)
from .diff import DiffFile, DiffHunk, FileStatus
from .config import (
    CacheConfig,
    GatingConfig,
    LimitsConfig,
    LineResolutionConfig,
    PassConfig,
    ReportingConfig,
    ReportingMode,
    ReviewConfig,
)
from .report import (
    DriftLevel,
    DriftReport,
    DriftSignal,
    ExecuteResult,
    GatingVerdict,
    InvalidLineDetail,
    LineOutcome,
    ReviewReport,
    RunAbort,
    ValidationStats,
)

__all__ = [
    "AgentFailure",
    "AgentMetrics",
    "AgentResult",
    "AgentSkipped",
    "AgentSuccess",
    "FailureStage",
    "Finding",
    "Provenance",
    "Severity",
    "SEVERITY_RANK",
    "SkippedAgent",
    "agent_failure",
    "agent_skipped",
    "agent_success",
    "dump_agent_result",
    "parse_agent_result",
    "DiffFile",
    "DiffHunk",
    "FileStatus",
    "CacheConfig",
    "GatingConfig",
    "LimitsConfig",
    "LineResolutionConfig",
    "PassConfig",
    "ReportingConfig",
    "ReportingMode",
    "ReviewConfig",
    "DriftLevel",
    "DriftReport",
    "DriftSignal",
    "ExecuteResult",
    "GatingVerdict",
    "InvalidLineDetail",
    "LineOutcome",
    "ReviewReport",
    "RunAbort",
    "ValidationStats",
]
