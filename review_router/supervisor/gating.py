"""
Gating

Turns the reconciled complete findings and the inline drift signal into a
pass/fail verdict. Partial findings never gate: they come from agents that
did not finish.
"""

from typing import List, Optional

from ..logging_config import get_logger
from ..schemas.common import SEVERITY_RANK, Finding, Provenance, Severity
from ..schemas.config import GatingConfig
from ..schemas.report import DriftLevel, DriftSignal, GatingVerdict
from .line_resolver import should_suppress_inline_comments

logger = get_logger(__name__)


def is_blocking(finding: Finding, threshold: Severity) -> bool:
    """True if finding is at or above the threshold severity."""
    return SEVERITY_RANK[Severity(finding.severity)] <= SEVERITY_RANK[threshold]


def evaluate_gating(
    gating: GatingConfig,
    complete_findings: List[Finding],
    inline_signal: Optional[DriftSignal] = None,
) -> GatingVerdict:
    threshold = Severity(gating.fail_on_severity)
    suppress_inline = should_suppress_inline_comments(inline_signal, gating.drift_gate)
    drift_level = inline_signal.level if inline_signal is not None else None

    if not gating.enabled:
        return GatingVerdict(
            passed=True,
            enabled=False,
            threshold=threshold,
            suppress_inline=suppress_inline,
            drift_level=drift_level,
            reason="Gating disabled",
        )

    blocking = [
        f for f in complete_findings
        if f.provenance != Provenance.PARTIAL and is_blocking(f, threshold)
    ]

    if blocking:
        verdict = GatingVerdict(
            passed=False,
            enabled=True,
            threshold=threshold,
            blocking_count=len(blocking),
            suppress_inline=suppress_inline,
            drift_level=drift_level,
            reason=f"{len(blocking)} finding(s) at or above '{threshold.value}'",
        )
    elif gating.drift_gate and gating.fail_on_drift and drift_level == DriftLevel.FAIL:
        verdict = GatingVerdict(
            passed=False,
            enabled=True,
            threshold=threshold,
            suppress_inline=suppress_inline,
            drift_level=drift_level,
            reason=f"Inline drift failed: {inline_signal.message}",
        )
    else:
        verdict = GatingVerdict(
            passed=True,
            enabled=True,
            threshold=threshold,
            suppress_inline=suppress_inline,
            drift_level=drift_level,
            reason=f"No findings at or above '{threshold.value}'",
        )

    if verdict.passed:
        logger.info(f"Gating passed: {verdict.reason}")
    else:
        logger.error(f"Gating failed: {verdict.reason}")
    if suppress_inline:
        logger.warning("Inline comments suppressed by drift gate")
    return verdict
