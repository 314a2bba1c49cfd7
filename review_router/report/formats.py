"""
Report formatting and the adapter contract.

Adapters receive a ReviewReport and decide how to publish it. Inline comment
bodies carry a hidden fingerprint marker so a re-run can tell which findings
were already posted.
"""

import re
import sys
from abc import ABC, abstractmethod
from typing import List, Optional, Set, TextIO, Tuple

from ..logging_config import get_logger
from ..schemas.common import Finding, Severity
from ..schemas.config import ReportingConfig, ReportingMode
from ..schemas.report import DriftLevel, ReviewReport
from ..supervisor.deduplication import count_by_severity, fingerprint_of, group_by_file

logger = get_logger(__name__)

MARKER_PREFIX = "review-router:fingerprint:v1"
MARKER_PATTERN = re.compile(
    r"<!-- review-router:fingerprint:v1:([0-9a-f]{32}):(.+?):(\d+) -->"
)

SEVERITY_EMOJI = {
    Severity.ERROR: "🔴",
    Severity.WARNING: "🟡",
    Severity.INFO: "🔵",
}

DRIFT_EMOJI = {
    DriftLevel.OK: "✅",
    DriftLevel.WARN: "⚠️",
    DriftLevel.FAIL: "❌",
}


def build_fingerprint_marker(finding: Finding) -> str:
    return f"<!-- {MARKER_PREFIX}:{fingerprint_of(finding)}:{finding.file}:{finding.line or 0} -->"


def extract_fingerprint_markers(body: str) -> List[Tuple[str, str, int]]:
    """(fingerprint, file, line) for every marker in a posted comment body."""
    return [(m.group(1), m.group(2), int(m.group(3))) for m in MARKER_PATTERN.finditer(body)]


def format_inline_comment(finding: Finding) -> str:
    severity = Severity(finding.severity)
    parts = [
        f"{SEVERITY_EMOJI[severity]} **{severity.value.upper()}** [{finding.source_agent}]",
        "",
        finding.message,
    ]
    if finding.suggestion:
        parts.extend(["", f"💡 Suggestion: {finding.suggestion}"])
    parts.extend(["", build_fingerprint_marker(finding)])
    return "\n".join(parts)


def plan_inline_comments(
    report: ReviewReport,
    config: ReportingConfig,
    posted_markers: Optional[Set[Tuple[str, str, int]]] = None,
) -> List[Finding]:
    """
    Complete findings that should be posted inline on this run.

    Skips file-level findings and anything already posted, and honours the
    reporting mode, inline suppression and the inline comment cap.
    """
    if config.mode == ReportingMode.STATUS_ONLY or report.gating_verdict.suppress_inline:
        return []

    posted = posted_markers or set()
    planned: List[Finding] = []
    for finding in report.complete_findings:
        if not finding.is_inline:
            continue
        marker = (fingerprint_of(finding), finding.file, finding.line)
        if marker in posted:
            continue
        planned.append(finding)
        if len(planned) >= config.max_inline_comments:
            break
    return planned


def _findings_section(title: str, findings: List[Finding]) -> List[str]:
    lines = [f"### {title}", ""]
    for file, file_findings in group_by_file(findings).items():
        lines.append(f"#### `{file}`")
        lines.append("")
        for finding in file_findings:
            emoji = SEVERITY_EMOJI[Severity(finding.severity)]
            line_info = f" (line {finding.line})" if finding.line else ""
            lines.append(f"- {emoji}{line_info} [{finding.source_agent}]: {finding.message}")
            if finding.suggestion:
                lines.append(f"  - 💡 Suggestion: {finding.suggestion}")
        lines.append("")
    return lines


def generate_summary_markdown(report: ReviewReport) -> str:
    counts = count_by_severity(report.complete_findings)
    verdict = report.gating_verdict
    inline = report.drift_signal.inline

    lines = [
        "## AI Code Review Summary",
        "",
        "| Severity | Count |",
        "|----------|-------|",
        f"| 🔴 Errors | {counts['error']} |",
        f"| 🟡 Warnings | {counts['warning']} |",
        f"| 🔵 Info | {counts['info']} |",
        "",
    ]

    if verdict.enabled:
        status = "✅ Passed" if verdict.passed else "❌ Failed"
        lines.extend([f"**Gating:** {status} ({verdict.reason})", ""])

    lines.extend([f"**Line drift:** {DRIFT_EMOJI[inline.level]} {inline.message}", ""])
    if verdict.suppress_inline:
        lines.extend(["Inline comments were suppressed for this run; all findings are listed below.", ""])

    if report.complete_findings:
        lines.extend(_findings_section("Findings by File", report.complete_findings))
    else:
        lines.extend(["✅ No issues found!", ""])

    if report.partial_findings:
        lines.extend(_findings_section(
            "Partial Findings (from agents that did not complete)",
            report.partial_findings,
        ))

    if report.skipped_agents:
        lines.extend(["### Skipped Agents", ""])
        for skipped in report.skipped_agents:
            lines.append(f"- **{skipped.name}** (`{skipped.agent_id}`): {skipped.reason}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


class ReportingAdapter(ABC):
    """Publishes a finished review."""

    @abstractmethod
    def report(self, report: ReviewReport) -> None:
        pass


class TerminalReporter(ReportingAdapter):
    """Writes the summary, and planned inline comments, to a text stream."""

    def __init__(self, config: Optional[ReportingConfig] = None, stream: Optional[TextIO] = None):
        self.config = config or ReportingConfig()
        self.stream = stream or sys.stdout

    def report(self, report: ReviewReport) -> None:
        if self.config.summary:
            self.stream.write(generate_summary_markdown(report))

        inline = plan_inline_comments(report, self.config)
        for finding in inline:
            self.stream.write(f"\n--- {finding.file}:{finding.line} ---\n")
            self.stream.write(format_inline_comment(finding) + "\n")

        for skipped in report.skipped_agents:
            logger.info(f"Skipped agent {skipped.agent_id}: {skipped.reason}")
        logger.info(
            f"Reported {len(report.complete_findings)} findings "
            f"({len(inline)} inline, {len(report.partial_findings)} partial)"
        )
