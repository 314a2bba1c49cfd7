"""
Deduplication Module

Collapses equivalent findings under two policies:
- complete findings: keyed by fingerprint, file and line, so the same issue
  reported by two agents survives once
- partial findings: keyed by source agent as well, so salvage from two failed
  agents stays separate and only same-agent repeats collapse

Both keep the first occurrence and never modify a finding.
"""

import hashlib
import json
from typing import Callable, Dict, List, Set, Tuple

from ..logging_config import get_logger
from ..schemas.common import SEVERITY_RANK, Finding, Severity

logger = get_logger(__name__)

FINGERPRINT_LENGTH = 32

DedupKey = Tuple[str, ...]


def generate_fingerprint(finding: Finding) -> str:
    """
    Stable fingerprint of what a finding says and where.

    Hashes canonical JSON of file, line (0 when absent), rule id, message and
    severity. The reporting agent is deliberately not part of it.
    """
    payload = {
        "file": finding.file,
        "line": finding.line or 0,
        "rule_id": finding.rule_id,
        "message": finding.message,
        "severity": Severity(finding.severity).value,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def fingerprint_of(finding: Finding) -> str:
    """Agent-supplied fingerprint if any, otherwise a generated one."""
    return finding.fingerprint or generate_fingerprint(finding)


def complete_key(finding: Finding) -> DedupKey:
    return (fingerprint_of(finding), finding.file, str(finding.line or 0))


def partial_key(finding: Finding) -> DedupKey:
    return (finding.source_agent, fingerprint_of(finding), finding.file, str(finding.line or 0))


def _deduplicate(findings: List[Finding], key_fn: Callable[[Finding], DedupKey]) -> List[Finding]:
    seen: Set[DedupKey] = set()
    unique: List[Finding] = []
    for finding in findings:
        key = key_fn(finding)
        if key in seen:
            continue
        seen.add(key)
        unique.append(finding)
    return unique


def deduplicate_complete(findings: List[Finding]) -> List[Finding]:
    unique = _deduplicate(findings, complete_key)
    if len(unique) < len(findings):
        logger.info(f"Deduplicated complete findings: {len(findings)} -> {len(unique)}")
    return unique


def deduplicate_partial(findings: List[Finding]) -> List[Finding]:
    unique = _deduplicate(findings, partial_key)
    if len(unique) < len(findings):
        logger.info(f"Deduplicated partial findings: {len(findings)} -> {len(unique)}")
    return unique


def sort_findings(findings: List[Finding]) -> List[Finding]:
    """Severity first (errors first), then file, then line; file-level before inline."""
    return sorted(
        findings,
        key=lambda f: (SEVERITY_RANK[Severity(f.severity)], f.file, f.line or 0),
    )


def count_by_severity(findings: List[Finding]) -> Dict[str, int]:
    counts = {s.value: 0 for s in Severity}
    for finding in findings:
        counts[Severity(finding.severity).value] += 1
    return counts


def group_by_file(findings: List[Finding]) -> Dict[str, List[Finding]]:
    grouped: Dict[str, List[Finding]] = {}
    for finding in findings:
        grouped.setdefault(finding.file, []).append(finding)
    return grouped
