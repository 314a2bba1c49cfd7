"""
Line Resolver

Maps finding line numbers onto the diff's new-side coordinates so inline
comments land on lines the host will accept, and measures how much drift
there was.

Per finding with a line:
- inside an added/context region        -> valid
- nearest valid line within a few lines -> normalized (moved there)
- nearest valid line further away       -> downgraded to a file-level finding
- no usable line, deleted file, file not
  in the diff, ambiguous rename         -> dropped inline anchor

Downgraded and dropped findings keep their message as file-level findings.
Findings without a line are file-level already and always valid.
"""

import bisect
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from ..logging_config import get_logger, timed
from ..schemas.common import Finding
from ..schemas.config import LineResolutionConfig
from ..schemas.diff import DiffFile
from ..schemas.report import (
    DriftLevel,
    DriftSignal,
    InvalidLineDetail,
    LineOutcome,
    ValidationStats,
)
from ..utils.diff_parser import normalize_path, parse_diff_hunks

logger = get_logger(__name__)


@dataclass
class FileLineMap:
    """Commentable new-side lines of one file."""
    all_lines: List[int] = field(default_factory=list)
    added_lines: List[int] = field(default_factory=list)

    def lines(self, additions_only: bool = False) -> List[int]:
        return self.added_lines if additions_only else self.all_lines


@dataclass
class LineValidation:
    valid: bool
    line: int
    nearest_valid_line: Optional[int] = None
    reason: Optional[str] = None

    @property
    def distance(self) -> Optional[int]:
        if self.nearest_valid_line is None:
            return None
        return abs(self.nearest_valid_line - self.line)


def find_nearest_valid_line(target: int, sorted_lines: List[int]) -> Optional[int]:
    """Nearest line to target; ties go to the earlier line."""
    if not sorted_lines:
        return None
    idx = bisect.bisect_left(sorted_lines, target)
    candidates = []
    if idx < len(sorted_lines):
        candidates.append(sorted_lines[idx])
    if idx > 0:
        candidates.append(sorted_lines[idx - 1])
    return min(candidates, key=lambda line: (abs(line - target), line))


def compress_ranges(lines: Iterable[int]) -> str:
    """[1, 2, 3, 5, 6, 7] -> "1-3, 5-7" """
    ordered = sorted(set(lines))
    if not ordered:
        return "none"

    ranges = []
    start = end = ordered[0]
    for line in ordered[1:]:
        if line == end + 1:
            end = line
            continue
        ranges.append(f"{start}" if start == end else f"{start}-{end}")
        start = end = line
    ranges.append(f"{start}" if start == end else f"{start}-{end}")
    return ", ".join(ranges)


class LineResolver:
    """Valid-line lookup and rename/deletion tracking for one diff."""

    def __init__(self, files: List[DiffFile]):
        self._files: Dict[str, FileLineMap] = {}
        self._deleted: Set[str] = set()
        self._renames: Dict[str, Set[str]] = {}

        for diff_file in files:
            path = normalize_path(diff_file.path)
            if diff_file.is_deleted:
                self._deleted.add(path)
                continue

            if diff_file.is_renamed:
                old_path = normalize_path(diff_file.old_path)
                if old_path != path:
                    self._renames.setdefault(old_path, set()).add(path)

            hunks = diff_file.hunks
            if not hunks and diff_file.patch:
                hunks = parse_diff_hunks(diff_file.patch)

            all_lines: Set[int] = set()
            added: Set[int] = set()
            for hunk in hunks:
                all_lines.update(hunk.new_side_lines())
                if hunk.has_line_detail:
                    added.update(hunk.added_lines)
                else:
                    added.update(hunk.new_side_lines())

            self._files[path] = FileLineMap(sorted(all_lines), sorted(added))

    def is_deleted(self, path: str) -> bool:
        return path in self._deleted

    def is_ambiguous_rename(self, path: str) -> bool:
        return path not in self._files and len(self._renames.get(path, ())) > 1

    def remap_path(self, path: str) -> str:
        """New path for an old path of a renamed file; other paths unchanged."""
        if path in self._files or path not in self._renames:
            return path
        return sorted(self._renames[path])[0]

    def validate_line(self, path: str, line: int, additions_only: bool = False) -> LineValidation:
        file_map = self._files.get(path)
        if file_map is None:
            return LineValidation(valid=False, line=line, reason="file-not-in-diff")

        lines = file_map.lines(additions_only)
        idx = bisect.bisect_left(lines, line)
        if idx < len(lines) and lines[idx] == line:
            return LineValidation(valid=True, line=line)

        nearest = find_nearest_valid_line(line, lines)
        if nearest is None:
            return LineValidation(valid=False, line=line, reason="no-commentable-lines")
        return LineValidation(
            valid=False,
            line=line,
            nearest_valid_line=nearest,
            reason="line-outside-diff",
        )

    def summary(self) -> Dict[str, str]:
        return {path: compress_ranges(m.all_lines) for path, m in self._files.items()}


def build_line_resolver(files: List[DiffFile]) -> LineResolver:
    resolver = LineResolver(files)
    logger.debug(f"Line resolver built for {len(files)} files: {resolver.summary()}")
    return resolver


@dataclass
class LineResolution:
    findings: List[Finding]
    stats: ValidationStats
    invalid_details: List[InvalidLineDetail]


@timed
def normalize_findings_for_diff(
    findings: List[Finding],
    resolver: LineResolver,
    config: Optional[LineResolutionConfig] = None,
) -> LineResolution:
    """
    Resolve every finding against the diff.

    Output order matches input order; provenance and message are untouched.
    """
    config = config or LineResolutionConfig()
    stats = ValidationStats(total=len(findings))
    details: List[InvalidLineDetail] = []
    resolved: List[Finding] = []

    def file_level(finding: Finding, path: str, outcome: LineOutcome, reason: str,
                   nearest: Optional[int] = None) -> None:
        if outcome == LineOutcome.DROPPED:
            stats.dropped += 1
        else:
            stats.downgraded += 1
        stats.inline_downgraded += 1
        details.append(InvalidLineDetail(
            file=path,
            line=finding.line,
            outcome=outcome,
            reason=reason,
            source_agent=finding.source_agent,
            nearest_valid_line=nearest,
        ))
        resolved.append(finding.model_copy(update={"file": path, "line": None, "end_line": None}))

    for finding in findings:
        path = normalize_path(finding.file)
        has_line = finding.is_inline
        if has_line:
            stats.inline_total += 1

        remapped = resolver.remap_path(path)
        if remapped != path:
            if resolver.is_ambiguous_rename(path):
                stats.ambiguous_renames += 1
                if has_line:
                    file_level(finding, path, LineOutcome.DROPPED, "ambiguous-rename")
                    continue
            else:
                path = remapped
                stats.remapped_paths += 1

        if not has_line:
            stats.valid += 1
            resolved.append(finding if path == finding.file else finding.model_copy(update={"file": path}))
            continue

        if resolver.is_deleted(path):
            stats.deleted_files += 1
            file_level(finding, path, LineOutcome.DROPPED, "deleted-file")
            continue

        if finding.line <= 0:
            file_level(finding, path, LineOutcome.DROPPED, "invalid-line-number")
            continue

        validation = resolver.validate_line(path, finding.line, config.additions_only)

        if validation.valid:
            stats.valid += 1
            resolved.append(finding if path == finding.file else finding.model_copy(update={"file": path}))
            continue

        distance = validation.distance
        if distance is not None and distance <= config.normalize_max_shift:
            nearest = validation.nearest_valid_line
            stats.normalized += 1
            stats.inline_normalized += 1
            details.append(InvalidLineDetail(
                file=path,
                line=finding.line,
                outcome=LineOutcome.NORMALIZED,
                reason=f"moved to nearest line {nearest}",
                source_agent=finding.source_agent,
                nearest_valid_line=nearest,
            ))
            end_line = None
            if finding.end_line is not None:
                end_line = max(nearest, finding.end_line + (nearest - finding.line))
            resolved.append(finding.model_copy(update={"file": path, "line": nearest, "end_line": end_line}))
            continue

        if distance is not None and distance <= config.downgrade_max_shift:
            file_level(finding, path, LineOutcome.DOWNGRADED, validation.reason or "line-outside-diff",
                       validation.nearest_valid_line)
            continue

        file_level(finding, path, LineOutcome.DROPPED, validation.reason or "line-outside-diff",
                   validation.nearest_valid_line)

    logger.info(
        f"Line resolution: {stats.valid} valid, {stats.normalized} normalized, "
        f"{stats.downgraded} downgraded, {stats.dropped} dropped of {stats.total}"
    )
    return LineResolution(findings=resolved, stats=stats, invalid_details=details)


def _round1(value: float) -> float:
    """Round half up to one decimal."""
    return math.floor(value * 10 + 0.5) / 10


def _level(percent: float, config: LineResolutionConfig) -> DriftLevel:
    if percent >= config.fail_threshold_percent:
        return DriftLevel.FAIL
    if percent >= config.warn_threshold_percent:
        return DriftLevel.WARN
    return DriftLevel.OK


def _signal(
    degraded: int,
    fixed: int,
    total: int,
    scope: str,
    details: List[InvalidLineDetail],
    config: LineResolutionConfig,
) -> DriftSignal:
    if total == 0:
        return DriftSignal(
            level=DriftLevel.OK,
            degradation_percent=0.0,
            auto_fix_percent=0.0,
            message=f"No {scope}findings to validate",
            samples=[],
        )

    raw_percent = degraded / total * 100
    level = _level(raw_percent, config)
    percent = _round1(raw_percent)

    if level == DriftLevel.OK:
        if degraded:
            message = f"Line validation healthy: {percent:.1f}% {scope}degraded ({degraded}/{total})"
        else:
            message = f"Line validation perfect: all {total} {scope}findings valid"
    elif level == DriftLevel.WARN:
        message = (
            f"Line validation warning: {percent:.1f}% {scope}degraded ({degraded}/{total} findings), "
            f"at or above {config.warn_threshold_percent:g}% threshold"
        )
    else:
        message = (
            f"Line validation failed: {percent:.1f}% {scope}degraded ({degraded}/{total} findings), "
            f"at or above {config.fail_threshold_percent:g}% threshold"
        )

    return DriftSignal(
        level=level,
        degradation_percent=percent,
        auto_fix_percent=_round1(fixed / total * 100),
        message=message,
        samples=details[:config.max_samples],
    )


def compute_drift_signal(
    stats: ValidationStats,
    invalid_details: List[InvalidLineDetail],
    config: Optional[LineResolutionConfig] = None,
) -> DriftSignal:
    """Drift over all findings, file-level ones included."""
    return _signal(
        stats.downgraded + stats.dropped,
        stats.normalized,
        stats.total,
        "",
        invalid_details,
        config or LineResolutionConfig(),
    )


def compute_inline_drift_signal(
    stats: ValidationStats,
    invalid_details: List[InvalidLineDetail],
    config: Optional[LineResolutionConfig] = None,
) -> DriftSignal:
    """Drift over findings that arrived with a line number; used for gating."""
    return _signal(
        stats.inline_downgraded,
        stats.inline_normalized,
        stats.inline_total,
        "inline ",
        invalid_details,
        config or LineResolutionConfig(),
    )


def should_suppress_inline_comments(signal: Optional[DriftSignal], drift_gate: bool) -> bool:
    """Inline comments are suppressed only by an enabled drift gate on a failing signal."""
    if not drift_gate or signal is None:
        return False
    return signal.level == DriftLevel.FAIL
