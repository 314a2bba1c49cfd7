"""
Diff Parser

Parses unified diff text into DiffFile/DiffHunk models. Hunks record exactly
which new-side lines were added or kept as context, since only those lines
can receive inline comments.
"""

import re
from typing import List, Optional

from ..logging_config import get_logger
from ..schemas.diff import DiffFile, DiffHunk, FileStatus

logger = get_logger(__name__)

# @@ -old_start,old_count +new_start,new_count @@
HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
FILE_HEADER = re.compile(r"^diff --git a/(.+?) b/(.+?)$", re.MULTILINE)

_DIFF_SIDE_PREFIXES = ("a/", "b/")


def normalize_path(path: str) -> str:
    """Strip diff and relative prefixes so paths from agents and diffs compare equal."""
    path = path.strip()
    # Only one a/ or b/ prefix comes from diff headers; a second one is a real directory
    for prefix in _DIFF_SIDE_PREFIXES:
        if path.startswith(prefix):
            path = path[len(prefix):]
            break
    while path.startswith("./") or path.startswith("/"):
        path = path[2:] if path.startswith("./") else path.lstrip("/")
    return path


def parse_diff_hunks(diff_text: str) -> List[DiffHunk]:
    """
    Parse a single file's patch into hunks.

    Args:
        diff_text: Patch text for one file (headers optional)

    Returns:
        Hunks with their added and context new-side line numbers
    """
    if not diff_text:
        return []

    hunks: List[DiffHunk] = []
    current: Optional[dict] = None
    new_line = 0

    def flush() -> None:
        if current is not None:
            hunks.append(DiffHunk(**current))

    for line in diff_text.split("\n"):
        match = HUNK_HEADER.match(line)
        if match:
            flush()
            old_start = int(match.group(1))
            old_lines = int(match.group(2)) if match.group(2) is not None else 1
            new_start = int(match.group(3))
            new_lines = int(match.group(4)) if match.group(4) is not None else 1
            current = {
                "old_start": old_start,
                "old_lines": old_lines,
                "new_start": new_start,
                "new_lines": new_lines,
                "added_lines": [],
                "context_lines": [],
            }
            new_line = new_start
            continue

        if current is None:
            continue

        # Metadata of a following file section ends the hunk
        if line.startswith("diff ") or line.startswith("index ") or \
           line.startswith("--- ") or line.startswith("+++ "):
            continue
        if line.startswith("\\"):
            # "\ No newline at end of file"
            continue

        if line.startswith("-"):
            continue
        elif line.startswith("+"):
            current["added_lines"].append(new_line)
            new_line += 1
        elif line.startswith(" ") or line == "":
            # Trailing empty string after the final newline is not a line
            if line == "" and new_line >= current["new_start"] + current["new_lines"]:
                continue
            current["context_lines"].append(new_line)
            new_line += 1

    flush()
    return hunks


def _detect_status(section: str) -> FileStatus:
    if re.search(r"^new file mode", section, re.MULTILINE):
        return FileStatus.ADDED
    if re.search(r"^deleted file mode", section, re.MULTILINE):
        return FileStatus.DELETED
    if re.search(r"^rename from ", section, re.MULTILINE):
        return FileStatus.RENAMED
    return FileStatus.MODIFIED


def parse_unified_diff(diff_output: str) -> List[DiffFile]:
    """
    Parse full `git diff` output into DiffFile models.

    Args:
        diff_output: Full diff text (may contain multiple files)

    Returns:
        One DiffFile per file section, in diff order
    """
    files: List[DiffFile] = []
    if not diff_output:
        return files

    matches = list(FILE_HEADER.finditer(diff_output))

    for i, match in enumerate(matches):
        old_path = match.group(1)
        new_path = match.group(2)
        start = match.end()
        end = matches[i + 1].start() if i + 1 < len(matches) else len(diff_output)
        section = diff_output[start:end]

        status = _detect_status(section)
        is_binary = bool(re.search(r"^Binary files ", section, re.MULTILINE))
        hunks = [] if is_binary else parse_diff_hunks(section)

        additions = sum(len(h.added_lines) for h in hunks)
        deletions = 0
        for line in section.split("\n"):
            if line.startswith("-") and not line.startswith("--- "):
                deletions += 1

        files.append(DiffFile(
            path=new_path,
            old_path=old_path if status == FileStatus.RENAMED else None,
            status=status,
            additions=additions,
            deletions=deletions,
            patch=section.lstrip("\n"),
            is_binary=is_binary,
            hunks=hunks,
        ))
        logger.debug(f"File {new_path}: {status.value}, {len(hunks)} hunks")

    return files


def count_diff_lines(files: List[DiffFile]) -> int:
    """Total added plus deleted lines across the diff."""
    return sum(f.changed_lines for f in files)
