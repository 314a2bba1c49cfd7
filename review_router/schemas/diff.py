"""
Diff Schema Definitions

Changed files and hunks of the pull request under review. Produced by the
diff loader, consumed read-only by agents and the line resolver.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class FileStatus(str, Enum):
    """Change status of a file in the diff"""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class DiffHunk(BaseModel):
    """One hunk of a unified diff"""
    old_start: int = Field(..., ge=0)
    old_lines: int = Field(default=1, ge=0)
    new_start: int = Field(..., ge=0)
    new_lines: int = Field(default=1, ge=0)
    # Populated when parsed from patch text; empty means the whole new range counts
    added_lines: List[int] = Field(default_factory=list)
    context_lines: List[int] = Field(default_factory=list)

    @property
    def has_line_detail(self) -> bool:
        return bool(self.added_lines or self.context_lines)

    def new_side_lines(self, additions_only: bool = False) -> List[int]:
        """New-side line numbers a comment can anchor to."""
        if self.has_line_detail:
            lines = list(self.added_lines)
            if not additions_only:
                lines.extend(self.context_lines)
            return sorted(set(lines))
        if self.new_lines <= 0:
            return []
        return list(range(self.new_start, self.new_start + self.new_lines))


class DiffFile(BaseModel):
    """Represents a changed file in a PR"""
    path: str = Field(..., description="File path relative to repo root")
    old_path: Optional[str] = Field(default=None, description="Previous path if renamed")
    status: FileStatus = Field(default=FileStatus.MODIFIED)
    additions: int = Field(default=0, description="Number of lines added")
    deletions: int = Field(default=0, description="Number of lines deleted")
    patch: Optional[str] = Field(default=None, description="Unified diff text for this file")
    is_binary: bool = False
    hunks: List[DiffHunk] = Field(default_factory=list)

    @property
    def is_deleted(self) -> bool:
        return self.status == FileStatus.DELETED

    @property
    def is_renamed(self) -> bool:
        return self.status == FileStatus.RENAMED and bool(self.old_path)

    @property
    def changed_lines(self) -> int:
        return self.additions + self.deletions
