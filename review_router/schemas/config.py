"""
Review configuration schema.

Mirrors the repository's review config file. Unknown keys are rejected so a
typo in a pass or limit name fails loudly instead of silently using defaults.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .common import Severity


class PassConfig(BaseModel):
    """A named, ordered group of agents sharing one required/optional policy"""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    agents: List[str] = Field(..., min_length=1)
    enabled: bool = True
    required: bool = False


class LimitsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_files: int = Field(default=50, ge=1)
    max_diff_lines: int = Field(default=2000, ge=1)
    max_tokens_per_pr: int = Field(default=12000, ge=1)
    max_usd_per_pr: float = Field(default=1.0, ge=0)
    monthly_budget_usd: float = Field(default=100.0, ge=0)
    max_completion_tokens: int = Field(default=4000, ge=1)


class GatingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    fail_on_severity: Severity = Severity.ERROR
    drift_gate: bool = False
    # Let an inline drift failure flip the verdict, not just suppress comments
    fail_on_drift: bool = False


class ReportingMode(str, Enum):
    STATUS_ONLY = "status_only"
    THREADS_ONLY = "threads_only"
    BOTH = "both"


class ReportingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: ReportingMode = ReportingMode.BOTH
    max_inline_comments: int = Field(default=20, ge=0)
    summary: bool = True


class LineResolutionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    normalize_max_shift: int = Field(default=3, ge=0)
    downgrade_max_shift: int = Field(default=20, ge=0)
    additions_only: bool = False
    warn_threshold_percent: float = Field(default=25.0, ge=0, le=100)
    fail_threshold_percent: float = Field(default=50.0, ge=0, le=100)
    max_samples: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def _check_ordering(self) -> "LineResolutionConfig":
        if self.downgrade_max_shift < self.normalize_max_shift:
            raise ValueError("downgrade_max_shift must be >= normalize_max_shift")
        if self.fail_threshold_percent < self.warn_threshold_percent:
            raise ValueError("fail_threshold_percent must be >= warn_threshold_percent")
        return self


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    ttl_seconds: int = Field(default=3600, ge=1)


class ModelsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default: Optional[str] = None
    provider: Optional[str] = None


def _default_passes() -> List[PassConfig]:
    return [PassConfig(name="static", agents=["semgrep"], enabled=True, required=True)]


class ReviewConfig(BaseModel):
    """Top-level review configuration"""
    model_config = ConfigDict(extra="forbid")

    version: int = 1
    passes: List[PassConfig] = Field(default_factory=_default_passes)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    gating: GatingConfig = Field(default_factory=GatingConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)
    line_resolution: LineResolutionConfig = Field(default_factory=LineResolutionConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)

    @field_validator("passes")
    @classmethod
    def _unique_pass_names(cls, passes: List[PassConfig]) -> List[PassConfig]:
        names = [p.name for p in passes]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate pass names: {', '.join(duplicates)}")
        return passes
