"""Pydantic schemas for analyzer findings: validated atomic findings, consensus output, and stats."""

from collections.abc import Iterable
from enum import Enum
from hashlib import sha1
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(str, Enum):
    """Closed severity scale; compare with ``rank``, never with string order."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def most_severe(cls, severities: Iterable["Severity"]) -> "Severity":
        """Return the highest severity (critical > high > medium > low)."""
        return max(severities, key=lambda s: s.rank)


class ConfidenceTier(str, Enum):
    """Cross-source agreement strength: high > medium > low."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def upgraded(self) -> "ConfidenceTier":
        """One step up (low -> medium -> high); high stays high."""
        if self is ConfidenceTier.LOW:
            return ConfidenceTier.MEDIUM
        return ConfidenceTier.HIGH


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

_TIER_RANK: dict[ConfidenceTier, int] = {
    ConfidenceTier.LOW: 0,
    ConfidenceTier.MEDIUM: 1,
    ConfidenceTier.HIGH: 2,
}

# Severity aliases (case-insensitive) -> canonical level.
_SEVERITY_ALIASES: dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "crit": Severity.CRITICAL,
    "high": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "med": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
    "info": Severity.LOW,
    "informational": Severity.LOW,
    "optimization": Severity.LOW,
}

Resolution = Literal["singleton", "agreed", "override", "conflict"]


def _validate_severity(value: object) -> Severity:
    """Map a severity label or alias to Severity; raise ValueError on anything else."""
    if isinstance(value, Severity):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError("severity must be a non-empty string")
    normalized = value.strip().lower()
    if normalized not in _SEVERITY_ALIASES:
        raise ValueError(
            f"severity must be one of {[s.value for s in Severity]}, got {value!r}"
        )
    return _SEVERITY_ALIASES[normalized]


def normalize_file_path(file_path: str) -> str:
    """Strip and use forward slashes so the same file groups across analyzers."""
    return (file_path or "").strip().replace("\\", "/")


class Finding(BaseModel):
    """One atomic report from one analysis source, after intake validation."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    source_tool: str = Field(
        ...,
        min_length=1,
        description="Identifier of the analyzer that produced this finding (e.g. slither, ai).",
    )
    file: str = Field(
        ...,
        min_length=1,
        description="Source file the finding points at.",
    )
    line_start: int = Field(..., ge=0, description="First line of the reported location.")
    line_end: int | None = Field(default=None, ge=0, description="Last line, when reported.")
    severity: Severity = Field(..., description="Severity claimed by the source.")
    vulnerability_class: str | None = Field(
        default=None,
        description="Detector or weakness class (e.g. reentrancy-eth); used to detect disagreement.",
    )
    title: str | None = Field(default=None, description="Short title, when the source provides one.")
    description: str = Field(..., description="Human-readable description from the source.")
    recommendation: str = Field(default="", description="Remediation hint from the source.")
    raw_confidence: float | None = Field(
        default=None,
        description="Source-local confidence value; carried through, not used for scoring.",
    )

    @field_validator("severity", mode="before")
    @classmethod
    def validate_severity(cls, v: object) -> Severity:
        return _validate_severity(v)

    @field_validator("source_tool")
    @classmethod
    def validate_source_tool(cls, v: str) -> str:
        name = v.strip().lower()
        if not name:
            raise ValueError("source_tool must be non-empty")
        return name

    @field_validator("file")
    @classmethod
    def validate_file(cls, v: str) -> str:
        path = normalize_file_path(v)
        if not path:
            raise ValueError("file must be non-empty")
        return path

    @field_validator("vulnerability_class")
    @classmethod
    def validate_vulnerability_class(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip().lower()

    @property
    def identity_key(self) -> tuple[str, int, Severity]:
        """Grouping key: findings sharing it are treated as the same issue."""
        return (self.file, self.line_start, self.severity)

    @property
    def display_title(self) -> str:
        if self.title and self.title.strip():
            return self.title.strip()
        if self.vulnerability_class:
            return self.vulnerability_class
        first_line = self.description.strip().split("\n", 1)[0]
        return first_line[:80] if first_line else "Untitled finding"


def finding_id(identity_key: tuple[str, int, Severity]) -> str:
    """Stable id for a consensus record, derived from its identity key."""
    file, line_start, severity = identity_key
    payload = f"{file}:{line_start}:{severity.value}"
    return sha1(payload.encode("utf-8")).hexdigest()[:16]


class ConsensusFinding(BaseModel):
    """Merged, confidence-scored record for one identity key."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable id derived from file, line and severity.")
    title: str = Field(..., min_length=1)
    description: str = Field(default="")
    severity: Severity
    file: str = Field(..., min_length=1)
    line_start: int = Field(..., ge=0)
    line_end: int | None = None
    vulnerability_class: str | None = None
    contributing_tools: list[str] = Field(
        ...,
        min_length=1,
        description="Distinct sources backing this record, in first-seen order.",
    )
    confidence_tier: ConfidenceTier
    confidence_score: float = Field(..., ge=0, le=100)
    recommendation: str = Field(default="")
    resolution: Resolution = Field(
        ...,
        description="How the group was resolved: singleton, agreed, override, or conflict.",
    )


class ConsensusStats(BaseModel):
    """Group counts by resolution path. overrides is a subset of conflicts."""

    total: int = Field(default=0, ge=0, description="Number of identity-key groups.")
    agreed: int = Field(default=0, ge=0, description="Groups with at least two agreeing sources.")
    conflicts: int = Field(default=0, ge=0, description="Groups where no class had two agreeing sources.")
    overrides: int = Field(default=0, ge=0, description="Conflicts settled by the most trusted source.")


class ConsensusResult(BaseModel):
    """Output of ConsensusEngine.combine."""

    findings: list[ConsensusFinding] = Field(default_factory=list)
    stats: ConsensusStats = Field(default_factory=ConsensusStats)
    tool_weights: dict[str, float] = Field(default_factory=dict)
    rejected: int = Field(
        default=0,
        ge=0,
        description="Malformed raw findings dropped before grouping.",
    )


class ConfidenceSummary(BaseModel):
    """Confidence breakdown of a finding list, for report renderers."""

    total: int = Field(..., ge=0)
    by_tier: dict[ConfidenceTier, int] = Field(default_factory=dict)
    by_tool: dict[str, int] = Field(default_factory=dict)
    multi_tool: int = Field(
        default=0,
        ge=0,
        description="Findings backed by two or more distinct sources.",
    )
