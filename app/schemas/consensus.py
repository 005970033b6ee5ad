"""Request/response schemas for the consensus endpoint."""

from typing import Any

from pydantic import BaseModel, Field

from app.schemas.findings import ConfidenceSummary, ConsensusFinding, ConsensusStats


class ConsensusRequest(BaseModel):
    """Per-source raw findings. A source mapped to null or [] is treated as reporting nothing."""

    findings_by_source: dict[str, list[Any] | None] = Field(
        default_factory=dict,
        description="Source identifier -> list of raw findings {file, lineStart, lineEnd?, severity, description, ...}.",
    )
    reduce_false_positives: bool = Field(
        default=True,
        description="Drop likely false positives after combining.",
    )
    adjust_confidence: bool = Field(
        default=True,
        description="Apply severity and multi-tool confidence boosts.",
    )


class ConsensusResponse(BaseModel):
    findings: list[ConsensusFinding] = Field(default_factory=list)
    stats: ConsensusStats
    tool_weights: dict[str, float] = Field(default_factory=dict)
    rejected: int = Field(..., ge=0, description="Malformed findings dropped before grouping.")
    filtered_out: int = Field(..., ge=0, description="Findings removed as likely false positives.")
    confidence: ConfidenceSummary
