"""Pydantic schemas for the persisted audit workspace document and its API payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.schemas.findings import ConsensusFinding


def contract_key(address: str, chain: str) -> str:
    """Key for per-contract maps in the workspace document ("address:chain")."""
    return f"{address}:{chain}"


class ChainState(BaseModel):
    """Per-chain bucket. All lists are append-only; contracts may repeat."""

    contracts: list[str] = Field(default_factory=list)
    vulnerabilities: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Flattened rollup of every vulnerability list ever added on this chain.",
    )
    reports: list[str] = Field(default_factory=list, description="Report keys (address:chain).")
    config: dict[str, Any] = Field(default_factory=dict)


class ContractRecord(BaseModel):
    """Canonical metadata for one (address, chain); replaced on every add_contract."""

    address: str = Field(..., min_length=1)
    chain: str = Field(..., min_length=1)
    added_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class Workspace(BaseModel):
    """Full persisted aggregate for one audit session."""

    id: str = Field(..., min_length=1)
    created_at: datetime
    updated_at: datetime
    target_chains: list[str] = Field(
        default_factory=list,
        description="Chains requested at creation; ChainState exists for every supported chain.",
    )
    chains: dict[str, ChainState] = Field(default_factory=dict)
    contracts: dict[str, dict[str, ContractRecord]] = Field(default_factory=dict)
    vulnerabilities: dict[str, list[dict[str, Any]]] = Field(
        default_factory=dict,
        description="Latest vulnerability list per address:chain.",
    )
    reports: dict[str, str] = Field(default_factory=dict, description="Report text per address:chain.")


class ChainStats(BaseModel):
    contracts: int = Field(..., ge=0)
    vulnerabilities: int = Field(..., ge=0)
    reports: int = Field(..., ge=0)


class WorkspaceStats(BaseModel):
    """Workspace counts. total_vulnerabilities sums the per-contract lists, not the chain rollups."""

    workspace_id: str
    chains: int = Field(..., ge=0)
    contracts: int = Field(..., ge=0)
    total_vulnerabilities: int = Field(..., ge=0)
    reports: int = Field(..., ge=0)
    created_at: datetime
    updated_at: datetime
    per_chain: dict[str, ChainStats] = Field(default_factory=dict)


class CreateWorkspaceRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=128)
    chains: list[str] = Field(default_factory=list)


class AddContractRequest(BaseModel):
    address: str = Field(..., min_length=1)
    chain: str | None = Field(default=None, description="Defaults to DEFAULT_CHAIN.")
    chains: list[str] | None = Field(
        default=None,
        description="Add the contract on several chains at once; overrides chain.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class AddVulnerabilitiesRequest(BaseModel):
    address: str = Field(..., min_length=1)
    chain: str | None = None
    vulnerabilities: list[dict[str, Any]] = Field(default_factory=list)


class AddReportRequest(BaseModel):
    address: str = Field(..., min_length=1)
    chain: str | None = None
    report: str = Field(..., description="Rendered report body.")


class ReportStoredResponse(BaseModel):
    key: str
    path: str


class AnalyzeContractRequest(BaseModel):
    """Run consensus on per-source findings and store the result for one contract."""

    address: str = Field(..., min_length=1)
    chain: str | None = None
    findings_by_source: dict[str, list[Any] | None] = Field(default_factory=dict)
    reduce_false_positives: bool = True
    adjust_confidence: bool = True


class AnalyzeContractResponse(BaseModel):
    key: str
    findings: list[ConsensusFinding]
    filtered_out: int = Field(..., ge=0)
    stats: WorkspaceStats | None = None
