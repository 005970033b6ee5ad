"""Pydantic request/response schemas."""

from app.schemas.consensus import ConsensusRequest, ConsensusResponse
from app.schemas.findings import (
    ConfidenceSummary,
    ConfidenceTier,
    ConsensusFinding,
    ConsensusResult,
    ConsensusStats,
    Finding,
    Severity,
)
from app.schemas.health import HealthResponse
from app.schemas.workspace import (
    AddContractRequest,
    AddReportRequest,
    AddVulnerabilitiesRequest,
    AnalyzeContractRequest,
    AnalyzeContractResponse,
    ChainState,
    ChainStats,
    ContractRecord,
    CreateWorkspaceRequest,
    ReportStoredResponse,
    Workspace,
    WorkspaceStats,
)

__all__ = [
    "AddContractRequest",
    "AddReportRequest",
    "AddVulnerabilitiesRequest",
    "AnalyzeContractRequest",
    "AnalyzeContractResponse",
    "ChainState",
    "ChainStats",
    "ConfidenceSummary",
    "ConfidenceTier",
    "ConsensusFinding",
    "ConsensusRequest",
    "ConsensusResponse",
    "ConsensusResult",
    "ConsensusStats",
    "ContractRecord",
    "CreateWorkspaceRequest",
    "Finding",
    "HealthResponse",
    "ReportStoredResponse",
    "Severity",
    "Workspace",
    "WorkspaceStats",
]
