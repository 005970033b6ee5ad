"""Workspace endpoints: create, resume and update per-chain audit state."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response

from app.api.v1.consensus import check_findings_limit
from app.core.config import get_settings
from app.core.storage import get_engine, get_store
from app.schemas.workspace import (
    AddContractRequest,
    AddReportRequest,
    AddVulnerabilitiesRequest,
    AnalyzeContractRequest,
    AnalyzeContractResponse,
    ContractRecord,
    CreateWorkspaceRequest,
    ReportStoredResponse,
    Workspace,
    WorkspaceStats,
    contract_key,
)
from app.services.consensus import ConsensusEngine, run_consensus
from app.services.workspace_store import (
    InvalidAddressError,
    InvalidWorkspaceIdError,
    NotFoundError,
    WorkspaceAlreadyExistsError,
    WorkspacePersistenceError,
    WorkspaceStore,
    WorkspaceStoreError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

StoreDep = Annotated[WorkspaceStore, Depends(get_store)]


def _http_error(e: WorkspaceStoreError) -> HTTPException:
    """Map store errors to HTTP status codes."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, WorkspaceAlreadyExistsError):
        return HTTPException(status_code=409, detail=e.message)
    if isinstance(e, (InvalidWorkspaceIdError, InvalidAddressError)):
        return HTTPException(status_code=422, detail=e.message)
    if isinstance(e, WorkspacePersistenceError):
        logger.error("Workspace persistence failed: %s", e.message, exc_info=e.cause)
        return HTTPException(status_code=500, detail=e.message)
    return HTTPException(status_code=500, detail=e.message)


def _chain_or_default(chain: str | None) -> str:
    return chain if chain and chain.strip() else get_settings().DEFAULT_CHAIN


@router.get("", response_model=list[str])
def list_workspaces(store: StoreDep) -> list[str]:
    """Ids of all persisted workspaces."""
    return store.list_workspaces()


@router.post("", response_model=Workspace, status_code=201)
def create_workspace(body: CreateWorkspaceRequest, store: StoreDep) -> Workspace:
    """
    Create a workspace for a new audit session.

    Returns 409 if the id is taken and 404 if a requested chain is unsupported.
    Every supported chain gets an empty bucket regardless of `chains`.
    """
    try:
        return store.create_workspace(body.id, body.chains)
    except WorkspaceStoreError as e:
        raise _http_error(e) from e


@router.get("/{workspace_id}", response_model=Workspace)
def get_workspace(workspace_id: str, store: StoreDep) -> Workspace:
    """Full workspace document, e.g. to resume an interrupted audit."""
    try:
        return store.load_workspace(workspace_id)
    except WorkspaceStoreError as e:
        raise _http_error(e) from e


@router.delete("/{workspace_id}", status_code=204)
def delete_workspace(workspace_id: str, store: StoreDep) -> Response:
    try:
        store.delete_workspace(workspace_id)
    except WorkspaceStoreError as e:
        raise _http_error(e) from e
    return Response(status_code=204)


@router.get("/{workspace_id}/stats", response_model=WorkspaceStats)
def get_workspace_stats(workspace_id: str, store: StoreDep) -> WorkspaceStats:
    try:
        stats = store.get_stats(workspace_id)
    except WorkspaceStoreError as e:
        raise _http_error(e) from e
    if stats is None:
        raise HTTPException(status_code=404, detail=f"Workspace not found: {workspace_id}")
    return stats


@router.post("/{workspace_id}/contracts", response_model=list[ContractRecord], status_code=201)
def add_contract(workspace_id: str, body: AddContractRequest, store: StoreDep) -> list[ContractRecord]:
    """Record a contract on one chain, or on every chain in `chains`."""
    try:
        if body.chains:
            return store.add_contract_multi_chain(workspace_id, body.address, body.chains, body.metadata)
        record = store.add_contract(
            workspace_id, body.address, _chain_or_default(body.chain), body.metadata
        )
        return [record]
    except WorkspaceStoreError as e:
        raise _http_error(e) from e


@router.post("/{workspace_id}/vulnerabilities", response_model=WorkspaceStats)
def add_vulnerabilities(
    workspace_id: str,
    body: AddVulnerabilitiesRequest,
    store: StoreDep,
) -> WorkspaceStats:
    """Replace the contract's vulnerability list; the chain rollup keeps every submission."""
    try:
        store.add_vulnerabilities(
            workspace_id, body.address, _chain_or_default(body.chain), body.vulnerabilities
        )
        stats = store.get_stats(workspace_id)
    except WorkspaceStoreError as e:
        raise _http_error(e) from e
    if stats is None:
        raise HTTPException(status_code=404, detail=f"Workspace not found: {workspace_id}")
    return stats


@router.post("/{workspace_id}/reports", response_model=ReportStoredResponse, status_code=201)
def add_report(workspace_id: str, body: AddReportRequest, store: StoreDep) -> ReportStoredResponse:
    chain = _chain_or_default(body.chain)
    try:
        path = store.add_report(workspace_id, body.address, chain, body.report)
    except WorkspaceStoreError as e:
        raise _http_error(e) from e
    return ReportStoredResponse(key=contract_key(body.address.strip(), chain.strip().lower()), path=str(path))


@router.post("/{workspace_id}/findings", response_model=AnalyzeContractResponse)
def analyze_contract(
    workspace_id: str,
    body: AnalyzeContractRequest,
    store: StoreDep,
    engine: Annotated[ConsensusEngine, Depends(get_engine)],
) -> AnalyzeContractResponse:
    """
    Run consensus on per-source findings and store the result for one contract.

    The stored list replaces any previous result for the same address and chain.
    """
    check_findings_limit(body.findings_by_source)
    chain = _chain_or_default(body.chain)
    result, filtered = run_consensus(
        engine,
        body.findings_by_source,
        filter_false_positives=body.reduce_false_positives,
        boost_confidence=body.adjust_confidence,
    )
    try:
        store.add_vulnerabilities(workspace_id, body.address, chain, result.findings)
        stats = store.get_stats(workspace_id)
    except WorkspaceStoreError as e:
        raise _http_error(e) from e
    return AnalyzeContractResponse(
        key=contract_key(body.address.strip(), chain.strip().lower()),
        findings=result.findings,
        filtered_out=filtered,
        stats=stats,
    )
