"""Consensus endpoint: merge per-source analyzer findings into confidence-scored records."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from app.core.storage import get_engine
from app.schemas.consensus import ConsensusRequest, ConsensusResponse
from app.services.confidence import summarize_confidence
from app.services.consensus import ConsensusEngine, run_consensus

router = APIRouter()

MAX_FINDINGS_PER_REQUEST = 10_000


def check_findings_limit(findings_by_source: dict[str, list[Any] | None]) -> None:
    """Reject oversized submissions before any grouping work."""
    count = sum(len(items or []) for items in findings_by_source.values())
    if count > MAX_FINDINGS_PER_REQUEST:
        raise HTTPException(
            status_code=422,
            detail=f"At most {MAX_FINDINGS_PER_REQUEST} findings per request.",
        )


@router.post("", response_model=ConsensusResponse)
def post_consensus(
    body: ConsensusRequest,
    engine: Annotated[ConsensusEngine, Depends(get_engine)],
) -> ConsensusResponse:
    """
    Combine findings reported by several analyzers.

    Findings sharing file, start line and severity are merged. Agreement between
    two or more sources yields medium confidence (high with three or more);
    single-source findings get a low baseline; disagreement is settled by the
    most trusted configured source. Malformed findings are skipped and counted
    in `rejected`; sources mapped to null or [] are fine.
    """
    check_findings_limit(body.findings_by_source)
    result, filtered = run_consensus(
        engine,
        body.findings_by_source,
        filter_false_positives=body.reduce_false_positives,
        boost_confidence=body.adjust_confidence,
    )
    return ConsensusResponse(
        findings=result.findings,
        stats=result.stats,
        tool_weights=result.tool_weights,
        rejected=result.rejected,
        filtered_out=filtered,
        confidence=summarize_confidence(result.findings),
    )
