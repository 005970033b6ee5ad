"""Consensus engine: merge per-source findings into deduplicated, confidence-scored records.

Findings are grouped by identity key (file, line, severity). A group backed by one
source keeps a low baseline score; two or more distinct sources agreeing on the same
vulnerability class form a consensus hit; disagreement is settled by the most trusted
source present. The engine holds only its immutable weight table and does no I/O.
"""

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from app.schemas.findings import (
    ConfidenceTier,
    ConsensusFinding,
    ConsensusResult,
    ConsensusStats,
    Finding,
    Severity,
    finding_id,
)
from app.services.confidence import adjust_confidence, reduce_false_positives
from app.services.normalize import parse_source_findings

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

# Singleton score = weight(source) * this baseline.
SINGLETON_BASELINE = 50.0
# Distinct agreeing sources needed for a consensus hit, and for a high tier.
MIN_AGREEING_SOURCES = 2
HIGH_TIER_SOURCES = 3
OVERRIDE_SCORE = 100.0
MAX_SCORE = 100.0


class ToolWeights:
    """Read-only source -> trust weight table. Unknown sources weigh 0."""

    def __init__(self, weights: Mapping[str, float]) -> None:
        self._weights = MappingProxyType(
            {source.strip().lower(): float(weight) for source, weight in weights.items()}
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ToolWeights":
        return cls(settings.TOOL_WEIGHTS)

    def weight(self, source: str) -> float:
        return self._weights.get((source or "").strip().lower(), 0.0)

    def is_configured(self, source: str) -> bool:
        return (source or "").strip().lower() in self._weights

    def total(self, sources: Iterable[str]) -> float:
        return sum(self.weight(s) for s in sources)

    def most_trusted(self, sources: Iterable[str]) -> str | None:
        """Highest-weighted configured source among ``sources``; first seen wins ties."""
        best: str | None = None
        best_weight = -1.0
        for source in sources:
            if not self.is_configured(source):
                continue
            w = self.weight(source)
            if w > best_weight:
                best, best_weight = source, w
        return best

    def as_dict(self) -> dict[str, float]:
        return dict(self._weights)

    def __repr__(self) -> str:
        return f"ToolWeights({dict(self._weights)!r})"


def _distinct_sources(findings: Iterable[Finding]) -> list[str]:
    """Source names in first-seen order, each once."""
    seen: list[str] = []
    for f in findings:
        if f.source_tool not in seen:
            seen.append(f.source_tool)
    return seen


def _agreement(group: list[Finding], weights: ToolWeights) -> tuple[str | None, list[str]]:
    """
    Return (vulnerability_class, agreeing sources) for the best-supported class.

    A finding without a class supports every class at its key. Ties on source count
    go to the larger total weight, then to the class seen first.
    """
    classes: list[str] = []
    for f in group:
        if f.vulnerability_class and f.vulnerability_class not in classes:
            classes.append(f.vulnerability_class)
    if not classes:
        return None, _distinct_sources(group)

    best_class: str | None = None
    best_sources: list[str] = []
    for cls in classes:
        supporters = _distinct_sources(
            f for f in group if f.vulnerability_class in (cls, None)
        )
        if len(supporters) > len(best_sources) or (
            len(supporters) == len(best_sources)
            and weights.total(supporters) > weights.total(best_sources)
        ):
            best_class, best_sources = cls, supporters
    return best_class, best_sources


def _first_recommendation(findings: Iterable[Finding]) -> str:
    for f in findings:
        if f.recommendation and f.recommendation.strip():
            return f.recommendation.strip()
    return ""


class ConsensusEngine:
    """Combines findings from independent analyzers using a fixed trust weight table."""

    def __init__(self, weights: ToolWeights) -> None:
        self._weights = weights

    def combine(
        self,
        findings_by_source: Mapping[str, Iterable[Finding | Mapping[str, Any]] | None] | None,
    ) -> ConsensusResult:
        """
        Group findings from all sources by identity key and resolve each group.

        Missing, None or empty source lists are fine: a failed analyzer never fails
        the merge. Malformed findings are dropped with a warning and counted in
        ``rejected``.
        """
        groups: dict[tuple[str, int, Severity], list[Finding]] = {}
        rejected = 0
        for source, items in (findings_by_source or {}).items():
            if not source or not source.strip():
                count = len(list(items or []))
                rejected += count
                if count:
                    logger.warning("Dropping %s findings submitted without a source name", count)
                continue
            parsed, dropped = parse_source_findings(source, items)
            rejected += dropped
            for f in parsed:
                groups.setdefault(f.identity_key, []).append(f)

        stats = ConsensusStats(total=len(groups))
        findings: list[ConsensusFinding] = []
        for key, group in groups.items():
            sources = _distinct_sources(group)
            if len(sources) == 1:
                findings.append(self._singleton(key, group))
                continue

            vuln_class, agreeing = _agreement(group, self._weights)
            if len(agreeing) >= MIN_AGREEING_SOURCES:
                resolved = self._agreed(key, group, vuln_class, agreeing)
                stats.agreed += 1
            else:
                stats.conflicts += 1
                resolved = self._resolve_conflict(key, group, sources)
                if resolved.resolution == "override":
                    stats.overrides += 1

            # A key reported by three or more sources is high confidence whatever the class split.
            if len(sources) >= HIGH_TIER_SOURCES:
                resolved = resolved.model_copy(
                    update={"confidence_tier": ConfidenceTier.HIGH, "contributing_tools": sources}
                )
            findings.append(resolved)

        findings.sort(key=lambda f: (-f.severity.rank, f.file, f.line_start))
        logger.info(
            "Consensus combined",
            extra={
                "groups": stats.total,
                "agreed": stats.agreed,
                "conflicts": stats.conflicts,
                "overrides": stats.overrides,
                "rejected": rejected,
            },
        )
        return ConsensusResult(
            findings=findings,
            stats=stats,
            tool_weights=self._weights.as_dict(),
            rejected=rejected,
        )

    def _singleton(self, key: tuple[str, int, Severity], group: list[Finding]) -> ConsensusFinding:
        first = group[0]
        score = min(self._weights.weight(first.source_tool) * SINGLETON_BASELINE, MAX_SCORE)
        return self._record(
            key,
            first,
            description=first.description,
            tools=[first.source_tool],
            tier=ConfidenceTier.LOW,
            score=score,
            recommendation=_first_recommendation(group),
            resolution="singleton",
        )

    def _agreed(
        self,
        key: tuple[str, int, Severity],
        group: list[Finding],
        vuln_class: str | None,
        agreeing: list[str],
    ) -> ConsensusFinding:
        members = [
            f for f in group
            if f.source_tool in agreeing and f.vulnerability_class in (vuln_class, None)
        ]
        base = next((f for f in members if f.vulnerability_class == vuln_class), members[0])
        title = base.display_title
        descriptions = {f.description.strip() for f in group if f.description.strip()}
        if len(descriptions) > 1:
            description = f"{title} - {', '.join(agreeing)} detected"
        else:
            description = base.description
        tier = ConfidenceTier.HIGH if len(agreeing) >= HIGH_TIER_SOURCES else ConfidenceTier.MEDIUM
        return self._record(
            key,
            base,
            description=description,
            tools=agreeing,
            tier=tier,
            score=min(self._weights.total(agreeing), MAX_SCORE),
            recommendation=_first_recommendation(members),
            resolution="agreed",
            severity=Severity.most_severe(f.severity for f in group),
            vulnerability_class=vuln_class,
        )

    def _resolve_conflict(
        self,
        key: tuple[str, int, Severity],
        group: list[Finding],
        sources: list[str],
    ) -> ConsensusFinding:
        trusted = self._weights.most_trusted(sources)
        if trusted is None:
            first = group[0]
            logger.warning(
                "Conflicting findings at %s:%s with no configured source; keeping first at low confidence",
                key[0],
                key[1],
                extra={"sources": sources},
            )
            return self._record(
                key,
                first,
                description=first.description,
                tools=[first.source_tool],
                tier=ConfidenceTier.LOW,
                score=0.0,
                recommendation=_first_recommendation(group),
                resolution="conflict",
            )

        chosen = next(f for f in group if f.source_tool == trusted)
        return self._record(
            key,
            chosen,
            description=chosen.description,
            tools=[trusted],
            tier=ConfidenceTier.HIGH,
            score=OVERRIDE_SCORE,
            recommendation=_first_recommendation(f for f in group if f.source_tool == trusted),
            resolution="override",
        )

    @staticmethod
    def _record(
        key: tuple[str, int, Severity],
        base: Finding,
        *,
        description: str,
        tools: list[str],
        tier: ConfidenceTier,
        score: float,
        recommendation: str,
        resolution: str,
        severity: Severity | None = None,
        vulnerability_class: str | None = None,
    ) -> ConsensusFinding:
        return ConsensusFinding(
            id=finding_id(key),
            title=base.display_title,
            description=description,
            severity=severity or base.severity,
            file=base.file,
            line_start=base.line_start,
            line_end=base.line_end,
            vulnerability_class=vulnerability_class or base.vulnerability_class,
            contributing_tools=list(tools),
            confidence_tier=tier,
            confidence_score=score,
            recommendation=recommendation,
            resolution=resolution,
        )


def run_consensus(
    engine: ConsensusEngine,
    findings_by_source: Mapping[str, Iterable[Finding | Mapping[str, Any]] | None] | None,
    filter_false_positives: bool = True,
    boost_confidence: bool = True,
) -> tuple[ConsensusResult, int]:
    """
    Combine, then optionally filter likely false positives and adjust confidence.

    Returns (result, filtered_count). The returned result's findings are the
    post-pipeline list; the unfiltered list is not kept.
    """
    result = engine.combine(findings_by_source)
    findings = result.findings
    filtered = 0
    if filter_false_positives:
        kept = reduce_false_positives(findings)
        filtered = len(findings) - len(kept)
        findings = kept
    if boost_confidence:
        findings = [adjust_confidence(f) for f in findings]
    return result.model_copy(update={"findings": findings}), filtered
