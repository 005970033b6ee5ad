"""Confidence rules for consensus findings: false-positive filtering and score boosts.

Both steps are deterministic and operate on ConsensusFinding records only; neither
consults the original per-source findings.
"""

from collections.abc import Iterable

from app.schemas.findings import (
    ConfidenceSummary,
    ConfidenceTier,
    ConsensusFinding,
    Severity,
)

# Path fragments (lowercase) that mark test, mock or example code.
TEST_PATH_MARKERS: tuple[str, ...] = (".t.sol", "test", "example", "mock")

# Description phrases (lowercase) typical of generic analyzer noise.
NOISE_PHRASES: tuple[str, ...] = ("variable", "storage slot")

# Boost thresholds (tunable; no magic numbers in logic).
CRITICAL_BOOST_BELOW = 80.0
CRITICAL_BOOST = 20.0
HIGH_BOOST_BELOW = 70.0
HIGH_BOOST = 10.0
MULTI_TOOL_MIN_SOURCES = 2
MULTI_TOOL_BOOST = 15.0
MAX_SCORE = 100.0


def _in_test_code(file_path: str) -> bool:
    path = (file_path or "").lower()
    return any(marker in path for marker in TEST_PATH_MARKERS)


def _is_generic_noise(description: str) -> bool:
    text = (description or "").lower()
    return any(phrase in text for phrase in NOISE_PHRASES)


def is_likely_false_positive(finding: ConsensusFinding) -> bool:
    """True if any false-positive rule matches."""
    low_tier = finding.confidence_tier is ConfidenceTier.LOW
    return (
        (finding.severity is Severity.LOW and low_tier)
        or _in_test_code(finding.file)
        or _is_generic_noise(finding.description)
        or (low_tier and len(finding.contributing_tools) == 1)
    )


def reduce_false_positives(findings: Iterable[ConsensusFinding]) -> list[ConsensusFinding]:
    """
    Drop likely false positives. Order is preserved; kept records are unchanged.

    Idempotent. Callers that need the dropped records must keep the input list.
    """
    return [f for f in findings if not is_likely_false_positive(f)]


def adjust_confidence(finding: ConsensusFinding) -> ConsensusFinding:
    """
    Apply severity and multi-tool boosts once and return an updated copy.

    - critical with score < 80: +20, tier forced to high
    - otherwise high with score < 70: +10, low upgraded to medium
    - two or more contributing sources: +15, tier upgraded one step
    Scores are capped at 100.
    """
    tier = finding.confidence_tier
    score = finding.confidence_score

    if finding.severity is Severity.CRITICAL and score < CRITICAL_BOOST_BELOW:
        score = min(score + CRITICAL_BOOST, MAX_SCORE)
        tier = ConfidenceTier.HIGH
    elif finding.severity is Severity.HIGH and score < HIGH_BOOST_BELOW:
        score = min(score + HIGH_BOOST, MAX_SCORE)
        if tier is ConfidenceTier.LOW:
            tier = ConfidenceTier.MEDIUM

    if len(finding.contributing_tools) >= MULTI_TOOL_MIN_SOURCES:
        score = min(score + MULTI_TOOL_BOOST, MAX_SCORE)
        tier = tier.upgraded()

    return finding.model_copy(update={"confidence_tier": tier, "confidence_score": score})


def summarize_confidence(findings: Iterable[ConsensusFinding]) -> ConfidenceSummary:
    """Count findings per tier and per contributing tool."""
    by_tier = {tier: 0 for tier in ConfidenceTier}
    by_tool: dict[str, int] = {}
    total = 0
    multi_tool = 0
    for f in findings:
        total += 1
        by_tier[f.confidence_tier] += 1
        for tool in f.contributing_tools:
            by_tool[tool] = by_tool.get(tool, 0) + 1
        if len(f.contributing_tools) >= MULTI_TOOL_MIN_SOURCES:
            multi_tool += 1
    return ConfidenceSummary(
        total=total,
        by_tier=by_tier,
        by_tool=by_tool,
        multi_tool=multi_tool,
    )
