"""Unit tests for app.services.confidence: false-positive rules, boosts, and summaries."""

import unittest

from app.schemas.findings import ConfidenceTier, ConsensusFinding, Severity
from app.services.confidence import (
    adjust_confidence,
    is_likely_false_positive,
    reduce_false_positives,
    summarize_confidence,
)


def _cf(
    severity: Severity = Severity.HIGH,
    tier: ConfidenceTier = ConfidenceTier.MEDIUM,
    score: float = 50.0,
    tools: list[str] | None = None,
    **kwargs: object,
) -> ConsensusFinding:
    """Build a minimal ConsensusFinding for tests."""
    defaults: dict[str, object] = {
        "id": "abc123",
        "title": "Reentrancy",
        "description": "External call before balance update",
        "file": "contracts/Bank.sol",
        "line_start": 10,
        "resolution": "agreed",
    }
    defaults.update(kwargs)
    return ConsensusFinding(
        severity=severity,
        confidence_tier=tier,
        confidence_score=score,
        contributing_tools=tools or ["slither", "mythril"],
        **defaults,
    )


class TestFalsePositiveRules(unittest.TestCase):
    """Each rule drops a finding on its own."""

    def test_low_severity_low_tier_dropped(self) -> None:
        self.assertTrue(
            is_likely_false_positive(_cf(severity=Severity.LOW, tier=ConfidenceTier.LOW))
        )

    def test_low_severity_medium_tier_kept(self) -> None:
        self.assertFalse(
            is_likely_false_positive(_cf(severity=Severity.LOW, tier=ConfidenceTier.MEDIUM))
        )

    def test_test_and_example_paths_dropped(self) -> None:
        for path in ("test/Bank.t.sol", "src/Bank.t.sol", "examples/Bank.sol", "contracts/mocks/MockToken.sol", "Tests/Vault.sol"):
            with self.subTest(path=path):
                self.assertTrue(is_likely_false_positive(_cf(file=path)))

    def test_generic_noise_description_dropped(self) -> None:
        for description in ("State variable could be constant", "Unused storage slot"):
            with self.subTest(description=description):
                self.assertTrue(is_likely_false_positive(_cf(description=description)))

    def test_low_tier_single_source_dropped(self) -> None:
        finding = _cf(severity=Severity.CRITICAL, tier=ConfidenceTier.LOW, tools=["slither"])
        self.assertTrue(is_likely_false_positive(finding))

    def test_medium_tier_single_source_kept(self) -> None:
        self.assertFalse(is_likely_false_positive(_cf(tools=["ai"])))

    def test_reduce_preserves_order_and_is_idempotent(self) -> None:
        findings = [
            _cf(id="a"),
            _cf(id="b", file="test/Bank.sol"),
            _cf(id="c", severity=Severity.CRITICAL, tier=ConfidenceTier.HIGH),
            _cf(id="d", severity=Severity.LOW, tier=ConfidenceTier.LOW),
        ]
        once = reduce_false_positives(findings)
        self.assertEqual([f.id for f in once], ["a", "c"])
        self.assertEqual(reduce_false_positives(once), once)

    def test_reduce_does_not_touch_kept_records(self) -> None:
        finding = _cf()
        self.assertIs(reduce_false_positives([finding])[0], finding)


class TestAdjustConfidence(unittest.TestCase):
    """Boosts are cumulative within one call and capped at 100."""

    def test_critical_single_source_forced_high(self) -> None:
        out = adjust_confidence(
            _cf(severity=Severity.CRITICAL, tier=ConfidenceTier.LOW, score=20.0, tools=["slither"])
        )
        self.assertEqual(out.confidence_score, 40.0)
        self.assertEqual(out.confidence_tier, ConfidenceTier.HIGH)

    def test_critical_at_threshold_not_boosted(self) -> None:
        out = adjust_confidence(
            _cf(severity=Severity.CRITICAL, tier=ConfidenceTier.MEDIUM, score=80.0, tools=["ai"])
        )
        self.assertEqual(out.confidence_score, 80.0)
        self.assertEqual(out.confidence_tier, ConfidenceTier.MEDIUM)

    def test_high_low_tier_upgraded_to_medium(self) -> None:
        out = adjust_confidence(
            _cf(severity=Severity.HIGH, tier=ConfidenceTier.LOW, score=20.0, tools=["slither"])
        )
        self.assertEqual(out.confidence_score, 30.0)
        self.assertEqual(out.confidence_tier, ConfidenceTier.MEDIUM)

    def test_high_never_downgrades_tier(self) -> None:
        out = adjust_confidence(
            _cf(severity=Severity.HIGH, tier=ConfidenceTier.HIGH, score=10.0, tools=["ai"])
        )
        self.assertEqual(out.confidence_score, 20.0)
        self.assertEqual(out.confidence_tier, ConfidenceTier.HIGH)

    def test_high_at_threshold_not_boosted(self) -> None:
        out = adjust_confidence(
            _cf(severity=Severity.HIGH, tier=ConfidenceTier.LOW, score=70.0, tools=["ai"])
        )
        self.assertEqual(out.confidence_score, 70.0)
        self.assertEqual(out.confidence_tier, ConfidenceTier.LOW)

    def test_multi_tool_upgrades_one_step(self) -> None:
        out = adjust_confidence(_cf(severity=Severity.MEDIUM, tier=ConfidenceTier.MEDIUM, score=0.7))
        self.assertAlmostEqual(out.confidence_score, 15.7)
        self.assertEqual(out.confidence_tier, ConfidenceTier.HIGH)

        out = adjust_confidence(_cf(severity=Severity.LOW, tier=ConfidenceTier.LOW, score=0.0))
        self.assertEqual(out.confidence_tier, ConfidenceTier.MEDIUM)

    def test_boosts_accumulate_and_cap(self) -> None:
        out = adjust_confidence(
            _cf(severity=Severity.CRITICAL, tier=ConfidenceTier.MEDIUM, score=75.0)
        )
        self.assertEqual(out.confidence_score, 100.0)
        self.assertEqual(out.confidence_tier, ConfidenceTier.HIGH)

    def test_input_not_mutated(self) -> None:
        finding = _cf(severity=Severity.CRITICAL, tier=ConfidenceTier.LOW, score=10.0)
        adjust_confidence(finding)
        self.assertEqual(finding.confidence_score, 10.0)
        self.assertEqual(finding.confidence_tier, ConfidenceTier.LOW)


class TestSummarizeConfidence(unittest.TestCase):

    def test_counts_by_tier_and_tool(self) -> None:
        summary = summarize_confidence([
            _cf(tier=ConfidenceTier.HIGH, tools=["slither", "mythril", "ai"]),
            _cf(tier=ConfidenceTier.MEDIUM, tools=["slither", "mythril"]),
            _cf(tier=ConfidenceTier.LOW, tools=["medusa"]),
        ])
        self.assertEqual(summary.total, 3)
        self.assertEqual(summary.by_tier[ConfidenceTier.HIGH], 1)
        self.assertEqual(summary.by_tier[ConfidenceTier.MEDIUM], 1)
        self.assertEqual(summary.by_tier[ConfidenceTier.LOW], 1)
        self.assertEqual(summary.by_tool, {"slither": 2, "mythril": 2, "ai": 1, "medusa": 1})
        self.assertEqual(summary.multi_tool, 2)

    def test_empty_list(self) -> None:
        summary = summarize_confidence([])
        self.assertEqual(summary.total, 0)
        self.assertEqual(summary.by_tier[ConfidenceTier.HIGH], 0)


if __name__ == "__main__":
    unittest.main()
