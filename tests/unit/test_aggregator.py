"""Tests for core/aggregator.py."""

from __future__ import annotations

import pytest

from hardengate.core.aggregator import (
    aggregate,
    compute_percentage,
    enforce_gate,
    get_exit_code,
    score_sections,
)
from hardengate.core.errors import ComplianceGateError, ConfigurationError
from hardengate.models.report import GateDecision, RunState


@pytest.fixture
def ten_controls(make_verification):
    """Return a builder for ten verifications: ``passed`` pass, the rest fail."""

    def build(passed: int, not_applicable: int = 0):
        results = [make_verification(f"9.1.{i}", "pass") for i in range(passed)]
        results += [make_verification(f"9.2.{i}", "fail", section="9.2") for i in range(10 - passed)]
        results += [make_verification(f"9.3.{i}", "not_applicable", section="9.3") for i in range(not_applicable)]
        return results

    return build


class TestComputePercentage:
    @pytest.mark.parametrize("passed,failed,expected", [
        (10, 0, 100),
        (8, 2, 80),
        (0, 5, 0),
        (2, 1, 67),
        (1, 2, 33),
        (127, 1, 99),
    ])
    def test_formula(self, passed, failed, expected):
        assert compute_percentage(passed, failed) == expected

    def test_nothing_applicable_is_full_compliance(self):
        assert compute_percentage(0, 0) == 100


class TestAggregate:
    def test_passes_at_threshold(self, ten_controls):
        report = aggregate(ten_controls(8), threshold=80)
        assert report.percentage == 80
        assert report.gate_decision == GateDecision.PASS
        assert report.state == RunState.GATE_PASS
        assert not report.blocking

    def test_below_threshold_advisory(self, ten_controls):
        report = aggregate(ten_controls(7), threshold=80, fail_build=False)
        assert report.percentage == 70
        assert report.gate_decision == GateDecision.FAIL
        assert report.state == RunState.GATE_PASS
        assert not report.blocking
        assert get_exit_code(report) == 0

    def test_below_threshold_blocking(self, ten_controls):
        report = aggregate(ten_controls(7), threshold=80, fail_build=True)
        assert report.blocking
        assert report.state == RunState.GATE_FAIL
        assert get_exit_code(report) == 1

    def test_not_applicable_excluded(self, ten_controls):
        report = aggregate(ten_controls(8, not_applicable=5), threshold=80)
        assert report.total_controls == 15
        assert report.not_applicable == 5
        assert report.percentage == 80

    def test_all_not_applicable(self, make_verification):
        report = aggregate([make_verification("9.1.1", "not_applicable")], threshold=100)
        assert report.percentage == 100
        assert report.gate_decision == GateDecision.PASS

    def test_empty(self):
        report = aggregate([], threshold=80)
        assert report.total_controls == 0
        assert report.percentage == 100

    def test_threshold_monotonic(self, ten_controls):
        results = ten_controls(7)
        decisions = [aggregate(results, threshold=t).gate_decision for t in range(0, 101, 5)]
        first_fail = decisions.index(GateDecision.FAIL)
        assert all(d == GateDecision.FAIL for d in decisions[first_fail:])
        assert all(d == GateDecision.PASS for d in decisions[:first_fail])

    def test_fractional_threshold(self, ten_controls):
        assert aggregate(ten_controls(8), threshold=80.5).gate_decision == GateDecision.FAIL

    def test_weighted(self, make_verification):
        results = [
            make_verification("9.1.1", "pass", weight=3),
            make_verification("9.1.2", "fail", weight=1),
            make_verification("9.1.3", "not_applicable", weight=10),
        ]
        assert aggregate(results).percentage == 50
        assert aggregate(results, weighted=True).percentage == 75

    def test_errors_count_as_fail(self, make_verification):
        results = [make_verification("9.1.1", "pass"), make_verification("9.1.2", "fail", error=True)]
        report = aggregate(results)
        assert report.failed == 1
        assert report.percentage == 50

    @pytest.mark.parametrize("threshold", [-1, 100.1, 250, True])
    def test_invalid_threshold(self, ten_controls, threshold):
        with pytest.raises(ConfigurationError, match="threshold"):
            aggregate(ten_controls(8), threshold=threshold)

    def test_extra_fields_copied(self, ten_controls):
        report = aggregate(ten_controls(10), target="ip-10-0-0-1", level=1, partial=True, error="boom")
        assert report.target == "ip-10-0-0-1"
        assert report.level == 1
        assert report.partial
        assert report.error == "boom"

    def test_counts_are_consistent(self, ten_controls):
        report = aggregate(ten_controls(6, not_applicable=3))
        assert report.passed + report.failed + report.not_applicable == report.total_controls
        assert len(report.verifications) == report.total_controls


class TestScoreSections:
    def test_breakdown(self, ten_controls):
        scores = score_sections(ten_controls(8, not_applicable=1), section_titles={"9.1": "Flags"})
        assert list(scores) == ["9.1", "9.2", "9.3"]
        assert scores["9.1"].title == "Flags"
        assert scores["9.1"].percentage == 100
        assert scores["9.2"].percentage == 0
        assert scores["9.2"].title == ""
        assert scores["9.3"].not_applicable == 1
        assert scores["9.3"].percentage == 100


class TestEnforceGate:
    def test_returns_report_when_passing(self, ten_controls):
        report = aggregate(ten_controls(9), threshold=80, fail_build=True)
        assert enforce_gate(report) is report

    def test_advisory_failure_does_not_raise(self, ten_controls):
        report = aggregate(ten_controls(5), threshold=80, fail_build=False)
        assert enforce_gate(report) is report

    def test_blocking_failure_raises(self, ten_controls):
        report = aggregate(ten_controls(7), threshold=80, fail_build=True)
        with pytest.raises(ComplianceGateError, match="70% is below threshold 80%") as excinfo:
            enforce_gate(report)
        assert excinfo.value.report is report
