"""Compliance scoring and the threshold gate."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from ..models.control import VerificationStatus
from ..models.report import ComplianceReport, GateDecision, RunState, SectionScore
from ..models.results import ExecutionResult, VerificationResult
from .errors import ComplianceGateError, ConfigurationError


def compute_percentage(passed: float, failed: float) -> int:
    """passed / (passed + failed) as a whole percentage; 100 when nothing applies."""
    applicable = passed + failed
    if applicable <= 0:
        return 100
    return round(100 * passed / applicable)


def _tally(results: Iterable[VerificationResult], weighted: bool) -> tuple[int, int, int, float, float]:
    passed = failed = not_applicable = 0
    passed_weight = failed_weight = 0.0
    for result in results:
        weight = result.weight if weighted else 1
        if result.status == VerificationStatus.PASS:
            passed += 1
            passed_weight += weight
        elif result.status == VerificationStatus.FAIL:
            failed += 1
            failed_weight += weight
        else:
            not_applicable += 1
    return passed, failed, not_applicable, passed_weight, failed_weight


def score_sections(
    verifications: list[VerificationResult],
    weighted: bool = False,
    section_titles: Optional[dict[str, str]] = None,
) -> dict[str, SectionScore]:
    """Per-section breakdown, keyed by section in first-seen order."""
    grouped: dict[str, list[VerificationResult]] = {}
    for result in verifications:
        grouped.setdefault(result.section, []).append(result)

    titles = section_titles or {}
    scores: dict[str, SectionScore] = {}
    for key, results in grouped.items():
        passed, failed, not_applicable, passed_weight, failed_weight = _tally(results, weighted)
        scores[key] = SectionScore(
            title=titles.get(key, ""),
            total=len(results),
            passed=passed,
            failed=failed,
            not_applicable=not_applicable,
            percentage=compute_percentage(passed_weight, failed_weight),
        )
    return scores


def aggregate(
    verifications: list[VerificationResult],
    threshold: float = 80,
    fail_build: bool = False,
    weighted: bool = False,
    executions: Optional[list[ExecutionResult]] = None,
    section_titles: Optional[dict[str, str]] = None,
    **fields: Any,
) -> ComplianceReport:
    """Score verification results and decide the gate.

    ``percentage = round(100 * passed / (passed + failed))`` with
    not-applicable controls excluded; 100 when nothing is applicable. With
    ``weighted`` the control weights replace the counts. The gate passes when
    ``percentage >= threshold``. Extra keyword arguments (target, level,
    timestamps, partial, error, ...) are copied onto the report.
    """
    if isinstance(threshold, bool) or not 0 <= threshold <= 100:
        raise ConfigurationError(f"threshold must be between 0 and 100, got {threshold!r}")

    passed, failed, not_applicable, passed_weight, failed_weight = _tally(verifications, weighted)
    percentage = compute_percentage(passed_weight, failed_weight)
    decision = GateDecision.PASS if percentage >= threshold else GateDecision.FAIL
    blocking = decision == GateDecision.FAIL and fail_build

    return ComplianceReport(
        total_controls=len(verifications),
        passed=passed,
        failed=failed,
        not_applicable=not_applicable,
        weighted=weighted,
        percentage=percentage,
        threshold=threshold,
        gate_decision=decision,
        fail_build=fail_build,
        state=RunState.GATE_FAIL if blocking else RunState.GATE_PASS,
        by_section=score_sections(verifications, weighted, section_titles),
        executions=list(executions or []),
        verifications=list(verifications),
        **fields,
    )


def enforce_gate(report: ComplianceReport) -> ComplianceReport:
    """Raise ComplianceGateError for a blocking failure, otherwise return the report."""
    if report.blocking:
        raise ComplianceGateError(report)
    return report


def get_exit_code(report: ComplianceReport) -> int:
    """Map the gate outcome to a process exit code."""
    return 1 if report.blocking else 0
