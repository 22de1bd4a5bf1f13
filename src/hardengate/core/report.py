"""Report artifacts: JSON export, markdown summary and run archive."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from .. import __version__
from ..models.control import VerificationStatus
from ..models.report import ComplianceReport, GateDecision

REPORT_JSON = "compliance-report.json"
REPORT_MARKDOWN = "COMPLIANCE-REPORT.md"
ARCHIVE_DIR = "archive"

STATUS_LABELS = {
    VerificationStatus.PASS: "PASS",
    VerificationStatus.FAIL: "FAIL",
    VerificationStatus.NOT_APPLICABLE: "N/A",
}


def report_to_dict(report: ComplianceReport) -> dict:
    return report.model_dump(mode="json")


def export_report_json(report: ComplianceReport, output_path: Path) -> Path:
    """Write the report to a JSON file (UTF-8, no BOM)."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(report_to_dict(report), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    return output_path


def load_report_json(path: Path) -> ComplianceReport:
    return ComplianceReport.model_validate_json(path.read_text(encoding="utf-8"))


def export_run_archive(output_dir: Path, report: ComplianceReport, timestamp: Optional[datetime] = None) -> Path:
    """Archive a completed run into a single timestamped JSON file."""
    archive_dir = output_dir / ARCHIVE_DIR
    archive_dir.mkdir(parents=True, exist_ok=True)
    ts = (timestamp or datetime.now()).strftime("%Y%m%dT%H%M%S")
    archive_path = archive_dir / f"compliance-{ts}.json"
    # Fleet runs can finish within the same second
    counter = 1
    while archive_path.exists():
        archive_path = archive_dir / f"compliance-{ts}-{counter}.json"
        counter += 1
    return export_report_json(report, archive_path)


def _escape_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def generate_markdown_report(report: ComplianceReport, dry_run: bool = False) -> str:
    """Generate the COMPLIANCE-REPORT.md summary."""
    gate = "PASS" if report.gate_decision == GateDecision.PASS else "FAIL"
    mode = "blocking" if report.fail_build else "advisory"
    timestamp = report.finished_at or datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    lines: list[str] = []
    lines.append("# Compliance Report")
    lines.append("")
    lines.append(f"**Target:** {report.target or 'unknown'}")
    lines.append(f"**Date:** {timestamp}")
    lines.append(f"**Benchmark:** CIS Amazon Linux 2023 Level {report.level}")
    if report.skip_sections:
        lines.append(f"**Skipped sections:** {', '.join(report.skip_sections)}")
    if dry_run:
        lines.append("**Mode:** DRY RUN (simulated target)")
    lines.append(f"**Compliance:** {report.percentage}% (threshold {report.threshold:g}%, {mode})")
    lines.append(f"**Gate:** {gate}")
    lines.append(f"**Duration:** {round(report.duration_seconds, 1)}s")
    if report.partial:
        lines.append("")
        lines.append(f"> **Partial run:** {report.error or 'the run did not complete'}")
    lines.append("")

    lines.append("## Summary")
    lines.append("")
    lines.append("| Status | Count |")
    lines.append("|--------|-------|")
    lines.append(f"| PASS   | {report.passed} |")
    lines.append(f"| FAIL   | {report.failed} |")
    lines.append(f"| N/A    | {report.not_applicable} |")
    lines.append(f"| **Total** | **{report.total_controls}** |")
    lines.append("")

    if report.by_section:
        lines.append("## Sections")
        lines.append("")
        lines.append("| Section | Title | Pass | Fail | N/A | Score |")
        lines.append("|---------|-------|------|------|-----|-------|")
        for key, score in report.by_section.items():
            lines.append(
                f"| {key} | {score.title} | {score.passed} | {score.failed} | "
                f"{score.not_applicable} | {score.percentage}% |"
            )
        lines.append("")

    executions = {e.control_id: e for e in report.executions}
    failures = [v for v in report.verifications if v.status == VerificationStatus.FAIL]
    if failures:
        lines.append("## Failed Controls")
        lines.append("")
        lines.append("| Control | Description | Apply | Detail |")
        lines.append("|---------|-------------|-------|--------|")
        for v in failures:
            execution = executions.get(v.control_id)
            applied = execution.outcome.value if execution else "-"
            detail = v.detail
            if execution and execution.is_failure and execution.detail:
                detail = f"{detail} (apply: {execution.detail})" if detail else execution.detail
            lines.append(f"| {v.control_id} | {_escape_cell(v.description)} | {applied} | {_escape_cell(detail)} |")
        lines.append("")

    lines.append("## All Controls")
    lines.append("")
    lines.append("| Control | Section | Status | Detail |")
    lines.append("|---------|---------|--------|--------|")
    for v in report.verifications:
        label = STATUS_LABELS.get(v.status, v.status.value)
        if v.error:
            label += " (error)"
        lines.append(f"| {v.control_id} | {v.section} | {label} | {_escape_cell(v.detail)} |")
    lines.append("")

    lines.append("---")
    lines.append(f"*Generated by hardengate v{__version__} at {timestamp}*")

    return "\n".join(lines)
