"""JUnit XML formatter for CI/CD test-result ingestion.

Each catalog section becomes a testsuite and each control a testcase:
failed verifications are failures, predicate errors are errors and
not-applicable controls are skipped.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from xml.dom import minidom
from xml.etree import ElementTree as ET

from ..models.control import VerificationStatus
from ..models.report import ComplianceReport

REPORT_JUNIT = "compliance-results.xml"


def export_junit_results(
    report: ComplianceReport,
    output_path: Path,
    suite_name: str = "hardengate",
) -> dict:
    """Export a compliance report as JUnit XML.

    Args:
        report: The aggregated compliance report.
        output_path: Path to write the XML file.
        suite_name: Name for the testsuites element.

    Returns:
        Dict with: path, total_tests, failures, errors, skipped, passed.
    """
    executions = {e.control_id: e for e in report.executions}

    testsuites = ET.Element("testsuites")
    testsuites.set("name", f"{suite_name}: {report.target}" if report.target else suite_name)
    testsuites.set("timestamp", report.finished_at or datetime.now().strftime("%Y-%m-%dT%H:%M:%S"))

    grouped: dict[str, list] = {}
    for verification in report.verifications:
        grouped.setdefault(verification.section, []).append(verification)

    total_tests = total_failures = total_errors = total_skipped = 0

    for section, verifications in grouped.items():
        title = report.by_section[section].title if section in report.by_section else ""
        testsuite = ET.SubElement(testsuites, "testsuite")
        testsuite.set("name", f"{section} {title}".strip())
        testsuite.set("tests", str(len(verifications)))

        suite_failures = suite_errors = suite_skipped = 0

        for v in verifications:
            total_tests += 1
            testcase = ET.SubElement(testsuite, "testcase")
            testcase.set("name", f"{v.control_id}: {v.description}")
            testcase.set("classname", f"cis.section_{section.replace('.', '_')}")
            execution = executions.get(v.control_id)
            if execution is not None:
                testcase.set("time", str(round(execution.duration, 3)))

            if v.status == VerificationStatus.NOT_APPLICABLE:
                suite_skipped += 1
                skipped = ET.SubElement(testcase, "skipped")
                skipped.set("message", v.detail or "not applicable")
            elif v.status == VerificationStatus.FAIL:
                element = ET.SubElement(testcase, "error" if v.error else "failure")
                if v.error:
                    suite_errors += 1
                else:
                    suite_failures += 1
                element.set("message", f"[{v.control_id}] {v.detail}"[:500])
                element.set("type", "verify_error" if v.error else "non_compliant")

                text_parts = [f"Control: {v.control_id}", f"Section: {section}"]
                if v.detail:
                    text_parts.append(f"\nVerification:\n{v.detail}")
                if execution is not None:
                    text_parts.append(f"\nApply ({execution.outcome.value}):\n{execution.detail}")
                element.text = "\n".join(text_parts)

        testsuite.set("failures", str(suite_failures))
        testsuite.set("errors", str(suite_errors))
        testsuite.set("skipped", str(suite_skipped))
        total_failures += suite_failures
        total_errors += suite_errors
        total_skipped += suite_skipped

    testsuites.set("tests", str(total_tests))
    testsuites.set("failures", str(total_failures))
    testsuites.set("errors", str(total_errors))
    if report.duration_seconds > 0:
        testsuites.set("time", str(round(report.duration_seconds, 2)))

    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Pretty-print XML
    rough = ET.tostring(testsuites, encoding="unicode")
    dom = minidom.parseString(rough)
    xml_str = dom.toprettyxml(indent="  ", encoding="UTF-8")
    output_path.write_bytes(xml_str)

    return {
        "path": str(output_path),
        "total_tests": total_tests,
        "failures": total_failures,
        "errors": total_errors,
        "skipped": total_skipped,
        "passed": total_tests - total_failures - total_errors - total_skipped,
    }
