"""Run orchestrator: Init -> Applying -> Verifying -> Aggregated -> Gate.

Drives one hardening run against one target, writes the report artifacts
and applies the compliance gate. ``run_fleet`` fans independent runs out
over many SSH hosts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from ..formatters.junit import REPORT_JUNIT, export_junit_results
from ..models.control import HardeningParameters
from ..models.report import ComplianceReport, FleetResult, GateDecision, RunState
from ..models.results import ExecutionResult, Outcome, VerificationResult
from ..publishers.http import ReportPublisher
from ..targets.base import BaseTarget, Target, get_target
from .aggregator import aggregate, enforce_gate, get_exit_code
from .catalog import Catalog, build_catalog
from .errors import ConfigurationError, HardeningError, TargetUnreachableError
from .executor import apply_catalog
from .report import REPORT_JSON, REPORT_MARKDOWN, export_report_json, export_run_archive, generate_markdown_report
from .verifier import unverified, verify_catalog

logger = logging.getLogger(__name__)

console = Console()

UNREACHABLE_DETAIL = "not attempted: target unreachable"
EXIT_CONFIG_ERROR = 11
EXIT_UNREACHABLE = 13


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%dT%H:%M:%S")


def _describe(target: Target) -> str:
    return target.describe() if isinstance(target, BaseTarget) else target.name


def catalog_from_config(config: dict) -> Catalog:
    hardening = config.get("hardening", {})
    return build_catalog(
        level=hardening.get("level", 2),
        skip_sections=hardening.get("skip_sections") or [],
        parameters=HardeningParameters(**(hardening.get("parameters") or {})),
        overrides=hardening.get("overrides") or {},
    )


def resolve_output_dir(config: dict) -> Path:
    output_dir = Path(config.get("output", {}).get("dir", ".hardengate/reports"))
    if not output_dir.is_absolute():
        output_dir = Path(config.get("_project_path", ".")) / output_dir
    return output_dir


def write_outputs(
    report: ComplianceReport,
    output_dir: Path,
    output_config: dict,
    dry_run: bool = False,
    out: Console = console,
) -> dict[str, Path]:
    """Write the JSON report and, as configured, markdown, JUnit and archive copies."""
    paths: dict[str, Path] = {"json": export_report_json(report, output_dir / REPORT_JSON)}

    if output_config.get("markdown", True):
        markdown_path = output_dir / REPORT_MARKDOWN
        markdown_path.write_text(generate_markdown_report(report, dry_run=dry_run), encoding="utf-8")
        paths["markdown"] = markdown_path

    if output_config.get("junit", True):
        junit = export_junit_results(report, output_dir / REPORT_JUNIT)
        paths["junit"] = Path(junit["path"])
        out.print(
            f"  [green]OK[/green] JUnit XML: {junit['total_tests']} tests, "
            f"{junit['failures']} failures, {junit['errors']} errors"
        )

    if output_config.get("archive", True):
        paths["archive"] = export_run_archive(output_dir, report)

    return paths


def publish_report(report: ComplianceReport, output_config: dict, out: Console = console) -> None:
    """Publish to the configured endpoint. A publish failure never fails the run."""
    publisher = ReportPublisher(output_config)
    if not publisher.enabled:
        return
    result = asyncio.run(publisher.publish(report))
    if result.success:
        out.print(f"  [green]OK[/green] Published report ({result.status_code})")
    else:
        out.print(f"  [yellow]WARN[/yellow] Report publish failed after {result.attempts} attempts: {result.error}")


def _fill_executions(catalog: Catalog, done: list[ExecutionResult]) -> list[ExecutionResult]:
    attempted = {e.control_id for e in done}
    return list(done) + [
        ExecutionResult(control_id=c.id, outcome=Outcome.FAILED, detail=UNREACHABLE_DETAIL)
        for c in catalog.controls
        if c.id not in attempted
    ]


def _fill_verifications(catalog: Catalog, done: list[VerificationResult]) -> list[VerificationResult]:
    verified = {v.control_id for v in done}
    return list(done) + [unverified(c) for c in catalog.controls if c.id not in verified]


def run_hardening(
    target: Target,
    config: dict,
    apply: bool = True,
    dry_run: bool = False,
    output_dir: Optional[Path] = None,
    enforce: bool = True,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    out: Console = console,
) -> ComplianceReport:
    """Run the full hardening state machine against one target.

    Returns the aggregated report. With ``enforce`` a blocking gate failure
    raises ComplianceGateError after every artifact has been written.
    TargetUnreachableError is re-raised with a partial report attached as
    ``error.report``.
    """
    start = clock()
    started_at = _now()
    catalog = catalog_from_config(config)
    hardening = config.get("hardening", {})
    compliance = config.get("compliance", {})
    execution = config.get("execution", {})
    output_config = config.get("output", {})
    output_dir = output_dir or resolve_output_dir(config)
    target_name = _describe(target)

    deadline_seconds = execution.get("deadline")
    deadline = start + deadline_seconds if deadline_seconds else None

    out.print()
    out.print("  [bold cyan]HARDENGATE[/bold cyan] CIS Amazon Linux 2023")
    out.print(f"  Target:    [white]{target_name}[/white]")
    out.print(f"  Level:     [white]{catalog.level}[/white] ({len(catalog)} controls)")
    if catalog.skip_sections:
        out.print(f"  Skipping:  [white]{', '.join(catalog.skip_sections)}[/white]")
    out.print(f"  Threshold: [white]{compliance.get('threshold', 80):g}%[/white]"
              f" ({'blocking' if compliance.get('fail_build') else 'advisory'})")
    if dry_run:
        out.print("  Mode:      [yellow]DRY RUN[/yellow]")
    out.print()

    state = RunState.INIT
    executions: list[ExecutionResult] = []
    verifications: list[VerificationResult] = []

    def finish(partial: bool = False, error: Optional[str] = None) -> ComplianceReport:
        report = aggregate(
            verifications,
            threshold=compliance.get("threshold", 80),
            fail_build=compliance.get("fail_build", False),
            weighted=compliance.get("weighted", False),
            executions=executions,
            section_titles=catalog.section_titles,
            target=target_name,
            level=catalog.level,
            skip_sections=list(catalog.skip_sections),
            started_at=started_at,
            finished_at=_now(),
            duration_seconds=round(clock() - start, 2),
            partial=partial,
            error=error,
        )
        paths = write_outputs(report, output_dir, output_config, dry_run=dry_run, out=out)
        out.print(f"  Results: {paths['json'].parent}")
        publish_report(report, output_config, out=out)
        return report

    try:
        if isinstance(target, BaseTarget):
            target.probe()

        if apply and not hardening.get("enabled", True):
            logger.warning("CIS hardening disabled (ENABLE_CIS_HARDENING=false), skipping apply phase")
            out.print("  [yellow]WARN[/yellow] CIS hardening disabled, verifying only")
        elif apply:
            state = RunState.APPLYING
            out.print(f"  [cyan]Applying {len(catalog)} controls...[/cyan]")

            def on_applied(control, result: ExecutionResult) -> None:
                if result.is_failure:
                    out.print(f"  [red]{result.outcome.value.upper()}[/red] {control.id} {control.description}: {result.detail}")

            executions = apply_catalog(
                catalog,
                target,
                interval=execution.get("poll_interval", 10),
                max_wait=execution.get("max_wait", 1800),
                deadline=deadline,
                preflight=hardening.get("preflight_clean", True),
                clock=clock,
                sleep=sleep,
                on_result=on_applied,
            )
            failed = sum(1 for e in executions if e.is_failure)
            applied = sum(1 for e in executions if e.outcome == Outcome.APPLIED)
            out.print(f"  [green]OK[/green] Applied {applied}, failed {failed}, skipped {len(executions) - applied - failed}")

        state = RunState.VERIFYING
        out.print(f"  [cyan]Verifying {len(catalog)} controls...[/cyan]")
        verifications = verify_catalog(catalog, target)
    except TargetUnreachableError as e:
        logger.error("Target %s unreachable during %s: %s", target_name, state.value, e)
        out.print(f"  [red]ERROR[/red] Target unreachable during {state.value}: {e}")
        if state == RunState.APPLYING:
            executions = _fill_executions(catalog, e.executions)
        elif apply and state == RunState.INIT and hardening.get("enabled", True):
            executions = _fill_executions(catalog, [])
        verifications = _fill_verifications(catalog, e.verifications if state == RunState.VERIFYING else [])
        e.report = finish(partial=True, error=f"target unreachable: {e}")
        raise

    report = finish()

    color = "green" if report.gate_decision == GateDecision.PASS else "red"
    out.print(
        f"\n  [{color}]Compliance: {report.percentage}% "
        f"({report.passed} pass / {report.failed} fail / {report.not_applicable} n/a)[/{color}]"
    )
    if report.gate_decision == GateDecision.FAIL and not report.fail_build:
        out.print(f"  [yellow]WARN[/yellow] Below threshold {report.threshold:g}% (advisory, build continues)")
    out.print()

    if enforce:
        enforce_gate(report)
    return report


def _fleet_host(host: str, config: dict, apply: bool, output_dir: Path, target_factory) -> FleetResult:
    out = Console(quiet=True)
    try:
        with target_factory(host) as target:
            report = run_hardening(target, config, apply=apply, output_dir=output_dir / host, enforce=False, out=out)
    except TargetUnreachableError as e:
        partial = e.report
        return FleetResult(
            host=host,
            percentage=partial.percentage if partial else None,
            gate_decision=partial.gate_decision if partial else None,
            error=str(e),
            exit_code=EXIT_UNREACHABLE,
        )
    except (HardeningError, OSError) as e:
        logger.error("Fleet host %s failed: %s", host, e)
        return FleetResult(
            host=host,
            error=f"{type(e).__name__}: {e}",
            exit_code=EXIT_CONFIG_ERROR if isinstance(e, ConfigurationError) else 1,
        )
    return FleetResult(
        host=host,
        percentage=report.percentage,
        gate_decision=report.gate_decision,
        exit_code=get_exit_code(report),
    )


async def run_fleet(
    hosts: list[str],
    config: dict,
    apply: bool = True,
    output_dir: Optional[Path] = None,
    max_parallel: Optional[int] = None,
    target_factory: Optional[Callable[[str], BaseTarget]] = None,
) -> list[FleetResult]:
    """Harden many hosts concurrently, one independent run per host.

    Results are returned in the order of ``hosts``. Each host writes its
    artifacts to ``<output_dir>/<host>/``.
    """
    output_dir = output_dir or resolve_output_dir(config)
    limit = max_parallel or config.get("fleet", {}).get("max_parallel", 4)
    factory = target_factory or (lambda host: get_target(config, target_override="ssh", host_override=host))

    logger.info("Starting fleet run of %d hosts (max parallel: %d)", len(hosts), limit)
    semaphore = asyncio.Semaphore(limit)

    async def run_with_semaphore(host: str) -> FleetResult:
        async with semaphore:
            result = await asyncio.to_thread(_fleet_host, host, config, apply, output_dir, factory)
            logger.info("Fleet host %s finished with exit code %d", host, result.exit_code)
            return result

    return list(await asyncio.gather(*(run_with_semaphore(host) for host in hosts)))


def fleet_exit_code(results: list[FleetResult]) -> int:
    """13 if any host was unreachable, else 11 for a configuration error, else 1 if any host failed."""
    codes = {r.exit_code for r in results}
    for code in (EXIT_UNREACHABLE, EXIT_CONFIG_ERROR, 1):
        if code in codes:
            return code
    return 0
