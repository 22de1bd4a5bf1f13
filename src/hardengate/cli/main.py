"""hardengate - CIS hardening and compliance gate for golden-image builds."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .. import __version__
from ..core.aggregator import get_exit_code
from ..core.catalog import list_sections
from ..core.config import get_effective_config, initialize_project, parse_skip_sections
from ..core.engine import (
    EXIT_CONFIG_ERROR,
    EXIT_UNREACHABLE,
    catalog_from_config,
    fleet_exit_code,
    resolve_output_dir,
    run_fleet,
    run_hardening,
)
from ..core.errors import ComplianceGateError, ConfigurationError, TargetUnreachableError
from ..core.smoke import run_smoke_checks
from ..targets.base import get_target

console = Console()

SMOKE_REPORT = "smoke-report.json"


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _is_ci(ci: bool) -> bool:
    return ci or bool(
        os.environ.get("GITHUB_ACTIONS")
        or os.environ.get("CODEBUILD_BUILD_ID")
        or os.environ.get("CI")
        or os.environ.get("JENKINS_URL")
    )


def project_options(f):
    """Project and logging options shared by every subcommand."""
    f = click.option("--project", "-p", type=click.Path(exists=True, file_okay=False), default=".",
                     help="Project path holding .hardengate/config.yaml")(f)
    f = click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")(f)
    return f


def catalog_options(f):
    """Catalog selection options."""
    f = click.option("--level", type=click.IntRange(1, 2), default=None, help="CIS benchmark level (1 or 2)")(f)
    f = click.option("--skip-sections", type=str, default=None,
                     help="Comma-separated section keys to skip (e.g. 1.1,3.3)")(f)
    return f


def target_options(f):
    """Target and connection options."""
    f = click.option("--target", "target_type", type=click.Choice(["local", "ssh", "memory"]), default=None,
                     help="Where controls run")(f)
    f = click.option("--host", default=None, help="SSH host")(f)
    f = click.option("--user", default=None, help="SSH username")(f)
    f = click.option("--key-file", type=click.Path(), default=None, help="SSH private key path")(f)
    f = click.option("--port", type=int, default=None, help="SSH port")(f)
    f = click.option("--dry-run", is_flag=True, help="Run against a simulated Amazon Linux host")(f)
    return f


def gate_options(f):
    """Gate and output options."""
    f = click.option("--threshold", type=click.FloatRange(0, 100), default=None,
                     help="Minimum compliance percentage (default 80)")(f)
    f = click.option("--fail-build/--no-fail-build", default=None,
                     help="Fail the build when compliance is below the threshold")(f)
    f = click.option("--output-dir", type=click.Path(file_okay=False), default=None, help="Report directory")(f)
    f = click.option("--ci", is_flag=True, help="CI mode: plain output, print the exit code")(f)
    return f


def _cli_overrides(
    level: Optional[int] = None,
    skip_sections: Optional[str] = None,
    threshold: Optional[float] = None,
    fail_build: Optional[bool] = None,
    target_type: Optional[str] = None,
    host: Optional[str] = None,
    user: Optional[str] = None,
    key_file: Optional[str] = None,
    port: Optional[int] = None,
    dry_run: bool = False,
    output_dir: Optional[str] = None,
) -> dict:
    overrides: dict = {}

    def put(section: str, key: str, value) -> None:
        if value is not None:
            overrides.setdefault(section, {})[key] = value

    put("hardening", "level", level)
    if skip_sections is not None:
        put("hardening", "skip_sections", parse_skip_sections(skip_sections))
    put("compliance", "threshold", threshold)
    put("compliance", "fail_build", fail_build)
    put("target", "type", "memory" if dry_run else target_type)
    put("target", "host", host)
    put("target", "username", user)
    put("target", "key_file", key_file)
    put("target", "port", port)
    put("output", "dir", output_dir)
    return overrides


def _load_config(project: str, overrides: dict) -> dict:
    try:
        return get_effective_config(Path(project).resolve(), cli_overrides=overrides)
    except ConfigurationError as e:
        console.print(f"  [red]ERROR[/red] Configuration: {e}")
        sys.exit(EXIT_CONFIG_ERROR)


def _execute(apply: bool, project: str, verbose: bool, ci: bool, dry_run: bool, **options) -> None:
    _setup_logging(verbose)
    is_ci = _is_ci(ci)
    out = Console(no_color=True, highlight=False) if is_ci else console
    config = _load_config(project, _cli_overrides(dry_run=dry_run, **options))

    try:
        with get_target(config) as target:
            report = run_hardening(target, config, apply=apply, dry_run=dry_run, out=out)
    except ConfigurationError as e:
        out.print(f"  [red]ERROR[/red] Configuration: {e}")
        sys.exit(EXIT_CONFIG_ERROR)
    except TargetUnreachableError as e:
        out.print(f"  [red]ERROR[/red] {e}")
        if e.report is not None:
            out.print(f"  Partial report: {e.report.passed} pass / {e.report.failed} fail")
        if is_ci:
            out.print(f"  CI Mode: Exiting with code {EXIT_UNREACHABLE}")
        sys.exit(EXIT_UNREACHABLE)
    except ComplianceGateError as e:
        out.print(f"  [red]FAIL[/red] {e}")
        if is_ci:
            out.print("  CI Mode: Exiting with code 1")
        sys.exit(1)

    exit_code = get_exit_code(report)
    if is_ci:
        out.print(f"  CI Mode: Exiting with code {exit_code}")
    sys.exit(exit_code)


@click.group()
@click.version_option(__version__, prog_name="hardengate")
def cli() -> None:
    """hardengate - CIS Amazon Linux 2023 hardening with a compliance gate."""


@cli.command()
@project_options
@catalog_options
@target_options
@gate_options
def run(project: str, verbose: bool, ci: bool, dry_run: bool, **options) -> None:
    """Apply the catalog, verify every control and enforce the gate."""
    _execute(True, project, verbose, ci, dry_run, **options)


@cli.command()
@project_options
@catalog_options
@target_options
@gate_options
def verify(project: str, verbose: bool, ci: bool, dry_run: bool, **options) -> None:
    """Verify an already-hardened target without changing it."""
    _execute(False, project, verbose, ci, dry_run, **options)


@cli.command()
@project_options
@catalog_options
@click.option("--sections", "show_sections", is_flag=True, help="List sections instead of controls")
def controls(project: str, verbose: bool, level: Optional[int], skip_sections: Optional[str], show_sections: bool) -> None:
    """List the controls selected for a run."""
    _setup_logging(verbose)

    if show_sections:
        table = Table(title="CIS sections")
        table.add_column("Section", style="cyan")
        table.add_column("Title")
        for section in list_sections():
            table.add_row(section.key, section.title)
        console.print(table)
        return

    config = _load_config(project, _cli_overrides(level=level, skip_sections=skip_sections))
    try:
        catalog = catalog_from_config(config)
    except ConfigurationError as e:
        console.print(f"  [red]ERROR[/red] Configuration: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    table = Table(title=f"CIS Level {catalog.level} catalog ({len(catalog)} controls)")
    table.add_column("Control", style="cyan")
    table.add_column("Section")
    table.add_column("Level", justify="center")
    table.add_column("Weight", justify="right")
    table.add_column("Description")
    for control in catalog:
        table.add_row(control.id, control.section, str(control.level), str(control.weight), control.description)
    console.print(table)


@cli.command()
@click.option("--project", "-p", type=click.Path(exists=True, file_okay=False), default=".")
@click.option("--force", is_flag=True, help="Overwrite an existing config")
def init(project: str, force: bool) -> None:
    """Initialize hardengate in a project."""
    try:
        path = initialize_project(Path(project), force=force)
    except ConfigurationError as e:
        console.print(f"  [red]ERROR[/red] {e}")
        sys.exit(EXIT_CONFIG_ERROR)
    console.print(f"  [green]Initialized[/green] {path}")


@cli.command()
@project_options
@target_options
@click.option("--output-dir", type=click.Path(file_okay=False), default=None, help="Report directory")
def validate(project: str, verbose: bool, dry_run: bool, output_dir: Optional[str], **options) -> None:
    """Run post-build smoke checks. Failures are reported, never gating."""
    _setup_logging(verbose)
    config = _load_config(project, _cli_overrides(dry_run=dry_run, output_dir=output_dir, **options))

    try:
        with get_target(config) as target:
            report = run_smoke_checks(target)
    except TargetUnreachableError as e:
        console.print(f"  [red]ERROR[/red] {e}")
        sys.exit(EXIT_UNREACHABLE)

    if report.system:
        console.print(f"  System: {', '.join(f'{k}={v}' for k, v in report.system.items())}")
    for check in report.checks:
        status = "[green]OK[/green]  " if check.passed else "[yellow]WARN[/yellow]"
        console.print(f"  {status} {check.category:<10} {check.name}: {check.detail}")

    report_dir = resolve_output_dir(config)
    report_dir.mkdir(parents=True, exist_ok=True)
    (report_dir / SMOKE_REPORT).write_text(report.model_dump_json(indent=2), encoding="utf-8")

    total = len(report.checks)
    console.print(f"\n  {total - len(report.failures)}/{total} smoke checks passed")


@cli.command()
@project_options
@catalog_options
@gate_options
@click.option("--hosts", type=str, default=None, help="Comma-separated SSH hosts (default: fleet.hosts)")
@click.option("--user", default=None, help="SSH username")
@click.option("--key-file", type=click.Path(), default=None, help="SSH private key path")
@click.option("--port", type=int, default=None, help="SSH port")
@click.option("--max-parallel", type=click.IntRange(1, 64), default=None, help="Concurrent hosts")
@click.option("--verify-only", is_flag=True, help="Skip the apply phase")
def fleet(
    project: str,
    verbose: bool,
    ci: bool,
    hosts: Optional[str],
    max_parallel: Optional[int],
    verify_only: bool,
    **options,
) -> None:
    """Harden several hosts in parallel over SSH."""
    _setup_logging(verbose)
    config = _load_config(project, _cli_overrides(target_type="ssh", **options))
    host_list = [h for h in (hosts or "").replace(",", " ").split() if h] or list(config["fleet"].get("hosts") or [])
    if not host_list:
        console.print("  [red]ERROR[/red] No hosts given (use --hosts or fleet.hosts)")
        sys.exit(EXIT_CONFIG_ERROR)

    console.print(f"\n  [bold cyan]HARDENGATE[/bold cyan] fleet run: {len(host_list)} hosts")
    try:
        results = asyncio.run(run_fleet(host_list, config, apply=not verify_only, max_parallel=max_parallel))
    except ConfigurationError as e:
        console.print(f"  [red]ERROR[/red] Configuration: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    table = Table(title="Fleet results")
    table.add_column("Host", style="cyan")
    table.add_column("Compliance", justify="right")
    table.add_column("Gate")
    table.add_column("Exit", justify="right")
    for result in results:
        percentage = f"{result.percentage}%" if result.percentage is not None else "-"
        gate = result.gate_decision.value if result.gate_decision else (result.error or "-")
        table.add_row(result.host, percentage, gate, str(result.exit_code))
    console.print(table)

    exit_code = fleet_exit_code(results)
    if _is_ci(ci):
        console.print(f"  CI Mode: Exiting with code {exit_code}")
    sys.exit(exit_code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
