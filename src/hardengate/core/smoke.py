"""Post-build functional and security smoke checks for a finished image.

These are reported, never gated on: compliance is decided once during the
build and is not re-blocked downstream.
"""

from __future__ import annotations

import logging

from ..controls import builders as b
from ..controls import primitives as p
from ..models.smoke import SmokeCheck, SmokeReport
from ..targets.base import BaseTarget, Target

logger = logging.getLogger(__name__)

CRITICAL_SERVICES = ("sshd", "rsyslog", "chronyd")
UTILITIES = ("curl", "wget", "git", "unzip")
CRITICAL_FILES = {"/etc/passwd": 0o644, "/etc/shadow": 0o000, "/etc/group": 0o644}
SSH_EXPECTATIONS = {"permitrootlogin": "no", "passwordauthentication": "no"}


def _system_info(target: Target) -> dict[str, str]:
    info: dict[str, str] = {}
    os_release = p.read_text(target, "/etc/os-release") or ""
    for key in ("NAME", "VERSION_ID"):
        value = p.get_directive(os_release, key, sep="=")
        if value is not None:
            info[key.lower()] = value.strip('"')
    kernel = p.run(target, "uname", "-r")
    if kernel.ok:
        info["kernel"] = kernel.stdout.strip()
    return info


def _service_checks(target: Target) -> list[SmokeCheck]:
    checks = []
    for service in CRITICAL_SERVICES:
        active = p.unit_active(target, service)
        checks.append(SmokeCheck(
            name=f"service {service}",
            category="functional",
            passed=active,
            detail="running" if active else "not running",
        ))
    return checks


def _utility_checks(target: Target) -> list[SmokeCheck]:
    checks = []
    for command in UTILITIES:
        present = p.run(target, "test", "-x", f"/usr/bin/{command}").ok
        checks.append(SmokeCheck(
            name=f"utility {command}",
            category="functional",
            passed=present,
            detail="installed" if present else "not installed",
        ))
    return checks


def _ssh_checks(target: Target) -> list[SmokeCheck]:
    effective = b.sshd_effective(target)
    checks = []
    for key, expected in SSH_EXPECTATIONS.items():
        value = effective.get(key)
        checks.append(SmokeCheck(
            name=f"ssh {key}",
            category="security",
            passed=(value or "").lower() == expected,
            detail=f"{key} {value if value is not None else 'unset'}",
        ))
    return checks


def _permission_checks(target: Target) -> list[SmokeCheck]:
    checks = []
    for path, allowed in CRITICAL_FILES.items():
        mode = p.file_mode(target, path)
        checks.append(SmokeCheck(
            name=f"permissions {path}",
            category="security",
            passed=mode is not None and not p.is_permissive(mode, allowed),
            detail=f"{mode:04o}" if mode is not None else "missing",
        ))
    return checks


def run_smoke_checks(target: Target) -> SmokeReport:
    """Run every smoke check. TargetUnreachableError propagates."""
    checks = _service_checks(target) + _utility_checks(target) + _ssh_checks(target) + _permission_checks(target)
    report = SmokeReport(
        target=target.describe() if isinstance(target, BaseTarget) else target.name,
        system=_system_info(target),
        checks=checks,
    )
    for check in report.failures:
        logger.warning("Smoke check failed: %s (%s)", check.name, check.detail)
    return report
