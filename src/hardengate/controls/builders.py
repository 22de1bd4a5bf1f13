"""Factories for the recurring control shapes of a CIS benchmark.

Each factory closes over explicit parameters and returns a frozen Control
whose apply and verify are independent: verify re-reads target state and
never consults what apply reported.
"""

from __future__ import annotations

import posixpath
from typing import Callable, Optional

from ..core.errors import ControlApplyError
from ..models.control import Check, Control, VerificationStatus
from ..targets.base import Target
from . import primitives as p

SSHD_CONFIG = "/etc/ssh/sshd_config"
SSHD_DROPIN_DIR = "/etc/ssh/sshd_config.d"
SSHD_MATCH = r"^\s*Match\s"
SSHD_LIST_KEYWORDS = {"allowusers", "allowgroups", "denyusers", "denygroups"}


def passed(detail: str = "") -> Check:
    return Check(status=VerificationStatus.PASS, detail=detail)


def failed(detail: str = "") -> Check:
    return Check(status=VerificationStatus.FAIL, detail=detail)


def not_applicable(detail: str = "") -> Check:
    return Check(status=VerificationStatus.NOT_APPLICABLE, detail=detail)


def summarize(items: list[str], limit: int = 5) -> str:
    shown = ", ".join(items[:limit])
    if len(items) > limit:
        shown += f" (+{len(items) - limit} more)"
    return shown


# ---------------------------------------------------------------------------
# Packages and services
# ---------------------------------------------------------------------------


def package_present(cid: str, section: str, description: str, package: str, level: int = 1) -> Control:
    def apply(target: Target) -> str:
        if p.package_installed(target, package):
            return f"{package} already installed"
        p.install_package(target, package)
        return f"installed {package}"

    def verify(target: Target) -> Check:
        if p.package_installed(target, package):
            return passed(f"{package} is installed")
        return failed(f"{package} is not installed")

    return Control(id=cid, section=section, level=level, description=description, apply=apply, verify=verify)


def package_absent(
    cid: str,
    section: str,
    description: str,
    package: str,
    level: int = 1,
    precondition: Optional[Callable[[Target], bool]] = None,
) -> Control:
    def apply(target: Target) -> str:
        if not p.package_installed(target, package):
            return f"{package} not installed"
        p.remove_package(target, package)
        return f"removed {package}"

    def verify(target: Target) -> Check:
        if p.package_installed(target, package):
            return failed(f"{package} is installed")
        return passed(f"{package} is not installed")

    return Control(
        id=cid, section=section, level=level, description=description,
        apply=apply, verify=verify, precondition=precondition,
    )


def service_enabled(
    cid: str,
    section: str,
    description: str,
    unit: str,
    level: int = 1,
    precondition: Optional[Callable[[Target], bool]] = None,
) -> Control:
    def apply(target: Target) -> str:
        if p.unit_state(target, unit) == "enabled":
            return f"{unit} already enabled"
        p.enable_service(target, unit)
        return f"enabled {unit}"

    def verify(target: Target) -> Check:
        state = p.unit_state(target, unit)
        if state == "enabled":
            return passed(f"{unit} is enabled")
        return failed(f"{unit} is {state}")

    return Control(
        id=cid, section=section, level=level, description=description,
        apply=apply, verify=verify, precondition=precondition,
    )


def service_not_enabled(cid: str, section: str, description: str, unit: str, level: int = 1) -> Control:
    def apply(target: Target) -> str:
        if p.unit_state(target, unit) != "enabled":
            return f"{unit} not enabled"
        p.mask_service(target, unit)
        return f"masked {unit}"

    def verify(target: Target) -> Check:
        state = p.unit_state(target, unit)
        if state == "enabled":
            return failed(f"{unit} is enabled")
        return passed(f"{unit} is {state}")

    return Control(id=cid, section=section, level=level, description=description, apply=apply, verify=verify)


# ---------------------------------------------------------------------------
# Kernel parameters
# ---------------------------------------------------------------------------


def apply_sysctl(target: Target, settings: dict[str, str]) -> list[str]:
    changed: list[str] = []
    for key, value in settings.items():
        if p.sysctl_runtime(target, key) != value:
            p.run_checked(target, "sysctl", "-w", f"{key}={value}")
            changed.append(key)

    dropin = p.read_text(target, p.SYSCTL_DROPIN)
    updated = dropin
    for key, value in settings.items():
        updated = p.set_directive(updated, key, value, sep=" = ")
    if updated != dropin:
        p.write_text(target, p.SYSCTL_DROPIN, updated, mode=0o644)

    # sysctl.conf is loaded after the drop-ins, so conflicting values there win
    conf = p.read_text(target, p.SYSCTL_CONF)
    if conf is not None:
        fixed = conf
        for key, value in settings.items():
            if p.get_directive(fixed, key, sep="=") not in (None, value):
                fixed = p.set_directive(fixed, key, value, sep=" = ")
        if fixed != conf:
            p.write_text(target, p.SYSCTL_CONF, fixed)
    return changed


def check_sysctl(target: Target, settings: dict[str, str]) -> list[str]:
    problems: list[str] = []
    for key, value in settings.items():
        runtime = p.sysctl_runtime(target, key)
        if runtime != value:
            problems.append(f"{key} is {runtime} (want {value})")
        persisted = p.sysctl_persisted(target, key)
        if not persisted:
            problems.append(f"{key} not persisted")
        elif any(v != value for v in persisted):
            problems.append(f"{key} persisted as {', '.join(persisted)}")
    return problems


def sysctl_control(cid: str, section: str, description: str, settings: dict[str, str], level: int = 1) -> Control:
    def apply(target: Target) -> str:
        changed = apply_sysctl(target, settings)
        return f"set {', '.join(changed)}" if changed else "kernel parameters already set"

    def verify(target: Target) -> Check:
        problems = check_sysctl(target, settings)
        if problems:
            return failed("; ".join(problems))
        return passed(", ".join(f"{k}={v}" for k, v in settings.items()))

    return Control(id=cid, section=section, level=level, description=description, apply=apply, verify=verify)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def file_mode_control(
    cid: str,
    section: str,
    description: str,
    path: str,
    mode: int,
    level: int = 1,
    optional: bool = False,
) -> Control:
    """Ensure ``path`` grants nothing beyond ``mode``.

    ``optional`` files (backup copies such as /etc/shadow-) make the control
    not applicable when absent instead of failing it.
    """

    def apply(target: Target) -> str:
        current = p.file_mode(target, path)
        if current is None:
            raise ControlApplyError(f"{path} does not exist")
        if not p.is_permissive(current, mode):
            return f"{path} already {current:04o}"
        p.set_mode(target, path, current & mode)
        return f"{path} {current:04o} -> {current & mode:04o}"

    def verify(target: Target) -> Check:
        current = p.file_mode(target, path)
        if current is None:
            return failed(f"{path} does not exist")
        if p.is_permissive(current, mode):
            return failed(f"{path} is {current:04o} (want {mode:04o} or stricter)")
        return passed(f"{path} is {current:04o}")

    precondition = (lambda target: p.path_exists(target, path)) if optional else None
    return Control(
        id=cid, section=section, level=level, description=description,
        apply=apply, verify=verify, precondition=precondition,
    )


def file_line_control(
    cid: str,
    section: str,
    description: str,
    path: str,
    line: str,
    level: int = 1,
    before: Optional[str] = None,
) -> Control:
    def apply(target: Target) -> str:
        text = p.read_text(target, path)
        updated = p.add_line(text, line, before=before)
        if updated == text:
            return f"{path} already contains the line"
        p.write_text(target, path, updated)
        return f"added line to {path}"

    def verify(target: Target) -> Check:
        if p.has_line(p.read_text(target, path), line):
            return passed(f"{path} contains '{line}'")
        return failed(f"{path} lacks '{line}'")

    return Control(id=cid, section=section, level=level, description=description, apply=apply, verify=verify)


def file_content_control(
    cid: str,
    section: str,
    description: str,
    path: str,
    content: str,
    mode: int = 0o644,
    level: int = 1,
    check: Optional[Callable[[Optional[str]], Optional[str]]] = None,
) -> Control:
    """Own the whole of ``path``.

    ``check`` inspects the current contents and returns a problem description
    or None; by default the file must match ``content`` exactly.
    """

    def default_check(text: Optional[str]) -> Optional[str]:
        if text is None:
            return f"{path} does not exist"
        if text != content:
            return f"{path} differs from the required content"
        return None

    checker = check or default_check

    def apply(target: Target) -> str:
        text = p.read_text(target, path)
        current_mode = p.file_mode(target, path)
        if text == content and current_mode is not None and not p.is_permissive(current_mode, mode):
            return f"{path} already configured"
        if text != content:
            p.write_text(target, path, content)
        p.set_mode(target, path, mode)
        return f"wrote {path}"

    def verify(target: Target) -> Check:
        problem = checker(p.read_text(target, path))
        if problem:
            return failed(problem)
        return passed(f"{path} configured")

    return Control(id=cid, section=section, level=level, description=description, apply=apply, verify=verify)


def directive_control(
    cid: str,
    section: str,
    description: str,
    path: str,
    key: str,
    value: str,
    sep: str = " ",
    level: int = 1,
    check: Optional[Callable[[str], bool]] = None,
    precondition: Optional[Callable[[Target], bool]] = None,
) -> Control:
    """Ensure ``key`` is set in a key/value config file.

    ``check`` decides whether an existing value is acceptable (e.g. any
    PASS_MAX_DAYS up to 365); by default only ``value`` itself is.
    """
    accept = check or (lambda current: current == value)

    def apply(target: Target) -> str:
        text = p.read_text(target, path)
        current = p.get_directive(text, key, sep=sep)
        if current is not None and accept(current):
            return f"{key} already {current}"
        p.write_text(target, path, p.set_directive(text, key, value, sep=sep))
        return f"set {key}{sep}{value}"

    def verify(target: Target) -> Check:
        current = p.get_directive(p.read_text(target, path), key, sep=sep)
        if current is None:
            return failed(f"{key} not set in {path}")
        if not accept(current):
            return failed(f"{key} is {current}")
        return passed(f"{key} is {current}")

    return Control(
        id=cid, section=section, level=level, description=description,
        apply=apply, verify=verify, precondition=precondition,
    )


# ---------------------------------------------------------------------------
# SSH daemon
# ---------------------------------------------------------------------------


def sshd_config_files(target: Target) -> list[str]:
    """sshd config files in the order sshd reads them.

    sshd keeps the first value it reads for a keyword, so drop-ins pulled in
    by an ``Include`` ahead of a setting in sshd_config take precedence.
    """
    text = p.read_text(target, SSHD_CONFIG) or ""
    lines = text.splitlines()
    end = p.active_region(lines, SSHD_MATCH)
    includes = any(
        parsed[0].lower() == "include" and SSHD_DROPIN_DIR in parsed[1]
        for parsed in (p.split_directive(line, None) for line in lines[:end])
        if parsed
    )
    if not includes:
        return [SSHD_CONFIG]
    dropins = sorted(
        path for path in p.find_paths(target, SSHD_DROPIN_DIR, "-type", "f", "-name", "*.conf")
        if posixpath.dirname(path) == SSHD_DROPIN_DIR
    )
    return dropins + [SSHD_CONFIG]


def sshd_effective(target: Target) -> dict[str, str]:
    """Effective sshd settings, preferring ``sshd -T`` over parsing the files.

    ``sshd -T`` resolves drop-ins and defaults, so it catches overrides a
    plain read of sshd_config would miss.
    """
    result = p.run(target, "sshd", "-T")
    settings: dict[str, str] = {}
    if result.ok and result.stdout.strip():
        for line in result.stdout.splitlines():
            parts = line.strip().split(None, 1)
            if not parts:
                continue
            key, value = parts[0].lower(), parts[1] if len(parts) > 1 else ""
            if key in SSHD_LIST_KEYWORDS and key in settings:
                # sshd -T prints one line per entry of list keywords
                settings[key] += f" {value}"
            else:
                settings.setdefault(key, value)
        return settings

    for path in sshd_config_files(target):
        lines = (p.read_text(target, path) or "").splitlines()
        end = p.active_region(lines, SSHD_MATCH)
        for line in lines[:end]:
            parsed = p.split_directive(line, None)
            if parsed and parsed[0].lower() != "include" and parsed[0].lower() not in settings:
                settings[parsed[0].lower()] = parsed[1]
    return settings


def sshd_settings(
    cid: str,
    description: str,
    settings: dict[str, str],
    level: int = 1,
    checks: Optional[dict[str, Callable[[str], bool]]] = None,
) -> Control:
    """Enforce sshd keywords in sshd_config and in any drop-in overriding them.

    A drop-in that sets a keyword to an unacceptable value is rewritten in
    place; acceptable drop-in values are left alone. All edited files are
    restored when ``sshd -t`` rejects the result.
    """
    checks = checks or {}

    def acceptable(key: str, current: Optional[str]) -> bool:
        if current is None:
            return False
        if key in checks:
            return checks[key](current)
        return current.lower() == settings[key].lower()

    def apply(target: Target) -> str:
        original = p.read_text(target, SSHD_CONFIG)
        if original is None:
            raise ControlApplyError(f"{SSHD_CONFIG} does not exist")
        edits: dict[str, tuple[str, str]] = {}

        for path in sshd_config_files(target):
            before = original if path == SSHD_CONFIG else (p.read_text(target, path) or "")
            text = before
            for key, value in settings.items():
                current = p.get_directive(text, key, boundary=SSHD_MATCH)
                # drop-ins are only touched where they set the keyword themselves
                if (path == SSHD_CONFIG or current is not None) and not acceptable(key, current):
                    text = p.set_directive(text, key, value, boundary=SSHD_MATCH)
            if text != before:
                edits[path] = (before, text)

        if not edits:
            return "sshd already configured"
        for path, (_, updated) in edits.items():
            p.write_text(target, path, updated)
        check = p.run(target, "sshd", "-t")
        if not check.ok and check.exit_code != 127:
            for path, (before, _) in edits.items():
                p.write_text(target, path, before)
            raise ControlApplyError(f"sshd rejected the new config, restored: {check.stderr.strip()}")
        overridden = sorted(path for path in edits if path != SSHD_CONFIG)
        summary = "set " + ", ".join(f"{k} {v}" for k, v in settings.items())
        if overridden:
            summary += f" (overrides fixed in {', '.join(posixpath.basename(o) for o in overridden)})"
        return summary

    def verify(target: Target) -> Check:
        effective = sshd_effective(target)
        problems = []
        for key in settings:
            current = effective.get(key.lower())
            if not acceptable(key, current):
                problems.append(f"{key} is {current if current is not None else 'unset'}")
        if problems:
            return failed("; ".join(problems))
        return passed(", ".join(f"{k} {effective.get(k.lower())}" for k in settings))

    return Control(id=cid, section="5.2", level=level, description=description, apply=apply, verify=verify)


# ---------------------------------------------------------------------------
# Filesystem sweeps
# ---------------------------------------------------------------------------


def sweep_control(
    cid: str,
    section: str,
    description: str,
    root: str,
    criteria: tuple[str, ...],
    fix: Callable[[Target, list[str]], None],
    level: int = 1,
) -> Control:
    """Find offending paths with ``find`` and remediate each batch with ``fix``."""

    def apply(target: Target) -> str:
        offenders = p.find_paths(target, root, *criteria)
        if not offenders:
            return "nothing to remediate"
        fix(target, offenders)
        return f"remediated {summarize(offenders)}"

    def verify(target: Target) -> Check:
        offenders = p.find_paths(target, root, *criteria)
        if offenders:
            return failed(f"found {summarize(offenders)}")
        return passed(f"none under {root}")

    return Control(id=cid, section=section, level=level, description=description, apply=apply, verify=verify)


def chmod_fix(symbolic: str) -> Callable[[Target, list[str]], None]:
    def fix(target: Target, paths: list[str]) -> None:
        p.run_checked(target, "chmod", symbolic, *paths)
    return fix


def remove_fix(target: Target, paths: list[str]) -> None:
    p.run_checked(target, "rm", "-f", "--", *paths)


# ---------------------------------------------------------------------------
# Audit-only checks
# ---------------------------------------------------------------------------


def audit_control(
    cid: str,
    section: str,
    description: str,
    find_violations: Callable[[Target], list[str]],
    level: int = 1,
) -> Control:
    """A control that can only be remediated by a human.

    apply succeeds when the target is already compliant and otherwise raises
    ControlApplyError so the violation shows up as a failed step.
    """

    def apply(target: Target) -> str:
        violations = find_violations(target)
        if violations:
            raise ControlApplyError(f"manual remediation required: {summarize(violations)}")
        return "compliant"

    def verify(target: Target) -> Check:
        violations = find_violations(target)
        if violations:
            return failed(summarize(violations))
        return passed()

    return Control(id=cid, section=section, level=level, description=description, apply=apply, verify=verify)
