"""Target operations and config-file text helpers shared by controls.

Every command is an argument vector handed to the target; nothing here
builds shell strings. The text helpers are pure functions so that config
edits can be computed, compared and only written when they change
something, which is what keeps re-application free of side effects.
"""

from __future__ import annotations

import posixpath
import re
from typing import Optional

from ..core.errors import ControlApplyError
from ..models.target import CommandResult
from ..targets.base import Target

SYSCTL_DROPIN = "/etc/sysctl.d/60-cis-hardening.conf"
SYSCTL_CONF = "/etc/sysctl.conf"

# ---------------------------------------------------------------------------
# Command helpers
# ---------------------------------------------------------------------------


def run(target: Target, *args: str, input: Optional[bytes] = None) -> CommandResult:
    return target.execute(list(args), input=input)


def run_checked(target: Target, *args: str, input: Optional[bytes] = None) -> CommandResult:
    """Run a command and raise ControlApplyError when it exits non-zero."""
    result = target.execute(list(args), input=input)
    if not result.ok:
        message = (result.stderr or result.stdout).strip() or f"exit code {result.exit_code}"
        raise ControlApplyError(f"{args[0]} failed: {message}")
    return result


def read_text(target: Target, path: str) -> Optional[str]:
    """Return file contents, or None when the file does not exist."""
    try:
        return target.read_file(path).decode("utf-8", errors="replace")
    except FileNotFoundError:
        return None


def write_text(target: Target, path: str, content: str, mode: Optional[int] = None) -> None:
    parent = posixpath.dirname(path)
    if parent:
        run_checked(target, "mkdir", "-p", parent)
    run_checked(target, "tee", path, input=content.encode("utf-8"))
    if mode is not None:
        set_mode(target, path, mode)


def path_exists(target: Target, path: str) -> bool:
    return run(target, "test", "-e", path).ok


def is_directory(target: Target, path: str) -> bool:
    return run(target, "test", "-d", path).ok


def file_mode(target: Target, path: str) -> Optional[int]:
    result = run(target, "stat", "-c", "%a", path)
    if not result.ok:
        return None
    try:
        return int(result.stdout.strip(), 8)
    except ValueError:
        return None


def set_mode(target: Target, path: str, mode: int) -> None:
    run_checked(target, "chmod", f"{mode:04o}", path)


def is_permissive(mode: int, allowed: int) -> bool:
    """True when ``mode`` grants any permission bit outside ``allowed``."""
    return bool(mode & ~allowed & 0o7777)


def find_paths(target: Target, root: str, *criteria: str) -> list[str]:
    result = run(target, "find", root, "-xdev", *criteria)
    # find exits non-zero on unreadable subtrees; whatever it printed still counts
    return [line for line in result.stdout.splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Packages and services
# ---------------------------------------------------------------------------


def package_installed(target: Target, name: str) -> bool:
    return run(target, "rpm", "-q", name).ok


def install_package(target: Target, name: str) -> None:
    run_checked(target, "dnf", "install", "-y", "--setopt=keepcache=0", name)


def remove_package(target: Target, name: str) -> None:
    run_checked(target, "dnf", "remove", "-y", name)


def unit_state(target: Target, unit: str) -> str:
    """Return the systemd enablement state (enabled, disabled, masked, ...)."""
    result = run(target, "systemctl", "is-enabled", unit)
    return result.stdout.strip() or "not-found"


def unit_active(target: Target, unit: str) -> bool:
    return run(target, "systemctl", "is-active", unit).stdout.strip() in ("active", "activating")


def enable_service(target: Target, unit: str) -> None:
    run_checked(target, "systemctl", "enable", "--now", unit)


def mask_service(target: Target, unit: str) -> None:
    run_checked(target, "systemctl", "mask", "--now", unit)


# ---------------------------------------------------------------------------
# Config-file text helpers
# ---------------------------------------------------------------------------


def split_directive(line: str, sep: Optional[str]) -> Optional[tuple[str, str]]:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    if sep is None or not sep.strip():
        parts = stripped.split(None, 1)
        if not parts:
            return None
        return parts[0], parts[1].strip() if len(parts) > 1 else ""
    if sep.strip() not in stripped:
        return None
    key, value = stripped.split(sep.strip(), 1)
    return key.strip(), value.strip()


def active_region(lines: list[str], boundary: Optional[str]) -> int:
    """Index of the first line at or after which directives stop applying globally."""
    if boundary:
        pattern = re.compile(boundary)
        for i, line in enumerate(lines):
            if pattern.match(line):
                return i
    return len(lines)


def get_directive(
    text: Optional[str],
    key: str,
    sep: Optional[str] = None,
    boundary: Optional[str] = None,
) -> Optional[str]:
    """Return the value of the first active ``key`` directive (case-insensitive)."""
    if not text:
        return None
    lines = text.splitlines()
    end = active_region(lines, boundary)
    for line in lines[:end]:
        parsed = split_directive(line, sep)
        if parsed and parsed[0].lower() == key.lower():
            return parsed[1]
    return None


def set_directive(
    text: Optional[str],
    key: str,
    value: str,
    sep: str = " ",
    boundary: Optional[str] = None,
) -> str:
    """Set ``key`` to ``value``, replacing an active or commented-out line.

    Later active duplicates are dropped so the first match is authoritative.
    When the key is absent the line is inserted before ``boundary`` (e.g. the
    first sshd ``Match`` block) or appended.
    """
    lines = (text or "").splitlines()
    end = active_region(lines, boundary)
    new_line = f"{key}{sep}{value}"

    result: list[str] = []
    placed = False
    for i, line in enumerate(lines):
        parsed = split_directive(line, sep) if i < end else None
        if parsed and parsed[0].lower() == key.lower():
            if not placed:
                result.append(new_line)
                placed = True
            continue
        result.append(line)

    if not placed:
        commented = re.compile(rf"^\s*#\s*{re.escape(key)}\b", re.IGNORECASE)
        for i, line in enumerate(result[: min(end, len(result))]):
            if commented.match(line):
                result[i] = new_line
                placed = True
                break

    if not placed:
        insert_at = active_region(result, boundary)
        result.insert(insert_at, new_line)

    return "\n".join(result) + "\n"


def has_line(text: Optional[str], line: str) -> bool:
    if not text:
        return False
    wanted = " ".join(line.split())
    return any(" ".join(existing.split()) == wanted for existing in text.splitlines())


def add_line(text: Optional[str], line: str, before: Optional[str] = None) -> str:
    """Add ``line`` unless an equivalent one is present.

    With ``before``, the line goes ahead of the first line matching that
    pattern (PAM stacks are order-sensitive); otherwise it is appended.
    """
    if has_line(text, line):
        return text if text.endswith("\n") else text + "\n"
    lines = (text or "").splitlines()
    if before:
        pattern = re.compile(before)
        for i, existing in enumerate(lines):
            if pattern.match(existing):
                lines.insert(i, line)
                return "\n".join(lines) + "\n"
    lines.append(line)
    return "\n".join(lines) + "\n"


def set_module_option(text: str, module_pattern: str, option: str, value: Optional[str] = None) -> str:
    """Ensure every line matching ``module_pattern`` carries ``option[=value]``."""
    pattern = re.compile(module_pattern)
    token = f"{option}={value}" if value is not None else option
    out: list[str] = []
    for line in text.splitlines():
        if pattern.match(line):
            fields = line.split()
            kept = [f for f in fields if f != option and not f.startswith(f"{option}=")]
            if token in fields:
                kept = fields
            else:
                kept.append(token)
            line = " ".join(kept)
        out.append(line)
    return "\n".join(out) + "\n"


def get_module_option(text: Optional[str], module_pattern: str, option: str) -> Optional[str]:
    """Return the option value on the first matching line ('' for bare flags)."""
    if not text:
        return None
    pattern = re.compile(module_pattern)
    for line in text.splitlines():
        if not pattern.match(line):
            continue
        for field in line.split():
            if field == option:
                return ""
            if field.startswith(f"{option}="):
                return field.split("=", 1)[1]
        return None
    return None


# ---------------------------------------------------------------------------
# sysctl
# ---------------------------------------------------------------------------


def sysctl_runtime(target: Target, key: str) -> Optional[str]:
    result = run(target, "sysctl", "-n", key)
    return " ".join(result.stdout.split()) if result.ok else None


def sysctl_persisted(target: Target, key: str) -> list[str]:
    """Every persisted value for ``key`` across the drop-in and sysctl.conf."""
    values = []
    for path in (SYSCTL_DROPIN, SYSCTL_CONF):
        value = get_directive(read_text(target, path), key, sep="=")
        if value is not None:
            values.append(value)
    return values


# ---------------------------------------------------------------------------
# Account databases
# ---------------------------------------------------------------------------


def read_table(target: Target, path: str) -> list[list[str]]:
    """Parse a colon-separated account database (/etc/passwd, /etc/group, ...)."""
    text = read_text(target, path) or ""
    return [line.split(":") for line in text.splitlines() if line.strip() and not line.startswith("#")]


def interactive_users(target: Target) -> list[list[str]]:
    """passwd entries whose shell allows login."""
    return [
        entry for entry in read_table(target, "/etc/passwd")
        if len(entry) >= 7 and not entry[6].endswith(("nologin", "false", "sync", "shutdown", "halt"))
    ]
