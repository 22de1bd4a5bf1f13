"""Section 6: system file permissions and local user and group settings."""

from __future__ import annotations

from collections import Counter

from ..models.control import Check, Control, HardeningParameters
from ..targets.base import Target
from . import builders as b
from . import primitives as p

ROOT_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"
ROOT_BASHRC = "/root/.bashrc"

# (id, path, mode, optional)
ACCOUNT_FILES = [
    ("6.1.1", "/etc/passwd", 0o644, False),
    ("6.1.2", "/etc/passwd-", 0o600, True),
    ("6.1.3", "/etc/group", 0o644, False),
    ("6.1.4", "/etc/group-", 0o600, True),
    ("6.1.5", "/etc/shadow", 0o000, False),
    ("6.1.6", "/etc/shadow-", 0o000, True),
    ("6.1.7", "/etc/gshadow", 0o000, False),
    ("6.1.8", "/etc/gshadow-", 0o000, True),
]


def _chown_root(target: Target, paths: list[str]) -> None:
    p.run_checked(target, "chown", "root:root", "--", *paths)


def _chgrp_root(target: Target, paths: list[str]) -> None:
    p.run_checked(target, "chgrp", "root", "--", *paths)


def _duplicates(values: list[str]) -> list[str]:
    return sorted(value for value, count in Counter(values).items() if count > 1)


def _homes(target: Target) -> list[tuple[str, str]]:
    """(user, home) for interactive users with a real home directory."""
    return [(entry[0], entry[5]) for entry in p.interactive_users(target) if entry[5] not in ("", "/")]


# ---------------------------------------------------------------------------
# 6.2 account database checks
# ---------------------------------------------------------------------------


def _unshadowed(target: Target) -> list[str]:
    return [entry[0] for entry in p.read_table(target, "/etc/passwd") if len(entry) > 1 and entry[1] != "x"]


def _shadowed_passwords() -> Control:
    def apply(target: Target) -> str:
        users = _unshadowed(target)
        if not users:
            return "all passwords shadowed"
        p.run_checked(target, "pwconv")
        return f"shadowed {b.summarize(users)}"

    def verify(target: Target) -> Check:
        users = _unshadowed(target)
        if users:
            return b.failed(f"unshadowed: {b.summarize(users)}")
        return b.passed()

    return Control(
        id="6.2.1", section="6.2", level=1, description="Ensure accounts in /etc/passwd use shadowed passwords",
        apply=apply, verify=verify,
    )


def _empty_password_users(target: Target) -> list[str]:
    return [entry[0] for entry in p.read_table(target, "/etc/shadow") if len(entry) > 1 and entry[1] == ""]


def _empty_passwords() -> Control:
    def apply(target: Target) -> str:
        users = _empty_password_users(target)
        for user in users:
            p.run_checked(target, "passwd", "-l", user)
        return f"locked {b.summarize(users)}" if users else "no empty password fields"

    def verify(target: Target) -> Check:
        users = _empty_password_users(target)
        if users:
            return b.failed(f"empty password: {b.summarize(users)}")
        return b.passed()

    return Control(
        id="6.2.2", section="6.2", level=1, description="Ensure /etc/shadow password fields are not empty",
        apply=apply, verify=verify,
    )


def _missing_groups(target: Target) -> list[str]:
    gids = {entry[2] for entry in p.read_table(target, "/etc/group") if len(entry) > 2}
    return sorted(
        {f"{entry[0]} (GID {entry[3]})" for entry in p.read_table(target, "/etc/passwd")
         if len(entry) > 3 and entry[3] not in gids}
    )


def _unknown_members(target: Target) -> list[str]:
    users = {entry[0] for entry in p.read_table(target, "/etc/passwd")}
    problems = []
    for entry in p.read_table(target, "/etc/group"):
        members = entry[3].split(",") if len(entry) > 3 and entry[3] else []
        problems += [f"{member} in {entry[0]}" for member in members if member not in users]
    return problems


def _extra_root_accounts(target: Target) -> list[str]:
    return [entry[0] for entry in p.read_table(target, "/etc/passwd") if len(entry) > 2 and entry[2] == "0"
            and entry[0] != "root"]


def _column_duplicates(path: str, column: int):
    def find(target: Target) -> list[str]:
        return _duplicates([entry[column] for entry in p.read_table(target, path) if len(entry) > column])
    return find


# ---------------------------------------------------------------------------
# 6.2 home directories
# ---------------------------------------------------------------------------


def _missing_homes(target: Target) -> list[tuple[str, str]]:
    return [(user, home) for user, home in _homes(target) if not p.is_directory(target, home)]


def _home_directories_exist() -> Control:
    def apply(target: Target) -> str:
        missing = _missing_homes(target)
        for user, home in missing:
            p.run_checked(target, "mkdir", "-p", home)
            p.run_checked(target, "chown", user, "--", home)
            p.set_mode(target, home, 0o750)
        return f"created {b.summarize([home for _, home in missing])}" if missing else "all home directories exist"

    def verify(target: Target) -> Check:
        missing = _missing_homes(target)
        if missing:
            return b.failed(f"missing: {b.summarize([home for _, home in missing])}")
        return b.passed()

    return Control(
        id="6.2.4", section="6.2", level=1, description="Ensure all users' home directories exist",
        apply=apply, verify=verify,
    )


def _permissive_homes(target: Target) -> list[tuple[str, int]]:
    found = []
    for _, home in _homes(target):
        mode = p.file_mode(target, home)
        if mode is not None and p.is_permissive(mode, 0o750):
            found.append((home, mode))
    return found


def _home_permissions() -> Control:
    def apply(target: Target) -> str:
        found = _permissive_homes(target)
        for home, mode in found:
            p.set_mode(target, home, mode & 0o750)
        return f"restricted {b.summarize([home for home, _ in found])}" if found else "home directories restricted"

    def verify(target: Target) -> Check:
        found = _permissive_homes(target)
        if found:
            return b.failed(b.summarize([f"{home} {mode:04o}" for home, mode in found]))
        return b.passed()

    return Control(
        id="6.2.5", section="6.2", level=1,
        description="Ensure users' home directories permissions are 750 or more restrictive",
        apply=apply, verify=verify,
    )


def _foreign_homes(target: Target) -> list[tuple[str, str]]:
    found = []
    for user, home in _homes(target):
        result = p.run(target, "stat", "-c", "%U", home)
        if result.ok and result.stdout.strip() != user:
            found.append((user, home))
    return found


def _home_ownership() -> Control:
    def apply(target: Target) -> str:
        found = _foreign_homes(target)
        for user, home in found:
            p.run_checked(target, "chown", user, "--", home)
        return f"chowned {b.summarize([home for _, home in found])}" if found else "home directories owned"

    def verify(target: Target) -> Check:
        found = _foreign_homes(target)
        if found:
            return b.failed(f"not owned by their user: {b.summarize([home for _, home in found])}")
        return b.passed()

    return Control(
        id="6.2.6", section="6.2", level=1, description="Ensure users own their home directories",
        apply=apply, verify=verify,
    )


def _homeless_users(target: Target) -> list[str]:
    return [entry[0] for entry in p.interactive_users(target) if entry[5] in ("", "/")]


# ---------------------------------------------------------------------------
# 6.2.14 root PATH
# ---------------------------------------------------------------------------


def _path_problems(value: str) -> list[str]:
    problems = []
    entries = value.strip('"').split(":")
    if "" in entries:
        problems.append("empty PATH entry")
    if "." in entries:
        problems.append("PATH contains .")
    problems += [f"relative entry {e}" for e in entries if e and e != "." and not e.startswith("/")
                 and not e.startswith("$")]
    return problems


def _root_path() -> Control:
    def apply(target: Target) -> str:
        text = p.read_text(target, ROOT_BASHRC)
        current = p.get_directive(text, "PATH", sep="=")
        if current is not None and not _path_problems(current) and p.has_line(text, "export PATH"):
            return "root PATH already safe"
        updated = p.set_directive(text, "PATH", ROOT_PATH, sep="=")
        updated = p.add_line(updated, "export PATH")
        p.write_text(target, ROOT_BASHRC, updated)
        return f"PATH={ROOT_PATH}"

    def verify(target: Target) -> Check:
        text = p.read_text(target, ROOT_BASHRC)
        current = p.get_directive(text, "PATH", sep="=")
        if current is None:
            return b.failed(f"PATH not set in {ROOT_BASHRC}")
        problems = _path_problems(current)
        if problems:
            return b.failed("; ".join(problems))
        return b.passed(f"PATH={current}")

    return Control(id="6.2.14", section="6.2", level=1, description="Ensure root PATH Integrity", apply=apply, verify=verify)


def controls(parameters: HardeningParameters) -> list[Control]:
    result = [
        b.file_mode_control(cid, "6.1", f"Ensure permissions on {path} are configured", path, mode, optional=optional)
        for cid, path, mode, optional in ACCOUNT_FILES
    ]
    result += [
        b.sweep_control(
            "6.1.9", "6.1", "Ensure no world writable files exist",
            "/", ("-type", "f", "-perm", "-0002"), b.chmod_fix("o-w"),
        ),
        b.sweep_control(
            "6.1.10", "6.1", "Ensure no unowned files or directories exist", "/", ("-nouser",), _chown_root,
        ),
        b.sweep_control(
            "6.1.11", "6.1", "Ensure no ungrouped files or directories exist", "/", ("-nogroup",), _chgrp_root,
        ),
        _shadowed_passwords(),
        _empty_passwords(),
        b.audit_control("6.2.3", "6.2", "Ensure all groups in /etc/passwd exist in /etc/group", _missing_groups),
        _home_directories_exist(),
        _home_permissions(),
        _home_ownership(),
        b.sweep_control(
            "6.2.7", "6.2", "Ensure users' dot files are not group or world writable",
            "/home", ("-type", "f", "-name", ".*", "-perm", "/022"), b.chmod_fix("go-w"),
        ),
        b.sweep_control(
            "6.2.8", "6.2", "Ensure no users have .forward files",
            "/home", ("-type", "f", "-name", ".forward"), b.remove_fix,
        ),
        b.sweep_control(
            "6.2.9", "6.2", "Ensure no users have .netrc files",
            "/home", ("-type", "f", "-name", ".netrc"), b.remove_fix,
        ),
        b.sweep_control(
            "6.2.10", "6.2", "Ensure users' .netrc files are not group or world accessible",
            "/home", ("-type", "f", "-name", ".netrc", "-perm", "/077"), b.chmod_fix("go-rwx"),
        ),
        b.sweep_control(
            "6.2.11", "6.2", "Ensure no users have .rhosts files",
            "/home", ("-type", "f", "-name", ".rhosts"), b.remove_fix,
        ),
        b.audit_control("6.2.12", "6.2", "Ensure all group members exist in /etc/passwd", _unknown_members),
        b.audit_control("6.2.13", "6.2", "Ensure root is the only UID 0 account", _extra_root_accounts),
        _root_path(),
        b.audit_control("6.2.15", "6.2", "Ensure all interactive users have home directories", _homeless_users),
        b.sweep_control(
            "6.2.16", "6.2", "Ensure users' home directories are not group or world writable",
            "/home", ("-type", "d", "-perm", "/022"), b.chmod_fix("go-w"),
        ),
        b.audit_control("6.2.17", "6.2", "Ensure no duplicate UIDs exist", _column_duplicates("/etc/passwd", 2)),
        b.audit_control("6.2.18", "6.2", "Ensure no duplicate GIDs exist", _column_duplicates("/etc/group", 2)),
        b.audit_control("6.2.19", "6.2", "Ensure no duplicate user names exist", _column_duplicates("/etc/passwd", 0)),
        b.audit_control("6.2.20", "6.2", "Ensure no duplicate group names exist", _column_duplicates("/etc/group", 0)),
    ]
    return result
