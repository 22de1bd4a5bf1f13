"""Section 5: cron, SSH server, PAM, user accounts and environment."""

from __future__ import annotations

import re
from typing import Callable, Optional

from ..core.errors import ControlApplyError
from ..models.control import Check, Control, HardeningParameters
from ..targets.base import Target
from . import builders as b
from . import primitives as p

SYSTEM_AUTH = "/etc/pam.d/system-auth"
PWQUALITY_CONF = "/etc/security/pwquality.conf"
LOGIN_DEFS = "/etc/login.defs"
USERADD_DEFAULTS = "/etc/default/useradd"
PROFILE_TIMEOUT = "/etc/profile.d/cis.sh"
SECURETTY = "/etc/securetty"
CRON_ALLOW = "/etc/cron.allow"
CRON_DENY = "/etc/cron.deny"

PAM_UNIX_PASSWORD = r"^\s*password\s+sufficient\s+pam_unix\.so"
PAM_UNIX_AUTH = r"^\s*auth\s+sufficient\s+pam_unix\.so"

STRONG_CIPHERS = (
    "chacha20-poly1305@openssh.com,aes256-gcm@openssh.com,aes128-gcm@openssh.com,"
    "aes256-ctr,aes192-ctr,aes128-ctr"
)
STRONG_MACS = "hmac-sha2-512-etm@openssh.com,hmac-sha2-256-etm@openssh.com,hmac-sha2-512,hmac-sha2-256"
STRONG_KEX = (
    "curve25519-sha256,curve25519-sha256@libssh.org,diffie-hellman-group16-sha512,"
    "diffie-hellman-group18-sha512,diffie-hellman-group-exchange-sha256"
)


def _int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def _at_most(limit: int, minimum: int = 0) -> Callable[[str], bool]:
    def check(value: str) -> bool:
        number = _int(value)
        return number is not None and minimum <= number <= limit
    return check


def _at_least(limit: int) -> Callable[[str], bool]:
    def check(value: str) -> bool:
        number = _int(value)
        return number is not None and number >= limit
    return check


def _subset_of(allowed: str) -> Callable[[str], bool]:
    allowed_set = set(allowed.split(","))

    def check(value: str) -> bool:
        return set(value.lower().split(",")) <= allowed_set
    return check


def _seconds(value: str) -> Optional[int]:
    m = re.fullmatch(r"(\d+)([smh]?)", value.strip().lower())
    if not m:
        return None
    return int(m.group(1)) * {"": 1, "s": 1, "m": 60, "h": 3600}[m.group(2)]


def _grace_time_ok(value: str) -> bool:
    seconds = _seconds(value)
    return seconds is not None and 1 <= seconds <= 60


def _max_startups_ok(value: str) -> bool:
    parts = [_int(v) for v in value.split(":")]
    if len(parts) != 3 or None in parts:
        return False
    start, rate, full = parts
    return start <= 10 and rate <= 30 and full <= 60


def _umask_ok(value: str) -> bool:
    try:
        return int(value, 8) & 0o027 == 0o027
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# 5.1 cron
# ---------------------------------------------------------------------------


def _cron_restricted() -> Control:
    def apply(target: Target) -> str:
        actions = []
        if p.path_exists(target, CRON_DENY):
            p.run_checked(target, "rm", "-f", "--", CRON_DENY)
            actions.append(f"removed {CRON_DENY}")
        mode = p.file_mode(target, CRON_ALLOW)
        if mode is None:
            p.write_text(target, CRON_ALLOW, "", mode=0o600)
            actions.append(f"created {CRON_ALLOW}")
        elif p.is_permissive(mode, 0o600):
            p.set_mode(target, CRON_ALLOW, mode & 0o600)
            actions.append(f"restricted {CRON_ALLOW}")
        return "; ".join(actions) or "cron already restricted"

    def verify(target: Target) -> Check:
        if p.path_exists(target, CRON_DENY):
            return b.failed(f"{CRON_DENY} exists")
        mode = p.file_mode(target, CRON_ALLOW)
        if mode is None:
            return b.failed(f"{CRON_ALLOW} missing")
        if p.is_permissive(mode, 0o600):
            return b.failed(f"{CRON_ALLOW} is {mode:04o}")
        return b.passed(f"{CRON_ALLOW} only")

    return Control(
        id="5.1.9", section="5.1", level=1, description="Ensure cron is restricted to authorized users",
        apply=apply, verify=verify,
    )


# ---------------------------------------------------------------------------
# 5.3 PAM
# ---------------------------------------------------------------------------


def _password_quality(min_length: int) -> Control:
    def apply(target: Target) -> str:
        actions = []
        if not p.package_installed(target, "libpwquality"):
            p.install_package(target, "libpwquality")
            actions.append("installed libpwquality")
        text = p.read_text(target, PWQUALITY_CONF)
        current = _int(p.get_directive(text, "minlen", sep="=") or "")
        if current is None or current < min_length:
            p.write_text(target, PWQUALITY_CONF, p.set_directive(text, "minlen", str(min_length), sep=" = "))
            actions.append(f"minlen = {min_length}")
        return "; ".join(actions) or "password quality already configured"

    def verify(target: Target) -> Check:
        if not p.package_installed(target, "libpwquality"):
            return b.failed("libpwquality is not installed")
        current = p.get_directive(p.read_text(target, PWQUALITY_CONF), "minlen", sep="=")
        if current is None or (_int(current) or 0) < min_length:
            return b.failed(f"minlen is {current or 'unset'} (want >= {min_length})")
        return b.passed(f"minlen {current}")

    return Control(
        id="5.3.1", section="5.3", level=1, description="Ensure password creation requirements are configured",
        apply=apply, verify=verify,
    )


def _pam_unix_option(cid: str, description: str, option: str, value: str, accept: Callable[[str], bool]) -> Control:
    def apply(target: Target) -> str:
        text = p.read_text(target, SYSTEM_AUTH)
        if text is None or not re.search(PAM_UNIX_PASSWORD, text, re.MULTILINE):
            raise ControlApplyError(f"no pam_unix password line in {SYSTEM_AUTH}")
        current = p.get_module_option(text, PAM_UNIX_PASSWORD, option)
        if current is not None and accept(current):
            return f"{option} already {current}"
        p.write_text(target, SYSTEM_AUTH, p.set_module_option(text, PAM_UNIX_PASSWORD, option, value))
        return f"set {option}={value}"

    def verify(target: Target) -> Check:
        current = p.get_module_option(p.read_text(target, SYSTEM_AUTH), PAM_UNIX_PASSWORD, option)
        if current is None:
            return b.failed(f"{option} not set on pam_unix")
        if not accept(current):
            return b.failed(f"{option}={current}")
        return b.passed(f"{option}={current}")

    return Control(id=cid, section="5.3", level=1, description=description, apply=apply, verify=verify)


def _password_hashing() -> Control:
    strong = ("sha512", "yescrypt")

    def configured(text: Optional[str]) -> list[str]:
        return [alg for alg in strong if p.get_module_option(text, PAM_UNIX_PASSWORD, alg) is not None]

    def apply(target: Target) -> str:
        text = p.read_text(target, SYSTEM_AUTH)
        if text is None or not re.search(PAM_UNIX_PASSWORD, text, re.MULTILINE):
            raise ControlApplyError(f"no pam_unix password line in {SYSTEM_AUTH}")
        found = configured(text)
        if found:
            return f"pam_unix already uses {found[0]}"
        p.write_text(target, SYSTEM_AUTH, p.set_module_option(text, PAM_UNIX_PASSWORD, "sha512"))
        return "pam_unix set to sha512"

    def verify(target: Target) -> Check:
        found = configured(p.read_text(target, SYSTEM_AUTH))
        if found:
            return b.passed(f"pam_unix uses {found[0]}")
        return b.failed("pam_unix hashing algorithm is not sha512 or yescrypt")

    return Control(
        id="5.3.4", section="5.3", level=1, description="Ensure password hashing algorithm is SHA-512 or yescrypt",
        apply=apply, verify=verify,
    )


# ---------------------------------------------------------------------------
# 5.4 / 5.5 accounts and environment
# ---------------------------------------------------------------------------


def _inactive_lock(days: int) -> Control:
    def current(target: Target) -> Optional[int]:
        return _int(p.get_directive(p.read_text(target, USERADD_DEFAULTS), "INACTIVE", sep="=") or "")

    def acceptable(value: Optional[int]) -> bool:
        return value is not None and 0 <= value <= days

    def apply(target: Target) -> str:
        value = current(target)
        if acceptable(value):
            return f"INACTIVE already {value}"
        p.run_checked(target, "useradd", "-D", "-f", str(days))
        return f"INACTIVE={days}"

    def verify(target: Target) -> Check:
        value = current(target)
        if acceptable(value):
            return b.passed(f"INACTIVE={value}")
        return b.failed(f"INACTIVE is {value if value is not None else 'unset'} (want 0-{days})")

    return Control(
        id="5.4.4", section="5.4", level=1, description=f"Ensure inactive password lock is {days} days or less",
        apply=apply, verify=verify,
    )


def _root_gid(target: Target) -> Optional[str]:
    for entry in p.read_table(target, "/etc/passwd"):
        if entry[0] == "root" and len(entry) > 3:
            return entry[3]
    return None


def _root_group() -> Control:
    def apply(target: Target) -> str:
        gid = _root_gid(target)
        if gid == "0":
            return "root already in GID 0"
        p.run_checked(target, "usermod", "-g", "0", "root")
        return f"root GID {gid} -> 0"

    def verify(target: Target) -> Check:
        gid = _root_gid(target)
        if gid == "0":
            return b.passed("root GID is 0")
        return b.failed(f"root GID is {gid}")

    return Control(
        id="5.4.5", section="5.4", level=1, description="Ensure default group for the root account is GID 0",
        apply=apply, verify=verify,
    )


def _shell_timeout_check(timeout: int) -> Callable[[Optional[str]], Optional[str]]:
    def check(text: Optional[str]) -> Optional[str]:
        value = _int(p.get_directive(text, "TMOUT", sep="=") or "")
        if value is None:
            return "TMOUT not set"
        if not 1 <= value <= timeout:
            return f"TMOUT is {value} (want 1-{timeout})"
        if not p.has_line(text, "readonly TMOUT"):
            return "TMOUT is not readonly"
        return None
    return check


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def _ssh_controls(parameters: HardeningParameters) -> list[Control]:
    return [
        b.file_mode_control(
            "5.2.1", "5.2", "Ensure permissions on /etc/ssh/sshd_config are configured", b.SSHD_CONFIG, 0o600,
        ),
        b.sweep_control(
            "5.2.2", "5.2", "Ensure permissions on SSH private host key files are configured",
            "/etc/ssh", ("-type", "f", "-name", "ssh_host_*_key", "-perm", "/077"), b.chmod_fix("go-rwx"),
        ),
        b.sweep_control(
            "5.2.3", "5.2", "Ensure permissions on SSH public host key files are configured",
            "/etc/ssh", ("-type", "f", "-name", "ssh_host_*_key.pub", "-perm", "/133"), b.chmod_fix("u-x,go-wx"),
        ),
        b.sshd_settings("5.2.4", "Ensure SSH access is limited", {"AllowUsers": " ".join(parameters.ssh_allow_users)}),
        b.sshd_settings(
            "5.2.5", "Ensure SSH LogLevel is appropriate", {"LogLevel": "INFO"},
            checks={"LogLevel": lambda v: v.upper() in ("INFO", "VERBOSE")},
        ),
        b.sshd_settings("5.2.6", "Ensure SSH X11 forwarding is disabled", {"X11Forwarding": "no"}, level=2),
        b.sshd_settings(
            "5.2.7", "Ensure SSH MaxAuthTries is set to 4 or less", {"MaxAuthTries": "4"},
            checks={"MaxAuthTries": _at_most(4, minimum=1)},
        ),
        b.sshd_settings("5.2.8", "Ensure SSH IgnoreRhosts is enabled", {"IgnoreRhosts": "yes"}),
        b.sshd_settings("5.2.9", "Ensure SSH HostbasedAuthentication is disabled", {"HostbasedAuthentication": "no"}),
        b.sshd_settings("5.2.10", "Ensure SSH root login is disabled", {"PermitRootLogin": "no"}),
        b.sshd_settings("5.2.11", "Ensure SSH PermitEmptyPasswords is disabled", {"PermitEmptyPasswords": "no"}),
        b.sshd_settings("5.2.12", "Ensure SSH PermitUserEnvironment is disabled", {"PermitUserEnvironment": "no"}),
        b.sshd_settings(
            "5.2.13", "Ensure only strong ciphers are used", {"Ciphers": STRONG_CIPHERS},
            checks={"Ciphers": _subset_of(STRONG_CIPHERS)},
        ),
        b.sshd_settings(
            "5.2.14", "Ensure only strong MAC algorithms are used", {"MACs": STRONG_MACS},
            checks={"MACs": _subset_of(STRONG_MACS)},
        ),
        b.sshd_settings(
            "5.2.15", "Ensure only strong key exchange algorithms are used", {"KexAlgorithms": STRONG_KEX},
            checks={"KexAlgorithms": _subset_of(STRONG_KEX)},
        ),
        b.sshd_settings(
            "5.2.16", "Ensure SSH Idle Timeout Interval is configured",
            {"ClientAliveInterval": "300", "ClientAliveCountMax": "3"},
            checks={"ClientAliveInterval": _at_most(300, minimum=1), "ClientAliveCountMax": _at_most(3)},
        ),
        b.sshd_settings(
            "5.2.17", "Ensure SSH LoginGraceTime is set to one minute or less", {"LoginGraceTime": "60"},
            checks={"LoginGraceTime": _grace_time_ok},
        ),
        b.sshd_settings("5.2.18", "Ensure SSH warning banner is configured", {"Banner": "/etc/issue.net"}),
        b.sshd_settings("5.2.19", "Ensure SSH PAM is enabled", {"UsePAM": "yes"}),
        b.sshd_settings("5.2.20", "Ensure SSH AllowTcpForwarding is disabled", {"AllowTcpForwarding": "no"}, level=2),
        b.sshd_settings(
            "5.2.21", "Ensure SSH MaxStartups is configured", {"MaxStartups": "10:30:60"},
            checks={"MaxStartups": _max_startups_ok},
        ),
        b.sshd_settings(
            "5.2.22", "Ensure SSH MaxSessions is limited", {"MaxSessions": "10"},
            checks={"MaxSessions": _at_most(10, minimum=1)},
        ),
    ]


def controls(parameters: HardeningParameters) -> list[Control]:
    cron_dirs = [
        ("5.1.4", "/etc/cron.hourly"),
        ("5.1.5", "/etc/cron.daily"),
        ("5.1.6", "/etc/cron.weekly"),
        ("5.1.7", "/etc/cron.monthly"),
        ("5.1.8", "/etc/cron.d"),
    ]
    faillock = (
        f"auth        required      pam_faillock.so preauth audit silent "
        f"deny={parameters.faillock_deny} unlock_time={parameters.faillock_unlock_time}"
    )
    timeout = parameters.shell_timeout

    result = [
        b.package_present("5.1.1", "5.1", "Ensure cron is installed", "cronie"),
        b.service_enabled("5.1.2", "5.1", "Ensure cron service is enabled", "crond"),
        b.file_mode_control("5.1.3", "5.1", "Ensure permissions on /etc/crontab are configured", "/etc/crontab", 0o600),
    ]
    result += [
        b.file_mode_control(cid, "5.1", f"Ensure permissions on {path} are configured", path, 0o700)
        for cid, path in cron_dirs
    ]
    result.append(_cron_restricted())
    result += _ssh_controls(parameters)
    result += [
        _password_quality(parameters.password_min_length),
        b.file_line_control(
            "5.3.2", "5.3", "Ensure lockout for failed password attempts is configured",
            SYSTEM_AUTH, faillock, before=PAM_UNIX_AUTH,
        ),
        _pam_unix_option(
            "5.3.3", "Ensure password reuse is limited", "remember", str(parameters.password_remember),
            _at_least(parameters.password_remember),
        ),
        _password_hashing(),
        b.directive_control(
            "5.4.1", "5.4", f"Ensure password expiration is {parameters.password_max_days} days or less",
            LOGIN_DEFS, "PASS_MAX_DAYS", str(parameters.password_max_days),
            check=_at_most(parameters.password_max_days, minimum=1),
        ),
        b.directive_control(
            "5.4.2", "5.4", "Ensure minimum days between password changes is configured",
            LOGIN_DEFS, "PASS_MIN_DAYS", str(parameters.password_min_days),
            check=_at_least(parameters.password_min_days),
        ),
        b.directive_control(
            "5.4.3", "5.4", f"Ensure password expiration warning days is {parameters.password_warn_age} or more",
            LOGIN_DEFS, "PASS_WARN_AGE", str(parameters.password_warn_age),
            check=_at_least(parameters.password_warn_age),
        ),
        _inactive_lock(parameters.inactive_days),
        _root_group(),
        b.directive_control(
            "5.5.1", "5.5", "Ensure default user umask is 027 or more restrictive",
            LOGIN_DEFS, "UMASK", "027", check=_umask_ok,
        ),
        b.file_content_control(
            "5.5.2", "5.5", "Ensure default user shell timeout is configured", PROFILE_TIMEOUT,
            f"TMOUT={timeout}\nreadonly TMOUT\nexport TMOUT\n", mode=0o644,
            check=_shell_timeout_check(timeout),
        ),
        b.file_content_control(
            "5.6", "5.6", "Ensure root login is restricted to system console", SECURETTY,
            "console\ntty1\n", mode=0o600,
        ),
    ]
    return result
