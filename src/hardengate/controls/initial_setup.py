"""Section 1: filesystem, integrity checking, boot, process hardening, SELinux, banners."""

from __future__ import annotations

import re
from typing import Callable, Optional

from ..core.errors import ControlApplyError
from ..models.control import Check, Control, HardeningParameters, PendingAction
from ..targets.base import Target
from . import builders as b
from . import primitives as p

MODPROBE_CIS = "/etc/modprobe.d/CIS.conf"
AIDE_DB = "/var/lib/aide/aide.db.gz"
AIDE_NEW_DB = "/var/lib/aide/aide.db.new.gz"
AIDE_INIT_UNIT = "hardengate-aide-init"
GRUB_DEFAULTS = "/etc/default/grub"
GRUB_USER_CFG = "/boot/grub2/user.cfg"
GRUB_CFG = "/boot/grub2/grub.cfg"
SELINUX_CONFIG = "/etc/selinux/config"
LIMITS_CONF = "/etc/security/limits.conf"

GRUB_CMDLINE_KEYS = ("GRUB_CMDLINE_LINUX", "GRUB_CMDLINE_LINUX_DEFAULT")
SELINUX_DISABLING_ARGS = ("selinux=0", "enforcing=0")
BANNER_ESCAPES = re.compile(r"\\[mrsvMRSV]")


def _module_disabled(cid: str, module: str, level: int) -> Control:
    return b.file_line_control(
        cid, "1.1", f"Disable {module} filesystem", MODPROBE_CIS, f"install {module} /bin/true", level=level,
    )


# ---------------------------------------------------------------------------
# 1.3 AIDE
# ---------------------------------------------------------------------------


def _aide_database() -> Control:
    def apply(target: Target):
        if p.path_exists(target, AIDE_DB):
            return "AIDE database already initialised"
        # aide --init walks the whole filesystem; run it as a transient unit
        p.run_checked(
            target, "systemd-run", f"--unit={AIDE_INIT_UNIT}", "--collect", "--",
            "aide", "--init",
        )

        def poll() -> bool:
            return p.path_exists(target, AIDE_NEW_DB) and not p.unit_active(target, AIDE_INIT_UNIT)

        def finish() -> str:
            p.run_checked(target, "mv", "-f", AIDE_NEW_DB, AIDE_DB)
            return f"initialised {AIDE_DB}"

        return PendingAction(description="aide --init", poll=poll, finish=finish)

    def verify(target: Target) -> Check:
        if p.path_exists(target, AIDE_DB):
            return b.passed(f"{AIDE_DB} exists")
        return b.failed(f"{AIDE_DB} missing")

    return Control(
        id="1.3.2", section="1.3", level=1, description="Initialize AIDE database",
        apply=apply, verify=verify, precondition=lambda target: p.package_installed(target, "aide"),
    )


# ---------------------------------------------------------------------------
# 1.4 Bootloader
# ---------------------------------------------------------------------------


def _bootloader_password(password_hash: Optional[str]) -> Control:
    def apply(target: Target) -> str:
        current = p.get_directive(p.read_text(target, GRUB_USER_CFG), "GRUB2_PASSWORD", sep="=")
        if current and current.startswith("grub.pbkdf2."):
            return "bootloader password already set"
        if not password_hash:
            raise ControlApplyError("no bootloader password hash configured (parameters.bootloader_password_hash)")
        p.write_text(target, GRUB_USER_CFG, f"GRUB2_PASSWORD={password_hash}\n", mode=0o600)
        return f"wrote {GRUB_USER_CFG}"

    def verify(target: Target) -> Check:
        current = p.get_directive(p.read_text(target, GRUB_USER_CFG), "GRUB2_PASSWORD", sep="=")
        if not current:
            return b.failed("GRUB2_PASSWORD not set")
        if not current.startswith("grub.pbkdf2."):
            return b.failed("GRUB2_PASSWORD is not a PBKDF2 hash")
        return b.passed("bootloader password set")

    return Control(
        id="1.4.1", section="1.4", level=1, description="Set bootloader password",
        apply=apply, verify=verify,
    )


# ---------------------------------------------------------------------------
# 1.5 Process hardening
# ---------------------------------------------------------------------------


def _core_dumps() -> Control:
    line = "* hard core 0"
    settings = {"fs.suid_dumpable": "0"}

    def apply(target: Target) -> str:
        text = p.read_text(target, LIMITS_CONF)
        updated = p.add_line(text, line)
        if updated != text:
            p.write_text(target, LIMITS_CONF, updated)
        changed = b.apply_sysctl(target, settings)
        if updated == text and not changed:
            return "core dumps already restricted"
        return "restricted core dumps"

    def verify(target: Target) -> Check:
        problems = b.check_sysctl(target, settings)
        if not p.has_line(p.read_text(target, LIMITS_CONF), line):
            problems.insert(0, f"{LIMITS_CONF} lacks '{line}'")
        if problems:
            return b.failed("; ".join(problems))
        return b.passed("hard core limit 0, fs.suid_dumpable=0")

    return Control(id="1.5.1", section="1.5", level=1, description="Restrict core dumps", apply=apply, verify=verify)


def _cpu_flags(target: Target) -> Optional[list[str]]:
    text = p.read_text(target, "/proc/cpuinfo")
    if not text:
        return None
    for line in text.splitlines():
        if line.startswith("flags"):
            return line.split(":", 1)[1].split()
    return None


def _nx_support() -> Control:
    def apply(target: Target) -> str:
        flags = _cpu_flags(target)
        if flags is not None and "nx" not in flags:
            raise ControlApplyError("CPU does not report NX; enable it in firmware")
        return "NX supported"

    def verify(target: Target) -> Check:
        flags = _cpu_flags(target)
        if flags is None:
            return b.not_applicable("CPU flags unavailable")
        if "nx" in flags:
            return b.passed("nx flag present")
        return b.failed("nx flag missing")

    return Control(id="1.5.2", section="1.5", level=1, description="Enable XD/NX support", apply=apply, verify=verify)


# ---------------------------------------------------------------------------
# 1.6 SELinux
# ---------------------------------------------------------------------------


def _strip_args(value: str, args: tuple[str, ...]) -> str:
    quoted = value.startswith('"') and value.endswith('"') and len(value) >= 2
    inner = value[1:-1] if quoted else value
    kept = " ".join(token for token in inner.split() if token not in args)
    return f'"{kept}"' if quoted else kept


def _selinux_bootloader() -> Control:
    def apply(target: Target) -> str:
        text = p.read_text(target, GRUB_DEFAULTS)
        if text is None:
            raise ControlApplyError(f"{GRUB_DEFAULTS} does not exist")
        updated = text
        for key in GRUB_CMDLINE_KEYS:
            current = p.get_directive(updated, key, sep="=")
            if current is not None and any(arg in current.strip('"').split() for arg in SELINUX_DISABLING_ARGS):
                updated = p.set_directive(updated, key, _strip_args(current, SELINUX_DISABLING_ARGS), sep="=")
        if updated == text:
            return "SELinux not disabled on the kernel command line"
        p.write_text(target, GRUB_DEFAULTS, updated)
        p.run_checked(target, "grub2-mkconfig", "-o", GRUB_CFG)
        return "removed SELinux-disabling kernel arguments"

    def verify(target: Target) -> Check:
        text = p.read_text(target, GRUB_DEFAULTS)
        if text is None:
            return b.not_applicable(f"{GRUB_DEFAULTS} not present")
        found = []
        for key in GRUB_CMDLINE_KEYS:
            value = (p.get_directive(text, key, sep="=") or "").strip('"')
            found.extend(arg for arg in SELINUX_DISABLING_ARGS if arg in value.split())
        if found:
            return b.failed(f"kernel command line contains {', '.join(found)}")
        return b.passed("SELinux enabled at boot")

    return Control(
        id="1.6.1.2", section="1.6", level=1, description="Ensure SELinux is not disabled in bootloader",
        apply=apply, verify=verify,
    )


# ---------------------------------------------------------------------------
# 1.7 Banners
# ---------------------------------------------------------------------------


def _banner_check(path: str) -> Callable[[Optional[str]], Optional[str]]:
    def check(text: Optional[str]) -> Optional[str]:
        if not text or not text.strip():
            return f"{path} is empty"
        if BANNER_ESCAPES.search(text):
            return f"{path} discloses OS information"
        return None
    return check


def _banner(cid: str, description: str, path: str, text: str) -> Control:
    return b.file_content_control(cid, "1.7", description, path, text, mode=0o644, check=_banner_check(path))


def controls(parameters: HardeningParameters) -> list[Control]:
    banner = parameters.banner_text
    return [
        _module_disabled("1.1.1", "cramfs", level=1),
        _module_disabled("1.1.2", "squashfs", level=2),
        _module_disabled("1.1.3", "udf", level=2),
        b.package_present("1.3.1", "1.3", "Install AIDE", "aide"),
        _aide_database(),
        _bootloader_password(parameters.bootloader_password_hash),
        _core_dumps(),
        _nx_support(),
        b.sysctl_control("1.5.3", "1.5", "Enable ASLR", {"kernel.randomize_va_space": "2"}),
        b.package_present("1.6.1.1", "1.6", "Ensure SELinux is installed", "libselinux"),
        _selinux_bootloader(),
        b.directive_control(
            "1.6.1.3", "1.6", "Ensure SELinux policy is configured",
            SELINUX_CONFIG, "SELINUXTYPE", "targeted", sep="=",
            check=lambda v: v in ("targeted", "mls"),
        ),
        b.directive_control(
            "1.6.1.4", "1.6", "Ensure SELinux is enabled",
            SELINUX_CONFIG, "SELINUX", "enforcing", sep="=",
        ),
        _banner("1.7.1", "Ensure message of the day is configured properly", "/etc/motd", banner),
        _banner("1.7.2", "Ensure local login warning banner is configured properly", "/etc/issue", banner),
        _banner("1.7.3", "Ensure remote login warning banner is configured properly", "/etc/issue.net", banner),
        b.file_mode_control("1.7.4", "1.7", "Ensure permissions on /etc/motd are configured", "/etc/motd", 0o644),
        b.file_mode_control("1.7.5", "1.7", "Ensure permissions on /etc/issue are configured", "/etc/issue", 0o644),
        b.file_mode_control(
            "1.7.6", "1.7", "Ensure permissions on /etc/issue.net are configured", "/etc/issue.net", 0o644,
        ),
        b.package_absent(
            "1.8.1", "1.8", "Ensure GNOME Display Manager is removed", "gdm", level=2,
            precondition=lambda target: p.path_exists(target, "/etc/gdm/custom.conf"),
        ),
    ]
