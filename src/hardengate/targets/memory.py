"""In-memory simulated host.

MemoryTarget models just enough of an Amazon Linux 2023 instance (files and
modes, sysctl, rpm packages, systemd units, local accounts) to interpret the
commands the built-in controls issue. It backs ``--dry-run`` and the test
suite, and supports fault injection for failed commands and lost
connectivity.
"""

from __future__ import annotations

import copy
import fnmatch
import posixpath
import re
from typing import Optional, Sequence

from ..core.errors import TargetUnreachableError
from ..models.target import CommandResult
from .base import BaseTarget

# Package that ships each systemd unit
UNIT_PACKAGES = {
    "chronyd": "chrony",
    "firewalld": "firewalld",
    "rsyslog": "rsyslog",
    "auditd": "audit",
    "crond": "cronie",
    "nftables": "nftables",
    "sshd": "openssh-server",
    "rpcbind": "rpcbind",
    "cups": "cups",
    "avahi-daemon": "avahi",
}

BASELINE_SSHD_CONFIG = """\
#	$OpenBSD: sshd_config,v 1.104 2021/07/02 05:11:21 dtucker Exp $

Include /etc/ssh/sshd_config.d/*.conf

#Port 22
#AddressFamily any
#LogLevel INFO
#LoginGraceTime 2m
#PermitRootLogin prohibit-password
#MaxAuthTries 6
#MaxSessions 10
#HostbasedAuthentication no
#IgnoreRhosts yes
#PermitEmptyPasswords no
PasswordAuthentication no
#AllowTcpForwarding yes
X11Forwarding yes
#PermitUserEnvironment no
#ClientAliveInterval 0
#ClientAliveCountMax 3
#MaxStartups 10:30:100
#Banner none
UsePAM yes
Subsystem sftp /usr/libexec/openssh/sftp-server

# Example of overriding settings on a per-user basis
#Match User anoncvs
#	X11Forwarding no
"""

BASELINE_SSHD_REDHAT = """\
SyslogFacility AUTHPRIV
ChallengeResponseAuthentication no
GSSAPIAuthentication yes
GSSAPICleanupCredentials no
UsePAM yes
X11Forwarding yes
PrintMotd no
"""

BASELINE_SYSTEM_AUTH = """\
auth        required      pam_env.so
auth        sufficient    pam_unix.so try_first_pass nullok
auth        required      pam_deny.so

account     required      pam_unix.so

password    requisite     pam_pwquality.so local_users_only
password    sufficient    pam_unix.so yescrypt shadow nullok use_authtok
password    required      pam_deny.so

session     optional      pam_keyinit.so revoke
session     required      pam_limits.so
session     required      pam_unix.so
"""

BASELINE_LOGIN_DEFS = """\
MAIL_DIR	/var/spool/mail
PASS_MAX_DAYS	99999
PASS_MIN_DAYS	0
PASS_WARN_AGE	7
UID_MIN                  1000
UID_MAX                 60000
UMASK		022
ENCRYPT_METHOD SHA512
"""

BASELINE_PASSWD = """\
root:x:0:0:root:/root:/bin/bash
bin:x:1:1:bin:/bin:/sbin/nologin
daemon:x:2:2:daemon:/sbin:/sbin/nologin
sshd:x:74:74:Privilege-separated SSH:/usr/share/empty.sshd:/sbin/nologin
ec2-user:x:1000:1000:EC2 Default User:/home/ec2-user:/bin/bash
"""

BASELINE_SHADOW = """\
root:*::0:99999:7:::
bin:*:19000:0:99999:7:::
daemon:*:19000:0:99999:7:::
sshd:!!:19000::::::
ec2-user:!!:19000:0:99999:7:::
"""

BASELINE_GROUP = """\
root:x:0:
bin:x:1:
daemon:x:2:
wheel:x:10:ec2-user
sshd:x:74:
ec2-user:x:1000:
"""

BASELINE_GRUB = """\
GRUB_TIMEOUT=0
GRUB_CMDLINE_LINUX_DEFAULT="console=tty0 console=ttyS0,115200n8 nvme_core.io_timeout=4294967295 rd.emergency=poweroff rd.shell=0 selinux=1 security=selinux quiet"
GRUB_CMDLINE_LINUX=""
GRUB_DISABLE_RECOVERY="true"
"""

BASELINE_RSYSLOG = """\
module(load="imjournal" StateFile="imjournal.state")
$IncludeConfig /etc/rsyslog.d/*.conf
*.info;mail.none;authpriv.none;cron.none                /var/log/messages
"""


OS_RELEASE = """\
NAME="Amazon Linux"
VERSION="2023"
ID="amzn"
VERSION_ID="2023"
PRETTY_NAME="Amazon Linux 2023"
"""


class MemoryTarget(BaseTarget):
    name = "memory"

    def __init__(self) -> None:
        super().__init__({"sudo": False}, {})
        self.files: dict[str, str] = {}
        self.modes: dict[str, int] = {}
        self.owners: dict[str, str] = {}
        self.dirs: set[str] = {"/"}
        self.sysctl: dict[str, str] = {}
        self.packages: set[str] = set()
        self.units: dict[str, str] = {}
        self.unavailable_packages: set[str] = set()
        self.failures: dict[str, CommandResult] = {}
        self.unreachable_after: Optional[int] = None
        self.commands: list[list[str]] = []

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    def add_dir(self, path: str, mode: int = 0o755, owner: str = "root") -> None:
        while path and path not in self.dirs:
            self.dirs.add(path)
            self.modes.setdefault(path, mode)
            self.owners.setdefault(path, owner)
            path = posixpath.dirname(path)

    def add_file(self, path: str, content: str = "", mode: int = 0o644, owner: str = "root") -> None:
        self.add_dir(posixpath.dirname(path))
        self.files[path] = content
        self.modes[path] = mode
        self.owners[path] = owner

    def install(self, package: str, unit_state: str = "disabled") -> None:
        self.packages.add(package)
        for unit, owner in UNIT_PACKAGES.items():
            if owner == package:
                self.units.setdefault(unit, unit_state)

    def fail_command(self, prefix: str, stderr: str = "simulated failure", exit_code: int = 1) -> None:
        """Make every command starting with ``prefix`` (space-joined argv) fail."""
        self.failures[prefix] = CommandResult(stderr=stderr, exit_code=exit_code)

    def clone(self) -> "MemoryTarget":
        return copy.deepcopy(self)

    def snapshot(self) -> dict:
        """Comparable view of all simulated state."""
        return {
            "files": dict(self.files),
            "modes": dict(self.modes),
            "owners": dict(self.owners),
            "dirs": set(self.dirs),
            "sysctl": dict(self.sysctl),
            "packages": set(self.packages),
            "units": dict(self.units),
        }

    @classmethod
    def amazon_linux_baseline(cls) -> "MemoryTarget":
        """A freshly launched, unhardened Amazon Linux 2023 instance."""
        t = cls()
        for d in ("/etc/modprobe.d", "/etc/sysctl.d", "/etc/rsyslog.d", "/etc/profile.d",
                  "/etc/cron.hourly", "/etc/cron.daily", "/etc/cron.weekly", "/etc/cron.monthly",
                  "/etc/cron.d", "/var/lib/aide", "/boot/grub2", "/etc/ssh/sshd_config.d"):
            t.add_dir(d)
        t.add_dir("/root", 0o550)
        t.add_dir("/home/ec2-user", 0o700, owner="ec2-user")

        t.add_file("/etc/ssh/sshd_config", BASELINE_SSHD_CONFIG, 0o600)
        t.add_file("/etc/ssh/sshd_config.d/50-redhat.conf", BASELINE_SSHD_REDHAT, 0o600)
        t.add_file("/etc/ssh/ssh_host_ed25519_key", "PRIVATE", 0o640)
        t.add_file("/etc/ssh/ssh_host_ed25519_key.pub", "ssh-ed25519 AAAA", 0o644)
        t.add_file("/etc/ssh/ssh_host_ecdsa_key", "PRIVATE", 0o640)
        t.add_file("/etc/ssh/ssh_host_ecdsa_key.pub", "ecdsa-sha2-nistp256 AAAA", 0o644)
        t.add_file("/etc/login.defs", BASELINE_LOGIN_DEFS)
        t.add_file("/etc/default/useradd", "GROUP=100\nHOME=/home\nINACTIVE=-1\nEXPIRE=\nSHELL=/bin/bash\n")
        t.add_file("/etc/passwd", BASELINE_PASSWD)
        t.add_file("/etc/passwd-", BASELINE_PASSWD)
        t.add_file("/etc/group", BASELINE_GROUP)
        t.add_file("/etc/group-", BASELINE_GROUP)
        t.add_file("/etc/shadow", BASELINE_SHADOW, 0o000)
        t.add_file("/etc/shadow-", BASELINE_SHADOW, 0o000)
        t.add_file("/etc/gshadow", "root:::\nec2-user:!::\n", 0o000)
        t.add_file("/etc/gshadow-", "root:::\nec2-user:!::\n", 0o000)
        t.add_file("/etc/selinux/config", "SELINUX=permissive\nSELINUXTYPE=targeted\n")
        t.add_file("/etc/default/grub", BASELINE_GRUB)
        t.add_file("/etc/security/limits.conf", "# /etc/security/limits.conf\n")
        t.add_file("/etc/sysctl.conf", "# System default settings live in /usr/lib/sysctl.d/00-system.conf.\n")
        t.add_file("/etc/motd", "")
        t.add_file("/etc/issue", "\\S\nKernel \\r on an \\m\n")
        t.add_file("/etc/issue.net", "\\S\nKernel \\r on an \\m\n")
        t.add_file("/etc/crontab", "SHELL=/bin/bash\n", 0o644)
        t.add_file("/etc/cron.deny", "", 0o644)
        t.add_file("/etc/rsyslog.conf", BASELINE_RSYSLOG)
        t.add_file("/etc/pam.d/system-auth", BASELINE_SYSTEM_AUTH)
        t.add_file("/root/.bashrc", "alias rm='rm -i'\n")
        t.add_file("/home/ec2-user/.bashrc", "# .bashrc\n", 0o644, owner="ec2-user")
        t.add_file("/home/ec2-user/.bash_profile", "# .bash_profile\n", 0o664, owner="ec2-user")
        t.add_file("/proc/cpuinfo", "processor\t: 0\nflags\t\t: fpu vme de pse tsc msr pae mce cx8 apic sep nx lm\n", 0o444)
        t.add_file("/etc/os-release", OS_RELEASE)
        for tool in ("curl", "wget", "git", "unzip"):
            t.add_file(f"/usr/bin/{tool}", "", 0o755)

        t.sysctl.update({
            "kernel.randomize_va_space": "2",
            "fs.suid_dumpable": "0",
            "net.ipv4.ip_forward": "0",
            "net.ipv4.conf.all.send_redirects": "1",
            "net.ipv4.conf.default.send_redirects": "1",
            "net.ipv6.conf.all.accept_ra": "1",
            "net.ipv6.conf.default.accept_ra": "1",
            "net.ipv6.conf.all.accept_redirects": "1",
            "net.ipv6.conf.default.accept_redirects": "1",
        })

        for pkg in ("openssh-server", "chrony", "audit", "libselinux", "nftables", "libpwquality", "rpcbind"):
            t.install(pkg)
        t.units.update({"sshd": "enabled", "chronyd": "enabled", "auditd": "enabled", "rpcbind": "enabled"})
        return t

    # ------------------------------------------------------------------
    # Target interface
    # ------------------------------------------------------------------

    def read_file(self, path: str) -> bytes:
        self._tick(["cat", path])
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path].encode("utf-8")

    def _tick(self, argv: list[str]) -> None:
        self.commands.append(argv)
        if self.unreachable_after is not None and len(self.commands) > self.unreachable_after:
            raise TargetUnreachableError("memory target: connection lost")

    def _run(self, argv: list[str], input: Optional[bytes]) -> CommandResult:
        self._tick(argv)
        joined = " ".join(argv)
        for prefix, result in self.failures.items():
            if joined.startswith(prefix):
                return result

        handler = getattr(self, f"_cmd_{argv[0].replace('-', '_')}", None)
        if handler is None:
            return CommandResult(stderr=f"{argv[0]}: command not found", exit_code=127)
        return handler(argv[1:], input)

    # ------------------------------------------------------------------
    # Command implementations
    # ------------------------------------------------------------------

    @staticmethod
    def _ok(stdout: str = "") -> CommandResult:
        return CommandResult(stdout=stdout)

    @staticmethod
    def _err(stderr: str, exit_code: int = 1) -> CommandResult:
        return CommandResult(stderr=stderr, exit_code=exit_code)

    def _exists(self, path: str) -> bool:
        return path in self.files or path in self.dirs

    def _cmd_true(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        return self._ok()

    def _cmd_uname(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        return self._ok("6.1.0-1.amzn2023.x86_64\n")

    def _cmd_cat(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        path = [a for a in args if a != "--"][0]
        if path not in self.files:
            return self._err(f"cat: {path}: No such file or directory")
        return self._ok(self.files[path])

    def _cmd_tee(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        path = args[-1]
        if posixpath.dirname(path) not in self.dirs:
            return self._err(f"tee: {path}: No such file or directory")
        content = (input or b"").decode("utf-8")
        self.files[path] = content
        self.modes.setdefault(path, 0o644)
        self.owners.setdefault(path, "root")
        return self._ok(content)

    def _cmd_mkdir(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        for path in (a for a in args if not a.startswith("-")):
            self.add_dir(path)
        return self._ok()

    def _cmd_test(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        flag, path = args[0], args[1]
        if flag == "-e":
            found = self._exists(path)
        elif flag == "-d":
            found = path in self.dirs
        elif flag == "-f":
            found = path in self.files
        elif flag == "-x":
            found = path in self.files and bool(self.modes.get(path, 0) & 0o111)
        else:
            return self._err(f"test: unsupported flag {flag}", 2)
        return self._ok() if found else CommandResult(exit_code=1)

    def _cmd_stat(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        path = args[-1]
        if not self._exists(path):
            return self._err(f"stat: cannot statx '{path}': No such file or directory")
        if "%U" in args:
            return self._ok(self.owners.get(path, "root") + "\n")
        return self._ok(f"{self.modes.get(path, 0o644):o}\n")

    def _cmd_chmod(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        symbolic, paths = args[0], args[1:]
        for path in paths:
            if not self._exists(path):
                return self._err(f"chmod: cannot access '{path}': No such file or directory")
            self.modes[path] = _apply_mode(self.modes.get(path, 0o644), symbolic)
        return self._ok()

    def _cmd_chown(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        args = [a for a in args if a != "--"]
        owner = args[0].split(":", 1)[0]
        for path in args[1:]:
            if not self._exists(path):
                return self._err(f"chown: cannot access '{path}': No such file or directory")
            if owner:
                self.owners[path] = owner
        return self._ok()

    def _cmd_chgrp(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        for path in (a for a in args[1:] if a != "--"):
            if not self._exists(path):
                return self._err(f"chgrp: cannot access '{path}': No such file or directory")
        return self._ok()

    def _cmd_grub2_mkconfig(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        output = args[args.index("-o") + 1]
        self.add_file(output, self.files.get("/etc/default/grub", ""), 0o600)
        return self._ok()

    def _cmd_rm(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        for path in (a for a in args if not a.startswith("-")):
            self.files.pop(path, None)
            self.modes.pop(path, None)
            self.owners.pop(path, None)
        return self._ok()

    def _cmd_mv(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        src, dst = [a for a in args if not a.startswith("-")][:2]
        if src not in self.files:
            return self._err(f"mv: cannot stat '{src}': No such file or directory")
        self.files[dst] = self.files.pop(src)
        self.modes[dst] = self.modes.pop(src, 0o600)
        self.owners[dst] = self.owners.pop(src, "root")
        return self._ok()

    def _cmd_find(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        root, criteria = args[0], args[1:]
        candidates = sorted(
            [(path, "f") for path in self.files] + [(path, "d") for path in self.dirs]
        )
        matches = []
        for path, kind in candidates:
            if path != root and not path.startswith(root.rstrip("/") + "/"):
                continue
            if _find_matches(path, kind, self.modes.get(path, 0o644), criteria):
                matches.append(path)
        return self._ok("".join(f"{m}\n" for m in matches))

    def _cmd_sysctl(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        if args[0] == "-n":
            key = args[1]
            if key not in self.sysctl:
                return self._err(f"sysctl: cannot stat /proc/sys/{key.replace('.', '/')}", 255)
            return self._ok(self.sysctl[key] + "\n")
        if args[0] == "-w":
            key, value = args[1].split("=", 1)
            self.sysctl[key] = value
            return self._ok(f"{key} = {value}\n")
        return self._err("sysctl: unsupported invocation", 2)

    def _cmd_rpm(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        name = args[-1]
        if name in self.packages:
            return self._ok(f"{name}-1.0-1.amzn2023.x86_64\n")
        return CommandResult(stdout=f"package {name} is not installed\n", exit_code=1)

    def _cmd_dnf(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        verb = args[0]
        names = [a for a in args[1:] if not a.startswith("-")]
        if verb == "clean":
            return self._ok()
        if verb == "install":
            for name in names:
                if name in self.unavailable_packages:
                    return self._err(f"Error: Unable to find a match: {name}")
                self.install(name)
            return self._ok("Complete!\n")
        if verb == "remove":
            for name in names:
                self.packages.discard(name)
                for unit, owner in UNIT_PACKAGES.items():
                    if owner == name:
                        self.units.pop(unit, None)
            return self._ok("Complete!\n")
        return self._err(f"No such command: {verb}", 2)

    def _cmd_systemctl(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        words = [a for a in args if not a.startswith("--")]
        verb, units = words[0], [u.removesuffix(".service") for u in words[1:]]
        unit = units[0] if units else ""
        if verb == "is-enabled":
            if unit not in self.units:
                return self._err(f"Failed to get unit file state for {unit}.service: No such file or directory")
            state = self.units[unit]
            return CommandResult(stdout=state + "\n", exit_code=0 if state == "enabled" else 1)
        if verb == "is-active":
            active = self.units.get(unit) == "enabled"
            return CommandResult(stdout="active\n" if active else "inactive\n", exit_code=0 if active else 3)
        if verb == "enable":
            if unit not in self.units:
                return self._err(f"Failed to enable unit: Unit file {unit}.service does not exist.")
            if self.units[unit] == "masked":
                return self._err(f"Failed to enable unit: Unit file /etc/systemd/system/{unit}.service is masked.")
            self.units[unit] = "enabled"
            return self._ok()
        if verb == "mask":
            self.units[unit] = "masked"
            return self._ok()
        return self._err(f"Unknown command verb {verb}.", 2)

    def _cmd_systemd_run(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        if "--" not in args:
            return self._err("systemd-run: missing command", 2)
        inner = args[args.index("--") + 1:]
        # Background work completes immediately in the simulation
        result = self._run(inner, None)
        if not result.ok:
            return result
        return self._ok("Running as unit: hardengate.service\n")

    def _cmd_aide(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        if "--init" in args:
            self.add_file("/var/lib/aide/aide.db.new.gz", "AIDE", 0o600)
            return self._ok("AIDE initialized database at /var/lib/aide/aide.db.new.gz\n")
        return self._err("aide: unsupported invocation", 2)

    def _cmd_sshd(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        if "-t" in args:
            return self._ok()
        if "-T" in args:
            settings: dict[str, str] = {}
            for key, value in self._sshd_directives("/etc/ssh/sshd_config"):
                settings.setdefault(key, value)
            return self._ok("".join(f"{k} {v}\n" for k, v in settings.items()))
        return self._err("sshd: unsupported invocation", 2)

    def _sshd_directives(self, path: str) -> list[tuple[str, str]]:
        """Global directives of ``path`` in read order, with Include expanded in place."""
        directives: list[tuple[str, str]] = []
        for line in self.files.get(path, "").splitlines():
            stripped = line.strip()
            if re.match(r"^Match\s", stripped):
                break
            if not stripped or stripped.startswith("#"):
                continue
            parts = stripped.split(None, 1)
            key, value = parts[0].lower(), parts[1] if len(parts) > 1 else ""
            if key == "include":
                for pattern in value.split():
                    for included in sorted(f for f in self.files if fnmatch.fnmatchcase(f, pattern)):
                        directives += self._sshd_directives(included)
                continue
            directives.append((key, value))
        return directives

    def _cmd_pwconv(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        rows = [line.split(":") for line in self.files["/etc/passwd"].splitlines() if line]
        for row in rows:
            row[1] = "x"
        self.files["/etc/passwd"] = "".join(":".join(r) + "\n" for r in rows)
        return self._ok()

    def _cmd_passwd(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        user = args[-1]
        rows = [line.split(":") for line in self.files["/etc/shadow"].splitlines() if line]
        for row in rows:
            if row[0] == user:
                row[1] = "!" + row[1]
        self.files["/etc/shadow"] = "".join(":".join(r) + "\n" for r in rows)
        return self._ok(f"Locking password for user {user}.\n")

    def _cmd_usermod(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        gid, user = args[args.index("-g") + 1], args[-1]
        rows = [line.split(":") for line in self.files["/etc/passwd"].splitlines() if line]
        for row in rows:
            if row[0] == user:
                row[3] = gid
        self.files["/etc/passwd"] = "".join(":".join(r) + "\n" for r in rows)
        return self._ok()

    def _cmd_useradd(self, args: list[str], input: Optional[bytes]) -> CommandResult:
        if "-D" in args and "-f" in args:
            days = args[args.index("-f") + 1]
            text = self.files.get("/etc/default/useradd", "")
            lines = [line for line in text.splitlines() if not line.startswith("INACTIVE=")]
            lines.append(f"INACTIVE={days}")
            self.files["/etc/default/useradd"] = "\n".join(lines) + "\n"
            return self._ok()
        return self._err("useradd: unsupported invocation", 2)


def _apply_mode(current: int, symbolic: str) -> int:
    if re.fullmatch(r"[0-7]{1,4}", symbolic):
        return int(symbolic, 8)
    mode = current
    for clause in symbolic.split(","):
        m = re.fullmatch(r"([ugoa]*)([-+=])([rwx]*)", clause)
        if not m:
            continue
        who = m.group(1) or "a"
        if "a" in who:
            who = "ugo"
        bits = 0
        for w in who:
            shift = {"u": 6, "g": 3, "o": 0}[w]
            for perm in m.group(3):
                bits |= {"r": 4, "w": 2, "x": 1}[perm] << shift
        if m.group(2) == "+":
            mode |= bits
        elif m.group(2) == "-":
            mode &= ~bits
        else:
            for w in who:
                shift = {"u": 6, "g": 3, "o": 0}[w]
                mode &= ~(7 << shift)
            mode |= bits
    return mode


def _find_matches(path: str, kind: str, mode: int, criteria: Sequence[str]) -> bool:
    i = 0
    while i < len(criteria):
        token = criteria[i]
        if token in ("-xdev", "-print"):
            i += 1
            continue
        if token in ("-nouser", "-nogroup"):
            # Ownership is not simulated: every path has a valid owner
            return False
        value = criteria[i + 1]
        if token == "-type" and kind != value:
            return False
        if token == "-name" and not fnmatch.fnmatchcase(posixpath.basename(path), value):
            return False
        if token == "-perm":
            if value.startswith("-"):
                wanted = int(value[1:], 8)
                if mode & wanted != wanted:
                    return False
            elif value.startswith("/"):
                if not mode & int(value[1:], 8):
                    return False
            elif mode != int(value, 8):
                return False
        i += 2
    return True
