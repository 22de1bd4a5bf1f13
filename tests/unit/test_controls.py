"""Behaviour of individual built-in controls on the simulated Amazon Linux host."""

from __future__ import annotations

import pytest

from hardengate.controls import default_controls
from hardengate.controls import primitives as p
from hardengate.core.errors import ControlApplyError
from hardengate.core.executor import apply_control
from hardengate.models.control import HardeningParameters, PendingAction, VerificationStatus
from hardengate.models.results import Outcome

GRUB_HASH = "grub.pbkdf2.sha512.10000.ABCDEF.0123456789"


def control(cid: str, **parameters):
    return next(c for c in default_controls(HardeningParameters(**parameters)) if c.id == cid)


def status(cid: str, target, **parameters) -> VerificationStatus:
    return control(cid, **parameters).verify(target).status


class TestSysctlControls:
    def test_runtime_and_persisted(self, baseline):
        ip_forward = control("3.1.1")
        assert ip_forward.verify(baseline).status == VerificationStatus.FAIL
        ip_forward.apply(baseline)
        assert p.sysctl_persisted(baseline, "net.ipv4.ip_forward") == ["0"]
        assert ip_forward.verify(baseline).status == VerificationStatus.PASS

    def test_conflicting_sysctl_conf_fixed(self, baseline):
        baseline.files[p.SYSCTL_CONF] += "net.ipv4.ip_forward=1\n"
        control("3.1.1").apply(baseline)
        assert set(p.sysctl_persisted(baseline, "net.ipv4.ip_forward")) == {"0"}

    def test_runtime_drift_detected(self, baseline):
        ip_forward = control("3.1.1")
        ip_forward.apply(baseline)
        baseline.sysctl["net.ipv4.ip_forward"] = "1"
        check = ip_forward.verify(baseline)
        assert check.status == VerificationStatus.FAIL
        assert "is 1" in check.detail


class TestSshControls:
    DROPIN = "/etc/ssh/sshd_config.d/50-redhat.conf"

    def test_x11_forwarding(self, baseline):
        x11 = control("5.2.6")
        assert x11.verify(baseline).status == VerificationStatus.FAIL
        assert x11.apply(baseline) == "set X11Forwarding no (overrides fixed in 50-redhat.conf)"
        assert x11.verify(baseline).status == VerificationStatus.PASS
        assert x11.apply(baseline) == "sshd already configured"

    def test_dropin_override_rewritten(self, baseline):
        x11 = control("5.2.6")
        baseline.files["/etc/ssh/sshd_config"] = baseline.files["/etc/ssh/sshd_config"].replace(
            "X11Forwarding yes", "X11Forwarding no"
        )
        check = x11.verify(baseline)
        assert check.status == VerificationStatus.FAIL
        assert check.detail == "X11Forwarding is yes"
        x11.apply(baseline)
        assert "X11Forwarding no" in baseline.files[self.DROPIN]
        assert "X11Forwarding yes" not in baseline.files[self.DROPIN]
        assert x11.verify(baseline).status == VerificationStatus.PASS

    def test_acceptable_dropin_left_alone(self, baseline):
        baseline.add_file("/etc/ssh/sshd_config.d/10-site.conf", "LogLevel VERBOSE\n", 0o600)
        control("5.2.5").apply(baseline)
        assert baseline.files["/etc/ssh/sshd_config.d/10-site.conf"] == "LogLevel VERBOSE\n"
        assert status("5.2.5", baseline) == VerificationStatus.PASS

    def test_dropins_ignored_without_include(self, baseline):
        baseline.files["/etc/ssh/sshd_config"] = "X11Forwarding yes\n"
        control("5.2.6").apply(baseline)
        assert "X11Forwarding yes" in baseline.files[self.DROPIN]
        assert baseline.files["/etc/ssh/sshd_config"] == "X11Forwarding no\n"

    def test_allow_users_parameter(self, baseline):
        allow = control("5.2.4", ssh_allow_users=["builder"])
        allow.apply(baseline)
        check = allow.verify(baseline)
        assert check.status == VerificationStatus.PASS
        assert "AllowUsers builder" in check.detail

    def test_match_block_untouched(self, baseline):
        baseline.files["/etc/ssh/sshd_config"] += "Match User backup\n    PermitRootLogin yes\n"
        control("5.2.10").apply(baseline)
        text = baseline.files["/etc/ssh/sshd_config"]
        assert text.index("PermitRootLogin no") < text.index("Match User backup")
        assert "    PermitRootLogin yes" in text

    def test_rejected_config_restored(self, baseline):
        original = baseline.files["/etc/ssh/sshd_config"]
        dropin = baseline.files[self.DROPIN]
        baseline.fail_command("sshd -t", stderr="Bad configuration option")
        with pytest.raises(ControlApplyError, match="restored"):
            control("5.2.6").apply(baseline)
        assert baseline.files["/etc/ssh/sshd_config"] == original
        assert baseline.files[self.DROPIN] == dropin

    def test_lenient_log_level(self, baseline):
        baseline.files["/etc/ssh/sshd_config"] = "LogLevel VERBOSE\n"
        assert status("5.2.5", baseline) == VerificationStatus.PASS


class TestAideControls:
    def test_database_initialised_in_background(self, baseline):
        control("1.3.1").apply(baseline)
        result = control("1.3.2").apply(baseline)
        assert isinstance(result, PendingAction)
        assert result.poll()
        assert result.finish() == "initialised /var/lib/aide/aide.db.gz"
        assert status("1.3.2", baseline) == VerificationStatus.PASS

    def test_skipped_without_aide(self, baseline):
        assert apply_control(control("1.3.2"), baseline).outcome == Outcome.SKIPPED

    def test_unavailable_package_fails(self, baseline):
        baseline.unavailable_packages.add("aide")
        result = apply_control(control("1.3.1"), baseline)
        assert result.outcome == Outcome.FAILED


class TestBootloaderPassword:
    def test_requires_hash(self, baseline):
        with pytest.raises(ControlApplyError, match="bootloader_password_hash"):
            control("1.4.1").apply(baseline)

    def test_writes_hash(self, baseline):
        password = control("1.4.1", bootloader_password_hash=GRUB_HASH)
        password.apply(baseline)
        assert baseline.modes["/boot/grub2/user.cfg"] == 0o600
        assert password.verify(baseline).status == VerificationStatus.PASS

    def test_existing_hash_kept(self, baseline):
        baseline.add_file("/boot/grub2/user.cfg", f"GRUB2_PASSWORD={GRUB_HASH}\n", 0o600)
        assert control("1.4.1").apply(baseline) == "bootloader password already set"

    def test_hash_redacted_from_result(self, baseline):
        baseline.fail_command("tee /boot/grub2/user.cfg", stderr=f"tee: write error {GRUB_HASH}")
        result = apply_control(control("1.4.1", bootloader_password_hash=GRUB_HASH), baseline)
        assert result.outcome == Outcome.FAILED
        assert GRUB_HASH not in result.detail


class TestBanners:
    def test_os_disclosure_fails(self, baseline):
        check = control("1.7.2").verify(baseline)
        assert check.status == VerificationStatus.FAIL
        assert "discloses" in check.detail

    def test_custom_banner(self, baseline):
        banner = control("1.7.3", banner_text="Authorized use only.\n")
        banner.apply(baseline)
        assert baseline.files["/etc/issue.net"] == "Authorized use only.\n"
        assert banner.verify(baseline).status == VerificationStatus.PASS

    def test_empty_motd_fails(self, baseline):
        assert status("1.7.1", baseline) == VerificationStatus.FAIL


class TestNotApplicable:
    def test_gdm_absent(self, baseline):
        assert apply_control(control("1.8.1"), baseline).outcome == Outcome.SKIPPED

    def test_postfix_absent(self, baseline):
        assert apply_control(control("2.2.16"), baseline).outcome == Outcome.SKIPPED


class TestServiceControls:
    def test_nftables_left_alone_when_disabled(self, baseline):
        assert control("3.3.3").apply(baseline) == "nftables not enabled"
        assert baseline.units["nftables"] == "disabled"

    def test_enabled_nftables_masked(self, baseline):
        baseline.units["nftables"] = "enabled"
        nftables = control("3.3.3")
        assert nftables.verify(baseline).status == VerificationStatus.FAIL
        nftables.apply(baseline)
        assert baseline.units["nftables"] == "masked"
        assert nftables.verify(baseline).status == VerificationStatus.PASS

    def test_rsyslog_installed_and_enabled(self, baseline):
        control("3.4.1").apply(baseline)
        control("3.4.2").apply(baseline)
        assert "rsyslog" in baseline.packages
        assert p.unit_active(baseline, "rsyslog")


class TestAuditControls:
    def test_extra_uid_zero_requires_manual_fix(self, baseline):
        baseline.files["/etc/passwd"] += "toor:x:0:0::/root:/bin/bash\n"
        uid_zero = control("6.2.13")
        with pytest.raises(ControlApplyError, match="manual remediation required"):
            uid_zero.apply(baseline)
        check = uid_zero.verify(baseline)
        assert check.status == VerificationStatus.FAIL
        assert "toor" in check.detail

    def test_duplicate_user_names(self, baseline):
        baseline.files["/etc/passwd"] += "ec2-user:x:1001:1001::/home/other:/bin/bash\n"
        assert status("6.2.19", baseline) == VerificationStatus.FAIL

    def test_compliant_baseline(self, baseline):
        assert control("6.2.13").apply(baseline) == "compliant"


class TestPermissionControls:
    def test_host_keys_tightened(self, baseline):
        keys = control("5.2.2")
        assert keys.verify(baseline).status == VerificationStatus.FAIL
        keys.apply(baseline)
        assert baseline.modes["/etc/ssh/ssh_host_ed25519_key"] & 0o077 == 0
        assert keys.verify(baseline).status == VerificationStatus.PASS
