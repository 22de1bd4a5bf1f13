"""Shared fixtures for hardengate tests."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Optional

import pytest

from hardengate.controls import builders as b
from hardengate.controls import primitives as p
from hardengate.core.config import DEFAULT_CONFIG, validate_config
from hardengate.models.control import Check, Control, Section, VerificationStatus
from hardengate.models.results import VerificationResult
from hardengate.targets.memory import MemoryTarget

GRUB_HASH = "grub.pbkdf2.sha512.10000.ABCDEF.0123456789"


@pytest.fixture
def baseline() -> MemoryTarget:
    """A freshly launched, unhardened simulated Amazon Linux 2023 host."""
    return MemoryTarget.amazon_linux_baseline()


@pytest.fixture
def empty_target() -> MemoryTarget:
    target = MemoryTarget()
    target.add_dir("/etc")
    return target


@pytest.fixture
def run_config(tmp_path: Path) -> dict:
    """Validated config for a dry run writing reports under tmp_path."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["target"]["type"] = "memory"
    config["output"]["dir"] = str(tmp_path / "reports")
    config["hardening"]["parameters"] = {"bootloader_password_hash": GRUB_HASH}
    validate_config(config)
    config["_project_path"] = str(tmp_path)
    return config


def flag_control(
    cid: str,
    section: str = "9.1",
    level: int = 1,
    path: Optional[str] = None,
    weight: int = 1,
) -> Control:
    """A control that creates a marker file and verifies it exists."""
    marker = path or f"/etc/flags/{cid}"

    def apply(target):
        if p.path_exists(target, marker):
            return "already set"
        p.write_text(target, marker, "on\n")
        return "set"

    def verify(target):
        if p.path_exists(target, marker):
            return b.passed()
        return b.failed(f"{marker} missing")

    return Control(
        id=cid, section=section, level=level, description=f"Flag {cid}",
        apply=apply, verify=verify, weight=weight,
    )


def raising_control(cid: str, error: Exception, section: str = "9.1") -> Control:
    def apply(target):
        raise error

    def verify(target):
        raise error

    return Control(id=cid, section=section, level=1, description=f"Raises {cid}", apply=apply, verify=verify)


def fixed_check_control(cid: str, status: VerificationStatus, section: str = "9.1") -> Control:
    return Control(
        id=cid, section=section, level=1, description=f"Fixed {cid}",
        apply=lambda target: None, verify=lambda target: Check(status=status),
    )


def verification(cid: str, status: str, section: str = "9.1", weight: int = 1, error: bool = False) -> VerificationResult:
    return VerificationResult(
        control_id=cid, section=section, description=f"Control {cid}",
        status=VerificationStatus(status), weight=weight, error=error,
    )


SAMPLE_SECTIONS = [Section(key="9.1", title="Flags"), Section(key="9.2", title="More flags")]


@pytest.fixture
def sample_controls() -> list[Control]:
    return [
        flag_control("9.1.1"),
        flag_control("9.1.2", level=2),
        flag_control("9.2.1", section="9.2"),
        flag_control("9.2.2", section="9.2", level=2),
    ]


@pytest.fixture
def make_flag():
    return flag_control


@pytest.fixture
def make_raising():
    return raising_control


@pytest.fixture
def make_fixed():
    return fixed_check_control


@pytest.fixture
def make_verification():
    return verification


@pytest.fixture
def sample_sections() -> list[Section]:
    return list(SAMPLE_SECTIONS)
