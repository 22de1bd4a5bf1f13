"""Control and catalog data models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class VerificationStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    NOT_APPLICABLE = "not_applicable"


class Check(BaseModel):
    """What a control's verify predicate observed on the target."""

    status: VerificationStatus
    detail: str = ""


@dataclass
class PendingAction:
    """Background work dispatched by a control's apply step.

    ``poll`` returns True once the work has finished. ``finish`` runs once
    after completion and returns the detail to record (it may raise
    ControlApplyError if the background work left the target in a bad state).
    """

    description: str
    poll: Callable[[], bool]
    finish: Optional[Callable[[], str]] = None


ApplyResult = Union[str, PendingAction, None]


class Section(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    title: str


class Control(BaseModel):
    """A single idempotent hardening step plus its independent check."""

    model_config = ConfigDict(frozen=True)

    id: str
    section: str
    level: int = Field(ge=1, le=2)
    description: str
    apply: Callable[..., ApplyResult]
    verify: Optional[Callable[..., Check]] = None
    precondition: Optional[Callable[..., bool]] = None
    weight: int = Field(default=1, ge=0)


DEFAULT_BANNER = """\
***************************************************************************
                            NOTICE TO USERS

This computer system is the property of your organization. It is for
authorized use only. By using this system, all users acknowledge notice of
and agree to comply with the organization's Acceptable Use of Information
Technology Resources Policy. Unauthorized or improper use of this system may
result in administrative disciplinary action and civil and criminal penalties.
By continuing to use this system you indicate your awareness of and consent
to these terms and conditions of use. LOG OFF IMMEDIATELY if you do not agree
to the conditions stated in this warning.
***************************************************************************
"""


class HardeningParameters(BaseModel):
    """Site-specific values the built-in controls are parameterised with."""

    ssh_allow_users: list[str] = Field(default_factory=lambda: ["ec2-user"], min_length=1)
    banner_text: str = DEFAULT_BANNER
    bootloader_password_hash: Optional[str] = None
    shell_timeout: int = Field(default=600, ge=1)
    password_max_days: int = Field(default=365, ge=1)
    password_min_days: int = Field(default=1, ge=0)
    password_warn_age: int = Field(default=7, ge=0)
    inactive_days: int = Field(default=30, ge=0)
    password_min_length: int = Field(default=14, ge=8)
    password_remember: int = Field(default=5, ge=1)
    faillock_deny: int = Field(default=5, ge=1)
    faillock_unlock_time: int = Field(default=900, ge=0)
