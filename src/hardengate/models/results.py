"""Per-control execution and verification results."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from .control import VerificationStatus


class Outcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ExecutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    control_id: str
    outcome: Outcome
    detail: str = ""
    duration: float = 0

    @property
    def is_failure(self) -> bool:
        return self.outcome in (Outcome.FAILED, Outcome.TIMEOUT)


class VerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    control_id: str
    section: str = ""
    description: str = ""
    status: VerificationStatus
    detail: str = ""
    weight: int = 1
    error: bool = False
