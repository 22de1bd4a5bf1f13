"""Compliance report data models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .results import ExecutionResult, VerificationResult


class GateDecision(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class RunState(str, Enum):
    INIT = "init"
    APPLYING = "applying"
    VERIFYING = "verifying"
    AGGREGATED = "aggregated"
    GATE_PASS = "gate_pass"
    GATE_FAIL = "gate_fail"


class SectionScore(BaseModel):
    """Score breakdown for one catalog section."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    total: int
    passed: int
    failed: int
    not_applicable: int
    percentage: int


class ComplianceReport(BaseModel):
    """The single artifact a run hands back to the calling pipeline."""

    model_config = ConfigDict(frozen=True)

    version: str = "1.0.0"
    target: str = ""
    level: int = 2
    skip_sections: list[str] = []
    started_at: str = ""
    finished_at: str = ""
    duration_seconds: float = 0
    total_controls: int = 0
    passed: int = 0
    failed: int = 0
    not_applicable: int = 0
    weighted: bool = False
    percentage: int = 100
    threshold: float = 80
    gate_decision: GateDecision = GateDecision.PASS
    fail_build: bool = False
    state: RunState = RunState.AGGREGATED
    partial: bool = False
    error: Optional[str] = None
    by_section: dict[str, SectionScore] = {}
    executions: list[ExecutionResult] = []
    verifications: list[VerificationResult] = []

    @property
    def blocking(self) -> bool:
        """True when the caller must abort the pipeline."""
        return self.gate_decision == GateDecision.FAIL and self.fail_build


class PublishResult(BaseModel):
    success: bool
    url: str = ""
    status_code: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None


class FleetResult(BaseModel):
    """Outcome of one host in a fleet run."""

    host: str
    percentage: Optional[int] = None
    gate_decision: Optional[GateDecision] = None
    error: Optional[str] = None
    exit_code: int = 0
