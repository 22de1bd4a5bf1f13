"""Error taxonomy for hardening runs.

Only TargetUnreachableError and ComplianceGateError are meant to reach the
calling pipeline. Control-level errors are caught by the executor and the
verifier and surface as entries in the compliance report.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..models.report import ComplianceReport
    from ..models.results import ExecutionResult, VerificationResult


class HardeningError(Exception):
    """Base class for all hardengate errors."""


class ConfigurationError(HardeningError):
    """Invalid run configuration. Raised before any control runs."""


class ControlApplyError(HardeningError):
    """A single control's remediation failed. Non-fatal for the run."""


class ControlVerifyError(HardeningError):
    """A verification predicate could not reach a verdict."""


class TargetUnreachableError(HardeningError):
    """The target stopped responding. Fatal for the whole run.

    ``executions`` and ``verifications`` hold whatever the interrupted
    phase had produced; ``report`` is set once the engine has aggregated
    the partial run.
    """

    def __init__(
        self,
        message: str,
        executions: Optional[list[ExecutionResult]] = None,
        verifications: Optional[list[VerificationResult]] = None,
    ) -> None:
        super().__init__(message)
        self.executions = list(executions or [])
        self.verifications = list(verifications or [])
        self.report: Optional[ComplianceReport] = None


class ComplianceGateError(HardeningError):
    """Compliance fell below the threshold and the build must fail."""

    def __init__(self, report: ComplianceReport) -> None:
        super().__init__(
            f"Compliance {report.percentage}% is below threshold "
            f"{report.threshold:g}% (fail_build_on_non_compliance=true)"
        )
        self.report = report
