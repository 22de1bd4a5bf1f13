"""Verifier: re-checks every control independently of what apply reported."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..models.control import Check, Control, VerificationStatus
from ..models.results import VerificationResult
from ..targets.base import Target
from ..utils.sanitize import sanitize_detail
from .catalog import Catalog
from .errors import ControlVerifyError, TargetUnreachableError

logger = logging.getLogger(__name__)

NOT_VERIFIED_DETAIL = "not verified: target unreachable"


def verify_control(control: Control, target: Target) -> VerificationResult:
    """Run one control's predicate.

    A predicate that errors is recorded as ``fail`` with ``error`` set, so it
    is distinguishable from a genuine negative. TargetUnreachableError
    propagates.
    """

    def result(status: VerificationStatus, detail: str = "", error: bool = False) -> VerificationResult:
        return VerificationResult(
            control_id=control.id,
            section=control.section,
            description=control.description,
            status=status,
            detail=sanitize_detail(detail),
            weight=control.weight,
            error=error,
        )

    if control.verify is None:
        return result(VerificationStatus.NOT_APPLICABLE, "no verification available")

    try:
        if control.precondition is not None and not control.precondition(target):
            return result(VerificationStatus.NOT_APPLICABLE, "precondition not met")
        check = control.verify(target)
        if not isinstance(check, Check):
            raise ControlVerifyError(f"verify returned {type(check).__name__}, expected Check")
    except TargetUnreachableError:
        raise
    except ControlVerifyError as e:
        return result(VerificationStatus.FAIL, str(e), error=True)
    except Exception as e:
        logger.debug("Verification of %s raised", control.id, exc_info=True)
        return result(VerificationStatus.FAIL, f"verification error: {type(e).__name__}: {e}", error=True)

    return result(check.status, check.detail)


def verify_catalog(
    catalog: Catalog,
    target: Target,
    on_result: Optional[Callable[[Control, VerificationResult], None]] = None,
) -> list[VerificationResult]:
    """Verify every control in catalog order, regardless of execution results."""
    results: list[VerificationResult] = []
    try:
        for control in catalog.controls:
            verification = verify_control(control, target)
            if verification.error:
                logger.warning("[%s] verification errored: %s", control.id, verification.detail)
            else:
                logger.debug("[%s] %s: %s", control.id, verification.status.value, verification.detail)
            results.append(verification)
            if on_result is not None:
                on_result(control, verification)
    except TargetUnreachableError as e:
        logger.error("Target unreachable during verification after %d controls: %s", len(results), e)
        e.verifications = list(results)
        raise
    return results


def unverified(control: Control) -> VerificationResult:
    """Placeholder for a control the run could not reach."""
    return VerificationResult(
        control_id=control.id,
        section=control.section,
        description=control.description,
        status=VerificationStatus.FAIL,
        detail=NOT_VERIFIED_DETAIL,
        weight=control.weight,
        error=True,
    )
