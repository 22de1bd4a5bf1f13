"""Executor: applies a catalog to a target with a continue-on-error policy."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional

from ..models.control import Control, PendingAction
from ..models.results import ExecutionResult, Outcome
from ..targets.base import Target
from ..utils.sanitize import sanitize_detail
from .catalog import Catalog
from .errors import HardeningError, TargetUnreachableError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10
DEFAULT_MAX_WAIT = 1800
DEADLINE_DETAIL = "not attempted: run deadline exceeded"

Clock = Callable[[], float]
Sleep = Callable[[float], None]
ResultCallback = Callable[[Control, ExecutionResult], None]


class WaitStatus(str, Enum):
    DONE = "done"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


def wait_for_completion(
    poll: Callable[[], bool],
    interval: float = DEFAULT_POLL_INTERVAL,
    max_wait: float = DEFAULT_MAX_WAIT,
    deadline: Optional[float] = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> WaitStatus:
    """Poll until ``poll()`` is true, ``max_wait`` elapses or ``deadline`` passes.

    ``deadline`` is an absolute value of ``clock``. The loop never sleeps past
    either bound, so a caller-supplied deadline is honoured promptly.
    """
    start = clock()
    limit = start + max_wait
    while True:
        if poll():
            return WaitStatus.DONE
        now = clock()
        if deadline is not None and now >= deadline:
            return WaitStatus.CANCELLED
        if now >= limit:
            return WaitStatus.TIMEOUT
        stop = limit if deadline is None else min(limit, deadline)
        sleep(max(0.0, min(interval, stop - now)))


def _deadline_passed(deadline: Optional[float], clock: Clock) -> bool:
    return deadline is not None and clock() >= deadline


def _complete_pending(
    pending: PendingAction,
    interval: float,
    max_wait: float,
    deadline: Optional[float],
    clock: Clock,
    sleep: Sleep,
) -> tuple[Outcome, str]:
    status = wait_for_completion(pending.poll, interval, max_wait, deadline, clock, sleep)
    if status == WaitStatus.TIMEOUT:
        return Outcome.TIMEOUT, f"timed out after {max_wait:g}s waiting for {pending.description}"
    if status == WaitStatus.CANCELLED:
        return Outcome.TIMEOUT, f"run deadline exceeded while waiting for {pending.description}"
    detail = pending.finish() if pending.finish else f"{pending.description} completed"
    return Outcome.APPLIED, detail or ""


def apply_control(
    control: Control,
    target: Target,
    interval: float = DEFAULT_POLL_INTERVAL,
    max_wait: float = DEFAULT_MAX_WAIT,
    deadline: Optional[float] = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> ExecutionResult:
    """Apply one control and classify the outcome.

    TargetUnreachableError propagates; every other exception becomes a
    ``failed`` result.
    """
    start = clock()
    try:
        if control.precondition is not None and not control.precondition(target):
            outcome, detail = Outcome.SKIPPED, "precondition not met"
        else:
            result = control.apply(target)
            if isinstance(result, PendingAction):
                outcome, detail = _complete_pending(result, interval, max_wait, deadline, clock, sleep)
            else:
                outcome, detail = Outcome.APPLIED, result or ""
    except TargetUnreachableError:
        raise
    except HardeningError as e:
        outcome, detail = Outcome.FAILED, str(e)
    except Exception as e:
        logger.debug("Control %s raised", control.id, exc_info=True)
        outcome, detail = Outcome.FAILED, f"{type(e).__name__}: {e}"

    return ExecutionResult(
        control_id=control.id,
        outcome=outcome,
        detail=sanitize_detail(detail),
        duration=round(clock() - start, 3),
    )


def preflight_clean(target: Target) -> None:
    """Reset the package manager cache before installing anything. Non-fatal."""
    result = target.execute(["dnf", "clean", "all"])
    if not result.ok:
        logger.warning("Package cache clean failed (exit %s), continuing", result.exit_code)


def apply_catalog(
    catalog: Catalog,
    target: Target,
    interval: float = DEFAULT_POLL_INTERVAL,
    max_wait: float = DEFAULT_MAX_WAIT,
    deadline: Optional[float] = None,
    preflight: bool = False,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
    on_result: Optional[ResultCallback] = None,
) -> list[ExecutionResult]:
    """Apply every control in catalog order.

    A failed control never stops the run. Once ``deadline`` passes, the
    remaining controls are recorded as failed without being attempted. A
    TargetUnreachableError is re-raised carrying the results so far.
    """
    results: list[ExecutionResult] = []

    try:
        if preflight:
            preflight_clean(target)

        for control in catalog.controls:
            if _deadline_passed(deadline, clock):
                result = ExecutionResult(control_id=control.id, outcome=Outcome.FAILED, detail=DEADLINE_DETAIL)
            else:
                result = apply_control(control, target, interval, max_wait, deadline, clock, sleep)

            if result.is_failure:
                logger.warning("[%s] %s failed (non-fatal, continuing): %s", control.id, control.description, result.detail)
            else:
                logger.info("[%s] %s: %s", control.id, result.outcome.value, result.detail)
            results.append(result)
            if on_result is not None:
                on_result(control, result)
    except TargetUnreachableError as e:
        logger.error("Target unreachable during apply after %d controls: %s", len(results), e)
        e.executions = list(results)
        raise

    return results
