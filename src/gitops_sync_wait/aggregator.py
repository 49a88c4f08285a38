"""Combine detection and rollout outcomes into the final report."""

from collections.abc import Sequence

from gitops_sync_wait.models import (
    DetectionConfig,
    DetectionMethod,
    DetectionResult,
    FinalReport,
    MatchState,
    RolloutOutcome,
    Status,
    Strategy,
    WorkloadSnapshot,
)
from gitops_sync_wait.strategy import describe_snapshots


def marker_state(expected: str | None, observed: Sequence[str | None], *, expected_count: int = 0) -> MatchState:
    """Compare an expected marker with the values observed on every workload.

    Args:
        expected: The configured marker, or None if not configured.
        observed: The marker value of each workload.
        expected_count: Number of workloads that should have been observed.
            Fewer observations (a workload disappeared) never match.

    Returns:
        SKIPPED if nothing was expected, otherwise whether every workload
        carries the expected value.

    """
    if expected is None:
        return MatchState.SKIPPED
    if len(observed) < expected_count:
        return MatchState.FALSE
    if observed and all(value == expected for value in observed):
        return MatchState.TRUE
    return MatchState.FALSE


def no_workloads_report(config: DetectionConfig, target_description: str, elapsed: float = 0.0) -> FinalReport:
    """Build the report of a run whose selector matched nothing.

    Args:
        config: The detection configuration.
        target_description: Selector and namespace, for the message.
        elapsed: Seconds spent on the run.

    Returns:
        A NoWorkloads report.

    """
    return aggregate(
        config,
        DetectionResult(
            matched=False,
            method=DetectionMethod.TIMEOUT,
            elapsed=elapsed,
            strategy=Strategy.FALLBACK,
        ),
        [],
        workloads_found=0,
        target_description=target_description,
    )


def _message(
    status: Status,
    detection: DetectionResult,
    outcomes: Sequence[RolloutOutcome],
    failed: Sequence[RolloutOutcome],
    pending: Sequence[RolloutOutcome],
    target_description: str,
) -> str:
    match status:
        case Status.NO_WORKLOADS:
            return f"No workloads found matching {target_description}"
        case Status.FAILED:
            details = "; ".join(f"{outcome.ref}: {outcome.reason}" for outcome in failed)
            return f"{len(failed)} of {len(outcomes)} workload(s) failed to roll out: {details}"
        case Status.TIMEOUT if not detection.matched:
            prefix = "Cancelled" if detection.cancelled else "Timed out"
            return (
                f"{prefix} after {detection.elapsed:.0f}s waiting for sync using "
                f"{detection.strategy.value} detection; last observed: {describe_snapshots(detection.snapshots)}"
            )
        case Status.TIMEOUT:
            details = "; ".join(f"{outcome.ref}: {outcome.reason}" for outcome in pending)
            return f"{len(pending)} of {len(outcomes)} workload(s) did not finish rolling out: {details}"
        case _:
            return f"All {len(outcomes)} workload(s) are synced ({detection.method.value}) and ready"


def aggregate(
    config: DetectionConfig,
    detection: DetectionResult,
    outcomes: Sequence[RolloutOutcome],
    *,
    workloads_found: int,
    target_description: str = "the selector",
    elapsed: float | None = None,
) -> FinalReport:
    """Derive the terminal status of a run.

    Status is decided in order: no workloads, any failed rollout,
    undetected sync, rollouts still pending, and finally ready.

    Args:
        config: The detection configuration.
        detection: Result of the sync detector.
        outcomes: Rollout outcome per workload, in workload order.
        workloads_found: Number of workloads matching the selector.
        target_description: Selector and namespace, for messages.
        elapsed: Seconds spent on the whole run (defaults to the detection time).

    Returns:
        The FinalReport.

    """
    failed = tuple(outcome for outcome in outcomes if outcome.failed)
    pending = tuple(outcome for outcome in outcomes if not outcome.terminal)
    ready = sum(1 for outcome in outcomes if outcome.ready)

    if workloads_found == 0:
        status = Status.NO_WORKLOADS
    elif failed:
        status = Status.FAILED
    elif not detection.matched:
        status = Status.TIMEOUT
    elif pending or len(outcomes) < workloads_found:
        status = Status.TIMEOUT
    else:
        status = Status.READY

    snapshots: tuple[WorkloadSnapshot, ...] = detection.snapshots
    if workloads_found == 0:
        version_matched = deployment_id_matched = MatchState.SKIPPED
    else:
        version_matched = marker_state(
            config.expected_version, [s.version for s in snapshots], expected_count=workloads_found
        )
        deployment_id_matched = marker_state(
            config.expected_deployment_id, [s.deployment_id for s in snapshots], expected_count=workloads_found
        )

    return FinalReport(
        workloads_found=workloads_found,
        workloads_ready=min(ready, workloads_found),
        version_matched=version_matched,
        deployment_id_matched=deployment_id_matched,
        detection_method=detection.method,
        status=status,
        message=_message(status, detection, outcomes, failed, pending, target_description),
        failed_workloads=failed,
        strategy=detection.strategy if workloads_found else None,
        elapsed=detection.elapsed if elapsed is None else elapsed,
        pending_workloads=pending,
    )
