"""Detection strategy selection and match predicates.

A strategy is chosen once per run from the configured markers and the
baseline snapshots. The sync detector then evaluates the predicate of that
strategy on every poll tick without looking at the configuration flags again.
"""

from collections.abc import Callable, Sequence

from icecream import ic

from gitops_sync_wait.models import DetectionConfig, Strategy, WorkloadRef, WorkloadSnapshot

Predicate = Callable[[DetectionConfig, dict[WorkloadRef, WorkloadSnapshot], dict[WorkloadRef, WorkloadSnapshot]], bool]


def select_strategy(config: DetectionConfig, baseline: Sequence[WorkloadSnapshot]) -> Strategy:
    """Pick the detection strategy for a run.

    The first matching rule wins:

    1. an expected deployment id is configured
    2. an expected version is configured and some workload runs another version
    3. an expected version is configured and every workload already runs it
    4. nothing is configured

    Args:
        config: The detection configuration.
        baseline: Snapshots captured before polling started.

    Returns:
        The strategy to use for the whole run.

    """
    if config.expected_deployment_id is not None:
        strategy = Strategy.EXACT_DEPLOYMENT_ID
    elif config.expected_version is not None:
        if all(snapshot.version == config.expected_version for snapshot in baseline):
            strategy = Strategy.CHANGE_DETECTION
        else:
            strategy = Strategy.EXACT_VERSION
    else:
        strategy = Strategy.FALLBACK

    ic(strategy)
    return strategy


def _every_tracked(
    baseline: dict[WorkloadRef, WorkloadSnapshot],
    current: dict[WorkloadRef, WorkloadSnapshot],
    check: Callable[[WorkloadSnapshot, WorkloadSnapshot], bool],
) -> bool:
    # A tracked workload missing from the current read never counts as matched
    return all(ref in current and check(baseline[ref], current[ref]) for ref in baseline)


def _match_deployment_id(
    config: DetectionConfig,
    baseline: dict[WorkloadRef, WorkloadSnapshot],
    current: dict[WorkloadRef, WorkloadSnapshot],
) -> bool:
    return _every_tracked(baseline, current, lambda _, now: now.deployment_id == config.expected_deployment_id)


def _match_version(
    config: DetectionConfig,
    baseline: dict[WorkloadRef, WorkloadSnapshot],
    current: dict[WorkloadRef, WorkloadSnapshot],
) -> bool:
    if not _every_tracked(baseline, current, lambda _, now: now.version == config.expected_version):
        return False
    # Guards against a stale read reporting a version that predates this run
    return any(
        current[ref].changed_from(before) or current[ref].version != before.version
        for ref, before in baseline.items()
    )


def _match_change(
    config: DetectionConfig,  # noqa: ARG001
    baseline: dict[WorkloadRef, WorkloadSnapshot],
    current: dict[WorkloadRef, WorkloadSnapshot],
) -> bool:
    return _every_tracked(baseline, current, lambda before, now: now.changed_from(before))


_PREDICATES: dict[Strategy, Predicate] = {
    Strategy.EXACT_DEPLOYMENT_ID: _match_deployment_id,
    Strategy.EXACT_VERSION: _match_version,
    Strategy.CHANGE_DETECTION: _match_change,
    Strategy.FALLBACK: _match_change,
}


def is_matched(
    strategy: Strategy,
    config: DetectionConfig,
    baseline: Sequence[WorkloadSnapshot],
    current: Sequence[WorkloadSnapshot],
) -> bool:
    """Evaluate the match predicate of ``strategy`` over the whole workload set.

    The result is the conjunction across every baseline workload: a sync that
    reached only part of the workloads is not a match.

    Args:
        strategy: The active strategy.
        config: The detection configuration.
        baseline: Snapshots captured before polling started.
        current: Snapshots captured on the current poll tick.

    Returns:
        True if the sync is confirmed for every tracked workload.

    """
    if not baseline:
        return False
    return _PREDICATES[strategy](
        config,
        {snapshot.ref: snapshot for snapshot in baseline},
        {snapshot.ref: snapshot for snapshot in current},
    )


def uses_fallback_window(strategy: Strategy) -> bool:
    """Whether a run with ``strategy`` may conclude the sync already happened.

    Only strategies that wait for an unspecified change can do so; the exact
    strategies keep waiting for their marker until the overall timeout.
    """
    return strategy in (Strategy.CHANGE_DETECTION, Strategy.FALLBACK)


def describe_snapshots(snapshots: Sequence[WorkloadSnapshot]) -> str:
    """Render the marker values of ``snapshots`` for diagnostic messages."""
    if not snapshots:
        return "no workloads observed"
    return "; ".join(
        f"{snapshot.ref}: deployment_id={snapshot.deployment_id or '-'}, "
        f"version={snapshot.version or '-'}, generation={snapshot.generation}"
        for snapshot in snapshots
    )
