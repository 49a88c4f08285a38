"""Sync detection polling loop.

The SyncDetector repeatedly reads the tracked workloads and evaluates the
predicate of the active strategy until the sync is confirmed or the run's
deadline expires. Read errors are reported and retried on the next tick.
"""

from collections.abc import Sequence

from icecream import ic

from gitops_sync_wait import console
from gitops_sync_wait.cluster import WorkloadReader
from gitops_sync_wait.exceptions import ClusterReadError
from gitops_sync_wait.models import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DetectionConfig,
    DetectionMethod,
    DetectionResult,
    Strategy,
    WatchTarget,
    WorkloadSnapshot,
)
from gitops_sync_wait.strategy import describe_snapshots, is_matched, uses_fallback_window
from gitops_sync_wait.timing import Deadline, Sleeper


def read_snapshots(reader: WorkloadReader, target: WatchTarget) -> list[WorkloadSnapshot]:
    """Read every workload of the target, across all configured kinds.

    All kinds are read before returning so that callers always evaluate a
    view taken within one poll tick.

    Args:
        reader: The cluster reader.
        target: Namespace, selector and kinds to read.

    Returns:
        The snapshots of all matching workloads.

    Raises:
        ClusterReadError: If any of the reads fails.

    """
    snapshots: list[WorkloadSnapshot] = []
    for kind in target.kinds:
        snapshots.extend(reader.list_workloads(kind, target.namespace, target.selector))
    return snapshots


class SyncDetector:
    """Polls the cluster until the GitOps controller has applied the change.

    Attributes:
        reader: The cluster reader.
        target: Namespace, selector and kinds to read.
        config: Expected markers and time budgets.
        poll_interval: Seconds between two reads.

    """

    def __init__(
        self,
        reader: WorkloadReader,
        target: WatchTarget,
        config: DetectionConfig,
        *,
        sleep: Sleeper,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.reader = reader
        self.target = target
        self.config = config
        self.poll_interval = poll_interval
        self._sleep = sleep

    def _result(
        self,
        method: DetectionMethod,
        strategy: Strategy,
        deadline: Deadline,
        snapshots: Sequence[WorkloadSnapshot],
        *,
        cancelled: bool = False,
    ) -> DetectionResult:
        return DetectionResult(
            matched=method is not DetectionMethod.TIMEOUT,
            method=method,
            elapsed=deadline.elapsed(),
            strategy=strategy,
            snapshots=tuple(snapshots),
            cancelled=cancelled,
        )

    def _already_synced(self, baseline: Sequence[WorkloadSnapshot], current: Sequence[WorkloadSnapshot]) -> bool:
        # Heuristic: no change showed up within the fallback window, so if every
        # workload is fully rolled out the sync is assumed to predate this run
        observed = {snapshot.ref for snapshot in current}
        return all(snapshot.ref in observed for snapshot in baseline) and all(
            snapshot.rollout_complete for snapshot in current
        )

    def detect(
        self,
        baseline: Sequence[WorkloadSnapshot],
        strategy: Strategy,
        deadline: Deadline,
    ) -> DetectionResult:
        """Poll until the sync is detected, the deadline expires or the run is cancelled.

        Args:
            baseline: Snapshots captured before polling started.
            strategy: The strategy selected for this run.
            deadline: The deadline of the whole run.

        Returns:
            The terminal DetectionResult.

        """
        tracked = {snapshot.ref for snapshot in baseline}
        current: tuple[WorkloadSnapshot, ...] = tuple(baseline)
        method_on_match = (
            DetectionMethod.EXPECTED_MATCH
            if strategy in (Strategy.EXACT_DEPLOYMENT_ID, Strategy.EXACT_VERSION)
            else DetectionMethod.CHANGE_DETECTED
        )

        console.action(
            f"Waiting for sync of {len(tracked)} workload(s) using {console.highlight(strategy.value)} detection"
        )

        while not deadline.expired():
            try:
                observed = read_snapshots(self.reader, self.target)
            except ClusterReadError as e:
                console.warning(f"Failed to read workloads, retrying: {e}")
            else:
                current = tuple(snapshot for snapshot in observed if snapshot.ref in tracked)
                ic(current)

                if is_matched(strategy, self.config, baseline, current):
                    console.success(f"Sync detected after {deadline.elapsed():.0f}s ({method_on_match.value})")
                    return self._result(method_on_match, strategy, deadline, current)

                if (
                    uses_fallback_window(strategy)
                    and deadline.after(self.config.fallback_timeout)
                    and self._already_synced(baseline, current)
                ):
                    console.warning(
                        f"No change observed within {self.config.fallback_timeout:g}s and all workloads are "
                        "rolled out; assuming the sync happened before polling started"
                    )
                    return self._result(DetectionMethod.ALREADY_SYNCED, strategy, deadline, current)

            if self._sleep(min(self.poll_interval, deadline.remaining())):
                console.warning("Cancelled while waiting for sync")
                return self._result(DetectionMethod.TIMEOUT, strategy, deadline, current, cancelled=True)

        console.warning(
            f"Timed out after {deadline.elapsed():.0f}s waiting for sync ({strategy.value}); "
            f"last observed: {describe_snapshots(current)}"
        )
        return self._result(DetectionMethod.TIMEOUT, strategy, deadline, current)
