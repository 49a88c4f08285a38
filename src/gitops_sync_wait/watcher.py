"""SyncWatcher facade class.

This module provides the SyncWatcher class which runs one complete check:
capture a baseline, pick a detection strategy, wait for the sync, wait for
the rollout and aggregate everything into a FinalReport.
"""

import time

from gitops_sync_wait import console
from gitops_sync_wait.aggregator import aggregate, no_workloads_report
from gitops_sync_wait.cluster import WorkloadReader
from gitops_sync_wait.detector import SyncDetector, read_snapshots
from gitops_sync_wait.exceptions import ClusterReadError
from gitops_sync_wait.models import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DetectionConfig,
    DetectionMethod,
    FinalReport,
    WatchTarget,
    WorkloadSnapshot,
)
from gitops_sync_wait.strategy import select_strategy
from gitops_sync_wait.timing import Cancellation, Clock, Deadline, Sleeper
from gitops_sync_wait.tracker import RolloutTracker


class SyncWatcher:
    """Runs sync detection and rollout tracking for one set of workloads.

    Attributes:
        reader: The cluster reader.
        target: Namespace, selector and kinds to watch.
        config: Expected markers and time budgets.
        poll_interval: Seconds between two reads.
        cancellation: Cancels every polling loop of the run when triggered.

    """

    def __init__(
        self,
        reader: WorkloadReader,
        target: WatchTarget,
        config: DetectionConfig,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        cancellation: Cancellation | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper | None = None,
    ) -> None:
        """Initialize SyncWatcher.

        Args:
            reader: The cluster reader.
            target: Namespace, selector and kinds to watch.
            config: Expected markers and time budgets.
            poll_interval: Seconds between two reads.
            cancellation: Shared cancellation; a new one is created if omitted.
            clock: Monotonic clock used for the deadline.
            sleep: Sleeper used by the polling loops. Defaults to the
                cancellable sleep of ``cancellation``.

        """
        self.reader = reader
        self.target = target
        self.config = config
        self.poll_interval = poll_interval
        self.cancellation: Cancellation = cancellation or Cancellation()
        self._clock = clock
        self._sleep: Sleeper = sleep or self.cancellation.sleep

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"SyncWatcher(target={self.target!r}, config={self.config!r})"

    def _read_baseline(self, deadline: Deadline) -> list[WorkloadSnapshot]:
        """Capture the baseline snapshots, retrying read errors until the deadline.

        Raises:
            ClusterReadError: If no read succeeded before the deadline or the
                run was cancelled.

        """
        while True:
            try:
                with console.spinner(f"Looking up workloads with {self.target}..."):
                    return read_snapshots(self.reader, self.target)
            except ClusterReadError as e:
                if deadline.expired():
                    raise ClusterReadError(f"Could not read workloads before the timeout: {e}") from e
                console.warning(f"Failed to read workloads, retrying: {e}")
                if self._sleep(min(self.poll_interval, deadline.remaining())):
                    raise ClusterReadError(f"Cancelled before workloads could be read: {e}") from e

    def run(self) -> FinalReport:
        """Run one complete sync check.

        Returns:
            The FinalReport of the run.

        Raises:
            ClusterReadError: If the workloads could not be read even once
                before the deadline.

        """
        deadline = Deadline(self.config.overall_timeout, clock=self._clock)
        baseline = self._read_baseline(deadline)

        if not baseline:
            console.warning(f"No workloads found matching {self.target}")
            return no_workloads_report(self.config, str(self.target), elapsed=deadline.elapsed())

        console.info(f"Found {len(baseline)} workload(s) matching {self.target}")
        for snapshot in baseline:
            console.step(
                f"{console.highlight(str(snapshot.ref))} "
                f"deployment_id={snapshot.deployment_id or '-'} version={snapshot.version or '-'} "
                f"generation={snapshot.generation}"
            )

        strategy = select_strategy(self.config, baseline)
        detector = SyncDetector(
            self.reader, self.target, self.config, sleep=self._sleep, poll_interval=self.poll_interval
        )
        detection = detector.detect(baseline, strategy, deadline)

        refs = [snapshot.ref for snapshot in baseline]
        tracker = RolloutTracker(self.reader, sleep=self._sleep, poll_interval=self.poll_interval)
        if not detection.matched:
            outcomes = []
        elif detection.method is DetectionMethod.ALREADY_SYNCED:
            outcomes = tracker.skip(refs)
        else:
            outcomes = tracker.track(refs, deadline)

        return aggregate(
            self.config,
            detection,
            outcomes,
            workloads_found=len(baseline),
            target_description=str(self.target),
            elapsed=deadline.elapsed(),
        )
