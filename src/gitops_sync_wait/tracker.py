"""Rollout tracking across workloads.

Every workload is polled independently in its own worker thread until it
is ready, has failed, or the shared deadline expires. A failing workload
never stops the polling of the others.
"""

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from icecream import ic

from gitops_sync_wait import console
from gitops_sync_wait.cluster import WorkloadReader
from gitops_sync_wait.exceptions import ClusterReadError
from gitops_sync_wait.models import DEFAULT_POLL_INTERVAL_SECONDS, RolloutOutcome, WorkloadRef
from gitops_sync_wait.timing import Deadline, Sleeper


class RolloutTracker:
    """Waits for a set of workloads to finish rolling out.

    Attributes:
        reader: The cluster reader.
        poll_interval: Seconds between two status reads of one workload.

    """

    def __init__(
        self,
        reader: WorkloadReader,
        *,
        sleep: Sleeper,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.reader = reader
        self.poll_interval = poll_interval
        self._sleep = sleep

    def _track_one(self, ref: WorkloadRef, deadline: Deadline) -> RolloutOutcome:
        outcome = RolloutOutcome.as_pending(ref, "rollout status not read yet")

        while not deadline.expired():
            try:
                outcome = self.reader.get_rollout_status(ref)
            except ClusterReadError as e:
                console.warning(f"Failed to read rollout status of {console.highlight(str(ref))}, retrying: {e}")
            else:
                ic(outcome)
                if outcome.ready:
                    console.success(f"{console.highlight(str(ref))} rolled out")
                    return outcome
                if outcome.failed:
                    console.error(f"{console.highlight(str(ref))} rollout failed: {outcome.reason}")
                    return outcome

            if self._sleep(min(self.poll_interval, deadline.remaining())):
                return RolloutOutcome.as_pending(ref, f"cancelled while waiting: {outcome.reason}")

        return RolloutOutcome.as_pending(ref, f"timed out waiting for rollout: {outcome.reason}")

    def track(self, refs: Sequence[WorkloadRef], deadline: Deadline) -> list[RolloutOutcome]:
        """Poll every workload until all are ready or failed, or the deadline expires.

        Args:
            refs: The workloads to track.
            deadline: The deadline of the whole run.

        Returns:
            One outcome per workload, in the order of ``refs``.

        """
        if not refs:
            return []

        console.action(f"Waiting for rollout of {len(refs)} workload(s)")
        with ThreadPoolExecutor(max_workers=len(refs), thread_name_prefix="rollout") as executor:
            futures = [executor.submit(self._track_one, ref, deadline) for ref in refs]
            return [future.result() for future in futures]

    @staticmethod
    def skip(refs: Sequence[WorkloadRef]) -> list[RolloutOutcome]:
        """Report every workload as ready without polling.

        Used when detection concluded that the workloads were already
        synced and fully rolled out before polling started.

        Args:
            refs: The workloads to report.

        Returns:
            One ready outcome per workload, in the order of ``refs``.

        """
        return [RolloutOutcome.as_ready(ref, "already rolled out") for ref in refs]
