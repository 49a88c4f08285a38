"""Tests for watcher.py module."""

import pytest
from conftest import FakeReader, make_ref, make_snapshot, read_error

from gitops_sync_wait.exceptions import ClusterReadError
from gitops_sync_wait.models import (
    DetectionConfig,
    DetectionMethod,
    MatchState,
    RolloutOutcome,
    Status,
    Strategy,
    WatchTarget,
    WorkloadKind,
)
from gitops_sync_wait.timing import Cancellation
from gitops_sync_wait.watcher import SyncWatcher


def _watcher(reader, target, config, clock, **kwargs):
    return SyncWatcher(reader, target, config, poll_interval=5, clock=clock.monotonic, sleep=clock.sleep, **kwargs)


class TestSyncWatcherScenarios:
    """End-to-end runs against a scripted cluster."""

    def test_deployment_id_ready(self, target, clock):
        """Test a single workload reaching the expected deployment id and becoming ready."""
        config = DetectionConfig(expected_deployment_id="42", overall_timeout=300, fallback_timeout=180)
        web = make_ref("web")
        reader = FakeReader(
            [[make_snapshot(deployment_id="41", generation=1)], [make_snapshot(deployment_id="42", generation=2)]],
            {web: [RolloutOutcome.as_ready(web)]},
        )

        report = _watcher(reader, target, config, clock).run()

        assert report.status is Status.READY
        assert report.deployment_id_matched is MatchState.TRUE
        assert report.version_matched is MatchState.SKIPPED
        assert report.detection_method is DetectionMethod.EXPECTED_MATCH
        assert report.strategy is Strategy.EXACT_DEPLOYMENT_ID
        assert report.workloads_found == 1
        assert report.workloads_ready == 1
        assert report.status.exit_code == 0

    def test_no_workloads(self, target, config, clock):
        """Test that an empty selector match is a successful no-op."""
        reader = FakeReader([[]])

        report = _watcher(reader, target, config, clock).run()

        assert report.status is Status.NO_WORKLOADS
        assert report.workloads_found == 0
        assert report.status.exit_code == 0
        assert reader.list_calls == 1

    def test_already_synced(self, target, clock):
        """Test the fallback window with the expected version already running."""
        config = DetectionConfig(expected_version="v2", overall_timeout=300, fallback_timeout=180)
        web, worker = make_ref("web"), make_ref("worker")
        snapshots = [
            make_snapshot("web", version="v2", deployment_id="a", rollout_complete=True),
            make_snapshot("worker", version="v2", deployment_id="a", rollout_complete=True),
        ]
        reader = FakeReader([snapshots], {web: [], worker: []})

        report = _watcher(reader, target, config, clock).run()

        assert report.status is Status.READY
        assert report.detection_method is DetectionMethod.ALREADY_SYNCED
        assert report.strategy is Strategy.CHANGE_DETECTION
        assert report.version_matched is MatchState.TRUE
        assert report.workloads_ready == 2
        assert reader.status_calls == {}
        assert report.elapsed == 180

    def test_one_of_two_rollouts_fails(self, target, clock):
        """Test partial failure across two workloads."""
        config = DetectionConfig(expected_deployment_id="7", overall_timeout=300, fallback_timeout=180)
        web, worker = make_ref("web"), make_ref("worker")
        reader = FakeReader(
            [
                [make_snapshot("web", deployment_id="6"), make_snapshot("worker", deployment_id="6")],
                [make_snapshot("web", deployment_id="7"), make_snapshot("worker", deployment_id="7")],
            ],
            {
                web: [RolloutOutcome.as_ready(web)],
                worker: [
                    RolloutOutcome.as_pending(worker, "0 of 2 updated replicas are available"),
                    RolloutOutcome.as_failed(worker, "pod worker-abc container app is in ImagePullBackOff"),
                ],
            },
        )

        report = _watcher(reader, target, config, clock).run()

        assert report.status is Status.FAILED
        assert report.status.exit_code != 0
        assert len(report.failed_workloads) == 1
        assert report.failed_workloads[0].ref == worker
        assert report.failed_workloads[0].reason == "pod worker-abc container app is in ImagePullBackOff"
        assert report.workloads_ready == 1

    def test_expected_version_never_observed(self, target, clock):
        """Test a timeout when the expected version never arrives."""
        config = DetectionConfig(expected_version="v3", overall_timeout=120, fallback_timeout=60)
        web = make_ref("web")
        reader = FakeReader([[make_snapshot(version="v2")]], {web: [RolloutOutcome.as_ready(web)]})

        report = _watcher(reader, target, config, clock).run()

        assert report.status is Status.TIMEOUT
        assert report.version_matched is MatchState.FALSE
        assert report.detection_method is DetectionMethod.TIMEOUT
        assert report.status.exit_code != 0
        assert reader.status_calls == {}
        assert "exact_version" in report.message

    def test_workload_deleted_during_detection(self, target, clock):
        """Test that a workload deleted after the baseline keeps the sync undetected."""
        config = DetectionConfig(expected_deployment_id="42", overall_timeout=120, fallback_timeout=60)
        web = make_ref("web")
        reader = FakeReader(
            [
                [make_snapshot("api", deployment_id="41"), make_snapshot("web", deployment_id="41")],
                [make_snapshot("web", deployment_id="42", generation=2)],
            ],
            {web: [RolloutOutcome.as_ready(web)]},
        )

        report = _watcher(reader, target, config, clock).run()

        assert report.status is Status.TIMEOUT
        assert report.detection_method is DetectionMethod.TIMEOUT
        assert report.deployment_id_matched is MatchState.FALSE
        assert report.workloads_found == 2


class TestSyncWatcherBudget:
    """Tests for the single deadline shared by both phases."""

    def test_rollout_uses_remaining_budget(self, target, clock):
        """Test that the rollout phase only gets what detection left over."""
        config = DetectionConfig(expected_deployment_id="42", overall_timeout=60, fallback_timeout=30)
        web = make_ref("web")
        ticks = [[make_snapshot(deployment_id="41")]] * 9 + [[make_snapshot(deployment_id="42", generation=2)]]
        reader = FakeReader(ticks, {web: [RolloutOutcome.as_pending(web, "rolling")]})

        report = _watcher(reader, target, config, clock).run()

        assert report.status is Status.TIMEOUT
        assert report.detection_method is DetectionMethod.EXPECTED_MATCH
        assert clock.now == 60
        assert reader.status_calls[web] == 4
        assert report.pending_workloads[0].ref == web

    def test_baseline_read_retried(self, target, config, clock):
        """Test that a failing baseline read is retried."""
        reader = FakeReader([read_error(), []])

        report = _watcher(reader, target, config, clock).run()

        assert report.status is Status.NO_WORKLOADS
        assert clock.now == 5

    def test_baseline_read_fails_until_deadline(self, target, clock):
        """Test that unreadable workloads end the run with an error."""
        config = DetectionConfig(overall_timeout=20, fallback_timeout=10)
        reader = FakeReader([read_error()])

        with pytest.raises(ClusterReadError) as exc_info:
            _watcher(reader, target, config, clock).run()

        assert "before the timeout" in str(exc_info.value)

    def test_multiple_kinds(self, clock):
        """Test tracking workloads of different kinds together."""
        target = WatchTarget.build(
            namespace="shop", app="web", kinds=(WorkloadKind.DEPLOYMENT, WorkloadKind.STATEFUL_SET)
        )
        config = DetectionConfig(overall_timeout=300, fallback_timeout=180)
        web = make_ref("web")
        db = make_ref("db", kind=WorkloadKind.STATEFUL_SET)
        before = [make_snapshot("web", generation=1), make_snapshot("db", generation=4, kind=WorkloadKind.STATEFUL_SET)]
        after = [make_snapshot("web", generation=2), make_snapshot("db", generation=5, kind=WorkloadKind.STATEFUL_SET)]
        # Each tick lists deployments and statefulsets separately
        reader = FakeReader(
            [before, before, after, after],
            {web: [RolloutOutcome.as_ready(web)], db: [RolloutOutcome.as_ready(db)]},
        )

        report = _watcher(reader, target, config, clock).run()

        assert report.status is Status.READY
        assert report.detection_method is DetectionMethod.CHANGE_DETECTED
        assert report.workloads_found == 2


class TestSyncWatcherCancellation:
    """Tests for external cancellation."""

    def test_cancelled_before_start(self, target, config):
        """Test that a cancelled run stops at the first sleep and reports Timeout."""
        cancellation = Cancellation()
        cancellation.cancel()
        reader = FakeReader([[make_snapshot()]])

        report = SyncWatcher(reader, target, config, cancellation=cancellation).run()

        assert report.status is Status.TIMEOUT
        assert report.message.startswith("Cancelled")
        assert reader.list_calls == 2
