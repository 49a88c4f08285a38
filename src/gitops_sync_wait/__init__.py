"""gitops-sync-wait: Wait for GitOps syncs to reach a Kubernetes cluster.

This package detects, from outside the GitOps controller, when a
just-triggered deployment has been applied to the cluster and has finished
rolling out.

Example usage:
    from gitops_sync_wait import Cluster, DetectionConfig, SyncWatcher, WatchTarget

    target = WatchTarget.build(namespace="shop", app="checkout")
    config = DetectionConfig(expected_deployment_id="1234", overall_timeout=600)
    report = SyncWatcher(Cluster(), target, config).run()
    print(report.status, report.message)
"""

__version__ = "0.1.0"

from gitops_sync_wait.cli import cli
from gitops_sync_wait.cluster import Cluster
from gitops_sync_wait.exceptions import (
    ClusterConnectionError,
    ClusterReadError,
    ConfigurationError,
    SyncWaitError,
)
from gitops_sync_wait.models import (
    DetectionConfig,
    DetectionMethod,
    FinalReport,
    MatchState,
    RolloutOutcome,
    Status,
    Strategy,
    WatchTarget,
    WorkloadKind,
    WorkloadRef,
    WorkloadSnapshot,
)
from gitops_sync_wait.watcher import SyncWatcher

__all__ = [
    # Version
    "__version__",
    # Main CLI
    "cli",
    # Classes
    "Cluster",
    "SyncWatcher",
    # Models
    "DetectionConfig",
    "DetectionMethod",
    "FinalReport",
    "MatchState",
    "RolloutOutcome",
    "Status",
    "Strategy",
    "WatchTarget",
    "WorkloadKind",
    "WorkloadRef",
    "WorkloadSnapshot",
    # Exceptions
    "SyncWaitError",
    "ClusterConnectionError",
    "ClusterReadError",
    "ConfigurationError",
]
