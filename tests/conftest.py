"""Shared test fixtures for gitops-sync-wait tests."""

import threading
from collections.abc import Sequence
from unittest.mock import MagicMock, patch

import pytest

from gitops_sync_wait.exceptions import ClusterReadError
from gitops_sync_wait.models import (
    DetectionConfig,
    RolloutOutcome,
    WatchTarget,
    WorkloadKind,
    WorkloadRef,
    WorkloadSnapshot,
)


class FakeClock:
    """Monotonic clock whose sleeps advance time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> bool:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds
        return False


class FakeReader:
    """Scripted cluster reader.

    ``ticks`` holds the snapshots returned by successive ``list_workloads``
    calls (an exception instance is raised instead); the last tick repeats.
    ``statuses`` holds successive rollout outcomes per workload, the last
    one repeating.
    """

    def __init__(
        self,
        ticks: Sequence[Sequence[WorkloadSnapshot] | Exception],
        statuses: dict[WorkloadRef, Sequence[RolloutOutcome | Exception]] | None = None,
    ) -> None:
        self.ticks = list(ticks)
        self.statuses = {ref: list(outcomes) for ref, outcomes in (statuses or {}).items()}
        self.list_calls = 0
        self.status_calls: dict[WorkloadRef, int] = {}
        self._lock = threading.Lock()

    def list_workloads(self, kind: WorkloadKind, namespace: str, selector: str) -> list[WorkloadSnapshot]:
        tick = self.ticks[min(self.list_calls, len(self.ticks) - 1)]
        self.list_calls += 1
        if isinstance(tick, Exception):
            raise tick
        return [snapshot for snapshot in tick if snapshot.ref.kind is kind]

    def get_rollout_status(self, ref: WorkloadRef) -> RolloutOutcome:
        with self._lock:
            calls = self.status_calls.get(ref, 0)
            self.status_calls[ref] = calls + 1
        outcomes = self.statuses[ref]
        outcome = outcomes[min(calls, len(outcomes) - 1)]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_ref(name: str = "web", kind: WorkloadKind = WorkloadKind.DEPLOYMENT, namespace: str = "shop") -> WorkloadRef:
    return WorkloadRef(kind=kind, namespace=namespace, name=name)


def make_snapshot(
    name: str = "web",
    *,
    deployment_id: str | None = None,
    version: str | None = None,
    generation: int = 1,
    observed_generation: int | None = None,
    rollout_complete: bool = True,
    kind: WorkloadKind = WorkloadKind.DEPLOYMENT,
) -> WorkloadSnapshot:
    return WorkloadSnapshot(
        ref=make_ref(name, kind),
        deployment_id=deployment_id,
        version=version,
        generation=generation,
        observed_generation=generation if observed_generation is None else observed_generation,
        rollout_complete=rollout_complete,
    )


def read_error(message: str = "503 Service Unavailable") -> ClusterReadError:
    return ClusterReadError(message)


@pytest.fixture
def clock():
    """Fake clock driving deadlines and sleeps."""
    return FakeClock()


@pytest.fixture
def target():
    """Watch target for deployments labelled as the 'web' app."""
    return WatchTarget.build(namespace="shop", app="web", kinds=(WorkloadKind.DEPLOYMENT,))


@pytest.fixture
def config():
    """Detection configuration without expected markers."""
    return DetectionConfig(overall_timeout=300, fallback_timeout=180)


@pytest.fixture
def mock_kube_contexts():
    """Mock kubernetes config contexts."""
    with patch("kubernetes.config.list_kube_config_contexts") as mock:
        mock.return_value = ([{"name": "test-context"}, {"name": "staging"}], {"name": "test-context"})
        yield mock


@pytest.fixture
def mock_kube_config():
    """Mock kubernetes config loading."""
    with patch("kubernetes.config.load_kube_config") as mock:
        yield mock


@pytest.fixture
def mock_apps_v1_api():
    """Mock AppsV1Api for workload reads."""
    with patch("kubernetes.client.AppsV1Api") as mock:
        api_instance = MagicMock()
        mock.return_value = api_instance
        yield api_instance


@pytest.fixture
def mock_core_v1_api():
    """Mock CoreV1Api for pod listing."""
    with patch("kubernetes.client.CoreV1Api") as mock:
        api_instance = MagicMock()
        mock.return_value = api_instance
        api_instance.list_namespaced_pod.return_value.items = []
        yield api_instance


@pytest.fixture
def cluster_mocks(mock_kube_contexts, mock_kube_config, mock_apps_v1_api, mock_core_v1_api):
    """Combined fixture for creating a Cluster instance without cluster access."""
    return {
        "contexts": mock_kube_contexts,
        "config": mock_kube_config,
        "apps_api": mock_apps_v1_api,
        "core_api": mock_core_v1_api,
    }


def make_deployment(
    name: str = "web",
    *,
    namespace: str = "shop",
    annotations: dict[str, str] | None = None,
    labels: dict[str, str] | None = None,
    generation: int = 2,
    observed_generation: int = 2,
    replicas: int = 3,
    updated_replicas: int = 3,
    total_replicas: int = 3,
    available_replicas: int = 3,
    conditions: list | None = None,
    match_labels: dict[str, str] | None = None,
    revision: str | None = None,
) -> MagicMock:
    """Build a V1Deployment-like mock with every field the reader uses."""
    deployment = MagicMock()
    deployment.metadata.name = name
    deployment.metadata.namespace = namespace
    deployment.metadata.uid = f"{name}-uid"
    deployment.metadata.annotations = dict(annotations or {})
    if revision is not None:
        deployment.metadata.annotations["deployment.kubernetes.io/revision"] = revision
    deployment.metadata.labels = labels
    deployment.metadata.generation = generation
    deployment.spec.replicas = replicas
    deployment.spec.selector.match_labels = match_labels if match_labels is not None else {"app": name}
    deployment.status.observed_generation = observed_generation
    deployment.status.updated_replicas = updated_replicas
    deployment.status.replicas = total_replicas
    deployment.status.available_replicas = available_replicas
    deployment.status.conditions = conditions or []
    return deployment


def make_condition(type_: str, reason: str) -> MagicMock:
    condition = MagicMock()
    condition.type = type_
    condition.reason = reason
    return condition


def make_pod(
    name: str,
    *,
    waiting_reason: str | None = None,
    message: str | None = None,
    restart_count: int = 0,
    labels: dict[str, str] | None = None,
) -> MagicMock:
    """Build a V1Pod-like mock with a single container."""
    pod = MagicMock()
    pod.metadata.name = name
    pod.metadata.labels = labels or {}
    container = MagicMock()
    container.name = "app"
    container.restart_count = restart_count
    if waiting_reason is None:
        container.state.waiting = None
    else:
        container.state.waiting.reason = waiting_reason
        container.state.waiting.message = message
    pod.status.init_container_statuses = None
    pod.status.container_statuses = [container]
    return pod


def make_replica_set(owner: MagicMock, revision: str, template_hash: str) -> MagicMock:
    """Build a V1ReplicaSet-like mock owned by ``owner``."""
    replica_set = MagicMock()
    reference = MagicMock()
    reference.uid = owner.metadata.uid
    replica_set.metadata.owner_references = [reference]
    replica_set.metadata.annotations = {"deployment.kubernetes.io/revision": revision}
    replica_set.metadata.labels = {"pod-template-hash": template_hash}
    return replica_set


def pods_matching(pods: list[MagicMock]):
    """Serve ``list_namespaced_pod`` like the API server, filtering ``pods`` by label selector."""

    def list_namespaced_pod(*, namespace: str, label_selector: str) -> MagicMock:  # noqa: ARG001
        wanted = dict(term.split("=", 1) for term in label_selector.split(","))
        response = MagicMock()
        response.items = [pod for pod in pods if wanted.items() <= pod.metadata.labels.items()]
        return response

    return list_namespaced_pod
