"""Kubernetes cluster interaction utilities.

This module provides the Cluster class which reads workloads from the
cluster and evaluates their rollout status the same way
``kubectl rollout status`` does. It never modifies cluster state.
"""

from collections.abc import Callable
from typing import Any, Protocol

from icecream import ic
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from gitops_sync_wait import console
from gitops_sync_wait.exceptions import ClusterConnectionError, ClusterReadError
from gitops_sync_wait.models import (
    DEFAULT_DEPLOYMENT_ID_ANNOTATION,
    DEFAULT_VERSION_LABEL,
    RolloutOutcome,
    RolloutState,
    WorkloadKind,
    WorkloadRef,
    WorkloadSnapshot,
)

IN_CLUSTER_CONTEXT = "in-cluster"

REVISION_ANNOTATION = "deployment.kubernetes.io/revision"
POD_TEMPLATE_HASH_LABEL = "pod-template-hash"
CONTROLLER_REVISION_HASH_LABEL = "controller-revision-hash"

# Container waiting reasons that will not resolve without a new rollout
_FAILED_WAITING_REASONS = frozenset(
    {
        "CreateContainerConfigError",
        "ErrImagePull",
        "ImagePullBackOff",
        "InvalidImageName",
    }
)

# Containers may crash a few times while their dependencies start up
CRASH_LOOP_RESTART_THRESHOLD = 3


class WorkloadReader(Protocol):
    """Read-only view of workloads consumed by the polling loops."""

    def list_workloads(self, kind: WorkloadKind, namespace: str, selector: str) -> list[WorkloadSnapshot]: ...

    def get_rollout_status(self, ref: WorkloadRef) -> RolloutOutcome: ...


def _replicas(value: int | None) -> int:
    # Kubernetes defaults spec.replicas to 1 when unset
    return 1 if value is None else value


def deployment_rollout_status(ref: WorkloadRef, deployment: Any) -> RolloutOutcome:
    """Evaluate the rollout status of a Deployment.

    Args:
        ref: Identity of the deployment.
        deployment: V1Deployment as returned by the API.

    Returns:
        The rollout outcome.

    """
    generation = deployment.metadata.generation or 0
    observed = deployment.status.observed_generation or 0
    if observed < generation:
        return RolloutOutcome.as_pending(ref, "waiting for deployment spec update to be observed")

    for condition in deployment.status.conditions or []:
        if condition.type == "Progressing" and condition.reason == "ProgressDeadlineExceeded":
            return RolloutOutcome.as_failed(ref, f"deployment {ref.name} exceeded its progress deadline")

    replicas = _replicas(deployment.spec.replicas)
    updated = deployment.status.updated_replicas or 0
    total = deployment.status.replicas or 0
    available = deployment.status.available_replicas or 0

    if updated < replicas:
        return RolloutOutcome.as_pending(ref, f"{updated} out of {replicas} new replicas have been updated")
    if total > updated:
        return RolloutOutcome.as_pending(ref, f"{total - updated} old replicas are pending termination")
    if available < updated:
        return RolloutOutcome.as_pending(ref, f"{available} of {updated} updated replicas are available")
    return RolloutOutcome.as_ready(ref)


def statefulset_rollout_status(ref: WorkloadRef, statefulset: Any) -> RolloutOutcome:
    """Evaluate the rollout status of a StatefulSet.

    Args:
        ref: Identity of the statefulset.
        statefulset: V1StatefulSet as returned by the API.

    Returns:
        The rollout outcome.

    """
    status = statefulset.status
    if status.observed_generation is None or (statefulset.metadata.generation or 0) > status.observed_generation:
        return RolloutOutcome.as_pending(ref, "waiting for statefulset spec update to be observed")

    strategy = statefulset.spec.update_strategy
    if strategy is not None and strategy.type != "RollingUpdate":
        return RolloutOutcome.as_ready(ref, f"{strategy.type} update strategy, rollout is not tracked")

    replicas = _replicas(statefulset.spec.replicas)
    ready = status.ready_replicas or 0
    if ready < replicas:
        return RolloutOutcome.as_pending(ref, f"{ready} of {replicas} pods are ready")

    rolling_update = strategy.rolling_update if strategy is not None else None
    partition = rolling_update.partition if rolling_update is not None and rolling_update.partition else 0
    if partition:
        updated = status.updated_replicas or 0
        if updated < replicas - partition:
            return RolloutOutcome.as_pending(
                ref, f"{updated} of {replicas - partition} new pods have been updated (partition {partition})"
            )
        return RolloutOutcome.as_ready(ref, f"partitioned roll out complete: {updated} new pods")

    if status.update_revision != status.current_revision:
        return RolloutOutcome.as_pending(
            ref, f"{status.updated_replicas or 0} pods at revision {status.update_revision}"
        )
    return RolloutOutcome.as_ready(ref)


def daemonset_rollout_status(ref: WorkloadRef, daemonset: Any) -> RolloutOutcome:
    """Evaluate the rollout status of a DaemonSet.

    Args:
        ref: Identity of the daemonset.
        daemonset: V1DaemonSet as returned by the API.

    Returns:
        The rollout outcome.

    """
    strategy = daemonset.spec.update_strategy
    if strategy is not None and strategy.type != "RollingUpdate":
        return RolloutOutcome.as_ready(ref, f"{strategy.type} update strategy, rollout is not tracked")

    status = daemonset.status
    if (daemonset.metadata.generation or 0) > (status.observed_generation or 0):
        return RolloutOutcome.as_pending(ref, "waiting for daemon set spec update to be observed")

    desired = status.desired_number_scheduled or 0
    updated = status.updated_number_scheduled or 0
    available = status.number_available or 0
    if updated < desired:
        return RolloutOutcome.as_pending(ref, f"{updated} out of {desired} new pods have been updated")
    if available < desired:
        return RolloutOutcome.as_pending(ref, f"{available} of {desired} updated pods are available")
    return RolloutOutcome.as_ready(ref)


_STATUS_EVALUATORS: dict[WorkloadKind, Callable[[WorkloadRef, Any], RolloutOutcome]] = {
    WorkloadKind.DEPLOYMENT: deployment_rollout_status,
    WorkloadKind.STATEFUL_SET: statefulset_rollout_status,
    WorkloadKind.DAEMON_SET: daemonset_rollout_status,
}


def _container_failed(container: Any) -> bool:
    waiting = container.state.waiting if container.state is not None else None
    if waiting is None:
        return False
    if waiting.reason == "CrashLoopBackOff":
        return (container.restart_count or 0) >= CRASH_LOOP_RESTART_THRESHOLD
    return waiting.reason in _FAILED_WAITING_REASONS


def find_failed_pod(pods: list[Any]) -> str | None:
    """Find a pod whose containers are stuck in a non-recoverable waiting state.

    Image pull and container configuration errors fail immediately. A crash
    loop only counts once the container restarted at least
    CRASH_LOOP_RESTART_THRESHOLD times.

    Args:
        pods: V1Pod objects of the workload's current revision.

    Returns:
        A description of the first failing container, or None.

    """
    for pod in pods:
        statuses = [*(pod.status.init_container_statuses or []), *(pod.status.container_statuses or [])]
        for container in statuses:
            if _container_failed(container):
                waiting = container.state.waiting
                detail = f": {waiting.message}" if waiting.message else ""
                return f"pod {pod.metadata.name} container {container.name} is in {waiting.reason}{detail}"
    return None


def _owned_by(obj: Any, owner: Any) -> bool:
    return any(reference.uid == owner.metadata.uid for reference in obj.metadata.owner_references or [])


class Cluster:
    """Read-only access to workloads of a Kubernetes cluster.

    Attributes:
        context: The kubeconfig context in use, or "in-cluster".
        deployment_id_annotation: Annotation holding the deployment id.
        version_label: Label holding the application version.

    """

    def __init__(
        self,
        *,
        context: str | None = None,
        deployment_id_annotation: str = DEFAULT_DEPLOYMENT_ID_ANNOTATION,
        version_label: str = DEFAULT_VERSION_LABEL,
    ) -> None:
        """Initialize Cluster and load the client configuration.

        Args:
            context: Kubeconfig context to use. The current context is used
                when omitted; without any kubeconfig the in-cluster service
                account is used instead.
            deployment_id_annotation: Annotation holding the deployment id.
            version_label: Label holding the application version.

        """
        self.context: str = self._load_config(context=context)
        self.deployment_id_annotation: str = deployment_id_annotation
        self.version_label: str = version_label
        self.apps_v1 = client.AppsV1Api()
        self.core_v1 = client.CoreV1Api()

    @staticmethod
    def _load_config(*, context: str | None) -> str:
        """Load kubeconfig or in-cluster configuration.

        Args:
            context: Kubeconfig context to use, or None for the current one.

        Returns:
            The name of the context in use.

        Raises:
            ClusterConnectionError: If no usable configuration is found.

        """
        try:
            contexts, current_context = config.list_kube_config_contexts()
        except ConfigException as e:
            if context is not None:
                raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e
            try:
                config.load_incluster_config()
            except ConfigException as in_cluster_error:
                raise ClusterConnectionError(
                    f"Invalid or missing kubeconfig and no in-cluster configuration: {in_cluster_error}"
                ) from in_cluster_error
            console.action(f"Working with {console.highlight(IN_CLUSTER_CONTEXT)} configuration")
            return IN_CLUSTER_CONTEXT

        if context is None:
            context = str(current_context["name"])
        elif context not in [c["name"] for c in contexts]:
            raise ClusterConnectionError(f"Context '{context}' not found in kubeconfig")

        try:
            config.load_kube_config(context=context)
        except ConfigException as e:
            raise ClusterConnectionError(f"Failed to load kubeconfig context '{context}': {e}") from e

        console.action(f"Working with {console.highlight(context)} cluster")
        return context

    def _lister(self, kind: WorkloadKind) -> Callable[..., Any]:
        match kind:
            case WorkloadKind.DEPLOYMENT:
                return self.apps_v1.list_namespaced_deployment
            case WorkloadKind.STATEFUL_SET:
                return self.apps_v1.list_namespaced_stateful_set
            case WorkloadKind.DAEMON_SET:
                return self.apps_v1.list_namespaced_daemon_set

    def _reader(self, kind: WorkloadKind) -> Callable[..., Any]:
        match kind:
            case WorkloadKind.DEPLOYMENT:
                return self.apps_v1.read_namespaced_deployment
            case WorkloadKind.STATEFUL_SET:
                return self.apps_v1.read_namespaced_stateful_set
            case WorkloadKind.DAEMON_SET:
                return self.apps_v1.read_namespaced_daemon_set

    def snapshot(self, kind: WorkloadKind, workload: Any) -> WorkloadSnapshot:
        """Capture the sync-relevant fields of a workload API object.

        Args:
            kind: The workload kind.
            workload: The API object (V1Deployment, V1StatefulSet or V1DaemonSet).

        Returns:
            A new WorkloadSnapshot.

        """
        metadata = workload.metadata
        ref = WorkloadRef(kind=kind, namespace=metadata.namespace, name=metadata.name)
        annotations: dict[str, str] = metadata.annotations or {}
        labels: dict[str, str] = metadata.labels or {}
        return WorkloadSnapshot(
            ref=ref,
            deployment_id=annotations.get(self.deployment_id_annotation),
            version=labels.get(self.version_label),
            generation=metadata.generation or 0,
            observed_generation=workload.status.observed_generation or 0,
            rollout_complete=_STATUS_EVALUATORS[kind](ref, workload).state is RolloutState.READY,
        )

    def list_workloads(self, kind: WorkloadKind, namespace: str, selector: str) -> list[WorkloadSnapshot]:
        """List workloads of one kind matching a label selector.

        Args:
            kind: The workload kind.
            namespace: Namespace to search.
            selector: Kubernetes label selector.

        Returns:
            Snapshots of the matching workloads sorted by name; empty if none match.

        Raises:
            ClusterReadError: If the API call fails.

        """
        items = self._list_items(
            self._lister(kind), f"{kind.value}s in {namespace}", namespace=namespace, label_selector=selector
        )
        snapshots = sorted((self.snapshot(kind, item) for item in items), key=lambda s: s.ref.name)
        ic(kind, snapshots)
        return snapshots

    @staticmethod
    def _match_labels_selector(workload: Any) -> str | None:
        selector = workload.spec.selector
        match_labels: dict[str, str] = (selector.match_labels if selector is not None else None) or {}
        if not match_labels:
            return None
        return ",".join(f"{key}={value}" for key, value in sorted(match_labels.items()))

    def _list_items(self, call: Callable[..., Any], description: str, **kwargs: Any) -> list[Any]:
        try:
            return list(call(**kwargs).items)
        except ApiException as e:
            raise ClusterReadError(f"Failed to list {description}: {e.status} {e.reason}") from e
        except HTTPError as e:
            raise ClusterReadError(f"Failed to connect to the Kubernetes cluster: {e}") from e

    def _deployment_revision_label(self, ref: WorkloadRef, deployment: Any, selector: str) -> str | None:
        """Return the pod-template-hash selector of the deployment's newest ReplicaSet."""
        revision = (deployment.metadata.annotations or {}).get(REVISION_ANNOTATION)
        if revision is None:
            return None
        replica_sets = self._list_items(
            self.apps_v1.list_namespaced_replica_set,
            f"replica sets of {ref}",
            namespace=ref.namespace,
            label_selector=selector,
        )
        for replica_set in replica_sets:
            annotations: dict[str, str] = replica_set.metadata.annotations or {}
            if _owned_by(replica_set, deployment) and annotations.get(REVISION_ANNOTATION) == revision:
                template_hash = (replica_set.metadata.labels or {}).get(POD_TEMPLATE_HASH_LABEL)
                return f"{POD_TEMPLATE_HASH_LABEL}={template_hash}" if template_hash else None
        return None

    def _daemonset_revision_label(self, ref: WorkloadRef, daemonset: Any, selector: str) -> str | None:
        """Return the controller-revision-hash selector of the daemonset's newest ControllerRevision."""
        revisions = [
            revision
            for revision in self._list_items(
                self.apps_v1.list_namespaced_controller_revision,
                f"controller revisions of {ref}",
                namespace=ref.namespace,
                label_selector=selector,
            )
            if _owned_by(revision, daemonset)
        ]
        if not revisions:
            return None
        newest = max(revisions, key=lambda revision: revision.revision or 0)
        revision_hash = (newest.metadata.labels or {}).get(CONTROLLER_REVISION_HASH_LABEL)
        return f"{CONTROLLER_REVISION_HASH_LABEL}={revision_hash}" if revision_hash else None

    def _current_pod_selector(self, ref: WorkloadRef, workload: Any) -> str | None:
        """Build a selector matching only the pods of the revision being rolled out.

        Pods of older revisions are excluded so that a crash looping old
        version never fails the rollout that replaces it.

        Returns:
            The label selector, or None if the current revision is unknown.

        """
        selector = self._match_labels_selector(workload)
        if selector is None:
            return None

        match ref.kind:
            case WorkloadKind.DEPLOYMENT:
                revision_label = self._deployment_revision_label(ref, workload, selector)
            case WorkloadKind.STATEFUL_SET:
                update_revision = workload.status.update_revision
                revision_label = f"{CONTROLLER_REVISION_HASH_LABEL}={update_revision}" if update_revision else None
            case WorkloadKind.DAEMON_SET:
                revision_label = self._daemonset_revision_label(ref, workload, selector)

        ic(ref, revision_label)
        if revision_label is None:
            return None
        return f"{selector},{revision_label}"

    def get_rollout_status(self, ref: WorkloadRef) -> RolloutOutcome:
        """Get the current rollout status of a workload.

        Pending rollouts are additionally checked for pods of the current
        revision that can never become ready (image pull errors, crash
        loops), which fail the rollout.

        Args:
            ref: Identity of the workload.

        Returns:
            The rollout outcome (ready, failed or pending).

        Raises:
            ClusterReadError: If an API call fails.

        """
        try:
            workload = self._reader(ref.kind)(name=ref.name, namespace=ref.namespace)
        except ApiException as e:
            if e.status == 404:
                return RolloutOutcome.as_failed(ref, f"{ref.kind.value} {ref.name} no longer exists")
            raise ClusterReadError(f"Failed to read {ref}: {e.status} {e.reason}") from e
        except HTTPError as e:
            raise ClusterReadError(f"Failed to connect to the Kubernetes cluster: {e}") from e

        outcome = _STATUS_EVALUATORS[ref.kind](ref, workload)
        ic(outcome)
        if outcome.state is not RolloutState.PENDING:
            return outcome

        pod_selector = self._current_pod_selector(ref, workload)
        if pod_selector is None:
            return outcome

        pods = self._list_items(
            self.core_v1.list_namespaced_pod,
            f"pods of {ref}",
            namespace=ref.namespace,
            label_selector=pod_selector,
        )
        failure = find_failed_pod(pods)
        if failure is not None:
            return RolloutOutcome.as_failed(ref, failure)
        return outcome

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return (
            f"Cluster(context={self.context!r}, "
            f"deployment_id_annotation={self.deployment_id_annotation!r}, "
            f"version_label={self.version_label!r})"
        )
