"""Data models for gitops-sync-wait.

This module provides the typed values that flow between the cluster
reader, the sync detector, the rollout tracker and the result aggregator.
Every value is immutable: each poll produces new snapshots which are only
ever compared against earlier ones.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, NamedTuple

from gitops_sync_wait.exceptions import ConfigurationError

# Label applied by Argo CD (and commonly by Flux/Helm) to every managed resource
APP_INSTANCE_LABEL = "app.kubernetes.io/instance"

DEFAULT_DEPLOYMENT_ID_ANNOTATION = "gitops-sync-wait/deployment-id"
DEFAULT_VERSION_LABEL = "app.kubernetes.io/version"

DEFAULT_TIMEOUT_SECONDS: float = 300
DEFAULT_FALLBACK_TIMEOUT_SECONDS: float = 180
DEFAULT_POLL_INTERVAL_SECONDS: float = 5


class WorkloadKind(str, Enum):
    """Supported Kubernetes workload kinds.

    Inherits from str to allow direct use in string contexts
    (e.g., command-line arguments, report output).
    """

    DEPLOYMENT = "deployment"
    STATEFUL_SET = "statefulset"
    DAEMON_SET = "daemonset"


class WorkloadRef(NamedTuple):
    """Identity of a workload in the cluster.

    Attributes:
        kind: The workload kind.
        namespace: The namespace the workload lives in.
        name: The workload name.

    """

    kind: WorkloadKind
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.namespace}/{self.name}"


@dataclass(frozen=True, slots=True)
class WorkloadSnapshot:
    """The sync-relevant fields of one workload at one point in time.

    Attributes:
        ref: Identity of the workload.
        deployment_id: Value of the deployment-id annotation, if present.
        version: Value of the version label, if present.
        generation: metadata.generation of the workload.
        observed_generation: status.observedGeneration of the workload.
        rollout_complete: Whether the controller reported the current
            generation as fully rolled out when the snapshot was taken.

    """

    ref: WorkloadRef
    deployment_id: str | None
    version: str | None
    generation: int
    observed_generation: int
    rollout_complete: bool

    def changed_from(self, baseline: "WorkloadSnapshot") -> bool:
        """Return True if the deployment id or generation moved since ``baseline``."""
        return self.deployment_id != baseline.deployment_id or self.generation != baseline.generation


def _normalize_marker(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True, slots=True)
class DetectionConfig:
    """Expected markers and time budgets for one run.

    Attributes:
        expected_deployment_id: Deployment id the workloads should end up with.
        expected_version: Version label value the workloads should end up with.
        overall_timeout: Seconds allowed for detection and rollout together.
        fallback_timeout: Seconds after which a run without visible change
            may assume the sync already happened.

    Raises:
        ConfigurationError: If a timeout is negative or the fallback timeout
            exceeds the overall timeout.

    """

    expected_deployment_id: str | None = None
    expected_version: str | None = None
    overall_timeout: float = DEFAULT_TIMEOUT_SECONDS
    fallback_timeout: float = DEFAULT_FALLBACK_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        object.__setattr__(self, "expected_deployment_id", _normalize_marker(self.expected_deployment_id))
        object.__setattr__(self, "expected_version", _normalize_marker(self.expected_version))

        if self.overall_timeout < 0 or self.fallback_timeout < 0:
            raise ConfigurationError("Timeouts must not be negative")
        if self.fallback_timeout > self.overall_timeout:
            raise ConfigurationError(
                f"Fallback timeout ({self.fallback_timeout:g}s) must not exceed "
                f"the overall timeout ({self.overall_timeout:g}s)"
            )


@dataclass(frozen=True, slots=True)
class WatchTarget:
    """Where to look for workloads.

    Attributes:
        namespace: Namespace to search.
        selector: Kubernetes label selector.
        kinds: Workload kinds to consider.

    """

    namespace: str
    selector: str
    kinds: tuple[WorkloadKind, ...] = tuple(WorkloadKind)

    @classmethod
    def build(
        cls,
        *,
        namespace: str,
        app: str | None = None,
        selector: str | None = None,
        kinds: tuple[WorkloadKind, ...] | None = None,
    ) -> "WatchTarget":
        """Create a target, deriving the label selector from the app name if needed.

        An explicit selector takes precedence over the app name.

        Args:
            namespace: Namespace to search.
            app: Application name, matched against the instance label.
            selector: Explicit label selector.
            kinds: Workload kinds to consider (all supported kinds if omitted).

        Returns:
            The validated WatchTarget.

        Raises:
            ConfigurationError: If no selector can be derived, the namespace is
                empty or no workload kinds were given.

        """
        selector = (selector or "").strip()
        app = (app or "").strip()
        if not selector:
            if not app:
                raise ConfigurationError("Either an app name or a label selector is required")
            selector = f"{APP_INSTANCE_LABEL}={app}"
        if not namespace:
            raise ConfigurationError("Namespace cannot be empty")
        if kinds is None:
            kinds = tuple(WorkloadKind)
        if not kinds:
            raise ConfigurationError("At least one workload kind is required")
        # Preserve order while dropping duplicates
        unique_kinds = tuple(dict.fromkeys(kinds))
        return cls(namespace=namespace, selector=selector, kinds=unique_kinds)

    def __str__(self) -> str:
        return f"selector '{self.selector}' in namespace '{self.namespace}'"


class Strategy(str, Enum):
    """How the sync detector decides that the GitOps controller applied a change."""

    EXACT_DEPLOYMENT_ID = "exact_deployment_id"
    EXACT_VERSION = "exact_version"
    CHANGE_DETECTION = "change_detection"
    FALLBACK = "fallback"


class DetectionMethod(str, Enum):
    """How the sync was (or was not) detected."""

    EXPECTED_MATCH = "expected_match"
    CHANGE_DETECTED = "change_detected"
    ALREADY_SYNCED = "already_synced"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class DetectionResult:
    """Terminal outcome of the sync detector.

    Attributes:
        matched: Whether a sync was confirmed.
        method: How the sync was detected.
        elapsed: Seconds spent detecting.
        strategy: The strategy that was active.
        snapshots: The last snapshots observed for the tracked workloads.
        cancelled: Whether polling stopped because of external cancellation.

    """

    matched: bool
    method: DetectionMethod
    elapsed: float
    strategy: Strategy
    snapshots: tuple[WorkloadSnapshot, ...] = ()
    cancelled: bool = False


class RolloutState(str, Enum):
    """Rollout status of a single workload as reported by the cluster."""

    READY = "ready"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True, slots=True)
class RolloutOutcome:
    """Rollout status of one workload.

    Attributes:
        ref: Identity of the workload.
        ready: The workload finished rolling out.
        failed: The rollout failed (progress deadline, image pull errors, ...).
        reason: Human readable detail for pending or failed rollouts.

    """

    ref: WorkloadRef
    ready: bool = False
    failed: bool = False
    reason: str | None = None

    @classmethod
    def as_ready(cls, ref: WorkloadRef, reason: str | None = None) -> "RolloutOutcome":
        return cls(ref=ref, ready=True, reason=reason)

    @classmethod
    def as_failed(cls, ref: WorkloadRef, reason: str) -> "RolloutOutcome":
        return cls(ref=ref, failed=True, reason=reason)

    @classmethod
    def as_pending(cls, ref: WorkloadRef, reason: str) -> "RolloutOutcome":
        return cls(ref=ref, reason=reason)

    @property
    def state(self) -> RolloutState:
        """The outcome collapsed into a single RolloutState."""
        if self.failed:
            return RolloutState.FAILED
        if self.ready:
            return RolloutState.READY
        return RolloutState.PENDING

    @property
    def terminal(self) -> bool:
        """Whether no further polling can change this outcome."""
        return self.ready or self.failed


class MatchState(str, Enum):
    """Tri-state comparison of an expected marker against the cluster."""

    TRUE = "true"
    FALSE = "false"
    SKIPPED = "skipped"


class Status(str, Enum):
    """Terminal status of a run."""

    READY = "Ready"
    FAILED = "Failed"
    TIMEOUT = "Timeout"
    NO_WORKLOADS = "NoWorkloads"

    @property
    def exit_code(self) -> int:
        """Return the process exit code for this status.

        Returns:
            0 for Ready and NoWorkloads, 1 for Failed, 2 for Timeout.

        """
        match self:
            case Status.READY | Status.NO_WORKLOADS:
                return 0
            case Status.TIMEOUT:
                return 2
            case _:
                return 1


@dataclass(frozen=True, slots=True)
class FinalReport:
    """The single report produced at the end of a run.

    Attributes:
        workloads_found: Number of workloads matching the selector.
        workloads_ready: Number of workloads that finished rolling out.
        version_matched: Whether the expected version was observed.
        deployment_id_matched: Whether the expected deployment id was observed.
        detection_method: How the sync was detected.
        status: Terminal status of the run.
        message: Human readable explanation of the status.
        failed_workloads: Outcomes of every workload whose rollout failed.
        strategy: Detection strategy that was active, if one was selected.
        elapsed: Seconds spent on the whole run.
        pending_workloads: Outcomes of workloads still rolling out when
            the time budget ran out.

    """

    workloads_found: int
    workloads_ready: int
    version_matched: MatchState
    deployment_id_matched: MatchState
    detection_method: DetectionMethod
    status: Status
    message: str
    failed_workloads: tuple[RolloutOutcome, ...] = ()
    strategy: Strategy | None = None
    elapsed: float = 0.0
    pending_workloads: tuple[RolloutOutcome, ...] = ()

    def outputs(self) -> dict[str, str]:
        """Return the output variables consumed by CI pipelines.

        Returns:
            Mapping of stable output names to string values.

        """
        return {
            "workloads_found": str(self.workloads_found),
            "workloads_ready": str(self.workloads_ready),
            "version_matched": self.version_matched.value,
            "deployment_id_matched": self.deployment_id_matched.value,
            "sync_detection_method": self.detection_method.value,
            "status": self.status.value,
            "message": self.message,
            "failed_workloads": ",".join(str(outcome.ref) for outcome in self.failed_workloads),
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialise the report to a plain dict suitable for JSON or YAML output."""
        data = asdict(self)
        data["version_matched"] = self.version_matched.value
        data["deployment_id_matched"] = self.deployment_id_matched.value
        data["detection_method"] = self.detection_method.value
        data["status"] = self.status.value
        data["strategy"] = self.strategy.value if self.strategy else None
        data["failed_workloads"] = [_outcome_to_dict(outcome) for outcome in self.failed_workloads]
        data["pending_workloads"] = [_outcome_to_dict(outcome) for outcome in self.pending_workloads]
        return data


def _outcome_to_dict(outcome: RolloutOutcome) -> dict[str, str | None]:
    return {
        "kind": outcome.ref.kind.value,
        "namespace": outcome.ref.namespace,
        "name": outcome.ref.name,
        "state": outcome.state.value,
        "reason": outcome.reason,
    }
