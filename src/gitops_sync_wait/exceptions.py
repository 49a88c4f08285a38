"""Custom exceptions for gitops-sync-wait.

This module defines the exception hierarchy used throughout the application.
Configuration and connection errors end a run before polling starts; read
errors raised while polling are recovered by the polling loops.
"""


class SyncWaitError(Exception):
    """Base exception for all gitops-sync-wait errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all gitops-sync-wait errors with a single
    except clause if desired.
    """

    pass


class ConfigurationError(SyncWaitError):
    """Raised when the run configuration is invalid.

    This can occur when:
    - The fallback timeout exceeds the overall timeout
    - A timeout is negative
    - Neither an app name nor a label selector was given
    - No workload kinds were selected
    """

    pass


class ClusterConnectionError(SyncWaitError):
    """Raised when connection to the Kubernetes cluster cannot be set up.

    This can occur when:
    - The kubeconfig is invalid or missing
    - The requested context does not exist
    - No in-cluster service account is available
    """

    pass


class ClusterReadError(SyncWaitError):
    """Raised when a single read against the cluster API fails.

    Polling loops treat this as transient: the failure is reported and
    the read is attempted again on the next poll tick.
    """

    pass
