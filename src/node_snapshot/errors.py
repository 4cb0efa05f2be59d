"""Exception taxonomy for snapshot collection and agent lifecycle."""

from __future__ import annotations


class SnapshotError(Exception):
    """Base class for all node-snapshot errors."""


class CollectorError(SnapshotError):
    """A single collector failed; fatal to a local collection."""

    def __init__(self, collector: str, message: str) -> None:
        super().__init__(f"failed to collect {collector}: {message}")
        self.collector = collector


class CollectionTimeoutError(SnapshotError):
    """The shared collection deadline expired before all collectors finished."""


class PlacementError(SnapshotError, ValueError):
    """A node selector or toleration string could not be parsed."""


class InvalidURIError(SnapshotError, ValueError):
    """An output or artifact URI is malformed."""


class ProvisioningError(SnapshotError):
    """Agent RBAC objects could not be created."""


class DeploymentError(SnapshotError):
    """The agent Job could not be scheduled."""


class PodNotReadyError(SnapshotError):
    """The agent pod did not reach Running within the readiness window, or failed first."""


class JobError(SnapshotError):
    """The agent Job did not complete successfully.

    ``logs`` holds the pod log output fetched after the failure, if any.
    """

    def __init__(self, message: str, logs: str | None = None) -> None:
        super().__init__(message)
        self.logs = logs

    def __str__(self) -> str:
        base = super().__str__()
        if self.logs:
            return f"{base}\n--- agent logs ---\n{self.logs.rstrip()}\n--- end logs ---"
        return base


class JobFailedError(JobError):
    """The Job reached the Failed condition."""


class JobTimeoutError(JobError):
    """The Job did not reach a terminal condition before the timeout."""


class ResultNotFoundError(SnapshotError):
    """The result ConfigMap is missing or holds no snapshot data."""


class CleanupError(SnapshotError):
    """One or more agent resources could not be deleted."""

    def __init__(self, failures: list[str]) -> None:
        joined = "\n  - ".join(failures)
        super().__init__(f"failed to delete {len(failures)} resource(s):\n  - {joined}")
        self.failures = failures
