"""Agent deployment configuration."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from kubernetes import client
from pydantic import BaseModel, Field

from node_snapshot.serializer import CONFIGMAP_URI_SCHEME, Format, is_configmap_uri

# Shared by the ClusterRole and ClusterRoleBinding.
CLUSTER_ROLE_NAME = "node-snapshot-node-reader"

APP_LABEL = "app.kubernetes.io/name"
APP_NAME = "node-snapshot"

# Name of the result ConfigMap when no cm:// output is given
DEFAULT_ARTIFACT_NAME = "node-snapshot"


class CleanupPolicy(str, Enum):
    """What to remove once the agent run is over.

    The Job is always removed; RETAIN_RBAC keeps the access objects for the
    next run in the same namespace.
    """

    ALL = "all"
    RETAIN_RBAC = "retain-rbac"


class Toleration(BaseModel):
    """Pod toleration for tainted nodes."""

    key: str | None = None
    operator: Literal["Equal", "Exists"] = "Exists"
    value: str | None = None
    effect: str | None = None

    def to_v1(self) -> client.V1Toleration:
        return client.V1Toleration(
            key=self.key,
            operator=self.operator,
            value=self.value,
            effect=self.effect,
        )


def default_tolerations() -> list[Toleration]:
    """Tolerate every taint, so placement is driven by the node selector alone."""
    return [Toleration(operator="Exists")]


class AgentConfig(BaseModel):
    """Parameters for running the snapshot agent Job."""

    enabled: bool = True
    kubeconfig: str | None = None
    context: str | None = None
    namespace: str = "gpu-operator"
    image: str = "ghcr.io/node-snapshot/node-snapshot:latest"
    image_pull_secrets: list[str] = Field(default_factory=list)
    job_name: str = "node-snapshot"
    service_account_name: str = "node-snapshot"
    node_selector: dict[str, str] = Field(default_factory=dict)
    tolerations: list[Toleration] = Field(default_factory=default_tolerations)
    timeout: float = Field(default=300.0, gt=0, description="Seconds to wait for Job completion")
    pod_ready_timeout: float = Field(default=60.0, gt=0)
    cleanup_timeout: float = Field(default=30.0, gt=0)
    cleanup_policy: CleanupPolicy = CleanupPolicy.ALL
    output: str | None = Field(
        default=None,
        description="cm://namespace/name, a file path, '-' for stdout; defaults to the result ConfigMap",
    )
    format: Format = Format.YAML
    debug: bool = False
    privileged: bool = Field(
        default=True,
        description="hostPID/hostNetwork/privileged container; GPU and SystemD collectors need it",
    )

    @property
    def artifact_uri(self) -> str:
        """ConfigMap the Job writes its result into."""
        if is_configmap_uri(self.output):
            return self.output
        return f"{CONFIGMAP_URI_SCHEME}{self.namespace}/{DEFAULT_ARTIFACT_NAME}"

    @property
    def destination(self) -> str:
        """Where the caller wants the snapshot; the artifact when unset."""
        return self.output if self.output is not None else self.artifact_uri
