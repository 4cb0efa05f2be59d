"""In-cluster snapshot agent: RBAC, Job and result handling."""

from node_snapshot.k8s.agent.deployer import Deployer
from node_snapshot.k8s.agent.job import JobDeployer, build_job
from node_snapshot.k8s.agent.rbac import AccessProvisioner, PermissionCheck
from node_snapshot.k8s.agent.types import (
    CLUSTER_ROLE_NAME,
    AgentConfig,
    CleanupPolicy,
    Toleration,
    default_tolerations,
)
from node_snapshot.k8s.agent.wait import JobObserver, ResultRetriever, SnapshotResult

__all__ = [
    "CLUSTER_ROLE_NAME",
    "AccessProvisioner",
    "AgentConfig",
    "CleanupPolicy",
    "Deployer",
    "JobDeployer",
    "JobObserver",
    "PermissionCheck",
    "ResultRetriever",
    "SnapshotResult",
    "Toleration",
    "build_job",
    "default_tolerations",
]
