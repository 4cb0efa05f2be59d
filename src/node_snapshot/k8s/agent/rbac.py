"""RBAC objects for the agent: ServiceAccount, Role(Binding), ClusterRole(Binding)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from kubernetes import client
from kubernetes.client.rest import ApiException

from node_snapshot.errors import ProvisioningError
from node_snapshot.k8s.agent.types import APP_LABEL, APP_NAME, CLUSTER_ROLE_NAME, AgentConfig
from node_snapshot.k8s.client import KubeClients, server_side_apply

logger = logging.getLogger(__name__)

RBAC_API_GROUP = "rbac.authorization.k8s.io"


def _meta(name: str, namespace: str | None = None) -> client.V1ObjectMeta:
    return client.V1ObjectMeta(name=name, namespace=namespace, labels={APP_LABEL: APP_NAME})


def build_service_account(cfg: AgentConfig) -> client.V1ServiceAccount:
    return client.V1ServiceAccount(
        api_version="v1",
        kind="ServiceAccount",
        metadata=_meta(cfg.service_account_name, cfg.namespace),
    )


def build_role(cfg: AgentConfig) -> client.V1Role:
    """Namespaced access: write the result ConfigMap, observe own pods and jobs."""
    return client.V1Role(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="Role",
        metadata=_meta(cfg.service_account_name, cfg.namespace),
        rules=[
            client.V1PolicyRule(
                api_groups=[""],
                resources=["configmaps"],
                verbs=["create", "get", "update", "patch"],
            ),
            client.V1PolicyRule(api_groups=[""], resources=["pods"], verbs=["get", "list"]),
            client.V1PolicyRule(api_groups=["batch"], resources=["jobs"], verbs=["get", "list"]),
        ],
    )


def _subjects(cfg: AgentConfig) -> list[client.RbacV1Subject]:
    return [
        client.RbacV1Subject(
            kind="ServiceAccount",
            name=cfg.service_account_name,
            namespace=cfg.namespace,
        )
    ]


def build_role_binding(cfg: AgentConfig) -> client.V1RoleBinding:
    return client.V1RoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="RoleBinding",
        metadata=_meta(cfg.service_account_name, cfg.namespace),
        subjects=_subjects(cfg),
        role_ref=client.V1RoleRef(api_group=RBAC_API_GROUP, kind="Role", name=cfg.service_account_name),
    )


def build_cluster_role() -> client.V1ClusterRole:
    """Cluster-wide read access to node-level facts."""
    return client.V1ClusterRole(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="ClusterRole",
        metadata=_meta(CLUSTER_ROLE_NAME),
        rules=[
            client.V1PolicyRule(api_groups=[""], resources=["nodes"], verbs=["get", "list"]),
            client.V1PolicyRule(api_groups=[""], resources=["pods"], verbs=["get", "list"]),
            client.V1PolicyRule(api_groups=["nvidia.com"], resources=["clusterpolicies"], verbs=["get", "list"]),
            client.V1PolicyRule(api_groups=[""], resources=["services"], verbs=["get", "list"]),
        ],
    )


def build_cluster_role_binding(cfg: AgentConfig) -> client.V1ClusterRoleBinding:
    return client.V1ClusterRoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="ClusterRoleBinding",
        metadata=_meta(CLUSTER_ROLE_NAME),
        subjects=_subjects(cfg),
        role_ref=client.V1RoleRef(api_group=RBAC_API_GROUP, kind="ClusterRole", name=CLUSTER_ROLE_NAME),
    )


@dataclass
class PermissionCheck:
    """Outcome of one SelfSubjectAccessReview."""

    resource: str
    verb: str
    namespace: str | None
    group: str = ""
    allowed: bool = False
    reason: str = ""

    def describe(self) -> str:
        scope = f"namespace {self.namespace!r}" if self.namespace else "cluster-scoped"
        return f"{self.verb} {self.resource} ({scope})"


class AccessProvisioner:
    """Creates and removes the agent's identity and permission grants."""

    def __init__(self, clients: KubeClients, cfg: AgentConfig) -> None:
        self._clients = clients
        self.config = cfg

    def required_permissions(self) -> list[PermissionCheck]:
        ns = self.config.namespace
        return [
            PermissionCheck("serviceaccounts", "create", ns),
            PermissionCheck("roles", "create", ns, RBAC_API_GROUP),
            PermissionCheck("rolebindings", "create", ns, RBAC_API_GROUP),
            PermissionCheck("jobs", "create", ns, "batch"),
            PermissionCheck("configmaps", "get", ns),
            PermissionCheck("configmaps", "list", ns),
            PermissionCheck("clusterroles", "create", None, RBAC_API_GROUP),
            PermissionCheck("clusterrolebindings", "create", None, RBAC_API_GROUP),
            PermissionCheck("jobs", "delete", ns, "batch"),
        ]

    def _review(self, check: PermissionCheck) -> PermissionCheck:
        review = client.V1SelfSubjectAccessReview(
            spec=client.V1SelfSubjectAccessReviewSpec(
                resource_attributes=client.V1ResourceAttributes(
                    verb=check.verb,
                    resource=check.resource,
                    group=check.group,
                    namespace=check.namespace,
                )
            )
        )
        result = self._clients.authz.create_self_subject_access_review(body=review)
        check.allowed = bool(result.status.allowed)
        check.reason = result.status.reason or ""
        return check

    def _check_permissions_sync(self) -> list[PermissionCheck]:
        checks = []
        for check in self.required_permissions():
            try:
                checks.append(self._review(check))
            except ApiException as e:
                raise ProvisioningError(
                    f"failed to check permission for {check.verb} {check.resource}: {e.reason}"
                ) from e
        missing = [c.describe() for c in checks if not c.allowed]
        if missing:
            raise ProvisioningError(
                "insufficient permissions to deploy agent, missing:\n  - "
                + "\n  - ".join(missing)
                + "\n\nAsk a cluster admin to grant these permissions or to create the agent RBAC objects."
            )
        return checks

    async def check_permissions(self) -> list[PermissionCheck]:
        """Verify the caller may create everything the agent needs."""
        return await asyncio.to_thread(self._check_permissions_sync)

    def _provision_sync(self) -> None:
        cfg = self.config
        rbac = self._clients.rbac
        steps = [
            (
                f"ServiceAccount {cfg.namespace}/{cfg.service_account_name}",
                self._clients.core.patch_namespaced_service_account,
                build_service_account(cfg),
                {"name": cfg.service_account_name, "namespace": cfg.namespace},
            ),
            (
                f"Role {cfg.namespace}/{cfg.service_account_name}",
                rbac.patch_namespaced_role,
                build_role(cfg),
                {"name": cfg.service_account_name, "namespace": cfg.namespace},
            ),
            (
                f"RoleBinding {cfg.namespace}/{cfg.service_account_name}",
                rbac.patch_namespaced_role_binding,
                build_role_binding(cfg),
                {"name": cfg.service_account_name, "namespace": cfg.namespace},
            ),
            (
                f"ClusterRole {CLUSTER_ROLE_NAME}",
                rbac.patch_cluster_role,
                build_cluster_role(),
                {"name": CLUSTER_ROLE_NAME},
            ),
            (
                f"ClusterRoleBinding {CLUSTER_ROLE_NAME}",
                rbac.patch_cluster_role_binding,
                build_cluster_role_binding(cfg),
                {"name": CLUSTER_ROLE_NAME},
            ),
        ]
        for what, patch, body, kwargs in steps:
            try:
                server_side_apply(patch, body, **kwargs)
            except ApiException as e:
                raise ProvisioningError(f"failed to apply {what}: {e.reason}") from e
            logger.debug("applied %s", what)

    async def provision(self) -> None:
        """Apply all RBAC objects; safe to repeat with the same config."""
        await asyncio.to_thread(self._provision_sync)

    def delete(self) -> tuple[list[str], list[str]]:
        """Delete every RBAC object, continuing past failures.

        Returns (deleted, failures). Objects already gone count as deleted.
        """
        cfg = self.config
        rbac = self._clients.rbac
        targets = [
            (
                f"ServiceAccount {cfg.service_account_name!r}",
                lambda: self._clients.core.delete_namespaced_service_account(cfg.service_account_name, cfg.namespace),
            ),
            (
                f"Role {cfg.service_account_name!r}",
                lambda: rbac.delete_namespaced_role(cfg.service_account_name, cfg.namespace),
            ),
            (
                f"RoleBinding {cfg.service_account_name!r}",
                lambda: rbac.delete_namespaced_role_binding(cfg.service_account_name, cfg.namespace),
            ),
            (f"ClusterRole {CLUSTER_ROLE_NAME!r}", lambda: rbac.delete_cluster_role(CLUSTER_ROLE_NAME)),
            (f"ClusterRoleBinding {CLUSTER_ROLE_NAME!r}", lambda: rbac.delete_cluster_role_binding(CLUSTER_ROLE_NAME)),
        ]
        deleted: list[str] = []
        failures: list[str] = []
        for what, delete in targets:
            try:
                delete()
            except ApiException as e:
                if e.status != 404:
                    failures.append(f"{what}: {e.reason}")
                    continue
            deleted.append(what)
        return deleted, failures
