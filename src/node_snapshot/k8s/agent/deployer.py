"""Deployer: one handle over the agent's RBAC, Job, observation and result."""

from __future__ import annotations

import asyncio
import logging
from typing import TextIO

from node_snapshot.errors import CleanupError
from node_snapshot.k8s.agent.job import JobDeployer
from node_snapshot.k8s.agent.rbac import AccessProvisioner
from node_snapshot.k8s.agent.types import CLUSTER_ROLE_NAME, AgentConfig, CleanupPolicy
from node_snapshot.k8s.agent.wait import (
    DEFAULT_LOG_TAIL_LINES,
    DEFAULT_POLL_INTERVAL,
    JobObserver,
    ResultRetriever,
    SnapshotResult,
)
from node_snapshot.k8s.client import KubeClients

logger = logging.getLogger(__name__)


class Deployer:
    """Runs the agent lifecycle steps against one cluster."""

    def __init__(self, clients: KubeClients, cfg: AgentConfig, poll_interval: float = DEFAULT_POLL_INTERVAL) -> None:
        self.clients = clients
        self.config = cfg
        self.access = AccessProvisioner(clients, cfg)
        self.job = JobDeployer(clients, cfg)
        self.observer = JobObserver(clients, cfg, poll_interval=poll_interval)

    async def provision(self, check: bool = True) -> None:
        """Apply the RBAC objects, after verifying the caller may create them."""
        if check:
            await self.access.check_permissions()
        await self.access.provision()

    async def deploy(self) -> None:
        """Replace any previous agent Job with a fresh one."""
        await self.job.deploy()

    async def wait_for_pod_ready(self) -> str:
        """Name of the agent pod once it is Running."""
        return await self.observer.wait_for_pod_ready()

    async def stream_logs(self, sink: TextIO) -> None:
        """Follow the agent pod's log into ``sink``."""
        await self.observer.stream_logs(sink)

    async def get_pod_logs(self, tail_lines: int = DEFAULT_LOG_TAIL_LINES) -> str | None:
        """Tail of the agent pod's log, None when it cannot be read."""
        return await self.observer.get_pod_logs(tail_lines)

    async def wait_for_completion(self) -> None:
        """Wait for the Job to complete within the configured timeout."""
        await self.observer.wait_for_completion()

    async def get_snapshot(self) -> SnapshotResult:
        """Read the snapshot from the artifact ConfigMap."""
        return await ResultRetriever(self.clients, self.config.artifact_uri).get_snapshot()

    def _cleanup_sync(self, policy: CleanupPolicy) -> None:
        failures = self.job.delete()
        if policy is CleanupPolicy.ALL:
            deleted, rbac_failures = self.access.delete()
            failures.extend(rbac_failures)
            logger.debug("removed RBAC objects: %s", ", ".join(deleted) or "none")
        if failures:
            raise CleanupError(failures)

    async def cleanup(self, policy: CleanupPolicy | None = None) -> None:
        """Delete the Job, and the RBAC objects unless the policy retains them.

        Every deletion is attempted; missing objects are not errors.

        Raises:
            CleanupError: listing each object that could not be deleted.
        """
        policy = policy or self.config.cleanup_policy
        logger.info("cleaning up agent resources (policy=%s)", policy.value)
        await asyncio.to_thread(self._cleanup_sync, policy)

    def manual_cleanup_command(self, policy: CleanupPolicy | None = None) -> str:
        """kubectl commands equivalent to ``cleanup``."""
        policy = policy or self.config.cleanup_policy
        cfg = self.config
        cmds = [f"kubectl delete job {cfg.job_name} -n {cfg.namespace} --ignore-not-found"]
        if policy is CleanupPolicy.ALL:
            name = cfg.service_account_name
            cmds.append(
                f"kubectl delete serviceaccount,role,rolebinding {name} -n {cfg.namespace} --ignore-not-found"
            )
            cmds.append(f"kubectl delete clusterrole,clusterrolebinding {CLUSTER_ROLE_NAME} --ignore-not-found")
        return " && ".join(cmds)
