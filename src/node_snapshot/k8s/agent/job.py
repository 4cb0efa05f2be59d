"""Agent Job manifest and deployment."""

from __future__ import annotations

import asyncio
import logging
import time

from kubernetes import client
from kubernetes.client.rest import ApiException

from node_snapshot.errors import DeploymentError
from node_snapshot.k8s.agent.types import APP_LABEL, APP_NAME, AgentConfig
from node_snapshot.k8s.client import KubeClients, server_side_apply

logger = logging.getLogger(__name__)

AGENT_COMMAND = "node-snapshot"
CONTAINER_NAME = "node-snapshot"

JOB_TTL_SECONDS = 3600
JOB_ACTIVE_DEADLINE_SECONDS = 18000
JOB_DELETE_WAIT_SECONDS = 30.0


def agent_args(cfg: AgentConfig) -> list[str]:
    """Arguments the in-pod CLI runs with; output always goes to the artifact."""
    args = ["snapshot", "--output", cfg.artifact_uri, "--format", cfg.format.value]
    if cfg.debug:
        args.insert(0, "--debug")
    return args


def _resources(privileged: bool) -> client.V1ResourceRequirements:
    if privileged:
        return client.V1ResourceRequirements(
            requests={"cpu": "1", "memory": "4Gi", "ephemeral-storage": "2Gi"},
            limits={"cpu": "2", "memory": "8Gi", "ephemeral-storage": "4Gi"},
        )
    return client.V1ResourceRequirements(
        requests={"cpu": "100m", "memory": "256Mi"},
        limits={"cpu": "500m", "memory": "512Mi"},
    )


def _container(cfg: AgentConfig) -> client.V1Container:
    mounts = [client.V1VolumeMount(name="tmp", mount_path="/tmp")]
    if cfg.privileged:
        security = client.V1SecurityContext(
            privileged=True,
            run_as_user=0,
            run_as_group=0,
            allow_privilege_escalation=True,
            capabilities=client.V1Capabilities(add=["SYS_ADMIN", "SYS_CHROOT"]),
        )
        mounts.append(client.V1VolumeMount(name="run-systemd", mount_path="/run/systemd", read_only=True))
    else:
        security = client.V1SecurityContext(
            privileged=False,
            run_as_user=65534,
            run_as_group=65534,
            run_as_non_root=True,
            allow_privilege_escalation=False,
            read_only_root_filesystem=True,
            capabilities=client.V1Capabilities(drop=["ALL"]),
        )
    return client.V1Container(
        name=CONTAINER_NAME,
        image=cfg.image,
        image_pull_policy="IfNotPresent",
        command=[AGENT_COMMAND],
        args=agent_args(cfg),
        env=[
            client.V1EnvVar(
                name="NODE_NAME",
                value_from=client.V1EnvVarSource(
                    field_ref=client.V1ObjectFieldSelector(field_path="spec.nodeName"),
                ),
            ),
        ],
        resources=_resources(cfg.privileged),
        security_context=security,
        volume_mounts=mounts,
    )


def _pod_spec(cfg: AgentConfig) -> client.V1PodSpec:
    volumes = [client.V1Volume(name="tmp", empty_dir=client.V1EmptyDirVolumeSource())]
    if cfg.privileged:
        volumes.append(
            client.V1Volume(
                name="run-systemd",
                host_path=client.V1HostPathVolumeSource(path="/run/systemd", type="Directory"),
            )
        )
        pod_security = client.V1PodSecurityContext(run_as_user=0, run_as_group=0, fs_group=0)
    else:
        pod_security = client.V1PodSecurityContext(
            run_as_user=65534,
            run_as_group=65534,
            fs_group=65534,
            run_as_non_root=True,
            seccomp_profile=client.V1SeccompProfile(type="RuntimeDefault"),
        )
    return client.V1PodSpec(
        service_account_name=cfg.service_account_name,
        restart_policy="Never",
        host_pid=cfg.privileged,
        host_network=cfg.privileged,
        host_ipc=cfg.privileged,
        node_selector=cfg.node_selector or None,
        tolerations=[t.to_v1() for t in cfg.tolerations] or None,
        image_pull_secrets=[client.V1LocalObjectReference(name=s) for s in cfg.image_pull_secrets] or None,
        security_context=pod_security,
        containers=[_container(cfg)],
        volumes=volumes,
    )


def build_job(cfg: AgentConfig) -> client.V1Job:
    """Single-pod, no-retry Job that runs one snapshot on the selected node."""
    labels = {APP_LABEL: APP_NAME}
    return client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(name=cfg.job_name, namespace=cfg.namespace, labels=labels),
        spec=client.V1JobSpec(
            completions=1,
            parallelism=1,
            backoff_limit=0,
            ttl_seconds_after_finished=JOB_TTL_SECONDS,
            active_deadline_seconds=JOB_ACTIVE_DEADLINE_SECONDS,
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=_pod_spec(cfg),
            ),
        ),
    )


class JobDeployer:
    """Creates and deletes the agent Job."""

    def __init__(self, clients: KubeClients, cfg: AgentConfig, delete_wait: float = JOB_DELETE_WAIT_SECONDS) -> None:
        self._clients = clients
        self.config = cfg
        self.delete_wait = delete_wait

    def _delete_job(self) -> bool:
        """Delete the Job and its pods; False when it did not exist."""
        try:
            self._clients.batch.delete_namespaced_job(
                self.config.job_name,
                self.config.namespace,
                propagation_policy="Foreground",
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def _job_exists(self) -> bool:
        try:
            self._clients.batch.read_namespaced_job(self.config.job_name, self.config.namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def _deploy_sync(self) -> None:
        cfg = self.config
        # pod templates are immutable, so a previous Job must be gone before apply
        if self._delete_job():
            logger.debug("deleted previous Job %s/%s, waiting for removal", cfg.namespace, cfg.job_name)
            deadline = time.monotonic() + self.delete_wait
            while self._job_exists():
                if time.monotonic() >= deadline:
                    raise DeploymentError(
                        f"previous Job {cfg.namespace}/{cfg.job_name} was not removed within {self.delete_wait}s"
                    )
                time.sleep(0.5)
        server_side_apply(
            self._clients.batch.patch_namespaced_job,
            build_job(cfg),
            name=cfg.job_name,
            namespace=cfg.namespace,
        )

    async def deploy(self) -> None:
        cfg = self.config
        logger.info("deploying agent Job %s/%s (image=%s)", cfg.namespace, cfg.job_name, cfg.image)
        try:
            await asyncio.to_thread(self._deploy_sync)
        except ApiException as e:
            raise DeploymentError(f"failed to deploy Job {cfg.namespace}/{cfg.job_name}: {e.reason}") from e

    def delete(self) -> list[str]:
        """Delete the Job; returns failure descriptions (empty on success or 404)."""
        try:
            self._delete_job()
        except ApiException as e:
            return [f"Job {self.config.job_name!r}: {e.reason}"]
        return []
