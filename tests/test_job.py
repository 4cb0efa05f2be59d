"""Tests for the agent Job manifest and deployment."""

import pytest
from kubernetes.client.rest import ApiException

from node_snapshot.errors import DeploymentError
from node_snapshot.k8s.agent import JobDeployer, Toleration, build_job
from node_snapshot.serializer import Format


def _container(job):
    return job.spec.template.spec.containers[0]


def test_job_shape(agent_config):
    """One pod, no retries, never restarted."""
    spec = build_job(agent_config).spec
    assert (spec.completions, spec.parallelism, spec.backoff_limit) == (1, 1, 0)
    assert spec.ttl_seconds_after_finished == 3600
    assert spec.active_deadline_seconds == 18000
    assert spec.template.spec.restart_policy == "Never"
    assert spec.template.spec.service_account_name == "node-snapshot"


def test_job_args_write_to_artifact(agent_config):
    container = _container(build_job(agent_config))
    assert container.command == ["node-snapshot"]
    assert container.args == ["snapshot", "--output", "cm://gpu-operator/node-snapshot", "--format", "yaml"]


def test_job_args_debug_and_explicit_configmap(agent_config):
    cfg = agent_config.model_copy(update={"debug": True, "output": "cm://ops/result", "format": Format.JSON})
    args = _container(build_job(cfg)).args
    assert args == ["--debug", "snapshot", "--output", "cm://ops/result", "--format", "json"]


def test_job_args_file_output_still_uses_configmap(agent_config):
    """The agent always writes to the ConfigMap; the caller copies it to the file."""
    cfg = agent_config.model_copy(update={"output": "/tmp/snap.yaml"})
    args = _container(build_job(cfg)).args
    assert args[args.index("--output") + 1] == "cm://gpu-operator/node-snapshot"


def test_node_name_from_downward_api(agent_config):
    (env,) = _container(build_job(agent_config)).env
    assert env.name == "NODE_NAME"
    assert env.value_from.field_ref.field_path == "spec.nodeName"


def test_privileged_pod(agent_config):
    job = build_job(agent_config)
    pod = job.spec.template.spec
    container = _container(job)
    assert pod.host_pid and pod.host_network and pod.host_ipc
    assert container.security_context.privileged is True
    assert container.security_context.run_as_user == 0
    assert set(container.security_context.capabilities.add) == {"SYS_ADMIN", "SYS_CHROOT"}
    assert any(v.host_path and v.host_path.path == "/run/systemd" for v in pod.volumes)
    assert container.resources.requests["memory"] == "4Gi"
    assert container.resources.limits["cpu"] == "2"


def test_restricted_pod(agent_config):
    """Without privileges the pod satisfies the restricted security standard."""
    cfg = agent_config.model_copy(update={"privileged": False})
    job = build_job(cfg)
    pod = job.spec.template.spec
    sc = _container(job).security_context
    assert not (pod.host_pid or pod.host_network or pod.host_ipc)
    assert sc.run_as_user == 65534
    assert sc.run_as_non_root and sc.read_only_root_filesystem
    assert sc.allow_privilege_escalation is False
    assert sc.capabilities.drop == ["ALL"]
    assert pod.security_context.seccomp_profile.type == "RuntimeDefault"
    assert all(v.host_path is None for v in pod.volumes)
    assert _container(job).resources.limits == {"cpu": "500m", "memory": "512Mi"}


def test_default_toleration_is_tolerate_all(agent_config):
    (t,) = build_job(agent_config).spec.template.spec.tolerations
    assert t.operator == "Exists"
    assert t.key is None and t.effect is None


def test_placement_and_pull_secrets(agent_config):
    cfg = agent_config.model_copy(
        update={
            "node_selector": {"nvidia.com/gpu.present": "true"},
            "tolerations": [Toleration(key="dedicated", operator="Equal", value="gpu", effect="NoSchedule")],
            "image_pull_secrets": ["regcred"],
            "image": "registry.example.com/node-snapshot:v1",
        }
    )
    job = build_job(cfg)
    pod = job.spec.template.spec
    assert pod.node_selector == {"nvidia.com/gpu.present": "true"}
    assert [(t.key, t.value, t.effect) for t in pod.tolerations] == [("dedicated", "gpu", "NoSchedule")]
    assert [s.name for s in pod.image_pull_secrets] == ["regcred"]
    assert _container(job).image == "registry.example.com/node-snapshot:v1"


@pytest.mark.asyncio
async def test_deploy_applies_job(clients, cluster, agent_config):
    await JobDeployer(clients, agent_config).deploy()
    job = cluster.objects[("Job", "gpu-operator", "node-snapshot")]
    assert job["kind"] == "Job"
    assert job["spec"]["backoffLimit"] == 0


@pytest.mark.asyncio
async def test_deploy_replaces_previous_job(clients, cluster, agent_config):
    """A leftover Job is deleted before the new one is applied."""
    deployer = JobDeployer(clients, agent_config)
    await deployer.deploy()
    await deployer.deploy()

    assert cluster.count("delete_namespaced_job") == 2
    assert cluster.count("patch_namespaced_job") == 2
    assert cluster.calls.index("delete_namespaced_job") < cluster.calls.index("patch_namespaced_job")
    assert cluster.has("Job", "node-snapshot", "gpu-operator")


@pytest.mark.asyncio
async def test_deploy_failure(clients, cluster, agent_config):
    cluster.failures["patch_namespaced_job"] = ApiException(status=422, reason="Unprocessable Entity")
    with pytest.raises(DeploymentError, match="Unprocessable Entity"):
        await JobDeployer(clients, agent_config).deploy()


def test_delete_missing_job(clients, agent_config):
    assert JobDeployer(clients, agent_config).delete() == []
