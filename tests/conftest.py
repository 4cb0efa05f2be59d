"""Shared fixtures: an in-memory Kubernetes API and fake collectors."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Callable

import pytest
from kubernetes.client.rest import ApiException

from node_snapshot.collector.base import Collector
from node_snapshot.collector.factory import GPU, K8S, OS, SYSTEMD, CollectorFactory
from node_snapshot.k8s.agent import AgentConfig
from node_snapshot.k8s.client import KubeClients
from node_snapshot.measurement import Measurement, MeasurementType, Subtype

RESULT_YAML = """kind: Snapshot
apiVersion: snapshot.node-snapshot.io/v1
metadata:
  source-node: gpu-node-1
measurements: []
"""


class FakeLogStream:
    """Stands in for the urllib3 response returned with _preload_content=False."""

    def __init__(self, text: str) -> None:
        self._lines = [line.encode() for line in text.splitlines(keepends=True)]
        self.closed = False

    def readline(self) -> bytes:
        return self._lines.pop(0) if self._lines else b""

    def close(self) -> None:
        self.closed = True


class FakeCluster:
    """Just enough of the CoreV1, RbacV1, BatchV1 and Authorization APIs.

    Applied objects are stored as manifests keyed by (kind, namespace, name).
    Applying the agent Job calls ``on_job_applied`` so tests can play the
    part of the agent pod.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self.calls: list[str] = []
        self.job_conditions: list[SimpleNamespace] = []
        self.pod_phase = "Running"
        self.pod_logs = "collecting\ndone\n"
        self.denied: set[tuple[str, str]] = set()
        self.failures: dict[str, Exception] = {}
        self.on_job_applied: Callable[[dict[str, Any]], None] | None = None

    def clients(self) -> KubeClients:
        return KubeClients(core=self, rbac=self, batch=self, authz=self, version=self)

    # helpers

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    def count(self, method: str) -> int:
        return self.calls.count(method)

    def has(self, kind: str, name: str, namespace: str | None = None) -> bool:
        return (kind, namespace, name) in self.objects

    def complete_job(self, data: str = RESULT_YAML, fmt: str = "yaml") -> None:
        """Make the next applied Job succeed and leave a result ConfigMap behind."""
        self.job_conditions = [SimpleNamespace(type="Complete", status="True", reason=None, message=None)]

        def write_result(job: dict[str, Any]) -> None:
            ns = job["metadata"]["namespace"]
            self.objects[("ConfigMap", ns, "node-snapshot")] = {
                "kind": "ConfigMap",
                "metadata": {"name": "node-snapshot", "namespace": ns},
                "data": {f"snapshot.{fmt}": data, "format": fmt, "timestamp": "2026-01-01T00:00:00Z"},
            }

        self.on_job_applied = write_result

    def fail_job(self, reason: str = "BackoffLimitExceeded", message: str = "Job has reached the specified backoff limit") -> None:
        self.job_conditions = [SimpleNamespace(type="Failed", status="True", reason=reason, message=message)]

    def _apply(self, method: str, body: dict[str, Any], name: str, namespace: str | None = None, **kwargs: Any) -> dict[str, Any]:
        self._record(method)
        assert kwargs.get("field_manager") == "node-snapshot"
        self.objects[(body["kind"], namespace, name)] = body
        return body

    def _delete(self, method: str, kind: str, name: str, namespace: str | None = None) -> None:
        self._record(method)
        if self.objects.pop((kind, namespace, name), None) is None:
            raise ApiException(status=404, reason="Not Found")

    # CoreV1Api

    def patch_namespaced_service_account(self, name, namespace, body, **kwargs):
        return self._apply("patch_namespaced_service_account", body, name, namespace, **kwargs)

    def delete_namespaced_service_account(self, name, namespace, **kwargs):
        self._delete("delete_namespaced_service_account", "ServiceAccount", name, namespace)

    def patch_namespaced_config_map(self, name, namespace, body, **kwargs):
        return self._apply("patch_namespaced_config_map", body, name, namespace, **kwargs)

    def read_namespaced_config_map(self, name, namespace, **kwargs):
        self._record("read_namespaced_config_map")
        cm = self.objects.get(("ConfigMap", namespace, name))
        if cm is None:
            raise ApiException(status=404, reason="Not Found")
        return SimpleNamespace(data=cm.get("data"))

    def list_namespaced_pod(self, namespace, label_selector=None, **kwargs):
        self._record("list_namespaced_pod")
        items = []
        for kind, ns, name in self.objects:
            if kind == "Job" and ns == namespace and label_selector == f"job-name={name}":
                items.append(
                    SimpleNamespace(
                        metadata=SimpleNamespace(name=f"{name}-abcde"),
                        status=SimpleNamespace(phase=self.pod_phase, reason=None, message=None),
                    )
                )
        return SimpleNamespace(items=items)

    def read_namespaced_pod_log(self, name, namespace, tail_lines=None, follow=False, _preload_content=True, **kwargs):
        self._record("read_namespaced_pod_log")
        if not _preload_content:
            return FakeLogStream(self.pod_logs)
        lines = self.pod_logs.splitlines(keepends=True)
        if tail_lines is not None:
            lines = lines[-tail_lines:]
        return "".join(lines)

    # RbacAuthorizationV1Api

    def patch_namespaced_role(self, name, namespace, body, **kwargs):
        return self._apply("patch_namespaced_role", body, name, namespace, **kwargs)

    def patch_namespaced_role_binding(self, name, namespace, body, **kwargs):
        return self._apply("patch_namespaced_role_binding", body, name, namespace, **kwargs)

    def patch_cluster_role(self, name, body, **kwargs):
        return self._apply("patch_cluster_role", body, name, **kwargs)

    def patch_cluster_role_binding(self, name, body, **kwargs):
        return self._apply("patch_cluster_role_binding", body, name, **kwargs)

    def delete_namespaced_role(self, name, namespace, **kwargs):
        self._delete("delete_namespaced_role", "Role", name, namespace)

    def delete_namespaced_role_binding(self, name, namespace, **kwargs):
        self._delete("delete_namespaced_role_binding", "RoleBinding", name, namespace)

    def delete_cluster_role(self, name, **kwargs):
        self._delete("delete_cluster_role", "ClusterRole", name)

    def delete_cluster_role_binding(self, name, **kwargs):
        self._delete("delete_cluster_role_binding", "ClusterRoleBinding", name)

    # BatchV1Api

    def patch_namespaced_job(self, name, namespace, body, **kwargs):
        job = self._apply("patch_namespaced_job", body, name, namespace, **kwargs)
        if self.on_job_applied is not None:
            self.on_job_applied(job)
        return job

    def delete_namespaced_job(self, name, namespace, propagation_policy=None, **kwargs):
        self._delete("delete_namespaced_job", "Job", name, namespace)

    def read_namespaced_job(self, name, namespace, **kwargs):
        self._record("read_namespaced_job")
        job = self.objects.get(("Job", namespace, name))
        if job is None:
            raise ApiException(status=404, reason="Not Found")
        return job

    def read_namespaced_job_status(self, name, namespace, **kwargs):
        self._record("read_namespaced_job_status")
        if ("Job", namespace, name) not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        return SimpleNamespace(status=SimpleNamespace(conditions=list(self.job_conditions)))

    # AuthorizationV1Api

    def create_self_subject_access_review(self, body, **kwargs):
        self._record("create_self_subject_access_review")
        attrs = body.spec.resource_attributes
        allowed = (attrs.verb, attrs.resource) not in self.denied
        return SimpleNamespace(status=SimpleNamespace(allowed=allowed, reason=None if allowed else "denied by test"))


class FakeCollector(Collector):
    """Returns one measurement after ``delay`` seconds, or raises ``error``."""

    def __init__(self, mtype: MeasurementType, delay: float = 0.0, error: Exception | None = None) -> None:
        self.measurement_type = mtype
        self.delay = delay
        self.error = error
        self.started = False
        self.cancelled = False

    async def collect(self) -> Measurement:
        self.started = True
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return Measurement(type=self.measurement_type, subtypes=[Subtype(name="fake", data={"ok": True})])


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def clients(cluster) -> KubeClients:
    return cluster.clients()


@pytest.fixture
def agent_config() -> AgentConfig:
    return AgentConfig(
        namespace="gpu-operator",
        timeout=2.0,
        pod_ready_timeout=0.5,
        cleanup_timeout=2.0,
    )


@pytest.fixture
def fake_collectors() -> dict[str, FakeCollector]:
    return {
        K8S: FakeCollector(MeasurementType.K8S),
        SYSTEMD: FakeCollector(MeasurementType.SYSTEMD),
        OS: FakeCollector(MeasurementType.OS),
        GPU: FakeCollector(MeasurementType.GPU),
    }


@pytest.fixture
def fake_factory(fake_collectors) -> CollectorFactory:
    factory = CollectorFactory()
    for category, collector in fake_collectors.items():
        factory.register(category, lambda c=collector: c)
    return factory
