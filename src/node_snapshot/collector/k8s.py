"""Collect Kubernetes cluster and node state."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from kubernetes.client.rest import ApiException

from node_snapshot.collector.base import Collector
from node_snapshot.k8s.client import KubeClients, get_node_name
from node_snapshot.measurement import Measurement, MeasurementType, Reading, Subtype

logger = logging.getLogger(__name__)

# Upper bound on pods listed when gathering container images
DEFAULT_POD_LIST_LIMIT = 500


def _server_subtype(version: Any) -> Subtype:
    """Build the server subtype from a VersionInfo."""
    data: dict[str, Reading] = {
        "version": getattr(version, "git_version", "") or "",
        "platform": getattr(version, "platform", "") or "",
        "go-version": getattr(version, "go_version", "") or "",
    }
    return Subtype(name="server", data=data)


def _node_subtype(node: Any) -> Subtype:
    """Build the node subtype from a V1Node."""
    info = getattr(node.status, "node_info", None)
    data: dict[str, Reading] = {"name": node.metadata.name}
    if info is not None:
        data.update(
            {
                "kernel": info.kernel_version or "",
                "os-image": info.os_image or "",
                "architecture": info.architecture or "",
                "container-runtime": info.container_runtime_version or "",
                "kubelet-version": info.kubelet_version or "",
            }
        )
    for k, v in (getattr(node.status, "allocatable", None) or {}).items():
        data[f"allocatable.{k}"] = str(v)
    provider_id = getattr(node.spec, "provider_id", None)
    if provider_id:
        data["provider-id"] = provider_id
    return Subtype(
        name="node",
        data=data,
        context={f"label.{k}": v for k, v in (node.metadata.labels or {}).items()},
    )


def _image_subtype(pods: list[Any]) -> Subtype:
    """Map container name -> image across running pods."""
    images: dict[str, Reading] = {}
    for pod in pods:
        for c in getattr(pod.spec, "containers", []) or []:
            images.setdefault(c.name, c.image or "")
    return Subtype(name="image", data=images)


class KubernetesCollector(Collector):
    """Reads API server version, node details and deployed images."""

    measurement_type = MeasurementType.K8S

    def __init__(
        self,
        kubeconfig: str | None = None,
        context: str | None = None,
        clients: KubeClients | None = None,
        node_name: str | None = None,
    ) -> None:
        self._kubeconfig = kubeconfig
        self._context = context
        self._clients = clients
        self.node_name = node_name or get_node_name()

    def _get_clients(self) -> KubeClients:
        if self._clients is None:
            self._clients = KubeClients.from_config(self._kubeconfig, self._context)
        return self._clients

    def _collect_sync(self) -> Measurement:
        clients = self._get_clients()
        subtypes = [_server_subtype(clients.version.get_code())]

        try:
            node = clients.core.read_node(name=self.node_name)
            subtypes.append(_node_subtype(node))
        except ApiException as e:
            # Running outside the cluster: the hostname is not a node name.
            if e.status != 404:
                raise
            logger.warning("node %s not found in cluster, skipping node details", self.node_name)

        pods = clients.core.list_pod_for_all_namespaces(
            field_selector="status.phase=Running",
            limit=DEFAULT_POD_LIST_LIMIT,
        )
        subtypes.append(_image_subtype(pods.items))
        return Measurement(type=self.measurement_type, subtypes=subtypes)

    async def collect(self) -> Measurement:
        logger.info("collecting kubernetes configuration")
        return await asyncio.to_thread(self._collect_sync)
