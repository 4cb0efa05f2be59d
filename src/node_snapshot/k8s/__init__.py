"""Kubernetes access: client construction and the snapshot agent."""

from node_snapshot.k8s.client import KubeClients, get_node_name, load_kube_config

__all__ = [
    "KubeClients",
    "get_node_name",
    "load_kube_config",
]
