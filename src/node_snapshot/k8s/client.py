"""Kubernetes client construction (in-cluster or kubeconfig)."""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from typing import Any, Callable

from kubernetes import client, config

logger = logging.getLogger(__name__)

# Field manager recorded on every server-side apply.
FIELD_MANAGER = "node-snapshot"

# Content type for server-side apply patches.
APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"


def load_kube_config(kubeconfig_path: str | None = None, context: str | None = None) -> client.Configuration:
    """Load in-cluster or kubeconfig-based configuration.

    An explicit kubeconfig path or context always wins over in-cluster config.
    """
    if not kubeconfig_path and not context:
        try:
            config.load_incluster_config()
            logger.debug("using in-cluster kubernetes configuration")
            return client.Configuration.get_default_copy()
        except config.ConfigException:
            pass
    kwargs: dict[str, Any] = {}
    if kubeconfig_path:
        kwargs["config_file"] = str(kubeconfig_path)
    if context:
        kwargs["context"] = context
    config.load_kube_config(**kwargs)
    return client.Configuration.get_default_copy()


@dataclass
class KubeClients:
    """Typed API groups used by node-snapshot, sharing one ApiClient."""

    core: client.CoreV1Api
    rbac: client.RbacAuthorizationV1Api
    batch: client.BatchV1Api
    authz: client.AuthorizationV1Api
    version: client.VersionApi

    @classmethod
    def from_config(cls, kubeconfig: str | None = None, context: str | None = None) -> "KubeClients":
        cfg = load_kube_config(kubeconfig, context)
        api = client.ApiClient(cfg)
        return cls(
            core=client.CoreV1Api(api),
            rbac=client.RbacAuthorizationV1Api(api),
            batch=client.BatchV1Api(api),
            authz=client.AuthorizationV1Api(api),
            version=client.VersionApi(api),
        )


def to_manifest(obj: Any) -> dict[str, Any]:
    """Render a kubernetes client model as a plain manifest dict."""
    if isinstance(obj, dict):
        return obj
    return client.ApiClient().sanitize_for_serialization(obj)


def server_side_apply(patch: Callable[..., Any], body: Any, **kwargs: Any) -> Any:
    """Create-or-update an object through server-side apply.

    ``patch`` is a typed ``patch_*`` API method; ``kwargs`` carry its name
    and namespace arguments. Re-applying the same manifest is a no-op.
    """
    return patch(
        body=to_manifest(body),
        field_manager=FIELD_MANAGER,
        force=True,
        _content_type=APPLY_PATCH_CONTENT_TYPE,
        **kwargs,
    )


def get_node_name() -> str:
    """Return the node this process runs on.

    Agent pods receive NODE_NAME through the downward API; elsewhere the
    hostname is the best available identity.
    """
    for var in ("NODE_NAME", "KUBERNETES_NODE_NAME"):
        value = os.environ.get(var)
        if value:
            return value
    return socket.gethostname()
