"""Serializers: write a snapshot to stdout, a file, or a ConfigMap."""

from __future__ import annotations

import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TextIO

from kubernetes.client.rest import ApiException

from node_snapshot.errors import InvalidURIError
from node_snapshot.k8s.client import KubeClients, server_side_apply
from node_snapshot.measurement.models import (
    KEY_SNAPSHOT_TIMESTAMP,
    KEY_SNAPSHOT_VERSION,
    SNAPSHOT_KIND,
)
from node_snapshot.serializer.formats import Format, encode

logger = logging.getLogger(__name__)

CONFIGMAP_URI_SCHEME = "cm://"
STDOUT_URI = "stdout://"

# Result artifact keys
KEY_FORMAT = "format"
KEY_TIMESTAMP = "timestamp"
SNAPSHOT_KEY_PREFIX = "snapshot."


def is_stdout(output: str | None) -> bool:
    return output is None or output.strip() in ("", "-", STDOUT_URI)


def is_configmap_uri(output: str | None) -> bool:
    return bool(output) and output.startswith(CONFIGMAP_URI_SCHEME)


def parse_configmap_uri(uri: str) -> tuple[str, str]:
    """Split ``cm://namespace/name`` into (namespace, name)."""
    if not uri.startswith(CONFIGMAP_URI_SCHEME):
        raise InvalidURIError(f"invalid ConfigMap URI: expected {CONFIGMAP_URI_SCHEME}namespace/name, got {uri!r}")
    namespace, sep, name = uri[len(CONFIGMAP_URI_SCHEME):].partition("/")
    if not sep or not namespace or not name or "/" in name:
        raise InvalidURIError(f"invalid ConfigMap URI: expected {CONFIGMAP_URI_SCHEME}namespace/name, got {uri!r}")
    return namespace, name


def write_to_file(path: str | Path, data: bytes) -> None:
    """Write raw bytes to a file, creating parent directories."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(data)


class Serializer(ABC):
    """Emits a value to some destination."""

    @abstractmethod
    async def serialize(self, value: Any) -> None: ...


class StreamWriter(Serializer):
    """Writes to a text stream (stdout by default)."""

    def __init__(self, fmt: Format = Format.JSON, stream: TextIO | None = None) -> None:
        self.format = fmt
        self.stream = stream

    async def serialize(self, value: Any) -> None:
        stream = self.stream or sys.stdout
        stream.write(encode(value, self.format).decode())
        stream.flush()


class FileWriter(Serializer):
    """Writes to a local file."""

    def __init__(self, path: str | Path, fmt: Format = Format.JSON) -> None:
        self.path = Path(path)
        self.format = fmt

    async def serialize(self, value: Any) -> None:
        await asyncio.to_thread(write_to_file, self.path, encode(value, self.format))
        logger.info("snapshot written to %s", self.path)


class ConfigMapWriter(Serializer):
    """Server-side applies the snapshot into a ConfigMap.

    The ConfigMap holds ``snapshot.<ext>`` with the content, ``format`` and
    ``timestamp``. This is the result artifact the agent Job leaves behind.
    """

    def __init__(
        self,
        namespace: str,
        name: str,
        fmt: Format = Format.YAML,
        clients: KubeClients | None = None,
    ) -> None:
        if fmt is Format.TABLE:
            logger.warning("table format is not machine readable, storing YAML in ConfigMap")
            fmt = Format.YAML
        self.namespace = namespace
        self.name = name
        self.format = fmt
        self._clients = clients

    def _body(self, value: Any) -> dict[str, Any]:
        metadata = getattr(value, "metadata", None) or {}
        timestamp = metadata.get(KEY_SNAPSHOT_TIMESTAMP) or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": {
                    "app.kubernetes.io/name": "node-snapshot",
                    "app.kubernetes.io/component": getattr(value, "kind", SNAPSHOT_KIND),
                    "app.kubernetes.io/version": metadata.get(KEY_SNAPSHOT_VERSION, "unknown"),
                },
            },
            "data": {
                f"{SNAPSHOT_KEY_PREFIX}{self.format.extension}": encode(value, self.format).decode(),
                KEY_FORMAT: self.format.value,
                KEY_TIMESTAMP: timestamp,
            },
        }

    def _apply(self, body: dict[str, Any]) -> None:
        clients = self._clients or KubeClients.from_config()
        server_side_apply(clients.core.patch_namespaced_config_map, body, name=self.name, namespace=self.namespace)

    async def serialize(self, value: Any) -> None:
        logger.info("applying ConfigMap %s/%s (format=%s)", self.namespace, self.name, self.format.value)
        try:
            await asyncio.to_thread(self._apply, self._body(value))
        except ApiException as e:
            raise RuntimeError(f"failed to apply ConfigMap {self.namespace}/{self.name}: {e.reason}") from e


def new_writer(fmt: Format, output: str | None, clients: KubeClients | None = None) -> Serializer:
    """Pick a serializer for an output destination.

    ``None``, ``""``, ``-`` and ``stdout://`` mean stdout; ``cm://ns/name``
    means a ConfigMap; anything else is a file path.
    """
    if is_stdout(output):
        return StreamWriter(fmt)
    output = output.strip()
    if is_configmap_uri(output):
        namespace, name = parse_configmap_uri(output)
        return ConfigMapWriter(namespace, name, fmt, clients=clients)
    return FileWriter(output, fmt)

