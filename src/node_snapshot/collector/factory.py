"""Collector registry: maps a category name to a collector constructor."""

from __future__ import annotations

import logging
from typing import Callable

from node_snapshot.collector.base import Collector

logger = logging.getLogger(__name__)

CollectorConstructor = Callable[[], Collector]

# Category names of the built-in collectors; also used as metric labels.
K8S = "k8s"
SYSTEMD = "systemd"
OS = "os"
GPU = "gpu"

DEFAULT_SYSTEMD_SERVICES = [
    "containerd.service",
    "docker.service",
    "kubelet.service",
]


class CollectorFactory:
    """Registry of collector constructors keyed by category name.

    The snapshotter only asks the factory for collectors; tests register
    fakes under the same categories.
    """

    def __init__(self) -> None:
        self._constructors: dict[str, CollectorConstructor] = {}

    def register(self, category: str, constructor: CollectorConstructor) -> None:
        """Register (or replace) the constructor for a category."""
        if category in self._constructors:
            logger.debug("replacing collector for %s", category)
        self._constructors[category] = constructor

    def unregister(self, category: str) -> None:
        self._constructors.pop(category, None)

    def create(self, category: str) -> Collector:
        try:
            constructor = self._constructors[category]
        except KeyError:
            raise KeyError(f"no collector registered for {category!r}") from None
        return constructor()

    def categories(self) -> list[str]:
        """Registered categories in registration order."""
        return list(self._constructors)

    def __contains__(self, category: object) -> bool:
        return category in self._constructors

    def __len__(self) -> int:
        return len(self._constructors)


def default_factory(
    systemd_services: list[str] | None = None,
    kubeconfig: str | None = None,
    context: str | None = None,
) -> CollectorFactory:
    """Factory with the production K8s, GPU, OS and SystemD collectors."""
    from node_snapshot.collector.gpu import GPUCollector
    from node_snapshot.collector.k8s import KubernetesCollector
    from node_snapshot.collector.os import OSCollector
    from node_snapshot.collector.systemd import SystemDCollector

    services = list(systemd_services or DEFAULT_SYSTEMD_SERVICES)
    factory = CollectorFactory()
    factory.register(K8S, lambda: KubernetesCollector(kubeconfig=kubeconfig, context=context))
    factory.register(SYSTEMD, lambda: SystemDCollector(services=services))
    factory.register(OS, OSCollector)
    factory.register(GPU, GPUCollector)
    return factory
