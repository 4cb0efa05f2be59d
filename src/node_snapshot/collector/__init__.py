"""Collectors: one capability per node data source."""

from node_snapshot.collector.base import Collector
from node_snapshot.collector.factory import CollectorFactory, default_factory

__all__ = [
    "Collector",
    "CollectorFactory",
    "default_factory",
]
