"""Snapshot orchestration: local collection or agent Job."""

from node_snapshot.snapshotter.agent import (
    AgentConfig,
    CleanupPolicy,
    Toleration,
    measure_with_agent,
    parse_node_selectors,
    parse_tolerations,
)
from node_snapshot.snapshotter.metrics import SnapshotMetrics
from node_snapshot.snapshotter.node import NodeSnapshotter

__all__ = [
    "AgentConfig",
    "CleanupPolicy",
    "NodeSnapshotter",
    "SnapshotMetrics",
    "Toleration",
    "measure_with_agent",
    "parse_node_selectors",
    "parse_tolerations",
]
