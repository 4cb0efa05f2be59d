"""Node snapshotter: run collectors concurrently and aggregate one snapshot."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import TextIO

from node_snapshot import __version__
from node_snapshot.collector import CollectorFactory, default_factory
from node_snapshot.errors import CollectionTimeoutError, CollectorError
from node_snapshot.k8s.client import KubeClients, get_node_name
from node_snapshot.measurement import Snapshot
from node_snapshot.measurement.models import (
    KEY_SNAPSHOT_TIMESTAMP,
    KEY_SNAPSHOT_VERSION,
    KEY_SOURCE_NODE,
)
from node_snapshot.serializer import Format, Serializer, StreamWriter
from node_snapshot.snapshotter.agent import AgentConfig, measure_with_agent
from node_snapshot.snapshotter.metrics import SnapshotMetrics

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION_TIMEOUT = 300.0

METADATA_COLLECTOR = "metadata"


def _first_error(group: BaseExceptionGroup) -> BaseException:
    """Return the first non-cancellation leaf of an exception group."""
    for exc in group.exceptions:
        if isinstance(exc, BaseExceptionGroup):
            return _first_error(exc)
        if not isinstance(exc, asyncio.CancelledError):
            return exc
    return group


class NodeSnapshotter:
    """Collects node configuration locally, or through an agent Job.

    When ``agent_config`` is set and enabled, ``measure`` deploys the agent
    instead of running collectors in this process.
    """

    def __init__(
        self,
        version: str = __version__,
        factory: CollectorFactory | None = None,
        serializer: Serializer | None = None,
        agent_config: AgentConfig | None = None,
        metrics: SnapshotMetrics | None = None,
        collection_timeout: float = DEFAULT_COLLECTION_TIMEOUT,
        clients: KubeClients | None = None,
        log_sink: TextIO | None = None,
    ) -> None:
        self.version = version
        self.factory = factory
        self.serializer = serializer
        self.agent_config = agent_config
        self.metrics = metrics or SnapshotMetrics()
        self.collection_timeout = collection_timeout
        self.clients = clients
        self.log_sink = log_sink

    async def measure(self) -> None:
        """Capture a snapshot and emit it through the serializer."""
        if self.agent_config is not None and self.agent_config.enabled:
            await measure_with_agent(self.agent_config, clients=self.clients, log_sink=self.log_sink)
            return

        snap = await self.measure_locally()
        serializer = self.serializer or StreamWriter(Format.JSON)
        try:
            await serializer.serialize(snap)
        except Exception as e:
            logger.error("failed to serialize: %s", e)
            raise

    async def measure_locally(self, timeout: float | None = None) -> Snapshot:
        """Run every registered collector concurrently and return the snapshot.

        All collectors share one deadline. The first failure cancels the
        others and is raised once they have exited; no partial snapshot is
        ever returned.

        Raises:
            CollectorError: a collector failed.
            CollectionTimeoutError: the deadline expired.
        """
        factory = self.factory or default_factory()
        timeout = self.collection_timeout if timeout is None else timeout
        logger.debug("starting node snapshot with %d collectors", len(factory))

        snap = Snapshot()
        lock = asyncio.Lock()
        start = time.monotonic()
        try:
            async with asyncio.timeout(timeout):
                async with asyncio.TaskGroup() as tg:
                    tg.create_task(self._collect_metadata(snap, lock), name=METADATA_COLLECTOR)
                    for category in factory.categories():
                        tg.create_task(self._collect(factory, category, snap, lock), name=category)
        except TimeoutError as e:
            self.metrics.record_error()
            raise CollectionTimeoutError(f"snapshot collection did not finish within {timeout}s") from e
        except BaseExceptionGroup as eg:
            self.metrics.record_error()
            raise _first_error(eg)
        finally:
            self.metrics.collection_duration.observe(time.monotonic() - start)

        self.metrics.record_success(len(snap.measurements))
        logger.debug("snapshot collection complete with %d measurements", len(snap.measurements))
        return snap

    async def _collect_metadata(self, snap: Snapshot, lock: asyncio.Lock) -> None:
        """Stamp the snapshot with the node name, tool version and UTC timestamp."""
        start = time.monotonic()
        try:
            node_name = get_node_name()
            async with lock:
                snap.metadata[KEY_SNAPSHOT_VERSION] = self.version
                snap.metadata[KEY_SOURCE_NODE] = node_name
                snap.metadata[KEY_SNAPSHOT_TIMESTAMP] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            logger.debug("obtained node metadata: name=%s version=%s", node_name, self.version)
        finally:
            self.metrics.observe_collector(METADATA_COLLECTOR, time.monotonic() - start)

    async def _collect(
        self,
        factory: CollectorFactory,
        category: str,
        snap: Snapshot,
        lock: asyncio.Lock,
    ) -> None:
        """Run one collector and append its measurement under ``lock``."""
        start = time.monotonic()
        try:
            collector = factory.create(category)
            measurement = await collector.collect()
        except Exception as e:
            logger.error("failed to collect %s: %s", category, e)
            raise CollectorError(category, str(e)) from e
        finally:
            self.metrics.observe_collector(category, time.monotonic() - start)

        async with lock:
            snap.measurements.append(measurement)
