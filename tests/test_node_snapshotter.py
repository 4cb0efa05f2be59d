"""Tests for concurrent local collection in NodeSnapshotter."""

import asyncio
import io
import json
import time

import pytest

from node_snapshot.collector.factory import GPU, K8S, OS, SYSTEMD, CollectorFactory
from node_snapshot.errors import CollectionTimeoutError, CollectorError
from node_snapshot.measurement import MeasurementType
from node_snapshot.measurement.models import KEY_SNAPSHOT_TIMESTAMP, KEY_SNAPSHOT_VERSION, KEY_SOURCE_NODE
from node_snapshot.serializer import Format, StreamWriter
from node_snapshot.snapshotter import NodeSnapshotter, SnapshotMetrics

from conftest import FakeCollector


@pytest.fixture
def metrics():
    return SnapshotMetrics()


@pytest.fixture
def snapshotter(fake_factory, metrics):
    return NodeSnapshotter(version="1.2.3", factory=fake_factory, metrics=metrics, collection_timeout=5)


class TestMeasureLocally:
    @pytest.mark.asyncio
    async def test_all_collectors_succeed(self, snapshotter, monkeypatch):
        """Every category contributes exactly one measurement plus metadata."""
        monkeypatch.setenv("NODE_NAME", "gpu-node-1")
        snap = await snapshotter.measure_locally()

        types = sorted(m.type.value for m in snap.measurements)
        assert types == sorted(t.value for t in MeasurementType)
        assert snap.metadata[KEY_SNAPSHOT_VERSION] == "1.2.3"
        assert snap.metadata[KEY_SOURCE_NODE] == "gpu-node-1"
        assert snap.metadata[KEY_SNAPSHOT_TIMESTAMP].endswith("Z")
        assert snap.kind == "Snapshot"

    @pytest.mark.asyncio
    async def test_collectors_run_concurrently(self, metrics):
        """Four 0.2s collectors finish well under their summed duration."""
        factory = CollectorFactory()
        for category, mtype in [
            (K8S, MeasurementType.K8S),
            (SYSTEMD, MeasurementType.SYSTEMD),
            (OS, MeasurementType.OS),
            (GPU, MeasurementType.GPU),
        ]:
            factory.register(category, lambda t=mtype: FakeCollector(t, delay=0.2))
        snapshotter = NodeSnapshotter(factory=factory, metrics=metrics)

        start = time.monotonic()
        snap = await snapshotter.measure_locally()
        assert time.monotonic() - start < 0.7
        assert len(snap.measurements) == 4

    @pytest.mark.asyncio
    async def test_failure_cancels_siblings(self, fake_collectors, snapshotter):
        """A failing K8s collector cancels the slow ones and surfaces as CollectorError."""
        fake_collectors[K8S].delay = 0.1
        fake_collectors[K8S].error = RuntimeError("api server unreachable")
        for category in (SYSTEMD, OS, GPU):
            fake_collectors[category].delay = 10

        start = time.monotonic()
        with pytest.raises(CollectorError) as exc_info:
            await snapshotter.measure_locally()

        assert time.monotonic() - start < 2
        assert exc_info.value.collector == K8S
        assert "api server unreachable" in str(exc_info.value)
        for category in (SYSTEMD, OS, GPU):
            assert fake_collectors[category].cancelled

    @pytest.mark.asyncio
    async def test_failure_returns_no_partial_snapshot(self, fake_collectors, snapshotter, metrics):
        """Fast successes are discarded when another collector fails."""
        fake_collectors[GPU].delay = 0.05
        fake_collectors[GPU].error = ValueError("nvidia-smi exited 9")

        with pytest.raises(CollectorError):
            await snapshotter.measure_locally()

        assert metrics.sample("node_snapshot_collection_total", {"status": "error"}) == 1.0
        assert metrics.sample("node_snapshot_collection_total", {"status": "success"}) is None

    @pytest.mark.asyncio
    async def test_deadline_expiry(self, fake_collectors, snapshotter):
        """Collectors still running at the deadline raise CollectionTimeoutError."""
        fake_collectors[OS].delay = 10

        with pytest.raises(CollectionTimeoutError):
            await snapshotter.measure_locally(timeout=0.1)
        assert fake_collectors[OS].cancelled

    @pytest.mark.asyncio
    async def test_caller_cancellation_reaches_collectors(self, fake_collectors, snapshotter):
        """Cancelling the caller cancels every in-flight collector."""
        for collector in fake_collectors.values():
            collector.delay = 10

        task = asyncio.create_task(snapshotter.measure_locally())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert all(c.cancelled for c in fake_collectors.values())

    @pytest.mark.asyncio
    async def test_success_metrics(self, snapshotter, metrics):
        """Success increments the counter and records measurement count and durations."""
        await snapshotter.measure_locally()

        assert metrics.sample("node_snapshot_collection_total", {"status": "success"}) == 1.0
        assert metrics.sample("node_snapshot_measurements") == 4.0
        assert metrics.sample("node_snapshot_collection_duration_seconds_count") == 1.0
        assert metrics.sample("node_snapshot_collector_duration_seconds_count", {"collector": K8S}) == 1.0
        assert metrics.sample("node_snapshot_collector_duration_seconds_count", {"collector": "metadata"}) == 1.0


class TestMeasure:
    @pytest.mark.asyncio
    async def test_serializes_snapshot(self, fake_factory, metrics):
        """measure() hands the complete snapshot to the serializer."""
        out = io.StringIO()
        snapshotter = NodeSnapshotter(
            factory=fake_factory,
            metrics=metrics,
            serializer=StreamWriter(Format.JSON, stream=out),
        )
        await snapshotter.measure()

        doc = json.loads(out.getvalue())
        assert doc["kind"] == "Snapshot"
        assert doc["apiVersion"] == "snapshot.node-snapshot.io/v1"
        assert len(doc["measurements"]) == 4

    @pytest.mark.asyncio
    async def test_failure_writes_nothing(self, fake_collectors, fake_factory, metrics):
        out = io.StringIO()
        fake_collectors[SYSTEMD].error = RuntimeError("boom")
        snapshotter = NodeSnapshotter(
            factory=fake_factory,
            metrics=metrics,
            serializer=StreamWriter(Format.JSON, stream=out),
        )
        with pytest.raises(CollectorError):
            await snapshotter.measure()
        assert out.getvalue() == ""
