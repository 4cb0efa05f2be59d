"""Collect GPU hardware and driver details via nvidia-smi."""

from __future__ import annotations

import asyncio
import logging
import shutil

from node_snapshot.collector.base import Collector
from node_snapshot.measurement import Measurement, MeasurementType, Reading, Subtype

logger = logging.getLogger(__name__)

QUERY_FIELDS = [
    "index",
    "name",
    "uuid",
    "driver_version",
    "memory.total",
    "power.limit",
    "vbios_version",
    "compute_mode",
]


def parse_query_output(text: str) -> list[Subtype]:
    """One subtype per GPU from ``--format=csv,noheader,nounits`` output."""
    subtypes = []
    for line in text.splitlines():
        if not line.strip():
            continue
        values = [v.strip() for v in line.split(",")]
        row = dict(zip(QUERY_FIELDS, values))
        data: dict[str, Reading] = {k: v for k, v in row.items() if k != "index"}
        subtypes.append(Subtype(name=f"gpu{row.get('index', len(subtypes))}", data=data))
    return subtypes


class GPUCollector(Collector):
    """Queries nvidia-smi; a node without it reports zero GPUs."""

    measurement_type = MeasurementType.GPU

    def __init__(self, smi: str = "nvidia-smi") -> None:
        self.smi = smi

    async def collect(self) -> Measurement:
        logger.info("collecting GPU configuration")
        if shutil.which(self.smi) is None:
            logger.warning("%s not found, reporting no GPUs", self.smi)
            return Measurement(
                type=self.measurement_type,
                subtypes=[Subtype(name="smi", data={"gpu-count": 0})],
            )

        proc = await asyncio.create_subprocess_exec(
            self.smi,
            f"--query-gpu={','.join(QUERY_FIELDS)}",
            "--format=csv,noheader,nounits",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            raise
        if proc.returncode != 0:
            raise RuntimeError(f"{self.smi} exited {proc.returncode}: {stderr.decode().strip()}")

        gpus = parse_query_output(stdout.decode())
        summary = Subtype(name="smi", data={"gpu-count": len(gpus)})
        if gpus:
            summary.data["driver"] = gpus[0].data.get("driver_version", "")
            summary.data["model"] = gpus[0].data.get("name", "")
        return Measurement(type=self.measurement_type, subtypes=[summary, *gpus])
