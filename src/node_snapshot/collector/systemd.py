"""Collect systemd unit properties via systemctl."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import shutil

from node_snapshot.collector.base import Collector
from node_snapshot.measurement import Measurement, MeasurementType, Reading, Subtype

logger = logging.getLogger(__name__)

# Properties dropped for privacy or noise
FILTERED_PROPERTIES = [
    "AllowedCPUs",
    "AllowedMemoryNodes",
    "Asserts",
    "BPFProgram",
    "BusName",
    "Id",
    "*Credential*",
]


def parse_properties(text: str) -> dict[str, Reading]:
    """Parse ``systemctl show`` KEY=value output, dropping filtered keys."""
    out: dict[str, Reading] = {}
    for line in text.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        if any(fnmatch.fnmatchcase(key, pat) for pat in FILTERED_PROPERTIES):
            continue
        out[key] = value
    return out


class SystemDCollector(Collector):
    """Reads properties of the configured systemd units.

    Hosts without systemctl (containers without the host mount, macOS)
    yield an empty measurement instead of an error.
    """

    measurement_type = MeasurementType.SYSTEMD

    def __init__(self, services: list[str] | None = None, systemctl: str = "systemctl") -> None:
        self.services = services or ["containerd.service"]
        self.systemctl = systemctl

    async def _show(self, unit: str) -> str:
        proc = await asyncio.create_subprocess_exec(
            self.systemctl,
            "show",
            unit,
            "--no-pager",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            raise
        if proc.returncode != 0:
            raise RuntimeError(f"systemctl show {unit} exited {proc.returncode}: {stderr.decode().strip()}")
        return stdout.decode()

    async def collect(self) -> Measurement:
        logger.info("collecting systemd service configurations")
        if shutil.which(self.systemctl) is None:
            logger.warning("systemctl not available, no systemd data will be collected")
            return Measurement(type=self.measurement_type)

        subtypes = []
        for unit in self.services:
            subtypes.append(Subtype(name=unit, data=parse_properties(await self._show(unit))))
        return Measurement(type=self.measurement_type, subtypes=subtypes)
