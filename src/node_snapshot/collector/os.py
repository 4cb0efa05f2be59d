"""Collect OS configuration: release, kernel command line, modules, sysctl."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from node_snapshot.collector.base import Collector
from node_snapshot.measurement import Measurement, MeasurementType, Reading, Subtype

logger = logging.getLogger(__name__)

RELEASE_PATHS = (Path("/etc/os-release"), Path("/usr/lib/os-release"))
CMDLINE_PATH = Path("/proc/cmdline")
MODULES_PATH = Path("/proc/modules")
SYSCTL_ROOT = Path("/proc/sys")

# sysctl subtrees worth recording for GPU/network tuning
SYSCTL_PREFIXES = ("kernel", "net/core", "net/ipv4/tcp_", "vm")


def parse_os_release(text: str) -> dict[str, Reading]:
    """Parse os-release KEY=value lines, stripping quotes and comments."""
    out: dict[str, Reading] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip().strip("\"'")
        if value:
            out[key.strip()] = value
    return out


def parse_cmdline(text: str) -> dict[str, Reading]:
    """Parse kernel boot parameters; flags without a value map to ''."""
    out: dict[str, Reading] = {}
    for token in text.split():
        key, _, value = token.partition("=")
        out[key] = value
    return out


def parse_modules(text: str) -> dict[str, Reading]:
    """Loaded kernel module names from /proc/modules."""
    return {line.split()[0]: True for line in text.splitlines() if line.strip()}


class OSCollector(Collector):
    """Reads OS facts from /etc and /proc."""

    measurement_type = MeasurementType.OS

    def __init__(self, root: Path | None = None) -> None:
        # root lets tests point the collector at a fake filesystem
        self.root = root or Path("/")

    def _path(self, p: Path) -> Path:
        return self.root / p.relative_to("/")

    def _release(self) -> Subtype:
        for p in RELEASE_PATHS:
            path = self._path(p)
            if path.exists():
                return Subtype(name="release", data=parse_os_release(path.read_text()))
        raise FileNotFoundError("no os-release file found")

    def _grub(self) -> Subtype:
        return Subtype(name="grub", data=parse_cmdline(self._path(CMDLINE_PATH).read_text()))

    def _kmod(self) -> Subtype:
        path = self._path(MODULES_PATH)
        data = parse_modules(path.read_text()) if path.exists() else {}
        return Subtype(name="kmod", data=data)

    def _sysctl(self) -> Subtype:
        root = self._path(SYSCTL_ROOT)
        data: dict[str, Reading] = {}
        if not root.is_dir():
            return Subtype(name="sysctl", data=data)
        for path in sorted(root.rglob("*")):
            rel = path.relative_to(root).as_posix()
            if not path.is_file() or not rel.startswith(SYSCTL_PREFIXES):
                continue
            try:
                data["/proc/sys/" + rel] = path.read_text().strip()
            except OSError:
                # write-only or permission-restricted entries
                continue
        return Subtype(name="sysctl", data=data)

    def _collect_sync(self) -> Measurement:
        return Measurement(
            type=self.measurement_type,
            subtypes=[self._grub(), self._sysctl(), self._kmod(), self._release()],
        )

    async def collect(self) -> Measurement:
        logger.info("collecting OS configuration")
        return await asyncio.to_thread(self._collect_sync)
