"""Collector capability: produce one typed measurement or fail."""

from __future__ import annotations

from abc import ABC, abstractmethod

from node_snapshot.measurement import Measurement, MeasurementType


class Collector(ABC):
    """Gathers one category of node configuration.

    Collectors run inside the coordinator's deadline. They are cancelled
    when the deadline expires or a sibling collector fails, so any blocking
    work should be offloaded with ``asyncio.to_thread`` or an async
    subprocess rather than run directly on the event loop.
    """

    measurement_type: MeasurementType

    @abstractmethod
    async def collect(self) -> Measurement:
        """Collect the measurement for this category.

        Raises:
            Exception: any failure; the coordinator wraps it in CollectorError.
        """
        ...
