"""Measurement data model: typed readings grouped by data source."""

from node_snapshot.measurement.models import (
    Measurement,
    MeasurementType,
    Reading,
    Snapshot,
    Subtype,
)

__all__ = [
    "Measurement",
    "MeasurementType",
    "Reading",
    "Snapshot",
    "Subtype",
]
