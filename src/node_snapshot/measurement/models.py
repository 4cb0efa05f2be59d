"""Structured models for node measurements and snapshots."""

from __future__ import annotations

from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

# Scalar values a measurement may hold. bool is listed first so that
# True/False are not coerced to 1/0.
Reading = Union[bool, int, float, str]

SNAPSHOT_KIND = "Snapshot"
SNAPSHOT_API_VERSION = "snapshot.node-snapshot.io/v1"

# Snapshot metadata keys
KEY_SNAPSHOT_VERSION = "snapshot-version"
KEY_SOURCE_NODE = "source-node"
KEY_SNAPSHOT_TIMESTAMP = "snapshot-timestamp"


class MeasurementType(str, Enum):
    """Data source category of a measurement."""

    K8S = "K8s"
    GPU = "GPU"
    OS = "OS"
    SYSTEMD = "SystemD"

    def __str__(self) -> str:
        return self.value


class Subtype(BaseModel):
    """Named group of readings within a measurement."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(default="", alias="subtype")
    data: dict[str, Reading] = Field(default_factory=dict)
    context: dict[str, str] = Field(default_factory=dict)

    def get(self, key: str) -> Reading | None:
        return self.data.get(key)


class Measurement(BaseModel):
    """Readings collected from a single data source category."""

    type: MeasurementType
    subtypes: list[Subtype] = Field(default_factory=list)

    def subtype(self, name: str) -> Subtype | None:
        """Return the subtype with the given name, or None."""
        for st in self.subtypes:
            if st.name == name:
                return st
        return None


class Snapshot(BaseModel):
    """Complete, consistent aggregate of all measurements from one collection."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str = SNAPSHOT_KIND
    api_version: str = Field(default=SNAPSHOT_API_VERSION, alias="apiVersion")
    metadata: dict[str, str] = Field(default_factory=dict)
    measurements: list[Measurement] = Field(default_factory=list)
