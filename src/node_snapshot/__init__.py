"""node-snapshot: capture node configuration snapshots locally or through a cluster agent Job."""

__version__ = "0.1.0"
