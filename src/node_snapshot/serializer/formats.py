"""Output formats and byte-level encoders."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

import yaml
from pydantic import BaseModel


class Format(str, Enum):
    """Supported output formats."""

    JSON = "json"
    YAML = "yaml"
    TABLE = "table"

    @property
    def extension(self) -> str:
        return {"json": "json", "yaml": "yaml", "table": "txt"}[self.value]

    @classmethod
    def parse(cls, value: str) -> "Format":
        try:
            return cls(value.lower())
        except ValueError:
            supported = ", ".join(f.value for f in cls)
            raise ValueError(f"unknown output format {value!r} (supported: {supported})") from None


def to_document(value: Any) -> Any:
    """Convert pydantic models to plain data using wire field names."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


def _flatten(out: dict[str, Any], value: Any, prefix: str) -> None:
    if isinstance(value, dict):
        for k, v in value.items():
            _flatten(out, v, f"{prefix}.{k}" if prefix else str(k))
    elif isinstance(value, list):
        for i, v in enumerate(value):
            _flatten(out, v, f"{prefix}[{i}]")
    else:
        out[prefix or "value"] = value


def encode(value: Any, fmt: Format) -> bytes:
    """Serialize a value (model or plain data) to bytes in the given format."""
    doc = to_document(value)
    if fmt is Format.JSON:
        return (json.dumps(doc, indent=2) + "\n").encode()
    if fmt is Format.YAML:
        return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False).encode()
    flat: dict[str, Any] = {}
    _flatten(flat, doc, "")
    width = max((len(k) for k in flat), default=0)
    lines = [f"{k.ljust(width)}  {v}" for k, v in flat.items()]
    return ("\n".join(lines) + "\n").encode()
