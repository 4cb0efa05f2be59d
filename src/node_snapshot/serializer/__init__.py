"""Serializers for snapshot output (stdout, file, ConfigMap)."""

from node_snapshot.serializer.formats import Format, encode
from node_snapshot.serializer.writer import (
    CONFIGMAP_URI_SCHEME,
    STDOUT_URI,
    ConfigMapWriter,
    FileWriter,
    Serializer,
    StreamWriter,
    is_configmap_uri,
    is_stdout,
    new_writer,
    parse_configmap_uri,
    write_to_file,
)

__all__ = [
    "CONFIGMAP_URI_SCHEME",
    "STDOUT_URI",
    "ConfigMapWriter",
    "FileWriter",
    "Format",
    "Serializer",
    "StreamWriter",
    "encode",
    "is_configmap_uri",
    "is_stdout",
    "new_writer",
    "parse_configmap_uri",
    "write_to_file",
]
