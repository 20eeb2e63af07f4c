"""Storage module - Serialization of conversation data."""

from .serializers import (
    deserialize_export,
    deserialize_message,
    parse_timestamp,
    serialize_export,
    serialize_message,
)

__all__ = [
    "deserialize_export",
    "deserialize_message",
    "parse_timestamp",
    "serialize_export",
    "serialize_message",
]
