"""Serialization utilities for conversation messages and exports."""

from typing import Dict, Any, Mapping, Union
from datetime import datetime, timezone

from ..models.conversation import (
    ChatMessage,
    ConversationExport,
    ConversationStats,
    as_utc,
    generate_message_id,
    utc_now,
)


def parse_timestamp(value: Union[datetime, str, int, float]) -> datetime:
    """
    Convert a timestamp to an aware UTC datetime.

    Accepts datetime objects (naive ones are taken as UTC), ISO 8601
    strings (including a trailing ``Z``) and epoch seconds.

    Raises:
        ValueError: If a string is not ISO 8601
        TypeError: For any other type
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, timezone.utc)
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")

    return as_utc(parsed)


def _isoformat(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def serialize_message(message: ChatMessage) -> Dict[str, Any]:
    """
    Serialize a message for JSON storage.

    Converts the timestamp to an ISO format string.
    """
    data = message.to_dict()
    data["timestamp"] = _isoformat(data["timestamp"])
    data["metadata"] = dict(data["metadata"])
    return data


def deserialize_message(data: Mapping[str, Any]) -> ChatMessage:
    """
    Build a message from a mapping.

    A missing timestamp means now and a missing id gets a fresh one.

    Raises:
        KeyError: If role or content is missing
        ValueError: If the role or timestamp is invalid
    """
    timestamp = data.get("timestamp")
    return ChatMessage(
        role=data["role"],
        content=data["content"],
        timestamp=parse_timestamp(timestamp) if timestamp is not None else utc_now(),
        id=data.get("id") or generate_message_id(),
        metadata=dict(data.get("metadata") or {}),
    )


def serialize_export(export: ConversationExport) -> Dict[str, Any]:
    """Serialize an export snapshot with every datetime as an ISO string."""
    stats = export.stats.to_dict()
    for key in ("first_message", "last_message"):
        stats[key] = _isoformat(stats[key])

    return {
        "session_id": export.session_id,
        "messages": [serialize_message(m) for m in export.messages],
        "stats": stats,
        "exported_at": _isoformat(export.exported_at),
    }


def deserialize_export(data: Mapping[str, Any]) -> ConversationExport:
    """
    Rebuild an export snapshot from serialized data.

    Statistics are recomputed from the messages rather than trusted.
    """
    messages = [deserialize_message(m) for m in data.get("messages", [])]
    exported_at = data.get("exported_at")

    return ConversationExport(
        session_id=data["session_id"],
        messages=messages,
        stats=ConversationStats.from_messages(messages),
        exported_at=parse_timestamp(exported_at) if exported_at is not None else utc_now(),
    )
