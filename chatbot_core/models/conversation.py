"""Conversation models: messages, statistics and export snapshots."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat a naive datetime as UTC; aware ones are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


class MessageRole(str, Enum):
    """Chat message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ChatMessage:
    """Single message in a conversation."""

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=generate_message_id)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.role = MessageRole(self.role)
        if isinstance(self.timestamp, datetime):
            self.timestamp = as_utc(self.timestamp)

    def to_dict(self) -> Dict:
        """Convert to dictionary (timestamps stay datetime objects)."""
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


@dataclass
class ConversationStats:
    """Derived statistics for one session."""

    message_count: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    system_messages: int = 0
    first_message: Optional[datetime] = None
    last_message: Optional[datetime] = None

    @classmethod
    def from_messages(cls, messages: List[ChatMessage]) -> "ConversationStats":
        if not messages:
            return cls()

        by_role = {role: 0 for role in MessageRole}
        for message in messages:
            by_role[message.role] += 1

        return cls(
            message_count=len(messages),
            user_messages=by_role[MessageRole.USER],
            assistant_messages=by_role[MessageRole.ASSISTANT],
            system_messages=by_role[MessageRole.SYSTEM],
            first_message=messages[0].timestamp,
            last_message=messages[-1].timestamp,
        )

    def to_dict(self) -> Dict:
        return {
            "message_count": self.message_count,
            "user_messages": self.user_messages,
            "assistant_messages": self.assistant_messages,
            "system_messages": self.system_messages,
            "first_message": self.first_message,
            "last_message": self.last_message,
        }


@dataclass
class ConversationExport:
    """Read-only snapshot of a session for backup or analysis."""

    session_id: str
    messages: List[ChatMessage]
    stats: ConversationStats
    exported_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict:
        return {
            "session_id": self.session_id,
            "messages": [m.to_dict() for m in self.messages],
            "stats": self.stats.to_dict(),
            "exported_at": self.exported_at,
        }
