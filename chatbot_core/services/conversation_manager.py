"""Conversation history management per session."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from ..core.config import ConversationConfig, merge_config
from ..core.exceptions import InvalidMessageFormatException, SessionExistsException
from ..models.chat import ChatContext
from ..models.conversation import (
    ChatMessage,
    ConversationExport,
    ConversationStats,
    MessageRole,
    utc_now,
)
from ..storage.serializers import deserialize_message, parse_timestamp

logger = logging.getLogger(__name__)

MessageLike = Union[ChatMessage, Mapping[str, Any]]

REQUIRED_FIELDS = ("role", "content", "timestamp")
VALID_ROLES = {role.value for role in MessageRole}


class ConversationManager:
    """
    Ordered, in-memory message history keyed by session id.

    Appends never truncate. When ``max_history_length`` is configured the
    stored history is trimmed to the most recent messages on the next read
    (or by ``trim_conversation``). Unknown sessions read as empty.
    """

    def __init__(
        self,
        config: Optional[ConversationConfig] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
        **overrides
    ):
        """
        Initialize conversation manager.

        Args:
            config: Conversation configuration (defaults if omitted)
            clock: Returns the current aware datetime
            logger: Optional logger; the module logger is used otherwise
            **overrides: Individual ConversationConfig fields
        """
        self.config = merge_config(config or ConversationConfig(), overrides)
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

        self._conversations: Dict[str, List[ChatMessage]] = {}
        self._last_activity: Dict[str, datetime] = {}
        self._last_cleanup = clock()

    # Writes

    def add_message(self, session_id: str, message: MessageLike) -> ChatMessage:
        """Append a message to a session, creating the session if needed."""
        stored = self._coerce(message)
        self._conversations.setdefault(session_id, []).append(stored)
        self._touch(session_id)

        self._logger.debug(f"Added {stored.role.value} message to session {session_id}")
        return stored

    def add_messages(self, session_id: str, messages: Iterable[MessageLike]) -> List[ChatMessage]:
        """Append several messages in the given order."""
        stored = [self._coerce(m) for m in messages]
        self._conversations.setdefault(session_id, []).extend(stored)
        self._touch(session_id)

        self._logger.debug(f"Added {len(stored)} messages to session {session_id}")
        return stored

    def clear_conversation(self, session_id: str) -> bool:
        """Remove one session's history. Returns True if it existed."""
        existed = self._conversations.pop(session_id, None) is not None
        self._last_activity.pop(session_id, None)

        if existed:
            self._logger.info(f"Cleared conversation for session {session_id}")
        return existed

    def clear_all_conversations(self) -> None:
        count = len(self._conversations)
        self._conversations.clear()
        self._last_activity.clear()
        self._logger.info(f"Cleared {count} conversations")

    def trim_conversation(self, session_id: str) -> int:
        """
        Trim a session to ``max_history_length`` messages.

        Returns:
            Number of messages removed
        """
        messages = self._conversations.get(session_id)
        limit = self.config.max_history_length
        if not messages or limit is None or len(messages) <= limit:
            return 0

        removed = len(messages) - limit
        del messages[:removed]
        self._logger.debug(f"Trimmed {removed} messages from session {session_id}")
        return removed

    # Reads

    def get_conversation_history(self, session_id: str) -> List[ChatMessage]:
        """Full history in insertion order; empty for an unknown session."""
        return list(self._history(session_id))

    def get_recent_messages(self, session_id: str, count: int) -> List[ChatMessage]:
        """Last ``count`` messages, oldest first."""
        if count <= 0:
            return []
        return self._history(session_id)[-count:]

    def get_messages_since(self, session_id: str, since: datetime) -> List[ChatMessage]:
        """Messages with ``timestamp >= since``, in order."""
        since = parse_timestamp(since)
        return [m for m in self._history(session_id) if m.timestamp >= since]

    def get_conversation_context(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        system_prompt: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ChatContext:
        """Assemble the provider context for a session without changing it."""
        return ChatContext(
            session_id=session_id,
            user_id=user_id if user_id is not None else "anonymous",
            messages=self.get_conversation_history(session_id),
            system_prompt=system_prompt,
            metadata=metadata if metadata is not None else {},
        )

    def get_conversation_stats(self, session_id: str) -> ConversationStats:
        return ConversationStats.from_messages(self._history(session_id))

    def is_session_active(self, session_id: str) -> bool:
        return bool(self._conversations.get(session_id))

    def get_active_sessions(self) -> Set[str]:
        return {sid for sid, messages in self._conversations.items() if messages}

    def get_session_count(self) -> int:
        return len(self.get_active_sessions())

    # Import / export

    def export_conversation(self, session_id: str) -> ConversationExport:
        """Snapshot a session's history and statistics."""
        messages = self.get_conversation_history(session_id)
        return ConversationExport(
            session_id=session_id,
            messages=messages,
            stats=ConversationStats.from_messages(messages),
            exported_at=self._clock(),
        )

    def import_conversation(
        self,
        session_id: str,
        messages: Iterable[MessageLike],
        overwrite: bool = False
    ) -> int:
        """
        Replace a session's history with imported messages.

        Every message is validated before anything is stored, so a failed
        import leaves the session untouched.

        Args:
            session_id: Target session
            messages: ChatMessage objects or mappings with role, content and timestamp
            overwrite: Replace an existing non-empty history

        Returns:
            Number of messages imported

        Raises:
            SessionExistsException: If the session has history and overwrite is False
            InvalidMessageFormatException: If any message is malformed
        """
        if self.is_session_active(session_id) and not overwrite:
            raise SessionExistsException(session_id)

        imported = [
            self._validate_import(session_id, index, message)
            for index, message in enumerate(messages)
        ]

        if imported:
            self._conversations[session_id] = imported
            self._touch(session_id)
        else:
            self._conversations.pop(session_id, None)
            self._last_activity.pop(session_id, None)

        self._logger.info(f"Imported {len(imported)} messages into session {session_id}")
        return len(imported)

    # Expiry

    def cleanup_expired_sessions(self) -> int:
        """
        Remove sessions idle longer than ``session_timeout_minutes``.

        Returns:
            Number of sessions removed
        """
        self._last_cleanup = self._clock()
        if self.config.session_timeout_minutes is None:
            return 0

        cutoff = self._last_cleanup - timedelta(minutes=self.config.session_timeout_minutes)
        expired = [sid for sid, seen in self._last_activity.items() if seen < cutoff]

        for session_id in expired:
            self._conversations.pop(session_id, None)
            del self._last_activity[session_id]

        if expired:
            self._logger.info(f"Cleaned up {len(expired)} expired sessions")
        return len(expired)

    def _maybe_cleanup(self) -> None:
        """Run the expiry sweep at most once per cleanup interval."""
        if self.config.session_timeout_minutes is None:
            return
        elapsed = (self._clock() - self._last_cleanup).total_seconds()
        if elapsed > self.config.cleanup_interval:
            self.cleanup_expired_sessions()

    # Helpers

    def _history(self, session_id: str) -> List[ChatMessage]:
        messages = self._conversations.get(session_id)
        if not messages:
            return []
        self.trim_conversation(session_id)
        return messages

    def _touch(self, session_id: str) -> None:
        self._last_activity[session_id] = self._clock()
        self._maybe_cleanup()

    @staticmethod
    def _coerce(message: MessageLike) -> ChatMessage:
        if isinstance(message, ChatMessage):
            return message
        return deserialize_message(message)

    @staticmethod
    def _validate_import(session_id: str, index: int, message: Any) -> ChatMessage:
        if isinstance(message, ChatMessage):
            fields = {
                "role": message.role,
                "content": message.content,
                "timestamp": message.timestamp,
            }
        elif isinstance(message, Mapping):
            fields = message
        else:
            raise InvalidMessageFormatException(
                session_id, index, f"expected a message mapping, got {type(message).__name__}"
            )

        missing = [name for name in REQUIRED_FIELDS if fields.get(name) is None]
        if missing:
            raise InvalidMessageFormatException(
                session_id, index,
                f"missing required field(s) {', '.join(missing)} "
                f"(got keys: {', '.join(sorted(map(str, fields))) or 'none'})"
            )

        role = getattr(fields["role"], "value", fields["role"])
        if role not in VALID_ROLES:
            raise InvalidMessageFormatException(session_id, index, f"unknown role {role!r}")
        if not isinstance(fields["content"], str):
            raise InvalidMessageFormatException(
                session_id, index, f"content must be a string, got {type(fields['content']).__name__}"
            )

        if isinstance(message, ChatMessage):
            return message
        try:
            return deserialize_message(message)
        except (TypeError, ValueError) as e:
            raise InvalidMessageFormatException(session_id, index, str(e)) from e
