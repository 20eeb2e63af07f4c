"""Tests for per-session conversation history."""
from datetime import datetime, timedelta, timezone

import pytest

from chatbot_core.core.exceptions import (
    InvalidMessageFormatException,
    SessionExistsException,
)
from chatbot_core.models.conversation import ChatMessage, MessageRole
from chatbot_core.services.conversation_manager import ConversationManager
from tests.conftest import FakeDatetimeClock

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _message(index: int, role: MessageRole = MessageRole.USER) -> ChatMessage:
    return ChatMessage(
        role=role,
        content=f"message {index}",
        timestamp=BASE_TIME + timedelta(minutes=index),
        id=f"msg_{index}",
    )


@pytest.fixture
def manager() -> ConversationManager:
    return ConversationManager()


@pytest.fixture
def four_messages() -> list:
    return [_message(i) for i in range(4)]


class TestHistory:
    """Appending and reading messages."""

    def test_unknown_session_is_empty(self, manager: ConversationManager) -> None:
        assert manager.get_conversation_history("missing") == []
        assert manager.get_recent_messages("missing", 3) == []

    def test_add_messages_preserves_order(self, manager: ConversationManager) -> None:
        m1, m2 = _message(1), _message(2)
        manager.add_messages("s1", [m1, m2])

        assert manager.get_conversation_history("s1") == [m1, m2]

    def test_add_message_appends(self, manager: ConversationManager) -> None:
        manager.add_message("s1", _message(1))
        manager.add_message("s1", _message(2))

        assert [m.id for m in manager.get_conversation_history("s1")] == ["msg_1", "msg_2"]

    def test_history_is_a_copy(self, manager: ConversationManager) -> None:
        manager.add_message("s1", _message(1))
        manager.get_conversation_history("s1").clear()

        assert len(manager.get_conversation_history("s1")) == 1

    def test_add_mapping_generates_id(self, manager: ConversationManager) -> None:
        stored = manager.add_message("s1", {"role": "assistant", "content": "hi"})

        assert stored.id.startswith("msg_")
        assert stored.role == MessageRole.ASSISTANT
        assert stored.timestamp.tzinfo is not None

    def test_recent_messages(self, manager: ConversationManager, four_messages: list) -> None:
        manager.add_messages("s1", four_messages)

        assert manager.get_recent_messages("s1", 2) == four_messages[2:]
        assert manager.get_recent_messages("s1", 10) == four_messages
        assert manager.get_recent_messages("s1", 0) == []

    def test_messages_since_inclusive(self, manager: ConversationManager, four_messages: list) -> None:
        manager.add_messages("s1", four_messages)

        assert manager.get_messages_since("s1", four_messages[1].timestamp) == four_messages[1:]
        assert manager.get_messages_since("s1", BASE_TIME + timedelta(hours=1)) == []

    def test_messages_since_naive_is_utc(self, manager: ConversationManager, four_messages: list) -> None:
        manager.add_messages("s1", four_messages)
        naive = (BASE_TIME + timedelta(minutes=3)).replace(tzinfo=None)

        assert manager.get_messages_since("s1", naive) == four_messages[3:]

    def test_naive_message_timestamps_are_utc(self, manager: ConversationManager) -> None:
        message = ChatMessage(role=MessageRole.USER, content="hi", timestamp=datetime(2024, 1, 1, 12))
        manager.add_message("s1", message)

        assert message.timestamp == BASE_TIME
        assert manager.get_messages_since("s1", datetime(2024, 1, 1, tzinfo=timezone.utc)) == [message]

    def test_imported_and_naive_messages_mix(self, manager: ConversationManager) -> None:
        manager.import_conversation("s1", [
            {"role": "user", "content": "imported", "timestamp": "2024-01-01T12:00:00Z"},
        ])
        manager.add_message("s1", ChatMessage(role=MessageRole.ASSISTANT, content="local",
                                              timestamp=datetime(2024, 1, 1, 12, 5)))

        since = manager.get_messages_since("s1", BASE_TIME + timedelta(minutes=1))
        assert [m.content for m in since] == ["local"]
        assert manager.get_conversation_stats("s1").last_message == BASE_TIME + timedelta(minutes=5)


class TestContextAndStats:
    """Derived views."""

    def test_context_defaults(self, manager: ConversationManager) -> None:
        manager.add_message("s1", _message(1))
        context = manager.get_conversation_context("s1")

        assert context.session_id == "s1"
        assert context.user_id == "anonymous"
        assert context.metadata == {}
        assert context.system_prompt is None
        assert context.messages == manager.get_conversation_history("s1")

    def test_context_does_not_mutate(self, manager: ConversationManager) -> None:
        context = manager.get_conversation_context(
            "s1", user_id="u1", system_prompt="Be brief.", metadata={"channel": "web"}
        )
        context.messages.append(_message(1))

        assert (context.user_id, context.system_prompt) == ("u1", "Be brief.")
        assert context.metadata == {"channel": "web"}
        assert manager.get_conversation_history("s1") == []
        assert not manager.is_session_active("s1")

    def test_stats_partition_by_role(self, manager: ConversationManager) -> None:
        manager.add_messages("s1", [
            _message(0, MessageRole.SYSTEM),
            _message(1, MessageRole.USER),
            _message(2, MessageRole.ASSISTANT),
            _message(3, MessageRole.USER),
        ])
        stats = manager.get_conversation_stats("s1")

        assert stats.message_count == 4
        assert (stats.user_messages, stats.assistant_messages, stats.system_messages) == (2, 1, 1)
        assert stats.first_message == BASE_TIME
        assert stats.last_message == BASE_TIME + timedelta(minutes=3)

    def test_stats_for_empty_session(self, manager: ConversationManager) -> None:
        stats = manager.get_conversation_stats("missing")

        assert stats.message_count == 0
        assert stats.first_message is None
        assert stats.last_message is None


class TestSessions:
    """Session bookkeeping and clearing."""

    def test_active_sessions(self, manager: ConversationManager) -> None:
        manager.add_message("s1", _message(1))
        manager.add_message("s2", _message(2))

        assert manager.is_session_active("s1")
        assert not manager.is_session_active("s3")
        assert manager.get_active_sessions() == {"s1", "s2"}
        assert manager.get_session_count() == 2

    def test_clear_one_session(self, manager: ConversationManager) -> None:
        manager.add_message("s1", _message(1))
        manager.add_message("s2", _message(2))

        assert manager.clear_conversation("s1") is True
        assert manager.clear_conversation("s1") is False
        assert manager.get_conversation_history("s1") == []
        assert len(manager.get_conversation_history("s2")) == 1

    def test_clear_all(self, manager: ConversationManager) -> None:
        manager.add_message("s1", _message(1))
        manager.add_message("s2", _message(2))
        manager.clear_all_conversations()

        assert manager.get_session_count() == 0


class TestImportExport:
    """Snapshots and validated imports."""

    def test_export(self, datetime_clock: FakeDatetimeClock, four_messages: list) -> None:
        manager = ConversationManager(clock=datetime_clock)
        manager.add_messages("s1", four_messages)

        export = manager.export_conversation("s1")

        assert export.session_id == "s1"
        assert export.messages == four_messages
        assert export.stats.message_count == 4
        assert export.exported_at == datetime_clock.now

    def test_import_into_new_session(self, manager: ConversationManager) -> None:
        count = manager.import_conversation("s1", [
            {"id": "msg_a", "role": "user", "content": "hello", "timestamp": "2024-01-01T12:00:00Z"},
            {"role": "assistant", "content": "", "timestamp": "2024-01-01T12:00:05+00:00"},
        ])
        history = manager.get_conversation_history("s1")

        assert count == 2
        assert history[0].id == "msg_a"
        assert history[0].timestamp == BASE_TIME
        assert history[1].content == ""
        assert history[1].id.startswith("msg_")

    def test_import_existing_without_overwrite(self, manager: ConversationManager) -> None:
        manager.add_message("s1", _message(1))

        with pytest.raises(SessionExistsException) as exc_info:
            manager.import_conversation("s1", [_message(2)])

        assert "already exists" in str(exc_info.value)
        assert [m.id for m in manager.get_conversation_history("s1")] == ["msg_1"]

    def test_import_with_overwrite_replaces(self, manager: ConversationManager) -> None:
        manager.add_messages("s1", [_message(1), _message(2)])
        replacement = [_message(7), _message(8)]

        manager.import_conversation("s1", replacement, overwrite=True)

        assert manager.get_conversation_history("s1") == replacement

    def test_import_missing_content_is_atomic(self, manager: ConversationManager) -> None:
        """A malformed message rejects the whole import without partial writes."""
        manager.add_message("s1", _message(1))
        data = [
            {"role": "user", "content": "fine", "timestamp": BASE_TIME},
            {"role": "assistant", "timestamp": BASE_TIME},
        ]

        with pytest.raises(InvalidMessageFormatException) as exc_info:
            manager.import_conversation("s1", data, overwrite=True)

        assert "invalid message format" in str(exc_info.value).lower()
        assert exc_info.value.index == 1
        assert "content" in exc_info.value.reason
        assert [m.id for m in manager.get_conversation_history("s1")] == ["msg_1"]

    @pytest.mark.parametrize("bad", [
        {"role": "wizard", "content": "x", "timestamp": BASE_TIME},
        {"role": "user", "content": 5, "timestamp": BASE_TIME},
        {"role": "user", "content": "x", "timestamp": "yesterday"},
        "not a message",
    ])
    def test_import_rejects_malformed(self, manager: ConversationManager, bad) -> None:
        with pytest.raises(InvalidMessageFormatException):
            manager.import_conversation("s1", [bad])

        assert not manager.is_session_active("s1")

    def test_export_import_between_managers(self, manager: ConversationManager, four_messages: list) -> None:
        manager.add_messages("s1", four_messages)
        other = ConversationManager()

        other.import_conversation("copy", manager.export_conversation("s1").messages)

        assert other.get_conversation_history("copy") == four_messages


class TestBounding:
    """Lazy history limits."""

    def test_reads_trim_to_limit(self) -> None:
        manager = ConversationManager(max_history_length=3)
        messages = [_message(i) for i in range(5)]
        manager.add_messages("s1", messages)

        assert manager.get_conversation_history("s1") == messages[2:]
        assert manager.get_conversation_stats("s1").message_count == 3

    def test_explicit_trim(self) -> None:
        manager = ConversationManager(max_history_length=2)
        manager.add_messages("s1", [_message(i) for i in range(5)])

        assert manager.trim_conversation("s1") == 3
        assert manager.trim_conversation("s1") == 0

    def test_unbounded_by_default(self, manager: ConversationManager) -> None:
        manager.add_messages("s1", [_message(i) for i in range(200)])

        assert len(manager.get_conversation_history("s1")) == 200


class TestSessionTimeout:
    """Idle session expiry."""

    def test_cleanup_expired_sessions(self, datetime_clock: FakeDatetimeClock) -> None:
        manager = ConversationManager(
            clock=datetime_clock, session_timeout_minutes=30, cleanup_interval=10_000
        )
        manager.add_message("old", _message(1))
        datetime_clock.advance(minutes=31)
        manager.add_message("new", _message(2))

        assert manager.cleanup_expired_sessions() == 1
        assert manager.get_active_sessions() == {"new"}

    def test_writes_trigger_cleanup(self, datetime_clock: FakeDatetimeClock) -> None:
        manager = ConversationManager(
            clock=datetime_clock, session_timeout_minutes=30, cleanup_interval=60
        )
        manager.add_message("old", _message(1))
        datetime_clock.advance(minutes=31)
        manager.add_message("new", _message(2))

        assert not manager.is_session_active("old")

    def test_no_timeout_never_expires(self, datetime_clock: FakeDatetimeClock) -> None:
        manager = ConversationManager(clock=datetime_clock)
        manager.add_message("s1", _message(1))
        datetime_clock.advance(days=30)

        assert manager.cleanup_expired_sessions() == 0
        assert manager.is_session_active("s1")
