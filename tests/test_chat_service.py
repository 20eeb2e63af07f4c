"""Tests for the chat orchestration service."""
from pathlib import Path

import pytest
import pytest_asyncio

from chatbot_core.core.circuit_breaker import CircuitBreaker
from chatbot_core.core.config import ChatConfig
from chatbot_core.core.error_handler import ErrorCategory, ErrorHandler
from chatbot_core.core.exceptions import (
    ChatbotError,
    CircuitOpenException,
    ConfigurationException,
    RateLimitException,
    ValidationException,
)
from chatbot_core.core.rate_limiter import RateLimiter
from chatbot_core.models.conversation import MessageRole
from chatbot_core.services.chat_service import ChatService
from chatbot_core.services.conversation_manager import ConversationManager
from chatbot_core.services.provider_router import ProviderRouter
from tests.conftest import FakeClock, FakeProvider


@pytest_asyncio.fixture
async def service(provider: FakeProvider, clock: FakeClock, error_handler: ErrorHandler):
    service = ChatService(
        provider,
        rate_limiter=RateLimiter(clock=clock, max_requests=3, window_seconds=60.0),
        conversation_manager=ConversationManager(),
        error_handler=error_handler,
        system_prompt="You are terse.",
        max_message_length=50,
    )
    yield service
    await service.close()


class TestProcessMessage:
    """A full chat turn."""

    @pytest.mark.asyncio
    async def test_successful_turn_records_history(
        self, service: ChatService, provider: FakeProvider
    ) -> None:
        response = await service.process_message("Hello", session_id="s1", user_id="u1")

        assert response.content == "echo: Hello"
        history = service.get_history("s1")
        assert [(m.role, m.content) for m in history] == [
            (MessageRole.USER, "Hello"),
            (MessageRole.ASSISTANT, "echo: Hello"),
        ]

    @pytest.mark.asyncio
    async def test_context_passed_to_provider(
        self, service: ChatService, provider: FakeProvider
    ) -> None:
        """The provider sees prior history but not the message being sent."""
        await service.process_message("first", session_id="s1", user_id="u1")
        await service.process_message("second", session_id="s1", user_id="u1",
                                      metadata={"channel": "web"}, temperature=0.1)

        message, context, options = provider.calls[-1]
        assert message == "second"
        assert [m.content for m in context.messages] == ["first", "echo: first"]
        assert context.system_prompt == "You are terse."
        assert context.user_id == "u1"
        assert context.metadata == {"channel": "web"}
        assert options == {"temperature": 0.1}

    @pytest.mark.asyncio
    async def test_system_prompt_override(self, service: ChatService, provider: FakeProvider) -> None:
        await service.process_message("hi", session_id="s1", system_prompt="Be verbose.")

        assert provider.calls[-1][1].system_prompt == "Be verbose."
        assert provider.calls[-1][1].user_id == "anonymous"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["", "   ", "x" * 51])
    async def test_invalid_messages(self, service: ChatService, provider: FakeProvider, message: str) -> None:
        with pytest.raises(ValidationException):
            await service.process_message(message, session_id="s1")

        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_rate_limited(self, service: ChatService, provider: FakeProvider) -> None:
        for _ in range(3):
            await service.process_message("hi", session_id="s1", user_id="u1")

        with pytest.raises(RateLimitException) as exc_info:
            await service.process_message("hi", session_id="s1", user_id="u1")

        assert exc_info.value.retry_after == pytest.approx(60.0)
        assert len(provider.calls) == 3
        assert service.get_stats()["rate_limited_requests"] == 1

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, service: ChatService, provider: FakeProvider) -> None:
        provider.errors = [ConnectionError("Network error")]

        response = await service.process_message("hi", session_id="s1")

        assert response.content == "echo: hi"
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_history_untouched(
        self, service: ChatService, provider: FakeProvider
    ) -> None:
        provider.errors = [Exception("401 Unauthorized")]

        with pytest.raises(ChatbotError) as exc_info:
            await service.process_message("hi", session_id="s1")

        assert exc_info.value.category == ErrorCategory.AUTHENTICATION
        assert service.get_history("s1") == []
        assert service.get_stats()["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_skip_failed_requests(
        self, provider: FakeProvider, error_handler: ErrorHandler, clock: FakeClock
    ) -> None:
        """Failed turns are given back to the limiter when configured to skip them."""
        limiter = RateLimiter(clock=clock, max_requests=1, skip_failed_requests=True)
        service = ChatService(provider, rate_limiter=limiter, error_handler=error_handler)
        provider.errors = [Exception("401 Unauthorized")]
        try:
            with pytest.raises(ChatbotError):
                await service.process_message("hi", session_id="s1", user_id="u1")
            assert limiter.get_current_status("u1").current == 0

            response = await service.process_message("hi again", session_id="s1", user_id="u1")
            assert response.content == "echo: hi again"
            assert limiter.get_current_status("u1").current == 1
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_skip_successful_requests(
        self, provider: FakeProvider, error_handler: ErrorHandler, clock: FakeClock
    ) -> None:
        limiter = RateLimiter(clock=clock, max_requests=1, skip_successful_requests=True)
        service = ChatService(provider, rate_limiter=limiter, error_handler=error_handler)
        try:
            for _ in range(3):
                await service.process_message("hi", session_id="s1", user_id="u1")

            assert limiter.get_current_status("u1").current == 0
            assert service.get_stats()["rate_limited_requests"] == 0
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_open_circuit_skips_provider(
        self, provider: FakeProvider, error_handler: ErrorHandler, clock: FakeClock
    ) -> None:
        provider.errors = [Exception("401 Unauthorized")]
        service = ChatService(
            provider,
            error_handler=error_handler,
            circuit_breaker=CircuitBreaker(failure_threshold=1, clock=clock),
        )
        try:
            with pytest.raises(ChatbotError):
                await service.process_message("hi", session_id="s1")
            with pytest.raises(ChatbotError) as exc_info:
                await service.process_message("hi again", session_id="s1")

            assert isinstance(exc_info.value.__cause__, CircuitOpenException)
            assert len(provider.calls) == 1
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_memory_disabled(self, provider: FakeProvider, error_handler: ErrorHandler) -> None:
        service = ChatService(provider, error_handler=error_handler, enable_memory=False)
        try:
            await service.process_message("hi", session_id="s1")
            assert service.get_history("s1") == []
        finally:
            await service.close()


class TestServiceHelpers:
    """Stats, history helpers and status."""

    @pytest.mark.asyncio
    async def test_stats(self, service: ChatService) -> None:
        await service.process_message("one", session_id="s1", user_id="u1")
        await service.process_message("two", session_id="s2", user_id="u2")

        stats = service.get_stats()

        assert stats["total_requests"] == 2
        assert stats["successful_requests"] == 2
        assert stats["active_sessions"] == 2
        assert stats["rate_limiter"]["active_users"] == 2
        assert stats["average_response_time"] >= 0.0

    @pytest.mark.asyncio
    async def test_clear_history(self, service: ChatService) -> None:
        await service.process_message("one", session_id="s1")
        assert service.get_session_stats("s1").message_count == 2

        service.clear_history("s1")

        assert service.get_history("s1") == []

    @pytest.mark.asyncio
    async def test_provider_status(self, service: ChatService) -> None:
        assert await service.get_provider_status() == {
            "provider": "openai",
            "model": "fake-model",
            "available": True,
        }


class TestFromConfig:
    """Building the service from ChatConfig."""

    @pytest.mark.asyncio
    async def test_uses_first_enabled_provider(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "chatbot.ini"
        path.write_text(
            "[general]\nmax_message_length = 20\n"
            "[retry]\nmax_retries = 1\n"
            "[rate_limiting]\nmax_requests = 7\n"
            "[providers]\npriority = groq\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("GROQ_API_KEY", "gsk_test")
        router = ProviderRouter()
        router.register_provider("groq", FakeProvider)

        service = ChatService.from_config(ChatConfig(str(path), load_env=False), router)
        try:
            assert isinstance(service.provider, FakeProvider)
            assert service.provider.name == "groq"
            assert service.max_message_length == 20
            assert service.rate_limiter.config.max_requests == 7
            assert service.error_handler.default_handler.retry_config.max_retries == 1
        finally:
            await service.close()

    def test_no_usable_provider(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        config = ChatConfig(str(tmp_path / "absent.ini"), load_env=False)

        with pytest.raises(ConfigurationException):
            ChatService.from_config(config)