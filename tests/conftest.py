"""Shared fixtures: controllable clocks and a scripted provider."""
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest
import pytest_asyncio

from chatbot_core.core.config import ProviderConfig, RetryConfig
from chatbot_core.core.error_handler import ErrorHandler
from chatbot_core.core.rate_limiter import RateLimiter
from chatbot_core.models.chat import ChatContext, ChatResponse
from chatbot_core.services.provider_router import AIProvider


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDatetimeClock:
    """Aware-datetime clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class FakeProvider(AIProvider):
    """Provider that echoes the message, raising queued errors first."""

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        errors: Optional[List[BaseException]] = None,
    ) -> None:
        super().__init__(config or ProviderConfig(name="openai", api_key="test-key", model="fake-model"))
        self.errors = list(errors or [])
        self.calls: List[Any] = []

    async def generate_response(
        self,
        message: str,
        context: Optional[ChatContext] = None,
        **options: Any,
    ) -> ChatResponse:
        self.calls.append((message, context, options))
        if self.errors:
            raise self.errors.pop(0)
        return ChatResponse(content=f"echo: {message}", provider=self.name, model=self.config.model)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def datetime_clock() -> FakeDatetimeClock:
    return FakeDatetimeClock()


@pytest.fixture
def fast_retry_config() -> RetryConfig:
    """Retry policy without delays or jitter."""
    return RetryConfig(max_retries=2, base_delay=0.0, max_delay=0.0, use_jitter=False)


@pytest.fixture
def error_handler(fast_retry_config: RetryConfig) -> ErrorHandler:
    return ErrorHandler(fast_retry_config)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def limiter(clock: FakeClock):
    """Limiter allowing 5 requests per 60 seconds on the fake clock."""
    limiter = RateLimiter(clock=clock, max_requests=5, window_seconds=60.0)
    yield limiter
    await limiter.close()
