"""Main chat service orchestrating all layers."""

import logging
import time
from typing import Any, Dict, List, Optional, Union

from ..core.circuit_breaker import CircuitBreaker
from ..core.config import ChatConfig
from ..core.error_handler import ErrorHandler, ProviderAwareErrorHandler
from ..core.exceptions import (
    ChatbotError,
    ConfigurationException,
    RateLimitException,
    ValidationException,
)
from ..core.rate_limiter import RateLimiter
from ..models.chat import ChatResponse
from ..models.conversation import ChatMessage, ConversationStats, MessageRole
from .conversation_manager import ConversationManager
from .provider_router import AIProvider, ProviderRouter

logger = logging.getLogger(__name__)


class ChatService:
    """
    Main service orchestrating chat processing.

    Each turn is admitted by the rate limiter, built from the session
    history, sent to the provider through the retry layer and, on success,
    recorded in the session.
    """

    def __init__(
        self,
        provider: AIProvider,
        rate_limiter: Optional[RateLimiter] = None,
        conversation_manager: Optional[ConversationManager] = None,
        error_handler: Optional[Union[ErrorHandler, ProviderAwareErrorHandler]] = None,
        system_prompt: Optional[str] = None,
        enable_memory: bool = True,
        max_message_length: int = 10000,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        """
        Initialize chat service.

        Args:
            provider: Provider adapter that generates replies
            rate_limiter: Admission control (a default limiter if omitted)
            conversation_manager: Session history store
            error_handler: Retry layer around provider calls
            system_prompt: Default system prompt for every turn
            enable_memory: Record user and assistant messages after each turn
            max_message_length: Longest accepted user message, in characters
            circuit_breaker: Optional breaker around each provider attempt
        """
        self.provider = provider
        self.rate_limiter = rate_limiter or RateLimiter()
        self.conversation_manager = conversation_manager or ConversationManager()
        self.error_handler = error_handler or ProviderAwareErrorHandler()
        self.system_prompt = system_prompt
        self.enable_memory = enable_memory
        self.max_message_length = max_message_length
        self.circuit_breaker = circuit_breaker

        self._stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "rate_limited_requests": 0,
            "total_response_time": 0.0,
        }

    @classmethod
    def from_config(cls, config: ChatConfig, router: Optional[ProviderRouter] = None) -> "ChatService":
        """
        Build a service from a loaded ChatConfig.

        The first enabled provider in priority order is used.

        Raises:
            ConfigurationException: If no usable provider is configured
        """
        router = router or ProviderRouter()
        providers = router.create_providers(config)
        if not providers:
            raise ConfigurationException("providers", "No enabled provider with a registered adapter")

        return cls(
            provider=providers[0],
            rate_limiter=RateLimiter(config.rate_limit),
            conversation_manager=ConversationManager(config.conversation),
            error_handler=ProviderAwareErrorHandler(config.retry),
            system_prompt=config.system_prompt,
            enable_memory=config.enable_memory,
            max_message_length=config.max_message_length,
        )

    async def process_message(
        self,
        message: str,
        session_id: str,
        user_id: Optional[str] = None,
        system_prompt: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        **options: Any
    ) -> ChatResponse:
        """
        Process a user message end-to-end.

        Args:
            message: User message text
            session_id: Conversation session
            user_id: Rate limiting identity ("anonymous" if omitted)
            system_prompt: Overrides the service's system prompt for this turn
            metadata: Extra context metadata for the provider
            **options: Passed to the provider (max_tokens, temperature, ...)

        Returns:
            The provider's ChatResponse

        Raises:
            ValidationException: If the message is empty or too long
            RateLimitException: If the user is over the rate limit
            ChatbotError: If the provider call fails after retries
        """
        self._stats["total_requests"] += 1
        start_time = time.time()

        # Step 1: Validate user input
        self._validate_message(message)

        # Step 2: Admission
        identifier = user_id or "anonymous"
        limit = await self.rate_limiter.check_limit(identifier)
        if limit.is_exceeded:
            self._stats["rate_limited_requests"] += 1
            raise RateLimitException(
                retry_after=self.rate_limiter.time_until_reset(limit),
                message=self.rate_limiter.config.message,
            )

        # Step 3: Build conversation context
        context = self.conversation_manager.get_conversation_context(
            session_id,
            user_id=identifier,
            system_prompt=system_prompt if system_prompt is not None else self.system_prompt,
            metadata=metadata,
        )

        # Step 4: Call the provider through the retry layer
        try:
            response = await self.error_handler.execute_with_retry(
                lambda: self._call_provider(message, context, options),
                self.provider.name,
                {"session_id": session_id, "user_id": identifier},
            )
        except ChatbotError as e:
            self._stats["failed_requests"] += 1
            logger.error(f"❌ Chat request failed after {e.attempts} attempt(s): {e.user_message}")
            await self._settle_request(identifier, was_successful=False)
            raise

        await self._settle_request(identifier, was_successful=True)

        # Step 5: Save to memory
        if self.enable_memory:
            self.conversation_manager.add_messages(session_id, [
                ChatMessage(role=MessageRole.USER, content=message, metadata={"user_id": identifier}),
                ChatMessage(
                    role=MessageRole.ASSISTANT,
                    content=response.content,
                    metadata={"provider": response.provider, "model": response.model},
                ),
            ])

        elapsed = time.time() - start_time
        self._stats["successful_requests"] += 1
        self._stats["total_response_time"] += elapsed
        logger.info(f"✅ Response for session {session_id} from {response.provider} ({elapsed:.2f}s)")

        return response

    async def _settle_request(self, identifier: str, was_successful: bool) -> None:
        if self.rate_limiter.should_skip_request(was_successful):
            await self.rate_limiter.decrement_counter(identifier)

    async def _call_provider(self, message: str, context, options: Dict[str, Any]) -> ChatResponse:
        if self.circuit_breaker is None:
            return await self.provider.generate_response(message, context, **options)
        return await self.circuit_breaker.execute(
            lambda: self.provider.generate_response(message, context, **options)
        )

    def _validate_message(self, message: str) -> None:
        if not isinstance(message, str) or not message.strip():
            raise ValidationException("Message cannot be empty")
        if len(message) > self.max_message_length:
            raise ValidationException(
                f"Message too long ({len(message)} characters, maximum {self.max_message_length})"
            )

    def get_history(self, session_id: str) -> List[ChatMessage]:
        return self.conversation_manager.get_conversation_history(session_id)

    def get_session_stats(self, session_id: str) -> ConversationStats:
        return self.conversation_manager.get_conversation_stats(session_id)

    def clear_history(self, session_id: str) -> None:
        """Clear conversation memory for a session."""
        self.conversation_manager.clear_conversation(session_id)
        logger.info(f"Cleared memory for session {session_id}")

    async def get_provider_status(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.name,
            "model": self.provider.config.model,
            "available": await self.provider.is_available(),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Request statistics plus limiter and session counts."""
        successful = self._stats["successful_requests"]
        return {
            **self._stats,
            "average_response_time": (
                self._stats["total_response_time"] / successful if successful else 0.0
            ),
            "active_sessions": self.conversation_manager.get_session_count(),
            "rate_limiter": self.rate_limiter.get_stats(),
        }

    async def close(self) -> None:
        """Release the rate limiter's background task."""
        await self.rate_limiter.close()
        logger.info("Chat service closed")
