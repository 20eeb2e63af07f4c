"""Provider registry and the adapter interface every AI provider implements."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from ..core.config import ChatConfig, ProviderConfig
from ..core.exceptions import ConfigurationException
from ..models.chat import ChatContext, ChatResponse

logger = logging.getLogger(__name__)


class AIProvider(ABC):
    """
    Adapter around a single AI provider.

    Implementations raise the provider's own errors; classification and
    retries happen in the error handler, not here.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    async def generate_response(
        self,
        message: str,
        context: Optional[ChatContext] = None,
        **options: Any
    ) -> ChatResponse:
        """
        Generate a reply to ``message``.

        Args:
            message: New user message
            context: Conversation context (history, system prompt)
            **options: Per-call overrides such as max_tokens or temperature

        Returns:
            ChatResponse with content and usage
        """

    async def is_available(self) -> bool:
        return self.config.enabled and self.config.is_valid()


ProviderFactory = Callable[[ProviderConfig], AIProvider]


class ProviderRouter:
    """Creates provider adapters by name from registered factories."""

    def __init__(self):
        self._factories: Dict[str, ProviderFactory] = {}
        self._register_builtin_providers()

    def _register_builtin_providers(self) -> None:
        # Imported here: the adapters depend on AIProvider from this module
        from .groq_provider import GroqProvider

        self.register_provider("groq", GroqProvider)

    def register_provider(self, name: str, factory: ProviderFactory) -> None:
        """Register (or replace) the factory for a provider name."""
        self._factories[name.lower()] = factory
        logger.debug(f"Registered provider factory: {name}")

    def create_provider(self, config: ProviderConfig) -> AIProvider:
        """
        Create an adapter for a provider configuration.

        Raises:
            ConfigurationException: If no factory is registered for the name
        """
        factory = self._factories.get(config.name.lower())
        if factory is None:
            raise ConfigurationException(
                "provider",
                f"Unsupported provider: {config.name}. "
                f"Available: {', '.join(self.get_available_providers())}"
            )

        provider = factory(config)
        logger.info(f"✅ Created provider {config.name} (model: {config.model})")
        return provider

    def create_providers(self, config: ChatConfig) -> List[AIProvider]:
        """Create adapters for every enabled, registered provider in priority order."""
        providers = []
        for provider_config in config.get_enabled_providers():
            if not self.is_provider_available(provider_config.name):
                logger.warning(f"⚠️ No adapter registered for provider {provider_config.name}, skipping")
                continue
            providers.append(self.create_provider(provider_config))
        return providers

    def get_available_providers(self) -> List[str]:
        return sorted(self._factories)

    def is_provider_available(self, name: str) -> bool:
        return name.lower() in self._factories
