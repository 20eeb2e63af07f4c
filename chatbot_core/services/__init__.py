"""Services module - Sessions, providers and chat orchestration."""

from .chat_service import ChatService
from .conversation_manager import ConversationManager
from .groq_provider import GroqProvider
from .provider_router import AIProvider, ProviderRouter

__all__ = [
    "AIProvider",
    "ChatService",
    "ConversationManager",
    "GroqProvider",
    "ProviderRouter",
]
