"""
Chatbot Core
============

Resilience and session layer for chat requests to AI providers: error
classification with retries, fixed-window rate limiting and per-session
conversation history.
"""

from .core import (
    ChatConfig,
    ChatbotError,
    CircuitBreaker,
    ErrorCategory,
    ErrorHandler,
    ErrorSeverity,
    ProcessedError,
    ProviderAwareErrorHandler,
    RateLimiter,
    RateLimitInfo,
    setup_logging,
)
from .models import ChatContext, ChatMessage, ChatResponse, MessageRole
from .services import AIProvider, ChatService, ConversationManager, GroqProvider, ProviderRouter

__version__ = "0.1.0"

__all__ = [
    "AIProvider",
    "ChatConfig",
    "ChatContext",
    "ChatMessage",
    "ChatResponse",
    "ChatService",
    "ChatbotError",
    "CircuitBreaker",
    "ConversationManager",
    "ErrorCategory",
    "ErrorHandler",
    "ErrorSeverity",
    "GroqProvider",
    "MessageRole",
    "ProcessedError",
    "ProviderAwareErrorHandler",
    "ProviderRouter",
    "RateLimitInfo",
    "RateLimiter",
    "setup_logging",
]
