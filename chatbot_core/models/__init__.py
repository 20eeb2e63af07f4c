"""Models module - Data structures."""

from .chat import ChatContext, ChatResponse, ProviderType, TokenUsage
from .conversation import (
    ChatMessage,
    ConversationExport,
    ConversationStats,
    MessageRole,
    as_utc,
    generate_message_id,
    utc_now,
)

__all__ = [
    'ChatContext',
    'ChatResponse',
    'ProviderType',
    'TokenUsage',
    'ChatMessage',
    'ConversationExport',
    'ConversationStats',
    'MessageRole',
    'as_utc',
    'generate_message_id',
    'utc_now',
]
