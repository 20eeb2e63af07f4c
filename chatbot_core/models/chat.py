"""Chat request, context and response models."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum

from .conversation import ChatMessage, utc_now


class ProviderType(Enum):
    """Supported AI providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    META = "meta"
    XAI = "xai"
    DEEPSEEK = "deepseek"
    OLLAMA = "ollama"
    GROQ = "groq"
    CUSTOM = "custom"


@dataclass
class ChatContext:
    """Conversation context handed to a provider."""

    session_id: str
    user_id: str = "anonymous"
    messages: List[ChatMessage] = field(default_factory=list)
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenUsage:
    """Token usage reported by a provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatResponse:
    """Response from chat processing."""

    content: str
    provider: str
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None
    response_time: float = 0.0
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "usage": asdict(self.usage) if self.usage else None,
            "response_time": self.response_time,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }
