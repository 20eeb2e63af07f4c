"""
Custom Exceptions for Chatbot Core
==================================

Defines the exception classes raised by the resilience and session layers.
"""

from typing import Any, Dict, Optional


class ChatException(Exception):
    """Base exception for the chatbot core."""

    def __init__(self, message: str, original_error: Exception = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self):
        if self.original_error:
            return f"{self.message} (Caused by: {self.original_error})"
        return self.message


class ProviderException(ChatException):
    """Exception raised when an AI provider fails."""

    def __init__(self, provider_name: str, message: str, original_error: Exception = None):
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}", original_error)


class ChatbotError(ProviderException):
    """
    Uniform failure surfaced by the retry layer.

    Wraps a ``ProcessedError`` so callers can branch on category, severity
    and retryability without knowing which provider failed.
    """

    def __init__(self, processed, attempts: int = 1):
        self.processed = processed
        self.attempts = attempts
        self.category = processed.category
        self.severity = processed.severity
        self.is_retryable = processed.is_retryable
        self.user_message = processed.user_message
        self.error_type = processed.error_type
        super().__init__(processed.provider, processed.user_message)
        self.message = processed.user_message

    @property
    def provider(self) -> str:
        return self.provider_name

    def __str__(self):
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the failure (no original error object)."""
        return {
            "message": self.user_message,
            "type": self.error_type,
            "provider": self.provider_name,
            "category": self.category.value,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
            "attempts": self.attempts,
        }


class RateLimitException(ChatException):
    """Exception raised when rate limits are exceeded."""

    def __init__(self, retry_after: float = None, message: str = "Rate limit exceeded"):
        self.retry_after = retry_after
        super().__init__(message)

    def __str__(self):
        if self.retry_after:
            return f"{self.message}. Try again in {self.retry_after:.1f} seconds."
        return self.message


class ConfigurationException(ChatException):
    """Exception raised for configuration errors."""

    def __init__(self, config_key: str, message: str = None):
        self.config_key = config_key
        msg = message or f"Configuration error for key: {config_key}"
        super().__init__(msg)


class ValidationException(ChatException):
    """Exception raised when chat input is rejected before reaching a provider."""


class ContextException(ChatException):
    """Exception raised for conversation context errors."""

    def __init__(self, session_id: str, message: str):
        self.session_id = session_id
        super().__init__(f"[Session {session_id}] {message}")


class SessionExistsException(ContextException):
    """Raised when importing into a session that already has history."""

    def __init__(self, session_id: str):
        super().__init__(
            session_id,
            f"Session {session_id} already exists. Use overwrite=True to replace."
        )


class InvalidMessageFormatException(ContextException):
    """Raised when imported data contains a malformed message."""

    def __init__(self, session_id: str, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(
            session_id,
            f"Invalid message format in import data at index {index}: {reason}"
        )


class TimeoutException(ChatException):
    """Exception raised when API request times out."""

    def __init__(self, provider_name: str, timeout: float):
        self.provider_name = provider_name
        self.timeout = timeout
        super().__init__(f"[{provider_name}] Request timed out after {timeout} seconds")


class AuthenticationException(ChatException):
    """Exception raised for API authentication failures."""

    def __init__(self, provider_name: str):
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] Authentication failed. Check API key.")


class CircuitOpenException(ChatException):
    """Raised while a circuit breaker is refusing calls."""

    def __init__(self, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__("Circuit breaker is open - service temporarily unavailable")
