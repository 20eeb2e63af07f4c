"""Core module - Resilience layer: errors, retries, rate limiting and config."""

from .config import (
    ChatConfig,
    ConversationConfig,
    LoggingConfig,
    ProviderConfig,
    RateLimitConfig,
    RetryConfig,
    merge_config,
)
from .exceptions import (
    ChatException,
    ChatbotError,
    ProviderException,
    RateLimitException,
    ConfigurationException,
    ValidationException,
    ContextException,
    SessionExistsException,
    InvalidMessageFormatException,
    TimeoutException,
    AuthenticationException,
    CircuitOpenException,
)
from .error_handler import (
    ErrorCategory,
    ErrorHandler,
    ErrorSeverity,
    ProcessedError,
    ProviderAwareErrorHandler,
)
from .circuit_breaker import CircuitBreaker, CircuitState
from .rate_limiter import RateLimiter, RateLimitInfo
from .log_setup import setup_logging

__all__ = [
    'ChatConfig',
    'ConversationConfig',
    'LoggingConfig',
    'ProviderConfig',
    'RateLimitConfig',
    'RetryConfig',
    'merge_config',
    'ChatException',
    'ChatbotError',
    'ProviderException',
    'RateLimitException',
    'ConfigurationException',
    'ValidationException',
    'ContextException',
    'SessionExistsException',
    'InvalidMessageFormatException',
    'TimeoutException',
    'AuthenticationException',
    'CircuitOpenException',
    'ErrorCategory',
    'ErrorHandler',
    'ErrorSeverity',
    'ProcessedError',
    'ProviderAwareErrorHandler',
    'CircuitBreaker',
    'CircuitState',
    'RateLimiter',
    'RateLimitInfo',
    'setup_logging',
]
