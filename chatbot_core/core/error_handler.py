"""
Error Classification and Retry for AI Providers
===============================================

Turns heterogeneous provider failures into a uniform classification and
drives async operations through bounded retries with exponential backoff.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, TypeVar

from .config import RetryConfig, merge_config
from .error_utils import error_message, sanitize_message
from .exceptions import (
    AuthenticationException,
    ChatbotError,
    RateLimitException,
    TimeoutException,
)
from ..models.chat import ProviderType
from ..models.conversation import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCategory(str, Enum):
    """What kind of failure occurred."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    SERVER = "server"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """How serious a failure is for the caller."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Authentication needs operator action; transport and server failures are
# high because the provider is unusable until they clear; rate limits are
# self-healing; validation is the caller's own input.
SEVERITY_BY_CATEGORY = {
    ErrorCategory.AUTHENTICATION: ErrorSeverity.CRITICAL,
    ErrorCategory.NETWORK: ErrorSeverity.HIGH,
    ErrorCategory.TIMEOUT: ErrorSeverity.HIGH,
    ErrorCategory.SERVER: ErrorSeverity.HIGH,
    ErrorCategory.RATE_LIMIT: ErrorSeverity.MEDIUM,
    ErrorCategory.VALIDATION: ErrorSeverity.LOW,
    ErrorCategory.UNKNOWN: ErrorSeverity.MEDIUM,
}

ERROR_TYPE_BY_CATEGORY = {
    ErrorCategory.AUTHENTICATION: "PROVIDER_ERROR",
    ErrorCategory.NETWORK: "PROVIDER_ERROR",
    ErrorCategory.SERVER: "PROVIDER_ERROR",
    ErrorCategory.TIMEOUT: "TIMEOUT_ERROR",
    ErrorCategory.RATE_LIMIT: "RATE_LIMIT_ERROR",
    ErrorCategory.VALIDATION: "VALIDATION_ERROR",
    ErrorCategory.UNKNOWN: "UNKNOWN_ERROR",
}

LOG_METHOD_BY_SEVERITY = {
    ErrorSeverity.CRITICAL: "error",
    ErrorSeverity.HIGH: "error",
    ErrorSeverity.MEDIUM: "warning",
    ErrorSeverity.LOW: "info",
}

# Checked in order, first match wins. Squashed forms catch SDK class names
# such as RateLimitError or APIConnectionError.
AUTH_PATTERNS = (
    "unauthorized", "invalid api key", "invalid_api_key", "authentication",
    "forbidden", "permissiondenied", "401", "403",
)
RATE_LIMIT_PATTERNS = ("rate limit", "rate_limit", "ratelimit", "429", "too many requests", "quota")
TIMEOUT_PATTERNS = ("etimedout", "timeout", "timed out")
NETWORK_PATTERNS = ("econnrefused", "econnreset", "enotfound", "network", "connection")
SERVER_PATTERNS = (
    "500", "502", "503", "504", "internal server error", "internalserver",
    "service unavailable", "bad gateway",
)
VALIDATION_PATTERNS = (
    "400", "422", "bad request", "badrequest", "invalid input", "validation",
    "missing required field",
)

PROVIDER_PATTERNS = {
    ProviderType.OPENAI.value: (
        ("context_length_exceeded", ErrorCategory.VALIDATION),
        ("invalid_request_error", ErrorCategory.VALIDATION),
    ),
    ProviderType.ANTHROPIC.value: (
        ("overloaded", ErrorCategory.SERVER),
        ("invalid_request", ErrorCategory.VALIDATION),
    ),
    ProviderType.GOOGLE.value: (
        ("resource exhausted", ErrorCategory.RATE_LIMIT),
        ("permission denied", ErrorCategory.AUTHENTICATION),
        ("invalid argument", ErrorCategory.VALIDATION),
    ),
    ProviderType.OLLAMA.value: (
        ("connection refused", ErrorCategory.NETWORK),
    ),
}

USER_MESSAGES = {
    ErrorCategory.NETWORK: "Network connection issue with {name}. Please check your internet connection and try again.",
    ErrorCategory.TIMEOUT: "Request to {name} timed out. Please try again.",
    ErrorCategory.RATE_LIMIT: "Rate limit exceeded for {name}. Please wait a moment before trying again.",
    ErrorCategory.AUTHENTICATION: "Authentication failed with {name}. Please check your API key and permissions.",
    ErrorCategory.SERVER: "{name} server error. Please try again later.",
    ErrorCategory.VALIDATION: "Invalid request to {name}. Please check your input parameters.",
    ErrorCategory.UNKNOWN: "An unexpected error occurred with {name}: {message}",
}


@dataclass
class ProcessedError:
    """Classification record for a single failure."""

    original_error: Any
    category: ErrorCategory
    severity: ErrorSeverity
    is_retryable: bool
    provider: str
    user_message: str
    error_type: str
    retry_delay: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_timestamp: bool = True) -> Dict[str, Any]:
        metadata = {k: v for k, v in self.metadata.items() if include_timestamp or k != "timestamp"}
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
            "provider": self.provider,
            "user_message": self.user_message,
            "error_type": self.error_type,
            "retry_delay": self.retry_delay,
            "metadata": metadata,
        }


def _describe(error: Any) -> Tuple[str, str]:
    """Normalize a raised value to (message, searchable text)."""
    message = error_message(error)
    parts = [message, type(error).__name__]

    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if isinstance(status, int):
        parts.append(str(status))

    return message, " ".join(parts).lower()


def _matches(text: str, patterns: Tuple[str, ...]) -> bool:
    return any(pattern in text for pattern in patterns)


def classify_error(error: Any, provider: str) -> ErrorCategory:
    """
    Classify an error by its message, type name, status and provider.

    Pure function: the same error and provider always yield the same category.
    """
    _, text = _describe(error)

    if _matches(text, AUTH_PATTERNS):
        return ErrorCategory.AUTHENTICATION
    if _matches(text, RATE_LIMIT_PATTERNS):
        return ErrorCategory.RATE_LIMIT
    if _matches(text, TIMEOUT_PATTERNS):
        return ErrorCategory.TIMEOUT
    if _matches(text, NETWORK_PATTERNS):
        return ErrorCategory.NETWORK
    if _matches(text, SERVER_PATTERNS):
        return ErrorCategory.SERVER
    if _matches(text, VALIDATION_PATTERNS):
        return ErrorCategory.VALIDATION

    if isinstance(error, AuthenticationException):
        return ErrorCategory.AUTHENTICATION
    if isinstance(error, RateLimitException):
        return ErrorCategory.RATE_LIMIT
    if isinstance(error, (TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorCategory.NETWORK

    for pattern, category in PROVIDER_PATTERNS.get(str(provider).lower(), ()):
        if pattern in text:
            return category

    return ErrorCategory.UNKNOWN


class ErrorHandler:
    """
    Error classifier and retry driver for provider calls.

    Stateless between calls, so one handler can serve any number of
    concurrent ``execute_with_retry`` invocations.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None,
        **overrides
    ):
        """
        Initialize the error handler.

        Args:
            retry_config: Base retry policy (defaults if omitted)
            logger: Optional logger; the module logger is used otherwise
            **overrides: Individual RetryConfig fields merged over the policy
        """
        self.retry_config = merge_config(retry_config or RetryConfig(), overrides)
        self.logger = logger or logging.getLogger(__name__)

    def process_error(
        self,
        error: Any,
        provider: str,
        context: Optional[Mapping[str, Any]] = None
    ) -> ProcessedError:
        """
        Process and classify an error from any provider.

        Never raises, whatever ``error`` is.

        Args:
            error: The raised value (exception, string, None, anything)
            provider: Provider identifier, echoed verbatim
            context: Caller context stored as-is in metadata["context"]

        Returns:
            ProcessedError classification record
        """
        message, _ = _describe(error)
        category = classify_error(error, provider)
        severity = SEVERITY_BY_CATEGORY[category]
        is_retryable = category.value in self.retry_config.retryable_errors

        processed = ProcessedError(
            original_error=error,
            category=category,
            severity=severity,
            is_retryable=is_retryable,
            provider=provider,
            user_message=self._user_message(category, message, provider),
            error_type=ERROR_TYPE_BY_CATEGORY[category],
            retry_delay=self._backoff_delay(1) if is_retryable else None,
            metadata={
                "error_name": type(error).__name__,
                "error_message": sanitize_message(message),
                "context": context if context is not None else {},
                "timestamp": utc_now().isoformat(),
            },
        )

        self._log_error(processed)
        return processed

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        provider: str,
        context: Optional[Mapping[str, Any]] = None,
        on_retry: Optional[Callable[[int, ProcessedError, float], None]] = None
    ) -> T:
        """
        Run an async operation with automatic retries.

        Attempts run strictly one after another. Non-retryable failures stop
        immediately; retryable ones are retried up to ``max_retries`` times.

        Args:
            operation: Zero-argument callable returning an awaitable
            provider: Provider identifier for classification
            context: Extra context recorded with every failure
            on_retry: Optional callback (attempt_number, processed, delay)

        Returns:
            Result of the first successful attempt

        Raises:
            ChatbotError: Wrapping the classification of the terminal failure
        """
        max_retries = self.retry_config.max_retries

        for attempt in range(max_retries + 1):
            try:
                return await operation()
            except Exception as e:
                processed = self.process_error(e, provider, {
                    **(context or {}),
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                })

                if attempt == max_retries or not processed.is_retryable:
                    raise ChatbotError(processed, attempts=attempt + 1) from e

                delay = self.calculate_retry_delay(attempt + 1)
                self.logger.info(
                    f"Retrying {provider} operation in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{max_retries}, {processed.category.value})"
                )
                if on_retry:
                    on_retry(attempt + 1, processed, delay)

                await asyncio.sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError("Retry loop exited without a result")

    def calculate_retry_delay(self, attempt: int) -> float:
        """
        Delay before retry ``attempt`` (1-based), in seconds.

        With jitter the delay is drawn from [delay / 2, delay], so it never
        exceeds the capped backoff and is never negative.
        """
        delay = self._backoff_delay(attempt)
        if self.retry_config.use_jitter:
            delay *= random.uniform(0.5, 1.0)
        return delay

    def _backoff_delay(self, attempt: int) -> float:
        config = self.retry_config
        exponential = config.base_delay * (config.backoff_multiplier ** (attempt - 1))
        return max(0.0, min(exponential, config.max_delay))

    @staticmethod
    def _user_message(category: ErrorCategory, message: str, provider: str) -> str:
        text = str(provider)
        name = text[:1].upper() + text[1:] if text else "the provider"
        return USER_MESSAGES[category].format(name=name, message=sanitize_message(message))

    def _log_error(self, processed: ProcessedError) -> None:
        log = getattr(self.logger, LOG_METHOD_BY_SEVERITY[processed.severity])
        log(
            f"Provider error from {processed.provider}: {processed.category.value} "
            f"(severity={processed.severity.value}, retryable={processed.is_retryable}) - "
            f"{processed.metadata['error_message']}"
        )


# Provider-tuned backoff policies (seconds)
PROVIDER_RETRY_POLICIES: Dict[str, Dict[str, Any]] = {
    ProviderType.OPENAI.value: {"base_delay": 1.0, "max_delay": 30.0},
    ProviderType.ANTHROPIC.value: {"base_delay": 2.0, "max_delay": 60.0},
    ProviderType.GOOGLE.value: {"base_delay": 1.5, "max_delay": 45.0},
}


class ProviderAwareErrorHandler:
    """Routes classification and retries through provider-tuned handlers."""

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None
    ):
        base = retry_config or RetryConfig()
        self.default_handler = ErrorHandler(base, logger)
        self._handlers = {
            name: ErrorHandler(base, logger, **policy)
            for name, policy in PROVIDER_RETRY_POLICIES.items()
        }

    def get_handler_for_provider(self, provider: str) -> ErrorHandler:
        return self._handlers.get(str(provider).lower(), self.default_handler)

    def process_error(
        self,
        error: Any,
        provider: str,
        context: Optional[Mapping[str, Any]] = None
    ) -> ProcessedError:
        return self.get_handler_for_provider(provider).process_error(error, provider, context)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        provider: str,
        context: Optional[Mapping[str, Any]] = None,
        on_retry: Optional[Callable[[int, ProcessedError, float], None]] = None
    ) -> T:
        handler = self.get_handler_for_provider(provider)
        return await handler.execute_with_retry(operation, provider, context, on_retry)
