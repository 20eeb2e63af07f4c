"""Helpers for inspecting and sanitizing provider errors."""

import re
from typing import Any, Dict, Optional


_SECRET_PATTERNS = [
    (re.compile(r"api[_-]?key[:\s=]+[\w-]+", re.IGNORECASE), "api_key=***"),
    (re.compile(r"token[:\s=]+[\w-]+", re.IGNORECASE), "token=***"),
    (re.compile(r"authorization[:\s=]+(bearer\s+)?[\w-]+", re.IGNORECASE), "authorization=***"),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"), "sk-***"),
]

_RETRYABLE_HINTS = (
    "timeout", "network", "connection", "rate limit", "server error",
    "service unavailable", "overloaded", "503", "502", "429",
)

_PERMANENT_HINTS = (
    "invalid api key", "unauthorized", "forbidden", "quota exceeded",
    "content policy", "model not found", "permission denied", "401", "403",
)

_HTTP_CODE = re.compile(r"\b([45]\d{2})\b")
_NAMED_CODE = (
    re.compile(r"code:\s*([A-Z_]+)", re.IGNORECASE),
    re.compile(r"error_code:\s*([A-Z_]+)", re.IGNORECASE),
    re.compile(r"([A-Z_]+_ERROR)", re.IGNORECASE),
)


def error_message(error: Any) -> str:
    """
    Coerce any raised value into a message string without raising.

    Handles exceptions, strings, None and objects whose ``__str__`` fails
    or recurses.
    """
    if isinstance(error, str):
        return error
    if error is None:
        return "Unknown error"
    try:
        text = str(error)
    except Exception:
        # Broken __str__; fall back to the type name
        text = ""
    if not text and isinstance(error, BaseException):
        return type(error).__name__
    return text or f"<{type(error).__name__}>"


def sanitize_message(message: str) -> str:
    """Mask API keys, tokens and authorization values in a message."""
    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def is_retryable_error(error: Any) -> bool:
    """Quick check for common transient failure patterns across providers."""
    if not isinstance(error, BaseException):
        return False
    message = error_message(error).lower()
    return any(hint in message for hint in _RETRYABLE_HINTS)


def is_permanent_failure(error: Any) -> bool:
    """Check whether an error indicates a failure that retrying cannot fix."""
    if not isinstance(error, BaseException):
        return False
    message = error_message(error).lower()
    return any(hint in message for hint in _PERMANENT_HINTS)


def extract_error_code(error: Any) -> Optional[str]:
    """Extract an HTTP status or a named error code from an error."""
    if not isinstance(error, BaseException):
        return None

    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return str(status)

    message = error_message(error)
    match = _HTTP_CODE.search(message)
    if match:
        return match.group(1)

    for pattern in _NAMED_CODE:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


def sanitize_error_for_logging(error: Any) -> Dict[str, Any]:
    """Build a log-safe description of an error."""
    if not isinstance(error, BaseException):
        return {"message": sanitize_message(error_message(error)), "type": type(error).__name__}

    return {
        "name": type(error).__name__,
        "message": sanitize_message(error_message(error)),
        "module": type(error).__module__,
        "code": extract_error_code(error),
    }
