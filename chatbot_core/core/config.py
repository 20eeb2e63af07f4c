"""
Configuration Management for Chatbot Core
=========================================

Handles loading and managing configuration from INI files and the environment.
"""

import os
import configparser
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar
import logging

from dotenv import load_dotenv

from .exceptions import ConfigurationException


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_ERRORS: Tuple[str, ...] = ("network", "timeout", "rate_limit", "server")


def _identity(identifier: str) -> str:
    return identifier


@dataclass
class RetryConfig:
    """Retry and backoff policy for provider calls (delays in seconds)."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    use_jitter: bool = True
    retryable_errors: Tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigurationException("max_retries", "max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationException("base_delay", "Retry delays must not be negative")
        # Category enums and plain names are both accepted
        self.retryable_errors = tuple(
            getattr(category, "value", category) for category in self.retryable_errors
        )


@dataclass
class RateLimitConfig:
    """Fixed-window rate limiting configuration."""
    max_requests: int = 100
    window_seconds: float = 60.0
    key_generator: Callable[[str], str] = _identity
    message: str = "Too many requests, please try again later."
    status_code: int = 429
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False
    enable_logging: bool = True
    cleanup_interval: float = 300.0

    def __post_init__(self):
        if self.max_requests < 0:
            raise ConfigurationException("max_requests", "max_requests must be >= 0")
        if self.window_seconds <= 0:
            raise ConfigurationException("window_seconds", "window_seconds must be positive")


@dataclass
class ConversationConfig:
    """Conversation history configuration."""
    max_history_length: Optional[int] = None
    session_timeout_minutes: Optional[float] = None
    cleanup_interval: float = 300.0

    def __post_init__(self):
        if self.max_history_length is not None and self.max_history_length < 1:
            raise ConfigurationException(
                "max_history_length", "max_history_length must be at least 1"
            )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    log_file: Optional[str] = None


@dataclass
class ProviderConfig:
    """Configuration for a single AI provider."""
    name: str
    api_key: str = ""
    model: str = ""
    url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout: float = 30.0
    enabled: bool = True
    fallback_models: List[str] = field(default_factory=list)

    def is_valid(self) -> bool:
        """Check if the provider configuration is valid."""
        return bool(self.name and self.model and (self.api_key or self.name == "ollama"))


def merge_config(defaults: T, overrides: Optional[Mapping[str, Any]] = None) -> T:
    """
    Merge a partial mapping over a config dataclass, one level deep.

    Args:
        defaults: Config instance supplying every default
        overrides: Partial field values (None values are ignored)

    Returns:
        New config instance

    Raises:
        ConfigurationException: If an override names an unknown field
    """
    if not overrides:
        return replace(defaults)

    known = {f.name for f in fields(defaults)}
    for key in overrides:
        if key not in known:
            raise ConfigurationException(
                key, f"Unknown {type(defaults).__name__} option: {key}"
            )

    return replace(defaults, **{k: v for k, v in overrides.items() if v is not None})


# Environment variable names per provider
PROVIDER_ENV_KEYS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
    "meta": "META_API_KEY",
    "xai": "XAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "ollama": "OLLAMA_API_KEY",
    "groq": "GROQ_API_KEY",
}

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-haiku-20240307",
    "google": "gemini-1.5-flash",
    "meta": "llama-3.1-70b-instruct",
    "xai": "grok-beta",
    "deepseek": "deepseek-chat",
    "ollama": "llama3",
    "groq": "llama-3.3-70b-versatile",
}


class ChatConfig:
    """
    Main configuration class for the chatbot core.

    Loads configuration from INI file and environment variables.
    Provides typed access to all configuration values.
    """

    DEFAULT_CONFIG_PATH = "config/chatbot.ini"

    def __init__(self, config_path: str = None, load_env: bool = True):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self.load_env = load_env
        self._config = configparser.ConfigParser()

        # General values
        self.system_prompt: str = ""
        self.enable_memory: bool = True
        self.max_message_length: int = 10000

        self.providers: List[ProviderConfig] = []
        self.provider_priority: List[str] = []

        self.retry = RetryConfig()
        self.rate_limit = RateLimitConfig()
        self.conversation = ConversationConfig()
        self.logging = LoggingConfig()

        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment."""
        if self.load_env:
            load_dotenv()

        self._config = configparser.ConfigParser()
        config_file = Path(self.config_path)

        if config_file.exists():
            self._config.read(config_file, encoding="utf-8")
            logger.info(f"Loaded configuration from {self.config_path}")
        else:
            logger.warning(f"Configuration file not found: {self.config_path}. Using defaults.")

        self._load_general_config()
        self._load_retry_config()
        self._load_rate_limit_config()
        self._load_conversation_config()
        self._load_logging_config()
        self._load_provider_configs()

    def _load_general_config(self) -> None:
        section = 'general'

        self.system_prompt = self._get(section, 'system_prompt', "You are a helpful assistant.")
        self.enable_memory = self._getboolean(section, 'enable_memory', True)
        self.max_message_length = self._getint(section, 'max_message_length', 10000, minimum=1)

    def _load_retry_config(self) -> None:
        section = 'retry'
        retryable = self._getlist(section, 'retryable_errors', list(DEFAULT_RETRYABLE_ERRORS))

        self.retry = RetryConfig(
            max_retries=self._getint(section, 'max_retries', 3, minimum=0),
            base_delay=self._getfloat(section, 'base_delay', 1.0, minimum=0),
            max_delay=self._getfloat(section, 'max_delay', 30.0, minimum=0),
            backoff_multiplier=self._getfloat(section, 'backoff_multiplier', 2.0),
            use_jitter=self._getboolean(section, 'use_jitter', True),
            retryable_errors=tuple(retryable),
        )

    def _load_rate_limit_config(self) -> None:
        section = 'rate_limiting'

        self.rate_limit = RateLimitConfig(
            max_requests=self._getint(section, 'max_requests', 100, minimum=0),
            window_seconds=self._getfloat(section, 'window_seconds', 60.0, minimum=0, strict=True),
            skip_successful_requests=self._getboolean(section, 'skip_successful_requests', False),
            skip_failed_requests=self._getboolean(section, 'skip_failed_requests', False),
            enable_logging=self._getboolean(section, 'enable_logging', True),
            cleanup_interval=self._getfloat(section, 'cleanup_interval', 300.0, minimum=0, strict=True),
        )

    def _load_conversation_config(self) -> None:
        section = 'conversation'

        max_history = self._getint(section, 'max_history_length', 0, minimum=0)
        timeout = self._getfloat(section, 'session_timeout_minutes', 0.0, minimum=0)

        self.conversation = ConversationConfig(
            max_history_length=max_history or None,
            session_timeout_minutes=timeout or None,
            cleanup_interval=self._getfloat(section, 'cleanup_interval', 300.0, minimum=0, strict=True),
        )

    def _load_logging_config(self) -> None:
        section = 'logging'

        self.logging = LoggingConfig(
            log_level=self._get(section, 'log_level', 'INFO').upper(),
            log_file=self._get(section, 'log_file', None),
        )

    def _load_provider_configs(self) -> None:
        """Load provider configurations; API keys come from the environment."""
        self.providers = []

        priority_str = self._get('providers', 'priority', 'groq')
        self.provider_priority = [p.strip().lower() for p in priority_str.split(',') if p.strip()]

        for name in self.provider_priority:
            if not self._getboolean('providers', f'{name}_enabled', True):
                logger.debug(f"Provider {name} disabled in configuration")
                continue

            env_key = PROVIDER_ENV_KEYS.get(name, f"{name.upper()}_API_KEY")
            api_key = os.getenv(env_key, '')
            if not api_key and name != 'ollama':
                logger.warning(f"No API key found in environment for {name} ({env_key})")

            fallback_str = self._get(name, 'fallback_models', '')
            self.providers.append(ProviderConfig(
                name=name,
                api_key=api_key,
                model=self._get(name, 'model', DEFAULT_MODELS.get(name, '')),
                url=self._get(name, 'url', None),
                temperature=self._getfloat(name, 'temperature', 0.7),
                max_tokens=self._getint(name, 'max_tokens', 1000),
                timeout=self._getfloat(name, 'timeout', 30.0),
                fallback_models=[m.strip() for m in fallback_str.split(',') if m.strip()],
            ))

        logger.info(f"Loaded {len(self.providers)} provider configurations")

    # Helper methods for config parsing
    def _get(self, section: str, key: str, fallback: str = None) -> str:
        """Get a string value from config."""
        try:
            return self._config.get(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return fallback

    def _getint(self, section: str, key: str, fallback: int = 0, minimum: Optional[int] = None) -> int:
        """Get an integer value from config."""
        try:
            value = self._config.getint(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback
        return self._bounded(section, key, value, fallback, minimum)

    def _getfloat(
        self,
        section: str,
        key: str,
        fallback: float = 0.0,
        minimum: Optional[float] = None,
        strict: bool = False
    ) -> float:
        """Get a float value from config."""
        try:
            value = self._config.getfloat(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback
        return self._bounded(section, key, value, fallback, minimum, strict)

    def _bounded(self, section: str, key: str, value, fallback, minimum=None, strict: bool = False):
        """Return ``value`` unless it is below ``minimum`` (or equal to it when strict)."""
        if minimum is None:
            return value
        if value < minimum or (strict and value == minimum):
            logger.warning(f"Invalid [{section}] {key} = {value}; using default {fallback}")
            return fallback
        return value

    def _getboolean(self, section: str, key: str, fallback: bool = False) -> bool:
        """Get a boolean value from config."""
        try:
            return self._config.getboolean(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def _getlist(self, section: str, key: str, fallback: List[str] = None) -> List[str]:
        """Get a comma-separated list value from config."""
        value = self._get(section, key, None)
        if value is None:
            return fallback or []
        return [item.strip().lower() for item in value.split(',') if item.strip()]

    def get_provider_by_name(self, name: str) -> Optional[ProviderConfig]:
        """Get a provider configuration by name."""
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    def get_enabled_providers(self) -> List[ProviderConfig]:
        """Get list of enabled providers."""
        return [p for p in self.providers if p.enabled and p.is_valid()]

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()
        logger.info("Configuration reloaded")
