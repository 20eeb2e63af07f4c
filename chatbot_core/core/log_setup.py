"""
Logging Setup
=============

Configures the root logger for hosts embedding the chatbot core.
"""

import logging
from typing import List, Optional

from .config import LoggingConfig

LOG_FORMAT = '[{asctime}] [{levelname:<8}] {name}: {message}'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ('httpx', 'httpcore', 'groq')


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Configure logging from a LoggingConfig.

    Args:
        config: Logging configuration (defaults if omitted)

    Returns:
        The package logger
    """
    config = config or LoggingConfig()
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, encoding='utf-8', mode='a'))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        style='{',
        handlers=handlers,
        force=True
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger('chatbot_core')
