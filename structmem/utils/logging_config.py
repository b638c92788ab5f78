"""
Centralized logging configuration for the application.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

# Libraries whose INFO output would drown out memory operations
NOISY_LOGGERS = ('botocore', 'boto3', 'urllib3', 'httpx', 'mcp')


def setup_logging(config: Optional[AppConfig] = None, level: Optional[str] = None) -> None:
    """
    Setup centralized logging configuration.

    Records go to stderr; stdout carries command output only. Calling again
    replaces the previous configuration, which is how the CLI raises verbosity.

    Args:
        config: AppConfig instance, uses default if None
        level: Overrides the configured log level
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    root_level = getattr(logging, (level or config.log_level).upper(), logging.INFO)
    logging.basicConfig(level=root_level,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                        handlers=[logging.StreamHandler(sys.stderr)],
                        force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger; its level follows the root configured by setup_logging.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
