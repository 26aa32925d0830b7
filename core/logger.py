"""
Service Logger Setup

Configures the process-wide logging for one microservice from LoggingConfig.

Usage:
    from core.logger import setup_service_logger

    logger = setup_service_logger("order_service")
    logger.info("Service starting")
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig

_configured = False


def setup_service_logger(
    service_name: str,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure root logging once and return the service logger.

    Output goes to stdout (container friendly) and, when LOG_FILE is set,
    to that file as well. Chatty third-party loggers are capped at WARNING.
    """
    global _configured
    config = config or LoggingConfig.from_env()

    if not _configured:
        handlers = []
        if config.enable_console:
            handlers.append(logging.StreamHandler(sys.stdout))
        if config.log_file:
            handlers.append(logging.FileHandler(config.log_file))

        logging.basicConfig(
            level=getattr(logging, config.log_level.upper(), logging.INFO),
            format=config.log_format,
            handlers=handlers or None,
        )

        for name in config.quiet_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)

        _configured = True

    return logging.getLogger(service_name)
