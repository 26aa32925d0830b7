#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure for the microservices in this repository.

COMPONENTS:
    - config/: Dataclass settings loaded from the environment (python-dotenv)
    - logger.py: Process-wide logging setup for a service

USAGE:
    from core.config import get_settings
    from core.logger import setup_service_logger

    settings = get_settings()
    logger = setup_service_logger("order_service", settings.logging)
"""

__version__ = "2.0.0"
