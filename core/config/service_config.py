#!/usr/bin/env python3
"""Order service configuration

Settings for the order service itself and the peer services it calls
(currently only the product catalog).
"""
import os
from dataclasses import dataclass


def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class OrderServiceConfig:
    """Order service settings"""

    service_name: str = "order_service"
    service_host: str = "0.0.0.0"
    service_port: int = 8210

    # ===========================================
    # Peer services
    # ===========================================
    # Product catalog, consumed read-only for price/name snapshots
    product_service_url: str = "http://localhost:8215"
    http_timeout: float = 30.0

    # ===========================================
    # Business settings
    # ===========================================
    # Insert attempts before a duplicate identifier is surfaced (min 2)
    identifier_attempts: int = 3
    default_page_size: int = 10
    max_page_size: int = 100

    @classmethod
    def from_env(cls) -> 'OrderServiceConfig':
        """Load order service configuration from environment variables"""
        return cls(
            service_name=os.getenv("SERVICE_NAME", "order_service"),
            service_host=os.getenv("ORDER_SERVICE_HOST", "0.0.0.0"),
            service_port=_int(os.getenv("ORDER_SERVICE_PORT", "8210"), 8210),
            product_service_url=os.getenv("PRODUCT_SERVICE_URL", "http://localhost:8215"),
            http_timeout=_float(os.getenv("HTTP_TIMEOUT", "30"), 30.0),
            identifier_attempts=max(2, _int(os.getenv("ORDER_IDENTIFIER_ATTEMPTS", "3"), 3)),
            default_page_size=_int(os.getenv("ORDER_DEFAULT_PAGE_SIZE", "10"), 10),
            max_page_size=_int(os.getenv("ORDER_MAX_PAGE_SIZE", "100"), 100),
        )
