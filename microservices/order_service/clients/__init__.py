"""
Order Service Clients Module

HTTP clients for synchronous communication with other services
"""

from .product_client import ProductClient

__all__ = [
    "ProductClient",
]
