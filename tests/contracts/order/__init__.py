"""
Order Service Contracts

Data contracts for order_service testing.
"""

from .data_contract import (
    OrderCreateRequestBuilder,
    OrderTestDataFactory,
)

__all__ = [
    "OrderTestDataFactory",
    "OrderCreateRequestBuilder",
]
