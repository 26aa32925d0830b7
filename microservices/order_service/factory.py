"""
Order Service Factory

Wires the order service from real dependencies: the PostgreSQL order store
and the HTTP product client. This is the only place that builds I/O clients;
tests construct OrderService from in-memory doubles instead.
"""

import logging
from typing import Optional

from core.config import Settings, get_settings

from .clients.product_client import ProductClient
from .order_reporting import OrderReportingEngine
from .order_repository import OrderRepository
from .order_service import OrderService
from .order_store import PostgresOrderStore
from .protocols import OrderStoreProtocol, ProductLookupProtocol

logger = logging.getLogger(__name__)


def create_order_service(
    store: OrderStoreProtocol,
    product_lookup: ProductLookupProtocol,
    settings: Optional[Settings] = None,
) -> OrderService:
    """Build the service graph on top of an initialized store and product lookup"""
    settings = settings or get_settings()

    repository = OrderRepository(
        store=store,
        product_lookup=product_lookup,
        identifier_attempts=settings.service.identifier_attempts,
    )
    reporting = OrderReportingEngine(store=store)

    return OrderService(
        repository=repository,
        reporting=reporting,
        default_page_size=settings.service.default_page_size,
        max_page_size=settings.service.max_page_size,
    )


class OrderServiceFactory:
    """Factory for creating order service components"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._store: Optional[PostgresOrderStore] = None
        self._product_client: Optional[ProductClient] = None
        self._service: Optional[OrderService] = None

    async def initialize(self) -> None:
        """Initialize all components"""
        logger.info("Initializing Order Service components...")

        self._store = PostgresOrderStore(self.settings.infra)
        await self._store.initialize()

        self._product_client = ProductClient(config=self.settings.service)

        self._service = create_order_service(
            store=self._store,
            product_lookup=self._product_client,
            settings=self.settings,
        )

        logger.info("Order Service components initialized")

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing Order Service components...")

        if self._product_client:
            await self._product_client.close()

        if self._store:
            await self._store.close()

        logger.info("Order Service components closed")

    @property
    def store(self) -> PostgresOrderStore:
        """Get order store"""
        if not self._store:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._store

    @property
    def product_client(self) -> ProductClient:
        """Get product client"""
        if not self._product_client:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._product_client

    @property
    def service(self) -> OrderService:
        """Get order service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service


__all__ = [
    "OrderServiceFactory",
    "create_order_service",
]
