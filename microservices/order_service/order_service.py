"""
Order Service Business Logic

Request-facing layer: delegates lifecycle work to the repository and report
generation to the reporting engine, and shapes results into response models.
"""

import asyncio
import logging
import math
from typing import Optional, Union

from .models import (
    CsvReport,
    DeleteOrderResponse,
    Order,
    OrderCreateRequest,
    OrderListResponse,
    OrderReportRequest,
    OrderReportResponse,
    OrderResponse,
    OrderSearchFilters,
    OrderUpdateRequest,
    PaginationMeta,
)
from .order_reporting import OrderReportingEngine
from .order_repository import OrderRepository
from .protocols import OrderNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10


class OrderService:
    """
    Order management business logic service

    Handles the order lifecycle and sales reporting.
    """

    def __init__(
        self,
        repository: OrderRepository,
        reporting: OrderReportingEngine,
        default_page_size: int = DEFAULT_LIMIT,
        max_page_size: int = 100,
    ):
        self.repository = repository
        self.reporting = reporting
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    # ====================
    # Order lifecycle
    # ====================

    async def create(
        self,
        request: OrderCreateRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OrderResponse:
        order = await self.repository.create(request, cancel_event)
        return self._to_response(order)

    async def find_one(
        self,
        order_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OrderResponse:
        order = await self.repository.find_by_id(order_id, cancel_event)
        if order is None:
            raise OrderNotFoundError(order_id)
        return self._to_response(order)

    async def find_all(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OrderListResponse:
        """
        List orders newest first.

        Without page and limit every order is returned as a single page.
        """
        if page is not None or limit is not None:
            page, limit = self._page_params(page, limit)

        orders, total = await self.repository.find_all(page, limit, cancel_event)

        if limit is None:
            return self._to_list(orders, total, 1, total)
        return self._to_list(orders, total, page, limit)

    async def update(
        self,
        order_id: str,
        patch: OrderUpdateRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OrderResponse:
        order = await self.repository.update_by_id(order_id, patch, cancel_event)
        return self._to_response(order)

    async def remove(
        self,
        order_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DeleteOrderResponse:
        await self.repository.delete_by_id(order_id, cancel_event)
        return DeleteOrderResponse(message=f"Order {order_id} deleted successfully")

    async def search(
        self,
        filters: OrderSearchFilters,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OrderListResponse:
        page, limit = self._page_params(page, limit)
        orders, total = await self.repository.search(filters, page, limit, cancel_event)
        return self._to_list(orders, total, page, limit)

    # ====================
    # Reporting
    # ====================

    async def generate_report(
        self,
        request: OrderReportRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Union[OrderReportResponse, CsvReport]:
        return await self.reporting.generate(request, cancel_event)

    # ====================
    # Helpers
    # ====================

    def _page_params(self, page: Optional[int], limit: Optional[int]):
        page = page if page and page > 0 else DEFAULT_PAGE
        limit = limit if limit and limit > 0 else self.default_page_size
        return page, min(limit, self.max_page_size)

    def _to_list(self, orders, total: int, page: int, limit: int) -> OrderListResponse:
        return OrderListResponse(
            data=[self._to_response(order) for order in orders],
            meta=PaginationMeta(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit) if limit else 0,
            ),
        )

    @staticmethod
    def _to_response(order: Order) -> OrderResponse:
        return OrderResponse(
            id=order.id,
            identifier=order.identifier,
            client_id=order.client_id,
            client_name=order.client_name,
            total=order.total,
            total_quantity=order.total_quantity,
            status=order.status,
            products=order.products,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
