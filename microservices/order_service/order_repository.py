"""
Order Repository

Orchestrates order creation and mutation on top of the order store and the
product lookup: validates carts, snapshots catalog prices, recomputes totals
and enforces the status state machine before anything is written.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from .cancellation import run_cancellable
from .models import (
    NewOrder,
    Order,
    OrderCreateRequest,
    OrderLine,
    OrderLineRequest,
    OrderQuery,
    OrderSearchFilters,
    OrderSortField,
    OrderUpdateRequest,
)
from .order_calculation import (
    compute_totals,
    generate_identifier,
    resolve_lines,
    validate_requested_products,
)
from .order_state_machine import INITIAL_STATUS, is_modifiable, validate_transition
from .protocols import (
    DuplicateIdentifierError,
    OrderConcurrentModificationError,
    OrderCreateConflictError,
    OrderNotFoundError,
    OrderNotModifiableError,
    OrderServiceError,
    OrderStoreError,
    OrderStoreProtocol,
    ProductLookupError,
    ProductLookupProtocol,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderRepository:
    """
    Order lifecycle orchestrator

    Every validation runs before the first store mutation. Updates go through
    the store's conditional update so two concurrent writers cannot both pass
    the modifiability check.
    """

    def __init__(
        self,
        store: OrderStoreProtocol,
        product_lookup: ProductLookupProtocol,
        identifier_attempts: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.product_lookup = product_lookup
        # at least one retry on identifier collision
        self.identifier_attempts = max(2, identifier_attempts)
        self.clock = clock

    # ====================
    # Mutations
    # ====================

    async def create(
        self,
        request: OrderCreateRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Order:
        """Create a pending order with price snapshots for every line"""
        validate_requested_products(request.products)

        lines = await self._resolve_lines(request.products, cancel_event)
        totals = compute_totals(lines)

        for attempt in range(1, self.identifier_attempts + 1):
            new_order = NewOrder(
                identifier=generate_identifier(self.clock()),
                client_id=request.client_id,
                client_name=request.client_name,
                products=lines,
                total=totals.total,
                total_quantity=totals.total_quantity,
                status=INITIAL_STATUS,
            )
            try:
                order = await self._store_call("insert", self.store.insert(new_order), cancel_event)
            except DuplicateIdentifierError as e:
                logger.warning(
                    f"Identifier collision on {e.identifier} "
                    f"(attempt {attempt}/{self.identifier_attempts})"
                )
                continue

            logger.info(
                f"Order created: {order.id} ({order.identifier}) for client {order.client_id}, "
                f"total {order.total}"
            )
            return order

        logger.error(f"Failed to create order for client {request.client_id}: identifier conflicts")
        raise OrderCreateConflictError(
            f"Could not allocate a unique order identifier after {self.identifier_attempts} attempts"
        )

    async def update_by_id(
        self,
        order_id: str,
        patch: OrderUpdateRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Order:
        """
        Apply a partial update.

        Raises:
            OrderNotFoundError: unknown order
            OrderNotModifiableError: order is completed or cancelled
            InvalidStatusTransitionError: status change not in the transition table
            InvalidOrderProductsError / ProductsNotFoundError: bad replacement cart
            OrderConcurrentModificationError: order changed since it was loaded
        """
        existing = await self._get_or_raise(order_id, cancel_event)

        if not is_modifiable(existing.status):
            raise OrderNotModifiableError(order_id, existing.status)

        if patch.is_empty():
            return existing

        changes = {}

        if patch.status is not None:
            validate_transition(existing.status, patch.status)
            changes["status"] = patch.status

        if patch.client_name is not None:
            changes["client_name"] = patch.client_name

        if patch.products is not None:
            validate_requested_products(patch.products)
            lines = await self._resolve_lines(patch.products, cancel_event)
            totals = compute_totals(lines)
            changes["products"] = lines
            changes["total"] = totals.total
            changes["total_quantity"] = totals.total_quantity

        updated = await self._store_call(
            "update",
            self.store.update_if_unchanged(order_id, existing.status, existing.version, changes),
            cancel_event,
            order_id=order_id,
        )

        if updated is None:
            current = await self._store_call("get", self.store.get(order_id), cancel_event, order_id=order_id)
            if current is None:
                raise OrderNotFoundError(order_id)
            logger.warning(
                f"Concurrent modification of order {order_id}: "
                f"expected {existing.status.value}/v{existing.version}, "
                f"found {current.status.value}/v{current.version}"
            )
            raise OrderConcurrentModificationError(order_id)

        logger.info(f"Order updated: {order_id} fields={sorted(changes)}")
        return updated

    async def delete_by_id(
        self,
        order_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Hard delete an existing order"""
        await self._get_or_raise(order_id, cancel_event)

        deleted = await self._store_call(
            "delete", self.store.delete(order_id), cancel_event, order_id=order_id
        )
        if not deleted:
            raise OrderNotFoundError(order_id)

        logger.info(f"Order deleted: {order_id}")

    # ====================
    # Queries
    # ====================

    async def find_by_id(
        self,
        order_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[Order]:
        return await self._store_call("get", self.store.get(order_id), cancel_event, order_id=order_id)

    async def find_all(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[List[Order], int]:
        """All orders, newest first; unpaginated unless page and limit are given"""
        skip, limit = _page_window(page, limit)
        return await self._store_call(
            "find",
            self.store.find(OrderQuery(), OrderSortField.CREATED_AT, True, skip, limit),
            cancel_event,
        )

    async def search(
        self,
        filters: OrderSearchFilters,
        page: int = 1,
        limit: int = 10,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[List[Order], int]:
        """Filtered, paginated listing (1-indexed pages), newest first"""
        skip, limit = _page_window(page, limit)
        return await self._store_call(
            "search",
            self.store.find(self.build_search_query(filters), OrderSortField.CREATED_AT, True, skip, limit),
            cancel_event,
        )

    @staticmethod
    def build_search_query(filters: OrderSearchFilters) -> OrderQuery:
        """
        Equality on status and identifier, case-insensitive substring on
        client name, inclusive bounds on total.
        """
        return OrderQuery(
            status=filters.status,
            identifier=filters.identifier,
            client_name_contains=filters.client_name,
            min_total=filters.min_total,
            max_total=filters.max_total,
        )

    # ====================
    # Helpers
    # ====================

    async def _get_or_raise(self, order_id: str, cancel_event: Optional[asyncio.Event]) -> Order:
        order = await self._store_call("get", self.store.get(order_id), cancel_event, order_id=order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _resolve_lines(
        self,
        requested: List[OrderLineRequest],
        cancel_event: Optional[asyncio.Event],
    ) -> List[OrderLine]:
        product_ids = list(dict.fromkeys(p.product_id for p in requested))
        try:
            snapshots = await run_cancellable(
                self.product_lookup.find_many_by_ids(product_ids), cancel_event, "product lookup"
            )
        except OrderServiceError:
            raise
        except Exception as e:
            logger.error(f"Product lookup failed for {len(product_ids)} products: {e}")
            raise ProductLookupError(f"Product lookup failed: {e}") from e

        catalog = {snapshot.id: snapshot for snapshot in snapshots}
        return resolve_lines(requested, catalog)

    async def _store_call(
        self,
        operation: str,
        awaitable: Awaitable[T],
        cancel_event: Optional[asyncio.Event],
        order_id: Optional[str] = None,
    ) -> T:
        try:
            return await run_cancellable(awaitable, cancel_event, f"order store {operation}")
        except (OrderServiceError, DuplicateIdentifierError):
            raise
        except Exception as e:
            logger.error(f"Order store {operation} failed for order {order_id or '-'}: {e}")
            raise OrderStoreError(operation, e, order_id=order_id) from e


def _page_window(page: Optional[int], limit: Optional[int]) -> Tuple[int, Optional[int]]:
    if not page or not limit:
        return 0, None
    return (page - 1) * limit, limit
