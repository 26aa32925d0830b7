"""
Order Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
import asyncio
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

# Import only models (no I/O dependencies)
from .models import (
    NewOrder,
    Order,
    OrderQuery,
    OrderSortField,
    OrderStatus,
    OrderSummaryStats,
    ProductSnapshot,
)


# ============================================================================
# Custom Exceptions - defined here to avoid importing repository
# ============================================================================

class OrderServiceError(Exception):
    """Base exception for order service errors"""

    error_code = "ORDER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidOrderProductsError(OrderServiceError):
    """Empty cart, too many lines, or a quantity out of range"""

    error_code = "INVALID_ORDER_PRODUCTS"


class ProductsNotFoundError(OrderServiceError):
    """One or more requested products are unknown to the catalog"""

    error_code = "PRODUCTS_NOT_FOUND"

    def __init__(self, product_ids: List[str]):
        super().__init__(f"Products not found: {', '.join(product_ids)}")
        self.product_ids = list(product_ids)


class OrderNotFoundError(OrderServiceError):
    """Order not found error"""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


class OrderNotModifiableError(OrderServiceError):
    """Order is completed or cancelled and accepts no further changes"""

    error_code = "ORDER_NOT_MODIFIABLE"

    def __init__(self, order_id: str, status: OrderStatus):
        super().__init__(f"Order {order_id} cannot be modified in status '{status.value}'")
        self.order_id = order_id
        self.status = status


class InvalidStatusTransitionError(OrderServiceError):
    """Invalid order state transition"""

    error_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, from_status: OrderStatus, to_status: OrderStatus):
        super().__init__(
            f"Cannot change order status from '{from_status.value}' to '{to_status.value}'"
        )
        self.from_status = from_status
        self.to_status = to_status


class OrderCreateConflictError(OrderServiceError):
    """Identifier collisions persisted across every insert attempt"""

    error_code = "ORDER_CREATE_CONFLICT"


class OrderConcurrentModificationError(OrderServiceError):
    """The order changed between load and conditional update"""

    error_code = "ORDER_CONCURRENT_MODIFICATION"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} was modified concurrently, reload and retry")
        self.order_id = order_id


class InvalidDateRangeError(OrderServiceError):
    """Report date range is malformed or start is after end"""

    error_code = "INVALID_DATE_RANGE"


class ReportGenerationFailedError(OrderServiceError):
    """A report query failed; no partial report is returned"""

    error_code = "REPORT_GENERATION_FAILED"

    def __init__(self, cause: BaseException):
        super().__init__(f"Failed to generate report: {cause}")
        self.cause = cause


class OrderStoreError(OrderServiceError):
    """Store failure wrapped with the operation and entity it affected"""

    error_code = "ORDER_STORE_ERROR"

    def __init__(self, operation: str, cause: BaseException, order_id: Optional[str] = None):
        target = f" (order {order_id})" if order_id else ""
        super().__init__(f"Order store {operation} failed{target}: {cause}")
        self.operation = operation
        self.order_id = order_id
        self.cause = cause


class ProductLookupError(OrderServiceError):
    """Product catalog could not be reached or answered badly"""

    error_code = "PRODUCT_LOOKUP_ERROR"


class DuplicateIdentifierError(Exception):
    """Raised by a store when the order identifier is already taken"""

    def __init__(self, identifier: str):
        super().__init__(f"Duplicate order identifier: {identifier}")
        self.identifier = identifier


class OperationCancelledError(asyncio.CancelledError):
    """The caller's cancel signal fired while a store or lookup call was pending"""

    error_code = "CANCELLED"

    def __init__(self, operation: str):
        super().__init__(f"{operation} cancelled")
        self.operation = operation


# ============================================================================
# Store Protocol
# ============================================================================

@runtime_checkable
class OrderStoreProtocol(Protocol):
    """
    Interface for the order document store.

    Implementations must provide these methods.
    Used for dependency injection to enable testing.
    """

    async def initialize(self) -> None:
        """Open connections and ensure the schema exists"""
        ...

    async def close(self) -> None:
        """Release connections"""
        ...

    async def health_check(self) -> bool:
        """Check store connectivity"""
        ...

    async def insert(self, order: NewOrder) -> Order:
        """Persist a new order; raises DuplicateIdentifierError on identifier collision"""
        ...

    async def get(self, order_id: str) -> Optional[Order]:
        """Get order by ID"""
        ...

    async def update_if_unchanged(
        self,
        order_id: str,
        expected_status: OrderStatus,
        expected_version: int,
        changes: Dict[str, Any],
    ) -> Optional[Order]:
        """Atomically apply changes if status and version still match; None otherwise"""
        ...

    async def delete(self, order_id: str) -> bool:
        """Delete order, True when a document was removed"""
        ...

    async def find(
        self,
        query: OrderQuery,
        sort_field: OrderSortField = OrderSortField.CREATED_AT,
        descending: bool = True,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Order], int]:
        """Sorted, optionally paginated matches plus the unpaginated match count"""
        ...

    async def summarize(self, query: OrderQuery) -> OrderSummaryStats:
        """Server-side aggregation over matching orders"""
        ...


# ============================================================================
# Client Protocols
# ============================================================================

@runtime_checkable
class ProductLookupProtocol(Protocol):
    """Interface for the product catalog lookup"""

    async def find_many_by_ids(self, product_ids: List[str]) -> List[ProductSnapshot]:
        """At most one snapshot per requested id; unknown ids are simply omitted"""
        ...
