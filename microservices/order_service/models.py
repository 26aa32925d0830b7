"""
Order Service Data Models

Pydantic models for orders, order lines, searches and sales reports.
Attributes are snake_case in Python and camelCase on the wire.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel


# Money stays Decimal in Python and is emitted as a JSON number
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class OrderStatus(str, Enum):
    """Order status enumeration"""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    RETURNED = "returned"
    REFUNDED = "refunded"


class ReportSortKey(str, Enum):
    """Sort keys accepted by the sales report"""
    TOTAL_DESC = "total_desc"
    TOTAL_ASC = "total_asc"
    DATE_DESC = "date_desc"
    DATE_ASC = "date_asc"
    QUANTITY_DESC = "quantity_desc"
    QUANTITY_ASC = "quantity_asc"
    CLIENT_NAME_ASC = "client_name_asc"
    CLIENT_NAME_DESC = "client_name_desc"


class ReportFormat(str, Enum):
    """Report output encoding"""
    JSON = "json"
    CSV = "csv"


class OrderSortField(str, Enum):
    """Order fields the store knows how to sort on"""
    CREATED_AT = "created_at"
    TOTAL = "total"
    TOTAL_QUANTITY = "total_quantity"
    CLIENT_NAME = "client_name"


class ApiModel(BaseModel):
    """Base for models exchanged with callers (camelCase aliases)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ====================
# Core Order Models
# ====================

class OrderLine(ApiModel):
    """One product entry of an order with its frozen price and name"""
    product_id: str
    quantity: int
    price: Money
    name: str


class Order(ApiModel):
    """Core order model"""
    id: str
    identifier: str
    client_id: str
    client_name: str
    products: List[OrderLine]
    total: Money
    total_quantity: int
    status: OrderStatus = OrderStatus.PENDING
    version: int = 1
    created_at: datetime
    updated_at: datetime


class NewOrder(ApiModel):
    """Order document handed to the store; the store assigns id and timestamps"""
    identifier: str
    client_id: str
    client_name: str
    products: List[OrderLine]
    total: Money
    total_quantity: int
    status: OrderStatus = OrderStatus.PENDING


class ProductSnapshot(ApiModel):
    """Current catalog data for one product as returned by the product lookup"""
    id: str
    price: Money
    name: str


class OrderTotals(ApiModel):
    """Derived totals of a set of order lines"""
    total: Money
    total_quantity: int


# ====================
# Request Models
# ====================

class OrderLineRequest(ApiModel):
    """Requested product reference and quantity"""
    product_id: str = Field(..., min_length=1, description="Product to order")
    quantity: int = Field(..., description="Units to order (1-1000)")


class OrderCreateRequest(ApiModel):
    """Create order request"""
    client_id: str = Field(..., min_length=1, description="Ordering client")
    client_name: str = Field(..., min_length=1, description="Client display name at order time")
    products: List[OrderLineRequest] = Field(default_factory=list, description="Cart lines")

    @field_validator('client_name')
    @classmethod
    def validate_client_name(cls, v):
        if not v.strip():
            raise ValueError('client_name cannot be blank')
        return v.strip()


class OrderUpdateRequest(ApiModel):
    """Partial order update; omitted fields are left untouched"""
    client_name: Optional[str] = None
    products: Optional[List[OrderLineRequest]] = None
    status: Optional[OrderStatus] = None

    @field_validator('client_name')
    @classmethod
    def validate_client_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError('client_name cannot be blank')
        return v.strip() if v is not None else v

    def is_empty(self) -> bool:
        return self.client_name is None and self.products is None and self.status is None


class OrderSearchFilters(ApiModel):
    """Order search parameters"""
    client_name: Optional[str] = Field(None, description="Case-insensitive substring of the client name")
    identifier: Optional[str] = Field(None, description="Exact order identifier")
    status: Optional[OrderStatus] = None
    min_total: Optional[Decimal] = Field(None, ge=0, description="Inclusive lower bound on total")
    max_total: Optional[Decimal] = Field(None, ge=0, description="Inclusive upper bound on total")

    @field_validator('client_name')
    @classmethod
    def strip_client_name(cls, v):
        if v is None:
            return v
        return v.strip() or None

    @field_validator('identifier')
    @classmethod
    def normalize_identifier(cls, v):
        if v is None:
            return v
        return v.strip().upper() or None


class OrderReportRequest(ApiModel):
    """Sales report request"""
    start_date: str = Field(..., description="Start of range, ISO date or datetime (inclusive)")
    end_date: str = Field(..., description="End of range, ISO date or datetime (inclusive)")
    client_id: Optional[str] = None
    product_id: Optional[str] = None
    sort_by: ReportSortKey = ReportSortKey.TOTAL_DESC
    format: ReportFormat = ReportFormat.JSON
    page: int = Field(default=1, ge=1, description="Page number, JSON only")
    limit: int = Field(default=10, ge=1, le=100, description="Page size, JSON only")


# ====================
# Store Query Models
# ====================

class OrderQuery(BaseModel):
    """Store-agnostic predicate over order documents; unset fields do not filter"""
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    client_id: Optional[str] = None
    product_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    identifier: Optional[str] = None
    client_name_contains: Optional[str] = None
    min_total: Optional[Decimal] = None
    max_total: Optional[Decimal] = None


class OrderSummaryStats(BaseModel):
    """Raw aggregation over matching orders, before rounding"""
    total_orders: int = 0
    total_revenue: Decimal = Decimal("0")
    total_quantity_sold: int = 0
    average_order_value: Optional[Decimal] = None


# ====================
# Response Models
# ====================

class OrderResponse(ApiModel):
    """Order as exposed to callers"""
    id: str
    identifier: str
    client_id: str
    client_name: str
    total: Money
    total_quantity: int
    status: OrderStatus
    products: List[OrderLine]
    created_at: datetime
    updated_at: datetime


class PaginationMeta(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderListResponse(ApiModel):
    """Paged order list"""
    data: List[OrderResponse]
    meta: PaginationMeta


class DeleteOrderResponse(ApiModel):
    message: str


class ReportFilters(ApiModel):
    """Filters echoed back in a report"""
    start_date: str
    end_date: str
    client_id: Optional[str] = None
    product_id: Optional[str] = None
    sort_by: ReportSortKey


class ReportSummary(ApiModel):
    """Summary statistics of a report"""
    total_orders: int
    total_revenue: Money
    total_quantity_sold: int
    average_order_value: Money


class OrderReportProduct(ApiModel):
    product_id: str
    name: str
    quantity: int
    price: Money


class OrderReportItem(ApiModel):
    """One order in the JSON report"""
    order_id: str
    identifier: str
    client_id: str
    client_name: str
    total: Money
    total_quantity: int
    status: OrderStatus
    created_at: datetime
    products: List[OrderReportProduct]


class OrderReportResponse(ApiModel):
    """JSON sales report"""
    data: List[OrderReportItem]
    total: int
    page: int
    limit: int
    total_pages: int
    filters: ReportFilters
    summary: ReportSummary


class CsvReport(ApiModel):
    """Flat CSV sales report"""
    content: str
    content_type: str = "text/csv"
    filename: str


@dataclass(frozen=True)
class ReportRow:
    """One order line in the flattened report, carrying its parent order's fields"""
    order_id: str
    identifier: str
    client_id: str
    client_name: str
    total: Decimal
    total_quantity: int
    status: OrderStatus
    created_at: datetime
    product_id: str
    name: str
    quantity: int
    price: Decimal
    subtotal: Decimal


class OrderServiceStatus(BaseModel):
    """Order service status response"""
    service: str = "order_service"
    status: str = "operational"
    port: int = 8210
    version: str = "1.0.0"
    database_connected: bool
    timestamp: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None
