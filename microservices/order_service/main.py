"""
Order Microservice

Responsibilities:
- Order creation with catalog price snapshots
- Order lifecycle and status transitions
- Order search
- Sales reports (JSON and CSV)
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request, Response, status
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logger import setup_service_logger

from .factory import OrderServiceFactory
from .models import (
    CsvReport,
    DeleteOrderResponse,
    OrderCreateRequest,
    OrderListResponse,
    OrderReportRequest,
    OrderReportResponse,
    OrderResponse,
    OrderSearchFilters,
    OrderServiceStatus,
    OrderStatus,
    OrderUpdateRequest,
    ReportFormat,
    ReportSortKey,
)
from .order_service import OrderService
from .protocols import (
    InvalidDateRangeError,
    InvalidOrderProductsError,
    InvalidStatusTransitionError,
    OperationCancelledError,
    OrderConcurrentModificationError,
    OrderCreateConflictError,
    OrderNotFoundError,
    OrderNotModifiableError,
    OrderServiceError,
    OrderStoreError,
    ProductLookupError,
    ProductsNotFoundError,
    ReportGenerationFailedError,
)

settings = get_settings()
config = settings.service

logger = setup_service_logger(config.service_name, settings.logging)

# nginx convention for a request the client abandoned
HTTP_CLIENT_CLOSED_REQUEST = 499

# Report exports must not be cached by browsers or proxies
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

DISCONNECT_POLL_INTERVAL = 0.25

ERROR_STATUS = {
    OrderNotFoundError: status.HTTP_404_NOT_FOUND,
    ProductsNotFoundError: status.HTTP_404_NOT_FOUND,
    OrderNotModifiableError: status.HTTP_403_FORBIDDEN,
    InvalidOrderProductsError: status.HTTP_400_BAD_REQUEST,
    InvalidStatusTransitionError: status.HTTP_400_BAD_REQUEST,
    InvalidDateRangeError: status.HTTP_400_BAD_REQUEST,
    ReportGenerationFailedError: status.HTTP_400_BAD_REQUEST,
    OrderCreateConflictError: status.HTTP_409_CONFLICT,
    OrderConcurrentModificationError: status.HTTP_409_CONFLICT,
    ProductLookupError: status.HTTP_503_SERVICE_UNAVAILABLE,
    OrderStoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class OrderMicroservice:
    """Order microservice core class"""

    def __init__(self):
        self.factory: Optional[OrderServiceFactory] = None
        self.order_service: Optional[OrderService] = None

    async def initialize(self):
        """Initialize the microservice"""
        try:
            self.factory = OrderServiceFactory(settings)
            await self.factory.initialize()
            self.order_service = self.factory.service
            logger.info("Order microservice initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize order microservice: {e}")
            raise

    async def shutdown(self):
        """Shutdown the microservice"""
        if self.factory:
            await self.factory.close()
        self.order_service = None
        logger.info("Order microservice shutdown completed")


# Global microservice instance
order_microservice = OrderMicroservice()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    await order_microservice.initialize()
    yield
    await order_microservice.shutdown()


# Create FastAPI application
app = FastAPI(
    title="Order Service",
    description="Order lifecycle and sales reporting microservice",
    version="1.0.0",
    lifespan=lifespan
)


# Dependency injection
def get_order_service() -> OrderService:
    """Get order service instance"""
    if not order_microservice.order_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order service not initialized"
        )
    return order_microservice.order_service


async def request_cancel_event(request: Request):
    """Event that is set once the client disconnects mid-request"""
    cancel_event = asyncio.Event()

    async def watch_disconnect():
        while not cancel_event.is_set():
            if await request.is_disconnected():
                logger.info(f"Client disconnected: {request.method} {request.url.path}")
                cancel_event.set()
                return
            await asyncio.sleep(DISCONNECT_POLL_INTERVAL)

    watcher = asyncio.create_task(watch_disconnect())
    try:
        yield cancel_event
    finally:
        watcher.cancel()


async def run_request(awaitable):
    """Await a service call, turning client-side cancellation into a 499"""
    try:
        return await awaitable
    except OperationCancelledError as e:
        logger.info(f"Request cancelled during {e.operation}")
        return JSONResponse(
            status_code=HTTP_CLIENT_CLOSED_REQUEST,
            content={"detail": str(e), "error_code": e.error_code},
        )


# Health check endpoints
@app.get("/health")
async def health_check():
    """Service health check"""
    return {
        "status": "healthy",
        "service": config.service_name,
        "port": config.service_port,
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/health/detailed", response_model=OrderServiceStatus)
async def detailed_health_check():
    """Detailed health check with database connectivity"""
    connected = False
    if order_microservice.factory:
        connected = await order_microservice.factory.store.health_check()
    return OrderServiceStatus(
        port=config.service_port,
        database_connected=connected,
        timestamp=datetime.now(timezone.utc),
    )


# Core order management endpoints

@app.post("/api/v1/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: OrderCreateRequest,
    order_service: OrderService = Depends(get_order_service),
    cancel_event: asyncio.Event = Depends(request_cancel_event),
):
    """Create a new order"""
    return await run_request(order_service.create(request, cancel_event))


@app.get("/api/v1/orders", response_model=OrderListResponse)
async def list_orders(
    page: Optional[int] = Query(None, ge=1, description="Page number"),
    limit: Optional[int] = Query(None, ge=1, le=100, description="Items per page"),
    order_service: OrderService = Depends(get_order_service),
    cancel_event: asyncio.Event = Depends(request_cancel_event),
):
    """List orders, newest first; all of them unless page or limit is given"""
    return await run_request(order_service.find_all(page, limit, cancel_event))


@app.get("/api/v1/orders/search", response_model=OrderListResponse)
async def search_orders(
    client_name: Optional[str] = Query(None, alias="clientName", description="Client name contains"),
    identifier: Optional[str] = Query(None, description="Exact order identifier"),
    order_status: Optional[OrderStatus] = Query(None, alias="status", description="Order status"),
    min_total: Optional[Decimal] = Query(None, alias="minTotal", ge=0),
    max_total: Optional[Decimal] = Query(None, alias="maxTotal", ge=0),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
    order_service: OrderService = Depends(get_order_service),
    cancel_event: asyncio.Event = Depends(request_cancel_event),
):
    """Search orders"""
    filters = OrderSearchFilters(
        client_name=client_name,
        identifier=identifier,
        status=order_status,
        min_total=min_total,
        max_total=max_total,
    )
    return await run_request(order_service.search(filters, page, limit, cancel_event))


@app.get(
    "/api/v1/orders/reports",
    response_model=OrderReportResponse,
    responses={200: {"content": {"text/csv": {}}}},
)
async def get_order_report(
    start_date: str = Query(..., alias="startDate", description="ISO date or datetime"),
    end_date: str = Query(..., alias="endDate", description="ISO date or datetime"),
    client_id: Optional[str] = Query(None, alias="clientId"),
    product_id: Optional[str] = Query(None, alias="productId"),
    sort_by: ReportSortKey = Query(ReportSortKey.TOTAL_DESC, alias="sortBy"),
    report_format: ReportFormat = Query(ReportFormat.JSON, alias="format"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    order_service: OrderService = Depends(get_order_service),
    cancel_event: asyncio.Event = Depends(request_cancel_event),
):
    """Sales report over a date range, as JSON or a CSV download"""
    report_request = OrderReportRequest(
        start_date=start_date,
        end_date=end_date,
        client_id=client_id,
        product_id=product_id,
        sort_by=sort_by,
        format=report_format,
        page=page,
        limit=limit,
    )
    report = await run_request(order_service.generate_report(report_request, cancel_event))

    if isinstance(report, CsvReport):
        return Response(
            content=report.content.encode("utf-8"),
            media_type=f"{report.content_type}; charset=utf-8",
            headers={
                "Content-Disposition": f'attachment; filename="{report.filename}"',
                **NO_CACHE_HEADERS,
            },
        )
    return report


@app.get("/api/v1/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str = Path(..., description="Order ID"),
    order_service: OrderService = Depends(get_order_service),
    cancel_event: asyncio.Event = Depends(request_cancel_event),
):
    """Get order details"""
    return await run_request(order_service.find_one(order_id, cancel_event))


@app.patch("/api/v1/orders/{order_id}", response_model=OrderResponse)
async def update_order(
    request: OrderUpdateRequest,
    order_id: str = Path(..., description="Order ID"),
    order_service: OrderService = Depends(get_order_service),
    cancel_event: asyncio.Event = Depends(request_cancel_event),
):
    """Partially update an order (client name, products, status)"""
    return await run_request(order_service.update(order_id, request, cancel_event))


@app.delete("/api/v1/orders/{order_id}", response_model=DeleteOrderResponse)
async def delete_order(
    order_id: str = Path(..., description="Order ID"),
    order_service: OrderService = Depends(get_order_service),
    cancel_event: asyncio.Event = Depends(request_cancel_event),
):
    """Delete an order"""
    return await run_request(order_service.remove(order_id, cancel_event))


# Error handlers
@app.exception_handler(OrderServiceError)
async def service_error_handler(request: Request, exc: OrderServiceError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.error_code}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
    )


if __name__ == "__main__":
    uvicorn.run(
        "microservices.order_service.main:app",
        host=config.service_host,
        port=config.service_port,
        log_level=settings.logging.log_level.lower()
    )
