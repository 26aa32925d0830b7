"""
Order Reporting

Builds sales reports over a date range: a sorted (and, for JSON, paginated)
order query plus an independent summary aggregation, rendered as JSON or CSV.
"""

import asyncio
import logging
from datetime import date, datetime, time, timezone
from typing import Callable, Optional, Tuple, Union

from .cancellation import run_cancellable
from .models import (
    CsvReport,
    OrderQuery,
    OrderReportRequest,
    OrderReportResponse,
    OrderSortField,
    OrderSummaryStats,
    ReportFilters,
    ReportFormat,
    ReportSortKey,
    ReportSummary,
)
from .order_calculation import round_money
from .protocols import InvalidDateRangeError, OrderStoreProtocol, ReportGenerationFailedError
from .report_renderers import flatten_orders, render_csv, render_json

logger = logging.getLogger(__name__)

SORT_KEYS = {
    ReportSortKey.TOTAL_DESC: (OrderSortField.TOTAL, True),
    ReportSortKey.TOTAL_ASC: (OrderSortField.TOTAL, False),
    ReportSortKey.DATE_DESC: (OrderSortField.CREATED_AT, True),
    ReportSortKey.DATE_ASC: (OrderSortField.CREATED_AT, False),
    ReportSortKey.QUANTITY_DESC: (OrderSortField.TOTAL_QUANTITY, True),
    ReportSortKey.QUANTITY_ASC: (OrderSortField.TOTAL_QUANTITY, False),
    ReportSortKey.CLIENT_NAME_ASC: (OrderSortField.CLIENT_NAME, False),
    ReportSortKey.CLIENT_NAME_DESC: (OrderSortField.CLIENT_NAME, True),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_report_date(value: str, end_of_day: bool = False) -> datetime:
    """
    Parse an ISO date or datetime. A bare date expands to the start of the
    day, or to its last microsecond when `end_of_day` is set. Naive values
    are taken as UTC.
    """
    text = value.strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            moment = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as e:
        raise InvalidDateRangeError(f"Invalid date: '{value}'") from e

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def validate_date_range(start_date: str, end_date: str) -> Tuple[datetime, datetime]:
    start = parse_report_date(start_date)
    end = parse_report_date(end_date, end_of_day=True)
    if start > end:
        raise InvalidDateRangeError(
            f"Start date {start_date} must not be after end date {end_date}"
        )
    return start, end


def build_report_query(
    start: datetime,
    end: datetime,
    client_id: Optional[str] = None,
    product_id: Optional[str] = None,
) -> OrderQuery:
    return OrderQuery(
        created_from=start,
        created_to=end,
        client_id=client_id or None,
        product_id=product_id or None,
    )


def build_summary(stats: OrderSummaryStats) -> ReportSummary:
    average = stats.average_order_value if stats.total_orders and stats.average_order_value is not None else 0
    return ReportSummary(
        total_orders=stats.total_orders,
        total_revenue=round_money(stats.total_revenue),
        total_quantity_sold=stats.total_quantity_sold,
        average_order_value=round_money(average),
    )


class OrderReportingEngine:
    """
    Sales report generator

    The row query and the summary aggregation run concurrently and are not
    read from one snapshot, so `summary.total_orders` is only guaranteed to
    describe the same predicate, not the exact rows returned.
    """

    def __init__(
        self,
        store: OrderStoreProtocol,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.clock = clock

    async def _run_queries(self, query, sort_field, descending, skip, limit):
        """Run the row query and the summary together; a failure in one cancels the other"""
        tasks = [
            asyncio.ensure_future(self.store.find(query, sort_field, descending, skip, limit)),
            asyncio.ensure_future(self.store.summarize(query)),
        ]
        try:
            return await asyncio.gather(*tasks)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                # Wait for cancelled queries to release their connections
                await asyncio.gather(*pending, return_exceptions=True)

    async def generate(
        self,
        request: OrderReportRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Union[OrderReportResponse, CsvReport]:
        """
        Generate a report.

        Raises:
            InvalidDateRangeError: malformed dates or start after end, before any query
            ReportGenerationFailedError: either query failed
        """
        start, end = validate_date_range(request.start_date, request.end_date)

        query = build_report_query(start, end, request.client_id, request.product_id)
        sort_field, descending = SORT_KEYS[request.sort_by]

        if request.format == ReportFormat.CSV:
            skip, limit = 0, None
        else:
            skip, limit = (request.page - 1) * request.limit, request.limit

        try:
            (orders, total), stats = await run_cancellable(
                self._run_queries(query, sort_field, descending, skip, limit),
                cancel_event,
                "report generation",
            )
        except Exception as e:
            logger.error(
                f"Report generation failed for {request.start_date}..{request.end_date}: {e}"
            )
            raise ReportGenerationFailedError(e) from e

        filters = ReportFilters(
            start_date=request.start_date,
            end_date=request.end_date,
            client_id=request.client_id,
            product_id=request.product_id,
            sort_by=request.sort_by,
        )
        summary = build_summary(stats)
        rows = flatten_orders(orders)

        logger.info(
            f"Report generated: format={request.format.value} orders={len(orders)} "
            f"matching={total} lines={len(rows)}"
        )

        if request.format == ReportFormat.CSV:
            return render_csv(rows, filters, summary, self.clock())

        return render_json(rows, total, request.page, request.limit, filters, summary)
