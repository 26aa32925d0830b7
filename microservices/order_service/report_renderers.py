"""
Report Renderers

Both report encodings consume the same flattened ReportRow list, so the
orders in a CSV export always match the orders in the JSON report.
"""

import csv
import io
import math
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .models import (
    CsvReport,
    Order,
    OrderReportItem,
    OrderReportProduct,
    OrderReportResponse,
    ReportFilters,
    ReportRow,
    ReportSummary,
)
from .order_calculation import round_money

UTF8_BOM = "﻿"

CSV_COLUMNS = [
    "orderId",
    "identifier",
    "clientId",
    "clientName",
    "total",
    "totalQuantity",
    "status",
    "createdAt",
    "productId",
    "name",
    "quantity",
    "price",
    "subtotal",
]


def flatten_orders(orders: Iterable[Order]) -> List[ReportRow]:
    """One row per order line, in order then line sequence"""
    rows = []
    for order in orders:
        for line in order.products:
            rows.append(ReportRow(
                order_id=order.id,
                identifier=order.identifier,
                client_id=order.client_id,
                client_name=order.client_name,
                total=order.total,
                total_quantity=order.total_quantity,
                status=order.status,
                created_at=order.created_at,
                product_id=line.product_id,
                name=line.name,
                quantity=line.quantity,
                price=line.price,
                subtotal=round_money(line.price * line.quantity),
            ))
    return rows


def group_rows(rows: Iterable[ReportRow]) -> List[OrderReportItem]:
    """Fold line rows back into per-order items, keeping first-seen order"""
    items: Dict[str, OrderReportItem] = {}
    for row in rows:
        item = items.get(row.order_id)
        if item is None:
            item = OrderReportItem(
                order_id=row.order_id,
                identifier=row.identifier,
                client_id=row.client_id,
                client_name=row.client_name,
                total=row.total,
                total_quantity=row.total_quantity,
                status=row.status,
                created_at=row.created_at,
                products=[],
            )
            items[row.order_id] = item
        item.products.append(OrderReportProduct(
            product_id=row.product_id,
            name=row.name,
            quantity=row.quantity,
            price=row.price,
        ))
    return list(items.values())


def render_json(
    rows: List[ReportRow],
    total: int,
    page: int,
    limit: int,
    filters: ReportFilters,
    summary: ReportSummary,
) -> OrderReportResponse:
    return OrderReportResponse(
        data=group_rows(rows),
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if limit else 0,
        filters=filters,
        summary=summary,
    )


def render_csv(
    rows: List[ReportRow],
    filters: ReportFilters,
    summary: ReportSummary,
    generated_at: datetime,
    filename_prefix: str = "order-reports",
) -> CsvReport:
    """
    Line-level CSV with a trailing summary block.

    Layout: header, one row per order line, a blank line, then key/value
    rows for the applied filters, sort key, statistics and generation time.
    Fields holding a comma, quote or line break are quoted with embedded
    quotes doubled; the content starts with a UTF-8 BOM for spreadsheets.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")

    writer.writerow(CSV_COLUMNS)
    for row in rows:
        writer.writerow([
            row.order_id,
            row.identifier,
            row.client_id,
            row.client_name,
            _money(row.total),
            row.total_quantity,
            row.status.value,
            row.created_at.isoformat(),
            row.product_id,
            row.name,
            row.quantity,
            _money(row.price),
            _money(row.subtotal),
        ])

    writer.writerow([])
    writer.writerow(["Report Summary"])
    writer.writerow(["startDate", filters.start_date])
    writer.writerow(["endDate", filters.end_date])
    writer.writerow(["clientId", _optional(filters.client_id)])
    writer.writerow(["productId", _optional(filters.product_id)])
    writer.writerow(["sortBy", filters.sort_by.value])
    writer.writerow(["totalOrders", summary.total_orders])
    writer.writerow(["totalRevenue", _money(summary.total_revenue)])
    writer.writerow(["totalQuantitySold", summary.total_quantity_sold])
    writer.writerow(["averageOrderValue", _money(summary.average_order_value)])
    writer.writerow(["generatedAt", generated_at.isoformat()])

    return CsvReport(
        content=UTF8_BOM + buffer.getvalue(),
        content_type="text/csv",
        filename=f"{filename_prefix}-{generated_at:%Y-%m-%d}.csv",
    )


def _money(value: Decimal) -> str:
    return str(round_money(value))


def _optional(value: Optional[str]) -> str:
    return value if value is not None else ""
