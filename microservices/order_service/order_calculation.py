"""
Order Calculation

Pure functions for order lines, totals and identifiers. No I/O.
"""

import secrets
import string
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Sequence

from .models import OrderLine, OrderLineRequest, OrderTotals, ProductSnapshot
from .protocols import InvalidOrderProductsError, ProductsNotFoundError

MAX_LINES_PER_ORDER = 50
MIN_LINE_QUANTITY = 1
MAX_LINE_QUANTITY = 1000

IDENTIFIER_PREFIX = "ORD"
IDENTIFIER_SUFFIX_LENGTH = 6
IDENTIFIER_ALPHABET = string.ascii_uppercase + string.digits

CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Round half-up to two decimal places"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def validate_requested_products(products: Sequence[OrderLineRequest]) -> None:
    """Reject empty carts, oversized carts and out-of-range quantities"""
    if not products:
        raise InvalidOrderProductsError("Order must contain at least one product")

    if len(products) > MAX_LINES_PER_ORDER:
        raise InvalidOrderProductsError(
            f"Order cannot contain more than {MAX_LINES_PER_ORDER} products"
        )

    invalid = [p.product_id for p in products if not MIN_LINE_QUANTITY <= p.quantity <= MAX_LINE_QUANTITY]
    if invalid:
        raise InvalidOrderProductsError(
            f"Quantities must be between {MIN_LINE_QUANTITY} and {MAX_LINE_QUANTITY}: "
            f"{', '.join(invalid)}"
        )


def resolve_lines(
    requested: Sequence[OrderLineRequest],
    catalog: Dict[str, ProductSnapshot],
) -> List[OrderLine]:
    """
    Build order lines with price and name snapshots taken from the catalog.

    Raises:
        ProductsNotFoundError: listing every requested id missing from the catalog
    """
    missing = [p.product_id for p in requested if p.product_id not in catalog]
    if missing:
        # dict.fromkeys keeps first-seen order while dropping repeats
        raise ProductsNotFoundError(list(dict.fromkeys(missing)))

    return [
        OrderLine(
            product_id=p.product_id,
            quantity=p.quantity,
            price=catalog[p.product_id].price,
            name=catalog[p.product_id].name,
        )
        for p in requested
    ]


def compute_totals(lines: Sequence[OrderLine]) -> OrderTotals:
    """total = round(sum(price * quantity), 2); total_quantity = sum(quantity)"""
    total = sum((line.price * line.quantity for line in lines), Decimal("0"))
    total_quantity = sum(line.quantity for line in lines)
    return OrderTotals(total=round_money(total), total_quantity=total_quantity)


def generate_identifier(now: datetime) -> str:
    """ORD-YYYYMMDD-XXXXXX with a random uppercase base-36 suffix"""
    suffix = "".join(secrets.choice(IDENTIFIER_ALPHABET) for _ in range(IDENTIFIER_SUFFIX_LENGTH))
    return f"{IDENTIFIER_PREFIX}-{now:%Y%m%d}-{suffix}"
