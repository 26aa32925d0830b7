"""
Order Store

Document-style persistence for orders on PostgreSQL via asyncpg.
Each order is one row; its lines are embedded as a JSONB array.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from core.config import InfraConfig
from .models import (
    NewOrder,
    Order,
    OrderLine,
    OrderQuery,
    OrderSortField,
    OrderStatus,
    OrderSummaryStats,
)
from .protocols import DuplicateIdentifierError

logger = logging.getLogger(__name__)

IDENTIFIER_CONSTRAINT = "orders_identifier_key"

SORT_COLUMNS = {
    OrderSortField.CREATED_AT: "created_at",
    OrderSortField.TOTAL: "total",
    OrderSortField.TOTAL_QUANTITY: "total_quantity",
    OrderSortField.CLIENT_NAME: "client_name",
}

UPDATABLE_COLUMNS = ("client_name", "products", "total", "total_quantity", "status")


class PostgresOrderStore:
    """
    Order document store - PostgreSQL (Async)

    Implements OrderStoreProtocol.
    """

    def __init__(self, config: Optional[InfraConfig] = None, pool: Optional[asyncpg.Pool] = None):
        self.config = config or InfraConfig.from_env()
        self.pool = pool
        self.schema = "orders"
        self.orders_table = "orders"

    @property
    def _table(self) -> str:
        return f'"{self.schema}".{self.orders_table}'

    async def initialize(self) -> None:
        """Create the connection pool and ensure the schema exists"""
        if self.pool is None:
            logger.info(
                f"Connecting to PostgreSQL at {self.config.postgres_host}:{self.config.postgres_port}"
            )
            self.pool = await asyncpg.create_pool(
                dsn=self.config.postgres_dsn,
                min_size=self.config.postgres_min_pool,
                max_size=self.config.postgres_max_pool,
            )

        async with self.pool.acquire() as conn:
            await conn.execute(f'CREATE SCHEMA IF NOT EXISTS "{self.schema}"')
            await conn.execute(f'''
                CREATE TABLE IF NOT EXISTS {self._table} (
                    id TEXT PRIMARY KEY,
                    identifier TEXT NOT NULL,
                    client_id TEXT NOT NULL,
                    client_name TEXT NOT NULL,
                    products JSONB NOT NULL,
                    total NUMERIC(14, 2) NOT NULL,
                    total_quantity INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    version INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    CONSTRAINT {IDENTIFIER_CONSTRAINT} UNIQUE (identifier)
                )
            ''')
            await conn.execute(
                f'CREATE INDEX IF NOT EXISTS orders_created_at_idx ON {self._table} (created_at)'
            )
            await conn.execute(
                f'CREATE INDEX IF NOT EXISTS orders_client_id_idx ON {self._table} (client_id)'
            )
            await conn.execute(
                f'CREATE INDEX IF NOT EXISTS orders_products_idx ON {self._table} '
                f'USING GIN (products jsonb_path_ops)'
            )

        logger.info("Order store initialized")

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            logger.info("Order store connection pool closed")

    async def health_check(self) -> bool:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except Exception as e:
            logger.error(f"Order store health check failed: {e}")
            return False

    async def insert(self, order: NewOrder) -> Order:
        """Insert a new order document"""
        order_id = f"order_{uuid.uuid4().hex[:12]}"
        now = datetime.now(timezone.utc)

        query = f'''
            INSERT INTO {self._table} (
                id, identifier, client_id, client_name, products,
                total, total_quantity, status, version, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, 1, $9, $9)
            RETURNING *
        '''
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    order_id,
                    order.identifier,
                    order.client_id,
                    order.client_name,
                    _lines_to_json(order.products),
                    order.total,
                    order.total_quantity,
                    order.status.value,
                    now,
                )
        except asyncpg.UniqueViolationError as e:
            if e.constraint_name == IDENTIFIER_CONSTRAINT:
                raise DuplicateIdentifierError(order.identifier) from e
            raise

        return self._row_to_order(row)

    async def get(self, order_id: str) -> Optional[Order]:
        query = f'SELECT * FROM {self._table} WHERE id = $1'
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, order_id)
        return self._row_to_order(row) if row else None

    async def update_if_unchanged(
        self,
        order_id: str,
        expected_status: OrderStatus,
        expected_version: int,
        changes: Dict[str, Any],
    ) -> Optional[Order]:
        """Conditional single-statement update keyed on status and version"""
        unknown = set(changes) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported order fields: {', '.join(sorted(unknown))}")

        set_clauses = []
        params: List[Any] = []
        param_count = 0

        for key, value in changes.items():
            param_count += 1
            if key == "products":
                set_clauses.append(f"products = ${param_count}::jsonb")
                params.append(_lines_to_json(value))
            elif key == "status":
                set_clauses.append(f"status = ${param_count}")
                params.append(OrderStatus(value).value)
            else:
                set_clauses.append(f"{key} = ${param_count}")
                params.append(value)

        param_count += 1
        set_clauses.append(f"updated_at = ${param_count}")
        params.append(datetime.now(timezone.utc))
        set_clauses.append("version = version + 1")

        params.extend([order_id, expected_status.value, expected_version])
        query = f'''
            UPDATE {self._table}
            SET {", ".join(set_clauses)}
            WHERE id = ${param_count + 1}
              AND status = ${param_count + 2}
              AND version = ${param_count + 3}
            RETURNING *
        '''

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)
        return self._row_to_order(row) if row else None

    async def delete(self, order_id: str) -> bool:
        query = f'DELETE FROM {self._table} WHERE id = $1'
        async with self.pool.acquire() as conn:
            result = await conn.execute(query, order_id)
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return result.split()[-1] != "0"

    async def find(
        self,
        query: OrderQuery,
        sort_field: OrderSortField = OrderSortField.CREATED_AT,
        descending: bool = True,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Order], int]:
        where_clause, params = self._build_where(query)
        direction = "DESC" if descending else "ASC"
        order_by = f"{SORT_COLUMNS[sort_field]} {direction}, id ASC"

        sql = f'SELECT * FROM {self._table} WHERE {where_clause} ORDER BY {order_by}'
        page_params = list(params)
        if skip:
            page_params.append(skip)
            sql += f" OFFSET ${len(page_params)}"
        if limit is not None:
            page_params.append(limit)
            sql += f" LIMIT ${len(page_params)}"

        count_sql = f'SELECT COUNT(*) FROM {self._table} WHERE {where_clause}'

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, *page_params)
            total = await conn.fetchval(count_sql, *params)

        return [self._row_to_order(row) for row in rows], int(total or 0)

    async def summarize(self, query: OrderQuery) -> OrderSummaryStats:
        where_clause, params = self._build_where(query)
        sql = f'''
            SELECT
                COUNT(*) AS total_orders,
                COALESCE(SUM(total), 0) AS total_revenue,
                COALESCE(SUM(total_quantity), 0) AS total_quantity_sold,
                AVG(total) AS average_order_value
            FROM {self._table}
            WHERE {where_clause}
        '''
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, *params)

        return OrderSummaryStats(
            total_orders=int(row["total_orders"]),
            total_revenue=Decimal(row["total_revenue"]),
            total_quantity_sold=int(row["total_quantity_sold"]),
            average_order_value=row["average_order_value"],
        )

    def _build_where(self, query: OrderQuery) -> Tuple[str, List[Any]]:
        conditions = []
        params: List[Any] = []

        def add(condition: str, value: Any) -> None:
            params.append(value)
            conditions.append(condition.format(p=f"${len(params)}"))

        if query.created_from is not None:
            add("created_at >= {p}", query.created_from)
        if query.created_to is not None:
            add("created_at <= {p}", query.created_to)
        if query.client_id:
            add("client_id = {p}", query.client_id)
        if query.product_id:
            add("products @> {p}::jsonb", json.dumps([{"productId": query.product_id}]))
        if query.status is not None:
            add("status = {p}", query.status.value)
        if query.identifier:
            add("identifier = {p}", query.identifier)
        if query.client_name_contains:
            add("client_name ILIKE {p} ESCAPE '\\'", f"%{_escape_like(query.client_name_contains)}%")
        if query.min_total is not None:
            add("total >= {p}", query.min_total)
        if query.max_total is not None:
            add("total <= {p}", query.max_total)

        where_clause = " AND ".join(conditions) if conditions else "TRUE"
        return where_clause, params

    def _row_to_order(self, row: asyncpg.Record) -> Order:
        """Convert a table row to Order model"""
        products = row["products"]
        if isinstance(products, str):
            products = json.loads(products)

        return Order(
            id=row["id"],
            identifier=row["identifier"],
            client_id=row["client_id"],
            client_name=row["client_name"],
            products=[OrderLine.model_validate(line) for line in products],
            total=Decimal(row["total"]),
            total_quantity=row["total_quantity"],
            status=OrderStatus(row["status"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _lines_to_json(lines: List[OrderLine]) -> str:
    # Prices are stored as strings to keep the Decimal snapshot exact
    return json.dumps([
        {
            "productId": line.product_id,
            "quantity": line.quantity,
            "price": str(line.price),
            "name": line.name,
        }
        for line in lines
    ])


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
