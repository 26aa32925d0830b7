"""
Component Tests for OrderRepository

Order creation, partial updates, deletion and search against the in-memory
store and product catalog.
"""

import asyncio
import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from microservices.order_service.models import (
    OrderCreateRequest,
    OrderLineRequest,
    OrderSearchFilters,
    OrderStatus,
    OrderUpdateRequest,
)
from microservices.order_service.order_repository import OrderRepository
from microservices.order_service.order_state_machine import can_transition, is_modifiable
from microservices.order_service.protocols import (
    InvalidOrderProductsError,
    InvalidStatusTransitionError,
    OperationCancelledError,
    OrderConcurrentModificationError,
    OrderCreateConflictError,
    OrderNotFoundError,
    OrderNotModifiableError,
    OrderStoreError,
    ProductLookupError,
    ProductsNotFoundError,
)
from tests.contracts.order.data_contract import OrderCreateRequestBuilder, OrderTestDataFactory

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


# =============================================================================
# Create
# =============================================================================

class TestCreateOrder:

    async def test_two_line_cart(self, repository, mock_store, mock_products, catalog):
        """A(10.00) x2 + B(5.50) x3 -> total 36.50, quantity 5, pending"""
        a = catalog[0].model_copy(update={"price": Decimal("10.00")})
        b = catalog[1].model_copy(update={"price": Decimal("5.50")})
        mock_products.add_product(a)
        mock_products.add_product(b)
        request = OrderCreateRequestBuilder().with_line(a.id, 2).with_line(b.id, 3).build()

        order = await repository.create(request)

        assert order.total == Decimal("36.50")
        assert order.total_quantity == 5
        assert order.status == OrderStatus.PENDING
        assert re.fullmatch(r"ORD-\d{8}-[A-Z0-9]{6}", order.identifier)
        assert [(line.product_id, line.price, line.name) for line in order.products] == [
            (a.id, a.price, a.name),
            (b.id, b.price, b.name),
        ]
        assert mock_store.get_call_count("insert") == 1

    async def test_identifier_uses_creation_date(self, mock_store, mock_products, catalog):
        fixed = datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)
        repository = OrderRepository(mock_store, mock_products, clock=lambda: fixed)
        request = OrderCreateRequestBuilder().with_products(catalog[:1]).build()

        order = await repository.create(request)

        assert order.identifier.startswith("ORD-20240229-")

    async def test_price_snapshot_survives_catalog_change(self, repository, mock_products, catalog):
        request = OrderCreateRequestBuilder().with_products(catalog[:1], quantity=2).build()
        order = await repository.create(request)
        original_price = order.products[0].price

        mock_products.set_price(catalog[0].id, original_price + Decimal("99.00"))
        stored = await repository.find_by_id(order.id)

        assert stored.products[0].price == original_price
        assert stored.total == order.total

    async def test_empty_cart_rejected_before_lookup(self, repository, mock_store, mock_products):
        request = OrderCreateRequest(client_id="client_1", client_name="Ada", products=[])

        with pytest.raises(InvalidOrderProductsError):
            await repository.create(request)

        mock_products.assert_not_called("find_many_by_ids")
        mock_store.assert_not_called("insert")

    async def test_quantity_out_of_range_rejected(self, repository, mock_store, catalog):
        request = OrderCreateRequestBuilder().with_line(catalog[0].id, 1001).build()

        with pytest.raises(InvalidOrderProductsError):
            await repository.create(request)

        mock_store.assert_not_called("insert")

    async def test_unknown_products_listed(self, repository, mock_store, catalog):
        missing = OrderTestDataFactory.make_product_id()
        request = OrderCreateRequestBuilder().with_line(catalog[0].id, 1).with_line(missing, 1).build()

        with pytest.raises(ProductsNotFoundError) as exc_info:
            await repository.create(request)

        assert exc_info.value.product_ids == [missing]
        mock_store.assert_not_called("insert")

    async def test_lookup_deduplicates_ids(self, repository, mock_products, catalog):
        request = OrderCreateRequestBuilder().with_line(catalog[0].id, 1).with_line(catalog[0].id, 2).build()

        order = await repository.create(request)

        assert mock_products.calls("find_many_by_ids")[0]["product_ids"] == [catalog[0].id]
        assert order.total_quantity == 3
        assert len(order.products) == 2

    async def test_retries_identifier_collision(self, repository, mock_store, catalog):
        mock_store.force_duplicate_identifiers(1)
        request = OrderCreateRequestBuilder().with_products(catalog[:1]).build()

        order = await repository.create(request)

        assert order.id
        assert mock_store.get_call_count("insert") == 2

    async def test_persistent_collision_surfaces_conflict(self, repository, mock_store, catalog):
        mock_store.force_duplicate_identifiers(10)
        request = OrderCreateRequestBuilder().with_products(catalog[:1]).build()

        with pytest.raises(OrderCreateConflictError):
            await repository.create(request)

        assert mock_store.get_call_count("insert") == repository.identifier_attempts

    async def test_identifier_attempts_at_least_two(self, mock_store, mock_products):
        assert OrderRepository(mock_store, mock_products, identifier_attempts=1).identifier_attempts == 2

    async def test_lookup_failure_wrapped(self, repository, mock_products, catalog):
        mock_products.set_error(ConnectionError("catalog down"))
        request = OrderCreateRequestBuilder().with_products(catalog[:1]).build()

        with pytest.raises(ProductLookupError):
            await repository.create(request)

    async def test_store_failure_wrapped(self, repository, mock_store, catalog):
        mock_store.set_error(RuntimeError("disk full"), method="insert")
        request = OrderCreateRequestBuilder().with_products(catalog[:1]).build()

        with pytest.raises(OrderStoreError) as exc_info:
            await repository.create(request)

        assert exc_info.value.operation == "insert"


# =============================================================================
# Update
# =============================================================================

class TestUpdateOrder:

    @pytest.fixture
    def pending_order(self, mock_store, catalog):
        lines = [
            OrderTestDataFactory.make_order_line(product_id=p.id, price=p.price, name=p.name, quantity=1)
            for p in catalog[:2]
        ]
        order = OrderTestDataFactory.make_order(products=lines)
        mock_store.set_order(order)
        return order

    async def test_status_change(self, repository, pending_order):
        updated = await repository.update_by_id(pending_order.id, OrderUpdateRequest(status=OrderStatus.PROCESSING))

        assert updated.status == OrderStatus.PROCESSING
        assert updated.version == pending_order.version + 1
        assert updated.updated_at >= pending_order.updated_at

    async def test_invalid_transition_rejected(self, repository, mock_store, pending_order):
        with pytest.raises(InvalidStatusTransitionError):
            await repository.update_by_id(pending_order.id, OrderUpdateRequest(status=OrderStatus.SHIPPED))

        mock_store.assert_not_called("update_if_unchanged")

    @pytest.mark.parametrize("target", list(OrderStatus))
    @pytest.mark.parametrize("current", list(OrderStatus))
    async def test_transition_matrix(self, repository, mock_store, factory, current, target):
        order = factory.make_order(status=current)
        mock_store.set_order(order)
        patch = OrderUpdateRequest(status=target)

        if not is_modifiable(current):
            with pytest.raises(OrderNotModifiableError):
                await repository.update_by_id(order.id, patch)
        elif can_transition(current, target):
            updated = await repository.update_by_id(order.id, patch)
            assert updated.status == target
            assert updated.version == order.version + 1
        else:
            with pytest.raises(InvalidStatusTransitionError):
                await repository.update_by_id(order.id, patch)

        if not (is_modifiable(current) and can_transition(current, target)):
            assert (await mock_store.get(order.id)) == order
            mock_store.assert_not_called("update_if_unchanged")

    async def test_client_name_only(self, repository, mock_products, pending_order):
        updated = await repository.update_by_id(pending_order.id, OrderUpdateRequest(client_name="Grace"))

        assert updated.client_name == "Grace"
        assert updated.products == pending_order.products
        mock_products.assert_not_called("find_many_by_ids")

    async def test_products_replaced_with_fresh_snapshots(self, repository, mock_products, catalog, pending_order):
        mock_products.set_price(catalog[2].id, Decimal("3.33"))
        patch = OrderUpdateRequest(products=[OrderLineRequest(product_id=catalog[2].id, quantity=3)])

        updated = await repository.update_by_id(pending_order.id, patch)

        assert [line.product_id for line in updated.products] == [catalog[2].id]
        assert updated.products[0].price == Decimal("3.33")
        assert updated.total == Decimal("9.99")
        assert updated.total_quantity == 3

    async def test_invalid_replacement_cart_leaves_order_untouched(self, repository, mock_store, pending_order):
        patch = OrderUpdateRequest(products=[])

        with pytest.raises(InvalidOrderProductsError):
            await repository.update_by_id(pending_order.id, patch)

        assert (await mock_store.get(pending_order.id)) == pending_order

    @pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
    async def test_locked_order_rejects_any_change(self, repository, mock_store, factory, status):
        order = factory.make_order(status=status)
        mock_store.set_order(order)

        with pytest.raises(OrderNotModifiableError):
            await repository.update_by_id(order.id, OrderUpdateRequest(client_name="x"))

        with pytest.raises(OrderNotModifiableError):
            await repository.update_by_id(order.id, OrderUpdateRequest(status=OrderStatus.PENDING))

        assert (await mock_store.get(order.id)) == order

    async def test_refunded_order_accepts_name_change(self, repository, mock_store, factory):
        order = factory.make_order(status=OrderStatus.REFUNDED)
        mock_store.set_order(order)

        updated = await repository.update_by_id(order.id, OrderUpdateRequest(client_name="Renamed"))

        assert updated.client_name == "Renamed"
        assert updated.status == OrderStatus.REFUNDED

    async def test_empty_patch_returns_order_unchanged(self, repository, mock_store, pending_order):
        result = await repository.update_by_id(pending_order.id, OrderUpdateRequest())

        assert result == pending_order
        mock_store.assert_not_called("update_if_unchanged")

    async def test_unknown_order(self, repository, factory):
        with pytest.raises(OrderNotFoundError):
            await repository.update_by_id(factory.make_invalid_order_id(), OrderUpdateRequest(client_name="x"))

    async def test_concurrent_cancel_wins(self, repository, mock_store, pending_order):
        """A cancel that lands between load and write blocks the stale update"""
        mock_store.set_before_update(
            lambda order_id: mock_store.bump(order_id, status=OrderStatus.CANCELLED)
        )

        with pytest.raises(OrderConcurrentModificationError):
            await repository.update_by_id(pending_order.id, OrderUpdateRequest(client_name="late"))

        stored = await mock_store.get(pending_order.id)
        assert stored.status == OrderStatus.CANCELLED
        assert stored.client_name == pending_order.client_name

    async def test_deleted_between_load_and_write(self, repository, mock_store, pending_order):
        mock_store.set_before_update(lambda order_id: mock_store._data.pop(order_id))

        with pytest.raises(OrderNotFoundError):
            await repository.update_by_id(pending_order.id, OrderUpdateRequest(client_name="late"))

    async def test_parallel_status_updates_only_one_applies(self, repository, mock_store, pending_order):
        mock_store.set_delay(0.01)

        results = await asyncio.gather(
            repository.update_by_id(pending_order.id, OrderUpdateRequest(status=OrderStatus.PROCESSING)),
            repository.update_by_id(pending_order.id, OrderUpdateRequest(status=OrderStatus.CANCELLED)),
            return_exceptions=True,
        )

        applied = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, OrderConcurrentModificationError)]
        assert len(applied) == 1
        assert len(rejected) == 1
        assert (await mock_store.get(pending_order.id)).status == applied[0].status


# =============================================================================
# Delete / Find
# =============================================================================

class TestDeleteAndFind:

    async def test_delete_existing(self, repository, mock_store, factory):
        order = factory.make_order()
        mock_store.set_order(order)

        await repository.delete_by_id(order.id)

        assert await repository.find_by_id(order.id) is None

    async def test_delete_missing(self, repository, factory):
        with pytest.raises(OrderNotFoundError):
            await repository.delete_by_id(factory.make_invalid_order_id())

    async def test_find_all_newest_first(self, repository, mock_store, factory):
        older = factory.make_order(created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        newer = factory.make_order(created_at=datetime(2024, 6, 1, tzinfo=timezone.utc))
        mock_store.set_order(older)
        mock_store.set_order(newer)

        orders, total = await repository.find_all()

        assert [o.id for o in orders] == [newer.id, older.id]
        assert total == 2

    async def test_find_all_paginated(self, repository, mock_store, factory):
        for _ in range(5):
            mock_store.set_order(factory.make_order())

        orders, total = await repository.find_all(page=2, limit=2)

        assert len(orders) == 2
        assert total == 5
        assert mock_store.calls("find")[-1]["skip"] == 2


class TestSearch:

    @pytest.fixture
    def seeded(self, mock_store, factory):
        orders = [
            factory.make_order(client_name="Ada Lovelace", total=Decimal("10.00")),
            factory.make_order(client_name="Grace Hopper", total=Decimal("50.00"), status=OrderStatus.SHIPPED),
            factory.make_order(client_name="ada byron", total=Decimal("90.00")),
        ]
        for order in orders:
            mock_store.set_order(order)
        return orders

    async def test_client_name_case_insensitive_substring(self, repository, seeded):
        orders, total = await repository.search(OrderSearchFilters(client_name="ADA"))

        assert total == 2
        assert {o.id for o in orders} == {seeded[0].id, seeded[2].id}

    async def test_total_bounds_inclusive(self, repository, seeded):
        orders, total = await repository.search(
            OrderSearchFilters(min_total=Decimal("10.00"), max_total=Decimal("50.00"))
        )

        assert {o.id for o in orders} == {seeded[0].id, seeded[1].id}

    async def test_status_and_identifier(self, repository, seeded):
        orders, _ = await repository.search(OrderSearchFilters(status=OrderStatus.SHIPPED))
        assert [o.id for o in orders] == [seeded[1].id]

        orders, _ = await repository.search(OrderSearchFilters(identifier=seeded[2].identifier.lower()))
        assert [o.id for o in orders] == [seeded[2].id]

    async def test_pagination(self, repository, seeded):
        orders, total = await repository.search(OrderSearchFilters(), page=2, limit=2)

        assert total == 3
        assert len(orders) == 1


# =============================================================================
# Cancellation
# =============================================================================

class TestCancellation:

    async def test_cancelled_before_start_issues_no_store_call(self, repository, mock_store, mock_products, catalog):
        event = asyncio.Event()
        event.set()
        request = OrderCreateRequestBuilder().with_products(catalog[:1]).build()

        with pytest.raises(OperationCancelledError):
            await repository.create(request, cancel_event=event)

        mock_store.assert_not_called("insert")

    async def test_cancel_during_lookup(self, repository, mock_store, mock_products, catalog):
        mock_products.set_delay(5)
        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, event.set)
        request = OrderCreateRequestBuilder().with_products(catalog[:1]).build()

        with pytest.raises(OperationCancelledError):
            await repository.create(request, cancel_event=event)

        assert mock_store.all_orders() == []
