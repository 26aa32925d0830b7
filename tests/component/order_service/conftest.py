"""
Component Test Fixtures for Order Service

Wires the real repository, reporting engine and service on top of the
in-memory store and product catalog.
"""

import pytest

from microservices.order_service.order_reporting import OrderReportingEngine
from microservices.order_service.order_repository import OrderRepository
from microservices.order_service.order_service import OrderService
from tests.component.order_service.mocks import MockOrderStore, MockProductLookup
from tests.contracts.order.data_contract import OrderTestDataFactory


@pytest.fixture
def factory():
    return OrderTestDataFactory


@pytest.fixture
def catalog():
    """Three products with known prices"""
    return OrderTestDataFactory.make_products(3)


@pytest.fixture
def mock_store() -> MockOrderStore:
    return MockOrderStore()


@pytest.fixture
def mock_products(catalog) -> MockProductLookup:
    return MockProductLookup(catalog)


@pytest.fixture
def repository(mock_store, mock_products) -> OrderRepository:
    return OrderRepository(store=mock_store, product_lookup=mock_products)


@pytest.fixture
def reporting(mock_store) -> OrderReportingEngine:
    return OrderReportingEngine(store=mock_store)


@pytest.fixture
def order_service(repository, reporting) -> OrderService:
    return OrderService(repository=repository, reporting=reporting)
