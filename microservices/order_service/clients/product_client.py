"""
Product Service Client for Order Service

HTTP client for the read-only product lookup used to snapshot prices
"""

import httpx
import logging
from typing import Any, Dict, List, Optional

from core.config import OrderServiceConfig
from ..models import ProductSnapshot
from ..protocols import ProductLookupError

logger = logging.getLogger(__name__)


class ProductClient:
    """Client for product_service"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        config: Optional[OrderServiceConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Product Service client

        Args:
            base_url: Product service base URL (overrides config)
            config: Order service configuration
            client: Pre-built httpx client, mainly for tests
        """
        config = config or OrderServiceConfig.from_env()
        self.base_url = (base_url or config.product_service_url).rstrip('/')
        self.client = client or httpx.AsyncClient(timeout=config.http_timeout)
        logger.info(f"ProductClient initialized with base_url: {self.base_url}")

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def find_many_by_ids(self, product_ids: List[str]) -> List[ProductSnapshot]:
        """
        Fetch current price and name for a batch of products

        Args:
            product_ids: Product IDs to resolve

        Returns:
            One snapshot per known product; unknown IDs are omitted

        Raises:
            ProductLookupError: transport failure or unexpected response
        """
        unique_ids = list(dict.fromkeys(product_ids))
        if not unique_ids:
            return []

        try:
            response = await self.client.post(
                f"{self.base_url}/api/v1/products/batch",
                json={"ids": unique_ids},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Product lookup failed: {e.response.status_code}")
            raise ProductLookupError(
                f"Product service returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error calling product service: {e}")
            raise ProductLookupError(f"Product service unavailable: {e}") from e

        return self._parse_products(payload)

    def _parse_products(self, payload: Any) -> List[ProductSnapshot]:
        items: Any = payload
        if isinstance(payload, dict):
            items = payload.get("products", payload.get("data", []))
        if not isinstance(items, list):
            raise ProductLookupError("Unexpected product service response")

        snapshots: Dict[str, ProductSnapshot] = {}
        for item in items:
            try:
                snapshot = ProductSnapshot.model_validate(item)
            except ValueError as e:
                raise ProductLookupError(f"Malformed product entry: {e}") from e
            snapshots.setdefault(snapshot.id, snapshot)
        return list(snapshots.values())
