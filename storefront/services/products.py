"""
Product Service

Thin wrapper over the backend client for the products table.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from typing import Optional, Sequence

from storefront.services.backend.base import BaseBackendClient, Row, eq, in_

logger = logging.getLogger(__name__)


class ProductService:
    """
    Menu item access.

    Every method raises BackendCallError when the backend reports an error.
    """

    def __init__(self, backend: BaseBackendClient):
        self._backend = backend

    async def list_available(self, category: Optional[str] = None) -> list[Row]:
        """Products on sale ordered by name, optionally limited to one category."""
        filters = [eq("available", True)]
        if category:
            filters.append(eq("category", category))
        result = await self._backend.select("products", filters, order_by="name")
        return result.unwrap("list available products")

    async def get(self, product_id: str) -> Row:
        result = await self._backend.select_one("products", product_id)
        return result.unwrap(f"get product {product_id}")

    async def get_many(self, product_ids: Sequence[str]) -> dict[str, Row]:
        """Products keyed by id; unknown ids are simply absent."""
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        result = await self._backend.select("products", [in_("id", ids)])
        return {row["id"]: row for row in result.unwrap("get products")}
