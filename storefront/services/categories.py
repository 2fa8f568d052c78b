"""
Category Service

Thin wrapper over the backend client for the categories table.

Author: Khalil_Bannouri
Version: 1.0.0
"""

from storefront.services.backend.base import BaseBackendClient, Row


class CategoryService:
    """Menu category access, ordered by display_order."""

    def __init__(self, backend: BaseBackendClient):
        self._backend = backend

    async def list_all(self) -> list[Row]:
        result = await self._backend.select("categories", order_by="display_order")
        return result.unwrap("list categories")
