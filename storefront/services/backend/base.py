"""
Backend Data Client Abstract Base Class

Defines the interface contract for the generic row CRUD interface exposed
by the hosted backend. InMemoryBackendClient, HostedBackendClient and
PostgresBackendClient implement these methods, so the entity services work
identically regardless of which provider is active.

Every call returns a BackendResult carrying either data or an error
descriptor; providers never raise for backend-side failures.

Design Pattern: Strategy Pattern
    - Runtime switching between providers via configuration
    - The in-memory provider doubles as the test backend

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from storefront.errors import BackendError, BackendCallError, ErrorKind

logger = logging.getLogger(__name__)


TABLES = ("profiles", "products", "categories", "orders", "order_items")

FILTER_OPS = ("eq", "neq", "gt", "gte", "lt", "lte", "in")

# Compare-and-set rounds before increment() gives up
INCREMENT_ATTEMPTS = 5

# PostgREST code for ".single()" on zero rows
NOT_FOUND_CODE = "PGRST116"

Row = dict[str, Any]


@dataclass(frozen=True)
class Filter:
    """
    A single column predicate.

    Attributes:
        column: Column name
        op: One of FILTER_OPS
        value: Comparison value (a sequence for "in")
    """
    column: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter op '{self.op}'. Options: {FILTER_OPS}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


@dataclass
class BackendResult:
    """
    Standardized result of a backend call.

    Attributes:
        data: A list of rows for select/insert/upsert, one row for
              select_one/update, None for delete
        error: Error descriptor if the call failed
    """
    data: Any = None
    error: Optional[BackendError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def unwrap(self, context: Optional[str] = None) -> Any:
        """Return data or raise BackendCallError."""
        if self.error is not None:
            raise BackendCallError(self.error, context)
        return self.data


class BaseBackendClient(ABC):
    """
    Abstract base class for backend data clients.

    Example:
        >>> backend = get_backend_client()
        >>> result = await backend.select("orders", [eq("user_id", uid)],
        ...                               order_by="created_at", descending=True)
        >>> if result.success:
        ...     print(len(result.data))
    """

    # Whether insert_order_with_items runs as one transaction
    supports_transactions: bool = False

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g. "memory", "hosted", "postgres")."""
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> BackendResult:
        """
        Select rows matching all filters.

        Returns:
            BackendResult: data is a list of rows (possibly empty)
        """
        pass

    @abstractmethod
    async def insert(
        self,
        table: str,
        rows: Union[Row, Sequence[Row]],
    ) -> BackendResult:
        """
        Insert one row or a batch of rows.

        A batch is all-or-nothing: on error no row of the batch persists.

        Returns:
            BackendResult: data is the list of inserted rows with generated
            columns (id, created_at) filled in
        """
        pass

    @abstractmethod
    async def update(self, table: str, row_id: Any, values: Row) -> BackendResult:
        """
        Update one row by id.

        Returns:
            BackendResult: data is the updated row; NOT_FOUND error if no row
        """
        pass

    @abstractmethod
    async def delete(self, table: str, row_id: Any) -> BackendResult:
        """Delete one row by id. Deleting a missing row is not an error."""
        pass

    @abstractmethod
    async def upsert(
        self,
        table: str,
        rows: Sequence[Row],
        on_conflict: str = "id",
    ) -> BackendResult:
        """Insert rows, updating existing rows that collide on `on_conflict`."""
        pass

    async def select_one(self, table: str, row_id: Any) -> BackendResult:
        """Fetch a single row by id; NOT_FOUND error when it does not exist."""
        result = await self.select(table, [eq("id", row_id)], limit=1)
        if not result.success:
            return result
        if not result.data:
            return BackendResult(error=not_found_error(table, row_id))
        return BackendResult(data=result.data[0])

    async def update_if(
        self,
        table: str,
        row_id: Any,
        values: Row,
        expected: Row,
    ) -> BackendResult:
        """
        Update one row by id only while its columns still equal `expected`.

        Returns:
            BackendResult: data is the updated row; NOT_FOUND error if the row
            is gone or another writer changed one of the expected columns
        """
        raise NotImplementedError(f"{self.provider_name} backend does not support conditional updates")

    async def increment(
        self,
        table: str,
        row_id: Any,
        column: str,
        amount: int,
        values: Optional[Row] = None,
        attempts: int = INCREMENT_ATTEMPTS,
    ) -> BackendResult:
        """
        Add `amount` to an integer column, with optional extra column values.

        Compare-and-set: the row is re-read and the write retried whenever a
        concurrent writer changed the column in between.

        Returns:
            BackendResult: data is the updated row; CONFLICT error when every
            attempt lost the race
        """
        for _ in range(attempts):
            current = await self.select_one(table, row_id)
            if not current.success:
                return current

            seen = current.data.get(column)
            result = await self.update_if(
                table,
                row_id,
                {**(values or {}), column: int(seen or 0) + amount},
                expected={column: seen},
            )
            if result.success or result.error.kind != ErrorKind.NOT_FOUND:
                return result
            logger.debug(f"{table}/{row_id}.{column} changed concurrently, retrying")

        return BackendResult(error=BackendError(
            message=f"{table}/{row_id}.{column} kept changing during {attempts} attempts",
            status=409,
            table=table,
        ))

    async def insert_order_with_items(
        self,
        order: Row,
        items: Sequence[Row],
    ) -> BackendResult:
        """
        Insert an order and its items as one transaction.

        Only providers with supports_transactions implement this.

        Returns:
            BackendResult: data is {"order": row, "items": [rows]}; on error,
            error.table names the insert that failed and nothing persists
        """
        raise NotImplementedError(f"{self.provider_name} backend does not support transactions")

    def for_session(self, access_token: Optional[str]) -> "BaseBackendClient":
        """
        Return a client acting on behalf of the given session.

        Providers enforcing row-level security bind the user's token;
        others return themselves.
        """
        return self

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the backend."""
        pass

    async def close(self) -> None:
        """Release connections held by the provider."""
        return None


def not_found_error(table: str, row_id: Any) -> BackendError:
    return BackendError(
        message=f"No row in '{table}' with id {row_id}",
        code=NOT_FOUND_CODE,
        status=406,
        table=table,
    )
