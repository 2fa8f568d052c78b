"""
In-Memory Backend Client Implementation

Simulates the hosted backend's row CRUD interface without any network calls.
Used in development mode (ENV_MODE=development) and as the test double:
    - Run the complete storefront locally
    - Inject failures on a specific table/operation to exercise error paths
    - Emit change events for the in-memory realtime service

Behavior:
    - Generates UUID ids and ISO-8601 timestamps like the hosted backend
    - Enforces the order_items foreign keys (SQLSTATE 23503)
    - Deleting an order cascades to its items
    - Batch inserts are all-or-nothing

Author: Khalil_Bannouri
Version: 1.0.0
"""

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence, Union

from storefront.errors import BackendError
from storefront.services.backend.base import (
    BaseBackendClient,
    BackendResult,
    Filter,
    Row,
    TABLES,
    not_found_error,
)
from storefront.services.realtime.base import ChangeEvent

logger = logging.getLogger(__name__)

# Tables carrying an updated_at column
TIMESTAMPED_TABLES = ("profiles", "orders")

FOREIGN_KEYS: dict[str, dict[str, str]] = {
    "order_items": {"order_id": "orders", "product_id": "products"},
}

CASCADES: dict[str, tuple[str, str]] = {
    # parent table -> (child table, child column)
    "orders": ("order_items", "order_id"),
}

OPERATIONS = ("select", "insert", "update", "delete", "upsert")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class InjectedFailure:
    """A failure armed on a table/operation pair."""
    table: str
    operation: str
    error: BackendError
    remaining: Optional[int] = 1  # None = every call


def _sort_key(column: str):
    def key(row: Row):
        value = row.get(column)
        return (value is None, value if value is not None else 0)
    return key


def _matches(row: Row, flt: Filter) -> bool:
    value = row.get(flt.column)
    if flt.op == "eq":
        return value == flt.value
    if flt.op == "neq":
        return value != flt.value
    if flt.op == "in":
        return value in flt.value
    if value is None:
        return False
    if flt.op == "gt":
        return value > flt.value
    if flt.op == "gte":
        return value >= flt.value
    if flt.op == "lt":
        return value < flt.value
    if flt.op == "lte":
        return value <= flt.value
    return False


class InMemoryBackendClient(BaseBackendClient):
    """
    In-memory implementation of the backend data client.

    Example:
        >>> backend = InMemoryBackendClient()
        >>> backend.fail_next("order_items", "insert")
        >>> result = await backend.insert("order_items", [...])
        >>> result.success
        False
    """

    def __init__(self):
        self._tables: dict[str, dict[Any, Row]] = {name: {} for name in TABLES}
        self._failures: list[InjectedFailure] = []
        self._listeners: list[Callable[[ChangeEvent], None]] = []
        self.calls: list[tuple[str, str]] = []

        logger.info("InMemoryBackendClient initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    # =========================================================================
    # TEST HOOKS
    # =========================================================================

    def fail_next(
        self,
        table: str,
        operation: str,
        error: Optional[BackendError] = None,
        times: Optional[int] = 1,
    ) -> None:
        """
        Arm a failure for the next call(s) of `operation` on `table`.

        Args:
            table: Target table
            operation: select, insert, update, delete or upsert
            error: Error to return (defaults to a generic 500)
            times: Number of calls to fail; None fails every call
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation '{operation}'. Options: {OPERATIONS}")
        error = error or BackendError(
            message=f"Injected {operation} failure on {table}",
            status=500,
        )
        self._failures.append(InjectedFailure(table, operation, error, times))

    def clear_failures(self) -> None:
        self._failures.clear()

    def rows(self, table: str) -> list[Row]:
        """Snapshot of a table's rows, in insertion order."""
        return [copy.deepcopy(row) for row in self._table(table).values()]

    def add_change_listener(self, listener: Callable[[ChangeEvent], None]) -> None:
        self._listeners.append(listener)

    def remove_change_listener(self, listener: Callable[[ChangeEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _table(self, table: str) -> dict[Any, Row]:
        if table not in self._tables:
            raise KeyError(table)
        return self._tables[table]

    def _missing_table(self, table: str) -> BackendResult:
        return BackendResult(error=BackendError(
            message=f'relation "public.{table}" does not exist',
            code="42P01",
            status=404,
            table=table,
        ))

    def _injected(self, table: str, operation: str) -> Optional[BackendError]:
        self.calls.append((table, operation))
        for failure in self._failures:
            if failure.table == table and failure.operation == operation:
                if failure.remaining is not None:
                    failure.remaining -= 1
                    if failure.remaining <= 0:
                        self._failures.remove(failure)
                logger.debug(f"Memory: injected {operation} failure on {table}")
                error = copy.copy(failure.error)
                error.table = error.table or table
                return error
        return None

    def _emit(self, table: str, event: str, new: Optional[Row], old: Optional[Row]) -> None:
        change = ChangeEvent(
            table=table,
            event=event,
            new=copy.deepcopy(new),
            old=copy.deepcopy(old),
        )
        for listener in list(self._listeners):
            listener(change)

    def _check_foreign_keys(self, table: str, row: Row) -> Optional[BackendError]:
        for column, parent in FOREIGN_KEYS.get(table, {}).items():
            value = row.get(column)
            if value is not None and value not in self._tables[parent]:
                return BackendError(
                    message=(
                        f'insert or update on table "{table}" violates foreign key '
                        f'constraint "{table}_{column}_fkey"'
                    ),
                    code="23503",
                    status=409,
                    details=f"Key ({column})=({value}) is not present in table \"{parent}\".",
                    table=table,
                )
        return None

    def _prepare(self, table: str, row: Row) -> Row:
        prepared = copy.deepcopy(row)
        now = utc_now()
        prepared.setdefault("id", str(uuid.uuid4()))
        prepared.setdefault("created_at", now)
        if table in TIMESTAMPED_TABLES:
            prepared.setdefault("updated_at", now)
        return prepared

    # =========================================================================
    # CRUD
    # =========================================================================

    async def select(
        self,
        table: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> BackendResult:
        if table not in self._tables:
            return self._missing_table(table)
        error = self._injected(table, "select")
        if error:
            return BackendResult(error=error)

        rows = [
            row for row in self._tables[table].values()
            if all(_matches(row, flt) for flt in (filters or ()))
        ]
        if order_by:
            rows.sort(key=_sort_key(order_by), reverse=descending)
        if limit is not None:
            rows = rows[:limit]

        return BackendResult(data=[copy.deepcopy(row) for row in rows])

    async def insert(
        self,
        table: str,
        rows: Union[Row, Sequence[Row]],
    ) -> BackendResult:
        if table not in self._tables:
            return self._missing_table(table)
        error = self._injected(table, "insert")
        if error:
            return BackendResult(error=error)

        batch = [rows] if isinstance(rows, dict) else list(rows)
        prepared = [self._prepare(table, row) for row in batch]
        storage = self._tables[table]

        # Validate the whole batch before writing anything
        seen = set()
        for row in prepared:
            if row["id"] in storage or row["id"] in seen:
                return BackendResult(error=BackendError(
                    message=f'duplicate key value violates unique constraint "{table}_pkey"',
                    code="23505",
                    status=409,
                    details=f"Key (id)=({row['id']}) already exists.",
                    table=table,
                ))
            seen.add(row["id"])
            fk_error = self._check_foreign_keys(table, row)
            if fk_error:
                return BackendResult(error=fk_error)

        for row in prepared:
            storage[row["id"]] = row
            self._emit(table, "INSERT", row, None)

        logger.debug(f"Memory: inserted {len(prepared)} row(s) into {table}")
        return BackendResult(data=[copy.deepcopy(row) for row in prepared])

    async def update(self, table: str, row_id: Any, values: Row) -> BackendResult:
        return self._apply_update(table, row_id, values)

    async def update_if(self, table: str, row_id: Any, values: Row, expected: Row) -> BackendResult:
        return self._apply_update(table, row_id, values, expected)

    def _apply_update(
        self,
        table: str,
        row_id: Any,
        values: Row,
        expected: Optional[Row] = None,
    ) -> BackendResult:
        if table not in self._tables:
            return self._missing_table(table)
        error = self._injected(table, "update")
        if error:
            return BackendResult(error=error)

        storage = self._tables[table]
        if row_id not in storage:
            return BackendResult(error=not_found_error(table, row_id))
        if expected and any(storage[row_id].get(k) != v for k, v in expected.items()):
            return BackendResult(error=not_found_error(table, row_id))

        old = copy.deepcopy(storage[row_id])
        updated = {**storage[row_id], **copy.deepcopy(values), "id": row_id}
        fk_error = self._check_foreign_keys(table, updated)
        if fk_error:
            return BackendResult(error=fk_error)

        storage[row_id] = updated
        self._emit(table, "UPDATE", updated, old)
        return BackendResult(data=copy.deepcopy(updated))

    async def delete(self, table: str, row_id: Any) -> BackendResult:
        if table not in self._tables:
            return self._missing_table(table)
        error = self._injected(table, "delete")
        if error:
            return BackendResult(error=error)

        storage = self._tables[table]
        old = storage.pop(row_id, None)
        if old is None:
            return BackendResult(data=None)

        if table in CASCADES:
            child_table, column = CASCADES[table]
            children = self._tables[child_table]
            for child_id in [cid for cid, child in children.items() if child.get(column) == row_id]:
                self._emit(child_table, "DELETE", None, children.pop(child_id))

        self._emit(table, "DELETE", None, old)
        return BackendResult(data=None)

    async def upsert(
        self,
        table: str,
        rows: Sequence[Row],
        on_conflict: str = "id",
    ) -> BackendResult:
        if table not in self._tables:
            return self._missing_table(table)
        error = self._injected(table, "upsert")
        if error:
            return BackendResult(error=error)

        storage = self._tables[table]
        written = []
        for row in rows:
            existing = next(
                (
                    current for current in storage.values()
                    if on_conflict in row and current.get(on_conflict) == row[on_conflict]
                ),
                None,
            )
            if existing is not None:
                old = copy.deepcopy(existing)
                existing.update({k: v for k, v in copy.deepcopy(row).items() if k != "id"})
                if table in TIMESTAMPED_TABLES:
                    existing["updated_at"] = utc_now()
                self._emit(table, "UPDATE", existing, old)
                written.append(copy.deepcopy(existing))
            else:
                prepared = self._prepare(table, row)
                storage[prepared["id"]] = prepared
                self._emit(table, "INSERT", prepared, None)
                written.append(copy.deepcopy(prepared))

        return BackendResult(data=written)

    async def health_check(self) -> bool:
        """In-memory backend is always available."""
        return True
