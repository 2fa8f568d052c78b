"""
Postgres Backend Client Implementation

Talks to the managed Postgres directly through the SQLAlchemy async engine
instead of the REST data API. Selected with BACKEND_PROVIDER=postgres.

Unlike the REST providers it supports multi-statement transactions, so an
order and its items are created as one unit (no compensating delete needed).

Requirements:
    - DATABASE_URL (postgresql+psycopg://...)
    - The connecting role bypasses row-level security; the storefront
      scopes every query by the session's account id itself.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional, Sequence, Union

from sqlalchemy import (
    DateTime,
    Table,
    delete as sa_delete,
    func,
    insert as sa_insert,
    select as sa_select,
    text,
    update as sa_update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.database import Base, get_session_maker
from storefront.errors import BackendError, NETWORK_ERROR_CODE
from storefront.services.backend.base import (
    BaseBackendClient,
    BackendResult,
    Filter,
    Row,
    eq,
    not_found_error,
)

logger = logging.getLogger(__name__)


def translate_error(exc: Exception, table: Optional[str]) -> BackendError:
    """Turn a driver exception into an error descriptor carrying its SQLSTATE."""
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if code is None and exc.connection_invalidated:
            code = NETWORK_ERROR_CODE
        diag = getattr(orig, "diag", None)
        return BackendError(
            message=str(orig),
            code=code,
            details=getattr(diag, "message_detail", None),
            hint=getattr(diag, "message_hint", None),
            table=table,
        )
    if isinstance(exc, OSError):
        return BackendError(message=str(exc), code=NETWORK_ERROR_CODE, table=table)
    return BackendError(message=str(exc), table=table)


def _serialize(mapping: Any) -> Row:
    row = dict(mapping)
    for key, value in row.items():
        if isinstance(value, datetime):
            row[key] = value.isoformat()
    return row


class PostgresBackendClient(BaseBackendClient):
    """
    Direct Postgres implementation of the backend data client.

    Example:
        >>> backend = PostgresBackendClient()
        >>> result = await backend.insert_order_with_items(order, items)
    """

    supports_transactions = True

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        # Register the models on Base.metadata
        from storefront import models  # noqa: F401

        self._session_maker = session_maker or get_session_maker()
        logger.info("PostgresBackendClient initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "postgres"

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _table(self, name: str) -> Table:
        table = Base.metadata.tables.get(name)
        if table is None:
            raise KeyError(name)
        return table

    def _coerce(self, table: Table, column: str, value: Any) -> Any:
        if isinstance(value, str) and isinstance(table.c[column].type, DateTime):
            return datetime.fromisoformat(value)
        return value

    def _coerce_row(self, table: Table, row: Row) -> Row:
        return {
            key: self._coerce(table, key, value)
            for key, value in row.items()
            if key in table.c
        }

    def _where(self, table: Table, flt: Filter):
        column = table.c[flt.column]
        value = flt.value
        if flt.op == "in":
            return column.in_([self._coerce(table, flt.column, v) for v in value])
        value = self._coerce(table, flt.column, value)
        if flt.op == "eq":
            return column.is_(None) if value is None else column == value
        if flt.op == "neq":
            return column.is_not(None) if value is None else column != value
        if flt.op == "gt":
            return column > value
        if flt.op == "gte":
            return column >= value
        if flt.op == "lt":
            return column < value
        return column <= value

    def _missing_table(self, name: str) -> BackendResult:
        return BackendResult(error=BackendError(
            message=f'relation "public.{name}" does not exist',
            code="42P01",
            table=name,
        ))

    async def _insert_rows(self, session: AsyncSession, table: Table, rows: Sequence[Row]) -> list[Row]:
        inserted = []
        for row in rows:
            values = self._coerce_row(table, row)
            values.setdefault("id", str(uuid.uuid4()))
            result = await session.execute(
                sa_insert(table).values(**values).returning(*table.c)
            )
            inserted.append(_serialize(result.mappings().one()))
        return inserted

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
        try:
            tbl = self._table(table)
        except KeyError:
            return self._missing_table(table)

        stmt = sa_select(tbl)
        for flt in filters or ():
            stmt = stmt.where(self._where(tbl, flt))
        if order_by:
            column = tbl.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return BackendResult(data=[_serialize(m) for m in result.mappings().all()])
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Postgres: select {table} failed: {e}")
            return BackendResult(error=translate_error(e, table))

    async def insert(
        self,
        table: str,
        rows: Union[Row, Sequence[Row]],
    ) -> BackendResult:
        try:
            tbl = self._table(table)
        except KeyError:
            return self._missing_table(table)

        batch = [rows] if isinstance(rows, dict) else list(rows)
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    inserted = await self._insert_rows(session, tbl, batch)
            return BackendResult(data=inserted)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Postgres: insert into {table} failed: {e}")
            return BackendResult(error=translate_error(e, table))

    async def update(self, table: str, row_id: Any, values: Row) -> BackendResult:
        try:
            tbl = self._table(table)
        except KeyError:
            return self._missing_table(table)
        return await self._update(tbl, row_id, self._coerce_row(tbl, values))

    async def update_if(self, table: str, row_id: Any, values: Row, expected: Row) -> BackendResult:
        try:
            tbl = self._table(table)
        except KeyError:
            return self._missing_table(table)
        conditions = [self._where(tbl, eq(key, value)) for key, value in expected.items()]
        return await self._update(tbl, row_id, self._coerce_row(tbl, values), conditions)

    async def increment(
        self,
        table: str,
        row_id: Any,
        column: str,
        amount: int,
        values: Optional[Row] = None,
        attempts: int = 1,
    ) -> BackendResult:
        """Single UPDATE ... SET column = column + amount; no read needed."""
        try:
            tbl = self._table(table)
        except KeyError:
            return self._missing_table(table)
        assignments = self._coerce_row(tbl, values or {})
        assignments[column] = func.coalesce(tbl.c[column], 0) + amount
        return await self._update(tbl, row_id, assignments)

    async def _update(
        self,
        tbl: Table,
        row_id: Any,
        assignments: Row,
        conditions: Sequence[Any] = (),
    ) -> BackendResult:
        stmt = (
            sa_update(tbl)
            .where(tbl.c.id == row_id, *conditions)
            .values(**assignments)
            .returning(*tbl.c)
        )
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    row = (await session.execute(stmt)).mappings().first()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Postgres: update {tbl.name}/{row_id} failed: {e}")
            return BackendResult(error=translate_error(e, tbl.name))

        if row is None:
            return BackendResult(error=not_found_error(tbl.name, row_id))
        return BackendResult(data=_serialize(row))

    async def delete(self, table: str, row_id: Any) -> BackendResult:
        try:
            tbl = self._table(table)
        except KeyError:
            return self._missing_table(table)

        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await session.execute(sa_delete(tbl).where(tbl.c.id == row_id))
            return BackendResult(data=None)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Postgres: delete {table}/{row_id} failed: {e}")
            return BackendResult(error=translate_error(e, table))

    async def upsert(
        self,
        table: str,
        rows: Sequence[Row],
        on_conflict: str = "id",
    ) -> BackendResult:
        try:
            tbl = self._table(table)
        except KeyError:
            return self._missing_table(table)

        written = []
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    for row in rows:
                        values = self._coerce_row(tbl, row)
                        values.setdefault("id", str(uuid.uuid4()))
                        stmt = pg_insert(tbl).values(**values)
                        updates = {
                            key: stmt.excluded[key]
                            for key in values
                            if key not in ("id", on_conflict)
                        } or {on_conflict: stmt.excluded[on_conflict]}
                        stmt = stmt.on_conflict_do_update(
                            index_elements=[on_conflict],
                            set_=updates,
                        ).returning(*tbl.c)
                        result = await session.execute(stmt)
                        written.append(_serialize(result.mappings().one()))
            return BackendResult(data=written)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Postgres: upsert into {table} failed: {e}")
            return BackendResult(error=translate_error(e, table))

    async def insert_order_with_items(
        self,
        order: Row,
        items: Sequence[Row],
    ) -> BackendResult:
        """Insert the order and all its items in one transaction."""
        stage = "orders"
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    created = (await self._insert_rows(session, self._table("orders"), [order]))[0]
                    stage = "order_items"
                    lines = [{**item, "order_id": created["id"]} for item in items]
                    created_items = await self._insert_rows(session, self._table("order_items"), lines)
            logger.info(f"Postgres: order {created['id']} committed with {len(created_items)} item(s)")
            return BackendResult(data={"order": created, "items": created_items})
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Postgres: order transaction rolled back at {stage}: {e}")
            return BackendResult(error=translate_error(e, stage))

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Postgres health check failed: {e}")
            return False
