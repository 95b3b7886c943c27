"""Generic typed repository over one table.

A ``RecordMapper`` describes how one record type maps to one table: explicit
``to_row``/``from_row`` functions plus a codec per field for partial updates.
``Repository[T]`` builds parameterized SQL from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Mapping, Sequence, TypeVar

import structlog

from localdb.db.database import Database
from localdb.db.filters import Condition, OrderBy, quote_identifier
from localdb.utils.serialization import INTEGER, Codec

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RecordMapper(Generic[T]):
    """Mapping between a record type and a table.

    Attributes:
        table: Table name
        fields: Column name -> codec, for every column except the id
        to_row: Record -> {column: storage value} (id excluded)
        from_row: Database row -> record
        get_id: Read the record's identifier (None if not persisted)
        with_id: Copy of the record with the store-assigned identifier
        id_column: Primary key column
    """

    table: str
    fields: Mapping[str, Codec]
    to_row: Callable[[T], dict[str, Any]]
    from_row: Callable[[Any], T]
    get_id: Callable[[T], int | None]
    with_id: Callable[[T, int], T]
    id_column: str = "id"

    @property
    def columns(self) -> tuple[str, ...]:
        return (self.id_column, *self.fields)

    def encode_field(self, name: str, value: Any) -> Any:
        if name not in self.fields:
            raise ValueError(f"Unknown field for {self.table}: {name}")
        return self.fields[name].to_storage(value, f"{self.table}.{name}")


class Repository(Generic[T]):
    """CRUD, filtered query and pagination for one record type."""

    def __init__(self, db: Database, mapper: RecordMapper[T]):
        self.db = db
        self.mapper = mapper
        self._table = quote_identifier(mapper.table)
        self._id = quote_identifier(mapper.id_column)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def insert(self, record: T) -> int:
        """Insert a record; the store assigns the identifier.

        Returns:
            The new row's identifier

        Raises:
            ConstraintError: UNIQUE/FOREIGN KEY/NOT NULL violation
        """
        row = self.mapper.to_row(record)
        columns = ", ".join(quote_identifier(c) for c in row)
        placeholders = ", ".join("?" for _ in row)
        result = await self.db.execute(
            f"INSERT INTO {self._table} ({columns}) VALUES ({placeholders})",
            tuple(row.values()),
        )
        new_id = int(result.lastrowid)
        logger.debug(f"{self.mapper.table}.inserted", id=new_id)
        return new_id

    async def insert_batch(self, records: Sequence[T]) -> list[int]:
        """Insert all records in one transaction; all persist or none do."""
        ids: list[int] = []
        async with self.db.transaction():
            for record in records:
                ids.append(await self.insert(record))
        logger.debug(f"{self.mapper.table}.batch_inserted", count=len(ids))
        return ids

    # =========================================================================
    # READ
    # =========================================================================

    async def find_by_id(self, record_id: int) -> T | None:
        """Record with this identifier, or None."""
        row = await self.db.fetch_one(
            f"SELECT * FROM {self._table} WHERE {self._id} = ?", (record_id,)
        )
        if row is None:
            return None
        return self.mapper.from_row(row)

    async def find_all(
        self,
        filter: Condition | None = None,
        order_by: OrderBy | Sequence[OrderBy] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[T]:
        """Records matching ``filter``.

        Args:
            filter: Optional condition, compiled to placeholders
            order_by: Ordering; defaults to the id column (insertion order)
            limit: Maximum number of records
            offset: Records to skip (by convention ``page * limit``)
        """
        where, args = self._where(filter)
        sql = f"SELECT * FROM {self._table}{where} ORDER BY {self._order(order_by)}"
        params = list(args)

        if limit is not None or offset is not None:
            if (limit is not None and limit < 0) or (offset is not None and offset < 0):
                raise ValueError("limit and offset must be non-negative")
            # SQLite needs LIMIT for OFFSET; -1 means unbounded
            sql += " LIMIT ? OFFSET ?"
            params.extend([-1 if limit is None else limit, offset or 0])

        rows = await self.db.fetch_all(sql, params)
        return [self.mapper.from_row(row) for row in rows]

    async def find_one(self, filter: Condition) -> T | None:
        """First matching record in insertion order, or None."""
        records = await self.find_all(filter, limit=1)
        return records[0] if records else None

    async def page(
        self,
        page: int,
        page_size: int,
        filter: Condition | None = None,
        order_by: OrderBy | Sequence[OrderBy] | None = None,
    ) -> list[T]:
        """Zero-based page of records."""
        if page < 0 or page_size < 1:
            raise ValueError("page must be >= 0 and page_size >= 1")
        return await self.find_all(
            filter, order_by, limit=page_size, offset=page * page_size
        )

    async def count(self, filter: Condition | None = None) -> int:
        where, args = self._where(filter)
        row = await self.db.fetch_one(f"SELECT count(*) FROM {self._table}{where}", args)
        return int(row[0]) if row else 0

    async def exists(self, record_id: int) -> bool:
        row = await self.db.fetch_one(
            f"SELECT 1 FROM {self._table} WHERE {self._id} = ?", (record_id,)
        )
        return row is not None

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(self, record: T) -> int:
        """Replace the full row matched by the record's identifier.

        Returns:
            Affected rows: 1, or 0 when no row has that identifier.
        """
        record_id = self.mapper.get_id(record)
        if record_id is None:
            raise ValueError(f"Cannot update unsaved {self.mapper.table} record (id is None)")

        row = self.mapper.to_row(record)
        assignments = ", ".join(f"{quote_identifier(c)} = ?" for c in row)
        result = await self.db.execute(
            f"UPDATE {self._table} SET {assignments} WHERE {self._id} = ?",
            (*row.values(), record_id),
        )
        logger.debug(f"{self.mapper.table}.updated", id=record_id, rows=result.rowcount)
        return result.rowcount

    async def update_fields(self, record_id: int, fields: Mapping[str, Any]) -> int:
        """Set only the named fields on one row.

        Returns:
            Affected rows: 1, or 0 when no row has that identifier.
        """
        if not fields:
            raise ValueError("update_fields requires at least one field")

        values = {name: self.mapper.encode_field(name, v) for name, v in fields.items()}
        assignments = ", ".join(f"{quote_identifier(c)} = ?" for c in values)
        result = await self.db.execute(
            f"UPDATE {self._table} SET {assignments} WHERE {self._id} = ?",
            (*values.values(), record_id),
        )
        logger.debug(
            f"{self.mapper.table}.fields_updated",
            id=record_id,
            fields=sorted(values),
            rows=result.rowcount,
        )
        return result.rowcount

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(self, record_id: int) -> int:
        """Delete one row. Returns rows removed (0 if missing)."""
        result = await self.db.execute(
            f"DELETE FROM {self._table} WHERE {self._id} = ?", (record_id,)
        )
        if result.rowcount:
            logger.debug(f"{self.mapper.table}.deleted", id=record_id)
        return result.rowcount

    async def delete_all(self, filter: Condition | None = None) -> int:
        """Delete matching rows (all rows without a filter). Returns count."""
        where, args = self._where(filter)
        result = await self.db.execute(f"DELETE FROM {self._table}{where}", args)
        logger.debug(f"{self.mapper.table}.bulk_deleted", rows=result.rowcount)
        return result.rowcount

    async def run_in_transaction(
        self, operations: Sequence[Callable[[], Awaitable[Any]]]
    ) -> list[Any]:
        """Run operations atomically on the shared connection."""
        return await self.db.run_in_transaction(operations)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _where(self, filter: Condition | None) -> tuple[str, tuple[Any, ...]]:
        if filter is None:
            return "", ()
        unknown = filter.columns() - set(self.mapper.columns)
        if unknown:
            raise ValueError(f"Unknown column(s) for {self.mapper.table}: {sorted(unknown)}")
        # Filter values go through the same codecs as written values
        sql, args = filter.encode(self._encode_value).compile()
        return f" WHERE {sql}", args

    def _encode_value(self, column: str, value: Any) -> Any:
        if column == self.mapper.id_column:
            return INTEGER.to_storage(value, f"{self.mapper.table}.{column}")
        return self.mapper.encode_field(column, value)

    def _order(self, order_by: OrderBy | Sequence[OrderBy] | None) -> str:
        if order_by is None:
            return f"{self._id} ASC"
        orders = [order_by] if isinstance(order_by, OrderBy) else list(order_by)
        unknown = {o.column for o in orders} - set(self.mapper.columns)
        if unknown:
            raise ValueError(f"Unknown column(s) for {self.mapper.table}: {sorted(unknown)}")
        # Tie-break on id so paging is stable
        return ", ".join([*(o.compile() for o in orders), f"{self._id} ASC"])
