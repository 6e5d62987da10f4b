"""SQLAlchemy-backed store with keyed insert-or-ignore."""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    create_engine,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from inbox_ledger.errors import PersistenceError
from inbox_ledger.logger import get_logger

logger = get_logger(__name__)

metadata = MetaData()

owners = Table(
    "owners",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("last_sync_at", DateTime(timezone=True), nullable=True),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", Integer, ForeignKey("owners.id"), nullable=False, index=True),
    Column("source_message_id", String(255), nullable=False),
    Column("source_subject", Text, nullable=False, default=""),
    Column("source_date", DateTime(timezone=True), nullable=True),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(8), nullable=False),
    Column("original_amount", Numeric(14, 2), nullable=False),
    Column("original_currency", String(8), nullable=False),
    Column("display_amount", Numeric(14, 2), nullable=False),
    Column("display_currency", String(8), nullable=False),
    Column("merchant", String(255), nullable=False),
    Column("category", String(32), nullable=False),
    Column("transaction_type", String(32), nullable=False),
    Column("date", Date, nullable=False, index=True),
    Column("time", String(8), nullable=True),
    Column("card_last4", String(4), nullable=True),
    Column("account_last4", String(4), nullable=True),
    Column("institution", String(128), nullable=False),
    Column("description", Text, nullable=False, default=""),
    Column("location", String(255), nullable=True),
    Column("confidence", Float, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=True),
    UniqueConstraint("owner_id", "source_message_id", name="uq_transactions_owner_message"),
)

sync_runs = Table(
    "sync_runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", Integer, ForeignKey("owners.id"), nullable=False, index=True),
    Column("sync_type", String(32), nullable=False, default="manual"),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("duration_seconds", Integer, nullable=True),
    Column("messages_fetched", Integer, nullable=False, default=0),
    Column("messages_processed", Integer, nullable=False, default=0),
    Column("transactions_found", Integer, nullable=False, default=0),
    Column("transactions_saved", Integer, nullable=False, default=0),
    Column("duplicates_skipped", Integer, nullable=False, default=0),
    Column("error_count", Integer, nullable=False, default=0),
    Column("status", String(16), nullable=False),
    Column("error_details", JSON, nullable=True),
)

TABLES: dict[str, Table] = {table.name: table for table in (owners, transactions, sync_runs)}


@dataclass(frozen=True)
class Filter:
    """One select predicate. ``op`` is one of eq, gte, lte, ilike_any."""
    column: str | tuple[str, ...]
    op: str
    value: Any


@dataclass(frozen=True)
class Sort:
    column: str
    ascending: bool = False


@dataclass(frozen=True)
class Page:
    number: int = 1
    size: int = 50

    @property
    def offset(self) -> int:
        return (max(self.number, 1) - 1) * self.size


class Store:
    """Blocking store. Callers on the event loop wrap calls in ``asyncio.to_thread``."""

    def __init__(self, url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if url is None:
                raise ValueError("Store needs a database URL or an engine")
            connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
            engine = create_engine(url, connect_args=connect_args)
        self.engine = engine

    def create_schema(self) -> None:
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not create schema: {exc}") from exc

    def dispose(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _table(name: str) -> Table:
        try:
            return TABLES[name]
        except KeyError:
            raise PersistenceError(f"Unknown table {name!r}") from None

    def _insert_statement(self, table: Table, conflict_key: Sequence[str], ignore_on_conflict: bool):
        dialect = self.engine.dialect.name
        if not ignore_on_conflict:
            return insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table).on_conflict_do_nothing(index_elements=list(conflict_key))
        if dialect == "postgresql":
            return postgresql.insert(table).on_conflict_do_nothing(index_elements=list(conflict_key))
        raise PersistenceError(f"Insert-or-ignore is not supported on {dialect}")

    def upsert(
        self,
        table_name: str,
        rows: Iterable[Mapping[str, Any]],
        conflict_key: Sequence[str],
        ignore_on_conflict: bool = True,
    ) -> list[dict[str, Any]]:
        """Insert rows, skipping those that collide on ``conflict_key``.

        Returns the rows that were actually inserted, with their new ``id``.
        All rows go in one database transaction.
        """
        table = self._table(table_name)
        stmt = self._insert_statement(table, conflict_key, ignore_on_conflict)
        inserted: list[dict[str, Any]] = []
        try:
            with self.engine.begin() as conn:
                for row in rows:
                    result = conn.execute(stmt.values(**row))
                    if result.rowcount == 1:
                        new_row = dict(row)
                        if result.inserted_primary_key:
                            new_row["id"] = result.inserted_primary_key[0]
                        inserted.append(new_row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Upsert into {table_name} failed: {exc}") from exc
        return inserted

    def insert_one(self, table_name: str, row: Mapping[str, Any]) -> dict[str, Any]:
        table = self._table(table_name)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(insert(table).values(**row))
                new_id = result.inserted_primary_key[0]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Insert into {table_name} failed: {exc}") from exc
        return {**row, "id": new_id}

    def update_by_id(self, table_name: str, row_id: int, values: Mapping[str, Any]) -> int:
        table = self._table(table_name)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(update(table).where(table.c.id == row_id).values(**values))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Update of {table_name} #{row_id} failed: {exc}") from exc
        return result.rowcount

    def _where(self, table: Table, filters: Sequence[Filter]):
        clauses = []
        for item in filters:
            if item.op == "ilike_any":
                columns = item.column if isinstance(item.column, tuple) else (item.column,)
                pattern = f"%{item.value}%"
                clauses.append(or_(*(table.c[name].ilike(pattern) for name in columns)))
                continue
            column = table.c[item.column]
            if item.op == "eq":
                clauses.append(column == item.value)
            elif item.op == "gte":
                clauses.append(column >= item.value)
            elif item.op == "lte":
                clauses.append(column <= item.value)
            else:
                raise PersistenceError(f"Unsupported filter operator {item.op!r}")
        return and_(*clauses) if clauses else None

    def select(
        self,
        table_name: str,
        filters: Sequence[Filter] = (),
        sort: Sort | None = None,
        page: Page | None = None,
    ) -> list[dict[str, Any]]:
        table = self._table(table_name)
        stmt = select(table)
        where = self._where(table, filters)
        if where is not None:
            stmt = stmt.where(where)
        if sort is not None:
            if sort.column not in table.c:
                raise PersistenceError(f"Cannot sort {table_name} by {sort.column!r}")
            column = table.c[sort.column]
            stmt = stmt.order_by(column.asc() if sort.ascending else column.desc(), table.c.id.desc())
        if page is not None:
            stmt = stmt.offset(page.offset).limit(page.size)
        try:
            with self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(stmt)]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Select from {table_name} failed: {exc}") from exc

    def count(self, table_name: str, filters: Sequence[Filter] = ()) -> int:
        table = self._table(table_name)
        stmt = select(func.count()).select_from(table)
        where = self._where(table, filters)
        if where is not None:
            stmt = stmt.where(where)
        try:
            with self.engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Count on {table_name} failed: {exc}") from exc
