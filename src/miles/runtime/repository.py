"""
SQLite repository - the persistence layer behind the generated API.

DatabaseManager owns connections (one per unit of work, foreign keys on);
SQLiteRepository provides CRUD, filtered and paginated listing, and
relation loading for one entity.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from miles.models.fields import utcnow
from miles.runtime.query_builder import DEFAULT_PAGE_SIZE, QueryBuilder
from miles.runtime.relation_loader import RelationLoader, convert_row
from miles.runtime.schema import (
    create_table_sql,
    index_sql,
    quote_identifier,
    to_db,
)
from miles.specs import EntitySpec, FieldType

T = TypeVar("T", bound=BaseModel)

MEMORY_PATH = ":memory:"


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """
    Manages SQLite connections.

    Every connection has ``PRAGMA foreign_keys = ON``. A ``:memory:``
    database keeps one shared connection, since each new connection to
    ``:memory:`` would see an empty database.
    """

    def __init__(self, db_path: str | Path = ".miles/data.db"):
        self.in_memory = str(db_path) == MEMORY_PATH
        self.db_path: str | Path = MEMORY_PATH if self.in_memory else Path(db_path)
        self._shared: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        if not self.in_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=not self.in_memory)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self, begin: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Connection for one unit of work: commit on success, rollback on error.

        Args:
            begin: Open an explicit transaction first, so DDL is rolled
                back together with everything else on failure
        """
        if self.in_memory:
            with self._lock:
                if self._shared is None:
                    self._shared = self._open()
                yield from self._unit_of_work(self._shared, begin)
            return

        conn = self._open()
        try:
            yield from self._unit_of_work(conn, begin)
        finally:
            conn.close()

    @staticmethod
    def _unit_of_work(conn: sqlite3.Connection, begin: bool) -> Iterator[sqlite3.Connection]:
        if begin:
            conn.execute("BEGIN")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def close(self) -> None:
        """Close the shared in-memory connection, if any."""
        with self._lock:
            if self._shared is not None:
                self._shared.close()
                self._shared = None

    def create_table(self, entity: EntitySpec) -> None:
        """Create a table and its indexes if they don't exist."""
        with self.connection() as conn:
            conn.execute(create_table_sql(entity))
            for stmt in index_sql(entity):
                conn.execute(stmt)

    def table_exists(self, table_name: str) -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                (table_name,),
            )
            return cursor.fetchone() is not None

    def get_table_columns(self, table_name: str) -> list[str]:
        with self.connection() as conn:
            cursor = conn.execute(f"PRAGMA table_info({quote_identifier(table_name)})")
            return [row[1] for row in cursor.fetchall()]

    def get_tables(self) -> list[str]:
        """User tables, excluding SQLite internals."""
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            return [row[0] for row in cursor.fetchall()]


# =============================================================================
# Repository
# =============================================================================


class SQLiteRepository(Generic[T]):
    """
    SQLite repository for a single entity type.

    Rows come back as instances of ``model_class``; when relations are
    included they come back as dicts with the nested relation data.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        entity_spec: EntitySpec,
        model_class: type[T],
        relation_loader: RelationLoader | None = None,
    ):
        self.db = db_manager
        self.entity_spec = entity_spec
        self.model_class = model_class
        self.table = quote_identifier(entity_spec.table)
        self.pk = entity_spec.primary_key.name
        self._relation_loader = relation_loader or RelationLoader([entity_spec])
        self._field_types: dict[str, FieldType] = {f.name: f.type for f in entity_spec.fields}

    def _to_row(self, data: dict[str, Any]) -> dict[str, Any]:
        return {
            k: to_db(v, self._field_types[k]) for k, v in data.items() if k in self._field_types
        }

    def _build_item(self, row: dict[str, Any]) -> T:
        return self.model_class(**convert_row(self.entity_spec, row))

    def _with_relations(
        self,
        conn: sqlite3.Connection,
        rows: list[sqlite3.Row],
        include: list[str],
    ) -> list[dict[str, Any]]:
        converted = [convert_row(self.entity_spec, dict(r)) for r in rows]
        loaded = self._relation_loader.load_relations(
            self.entity_spec.name, converted, include, conn
        )
        for row in loaded:
            base = {k: v for k, v in row.items() if k in self._field_types}
            row.update(self.model_class(**base).model_dump())
        return loaded

    def _stamp(self, data: dict[str, Any], creating: bool) -> dict[str, Any]:
        now = utcnow()
        stamped = dict(data)
        for field in self.entity_spec.fields:
            if field.auto_now or (creating and field.auto_now_add):
                if not creating or stamped.get(field.name) is None:
                    stamped[field.name] = now
        return stamped

    async def create(self, data: dict[str, Any]) -> T:
        """
        Insert a row.

        Args:
            data: Column values (including the id)

        Returns:
            The stored entity, read back so column defaults are applied
        """
        row = self._to_row(self._stamp(data, creating=True))
        columns = ", ".join(quote_identifier(c) for c in row)
        placeholders = ", ".join("?" * len(row))
        sql = f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})"

        with self.db.connection() as conn:
            conn.execute(sql, list(row.values()))
            stored = conn.execute(
                f"SELECT * FROM {self.table} WHERE {quote_identifier(self.pk)} = ?",
                (row[self.pk],),
            ).fetchone()

        return self._build_item(dict(stored))

    async def read(self, id: Any, include: list[str] | None = None) -> T | dict[str, Any] | None:
        """
        Read an entity by id.

        Returns:
            Entity (or dict with nested data if include is given), or None
        """
        if include:
            self._relation_loader.check_include(self.entity_spec.name, include)

        sql = f"SELECT * FROM {self.table} WHERE {quote_identifier(self.pk)} = ?"
        with self.db.connection() as conn:
            row = conn.execute(sql, (to_db(id),)).fetchone()
            if row is None:
                return None
            if include:
                return self._with_relations(conn, [row], include)[0]

        return self._build_item(dict(row))

    async def update(self, id: Any, data: dict[str, Any]) -> T | None:
        """
        Partially update an entity.

        Keys present in ``data`` are written, including explicit None (which
        clears the column). ``auto_now`` fields are refreshed.

        Returns:
            Updated entity or None if not found
        """
        changes = {k: v for k, v in data.items() if k != self.pk}
        changes = self._stamp(changes, creating=False)
        row = self._to_row(changes)

        if not row:
            result = await self.read(id)
            return result  # type: ignore[return-value]

        set_clause = ", ".join(f"{quote_identifier(k)} = ?" for k in row)
        sql = f"UPDATE {self.table} SET {set_clause} WHERE {quote_identifier(self.pk)} = ?"

        with self.db.connection() as conn:
            cursor = conn.execute(sql, [*row.values(), to_db(id)])
            if cursor.rowcount == 0:
                return None

        return await self.read(id)  # type: ignore[return-value]

    async def delete(self, id: Any) -> bool:
        """Delete by id; False if no such row."""
        sql = f"DELETE FROM {self.table} WHERE {quote_identifier(self.pk)} = ?"
        with self.db.connection() as conn:
            cursor = conn.execute(sql, (to_db(id),))
            return cursor.rowcount > 0

    async def exists(self, id: Any) -> bool:
        sql = f"SELECT 1 FROM {self.table} WHERE {quote_identifier(self.pk)} = ? LIMIT 1"
        with self.db.connection() as conn:
            return conn.execute(sql, (to_db(id),)).fetchone() is not None

    async def list(
        self,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        filters: dict[str, Any] | None = None,
        sort: str | list[str] | None = None,
        include: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        List entities with pagination, filtering, sorting, and relation loading.

        Args:
            page: Page number (1-indexed)
            page_size: Items per page (clamped to 1..1000)
            filters: ``field__op`` filters, e.g.
                - {"done": False}
                - {"priority__gte": 5}
                - {"text__icontains": "milk"}
                - {"status__in": ["todo", "doing"]}
            sort: Sort key(s), "-" prefix for descending
            include: Relation names to nest in each item

        Returns:
            {"items": [...], "total": int, "page": int, "page_size": int}

        Raises:
            QueryError: On unknown filter, sort, or relation names
        """
        builder = QueryBuilder(
            table_name=self.entity_spec.table,
            field_types=self._field_types,
        )
        builder.set_pagination(page, page_size)
        if filters:
            builder.add_filters(filters)
        if sort:
            builder.add_sorts(sort)
        if include:
            self._relation_loader.check_include(self.entity_spec.name, include)

        count_sql, count_params = builder.build_count()
        items_sql, items_params = builder.build_select()

        with self.db.connection() as conn:
            total = conn.execute(count_sql, count_params).fetchone()[0]
            rows = conn.execute(items_sql, items_params).fetchall()
            items: list[Any]
            if include:
                items = self._with_relations(conn, rows, include)
            else:
                items = [self._build_item(dict(r)) for r in rows]

        return {
            "items": items,
            "total": total,
            "page": builder.page,
            "page_size": builder.page_size,
        }


# =============================================================================
# Repository Factory
# =============================================================================


class RepositoryFactory:
    """Creates one repository per entity, sharing a relation loader."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        models: dict[str, type[BaseModel]],
        entities: list[EntitySpec],
    ):
        self.db = db_manager
        self.models = models
        self._relation_loader = RelationLoader(entities)
        self._repositories: dict[str, SQLiteRepository[Any]] = {}

    def create_repository(self, entity: EntitySpec) -> SQLiteRepository[Any]:
        model = self.models.get(entity.name)
        if not model:
            raise ValueError(f"No model found for entity: {entity.name}")

        repo: SQLiteRepository[Any] = SQLiteRepository(
            db_manager=self.db,
            entity_spec=entity,
            model_class=model,
            relation_loader=self._relation_loader,
        )
        self._repositories[entity.name] = repo
        return repo

    def create_all_repositories(
        self, entities: list[EntitySpec]
    ) -> dict[str, SQLiteRepository[Any]]:
        for entity in entities:
            self.create_repository(entity)
        return self._repositories
