"""
CRUD services sitting between the routes and the repositories.

Services apply the Model's factory defaults, generate ids, and decide
partial (PATCH) versus full (PUT) update semantics.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel

from miles.core.errors import QueryError, ValidationError
from miles.models.fields import utcnow
from miles.runtime.query_builder import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    FilterCondition,
    FilterOperator,
)
from miles.specs import EntitySpec

if TYPE_CHECKING:
    from miles.runtime.repository import SQLiteRepository

T = TypeVar("T", bound=BaseModel)


# =============================================================================
# Base Service Classes
# =============================================================================


class BaseService(ABC, Generic[T]):
    """Interface for all services."""

    @abstractmethod
    async def execute(self, operation: str, **kwargs: Any) -> Any:
        """Execute a service operation."""
        ...


class CRUDService(BaseService[T]):
    """
    Generic CRUD service.

    Persists through a SQLiteRepository when one is given, otherwise keeps
    rows in an in-memory dict (for tests without a database).
    """

    def __init__(
        self,
        entity: EntitySpec,
        model_class: type[T],
        create_schema: type[BaseModel],
        update_schema: type[BaseModel],
        repository: SQLiteRepository[T] | None = None,
        default_factories: dict[str, Callable[[], Any]] | None = None,
    ):
        self.entity = entity
        self.entity_name = entity.name
        self.model_class = model_class
        self.create_schema = create_schema
        self.update_schema = update_schema
        self.default_factories = default_factories or {}
        self.pk = entity.primary_key.name
        self._repository = repository
        self._store: dict[str, dict[str, Any]] = {}

    async def execute(self, operation: str, **kwargs: Any) -> Any:
        """Route to the named operation."""
        operations = {
            "create": self.create,
            "read": self.read,
            "update": self.update,
            "replace": self.replace,
            "delete": self.delete,
            "list": self.list,
        }
        if operation not in operations:
            raise ValueError(f"Unknown operation: {operation}")
        return await operations[operation](**kwargs)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _apply_factories(self, values: dict[str, Any]) -> dict[str, Any]:
        for name, factory in self.default_factories.items():
            if values.get(name) is None:
                values[name] = factory()
        return values

    def _check_required(self, changes: dict[str, Any]) -> None:
        errors = [
            {"field": name, "message": "Field is required and cannot be null"}
            for name, value in changes.items()
            if value is None and (field := self.entity.get_field(name)) and field.required
        ]
        if errors:
            fields = ", ".join(e["field"] for e in errors)
            raise ValidationError(f"Invalid {self.entity_name}: {fields}", errors)

    @staticmethod
    def _dump(data: BaseModel | dict[str, Any], exclude_unset: bool = False) -> dict[str, Any]:
        if isinstance(data, BaseModel):
            return data.model_dump(exclude_unset=exclude_unset)
        return dict(data)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create(self, data: BaseModel | dict[str, Any]) -> T:
        """Create an entity with a fresh id and factory defaults applied."""
        values = self._apply_factories(self._dump(data))
        values[self.pk] = uuid4()
        self._check_required(values)

        if self._repository:
            return await self._repository.create(values)

        now = utcnow()
        for field in self.entity.fields:
            if field.auto_now or field.auto_now_add:
                values[field.name] = now
        entity = self.model_class(**values)
        self._store[str(values[self.pk])] = entity.model_dump()
        return entity

    async def read(self, id: Any, include: list[str] | None = None) -> Any:
        """Entity by id, or None."""
        if self._repository:
            return await self._repository.read(id, include=include)
        row = self._store.get(str(id))
        return self.model_class(**row) if row else None

    async def update(self, id: Any, data: BaseModel | dict[str, Any]) -> T | None:
        """Partial update: only the fields that were sent change; explicit null clears."""
        changes = self._dump(data, exclude_unset=True)
        self._check_required(changes)
        return await self._write(id, changes)

    async def replace(self, id: Any, data: BaseModel | dict[str, Any]) -> T | None:
        """Full update from a create payload: omitted optional fields are reset."""
        values = self._apply_factories(self._dump(data))
        self._check_required(values)
        return await self._write(id, values)

    async def _write(self, id: Any, changes: dict[str, Any]) -> T | None:
        changes.pop(self.pk, None)
        if self._repository:
            return await self._repository.update(id, changes)

        existing = self._store.get(str(id))
        if existing is None:
            return None
        now = utcnow()
        for field in self.entity.fields:
            if field.auto_now:
                changes[field.name] = now
        updated = self.model_class(**{**existing, **changes})
        self._store[str(id)] = updated.model_dump()
        return updated

    async def delete(self, id: Any) -> bool:
        if self._repository:
            return await self._repository.delete(id)
        return self._store.pop(str(id), None) is not None

    async def list(
        self,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        filters: dict[str, Any] | None = None,
        sort: str | list[str] | None = None,
        include: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        List entities with pagination and filtering.

        Returns:
            Dictionary with items, total, page, and page_size
        """
        if self._repository:
            return await self._repository.list(
                page=page, page_size=page_size, filters=filters, sort=sort, include=include
            )

        # in-memory store: equality filters and plain sorts only
        page = max(1, page)
        page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        rows = list(self._store.values())
        if filters:
            rows = self._apply_filters(rows, filters)
        if sort:
            keys = [sort] if isinstance(sort, str) else list(sort)
            for key in reversed(keys):
                name = key.lstrip("-")
                rows.sort(
                    key=lambda r, n=name: (r.get(n) is None, r.get(n)),
                    reverse=key.startswith("-"),
                )

        start = (page - 1) * page_size
        return {
            "items": [self.model_class(**r) for r in rows[start : start + page_size]],
            "total": len(rows),
            "page": page,
            "page_size": page_size,
        }

    def _apply_filters(
        self, rows: list[dict[str, Any]], filters: dict[str, Any]
    ) -> list[dict[str, Any]]:
        conditions = []
        for key, value in filters.items():
            condition = FilterCondition.parse(key, value)
            if condition.operator != FilterOperator.EQ:
                raise QueryError(
                    f"In-memory store only supports equality filters: {condition.field}"
                )
            field = self.entity.get_field(condition.field)
            if field is None:
                raise QueryError(f"Cannot filter by unknown field '{condition.field}'")
            conditions.append(condition.coerce(field.type))
        return [
            row for row in rows if all(row.get(c.field) == c.value for c in conditions)
        ]
