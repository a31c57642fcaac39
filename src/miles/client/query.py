"""
Chainable, immutable queries over a model's REST resource.

Example:
    q = Query(Todo, client).where(done=False).order_by("-created_at").page(1, 50)
    page = q.all()
    for todo in page:
        print(todo.text)
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

from miles.client.http import MilesClient, encode_param
from miles.core.errors import ApiError, MilesError, QueryError
from miles.models.model import Model
from miles.runtime.query_builder import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    FilterCondition,
    FilterOperator,
)

M = TypeVar("M", bound=Model)


@dataclass(frozen=True)
class Page(Generic[M]):
    """One page of query results."""

    items: tuple[M, ...]
    total: int
    page: int
    page_size: int

    def __iter__(self) -> Iterator[M]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.page_size))


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple, set)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    if isinstance(value, Model):
        return value.pk
    return value


@dataclass(frozen=True)
class Query(Generic[M]):
    """
    An immutable description of a list request.

    Every builder method returns a new Query. Field names are checked
    against the model before any request is sent.
    """

    model_cls: type[M]
    client: MilesClient | None = field(default=None, compare=False)
    filters: tuple[tuple[str, Any], ...] = ()
    sort: tuple[str, ...] = ()
    page_number: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    relations: tuple[str, ...] = ()

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def _column(self, name: str, usage: str) -> str:
        fields = self.model_cls.fields()
        if name in fields:
            return fields[name].column
        if name in self.model_cls.columns():
            return name
        raise QueryError(f"Cannot {usage} {self.model_cls.__name__} by unknown field '{name}'")

    def where(self, **filters: Any) -> Query[M]:
        """
        Add ``field`` / ``field__op`` filters.

        Model instances are accepted as values and stand for their id.
        ``None`` with an equality operator becomes an ``isnull`` filter.
        """
        added = []
        for key, value in filters.items():
            condition = FilterCondition.parse(key, value)
            column = self._column(condition.field, "filter")
            if value is None and condition.operator in (FilterOperator.EQ, FilterOperator.NE):
                added.append((f"{column}__isnull", condition.operator == FilterOperator.EQ))
                continue
            if "__" in key:
                column = f"{column}__{condition.operator.value}"
            added.append((column, _freeze(value)))
        return replace(self, filters=self.filters + tuple(added))

    def order_by(self, *fields: str) -> Query[M]:
        """Sort by fields; prefix with '-' for descending."""
        keys = []
        for key in fields:
            descending = key.startswith("-")
            column = self._column(key.lstrip("-"), "sort")
            keys.append(f"-{column}" if descending else column)
        return replace(self, sort=self.sort + tuple(keys))

    def page(self, number: int, size: int | None = None) -> Query[M]:
        """Select a page (1-indexed); sizes are clamped to 1..1000 like the server does."""
        size = self.page_size if size is None else size
        return replace(
            self,
            page_number=max(1, number),
            page_size=max(1, min(size, MAX_PAGE_SIZE)),
        )

    def include(self, *relations: str) -> Query[M]:
        known = self.model_cls.relation_names()
        for name in relations:
            if name not in known:
                raise QueryError(
                    f"Unknown relation '{name}' on {self.model_cls.__name__} "
                    f"(available: {', '.join(sorted(known)) or 'none'})"
                )
        return replace(self, relations=self.relations + tuple(relations))

    def using(self, client: MilesClient) -> Query[M]:
        return replace(self, client=client)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def key(self) -> tuple[Any, ...]:
        """Hashable cache key; equal queries have equal keys."""
        return (
            self.model_cls.__name__,
            tuple(sorted(self.filters, key=lambda item: item[0])),
            self.sort,
            self.page_number,
            self.page_size,
            self.relations,
        )

    @property
    def is_filtered(self) -> bool:
        return bool(self.filters)

    def params(self) -> dict[str, str]:
        """Query-string parameters for the list endpoint."""
        params = {"page": str(self.page_number), "page_size": str(self.page_size)}
        if self.sort:
            params["sort"] = ",".join(self.sort)
        if self.relations:
            params["include"] = ",".join(self.relations)
        for key, value in self.filters:
            params[key] = encode_param(value)
        return params

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _client(self) -> MilesClient:
        if self.client is None:
            raise MilesError(f"Query for {self.model_cls.__name__} has no client")
        return self.client

    def all(self) -> Page[M]:
        """Fetch the selected page."""
        body = self._client().list(self.model_cls.resource(), self.params())
        items = tuple(self.model_cls.from_dict(row) for row in body["items"])
        return Page(
            items=items,  # type: ignore[arg-type]
            total=body["total"],
            page=body["page"],
            page_size=body["page_size"],
        )

    def first(self) -> M | None:
        page = replace(self, page_number=1, page_size=1).all()
        return page.items[0] if page.items else None

    def count(self) -> int:
        return replace(self, page_number=1, page_size=1).all().total

    def get(self, id: Any) -> M | None:
        """Fetch one instance by id (with this query's includes); None on 404."""
        try:
            row = self._client().get(self.model_cls.resource(), id, list(self.relations) or None)
        except ApiError as e:
            if e.status == 404:
                return None
            raise
        return self.model_cls.from_dict(row)  # type: ignore[return-value]
