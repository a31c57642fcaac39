"""
Client-side store: cached query results with optimistic mutations.

The Store keeps one QueryState per distinct Query. Mutations are applied
to every cached page of the model first, then sent to the server; a
failed request restores each touched entry to the exact state it had
before the mutation and re-raises the error. A successful one swaps the
server's version in and marks the model's entries stale.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from miles.client.http import MilesClient
from miles.client.query import Page, Query
from miles.core.errors import ValidationError
from miles.core.logging import get_client_logger, log_with_context
from miles.models.model import Model

logger = get_client_logger()

Listener = Callable[[str, str], None]


class QueryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryState:
    """
    Result of fetching a query: the loading/error/data contract that the
    generated React Query components also expose.

    A stale state still holds usable data; fetch() reloads it.
    """

    status: QueryStatus = QueryStatus.IDLE
    data: Page[Any] | None = None
    error: Exception | None = None
    # settled by a mutation; served from cache until the next fetch reloads it
    stale: bool = False

    @property
    def loading(self) -> bool:
        return self.status == QueryStatus.LOADING

    @property
    def ok(self) -> bool:
        return self.status == QueryStatus.SUCCESS


class Store:
    """
    Cache of model instances fetched through queries.

    Example:
        store = Store(MilesClient("http://localhost:8000"))
        state = store.fetch(store.query(Todo).where(done=False))
        todo = store.create(Todo(text="milk"))
    """

    def __init__(self, client: MilesClient):
        self.client = client
        self._entries: dict[tuple[Any, ...], tuple[Query[Any], QueryState]] = {}
        self._listeners: list[Listener] = []

    def query(self, model_cls: type[Model]) -> Query[Any]:
        return Query(model_cls, self.client)

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def state(self, query: Query[Any]) -> QueryState:
        """Cached state for a query (idle if never fetched)."""
        entry = self._entries.get(query.key)
        return entry[1] if entry else QueryState()

    def fetch(self, query: Query[Any], refresh: bool = False) -> QueryState:
        """
        Fetch a query, answering from the cache when possible.

        Stale entries are reloaded. A failed fetch leaves the cache as it
        was and returns an error state.

        Args:
            query: Query to run
            refresh: Bypass the cache
        """
        key = query.key
        entry = self._entries.get(key)
        if entry and entry[1].ok and not entry[1].stale and not refresh:
            return entry[1]

        previous = entry[1].data if entry else None
        self._entries[key] = (query, QueryState(QueryStatus.LOADING, previous))
        try:
            page = query.using(self.client).all()
        except Exception as e:
            state = QueryState(QueryStatus.ERROR, error=e)
            if entry:
                self._entries[key] = entry
            else:
                self._entries.pop(key, None)
            log_with_context(
                logger,
                logging.WARNING,
                f"Query for {query.model_cls.__name__} failed",
                error=str(e),
            )
            self._notify(query.model_cls.__name__, "error")
            return state

        state = QueryState(QueryStatus.SUCCESS, data=page)
        self._entries[key] = (query, state)
        self._notify(query.model_cls.__name__, "fetch")
        return state

    def invalidate(self, model_cls: type[Model] | None = None) -> int:
        """
        Drop cached queries of a model (all models when None).

        Returns:
            Number of entries dropped
        """
        keys = [
            key
            for key, (query, _) in self._entries.items()
            if model_cls is None or query.model_cls is model_cls
        ]
        for key in keys:
            del self._entries[key]
        if keys:
            self._notify(model_cls.__name__ if model_cls else "*", "invalidate")
        return len(keys)

    def mark_stale(self, model_cls: type[Model] | None = None) -> int:
        """
        Flag cached queries of a model as stale, keeping their data.

        Returns:
            Number of entries flagged
        """
        keys = [
            key
            for key, (query, state) in self._entries.items()
            if (model_cls is None or query.model_cls is model_cls) and not state.stale
        ]
        for key in keys:
            query, state = self._entries[key]
            self._entries[key] = (query, replace(state, stale=True))
        if keys:
            self._notify(model_cls.__name__ if model_cls else "*", "invalidate")
        return len(keys)

    def cached_queries(self, model_cls: type[Model] | None = None) -> list[Query[Any]]:
        return [
            query
            for query, _ in self._entries.values()
            if model_cls is None or query.model_cls is model_cls
        ]

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """
        Register a listener called with (model_name, action).

        Returns:
            A function that removes the listener
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, model_name: str, action: str) -> None:
        for listener in list(self._listeners):
            listener(model_name, action)

    # -------------------------------------------------------------------------
    # Optimistic mutations
    # -------------------------------------------------------------------------

    def _patch_pages(
        self,
        model_cls: type[Model],
        change: Callable[[Query[Any], Page[Any]], Page[Any] | None],
    ) -> dict[tuple[Any, ...], tuple[Query[Any], QueryState]]:
        """
        Apply change to every successful cached page of model_cls.

        Returns:
            Snapshot of the touched entries, for rollback
        """
        snapshot = {}
        for key, (query, state) in list(self._entries.items()):
            if query.model_cls is not model_cls or not state.ok or state.data is None:
                continue
            new_page = change(query, state.data)
            if new_page is None:
                continue
            snapshot[key] = (query, state)
            self._entries[key] = (query, replace(state, data=new_page))
        return snapshot

    def _rollback(
        self,
        model_cls: type[Model],
        snapshot: dict[tuple[Any, ...], tuple[Query[Any], QueryState]],
        error: Exception,
    ) -> None:
        self._entries.update(snapshot)
        log_with_context(
            logger,
            logging.WARNING,
            f"Rolled back optimistic change to {model_cls.__name__}",
            entries=len(snapshot),
            error=str(error),
        )
        self._notify(model_cls.__name__, "rollback")

    def _settle(self, model_cls: type[Model], pk: Any, server_item: Model) -> None:
        """Swap the server's version in for the optimistic one and mark lists stale."""

        def swap(query: Query[Any], page: Page[Any]) -> Page[Any] | None:
            if not any(item.pk == pk for item in page.items):
                return None
            items = tuple(server_item if item.pk == pk else item for item in page.items)
            return replace(page, items=items)

        self._patch_pages(model_cls, swap)
        self.mark_stale(model_cls)

    @staticmethod
    def _payload(instance: Model, columns: set[str] | None = None) -> dict[str, Any]:
        auto = {f.name for f in instance.entity_spec().fields if f.is_auto}
        data = instance.to_dict()
        return {
            k: v
            for k, v in data.items()
            if k not in auto and (columns is None or k in columns)
        }

    def create(self, instance: Model) -> Model:
        """
        Create optimistically.

        The instance is appended to cached pages whose query has no filter,
        then POSTed. Returns the server's version.
        """
        model_cls = type(instance)

        def add(query: Query[Any], page: Page[Any]) -> Page[Any] | None:
            if query.is_filtered:
                return None
            return replace(page, items=page.items + (instance,), total=page.total + 1)

        snapshot = self._patch_pages(model_cls, add)
        self._notify(model_cls.__name__, "create")
        try:
            row = self.client.create(model_cls.resource(), self._payload(instance))
        except Exception as e:
            self._rollback(model_cls, snapshot, e)
            raise

        server_item = model_cls.from_dict(row)
        self._settle(model_cls, instance.pk, server_item)
        return server_item

    def update(self, instance: Model, **changes: Any) -> Model:
        """
        Update optimistically (PATCH with only the changed fields).

        Cached copies with the same id are replaced in place; the passed
        instance itself is not modified.
        """
        model_cls = type(instance)
        updated = instance.copy()
        fields = model_cls.fields()
        known = set(fields) | set(model_cls.columns())
        unknown = [name for name in changes if name not in known]
        if unknown:
            raise ValidationError(
                f"Unknown field(s) for {model_cls.__name__}: {', '.join(unknown)}",
                [{"field": name, "message": "unknown field"} for name in unknown],
            )
        columns = set()
        for name, value in changes.items():
            setattr(updated, name, value)
            columns.add(fields[name].column if name in fields else name)
        updated.validate()

        def swap(query: Query[Any], page: Page[Any]) -> Page[Any] | None:
            if not any(item.pk == instance.pk for item in page.items):
                return None
            items = tuple(updated if item.pk == instance.pk else item for item in page.items)
            return replace(page, items=items)

        snapshot = self._patch_pages(model_cls, swap)
        self._notify(model_cls.__name__, "update")
        try:
            row = self.client.update(
                model_cls.resource(), instance.pk, self._payload(updated, columns)
            )
        except Exception as e:
            self._rollback(model_cls, snapshot, e)
            raise

        server_item = model_cls.from_dict(row)
        self._settle(model_cls, instance.pk, server_item)
        return server_item

    def delete(self, instance: Model) -> None:
        """Delete optimistically: the id disappears from cached pages first."""
        model_cls = type(instance)

        def remove(query: Query[Any], page: Page[Any]) -> Page[Any] | None:
            if not any(item.pk == instance.pk for item in page.items):
                return None
            items = tuple(item for item in page.items if item.pk != instance.pk)
            return replace(page, items=items, total=max(0, page.total - 1))

        snapshot = self._patch_pages(model_cls, remove)
        self._notify(model_cls.__name__, "delete")
        try:
            self.client.delete(model_cls.resource(), instance.pk)
        except Exception as e:
            self._rollback(model_cls, snapshot, e)
            raise

        self.mark_stale(model_cls)
