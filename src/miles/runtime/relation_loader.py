"""
Relation loader for include=... on read and list.

Loads related rows in one batched IN query per relation, so a page of
results never costs one query per row.
"""

from __future__ import annotations

import sqlite3
from typing import Any

from miles.core.errors import QueryError
from miles.runtime.schema import from_db, quote_identifier
from miles.specs import EntitySpec, RelationSpec


def convert_row(entity: EntitySpec, row: dict[str, Any]) -> dict[str, Any]:
    """Convert a stored row to Python values using the entity's field types."""
    types = {f.name: f.type for f in entity.fields}
    return {k: from_db(v, types.get(k)) for k, v in row.items()}


class RelationLoader:
    """
    Loads related entities for nested data fetching.

    To-one relations nest an object (or None); to-many relations nest a list.
    """

    def __init__(self, entities: list[EntitySpec]):
        self.entity_map = {e.name: e for e in entities}

    def get_relation(self, entity_name: str, relation_name: str) -> RelationSpec | None:
        entity = self.entity_map.get(entity_name)
        return entity.get_relation(relation_name) if entity else None

    def check_include(self, entity_name: str, include: list[str]) -> None:
        """
        Raises:
            QueryError: If a name is not a relation of the entity
        """
        for name in include:
            if self.get_relation(entity_name, name) is None:
                raise QueryError(f"Unknown relation '{name}' on {entity_name}")

    def load_relations(
        self,
        entity_name: str,
        rows: list[dict[str, Any]],
        include: list[str],
        conn: sqlite3.Connection,
    ) -> list[dict[str, Any]]:
        """
        Attach relation data to rows.

        Args:
            entity_name: Name of the entity the rows belong to
            rows: Converted entity rows
            include: Relation names to load
            conn: Open SQLite connection

        Returns:
            Rows with nested relation data
        """
        self.check_include(entity_name, include)
        if not include or not rows:
            return rows

        result = [dict(row) for row in rows]
        entity = self.entity_map[entity_name]
        for relation_name in include:
            relation = entity.get_relation(relation_name)
            assert relation is not None
            if relation.is_to_one:
                self._load_to_one(relation, result, conn)
            else:
                self._load_to_many(entity, relation, result, conn)
        return result

    def _load_to_one(
        self,
        relation: RelationSpec,
        rows: list[dict[str, Any]],
        conn: sqlite3.Connection,
    ) -> None:
        target = self.entity_map[relation.to_entity]
        fk_field = relation.foreign_key
        fk_values = sorted({str(row[fk_field]) for row in rows if row.get(fk_field)})

        related_map: dict[str, dict[str, Any]] = {}
        if fk_values:
            pk = target.primary_key.name
            placeholders = ", ".join("?" * len(fk_values))
            sql = (
                f"SELECT * FROM {quote_identifier(target.table)} "
                f"WHERE {quote_identifier(pk)} IN ({placeholders})"
            )
            for r in conn.execute(sql, fk_values).fetchall():
                related = convert_row(target, dict(r))
                related_map[str(related[pk])] = related

        for row in rows:
            fk_value = row.get(fk_field)
            row[relation.name] = related_map.get(str(fk_value)) if fk_value else None

    def _load_to_many(
        self,
        entity: EntitySpec,
        relation: RelationSpec,
        rows: list[dict[str, Any]],
        conn: sqlite3.Connection,
    ) -> None:
        target = self.entity_map[relation.to_entity]
        pk = entity.primary_key.name
        ids = sorted({str(row[pk]) for row in rows if row.get(pk)})

        grouped: dict[str, list[dict[str, Any]]] = {}
        if ids:
            fk_field = relation.foreign_key
            placeholders = ", ".join("?" * len(ids))
            sql = (
                f"SELECT * FROM {quote_identifier(target.table)} "
                f"WHERE {quote_identifier(fk_field)} IN ({placeholders}) ORDER BY rowid"
            )
            for r in conn.execute(sql, ids).fetchall():
                related = convert_row(target, dict(r))
                grouped.setdefault(str(related[fk_field]), []).append(related)

        for row in rows:
            row[relation.name] = grouped.get(str(row.get(pk)), [])
