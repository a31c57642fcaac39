"""
Schema derivation - turns EntitySpecs into SQLite DDL.

Covers the type mapping, column clauses, CREATE TABLE with foreign keys,
indexes, a dependency-ordered script for a whole AppSpec, and the value
conversion between Python and SQLite storage.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from miles.specs import AppSpec, EntitySpec, FieldSpec, FieldType, OnDeleteAction, ScalarType

# =============================================================================
# Identifiers
# =============================================================================

_VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_sql_identifier(name: str, context: str = "identifier") -> str:
    """
    Validate that a string is a safe SQL identifier.

    Raises:
        ValueError: If the name contains invalid characters
    """
    if not name:
        raise ValueError(f"SQL {context} cannot be empty")
    if not _VALID_IDENTIFIER_PATTERN.match(name):
        raise ValueError(
            f"Invalid SQL {context} '{name}': must contain only letters, digits, "
            "and underscores, and cannot start with a digit"
        )
    return name


def quote_identifier(name: str) -> str:
    """Validate and double-quote an identifier (model names like Order are keywords)."""
    return f'"{validate_sql_identifier(name)}"'


# =============================================================================
# SQLite Type Mapping
# =============================================================================

_SCALAR_SQLITE: dict[ScalarType, str] = {
    ScalarType.STR: "TEXT",
    ScalarType.TEXT: "TEXT",
    ScalarType.INT: "INTEGER",
    ScalarType.FLOAT: "REAL",
    ScalarType.DECIMAL: "REAL",
    ScalarType.BOOL: "INTEGER",
    ScalarType.DATE: "TEXT",
    ScalarType.DATETIME: "TEXT",
    ScalarType.UUID: "TEXT",
    ScalarType.EMAIL: "TEXT",
    ScalarType.JSON: "TEXT",
}


def sqlite_type(field_type: FieldType) -> str:
    """Column type for a field type; enums and refs are TEXT."""
    if field_type.kind == "scalar" and field_type.scalar_type:
        return _SCALAR_SQLITE.get(field_type.scalar_type, "TEXT")
    return "TEXT"


# =============================================================================
# Value Conversion
# =============================================================================


def to_db(value: Any, field_type: FieldType | None = None) -> Any:
    """Convert a Python value to its SQLite storage form."""
    if value is None:
        return None
    if field_type is not None and field_type.scalar_type == ScalarType.JSON:
        return json.dumps(value, default=str)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def from_db(value: Any, field_type: FieldType | None = None) -> Any:
    """Convert a stored SQLite value back to the Python type of its field."""
    if value is None or field_type is None:
        return value

    if field_type.kind == "ref":
        return UUID(value) if value else None
    if field_type.kind != "scalar" or field_type.scalar_type is None:
        return value

    scalar = field_type.scalar_type
    if scalar == ScalarType.UUID:
        return UUID(value) if value else None
    if scalar == ScalarType.DATETIME:
        return datetime.fromisoformat(value) if value else None
    if scalar == ScalarType.DATE:
        return date.fromisoformat(value) if value else None
    if scalar == ScalarType.DECIMAL:
        return Decimal(str(value))
    if scalar == ScalarType.FLOAT:
        return float(value)
    if scalar == ScalarType.BOOL:
        return bool(value)
    if scalar == ScalarType.JSON:
        return json.loads(value) if value else None
    return value


def sql_literal(value: Any, field_type: FieldType | None = None) -> str:
    """Render a literal default for DDL, doubling single quotes in strings."""
    stored = to_db(value, field_type)
    if stored is None:
        return "NULL"
    if isinstance(stored, (int, float)):
        return repr(stored)
    text = str(stored).replace("'", "''")
    return f"'{text}'"


# =============================================================================
# DDL
# =============================================================================

_ON_DELETE_SQL: dict[OnDeleteAction, str] = {
    OnDeleteAction.RESTRICT: "RESTRICT",
    OnDeleteAction.CASCADE: "CASCADE",
    OnDeleteAction.SET_NULL: "SET NULL",
}


def column_definition(field: FieldSpec, nullable: bool = False) -> str:
    """
    Build a single column clause.

    Args:
        field: Field specification
        nullable: Drop NOT NULL even for required fields (used when adding
            a reference column to an existing table)
    """
    parts = [quote_identifier(field.name), sqlite_type(field.type)]

    if field.primary_key:
        parts.append("PRIMARY KEY")
    elif field.required and not nullable:
        parts.append("NOT NULL")

    if field.unique and not field.primary_key:
        parts.append("UNIQUE")

    if field.default is not None:
        parts.append(f"DEFAULT {sql_literal(field.default, field.type)}")

    if field.type.kind == "enum" and field.type.enum_values:
        choices = ", ".join(sql_literal(v) for v in field.type.enum_values)
        parts.append(f"CHECK ({quote_identifier(field.name)} IN ({choices}))")

    return " ".join(parts)


def _ref_target(field: FieldSpec, app_spec: AppSpec | None) -> tuple[str, str]:
    """Table and primary key column referenced by a ref field."""
    target_name = field.type.ref_entity or ""
    if app_spec is not None:
        target = app_spec.get_entity(target_name)
        if target is not None:
            return target.table, target.primary_key.name
    return target_name, "id"


def _on_delete_for(entity: EntitySpec, field: FieldSpec) -> OnDeleteAction:
    for relation in entity.relations:
        if relation.is_to_one and relation.foreign_key == field.name:
            return relation.on_delete
    return OnDeleteAction.RESTRICT


def foreign_key_clause(
    entity: EntitySpec, field: FieldSpec, app_spec: AppSpec | None = None
) -> str:
    """References clause (without the leading FOREIGN KEY (...))."""
    table, pk = _ref_target(field, app_spec)
    on_delete = _ON_DELETE_SQL[_on_delete_for(entity, field)]
    return f"REFERENCES {quote_identifier(table)}({quote_identifier(pk)}) ON DELETE {on_delete}"


def create_table_sql(entity: EntitySpec, app_spec: AppSpec | None = None) -> str:
    """
    Build CREATE TABLE for an entity, with FOREIGN KEY constraints for ref fields.

    Args:
        entity: Entity specification
        app_spec: Used to resolve referenced tables; without it a ref to
            ``User`` is assumed to point at table ``User`` column ``id``
    """
    clauses = [column_definition(f) for f in entity.fields]
    for field in entity.ref_fields:
        clauses.append(
            f"FOREIGN KEY ({quote_identifier(field.name)}) "
            f"{foreign_key_clause(entity, field, app_spec)}"
        )
    body = ",\n    ".join(clauses)
    return f"CREATE TABLE IF NOT EXISTS {quote_identifier(entity.table)} (\n    {body}\n)"


def index_name(table: str, column: str) -> str:
    return f"idx_{table}_{column}"


def indexed_columns(entity: EntitySpec) -> list[str]:
    """Columns that get an index: declared indexes plus every foreign key."""
    columns: list[str] = []
    for field in entity.fields:
        if field.primary_key or field.unique:
            continue
        if (field.indexed or field.type.kind == "ref") and field.name not in columns:
            columns.append(field.name)
    return columns


def create_index_sql(table: str, column: str) -> str:
    return (
        f"CREATE INDEX IF NOT EXISTS {quote_identifier(index_name(table, column))} "
        f"ON {quote_identifier(table)}({quote_identifier(column)})"
    )


def index_sql(entity: EntitySpec) -> list[str]:
    """CREATE INDEX statements for an entity."""
    return [create_index_sql(entity.table, column) for column in indexed_columns(entity)]


def ordered_entities(entities: list[EntitySpec]) -> list[EntitySpec]:
    """
    Order entities so referenced tables come before referencing ones.

    Ties keep the given order; self references are ignored and cycles fall
    back to the given order for the remaining entities.
    """
    names = {e.name for e in entities}
    deps = {
        e.name: {
            f.type.ref_entity
            for f in e.ref_fields
            if f.type.ref_entity in names and f.type.ref_entity != e.name
        }
        for e in entities
    }

    ordered: list[EntitySpec] = []
    placed: set[str] = set()
    remaining = list(entities)
    while remaining:
        ready = next((e for e in remaining if deps[e.name] <= placed), None)
        if ready is None:
            ready = remaining[0]
        ordered.append(ready)
        placed.add(ready.name)
        remaining.remove(ready)
    return ordered


def render_schema(app_spec: AppSpec) -> str:
    """Full DDL script for an application, in dependency order."""
    statements: list[str] = []
    for entity in ordered_entities(list(app_spec.entities)):
        statements.append(create_table_sql(entity, app_spec))
        statements.extend(index_sql(entity))
    return "".join(f"{stmt};\n" for stmt in statements)
