"""
Auto-migration for Miles.

Compares EntitySpecs with the live SQLite schema and plans the steps
that bring the database in line.

Applied automatically:
- Create tables (referenced tables first)
- Add columns (required columns get a type default)
- Add indexes

Detected but only applied on request:
- Drop columns (data loss; ``allow_destructive=True``)

Detected, never applied:
- Column type changes
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from miles.core.errors import MigrationError
from miles.core.logging import get_db_logger, log_with_context
from miles.runtime.repository import DatabaseManager
from miles.runtime.schema import (
    column_definition,
    create_index_sql,
    create_table_sql,
    foreign_key_clause,
    index_name,
    index_sql,
    indexed_columns,
    ordered_entities,
    quote_identifier,
    sqlite_type,
)
from miles.specs import AppSpec, EntitySpec, FieldSpec, ScalarType

logger = get_db_logger()

# =============================================================================
# Migration Types
# =============================================================================


class MigrationAction(str, Enum):
    """Types of migration actions."""

    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    ADD_INDEX = "add_index"
    DROP_COLUMN = "drop_column"
    CHANGE_TYPE = "change_type"


@dataclass
class MigrationStep:
    """A single migration step."""

    action: MigrationAction
    table: str
    column: str | None = None
    sql: str | None = None
    details: dict[str, Any] | None = None
    is_destructive: bool = False

    def describe(self) -> str:
        target = f"{self.table}.{self.column}" if self.column else self.table
        return f"{self.action.value} {target}"


@dataclass
class MigrationPlan:
    """A complete migration plan."""

    steps: list[MigrationStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def has_destructive(self) -> bool:
        return any(s.is_destructive for s in self.steps)

    @property
    def is_empty(self) -> bool:
        return len(self.steps) == 0

    @property
    def safe_steps(self) -> list[MigrationStep]:
        """Non-destructive steps."""
        return [s for s in self.steps if not s.is_destructive]

    @property
    def destructive_steps(self) -> list[MigrationStep]:
        return [s for s in self.steps if s.is_destructive]


@dataclass
class MigrationResult:
    """Outcome of auto_migrate()."""

    plan: MigrationPlan
    executed: list[MigrationStep] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "steps_executed": len(self.executed),
            "executed": [s.describe() for s in self.executed],
            "warnings": list(self.plan.warnings),
            "has_pending_destructive": any(
                s.is_destructive and s not in self.executed for s in self.plan.steps
            ),
        }


# =============================================================================
# Schema Introspection
# =============================================================================


@dataclass
class ColumnInfo:
    """Information about a live database column."""

    name: str
    type: str
    not_null: bool
    default: Any
    is_pk: bool


def get_table_schema(conn: sqlite3.Connection, table_name: str) -> list[ColumnInfo]:
    """Column information for a table (PRAGMA table_info)."""
    cursor = conn.execute(f"PRAGMA table_info({quote_identifier(table_name)})")
    return [
        ColumnInfo(
            name=row[1],
            type=row[2],
            not_null=bool(row[3]),
            default=row[4],
            is_pk=bool(row[5]),
        )
        for row in cursor.fetchall()
    ]


def get_table_indexes(conn: sqlite3.Connection, table_name: str) -> list[str]:
    """Index names for a table (PRAGMA index_list)."""
    cursor = conn.execute(f"PRAGMA index_list({quote_identifier(table_name)})")
    return [row[1] for row in cursor.fetchall()]


def _table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cursor.fetchone() is not None


# =============================================================================
# Migration Planning
# =============================================================================

_TYPE_DEFAULTS: dict[ScalarType, Any] = {
    ScalarType.STR: "",
    ScalarType.TEXT: "",
    ScalarType.EMAIL: "",
    ScalarType.INT: 0,
    ScalarType.FLOAT: 0.0,
    ScalarType.DECIMAL: 0.0,
    ScalarType.BOOL: False,
    ScalarType.JSON: {},
    ScalarType.UUID: UUID(int=0),
    ScalarType.DATE: date(1970, 1, 1),
    ScalarType.DATETIME: datetime(1970, 1, 1, tzinfo=UTC),
}


def type_default(field: FieldSpec) -> Any:
    """Fill value for a required column added to a table that already has rows."""
    if field.type.kind == "enum" and field.type.enum_values:
        return field.type.enum_values[0]
    if field.type.kind == "scalar" and field.type.scalar_type:
        return _TYPE_DEFAULTS.get(field.type.scalar_type)
    return None


class MigrationPlanner:
    """Plans migrations by comparing EntitySpecs to the existing database schema."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def plan(self, entities: list[EntitySpec]) -> MigrationPlan:
        """
        Create a migration plan for all entities.

        Args:
            entities: Entity specifications (any order)

        Returns:
            Migration plan with steps and warnings
        """
        plan = MigrationPlan()
        lookup = AppSpec(name="migrations", entities=entities)

        with self.db.connection() as conn:
            for entity in ordered_entities(list(entities)):
                if _table_exists(conn, entity.table):
                    self._plan_existing_table(conn, entity, lookup, plan)
                else:
                    self._plan_new_table(entity, lookup, plan)

        return plan

    def _plan_new_table(self, entity: EntitySpec, lookup: AppSpec, plan: MigrationPlan) -> None:
        plan.steps.append(
            MigrationStep(
                action=MigrationAction.CREATE_TABLE,
                table=entity.table,
                sql=create_table_sql(entity, lookup),
            )
        )
        for column, sql in zip(indexed_columns(entity), index_sql(entity), strict=True):
            plan.steps.append(
                MigrationStep(
                    action=MigrationAction.ADD_INDEX,
                    table=entity.table,
                    column=column,
                    sql=sql,
                )
            )

    def _plan_existing_table(
        self,
        conn: sqlite3.Connection,
        entity: EntitySpec,
        lookup: AppSpec,
        plan: MigrationPlan,
    ) -> None:
        live_columns = {c.name: c for c in get_table_schema(conn, entity.table)}
        live_indexes = set(get_table_indexes(conn, entity.table))
        expected = {f.name: f for f in entity.fields}

        for field_spec in entity.fields:
            live = live_columns.get(field_spec.name)
            if live is None:
                self._plan_add_column(entity, field_spec, lookup, plan)
                continue

            declared_type = sqlite_type(field_spec.type)
            if live.type.upper() != declared_type:
                plan.warnings.append(
                    f"Column '{entity.table}.{field_spec.name}' is {live.type or 'untyped'} "
                    f"in the database but declared as {declared_type}; migrate it manually."
                )
                plan.steps.append(
                    MigrationStep(
                        action=MigrationAction.CHANGE_TYPE,
                        table=entity.table,
                        column=field_spec.name,
                        details={"from": live.type, "to": declared_type},
                        is_destructive=True,
                    )
                )

        for name in live_columns:
            if name in expected:
                continue
            plan.warnings.append(
                f"Column '{entity.table}.{name}' is no longer declared; "
                "dropping it loses its data."
            )
            plan.steps.append(
                MigrationStep(
                    action=MigrationAction.DROP_COLUMN,
                    table=entity.table,
                    column=name,
                    sql=(
                        f"ALTER TABLE {quote_identifier(entity.table)} "
                        f"DROP COLUMN {quote_identifier(name)}"
                    ),
                    details={"drop_index": index_name(entity.table, name)},
                    is_destructive=True,
                )
            )

        for column in indexed_columns(entity):
            if index_name(entity.table, column) not in live_indexes:
                plan.steps.append(
                    MigrationStep(
                        action=MigrationAction.ADD_INDEX,
                        table=entity.table,
                        column=column,
                        sql=create_index_sql(entity.table, column),
                    )
                )

    def _plan_add_column(
        self,
        entity: EntitySpec,
        field_spec: FieldSpec,
        lookup: AppSpec,
        plan: MigrationPlan,
    ) -> None:
        # SQLite cannot ADD COLUMN with PRIMARY KEY or UNIQUE, nor a NOT NULL
        # column without a default, nor a REFERENCES column with a non-NULL default
        if field_spec.primary_key:
            plan.warnings.append(
                f"Primary key '{entity.table}.{field_spec.name}' cannot be added to an "
                "existing table; recreate the table."
            )
            return

        is_ref = field_spec.type.kind == "ref"
        update: dict[str, Any] = {"unique": False}
        if is_ref:
            update["default"] = None
            if field_spec.required:
                plan.warnings.append(
                    f"Reference column '{entity.table}.{field_spec.name}' was added as "
                    "nullable; existing rows have no value."
                )
        elif field_spec.required and field_spec.default is None:
            update["default"] = type_default(field_spec)

        column_spec = field_spec.model_copy(update=update)
        definition = column_definition(column_spec, nullable=is_ref)
        if is_ref:
            definition = f"{definition} {foreign_key_clause(entity, field_spec, lookup)}"

        plan.steps.append(
            MigrationStep(
                action=MigrationAction.ADD_COLUMN,
                table=entity.table,
                column=field_spec.name,
                sql=f"ALTER TABLE {quote_identifier(entity.table)} ADD COLUMN {definition}",
                details={"field": field_spec.model_dump(mode="json")},
            )
        )

        if field_spec.unique:
            unique_index = f"uq_{entity.table}_{field_spec.name}"
            plan.steps.append(
                MigrationStep(
                    action=MigrationAction.ADD_INDEX,
                    table=entity.table,
                    column=field_spec.name,
                    sql=(
                        f"CREATE UNIQUE INDEX IF NOT EXISTS {quote_identifier(unique_index)} "
                        f"ON {quote_identifier(entity.table)}({quote_identifier(field_spec.name)})"
                    ),
                )
            )


# =============================================================================
# Migration Executor
# =============================================================================


class MigrationExecutor:
    """Executes migration plans in a single transaction."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def execute(
        self,
        plan: MigrationPlan,
        allow_destructive: bool = False,
        history: MigrationHistory | None = None,
    ) -> list[MigrationStep]:
        """
        Execute a migration plan.

        All steps run in one transaction: if any step fails, none of them
        stay applied. Type changes are never executed.

        Args:
            plan: Migration plan to execute
            allow_destructive: Also run drop-column steps
            history: Record executed steps (inside the same transaction)

        Returns:
            Executed steps

        Raises:
            MigrationError: If a step fails
        """
        runnable = [
            s
            for s in plan.steps
            if s.sql and (not s.is_destructive or allow_destructive)
        ]
        if not runnable:
            return []

        executed: list[MigrationStep] = []
        with self.db.connection(begin=True) as conn:
            for step in runnable:
                try:
                    if step.action == MigrationAction.DROP_COLUMN and step.details:
                        dropped = step.details.get("drop_index")
                        if dropped:
                            conn.execute(f"DROP INDEX IF EXISTS {quote_identifier(dropped)}")
                    conn.execute(step.sql)  # type: ignore[arg-type]
                except sqlite3.Error as e:
                    raise MigrationError(
                        f"Failed to execute migration step {step.describe()}: {e}"
                    ) from e
                executed.append(step)

            if history is not None:
                history.ensure_table(conn)
                for step in executed:
                    history.record_migration(step, conn)

        return executed


# =============================================================================
# Migration History
# =============================================================================


class MigrationHistory:
    """Tracks applied migration steps in the _miles_migrations table."""

    TABLE_NAME = "_miles_migrations"

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def ensure_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE_NAME} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                applied_at TEXT NOT NULL,
                action TEXT NOT NULL,
                table_name TEXT NOT NULL,
                column_name TEXT,
                sql_executed TEXT,
                details TEXT
            )
            """
        )

    def record_migration(self, step: MigrationStep, conn: sqlite3.Connection) -> None:
        conn.execute(
            f"""
            INSERT INTO {self.TABLE_NAME}
            (applied_at, action, table_name, column_name, sql_executed, details)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                datetime.now(UTC).isoformat(),
                step.action.value,
                step.table,
                step.column,
                step.sql,
                json.dumps(step.details, default=str) if step.details else None,
            ),
        )

    def get_history(self) -> list[dict[str, Any]]:
        """Applied steps, most recent first."""
        with self.db.connection() as conn:
            if not _table_exists(conn, self.TABLE_NAME):
                return []
            cursor = conn.execute(f"SELECT * FROM {self.TABLE_NAME} ORDER BY id DESC")
            return [dict(row) for row in cursor.fetchall()]


# =============================================================================
# High-Level API
# =============================================================================


def plan_migrations(db_manager: DatabaseManager, entities: list[EntitySpec]) -> MigrationPlan:
    """Plan migrations without executing them."""
    return MigrationPlanner(db_manager).plan(entities)


def auto_migrate(
    db_manager: DatabaseManager,
    entities: list[EntitySpec],
    record_history: bool = True,
    allow_destructive: bool = False,
) -> MigrationResult:
    """
    Migrate the database to match the entity specifications.

    Plans, executes the safe steps (plus destructive ones when allowed),
    records them, and logs a summary.

    Args:
        db_manager: Database manager instance
        entities: Entity specifications
        record_history: Record executed steps in _miles_migrations
        allow_destructive: Also drop undeclared columns

    Returns:
        MigrationResult with the plan and the executed steps
    """
    plan = plan_migrations(db_manager, entities)
    result = MigrationResult(plan=plan)

    if not plan.is_empty:
        history = MigrationHistory(db_manager) if record_history else None
        result.executed = MigrationExecutor(db_manager).execute(
            plan, allow_destructive=allow_destructive, history=history
        )

    for warning in plan.warnings:
        logger.warning(warning)

    if result.executed:
        log_with_context(
            logger,
            logging.INFO,
            f"Applied {len(result.executed)} migration step(s)",
            steps=[s.describe() for s in result.executed],
        )
    else:
        logger.debug("Database schema is up to date")

    return result
