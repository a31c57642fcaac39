"""Tests for SQLite DDL derivation."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from miles.converters import build_app_spec
from miles.runtime.schema import (
    column_definition,
    create_table_sql,
    from_db,
    index_sql,
    ordered_entities,
    quote_identifier,
    render_schema,
    sql_literal,
    to_db,
)
from miles.specs import FieldSpec, FieldType, ScalarType


@pytest.fixture
def app_spec(user_model, todo_model):
    # Todo first on purpose: render order must not depend on it
    return build_app_spec([todo_model, user_model])


class TestColumns:
    def test_literal_default(self, app_spec) -> None:
        done = app_spec.get_entity("Todo").get_field("done")
        assert column_definition(done) == '"done" INTEGER DEFAULT 0'

    def test_enum_check(self, app_spec) -> None:
        status = app_spec.get_entity("Todo").get_field("status")
        assert column_definition(status) == (
            "\"status\" TEXT DEFAULT 'todo' CHECK (\"status\" IN ('todo', 'doing', 'done'))"
        )

    def test_required_unique(self, app_spec) -> None:
        email = app_spec.get_entity("User").get_field("email")
        assert column_definition(email) == '"email" TEXT NOT NULL UNIQUE'

    def test_primary_key(self, app_spec) -> None:
        pk = app_spec.get_entity("User").primary_key
        assert column_definition(pk) == '"id" TEXT PRIMARY KEY'

    def test_nullable_override(self) -> None:
        field = FieldSpec(
            name="count",
            type=FieldType(kind="scalar", scalar_type=ScalarType.INT),
            required=True,
        )
        assert column_definition(field, nullable=True) == '"count" INTEGER'

    def test_string_literal_quotes_doubled(self) -> None:
        assert sql_literal("it's") == "'it''s'"
        assert sql_literal(None) == "NULL"
        assert sql_literal(1.5) == "1.5"


class TestTables:
    def test_foreign_key_clause(self, app_spec) -> None:
        sql = create_table_sql(app_spec.get_entity("Todo"), app_spec)
        assert sql.startswith('CREATE TABLE IF NOT EXISTS "Todo" (')
        assert 'FOREIGN KEY ("owner_id") REFERENCES "User"("id") ON DELETE CASCADE' in sql

    def test_indexes_for_declared_and_foreign_keys(self, app_spec) -> None:
        statements = index_sql(app_spec.get_entity("Todo"))
        assert statements == [
            'CREATE INDEX IF NOT EXISTS "idx_Todo_priority" ON "Todo"("priority")',
            'CREATE INDEX IF NOT EXISTS "idx_Todo_owner_id" ON "Todo"("owner_id")',
        ]

    def test_unique_columns_get_no_extra_index(self, app_spec) -> None:
        assert index_sql(app_spec.get_entity("User")) == []

    def test_referenced_tables_first(self, app_spec) -> None:
        names = [e.name for e in ordered_entities(list(app_spec.entities))]
        assert names == ["User", "Todo"]

    def test_render_schema(self, app_spec) -> None:
        script = render_schema(app_spec)
        assert script.index('"User"') < script.index('CREATE TABLE IF NOT EXISTS "Todo"')
        assert script.count("CREATE TABLE") == 2
        assert script.endswith('ON "Todo"("owner_id");\n')

    @pytest.mark.parametrize("name", ["", "1table", "drop table;", "a-b"])
    def test_unsafe_identifiers_rejected(self, name: str) -> None:
        with pytest.raises(ValueError):
            quote_identifier(name)


class TestValueConversion:
    def test_storage_forms(self) -> None:
        uid = uuid4()
        assert to_db(uid) == str(uid)
        assert to_db(True) == 1
        assert to_db(Decimal("1.50")) == 1.5
        assert to_db(date(2026, 1, 2)) == "2026-01-02"
        assert to_db({"a": 1}) == '{"a": 1}'

    def test_typed_read_back(self) -> None:
        stamp = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        dt_type = FieldType(kind="scalar", scalar_type=ScalarType.DATETIME)
        bool_type = FieldType(kind="scalar", scalar_type=ScalarType.BOOL)
        json_type = FieldType(kind="scalar", scalar_type=ScalarType.JSON)

        assert from_db(to_db(stamp), dt_type) == stamp
        assert from_db(0, bool_type) is False
        assert from_db('["x"]', json_type) == ["x"]
        assert from_db(None, dt_type) is None
