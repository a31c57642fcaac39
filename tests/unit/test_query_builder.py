"""Tests for filter parsing and SQL generation for list queries."""

from __future__ import annotations

from uuid import UUID

import pytest

from miles.core.errors import QueryError
from miles.runtime.query_builder import (
    MAX_PAGE_SIZE,
    FilterCondition,
    FilterOperator,
    QueryBuilder,
    SortField,
    coerce_value,
    parse_filter_string,
    parse_sort_string,
    parse_value,
)
from miles.specs import FieldType, ScalarType


class TestFilterCondition:
    def test_plain_key_is_equality(self) -> None:
        condition = FilterCondition.parse("status", "todo")
        assert condition.field == "status"
        assert condition.operator == FilterOperator.EQ

    def test_operator_suffix(self) -> None:
        condition = FilterCondition.parse("priority__gte", 5)
        assert condition.field == "priority"
        assert condition.operator == FilterOperator.GTE

    def test_unknown_operator(self) -> None:
        with pytest.raises(QueryError, match="Unknown filter operator"):
            FilterCondition.parse("priority__near", 5)

    def test_no_relation_traversal(self) -> None:
        with pytest.raises(QueryError, match="across relations"):
            FilterCondition.parse("owner__name__eq", "Ada")

    @pytest.mark.parametrize(
        "key,value,sql,params",
        [
            ("done", False, '"done" = ?', [0]),
            ("priority__ne", 1, '"priority" != ?', [1]),
            ("text__icontains", "Milk", "LOWER(\"text\") LIKE LOWER(?) ESCAPE '\\'", ["%Milk%"]),
            ("text__contains", "Milk", '"text" GLOB ?', ["*Milk*"]),
            ("text__startswith", "mi", '"text" GLOB ?', ["mi*"]),
            ("text__iendswith", "LK", "LOWER(\"text\") LIKE LOWER(?) ESCAPE '\\'", ["%LK"]),
            ("owner_id", None, '"owner_id" IS NULL', []),
            ("owner_id__ne", None, '"owner_id" IS NOT NULL', []),
            ("status__in", ["todo", "doing"], '"status" IN (?, ?)', ["todo", "doing"]),
            ("priority__between", [1, 3], '"priority" BETWEEN ? AND ?', [1, 3]),
            ("owner_id__isnull", True, '"owner_id" IS NULL', []),
            ("owner_id__isnull", False, '"owner_id" IS NOT NULL', []),
        ],
    )
    def test_to_sql(self, key: str, value, sql: str, params: list) -> None:
        assert FilterCondition.parse(key, value).to_sql() == (sql, params)

    def test_empty_in_matches_nothing(self) -> None:
        assert FilterCondition.parse("status__in", []).to_sql() == ("0 = 1", [])
        assert FilterCondition.parse("status__not_in", []).to_sql() == ("1 = 1", [])

    def test_between_needs_two_values(self) -> None:
        with pytest.raises(QueryError):
            FilterCondition.parse("priority__between", [1]).to_sql()

    def test_like_wildcards_are_escaped(self) -> None:
        _, params = FilterCondition.parse("text__icontains", "50%_off").to_sql()
        assert params == ["%50\\%\\_off%"]

    def test_glob_wildcards_are_escaped(self) -> None:
        _, params = FilterCondition.parse("text__startswith", "a*b?[c]").to_sql()
        assert params == ["a[*]b[?][[]c]*"]


TEXT = FieldType(kind="scalar", scalar_type=ScalarType.STR)
INT = FieldType(kind="scalar", scalar_type=ScalarType.INT)
BOOL = FieldType(kind="scalar", scalar_type=ScalarType.BOOL)
DECIMAL = FieldType(kind="scalar", scalar_type=ScalarType.DECIMAL, precision=10, scale=2)
STATUS = FieldType(kind="enum", enum_values=["todo", "done"])
OWNER = FieldType(kind="ref", ref_entity="User")
OWNER_ID = "12345678-1234-5678-1234-567812345678"


class TestCoercion:
    @pytest.mark.parametrize("raw", ["no", "007", "1.50", "null", "true", "[a]"])
    def test_text_keeps_strings(self, raw: str) -> None:
        assert coerce_value(raw, TEXT) == raw

    def test_enum_keeps_strings(self) -> None:
        assert coerce_value("true", STATUS) == "true"

    @pytest.mark.parametrize(
        "field_type,raw,expected",
        [
            (INT, "007", 7),
            (BOOL, "no", False),
            (BOOL, "1", True),
            (DECIMAL, "1.50", 1.5),
            (INT, "null", None),
            (OWNER, OWNER_ID, UUID(OWNER_ID)),
        ],
    )
    def test_typed_columns(self, field_type: FieldType, raw: str, expected) -> None:
        assert coerce_value(raw, field_type) == expected

    def test_invalid_value(self) -> None:
        with pytest.raises(QueryError, match="Invalid int value 'lots'"):
            coerce_value("lots", INT)

    def test_typed_values_pass_through(self) -> None:
        assert coerce_value(3, TEXT) == 3
        assert coerce_value(False, BOOL) is False

    def test_untyped_falls_back_to_guessing(self) -> None:
        assert coerce_value("no", None) is False

    def test_builder_coerces_by_column(self) -> None:
        builder = QueryBuilder(
            table_name="Todo",
            field_types={"text": TEXT, "priority": INT, "done": BOOL, "status": STATUS},
        )
        builder.add_filters(
            {"text": "no", "priority__in": "[1,3]", "done": "false", "status__ne": "null"}
        )
        sql, params = builder.build_count()
        assert sql == (
            'SELECT COUNT(*) FROM "Todo" WHERE "text" = ? AND "priority" IN (?, ?) '
            'AND "done" = ? AND "status" != ?'
        )
        assert params == ["no", 1, 3, 0, "null"]
        assert builder.allowed_fields == {"text", "priority", "done", "status"}

    def test_isnull_needs_boolean(self) -> None:
        builder = QueryBuilder(table_name="Todo", field_types={"owner_id": OWNER})
        with pytest.raises(QueryError, match="needs true or false"):
            builder.add_filter("owner_id__isnull", "maybe")

    def test_raw_filter_string(self) -> None:
        assert parse_filter_string("text=007,done=no", typed=False) == {
            "text": "007",
            "done": "no",
        }


class TestQueryBuilder:
    def test_select_with_defaults(self) -> None:
        builder = QueryBuilder(table_name="Todo")
        sql, params = builder.build_select()
        assert sql == 'SELECT * FROM "Todo" ORDER BY rowid ASC LIMIT ? OFFSET ?'
        assert params == [20, 0]

    def test_filters_sorts_and_paging(self) -> None:
        builder = QueryBuilder(table_name="Todo", allowed_fields={"done", "priority"})
        builder.add_filters({"done": False, "priority__gte": 2})
        builder.add_sorts("-priority")
        builder.set_pagination(page=3, page_size=10)

        sql, params = builder.build_select()
        assert sql == (
            'SELECT * FROM "Todo" WHERE "done" = ? AND "priority" >= ? '
            'ORDER BY "priority" DESC, rowid ASC LIMIT ? OFFSET ?'
        )
        assert params == [0, 2, 10, 20]

    def test_count_ignores_paging(self) -> None:
        builder = QueryBuilder(table_name="Todo")
        builder.add_filter("done", True)
        assert builder.build_count() == ('SELECT COUNT(*) FROM "Todo" WHERE "done" = ?', [1])

    @pytest.mark.parametrize(
        "page,page_size,expected",
        [(0, 0, (1, 1)), (-4, 5000, (1, MAX_PAGE_SIZE)), (2, 50, (2, 50))],
    )
    def test_pagination_clamped(self, page: int, page_size: int, expected) -> None:
        builder = QueryBuilder(table_name="Todo").set_pagination(page, page_size)
        assert (builder.page, builder.page_size) == expected

    def test_unknown_filter_field(self) -> None:
        builder = QueryBuilder(table_name="Todo", allowed_fields={"done"})
        with pytest.raises(QueryError, match="unknown field 'colour'"):
            builder.add_filter("colour", "red")

    def test_unknown_sort_field(self) -> None:
        builder = QueryBuilder(table_name="Todo", allowed_fields={"done"})
        with pytest.raises(QueryError):
            builder.add_sort("-colour")

    def test_table_name_validated(self) -> None:
        with pytest.raises(ValueError):
            QueryBuilder(table_name="Todo; DROP TABLE Todo")


class TestParsing:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("true", True),
            ("False", False),
            ("null", None),
            ("42", 42),
            ("1.5", 1.5),
            ("[a, 2]", ["a", 2]),
            ("milk", "milk"),
        ],
    )
    def test_parse_value(self, raw: str, expected) -> None:
        assert parse_value(raw) == expected

    def test_parse_uuid(self) -> None:
        raw = "12345678-1234-5678-1234-567812345678"
        assert parse_value(raw) == UUID(raw)

    def test_filter_string(self) -> None:
        assert parse_filter_string("done=false,priority__gte=5,status__in=[todo,doing]") == {
            "done": False,
            "priority__gte": 5,
            "status__in": ["todo", "doing"],
        }

    def test_malformed_filter_string(self) -> None:
        with pytest.raises(QueryError, match="Malformed"):
            parse_filter_string("done")

    def test_sort_string(self) -> None:
        assert parse_sort_string("done, -created_at,") == ["done", "-created_at"]
        assert SortField.parse("-created_at").descending is True

    def test_empty_sort_field(self) -> None:
        with pytest.raises(QueryError):
            SortField.parse("-")
