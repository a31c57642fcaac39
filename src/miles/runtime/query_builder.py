"""
Query builder for list endpoints.

Turns ``field__op=value`` filters, ``field`` / ``-field`` sort keys and
page numbers into parameterised SQLite SELECT and COUNT statements.
Field names are checked against the entity's declared columns, and raw
query-string values are coerced to each column's declared type.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from miles.core.errors import QueryError
from miles.runtime.schema import quote_identifier, to_db, validate_sql_identifier
from miles.specs import FieldType, ScalarType

MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = 20


class FilterOperator(str, Enum):
    """Supported filter operators."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    ICONTAINS = "icontains"
    STARTSWITH = "startswith"
    ISTARTSWITH = "istartswith"
    ENDSWITH = "endswith"
    IENDSWITH = "iendswith"
    IN = "in"
    NOT_IN = "not_in"
    ISNULL = "isnull"
    BETWEEN = "between"


# LIKE ignores ASCII case in SQLite, so the case-sensitive forms use GLOB
OPERATOR_SQL: dict[FilterOperator, str] = {
    FilterOperator.EQ: "{field} = ?",
    FilterOperator.NE: "{field} != ?",
    FilterOperator.GT: "{field} > ?",
    FilterOperator.GTE: "{field} >= ?",
    FilterOperator.LT: "{field} < ?",
    FilterOperator.LTE: "{field} <= ?",
    FilterOperator.CONTAINS: "{field} GLOB ?",
    FilterOperator.ICONTAINS: "LOWER({field}) LIKE LOWER(?) ESCAPE '\\'",
    FilterOperator.STARTSWITH: "{field} GLOB ?",
    FilterOperator.ISTARTSWITH: "LOWER({field}) LIKE LOWER(?) ESCAPE '\\'",
    FilterOperator.ENDSWITH: "{field} GLOB ?",
    FilterOperator.IENDSWITH: "LOWER({field}) LIKE LOWER(?) ESCAPE '\\'",
    FilterOperator.IN: "{field} IN ({placeholders})",
    FilterOperator.NOT_IN: "{field} NOT IN ({placeholders})",
    FilterOperator.ISNULL: "{field} IS NULL",
    FilterOperator.BETWEEN: "{field} BETWEEN ? AND ?",
}

_MATCH_PATTERNS: dict[FilterOperator, str] = {
    FilterOperator.CONTAINS: "*{}*",
    FilterOperator.ICONTAINS: "%{}%",
    FilterOperator.STARTSWITH: "{}*",
    FilterOperator.ISTARTSWITH: "{}%",
    FilterOperator.ENDSWITH: "*{}",
    FilterOperator.IENDSWITH: "%{}",
}

_GLOB_OPERATORS = {FilterOperator.CONTAINS, FilterOperator.STARTSWITH, FilterOperator.ENDSWITH}
_LIST_OPERATORS = {FilterOperator.IN, FilterOperator.NOT_IN, FilterOperator.BETWEEN}

_TEXT_SCALARS = {ScalarType.STR, ScalarType.TEXT, ScalarType.EMAIL, ScalarType.JSON}
_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}


def escape_like(value: str) -> str:
    """Escape LIKE wildcards for use with ``ESCAPE '\\'``."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def escape_glob(value: str) -> str:
    """Escape GLOB wildcards by wrapping each in a character class."""
    return re.sub(r"([*?\[])", r"[\1]", value)


def _db_value(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_db_value(v) for v in value]
    return to_db(value)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def coerce_value(value: Any, field_type: FieldType | None) -> Any:
    """
    Coerce a filter value to the Python type of its column.

    Only strings are converted; other values are taken as already typed.
    Text, email and enum columns keep strings as they are, so "no", "007"
    or "null" match literally. Without a field type the value is guessed
    with ``parse_value``.

    Raises:
        QueryError: If the string is not valid for the column type
    """
    if not isinstance(value, str):
        return value
    if field_type is None:
        return parse_value(value)
    if field_type.kind == "enum":
        return value
    scalar = ScalarType.UUID if field_type.kind == "ref" else field_type.scalar_type
    if scalar is None or scalar in _TEXT_SCALARS:
        return value
    if value.strip().lower() in ("null", "none"):
        return None

    try:
        if scalar == ScalarType.INT:
            return int(value)
        if scalar in (ScalarType.FLOAT, ScalarType.DECIMAL):
            return float(value)
        if scalar == ScalarType.BOOL:
            return _parse_bool(value)
        if scalar == ScalarType.UUID:
            return UUID(value)
        if scalar == ScalarType.DATETIME:
            return datetime.fromisoformat(value)
        if scalar == ScalarType.DATE:
            return date.fromisoformat(value)
    except ValueError as e:
        raise QueryError(f"Invalid {field_type.label} value '{value}'") from e
    return value


def _split_list(value: str) -> list[str]:
    """'a,b' or '[a,b]' -> ['a', 'b']"""
    text = value.strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    return [part.strip() for part in _split_top_level(text) if part.strip()]


@dataclass
class FilterCondition:
    """A single filter condition."""

    field: str
    operator: FilterOperator
    value: Any

    @classmethod
    def parse(cls, key: str, value: Any) -> FilterCondition:
        """
        Parse a filter key-value pair.

        Examples:
            - ("status", "active") -> field="status", op=EQ
            - ("priority__gte", 5) -> field="priority", op=GTE
            - ("owner__name", "x") -> QueryError (no relation traversal)
        """
        name, sep, op = key.rpartition("__")
        if not sep:
            return cls(field=key, operator=FilterOperator.EQ, value=value)
        try:
            operator = FilterOperator(op.lower())
        except ValueError as e:
            raise QueryError(f"Unknown filter operator '{op}' in '{key}'") from e
        if "__" in name:
            raise QueryError(f"Filtering across relations is not supported: '{key}'")
        return cls(field=name, operator=operator, value=value)

    def coerce(self, field_type: FieldType | None) -> FilterCondition:
        """
        Condition with its value converted for the column type.

        List operators accept ``a,b`` and ``[a,b]`` strings; ``isnull``
        takes a boolean; the pattern operators always match text.
        """
        value = self.value
        if self.operator == FilterOperator.ISNULL:
            if isinstance(value, str):
                try:
                    value = _parse_bool(value)
                except ValueError as e:
                    raise QueryError(f"'{self.field}__isnull' needs true or false") from e
        elif self.operator in _LIST_OPERATORS:
            items = _split_list(value) if isinstance(value, str) else value
            if not isinstance(items, (list, tuple, set)):
                items = [items]
            value = [coerce_value(item, field_type) for item in items]
        elif self.operator in _MATCH_PATTERNS:
            value = "" if value is None else str(value)
        else:
            value = coerce_value(value, field_type)
        return replace(self, value=value)

    def to_sql(self) -> tuple[str, list[Any]]:
        """
        Convert to an SQL fragment and parameters.

        Returns:
            Tuple of (sql_fragment, parameters)
        """
        field_ref = quote_identifier(self.field)
        value = _db_value(self.value)

        if self.operator == FilterOperator.ISNULL:
            if self.value:
                return f"{field_ref} IS NULL", []
            return f"{field_ref} IS NOT NULL", []

        if self.value is None and self.operator == FilterOperator.EQ:
            return f"{field_ref} IS NULL", []
        if self.value is None and self.operator == FilterOperator.NE:
            return f"{field_ref} IS NOT NULL", []

        if self.operator in (FilterOperator.IN, FilterOperator.NOT_IN):
            if not isinstance(value, list):
                value = [value]
            if not value:
                # IN () is a syntax error in SQLite
                return ("0 = 1" if self.operator == FilterOperator.IN else "1 = 1"), []
            placeholders = ", ".join("?" * len(value))
            sql = OPERATOR_SQL[self.operator].format(field=field_ref, placeholders=placeholders)
            return sql, value

        if self.operator == FilterOperator.BETWEEN:
            if not isinstance(value, list) or len(value) != 2:
                raise QueryError(f"'{self.field}__between' needs a list of two values")
            return OPERATOR_SQL[self.operator].format(field=field_ref), value

        if self.operator in _MATCH_PATTERNS:
            text = str(self.value)
            escaped = escape_glob(text) if self.operator in _GLOB_OPERATORS else escape_like(text)
            pattern = _MATCH_PATTERNS[self.operator].format(escaped)
            return OPERATOR_SQL[self.operator].format(field=field_ref), [pattern]

        return OPERATOR_SQL[self.operator].format(field=field_ref), [value]

@dataclass
class SortField:
    """A single sort field."""

    field: str
    descending: bool = False

    @classmethod
    def parse(cls, sort_str: str) -> SortField:
        """
        Parse a sort key.

        Examples:
            - "created_at" -> ascending
            - "-created_at" -> descending
        """
        sort_str = sort_str.strip()
        descending = sort_str.startswith("-")
        if descending:
            sort_str = sort_str[1:]
        if not sort_str:
            raise QueryError("Empty sort field")
        return cls(field=sort_str, descending=descending)

    def to_sql(self) -> str:
        direction = "DESC" if self.descending else "ASC"
        return f"{quote_identifier(self.field)} {direction}"


@dataclass
class QueryBuilder:
    """
    Builds SQL queries with filters, sorting, and pagination.

    Example:
        builder = QueryBuilder(table_name="Todo", allowed_fields={"id", "text", "done"})
        builder.add_filter("done", False)
        builder.add_sort("-text")
        builder.set_pagination(page=1, page_size=20)

        sql, params = builder.build_select()

    Raises QueryError when a filter or sort names a field outside
    ``allowed_fields`` (no check when it is None). With ``field_types``,
    filter values are coerced to their column type and the allowed fields
    default to its keys.
    """

    table_name: str
    allowed_fields: set[str] | None = None
    field_types: dict[str, FieldType] | None = None
    conditions: list[FilterCondition] = field(default_factory=list)
    sorts: list[SortField] = field(default_factory=list)
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        validate_sql_identifier(self.table_name, "table name")
        if self.allowed_fields is None and self.field_types is not None:
            self.allowed_fields = set(self.field_types)

    def _check_field(self, name: str, usage: str) -> None:
        if self.allowed_fields is not None and name not in self.allowed_fields:
            raise QueryError(f"Cannot {usage} by unknown field '{name}' on {self.table_name}")

    def add_filter(self, key: str, value: Any) -> QueryBuilder:
        condition = FilterCondition.parse(key, value)
        self._check_field(condition.field, "filter")
        field_type = self.field_types.get(condition.field) if self.field_types else None
        self.conditions.append(condition.coerce(field_type))
        return self

    def add_filters(self, filters: dict[str, Any]) -> QueryBuilder:
        for key, value in filters.items():
            self.add_filter(key, value)
        return self

    def add_sort(self, sort_str: str) -> QueryBuilder:
        sort_field = SortField.parse(sort_str)
        self._check_field(sort_field.field, "sort")
        self.sorts.append(sort_field)
        return self

    def add_sorts(self, sorts: str | Iterable[str]) -> QueryBuilder:
        if isinstance(sorts, str):
            sorts = parse_sort_string(sorts)
        for sort_str in sorts:
            self.add_sort(sort_str)
        return self

    def set_pagination(self, page: int, page_size: int) -> QueryBuilder:
        """Set pagination, clamping page >= 1 and 1 <= page_size <= 1000."""
        self.page = max(1, page)
        self.page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        return self

    def build_where_clause(self) -> tuple[str, list[Any]]:
        if not self.conditions:
            return "", []

        fragments = []
        params: list[Any] = []
        for condition in self.conditions:
            sql, condition_params = condition.to_sql()
            fragments.append(sql)
            params.extend(condition_params)

        return f"WHERE {' AND '.join(fragments)}", params

    def build_order_clause(self) -> str:
        """ORDER BY for the sort keys; insertion (rowid) order when none are given."""
        if not self.sorts:
            return "ORDER BY rowid ASC"
        return f"ORDER BY {', '.join(sort.to_sql() for sort in self.sorts)}, rowid ASC"

    def build_limit_offset(self) -> tuple[str, list[int]]:
        offset = (self.page - 1) * self.page_size
        return "LIMIT ? OFFSET ?", [self.page_size, offset]

    def build_select(self, count_only: bool = False) -> tuple[str, list[Any]]:
        """
        Build a complete SELECT query.

        Args:
            count_only: Build a COUNT(*) query instead (no order or paging)

        Returns:
            Tuple of (sql, parameters)
        """
        table = quote_identifier(self.table_name)
        if count_only:
            parts = [f"SELECT COUNT(*) FROM {table}"]
        else:
            parts = [f"SELECT * FROM {table}"]

        where_clause, params = self.build_where_clause()
        if where_clause:
            parts.append(where_clause)

        if not count_only:
            order_clause = self.build_order_clause()
            if order_clause:
                parts.append(order_clause)
            limit_clause, limit_params = self.build_limit_offset()
            parts.append(limit_clause)
            params.extend(limit_params)

        return " ".join(parts), params

    def build_count(self) -> tuple[str, list[Any]]:
        return self.build_select(count_only=True)


# =============================================================================
# Filter Parser Utilities
# =============================================================================


def _split_top_level(text: str) -> list[str]:
    """Split on commas that are not inside [...]."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in text:
        if char == "[":
            depth += 1
        elif char == "]":
            depth = max(0, depth - 1)
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def parse_filter_string(filter_str: str, typed: bool = True) -> dict[str, Any]:
    """
    Parse a compact filter string.

    Format: "field1=value1,field2__op=value2,field3__in=[a,b]"

    With ``typed=False`` values stay strings, for a QueryBuilder with
    field types to coerce.

    Examples:
        "done=false" -> {"done": False}
        "done=false,priority__gte=5" -> {"done": False, "priority__gte": 5}
    """
    if not filter_str:
        return {}

    filters: dict[str, Any] = {}
    for pair in _split_top_level(filter_str):
        if "=" not in pair:
            if pair.strip():
                raise QueryError(f"Malformed filter '{pair.strip()}' (expected key=value)")
            continue
        key, value = pair.split("=", 1)
        value = value.strip()
        filters[key.strip()] = parse_value(value) if typed else value

    return filters


_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I
)


def parse_value(value: str) -> Any:
    """Parse a string value to the closest Python type."""
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    if lowered in ("null", "none"):
        return None

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if value.startswith("[") and value.endswith("]"):
        inner = value[1:-1]
        if not inner.strip():
            return []
        return [parse_value(v.strip()) for v in _split_top_level(inner)]

    if _UUID_PATTERN.match(value):
        return UUID(value)

    return value


def parse_sort_string(sort_str: str) -> list[str]:
    """
    Parse a sort string.

    Format: "field1,-field2" (comma-separated, - for descending)
    """
    if not sort_str:
        return []
    return [s.strip() for s in sort_str.split(",") if s.strip()]
