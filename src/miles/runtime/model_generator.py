"""
Model generator - builds pydantic models from EntitySpecs at runtime.

For each entity: a read model (``Todo``), a create schema (``TodoCreate``),
an update schema with every field optional (``TodoUpdate``) and a
paginated list envelope (``TodoListResponse``).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, PlainSerializer, create_model

from miles.specs import EntitySpec, FieldSpec, FieldType, ScalarType

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# JSON has no decimal type; clients read numbers
JsonDecimal = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

# =============================================================================
# Type Mapping
# =============================================================================

_SCALAR_PYTHON: dict[ScalarType, Any] = {
    ScalarType.STR: str,
    ScalarType.TEXT: str,
    ScalarType.INT: int,
    ScalarType.FLOAT: float,
    ScalarType.DECIMAL: JsonDecimal,
    ScalarType.BOOL: bool,
    ScalarType.DATE: date,
    ScalarType.DATETIME: datetime,
    ScalarType.UUID: UUID,
    ScalarType.EMAIL: str,
    ScalarType.JSON: Any,
}


def python_type(field_type: FieldType) -> Any:
    """
    Python type (with constraints) for a field type.

    Enums become Literal[...]; strings carry max_length; emails a pattern;
    references are the target's UUID.
    """
    if field_type.kind == "enum" and field_type.enum_values:
        return Literal[tuple(field_type.enum_values)]
    if field_type.kind == "ref":
        return UUID

    scalar = field_type.scalar_type or ScalarType.STR
    base = _SCALAR_PYTHON.get(scalar, str)
    if scalar == ScalarType.EMAIL:
        return Annotated[str, Field(pattern=EMAIL_PATTERN, max_length=field_type.max_length)]
    if scalar == ScalarType.STR and field_type.max_length:
        return Annotated[str, Field(max_length=field_type.max_length)]
    return base


def _optional(tp: Any) -> Any:
    if tp is Any:
        return Any
    return tp | None


def _build_field_info(field: FieldSpec, optional: bool = False) -> tuple[Any, Any]:
    """
    Build a (type, FieldInfo) pair for create_model.

    Args:
        field: Field specification
        optional: Force the field to be optional with a None default
    """
    tp = python_type(field.type)
    kwargs: dict[str, Any] = {}
    if field.label:
        kwargs["description"] = field.label

    if optional or field.is_auto and not field.primary_key:
        return _optional(tp), Field(default=None, **kwargs)
    if field.default is not None:
        return tp if field.required else _optional(tp), Field(default=field.default, **kwargs)
    if field.required:
        return tp, Field(**kwargs)
    return _optional(tp), Field(default=None, **kwargs)


# =============================================================================
# Model Generation
# =============================================================================


def generate_entity_model(entity: EntitySpec) -> type[BaseModel]:
    """
    Generate the read model for an entity.

    Example:
        >>> TodoModel = generate_entity_model(Todo.entity_spec())
        >>> TodoModel(id=uuid4(), text="milk", done=False)
    """
    field_definitions = {f.name: _build_field_info(f) for f in entity.fields}
    return create_model(
        entity.name,
        __doc__=entity.description or f"Generated model for {entity.name}",
        **field_definitions,
    )


def generate_all_entity_models(entities: list[EntitySpec]) -> dict[str, type[BaseModel]]:
    """Read models by entity name (refs are plain UUIDs, so order does not matter)."""
    return {entity.name: generate_entity_model(entity) for entity in entities}


# =============================================================================
# Create/Update Schemas
# =============================================================================


def generate_create_schema(
    entity: EntitySpec,
    defaulted: set[str] | None = None,
    name_suffix: str = "Create",
) -> type[BaseModel]:
    """
    Generate the create schema: no id, no auto timestamps.

    Args:
        entity: Entity specification
        defaulted: Fields whose default is a factory on the Model; they
            become optional and the service fills them in
        name_suffix: Suffix for the schema name
    """
    defaulted = defaulted or set()
    field_definitions = {
        f.name: _build_field_info(f, optional=f.name in defaulted)
        for f in entity.fields
        if not f.is_auto
    }
    return create_model(
        f"{entity.name}{name_suffix}",
        __doc__=f"Create schema for {entity.name}",
        **field_definitions,
    )


def generate_update_schema(entity: EntitySpec, name_suffix: str = "Update") -> type[BaseModel]:
    """
    Generate the update schema: every writable field optional.

    Used with ``model_dump(exclude_unset=True)`` so only sent fields change.
    """
    field_definitions: dict[str, Any] = {}
    for field in entity.fields:
        if field.is_auto:
            continue
        field_definitions[field.name] = (_optional(python_type(field.type)), None)

    return create_model(
        f"{entity.name}{name_suffix}",
        __doc__=f"Update schema for {entity.name}",
        **field_definitions,
    )


def generate_list_response_schema(
    entity: EntitySpec,
    entity_model: type[BaseModel],
) -> type[BaseModel]:
    """Paginated list envelope: items, total, page, page_size."""
    field_definitions: dict[str, Any] = {
        "items": (list[entity_model], Field(description=f"List of {entity.name} items")),  # type: ignore[valid-type]
        "total": (int, Field(description="Total number of matching items")),
        "page": (int, Field(default=1, description="Current page")),
        "page_size": (int, Field(default=20, description="Items per page")),
    }
    return create_model(
        f"{entity.name}ListResponse",
        __doc__=f"Paginated list response for {entity.name}",
        **field_definitions,
    )
