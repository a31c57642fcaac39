"""
Entity specification types.

Defines entities, fields and relationships in a framework-agnostic form.
Model classes are converted into these specs; the schema compiler, the
API server and the client generators all work from them.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Field Type System
# =============================================================================


class ScalarType(str, Enum):
    """Scalar field types."""

    STR = "str"
    TEXT = "text"
    INT = "int"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOL = "bool"
    DATE = "date"
    DATETIME = "datetime"
    UUID = "uuid"
    EMAIL = "email"
    JSON = "json"


class FieldType(BaseModel):
    """
    Field type specification.

    Examples:
        - str(200): FieldType(kind="scalar", scalar_type=ScalarType.STR, max_length=200)
        - decimal(10,2): FieldType(kind="scalar", scalar_type=ScalarType.DECIMAL, precision=10, scale=2)
        - enum: FieldType(kind="enum", enum_values=["todo", "done"])
        - ref: FieldType(kind="ref", ref_entity="User")
    """

    kind: Literal["scalar", "enum", "ref"] = Field(
        description="Type category: scalar, enum, or ref"
    )
    scalar_type: ScalarType | None = Field(
        default=None, description="Scalar type (for kind=scalar)"
    )
    max_length: int | None = Field(default=None, description="Max length for str types")
    precision: int | None = Field(default=None, description="Precision for decimal types")
    scale: int | None = Field(default=None, description="Scale for decimal types")
    enum_values: list[str] | None = Field(
        default=None, description="Allowed values for enum types"
    )
    ref_entity: str | None = Field(
        default=None, description="Referenced entity name for ref types"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("enum_values")
    @classmethod
    def validate_enum_values(cls, v: list[str] | None) -> list[str] | None:
        """Ensure enum values are valid identifiers."""
        if v is not None:
            if not v:
                raise ValueError("Enum types need at least one value")
            for val in v:
                if not val.replace("_", "").replace("-", "").isalnum():
                    raise ValueError(f"Enum value '{val}' must be alphanumeric (with _ or -)")
        return v

    @property
    def label(self) -> str:
        """Short type label, e.g. 'str', 'enum', 'ref:User'."""
        if self.kind == "scalar" and self.scalar_type:
            return self.scalar_type.value
        if self.kind == "ref":
            return f"ref:{self.ref_entity}"
        return self.kind


# =============================================================================
# Fields
# =============================================================================


class FieldSpec(BaseModel):
    """
    Field specification for an entity.

    The name is the storage column name (a ForeignKey declared as
    ``owner`` becomes the ``owner_id`` field).

    Attributes:
        name: Column name
        type: Field type specification
        required: Whether a value must be provided
        default: Literal default value (callable defaults are not specs)
        indexed: Whether to create a database index
        unique: Whether values must be unique
        primary_key: Whether this is the entity's primary key
        auto_now_add: Set to the current time on create
        auto_now: Set to the current time on every write
    """

    name: str = Field(description="Field name")
    label: str | None = Field(default=None, description="Human-readable label")
    type: FieldType = Field(description="Field type specification")
    required: bool = Field(default=False, description="Is this field required?")
    default: Any | None = Field(default=None, description="Default value")
    indexed: bool = Field(default=False, description="Create database index?")
    unique: bool = Field(default=False, description="Values must be unique?")
    primary_key: bool = Field(default=False, description="Primary key?")
    auto_now_add: bool = Field(default=False, description="Timestamp on create")
    auto_now: bool = Field(default=False, description="Timestamp on every write")

    model_config = ConfigDict(frozen=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure field name is a valid identifier."""
        if not v.isidentifier():
            raise ValueError(f"Field name '{v}' must be a valid identifier")
        return v

    @property
    def is_auto(self) -> bool:
        """True for fields the server fills in (id, timestamps)."""
        return self.primary_key or self.auto_now or self.auto_now_add


# =============================================================================
# Relations
# =============================================================================


class RelationKind(str, Enum):
    """Types of relationships between entities."""

    MANY_TO_ONE = "many_to_one"
    ONE_TO_MANY = "one_to_many"


class OnDeleteAction(str, Enum):
    """Actions to take when a referenced row is deleted."""

    RESTRICT = "restrict"
    CASCADE = "cascade"
    SET_NULL = "set_null"


class RelationSpec(BaseModel):
    """
    Relationship between entities.

    Examples:
        - Todo belongs to User (FK todo.owner_id):
          RelationSpec(name="owner", from_entity="Todo", to_entity="User",
                       kind="many_to_one", foreign_key="owner_id")
        - User has many Todos (reverse side):
          RelationSpec(name="todos", from_entity="User", to_entity="Todo",
                       kind="one_to_many", foreign_key="owner_id")
    """

    name: str = Field(description="Relation name")
    from_entity: str = Field(description="Source entity")
    to_entity: str = Field(description="Target entity")
    kind: RelationKind = Field(description="Relationship type")
    foreign_key: str = Field(description="FK column (on the many side)")
    on_delete: OnDeleteAction = Field(
        default=OnDeleteAction.RESTRICT, description="Action on delete"
    )

    model_config = ConfigDict(frozen=True)

    @property
    def is_to_one(self) -> bool:
        return self.kind == RelationKind.MANY_TO_ONE


# =============================================================================
# Entities
# =============================================================================


class EntitySpec(BaseModel):
    """
    Entity specification.

    An entity represents a model with fields and relationships.

    Example:
        EntitySpec(
            name="Todo",
            table="Todo",
            resource="todos",
            fields=[
                FieldSpec(name="id", type=FieldType(kind="scalar", scalar_type=ScalarType.UUID),
                          required=True, primary_key=True),
                FieldSpec(name="text", type=FieldType(kind="scalar", scalar_type=ScalarType.STR)),
            ],
        )
    """

    name: str = Field(description="Entity name")
    label: str | None = Field(default=None, description="Human-readable label")
    description: str | None = Field(default=None, description="Entity description")
    table: str = Field(description="Database table name")
    resource: str = Field(description="API resource path segment")
    fields: list[FieldSpec] = Field(default_factory=list, description="Entity fields")
    relations: list[RelationSpec] = Field(
        default_factory=list, description="Entity relationships"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("name", "table")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure entity and table names are valid identifiers."""
        if not v.isidentifier():
            raise ValueError(f"Entity name '{v}' must be a valid identifier")
        return v

    def get_field(self, name: str) -> FieldSpec | None:
        """Get field by name."""
        for field in self.fields:
            if field.name == name:
                return field
        return None

    def get_relation(self, name: str) -> RelationSpec | None:
        """Get relation by name."""
        for relation in self.relations:
            if relation.name == name:
                return relation
        return None

    @property
    def primary_key(self) -> FieldSpec:
        """The primary key field."""
        for field in self.fields:
            if field.primary_key:
                return field
        raise ValueError(f"Entity {self.name} has no primary key")

    @property
    def column_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def ref_fields(self) -> list[FieldSpec]:
        return [f for f in self.fields if f.type.kind == "ref"]
