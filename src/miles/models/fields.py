"""
Field declarations for Miles models.

Each field is a descriptor: on the class it is the declaration, on an
instance it reads and writes the stored value.

    class Todo(Model):
        text = StringField(required=True)
        done = BooleanField(default=False)
        owner = ForeignKey("User", on_delete="cascade")
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from miles.core.errors import ModelDefinitionError
from miles.specs.entity import FieldType, OnDeleteAction, ScalarType

if TYPE_CHECKING:
    from miles.models.model import Model

MISSING: Any = object()


def utcnow() -> datetime:
    return datetime.now(UTC)


class Field:
    """
    Base class for all model fields.

    Args:
        default: Literal value or zero-argument callable
        required: Whether a value must be provided
        unique: Whether values must be unique across rows
        index: Whether to create a database index
        label: Human-readable label
    """

    scalar_type: ScalarType | None = None

    def __init__(
        self,
        *,
        default: Any = MISSING,
        required: bool = False,
        unique: bool = False,
        index: bool = False,
        label: str | None = None,
    ):
        self.default = default
        self.required = required
        self.unique = unique
        self.index = index
        self.label = label
        self.name: str = ""

    def __set_name__(self, owner: type, name: str) -> None:
        if not self.name:
            self.name = name

    def __get__(self, instance: Model | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance._values.get(self.column)

    def __set__(self, instance: Model, value: Any) -> None:
        instance._values[self.column] = value

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    @property
    def column(self) -> str:
        """Storage column name."""
        return self.name

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING

    @property
    def has_callable_default(self) -> bool:
        return self.has_default and callable(self.default)

    def get_default(self) -> Any:
        """Resolve the default, calling it if it is a factory."""
        if callable(self.default):
            return self.default()
        return self.default

    @property
    def primary_key(self) -> bool:
        return False

    @property
    def auto_now(self) -> bool:
        return False

    @property
    def auto_now_add(self) -> bool:
        return False

    def field_type(self) -> FieldType:
        """Spec type for this field."""
        return FieldType(kind="scalar", scalar_type=self.scalar_type)


class IDField(Field):
    """UUID primary key, generated when not supplied."""

    scalar_type = ScalarType.UUID

    def __init__(self, *, label: str | None = None):
        super().__init__(default=uuid.uuid4, required=True, unique=False, label=label)

    @property
    def primary_key(self) -> bool:
        return True


class StringField(Field):
    scalar_type = ScalarType.STR

    def __init__(self, *, max_length: int = 255, **kwargs: Any):
        super().__init__(**kwargs)
        if max_length < 1:
            raise ModelDefinitionError("StringField max_length must be positive")
        self.max_length = max_length

    def field_type(self) -> FieldType:
        return FieldType(kind="scalar", scalar_type=self.scalar_type, max_length=self.max_length)


class TextField(Field):
    scalar_type = ScalarType.TEXT


class IntegerField(Field):
    scalar_type = ScalarType.INT


class FloatField(Field):
    scalar_type = ScalarType.FLOAT


class DecimalField(Field):
    scalar_type = ScalarType.DECIMAL

    def __init__(self, *, precision: int = 10, scale: int = 2, **kwargs: Any):
        super().__init__(**kwargs)
        if scale > precision:
            raise ModelDefinitionError("DecimalField scale cannot exceed precision")
        self.precision = precision
        self.scale = scale

    def field_type(self) -> FieldType:
        return FieldType(
            kind="scalar",
            scalar_type=self.scalar_type,
            precision=self.precision,
            scale=self.scale,
        )


class BooleanField(Field):
    scalar_type = ScalarType.BOOL


class DateField(Field):
    scalar_type = ScalarType.DATE


class DateTimeField(Field):
    """
    Date and time field.

    Args:
        auto_now_add: Stamp with the current UTC time when the row is created
        auto_now: Stamp with the current UTC time on every write
    """

    scalar_type = ScalarType.DATETIME

    def __init__(self, *, auto_now_add: bool = False, auto_now: bool = False, **kwargs: Any):
        super().__init__(**kwargs)
        self._auto_now_add = auto_now_add
        self._auto_now = auto_now

    @property
    def auto_now(self) -> bool:
        return self._auto_now

    @property
    def auto_now_add(self) -> bool:
        return self._auto_now_add


class EmailField(Field):
    scalar_type = ScalarType.EMAIL

    def __init__(self, *, max_length: int = 254, **kwargs: Any):
        super().__init__(**kwargs)
        self.max_length = max_length

    def field_type(self) -> FieldType:
        return FieldType(kind="scalar", scalar_type=self.scalar_type, max_length=self.max_length)


class EnumField(Field):
    """String field restricted to a fixed set of choices."""

    def __init__(self, choices: list[str] | tuple[str, ...], **kwargs: Any):
        super().__init__(**kwargs)
        self.choices = list(choices)
        try:
            self._type = FieldType(kind="enum", enum_values=self.choices)
        except ValueError as e:
            raise ModelDefinitionError(f"Invalid EnumField choices: {e}") from e
        if self.has_default and not callable(self.default) and self.default not in self.choices:
            raise ModelDefinitionError(
                f"EnumField default {self.default!r} is not one of {self.choices}"
            )

    def field_type(self) -> FieldType:
        return self._type


class JSONField(Field):
    scalar_type = ScalarType.JSON


class ForeignKey(Field):
    """
    Reference to another model, stored as the target's id.

    The column is ``<name>_id`` unless the declared name already ends in
    ``_id``. ``to`` may be a Model class or a model name, so models can
    reference each other before both are declared.
    """

    def __init__(
        self,
        to: type[Model] | str,
        *,
        on_delete: OnDeleteAction | str = OnDeleteAction.RESTRICT,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.to = to
        try:
            self.on_delete = OnDeleteAction(on_delete)
        except ValueError as e:
            raise ModelDefinitionError(
                f"on_delete must be one of {[a.value for a in OnDeleteAction]}"
            ) from e
        if self.on_delete == OnDeleteAction.SET_NULL and self.required:
            raise ModelDefinitionError("A required ForeignKey cannot use on_delete='set_null'")

    @property
    def column(self) -> str:
        if self.name.endswith("_id"):
            return self.name
        return f"{self.name}_id"

    @property
    def relation_name(self) -> str:
        if self.name.endswith("_id"):
            return self.name[: -len("_id")]
        return self.name

    @property
    def target_name(self) -> str:
        if isinstance(self.to, str):
            return self.to
        return self.to.__name__

    def field_type(self) -> FieldType:
        return FieldType(kind="ref", ref_entity=self.target_name)
