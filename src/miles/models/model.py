"""
Model base class and the process-wide model registry.

Declaring a subclass of Model collects its fields, injects an ``id``
primary key when none is declared, and registers the class by name so
ForeignKey targets given as strings can be resolved later.
"""

from __future__ import annotations

import re
from typing import Any, ClassVar

import pydantic

from miles.core.errors import ModelDefinitionError, ValidationError
from miles.core.logging import get_logger
from miles.models.fields import Field, ForeignKey, IDField

logger = get_logger("Models")


# =============================================================================
# Naming helpers
# =============================================================================


def snake_case(name: str) -> str:
    """TodoItem -> todo_item"""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


def pluralize(word: str) -> str:
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def resource_name(model_name: str) -> str:
    """TodoItem -> todo_items"""
    return pluralize(snake_case(model_name))


# =============================================================================
# Registry
# =============================================================================


class ModelRegistry:
    """Name -> Model class lookup for every declared model.

    ``version`` changes whenever the set of models does.
    """

    def __init__(self) -> None:
        self._models: dict[str, type[Model]] = {}
        self.version = 0

    def register(self, model_cls: type[Model]) -> None:
        name = model_cls.__name__
        if name in self._models and self._models[name] is not model_cls:
            logger.warning(f"Model '{name}' redeclared; replacing previous definition")
        self._models[name] = model_cls
        self.version += 1

    def get(self, name: str) -> type[Model] | None:
        return self._models.get(name)

    def resolve(self, target: type[Model] | str) -> type[Model]:
        """
        Resolve a ForeignKey target to a Model class.

        Raises:
            ModelDefinitionError: If a named target was never declared
        """
        if not isinstance(target, str):
            return target
        model_cls = self._models.get(target)
        if model_cls is None:
            raise ModelDefinitionError(f"Unknown model '{target}'")
        return model_cls

    def all(self) -> list[type[Model]]:
        return list(self._models.values())

    def clear(self) -> None:
        self._models.clear()
        self.version += 1

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __len__(self) -> int:
        return len(self._models)


registry = ModelRegistry()


# =============================================================================
# Model
# =============================================================================


class Model:
    """
    Base class for declared models.

    Class attributes:
        __tablename__: Table name (default: class name)
        __resource__: API resource segment (default: snake-case plural)
        __abstract__: Set on a base class to share fields without registering it
    """

    __tablename__: ClassVar[str | None] = None
    __resource__: ClassVar[str | None] = None
    __abstract__: ClassVar[bool] = True

    _fields: ClassVar[dict[str, Field]] = {}
    _columns: ClassVar[dict[str, Field]] = {}
    _pk: ClassVar[str] = "id"
    _table: ClassVar[str] = ""
    _resource: ClassVar[str] = ""
    _schema_cache: ClassVar[type[pydantic.BaseModel] | None] = None
    _relation_cache: ClassVar[tuple[int, frozenset[str]] | None] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        fields: dict[str, Field] = {}
        for base in reversed(cls.__mro__[1:]):
            if issubclass(base, Model):
                fields.update(base.__dict__.get("_fields", {}))
        for name, value in list(cls.__dict__.items()):
            if isinstance(value, Field):
                fields[name] = value

        id_fields = [f for f in fields.values() if isinstance(f, IDField)]
        if len(id_fields) > 1:
            names = ", ".join(f.name for f in id_fields)
            raise ModelDefinitionError(f"{cls.__name__} declares more than one IDField: {names}")
        if not id_fields:
            id_field = IDField()
            id_field.__set_name__(cls, "id")
            cls.id = id_field  # type: ignore[attr-defined]
            fields = {"id": id_field, **fields}
            id_fields = [id_field]

        columns: dict[str, Field] = {}
        for field in fields.values():
            if field.column in columns:
                raise ModelDefinitionError(
                    f"{cls.__name__}: column '{field.column}' declared twice"
                )
            columns[field.column] = field
            if field.column != field.name:
                # expose the FK column name as an alias of the same descriptor
                setattr(cls, field.column, field)

        cls._fields = fields
        cls._columns = columns
        cls._pk = id_fields[0].column
        cls._table = cls.__dict__.get("__tablename__") or cls.__name__
        cls._resource = cls.__dict__.get("__resource__") or resource_name(cls.__name__)
        cls._schema_cache = None
        cls._relation_cache = None

        if not cls.__dict__.get("__abstract__", False):
            registry.register(cls)

    def __init__(self, **values: Any):
        self._values: dict[str, Any] = {}
        self._related: dict[str, Any] = {}

        unknown = [k for k in values if k not in self._fields and k not in self._columns]
        if unknown:
            raise ValidationError(
                f"Unknown field(s) for {type(self).__name__}: {', '.join(unknown)}",
                [{"field": k, "message": "unknown field"} for k in unknown],
            )

        data: dict[str, Any] = {}
        for name, field in self._fields.items():
            if name in values:
                data[field.column] = values[name]
            elif field.column in values:
                data[field.column] = values[field.column]
            elif field.has_default:
                data[field.column] = field.get_default()

        self._values = self._validate_values(data)

    # -------------------------------------------------------------------------
    # Class-level introspection
    # -------------------------------------------------------------------------

    @classmethod
    def fields(cls) -> dict[str, Field]:
        """Declared fields by attribute name, in declaration order."""
        return dict(cls._fields)

    @classmethod
    def columns(cls) -> dict[str, Field]:
        """Declared fields by storage column name."""
        return dict(cls._columns)

    @classmethod
    def pk_name(cls) -> str:
        return cls._pk

    @classmethod
    def table_name(cls) -> str:
        return cls._table

    @classmethod
    def resource(cls) -> str:
        return cls._resource

    @classmethod
    def foreign_keys(cls) -> list[ForeignKey]:
        return [f for f in cls._fields.values() if isinstance(f, ForeignKey)]

    @classmethod
    def relation_names(cls) -> set[str]:
        """Names usable with include(): own FKs plus back relations from registered models."""
        from miles.converters.model_converter import relation_names

        cached = cls._relation_cache
        if cached is not None and cached[0] == registry.version:
            return set(cached[1])

        models = registry.all()
        if cls not in models:
            models.append(cls)
        names = relation_names(cls, models)
        cls._relation_cache = (registry.version, frozenset(names))
        return names

    @classmethod
    def entity_spec(cls):
        """Derived EntitySpec (forward relations only)."""
        from miles.converters.model_converter import model_to_entity

        return model_to_entity(cls)

    @classmethod
    def pydantic_schema(cls) -> type[pydantic.BaseModel]:
        """Generated pydantic model used for validation and serialization."""
        if cls._schema_cache is None:
            from miles.runtime.model_generator import generate_entity_model

            cls._schema_cache = generate_entity_model(cls.entity_spec())
        return cls._schema_cache

    @classmethod
    def _validate_values(cls, data: dict[str, Any]) -> dict[str, Any]:
        try:
            validated = cls.pydantic_schema().model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError.from_pydantic(cls.__name__, e) from e
        return validated.model_dump()

    # -------------------------------------------------------------------------
    # Instance API
    # -------------------------------------------------------------------------

    @property
    def pk(self) -> Any:
        return self._values.get(self._pk)

    def validate(self) -> None:
        """Re-validate current values (after attribute assignment)."""
        self._values = self._validate_values(dict(self._values))

    def related(self, name: str) -> Any:
        """Relation data loaded with include(); None if it was not loaded."""
        return self._related.get(name)

    def to_dict(self, include_related: bool = False) -> dict[str, Any]:
        """JSON-compatible dict keyed by column name."""
        schema = self.pydantic_schema()
        data = schema.model_construct(**self._values).model_dump(mode="json")
        if include_related:
            for name, value in self._related.items():
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Model:
        """Build an instance from a server row, keeping included relations aside."""
        relations = cls.relation_names()
        values = {k: v for k, v in data.items() if k not in relations}
        instance = cls(**values)
        instance._related = {k: v for k, v in data.items() if k in relations}
        return instance

    def copy(self) -> Model:
        clone = type(self).__new__(type(self))
        clone._values = dict(self._values)
        clone._related = dict(self._related)
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Model):
            return NotImplemented
        return type(self) is type(other) and self.pk == other.pk

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.pk))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._pk}={self.pk}>"
