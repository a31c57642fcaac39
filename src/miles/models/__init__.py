"""
Model declarations: the single source for schema, API and client bindings.
"""

from miles.models.fields import (
    BooleanField,
    DateField,
    DateTimeField,
    DecimalField,
    EmailField,
    EnumField,
    Field,
    FloatField,
    ForeignKey,
    IDField,
    IntegerField,
    JSONField,
    StringField,
    TextField,
)
from miles.models.model import Model, ModelRegistry, registry, resource_name, snake_case

__all__ = [
    "BooleanField",
    "DateField",
    "DateTimeField",
    "DecimalField",
    "EmailField",
    "EnumField",
    "Field",
    "FloatField",
    "ForeignKey",
    "IDField",
    "IntegerField",
    "JSONField",
    "Model",
    "ModelRegistry",
    "StringField",
    "TextField",
    "registry",
    "resource_name",
    "snake_case",
]
