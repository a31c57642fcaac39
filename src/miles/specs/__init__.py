"""
Framework-agnostic specifications derived from Model declarations.
"""

from miles.specs.app import AppSpec
from miles.specs.entity import (
    EntitySpec,
    FieldSpec,
    FieldType,
    OnDeleteAction,
    RelationKind,
    RelationSpec,
    ScalarType,
)

__all__ = [
    "AppSpec",
    "EntitySpec",
    "FieldSpec",
    "FieldType",
    "OnDeleteAction",
    "RelationKind",
    "RelationSpec",
    "ScalarType",
]
