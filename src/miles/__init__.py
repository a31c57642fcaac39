"""
Miles - declare models once, get a SQLite schema, a REST API and client bindings.

Example:
    from miles import Model, StringField, BooleanField, create_app

    class Todo(Model):
        text = StringField(max_length=200)
        done = BooleanField(default=False)

    app = create_app([Todo], db_path=":memory:")
"""

from __future__ import annotations

from miles._version import __version__
from miles.client import MilesClient, Page, Query, QueryState, QueryStatus, Store
from miles.core.errors import (
    ApiError,
    ConfigError,
    MigrationError,
    MilesError,
    ModelDefinitionError,
    NotFoundError,
    QueryError,
    RegistrationError,
    ValidationError,
)
from miles.models import (
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
    Model,
    StringField,
    TextField,
)
from miles.runtime.server import Server, create_app, create_app_from_manifest

__all__ = [
    "__version__",
    # Models
    "Model",
    "Field",
    "IDField",
    "StringField",
    "TextField",
    "EmailField",
    "IntegerField",
    "FloatField",
    "DecimalField",
    "BooleanField",
    "DateField",
    "DateTimeField",
    "EnumField",
    "JSONField",
    "ForeignKey",
    # Server
    "Server",
    "create_app",
    "create_app_from_manifest",
    # Client
    "MilesClient",
    "Query",
    "Page",
    "Store",
    "QueryState",
    "QueryStatus",
    # Errors
    "MilesError",
    "ModelDefinitionError",
    "ValidationError",
    "RegistrationError",
    "MigrationError",
    "NotFoundError",
    "QueryError",
    "ConfigError",
    "ApiError",
]
