"""Core Miles functionality: errors, manifest loading, logging."""

from .errors import (
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
from .manifest import MilesConfig, load_manifest

__all__ = [
    "MilesError",
    "ModelDefinitionError",
    "ValidationError",
    "RegistrationError",
    "MigrationError",
    "NotFoundError",
    "QueryError",
    "ConfigError",
    "ApiError",
    "MilesConfig",
    "load_manifest",
]
