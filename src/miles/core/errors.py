"""
Error types for Miles model declaration, persistence, and the API layer.
"""

from __future__ import annotations

from typing import Any


class MilesError(Exception):
    """Base exception for all Miles errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ModelDefinitionError(MilesError):
    """
    Raised when a Model class declaration is invalid.

    Examples:
    - Two primary key fields on one model
    - ForeignKey pointing at an unregistered model
    - EnumField without choices
    """

    pass


class ValidationError(MilesError):
    """
    Raised when model values or request payloads fail validation.

    Attributes:
        errors: Field-level error entries ({"field": ..., "message": ...})
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        self.errors = errors or []
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, model_name: str, exc: Any) -> ValidationError:
        """Build from a pydantic ValidationError."""
        errors = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()))
            errors.append({"field": loc, "message": err.get("msg", "invalid value")})
        fields = ", ".join(e["field"] for e in errors if e["field"])
        return cls(f"Invalid {model_name}: {fields or 'validation failed'}", errors)


class RegistrationError(MilesError):
    """
    Raised when models are registered with a server incorrectly.

    Examples:
    - Registering the same model twice
    - Registering after the application was built
    - Two models claiming one resource path
    """

    pass


class MigrationError(MilesError):
    """Raised when a migration step fails to execute."""

    pass


class NotFoundError(MilesError):
    """Raised when an entity row does not exist."""

    def __init__(self, entity: str, id: Any):
        self.entity = entity
        self.id = id
        super().__init__(f"{entity} {id} not found")


class QueryError(MilesError):
    """Raised for invalid filter, sort, or include expressions."""

    pass


class ConfigError(MilesError):
    """Raised when miles.toml or an environment override is invalid."""

    pass


class ApiError(MilesError):
    """
    Raised by the client when the server answers with a non-2xx status.

    Attributes:
        status: HTTP status code
        detail: Decoded error detail from the response body
    """

    def __init__(self, status: int, detail: Any, error_type: str | None = None):
        self.status = status
        self.detail = detail
        self.error_type = error_type
        super().__init__(f"HTTP {status}: {detail}")
