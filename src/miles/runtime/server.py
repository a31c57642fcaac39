"""
Miles server - registers models and assembles the FastAPI application.

Annotations are evaluated eagerly here; FastAPI reads the request body
model off the frontend log route's signature.
"""

import logging
import os
import sqlite3
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import pydantic
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from miles._version import __version__
from miles.converters import build_app_spec
from miles.core.errors import (
    MilesError,
    NotFoundError,
    QueryError,
    RegistrationError,
    ValidationError,
)
from miles.core.logging import get_server_logger, log_frontend_entry, log_with_context
from miles.core.manifest import MilesConfig, load_manifest
from miles.models.model import Model
from miles.runtime.migrations import MigrationResult, auto_migrate
from miles.runtime.model_generator import (
    generate_all_entity_models,
    generate_create_schema,
    generate_list_response_schema,
    generate_update_schema,
)
from miles.runtime.model_loader import load_models, split_modules
from miles.runtime.repository import DatabaseManager, RepositoryFactory, SQLiteRepository
from miles.runtime.route_generator import generate_crud_routes
from miles.runtime.schema import render_schema
from miles.runtime.service_generator import CRUDService
from miles.specs import AppSpec

logger = get_server_logger()


class FrontendLogEntry(BaseModel):
    """Body of POST /_miles/log."""

    level: str = "error"
    message: str
    source: str | None = None
    line: int | None = None
    column: int | None = None
    stack: str | None = None
    url: str | None = None
    extra: dict[str, Any] | None = None


def _field_errors(errors: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """pydantic/FastAPI error dicts -> [{"field", "message"}], dropping the body/query prefix."""
    result = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in ("body", "query", "path"):
            loc = loc[1:]
        result.append({"field": ".".join(loc), "message": err.get("msg", "invalid value")})
    return result


# =============================================================================
# Server
# =============================================================================


class Server:
    """
    Collects Model registrations and builds the FastAPI app.

    Example:
        server = Server(config)
        server.register_model(User)
        server.register_model(Todo, path="tasks")
        app = server.build()
    """

    def __init__(self, config: MilesConfig | None = None):
        self.config = config or MilesConfig()
        self._registered: dict[str, type[Model]] = {}
        self._paths: dict[str, str] = {}
        self._read_only: set[str] = set()

        self._app: FastAPI | None = None
        self._app_spec: AppSpec | None = None
        self._models: dict[str, type[BaseModel]] = {}
        self._schemas: dict[str, dict[str, type[BaseModel]]] = {}
        self._services: dict[str, CRUDService[Any]] = {}
        self._repositories: dict[str, SQLiteRepository[Any]] = {}
        self._db_manager: DatabaseManager | None = None
        self._last_migration: MigrationResult | None = None

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_model(
        self,
        model_cls: type[Model],
        *,
        path: str | None = None,
        read_only: bool = False,
    ) -> type[Model]:
        """
        Register a model for schema generation and API exposure.

        Args:
            model_cls: Model subclass
            path: Resource path segment (default: the model's resource name)
            read_only: Expose only the GET routes

        Returns:
            The model class, so this can be used as a decorator

        Raises:
            RegistrationError: On a duplicate model or path, or after build()
        """
        name = model_cls.__name__
        if self._app is not None:
            raise RegistrationError(f"Cannot register {name}: the app is already built")
        if name in self._registered:
            raise RegistrationError(f"Model {name} is already registered")

        resource = (path or model_cls.resource()).strip("/")
        if not resource:
            raise RegistrationError(f"Empty resource path for {name}")
        for other, other_path in self._paths.items():
            if other_path == resource:
                raise RegistrationError(
                    f"Resource path '/{resource}' of {name} is already used by {other}"
                )

        self._registered[name] = model_cls
        self._paths[name] = resource
        if read_only:
            self._read_only.add(name)
        return model_cls

    def register_models(self, *models: type[Model]) -> None:
        for model_cls in models:
            self.register_model(model_cls)

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build_spec(self) -> AppSpec:
        """AppSpec for the registered models, with registered resource paths applied."""
        app_spec = build_app_spec(
            self._registered.values(),
            name=self.config.project.name,
            version=self.config.project.version,
        )
        entities = [
            e.model_copy(update={"resource": self._paths[e.name]})
            if e.resource != self._paths[e.name]
            else e
            for e in app_spec.entities
        ]
        return app_spec.model_copy(update={"entities": entities})

    def _default_factories(self, model_cls: type[Model]) -> dict[str, Callable[[], Any]]:
        return {
            field.column: field.get_default
            for field in model_cls.fields().values()
            if field.has_callable_default and not field.primary_key
        }

    def build(self) -> FastAPI:
        """
        Build the FastAPI application.

        Returns:
            FastAPI application instance

        Raises:
            ModelDefinitionError: If a ForeignKey targets an unregistered model
            MigrationError: If auto-migration fails
        """
        if self._app is not None:
            return self._app
        if not self._registered:
            raise RegistrationError("No models registered")

        self._app_spec = app_spec = self.build_spec()

        # Generate models and schemas
        self._models = generate_all_entity_models(app_spec.entities)
        for entity in app_spec.entities:
            model_cls = self._registered[entity.name]
            defaulted = set(self._default_factories(model_cls))
            self._schemas[entity.name] = {
                "create": generate_create_schema(entity, defaulted=defaulted),
                "update": generate_update_schema(entity),
                "list": generate_list_response_schema(entity, self._models[entity.name]),
            }

        # Database and migrations
        self._db_manager = DatabaseManager(self.config.database.path)
        if self.config.database.auto_migrate:
            self._last_migration = auto_migrate(self._db_manager, app_spec.entities)

        repo_factory = RepositoryFactory(self._db_manager, self._models, app_spec.entities)
        self._repositories = repo_factory.create_all_repositories(app_spec.entities)

        app = FastAPI(
            title=app_spec.name,
            description=f"Miles API: {app_spec.name}",
            version=app_spec.version,
        )

        if self.config.server.cors_origins:
            app.add_middleware(
                CORSMiddleware,
                allow_origins=self.config.server.cors_origins,
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )

        self._install_exception_handlers(app)

        # Services and routes
        for entity in app_spec.entities:
            schemas = self._schemas[entity.name]
            service: CRUDService[Any] = CRUDService(
                entity=entity,
                model_class=self._models[entity.name],
                create_schema=schemas["create"],
                update_schema=schemas["update"],
                repository=self._repositories[entity.name],
                default_factories=self._default_factories(self._registered[entity.name]),
            )
            self._services[entity.name] = service

            router = generate_crud_routes(
                entity,
                service,
                model=self._models[entity.name],
                create_schema=schemas["create"],
                update_schema=schemas["update"],
                list_schema=schemas["list"],
                read_only=entity.name in self._read_only,
            )
            app.include_router(router, prefix=self.config.server.api_prefix)

        self._add_system_routes(app)

        log_with_context(
            logger,
            logging.INFO,
            f"Built {app_spec.name} with {len(app_spec.entities)} model(s)",
            resources=[f"{self.config.server.api_prefix}/{e.resource}" for e in app_spec.entities],
            database=str(self.config.database.path),
        )

        self._app = app
        return app

    def _install_exception_handlers(self, app: FastAPI) -> None:
        @app.exception_handler(NotFoundError)
        async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
            return JSONResponse(
                status_code=404,
                content={"detail": exc.message, "type": "not_found"},
            )

        @app.exception_handler(ValidationError)
        async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
            """Convert validation errors to 422 Unprocessable Entity with field details."""
            return JSONResponse(
                status_code=422,
                content={"detail": exc.errors or exc.message, "type": "validation_error"},
            )

        @app.exception_handler(RequestValidationError)
        async def request_validation_handler(
            request: Request, exc: RequestValidationError
        ) -> JSONResponse:
            return JSONResponse(
                status_code=422,
                content={"detail": _field_errors(exc.errors()), "type": "validation_error"},
            )

        @app.exception_handler(pydantic.ValidationError)
        async def pydantic_error_handler(
            request: Request, exc: pydantic.ValidationError
        ) -> JSONResponse:
            return JSONResponse(
                status_code=422,
                content={"detail": _field_errors(exc.errors()), "type": "validation_error"},
            )

        @app.exception_handler(QueryError)
        async def query_error_handler(request: Request, exc: QueryError) -> JSONResponse:
            return JSONResponse(
                status_code=400,
                content={"detail": exc.message, "type": "query_error"},
            )

        @app.exception_handler(sqlite3.IntegrityError)
        async def integrity_error_handler(
            request: Request, exc: sqlite3.IntegrityError
        ) -> JSONResponse:
            """Unique and foreign key violations become 409 Conflict."""
            log_with_context(
                logger,
                logging.WARNING,
                "Integrity error",
                method=request.method,
                path=request.url.path,
                error=str(exc),
            )
            return JSONResponse(
                status_code=409,
                content={"detail": str(exc), "type": "conflict"},
            )

        @app.exception_handler(MilesError)
        async def miles_error_handler(request: Request, exc: MilesError) -> JSONResponse:
            return JSONResponse(
                status_code=400,
                content={"detail": exc.message, "type": "error"},
            )

    def _add_system_routes(self, app: FastAPI) -> None:
        app_spec = self._app_spec
        assert app_spec is not None
        db_manager = self._db_manager
        db_path = str(self.config.database.path)

        @app.get("/health", tags=["System"])
        async def health_check() -> dict[str, str]:
            return {"status": "healthy", "app": app_spec.name}

        @app.get("/_miles/spec", tags=["System"])
        async def get_spec() -> dict[str, Any]:
            return app_spec.model_dump(mode="json")

        @app.get("/_miles/schema", tags=["System"])
        async def get_schema() -> dict[str, str]:
            return {"schema": render_schema(app_spec)}

        @app.get("/_miles/db-info", tags=["System"])
        async def db_info() -> dict[str, Any]:
            last = self._last_migration
            return {
                "database_path": db_path,
                "tables": db_manager.get_tables() if db_manager else [],
                "last_migration": last.summary() if last else None,
            }

        @app.post("/_miles/log", tags=["System"], status_code=202)
        async def frontend_log(entry: FrontendLogEntry) -> dict[str, str]:
            log_frontend_entry(
                level=entry.level,
                message=entry.message,
                source=entry.source,
                line=entry.line,
                column=entry.column,
                stack=entry.stack,
                url=entry.url,
                extra=entry.extra,
            )
            return {"status": "logged"}

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def app(self) -> FastAPI | None:
        """The FastAPI application (None if not built)."""
        return self._app

    @property
    def app_spec(self) -> AppSpec | None:
        return self._app_spec

    @property
    def registered(self) -> dict[str, type[Model]]:
        return dict(self._registered)

    @property
    def models(self) -> dict[str, type[BaseModel]]:
        """Generated pydantic read models by entity name."""
        return self._models

    @property
    def services(self) -> dict[str, CRUDService[Any]]:
        return self._services

    @property
    def repositories(self) -> dict[str, SQLiteRepository[Any]]:
        return self._repositories

    @property
    def db_manager(self) -> DatabaseManager | None:
        return self._db_manager

    @property
    def last_migration(self) -> MigrationResult | None:
        return self._last_migration


# =============================================================================
# Convenience Functions
# =============================================================================


def create_app(
    models: Iterable[type[Model]],
    config: MilesConfig | None = None,
    db_path: str | Path | None = None,
) -> FastAPI:
    """
    Build a FastAPI app for the given models.

    Args:
        models: Model classes to register
        config: Configuration (default: MilesConfig())
        db_path: Override for config.database.path (":memory:" works)

    Example:
        >>> app = create_app([User, Todo], db_path=":memory:")
    """
    config = config or MilesConfig()
    if db_path is not None:
        config.database.path = Path(db_path)
    server = Server(config)
    server.register_models(*models)
    return server.build()


def create_app_from_manifest(
    manifest: str | Path | None = None,
    models: str | Iterable[str] | None = None,
) -> FastAPI:
    """
    Build the app described by miles.toml.

    Args:
        manifest: Path to miles.toml or its directory
        models: Model modules, overriding [project].models
    """
    config = load_manifest(manifest)
    modules = split_modules(models) or config.project.models
    model_classes = load_models(modules, root=config.root)
    return create_app(model_classes, config)


def app_factory() -> FastAPI:
    """
    Factory for ``uvicorn --factory``.

    Reads MILES_MANIFEST and MILES_MODELS, so it works in reload workers.
    """
    return create_app_from_manifest(
        os.environ.get("MILES_MANIFEST"),
        os.environ.get("MILES_MODELS"),
    )


def run_server(
    app: FastAPI | str,
    host: str = "127.0.0.1",
    port: int = 8000,
    reload: bool = False,
    factory: bool = False,
) -> None:
    """
    Serve an app with uvicorn.

    Args:
        app: FastAPI app, or an import string (required for reload)
        host: Host to bind to
        port: Port to bind to
        reload: Enable auto-reload (for development)
        factory: Treat the import string as an app factory
    """
    import uvicorn

    logger.info(f"Serving on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, reload=reload, factory=factory)
