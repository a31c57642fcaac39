"""
Project manifest (miles.toml) loading.

Example miles.toml:

    [project]
    name = "todos"
    version = "0.1.0"
    models = ["todos.models"]

    [database]
    path = ".miles/data.db"

    [server]
    port = 8080
    cors_origins = ["http://localhost:5173"]

Environment variables override the file:
MILES_DB_PATH, MILES_LOG_LEVEL, MILES_API_PREFIX, MILES_HOST, MILES_PORT.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from miles.core.errors import ConfigError

MANIFEST_NAME = "miles.toml"


@dataclass
class ProjectConfig:
    """Project identity and model modules."""

    name: str = "miles_app"
    version: str = "0.1.0"
    models: list[str] = field(default_factory=list)


@dataclass
class DatabaseConfig:
    """SQLite database settings."""

    path: Path = field(default_factory=lambda: Path(".miles/data.db"))
    auto_migrate: bool = True


@dataclass
class ServerConfig:
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 8000
    api_prefix: str = "/api"
    cors_origins: list[str] = field(default_factory=list)


@dataclass
class ClientConfig:
    """Client binding generation settings."""

    output_dir: Path = field(default_factory=lambda: Path("frontend"))
    api_url: str = "http://localhost:8000/api"


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    dir: Path = field(default_factory=lambda: Path(".miles/logs"))


@dataclass
class MilesConfig:
    """Complete Miles configuration."""

    project: ProjectConfig = field(default_factory=ProjectConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    root: Path = field(default_factory=Path.cwd)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _expect(value: Any, kind: type | tuple[type, ...], key: str) -> Any:
    # bool is an int subclass; reject it where an int is expected
    if isinstance(value, bool) and kind is int:
        raise ConfigError(f"{key} must be an integer")
    if not isinstance(value, kind):
        expected = kind.__name__ if isinstance(kind, type) else "/".join(k.__name__ for k in kind)
        raise ConfigError(f"{key} must be of type {expected}, got {type(value).__name__}")
    return value


def _str_list(value: Any, key: str) -> list[str]:
    _expect(value, list, key)
    for item in value:
        _expect(item, str, key)
    return list(value)


def parse_manifest(data: dict[str, Any], root: Path | None = None) -> MilesConfig:
    """
    Build a MilesConfig from parsed TOML data.

    Args:
        data: Parsed miles.toml contents
        root: Project root; relative paths are resolved against it

    Returns:
        MilesConfig with file values applied (no env overrides)
    """
    config = MilesConfig(root=root or Path.cwd())

    project = _section(data, "project")
    if "name" in project:
        config.project.name = _expect(project["name"], str, "project.name")
    if "version" in project:
        config.project.version = _expect(project["version"], str, "project.version")
    if "models" in project:
        config.project.models = _str_list(project["models"], "project.models")

    database = _section(data, "database")
    if "path" in database:
        config.database.path = Path(_expect(database["path"], str, "database.path"))
    if "auto_migrate" in database:
        config.database.auto_migrate = _expect(
            database["auto_migrate"], bool, "database.auto_migrate"
        )

    server = _section(data, "server")
    if "host" in server:
        config.server.host = _expect(server["host"], str, "server.host")
    if "port" in server:
        config.server.port = _expect(server["port"], int, "server.port")
    if "api_prefix" in server:
        config.server.api_prefix = _normalize_prefix(
            _expect(server["api_prefix"], str, "server.api_prefix")
        )
    if "cors_origins" in server:
        config.server.cors_origins = _str_list(server["cors_origins"], "server.cors_origins")

    client = _section(data, "client")
    if "output_dir" in client:
        config.client.output_dir = Path(_expect(client["output_dir"], str, "client.output_dir"))
    if "api_url" in client:
        config.client.api_url = _expect(client["api_url"], str, "client.api_url")

    log = _section(data, "logging")
    if "level" in log:
        config.logging.level = _expect(log["level"], str, "logging.level").upper()
    if "dir" in log:
        config.logging.dir = Path(_expect(log["dir"], str, "logging.dir"))

    return config


def _normalize_prefix(prefix: str) -> str:
    prefix = prefix.strip()
    if not prefix or prefix == "/":
        return ""
    if not prefix.startswith("/"):
        prefix = "/" + prefix
    return prefix.rstrip("/")


def apply_env_overrides(config: MilesConfig, environ: dict[str, str] | None = None) -> MilesConfig:
    """Apply MILES_* environment variables on top of a config."""
    env = os.environ if environ is None else environ

    if value := env.get("MILES_DB_PATH"):
        config.database.path = Path(value)
    if value := env.get("MILES_LOG_LEVEL"):
        config.logging.level = value.upper()
    if (value := env.get("MILES_API_PREFIX")) is not None:
        config.server.api_prefix = _normalize_prefix(value)
    if value := env.get("MILES_HOST"):
        config.server.host = value
    if value := env.get("MILES_PORT"):
        try:
            config.server.port = int(value)
        except ValueError as e:
            raise ConfigError(f"MILES_PORT must be an integer, got {value!r}") from e

    return config


def load_manifest(
    path: Path | str | None = None,
    environ: dict[str, str] | None = None,
) -> MilesConfig:
    """
    Load miles.toml and apply environment overrides.

    Args:
        path: Path to miles.toml or its directory (default: ./miles.toml)
        environ: Environment mapping (default: os.environ)

    Returns:
        MilesConfig; defaults when the manifest does not exist

    Raises:
        ConfigError: If the file is not valid TOML or has invalid values
    """
    manifest_path = Path(path) if path else Path.cwd() / MANIFEST_NAME
    if manifest_path.is_dir():
        manifest_path = manifest_path / MANIFEST_NAME

    root = manifest_path.parent.resolve()

    if manifest_path.exists():
        try:
            data = tomllib.loads(manifest_path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid {manifest_path.name}: {e}") from e
        config = parse_manifest(data, root=root)
    else:
        config = MilesConfig(root=root)

    config = apply_env_overrides(config, environ)

    if not config.database.path.is_absolute() and str(config.database.path) != ":memory:":
        config.database.path = root / config.database.path
    if not config.logging.dir.is_absolute():
        config.logging.dir = root / config.logging.dir
    if not config.client.output_dir.is_absolute():
        config.client.output_dir = root / config.client.output_dir

    return config
