"""
Miles runtime: schema derivation, migrations, persistence and the FastAPI server.
"""

from miles.runtime.migrations import (
    MigrationExecutor,
    MigrationHistory,
    MigrationPlan,
    MigrationPlanner,
    MigrationResult,
    MigrationStep,
    auto_migrate,
    plan_migrations,
)
from miles.runtime.repository import DatabaseManager, RepositoryFactory, SQLiteRepository
from miles.runtime.schema import create_table_sql, index_sql, render_schema
from miles.runtime.server import Server, create_app, create_app_from_manifest, run_server

__all__ = [
    # Schema
    "create_table_sql",
    "index_sql",
    "render_schema",
    # Migrations
    "MigrationPlanner",
    "MigrationExecutor",
    "MigrationHistory",
    "MigrationPlan",
    "MigrationStep",
    "MigrationResult",
    "auto_migrate",
    "plan_migrations",
    # Persistence
    "DatabaseManager",
    "SQLiteRepository",
    "RepositoryFactory",
    # Server
    "Server",
    "create_app",
    "create_app_from_manifest",
    "run_server",
]
