"""Shared pytest fixtures for Miles tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from miles import (
    BooleanField,
    DateTimeField,
    EmailField,
    EnumField,
    ForeignKey,
    IntegerField,
    Model,
    StringField,
    create_app,
)
from miles.core import logging as miles_logging
from miles.models import registry


class User(Model):
    """A person who owns todos."""

    name = StringField(required=True, max_length=100)
    email = EmailField(required=True, unique=True)


class Todo(Model):
    text = StringField(required=True, max_length=200)
    done = BooleanField(default=False)
    priority = IntegerField(default=0, index=True)
    status = EnumField(["todo", "doing", "done"], default="todo")
    owner = ForeignKey(User, on_delete="cascade")
    created_at = DateTimeField(auto_now_add=True)
    updated_at = DateTimeField(auto_now=True)


@pytest.fixture(autouse=True)
def _restore_registry() -> Iterator[None]:
    """Drop models declared inside a test so they don't leak into the next one."""
    saved = registry.all()
    yield
    registry.clear()
    for model_cls in saved:
        registry.register(model_cls)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    root = logging.getLogger("miles")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    miles_logging._log_dir = None


@pytest.fixture
def user_model() -> type[User]:
    return User


@pytest.fixture
def todo_model() -> type[Todo]:
    return Todo


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path for a throwaway SQLite database file."""
    return tmp_path / "data.db"


@pytest.fixture
def app() -> FastAPI:
    """App for User and Todo on an in-memory database."""
    return create_app([User, Todo], db_path=":memory:")


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def user(client: TestClient) -> dict:
    """A stored user."""
    response = client.post("/api/users", json={"name": "Ada", "email": "ada@example.com"})
    assert response.status_code == 201
    return response.json()
