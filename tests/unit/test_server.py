"""Tests for the generated REST API and server registration."""

from __future__ import annotations

from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from miles import DecimalField, ForeignKey, Model, Server, StringField, create_app
from miles.core.errors import RegistrationError
from miles.core.manifest import MilesConfig


def _add_todo(client: TestClient, **data) -> dict:
    response = client.post("/api/todos", json=data)
    assert response.status_code == 201, response.text
    return response.json()


class TestRegistration:
    def test_duplicate_model(self, todo_model) -> None:
        server = Server()
        server.register_model(todo_model)
        with pytest.raises(RegistrationError, match="already registered"):
            server.register_model(todo_model)

    def test_path_clash(self, user_model, todo_model) -> None:
        server = Server()
        server.register_model(user_model, path="things")
        with pytest.raises(RegistrationError, match="already used by User"):
            server.register_model(todo_model, path="/things/")

    def test_register_after_build(self, user_model, todo_model) -> None:
        server = Server(MilesConfig())
        server.config.database.path = Path(":memory:")
        server.register_models(user_model, todo_model)
        server.build()

        class Late(Model):
            name = StringField()

        with pytest.raises(RegistrationError, match="already built"):
            server.register_model(Late)

    def test_build_without_models(self) -> None:
        with pytest.raises(RegistrationError, match="No models"):
            Server().build()

    def test_build_is_cached(self, user_model) -> None:
        server = Server()
        server.config.database.path = Path(":memory:")
        server.register_model(user_model)
        assert server.build() is server.build()

    def test_custom_path_and_read_only(self, user_model, todo_model) -> None:
        server = Server()
        server.config.database.path = Path(":memory:")
        server.register_model(user_model, read_only=True)
        server.register_model(todo_model, path="tasks")

        with TestClient(server.build()) as client:
            assert client.get("/api/tasks").status_code == 200
            assert client.get("/api/todos").status_code == 404
            assert client.get("/api/users").status_code == 200
            response = client.post("/api/users", json={"name": "Ada", "email": "a@b.co"})
            assert response.status_code == 405

    def test_migrations_run_on_build(self, db_path: Path, user_model, todo_model) -> None:
        server = Server()
        server.config.database.path = db_path
        server.register_models(user_model, todo_model)
        server.build()

        assert db_path.exists()
        assert server.last_migration is not None
        assert len(server.last_migration.executed) == 4


class TestCreate:
    def test_create(self, client: TestClient, user: dict) -> None:
        todo = _add_todo(client, text="milk", owner_id=user["id"])
        assert todo["text"] == "milk"
        assert todo["done"] is False
        assert todo["status"] == "todo"
        assert todo["owner_id"] == user["id"]
        assert todo["created_at"] is not None

    def test_client_cannot_choose_id(self, client: TestClient) -> None:
        chosen = str(uuid4())
        todo = _add_todo(client, id=chosen, text="milk")
        assert todo["id"] != chosen

    def test_missing_required_field(self, client: TestClient) -> None:
        response = client.post("/api/todos", json={"done": True})
        assert response.status_code == 422
        body = response.json()
        assert body["type"] == "validation_error"
        assert body["detail"][0]["field"] == "text"

    def test_invalid_enum(self, client: TestClient) -> None:
        response = client.post("/api/todos", json={"text": "milk", "status": "later"})
        assert response.status_code == 422

    def test_unique_conflict(self, client: TestClient, user: dict) -> None:
        response = client.post("/api/users", json={"name": "Eve", "email": user["email"]})
        assert response.status_code == 409
        assert response.json()["type"] == "conflict"

    def test_unknown_owner(self, client: TestClient) -> None:
        response = client.post("/api/todos", json={"text": "milk", "owner_id": str(uuid4())})
        assert response.status_code == 409


class TestRead:
    def test_get(self, client: TestClient) -> None:
        todo = _add_todo(client, text="milk")
        response = client.get(f"/api/todos/{todo['id']}")
        assert response.status_code == 200
        assert response.json() == todo

    def test_not_found(self, client: TestClient) -> None:
        response = client.get(f"/api/todos/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["type"] == "not_found"

    def test_malformed_id(self, client: TestClient) -> None:
        assert client.get("/api/todos/not-a-uuid").status_code == 422

    def test_include_owner(self, client: TestClient, user: dict) -> None:
        todo = _add_todo(client, text="milk", owner_id=user["id"])
        body = client.get(f"/api/todos/{todo['id']}", params={"include": "owner"}).json()
        assert body["owner"]["name"] == "Ada"

    def test_include_back_relation(self, client: TestClient, user: dict) -> None:
        _add_todo(client, text="milk", owner_id=user["id"])
        _add_todo(client, text="eggs", owner_id=user["id"])
        body = client.get(f"/api/users/{user['id']}", params={"include": "todos"}).json()
        assert [t["text"] for t in body["todos"]] == ["milk", "eggs"]

    def test_unknown_include(self, client: TestClient) -> None:
        response = client.get("/api/todos", params={"include": "tags"})
        assert response.status_code == 400
        assert response.json()["type"] == "query_error"


class TestList:
    @pytest.fixture
    def seeded(self, client: TestClient, user: dict) -> dict:
        _add_todo(client, text="milk", priority=1, owner_id=user["id"])
        _add_todo(client, text="eggs", priority=3, done=True)
        _add_todo(client, text="bread", priority=2, status="doing")
        return user

    def test_envelope(self, client: TestClient, seeded: dict) -> None:
        body = client.get("/api/todos").json()
        assert [t["text"] for t in body["items"]] == ["milk", "eggs", "bread"]
        assert (body["total"], body["page"], body["page_size"]) == (3, 1, 20)

    def test_filters(self, client: TestClient, seeded: dict) -> None:
        def texts(**params) -> list[str]:
            return [t["text"] for t in client.get("/api/todos", params=params).json()["items"]]

        assert texts(done="false") == ["milk", "bread"]
        assert texts(priority__gte="2") == ["eggs", "bread"]
        assert texts(status__in="todo,doing") == ["milk", "bread"]
        assert texts(owner_id=seeded["id"]) == ["milk"]
        assert texts(owner_id__isnull="true") == ["eggs", "bread"]
        assert texts(filter="done=false,priority__lt=2") == ["milk"]

    def test_sort(self, client: TestClient, seeded: dict) -> None:
        body = client.get("/api/todos", params={"sort": "-priority"}).json()
        assert [t["priority"] for t in body["items"]] == [3, 2, 1]

    def test_paging_is_clamped(self, client: TestClient, seeded: dict) -> None:
        body = client.get("/api/todos", params={"page": 0, "page_size": 5000}).json()
        assert (body["page"], body["page_size"]) == (1, 1000)

        body = client.get("/api/todos", params={"page": 2, "page_size": 2}).json()
        assert [t["text"] for t in body["items"]] == ["bread"]
        assert body["total"] == 3

    def test_unknown_filter_field(self, client: TestClient) -> None:
        response = client.get("/api/todos", params={"colour": "red"})
        assert response.status_code == 400
        assert "colour" in response.json()["detail"]

    def test_filter_across_relation(self, client: TestClient) -> None:
        response = client.get("/api/todos", params={"owner__name__eq": "Ada"})
        assert response.status_code == 400

    @pytest.mark.parametrize("text", ["no", "007", "1.50", "null", "true"])
    def test_text_values_are_not_guessed(self, client: TestClient, text: str) -> None:
        _add_todo(client, text=text)
        _add_todo(client, text="other")

        for params in ({"text": text}, {"filter": f"text={text}"}):
            body = client.get("/api/todos", params=params).json()
            assert [t["text"] for t in body["items"]] == [text]

    def test_typed_values_still_parse(self, client: TestClient, seeded: dict) -> None:
        body = client.get("/api/todos", params={"done": "yes", "priority": "003"}).json()
        assert [t["text"] for t in body["items"]] == ["eggs"]

    def test_invalid_typed_value(self, client: TestClient) -> None:
        response = client.get("/api/todos", params={"priority__gt": "high"})
        assert response.status_code == 400
        assert response.json()["type"] == "query_error"

    def test_pattern_operators_are_case_sensitive(
        self, client: TestClient, seeded: dict
    ) -> None:
        def count(**params) -> int:
            return client.get("/api/todos", params=params).json()["total"]

        assert count(text__contains="ILK") == 0
        assert count(text__contains="ilk") == 1
        assert count(text__icontains="ILK") == 1
        assert count(text__startswith="Br") == 0
        assert count(text__istartswith="Br") == 1
        assert count(text__endswith="GGS") == 0
        assert count(text__iendswith="GGS") == 1

    def test_pattern_wildcards_match_literally(self, client: TestClient) -> None:
        _add_todo(client, text="50% off")
        _add_todo(client, text="500 off")
        _add_todo(client, text="a_b")
        _add_todo(client, text="axb")

        def texts(**params) -> list[str]:
            return [t["text"] for t in client.get("/api/todos", params=params).json()["items"]]

        assert texts(text__icontains="0%") == ["50% off"]
        assert texts(text__istartswith="a_") == ["a_b"]
        assert texts(text__contains="*") == []
        assert texts(text__endswith="_b") == ["a_b"]


class TestUpdate:
    def test_patch(self, client: TestClient) -> None:
        todo = _add_todo(client, text="milk", priority=4)
        response = client.patch(f"/api/todos/{todo['id']}", json={"done": True})
        assert response.status_code == 200
        body = response.json()
        assert body["done"] is True
        assert body["priority"] == 4
        assert body["created_at"] == todo["created_at"]

    def test_patch_null_on_required_field(self, client: TestClient) -> None:
        todo = _add_todo(client, text="milk")
        response = client.patch(f"/api/todos/{todo['id']}", json={"text": None})
        assert response.status_code == 422
        assert response.json()["detail"][0]["field"] == "text"

    def test_put_replaces(self, client: TestClient) -> None:
        todo = _add_todo(client, text="milk", priority=4, done=True)
        response = client.put(f"/api/todos/{todo['id']}", json={"text": "eggs"})
        assert response.status_code == 200
        body = response.json()
        assert (body["text"], body["priority"], body["done"]) == ("eggs", 0, False)

    def test_put_requires_required_fields(self, client: TestClient) -> None:
        todo = _add_todo(client, text="milk")
        response = client.put(f"/api/todos/{todo['id']}", json={"done": True})
        assert response.status_code == 422

    def test_update_missing(self, client: TestClient) -> None:
        response = client.patch(f"/api/todos/{uuid4()}", json={"done": True})
        assert response.status_code == 404


class TestDelete:
    def test_delete(self, client: TestClient) -> None:
        todo = _add_todo(client, text="milk")
        assert client.delete(f"/api/todos/{todo['id']}").status_code == 204
        assert client.get(f"/api/todos/{todo['id']}").status_code == 404
        assert client.delete(f"/api/todos/{todo['id']}").status_code == 404

    def test_cascade(self, client: TestClient, user: dict) -> None:
        _add_todo(client, text="milk", owner_id=user["id"])
        assert client.delete(f"/api/users/{user['id']}").status_code == 204
        assert client.get("/api/todos").json()["total"] == 0

    def test_restrict(self) -> None:
        class Team(Model):
            name = StringField(required=True)

        class Member(Model):
            team = ForeignKey(Team)

        with TestClient(create_app([Team, Member], db_path=":memory:")) as client:
            team = client.post("/api/teams", json={"name": "core"}).json()
            client.post("/api/members", json={"team_id": team["id"]})
            response = client.delete(f"/api/teams/{team['id']}")
            assert response.status_code == 409

    def test_set_null(self) -> None:
        class Folder(Model):
            name = StringField(required=True)

        class Note(Model):
            title = StringField(required=True)
            folder = ForeignKey(Folder, on_delete="set_null")

        with TestClient(create_app([Folder, Note], db_path=":memory:")) as client:
            folder = client.post("/api/folders", json={"name": "inbox"}).json()
            note = client.post(
                "/api/notes", json={"title": "call", "folder_id": folder["id"]}
            ).json()

            assert client.delete(f"/api/folders/{folder['id']}").status_code == 204

            kept = client.get(f"/api/notes/{note['id']}")
            assert kept.status_code == 200
            assert kept.json()["folder_id"] is None
            listed = client.get("/api/notes", params={"folder_id__isnull": "true"}).json()
            assert [n["title"] for n in listed["items"]] == ["call"]


class TestDecimal:
    def test_decimal_is_a_json_number(self) -> None:
        class Invoice(Model):
            amount = DecimalField(precision=10, scale=2)

        with TestClient(create_app([Invoice], db_path=":memory:")) as client:
            response = client.post("/api/invoices", json={"amount": "12.50"})
            assert response.status_code == 201
            created = response.json()
            assert created["amount"] == 12.5
            assert isinstance(created["amount"], float)

            listed = client.get("/api/invoices", params={"amount__gte": "12.5"}).json()
            assert listed["items"][0]["amount"] == 12.5


class TestSystemRoutes:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "healthy", "app": "miles_app"}

    def test_spec(self, client: TestClient) -> None:
        spec = client.get("/_miles/spec").json()
        assert [e["name"] for e in spec["entities"]] == ["User", "Todo"]

    def test_schema(self, client: TestClient) -> None:
        schema = client.get("/_miles/schema").json()["schema"]
        assert 'CREATE TABLE IF NOT EXISTS "Todo"' in schema

    def test_db_info(self, client: TestClient) -> None:
        info = client.get("/_miles/db-info").json()
        assert info["database_path"] == ":memory:"
        assert {"User", "Todo"} <= set(info["tables"])
        assert info["last_migration"]["steps_executed"] == 4

    def test_frontend_log(self, client: TestClient) -> None:
        response = client.post(
            "/_miles/log",
            json={"level": "error", "message": "boom", "line": 3, "url": "http://x/todos"},
        )
        assert response.status_code == 202
        assert response.json() == {"status": "logged"}

    def test_frontend_log_needs_message(self, client: TestClient) -> None:
        assert client.post("/_miles/log", json={"level": "error"}).status_code == 422

    def test_openapi_lists_resources(self, client: TestClient) -> None:
        paths = client.get("/openapi.json").json()["paths"]
        assert {"/api/todos", "/api/todos/{id}", "/api/users", "/api/users/{id}"} <= set(paths)
