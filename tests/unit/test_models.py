"""Tests for Model declarations, fields and the registry."""

from __future__ import annotations

from uuid import UUID, uuid4

import pytest

from miles import (
    BooleanField,
    DateTimeField,
    EnumField,
    ForeignKey,
    IDField,
    Model,
    StringField,
    TextField,
)
from miles.converters import build_app_spec
from miles.core.errors import ModelDefinitionError, ValidationError
from miles.models import registry, resource_name
from miles.specs import OnDeleteAction, RelationKind


class TestNaming:
    """Resource names derived from model names."""

    @pytest.mark.parametrize(
        "model_name,expected",
        [
            ("Todo", "todos"),
            ("TodoItem", "todo_items"),
            ("Category", "categories"),
            ("Box", "boxes"),
            ("Day", "days"),
        ],
    )
    def test_resource_name(self, model_name: str, expected: str) -> None:
        assert resource_name(model_name) == expected

    def test_table_defaults_to_class_name(self, todo_model) -> None:
        assert todo_model.table_name() == "Todo"
        assert todo_model.resource() == "todos"

    def test_overrides(self) -> None:
        class Person(Model):
            __tablename__ = "people"
            __resource__ = "folks"
            name = StringField()

        assert Person.table_name() == "people"
        assert Person.resource() == "folks"


class TestDeclaration:
    """Field collection at class creation."""

    def test_id_is_injected_first(self, todo_model) -> None:
        names = list(todo_model.fields())
        assert names[0] == "id"
        assert names[1:] == [
            "text",
            "done",
            "priority",
            "status",
            "owner",
            "created_at",
            "updated_at",
        ]
        assert todo_model.pk_name() == "id"

    def test_foreign_key_column(self, todo_model) -> None:
        assert "owner_id" in todo_model.columns()
        fk = todo_model.fields()["owner"]
        assert fk.column == "owner_id"
        assert fk.relation_name == "owner"
        assert fk.target_name == "User"

    def test_foreign_key_declared_with_id_suffix(self) -> None:
        class Author(Model):
            name = StringField()

        class Book(Model):
            author_id = ForeignKey("Author")

        fk = Book.fields()["author_id"]
        assert fk.column == "author_id"
        assert fk.relation_name == "author"

    def test_two_id_fields_rejected(self) -> None:
        with pytest.raises(ModelDefinitionError, match="more than one IDField"):

            class Broken(Model):
                key = IDField()
                other = IDField()

    def test_custom_primary_key(self) -> None:
        class Ticket(Model):
            code = IDField()
            title = StringField()

        assert Ticket.pk_name() == "code"
        assert "id" not in Ticket.fields()

    def test_duplicate_column_rejected(self) -> None:
        with pytest.raises(ModelDefinitionError, match="declared twice"):

            class Clash(Model):
                owner = ForeignKey("User")
                owner_id = StringField()

    def test_enum_default_must_be_a_choice(self) -> None:
        with pytest.raises(ModelDefinitionError):
            EnumField(["a", "b"], default="c")

    def test_invalid_on_delete(self) -> None:
        with pytest.raises(ModelDefinitionError, match="on_delete"):
            ForeignKey("User", on_delete="explode")

    def test_required_set_null_rejected(self) -> None:
        with pytest.raises(ModelDefinitionError):
            ForeignKey("User", required=True, on_delete="set_null")

    def test_abstract_base_shares_fields(self) -> None:
        class Stamped(Model):
            __abstract__ = True
            created_at = DateTimeField(auto_now_add=True)

        class Note(Stamped):
            body = TextField()

        assert "created_at" in Note.fields()
        assert "Note" in registry
        assert "Stamped" not in registry


class TestInstances:
    """Instance construction and validation."""

    def test_defaults_applied(self, todo_model) -> None:
        todo = todo_model(text="milk")
        assert isinstance(todo.pk, UUID)
        assert todo.done is False
        assert todo.priority == 0
        assert todo.status == "todo"
        assert todo.owner_id is None

    def test_each_instance_gets_its_own_id(self, todo_model) -> None:
        assert todo_model(text="a").pk != todo_model(text="b").pk

    def test_missing_required_field(self, todo_model) -> None:
        with pytest.raises(ValidationError) as exc_info:
            todo_model()
        assert any(e["field"] == "text" for e in exc_info.value.errors)

    def test_unknown_field(self, todo_model) -> None:
        with pytest.raises(ValidationError, match="Unknown field"):
            todo_model(text="milk", colour="red")

    def test_max_length(self, todo_model) -> None:
        with pytest.raises(ValidationError):
            todo_model(text="x" * 201)

    def test_enum_choices(self, todo_model) -> None:
        with pytest.raises(ValidationError):
            todo_model(text="milk", status="later")

    def test_email_pattern(self, user_model) -> None:
        with pytest.raises(ValidationError):
            user_model(name="Ada", email="not-an-email")

    def test_foreign_key_by_field_or_column(self, todo_model) -> None:
        owner_id = uuid4()
        assert todo_model(text="a", owner=owner_id).owner_id == owner_id
        assert todo_model(text="b", owner_id=owner_id).owner_id == owner_id

    def test_assignment_then_validate(self, todo_model) -> None:
        todo = todo_model(text="milk")
        todo.status = "nope"
        with pytest.raises(ValidationError):
            todo.validate()

    def test_to_dict_is_json_ready(self, todo_model) -> None:
        todo = todo_model(text="milk")
        data = todo.to_dict()
        assert data["id"] == str(todo.pk)
        assert data["owner_id"] is None
        assert data["done"] is False

    def test_from_dict_keeps_relations_aside(self, todo_model) -> None:
        owner = {"id": str(uuid4()), "name": "Ada", "email": "ada@example.com"}
        todo = todo_model.from_dict(
            {"id": str(uuid4()), "text": "milk", "owner_id": owner["id"], "owner": owner}
        )
        assert todo.related("owner") == owner
        assert "owner" not in todo.to_dict()
        assert todo.to_dict(include_related=True)["owner"] == owner

    def test_relation_names_cached_until_registry_changes(
        self, user_model, todo_model, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from miles.converters import model_converter

        calls: list[str] = []
        original = model_converter.relation_names

        def counting(model_cls, models):
            calls.append(model_cls.__name__)
            return original(model_cls, models)

        monkeypatch.setattr(model_converter, "relation_names", counting)
        user_model._relation_cache = None

        assert user_model.relation_names() == {"todos"}
        for _ in range(3):
            user_model.from_dict({"id": str(uuid4()), "name": "Ada", "email": "a@b.co"})
        assert calls == ["User"]

        class Badge(Model):
            holder = ForeignKey(user_model, on_delete="cascade")

        assert user_model.relation_names() == {"todos", "badges"}
        assert calls == ["User", "User"]

    def test_copy_is_independent(self, todo_model) -> None:
        todo = todo_model(text="milk")
        clone = todo.copy()
        clone.text = "eggs"
        assert todo.text == "milk"
        assert clone == todo

    def test_equality_by_id(self, todo_model) -> None:
        todo = todo_model(text="milk")
        other = todo_model(id=todo.pk, text="eggs")
        assert todo == other
        assert len({todo, other}) == 1


class TestAppSpec:
    """Conversion of models to the AppSpec."""

    def test_forward_and_back_relations(self, user_model, todo_model) -> None:
        app_spec = build_app_spec([user_model, todo_model])
        user = app_spec.get_entity("User")
        todo = app_spec.get_entity("Todo")

        owner = todo.get_relation("owner")
        assert owner.kind == RelationKind.MANY_TO_ONE
        assert owner.foreign_key == "owner_id"
        assert owner.on_delete == OnDeleteAction.CASCADE

        todos = user.get_relation("todos")
        assert todos.kind == RelationKind.ONE_TO_MANY
        assert todos.to_entity == "Todo"

    def test_relation_names(self, user_model, todo_model) -> None:
        assert todo_model.relation_names() == {"owner"}
        assert user_model.relation_names() == {"todos"}

    def test_dangling_reference(self, todo_model) -> None:
        with pytest.raises(ModelDefinitionError, match="unknown model 'User'"):
            build_app_spec([todo_model])

    def test_callable_defaults_stay_out_of_the_spec(self) -> None:
        class Flag(Model):
            on = BooleanField(default=lambda: True)
            label = StringField(default="none")

        entity = Flag.entity_spec()
        assert entity.get_field("on").default is None
        assert entity.get_field("label").default == "none"

    def test_docstring_becomes_description(self, user_model) -> None:
        assert user_model.entity_spec().description == "A person who owns todos."

    def test_auto_fields(self, todo_model) -> None:
        entity = todo_model.entity_spec()
        auto = {f.name for f in entity.fields if f.is_auto}
        assert auto == {"id", "created_at", "updated_at"}
