"""
Model converter - turns declared Model classes into EntitySpecs and an AppSpec.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from miles.models.fields import MISSING, Field, ForeignKey
from miles.specs import AppSpec, EntitySpec, FieldSpec, RelationKind, RelationSpec

if TYPE_CHECKING:
    from miles.models.model import Model

# =============================================================================
# Field Conversion
# =============================================================================


def convert_field(field: Field) -> FieldSpec:
    """
    Convert a declared field to a FieldSpec.

    Callable defaults stay on the Model and are applied at create time;
    only literal defaults are carried into the spec (and the DDL).
    """
    default = None
    if field.default is not MISSING and not callable(field.default):
        default = field.default

    return FieldSpec(
        name=field.column,
        label=field.label or field.name.replace("_", " ").title(),
        type=field.field_type(),
        required=field.required or field.primary_key,
        default=default,
        indexed=field.index,
        unique=field.unique,
        primary_key=field.primary_key,
        auto_now=field.auto_now,
        auto_now_add=field.auto_now_add,
    )


# =============================================================================
# Entity Conversion
# =============================================================================


def _forward_relation(model_cls: type[Model], fk: ForeignKey) -> RelationSpec:
    return RelationSpec(
        name=fk.relation_name,
        from_entity=model_cls.__name__,
        to_entity=fk.target_name,
        kind=RelationKind.MANY_TO_ONE,
        foreign_key=fk.column,
        on_delete=fk.on_delete,
    )


def model_to_entity(model_cls: type[Model]) -> EntitySpec:
    """
    Convert a Model class to an EntitySpec.

    Only the model's own (many-to-one) relations are included here;
    back relations need the full model set, see build_app_spec().
    """
    fields = [convert_field(f) for f in model_cls.fields().values()]
    relations = [_forward_relation(model_cls, fk) for fk in model_cls.foreign_keys()]

    doc = (model_cls.__doc__ or "").strip()
    return EntitySpec(
        name=model_cls.__name__,
        label=model_cls.__name__,
        description=doc.splitlines()[0] if doc else None,
        table=model_cls.table_name(),
        resource=model_cls.resource(),
        fields=fields,
        relations=relations,
    )


def _add_back_relations(entities: list[EntitySpec]) -> list[EntitySpec]:
    """Give every FK target a one-to-many relation named after the source resource."""
    extra: dict[str, list[RelationSpec]] = {e.name: [] for e in entities}

    for entity in entities:
        for rel in entity.relations:
            if rel.kind != RelationKind.MANY_TO_ONE or rel.to_entity not in extra:
                continue
            target = next(e for e in entities if e.name == rel.to_entity)
            taken = {r.name for r in target.relations} | set(target.column_names)
            taken |= {r.name for r in extra[target.name]}
            name = entity.resource
            if name in taken:
                name = f"{entity.resource}_by_{rel.name}"
            extra[target.name].append(
                RelationSpec(
                    name=name,
                    from_entity=target.name,
                    to_entity=entity.name,
                    kind=RelationKind.ONE_TO_MANY,
                    foreign_key=rel.foreign_key,
                    on_delete=rel.on_delete,
                )
            )

    return [
        e.model_copy(update={"relations": [*e.relations, *extra[e.name]]}) if extra[e.name] else e
        for e in entities
    ]


def relation_names(model_cls: type[Model], models: Iterable[type[Model]]) -> set[str]:
    """Relation names of model_cls, including back relations from the given models."""
    entities = _add_back_relations([model_to_entity(m) for m in models])
    for entity in entities:
        if entity.name == model_cls.__name__:
            return {r.name for r in entity.relations}
    return set()


def build_app_spec(
    models: Iterable[type[Model]],
    name: str = "miles_app",
    version: str = "0.1.0",
) -> AppSpec:
    """
    Assemble an AppSpec from Model classes.

    Raises:
        ModelDefinitionError: If a ForeignKey targets a model not in the set
    """
    entities = _add_back_relations([model_to_entity(m) for m in models])
    app_spec = AppSpec(name=name, version=version, entities=entities)
    app_spec.validate_references()
    return app_spec
