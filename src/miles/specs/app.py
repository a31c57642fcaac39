"""
AppSpec - the complete set of entities served by one Miles application.
"""

from pydantic import BaseModel, ConfigDict, Field

from miles.core.errors import ModelDefinitionError
from miles.specs.entity import EntitySpec


class AppSpec(BaseModel):
    """
    Application specification.

    Attributes:
        name: Application name
        version: Application version
        entities: Entities in registration order
    """

    name: str = Field(description="Application name")
    version: str = Field(default="0.1.0", description="Application version")
    description: str | None = Field(default=None, description="Application description")
    entities: list[EntitySpec] = Field(default_factory=list, description="Entities")

    model_config = ConfigDict(frozen=True)

    def get_entity(self, name: str) -> EntitySpec | None:
        """Get entity by name."""
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def get_entity_by_resource(self, resource: str) -> EntitySpec | None:
        """Get entity by API resource segment."""
        for entity in self.entities:
            if entity.resource == resource:
                return entity
        return None

    def validate_references(self) -> None:
        """
        Check that every ref field targets a known entity.

        Raises:
            ModelDefinitionError: On a dangling reference
        """
        names = {e.name for e in self.entities}
        for entity in self.entities:
            for field in entity.ref_fields:
                if field.type.ref_entity not in names:
                    raise ModelDefinitionError(
                        f"{entity.name}.{field.name} references unknown model "
                        f"'{field.type.ref_entity}'"
                    )
