"""
Converters from Model classes to specs.
"""

from miles.converters.model_converter import (
    build_app_spec,
    convert_field,
    model_to_entity,
    relation_names,
)

__all__ = ["build_app_spec", "convert_field", "model_to_entity", "relation_names"]
