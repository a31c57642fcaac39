"""
Client code generation: React bindings derived from the AppSpec.
"""

from miles.codegen.generator import CompositeGenerator, Generator, GeneratorResult
from miles.codegen.react import GENERATED_MARK, ReactGenerator

__all__ = [
    "Generator",
    "GeneratorResult",
    "CompositeGenerator",
    "ReactGenerator",
    "GENERATED_MARK",
]
