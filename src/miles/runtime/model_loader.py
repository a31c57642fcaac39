"""
Import model modules and collect the Model classes they declare.
"""

from __future__ import annotations

import importlib
import sys
from collections.abc import Iterable
from pathlib import Path

from miles.core.errors import ConfigError
from miles.models.model import Model, registry


def split_modules(value: str | Iterable[str] | None) -> list[str]:
    """'a.models,b.models' -> ['a.models', 'b.models']"""
    if not value:
        return []
    items = value.split(",") if isinstance(value, str) else list(value)
    return [item.strip() for item in items if item.strip()]


def load_models(modules: Iterable[str], root: Path | None = None) -> list[type[Model]]:
    """
    Import modules and return the models declared in them, in declaration order.

    Args:
        modules: Dotted module paths
        root: Directory to put on sys.path first (the project root)

    Raises:
        ConfigError: If a module cannot be imported or declares no models
    """
    if root is not None and str(root) not in sys.path:
        sys.path.insert(0, str(root))

    module_names = list(modules)
    if not module_names:
        raise ConfigError("No model modules given (use --models or [project].models)")

    importlib.invalidate_caches()
    for name in module_names:
        try:
            importlib.import_module(name)
        except ImportError as e:
            raise ConfigError(f"Cannot import model module '{name}': {e}") from e
        except Exception as e:
            raise ConfigError(
                f"Cannot load model module '{name}': {type(e).__name__}: {e}"
            ) from e

    models = [m for m in registry.all() if m.__module__ in module_names]
    if not models:
        raise ConfigError(f"No Model classes found in {', '.join(module_names)}")
    return models
