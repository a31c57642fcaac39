"""
Base generator classes for client code generation.

Each generator creates one group of artifacts from the AppSpec, which
keeps them small enough to understand, test and modify on their own.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from miles.specs import AppSpec


@dataclass
class GeneratorResult:
    """
    Result from a generator execution.

    Attributes:
        files_created: Files that were created (or would be, in a dry run)
        contents: Generated content by path
        artifacts: Data to share with other generators
        errors: Any non-fatal errors encountered
        warnings: Any warnings to display to user
        dry_run: Record files without writing them
    """

    files_created: list[Path] = field(default_factory=list)
    contents: dict[Path, str] = field(default_factory=dict)
    artifacts: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        """Whether generation succeeded (no errors)."""
        return len(self.errors) == 0

    def add_file(self, path: Path, content: str | None = None) -> None:
        """
        Record a file that was created.

        If content is provided it is kept in ``contents`` and, unless this
        is a dry run, written to disk.
        """
        if content is not None:
            self.contents[path] = content
            if not self.dry_run:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
        self.files_created.append(path)

    def add_artifact(self, key: str, value: Any) -> None:
        self.artifacts[key] = value

    def add_error(self, error: str) -> None:
        self.errors.append(error)

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def merge(self, other: "GeneratorResult") -> None:
        """Merge another result into this one."""
        self.files_created.extend(other.files_created)
        self.contents.update(other.contents)
        self.artifacts.update(other.artifacts)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


class Generator(ABC):
    """
    Base class for all generators.

    A generator creates specific artifacts from the AppSpec.

    Example:
        class TypesGenerator(Generator):
            def generate(self) -> GeneratorResult:
                result = self.new_result()
                self.emit(result, "src/api/types.ts", self._build_types())
                return result
    """

    def __init__(self, spec: AppSpec, output_dir: Path, dry_run: bool = False):
        """
        Initialize generator.

        Args:
            spec: Application specification
            output_dir: Root output directory for generated files
            dry_run: Record files without writing them
        """
        self.spec = spec
        self.output_dir = Path(output_dir)
        self.dry_run = dry_run

    @abstractmethod
    def generate(self) -> GeneratorResult:
        """
        Generate artifacts.

        Returns:
            GeneratorResult with files created and artifacts
        """
        pass

    def new_result(self) -> GeneratorResult:
        return GeneratorResult(dry_run=self.dry_run)

    def emit(self, result: GeneratorResult, relative_path: str, content: str) -> Path:
        """Add a file under output_dir to the result."""
        path = self.output_dir / relative_path
        result.add_file(path, content if content.endswith("\n") else content + "\n")
        return path


class CompositeGenerator(Generator):
    """
    Generator that runs multiple sub-generators.

    Example:
        class ReactGenerator(CompositeGenerator):
            def get_generators(self) -> list[Generator]:
                return [
                    ProjectFilesGenerator(self.spec, self.output_dir),
                    ApiLayerGenerator(self.spec, self.output_dir),
                ]
    """

    @abstractmethod
    def get_generators(self) -> list[Generator]:
        """
        Get the list of sub-generators to run.

        Returns:
            List of Generator instances
        """
        pass

    def generate(self) -> GeneratorResult:
        """
        Run all sub-generators and merge results.

        Returns:
            Combined GeneratorResult from all sub-generators
        """
        combined = self.new_result()

        for generator in self.get_generators():
            result = generator.generate()
            combined.merge(result)

            # Stop if a generator had errors
            if not result.success:
                break

        return combined
