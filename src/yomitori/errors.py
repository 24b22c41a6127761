from __future__ import annotations

import contextlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

__all__ = [
    "YomitoriError",
    "ContainerError",
    "SchemaError",
    "MarkupError",
    "FormattingError",
    "ClassificationError",
    "SideFileError",
    "ProcessingContext",
]


class YomitoriError(RuntimeError):
    """Base class for every fatal condition met while processing one EPUB."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.source_name: str | None = None
        self.phase: str | None = None

    def attach(self, source_name: str, phase: str) -> None:
        if self.source_name is None:
            self.source_name = source_name
            self.phase = phase

    def __str__(self) -> str:
        if self.source_name is None:
            return self.message
        return f"{self.source_name} at phase {self.phase}: {self.message}"


class ContainerError(YomitoriError):
    """Raised when the ZIP container is corrupt, truncated or undecodable."""


class SchemaError(YomitoriError):
    """Raised when a control document lacks a required element or attribute."""


class MarkupError(YomitoriError):
    """Raised on malformed tag syntax or unbalanced nesting."""


class FormattingError(MarkupError):
    """Raised when markup uses a tag no formatting rule knows about."""


class ClassificationError(YomitoriError):
    """Raised when no chapter role satisfies both the title evidence and the narrative order."""


class SideFileError(YomitoriError):
    """Raised when a persisted side file exists but cannot be parsed."""


@dataclass
class ProcessingContext:
    """Names the input file and the current phase for diagnostics."""

    epub_path: Path
    phase: str = "start"

    @property
    def source_name(self) -> str:
        return self.epub_path.name

    @contextlib.contextmanager
    def stage(self, phase: str) -> Iterator["ProcessingContext"]:
        previous = self.phase
        self.phase = phase
        try:
            yield self
        except YomitoriError as exc:
            exc.attach(self.source_name, phase)
            raise
        finally:
            self.phase = previous
