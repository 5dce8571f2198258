"""Format registry - look up export formats by name."""

from __future__ import annotations

from typing import Any

from ..errors import UnknownFormatError
from .base import ExportFormat


class FormatRegistry:
    """Name → export format map, filled explicitly at startup."""

    def __init__(self, formats: dict[str, ExportFormat] | None = None):
        self._formats: dict[str, ExportFormat] = dict(formats or {})

    @classmethod
    def with_builtins(cls) -> "FormatRegistry":
        from .instructure_csv import InstructureCsvFormat

        registry = cls()
        registry.register(InstructureCsvFormat())
        return registry

    def register(self, export_format: ExportFormat, name: str | None = None) -> ExportFormat:
        self._formats[name or export_format.name] = export_format
        return export_format

    def get(self, name: str) -> ExportFormat:
        """Return the format registered as *name*.

        Raises:
            UnknownFormatError: nothing is registered under that name.
        """
        if name not in self._formats:
            raise UnknownFormatError(name)
        return self._formats[name]

    def names(self) -> list[str]:
        return sorted(self._formats)

    def info(self, name: str) -> dict[str, Any]:
        """Describe a format without running it; empty dict if unknown."""
        export_format = self._formats.get(name)
        if export_format is None:
            return {}
        return {
            "name": name,
            "description": export_format.description,
            "requires_grading_standard": export_format.requires_grading_standard,
            "requires_publishing_pseudonym": export_format.requires_publishing_pseudonym,
        }

    def __contains__(self, name: str) -> bool:
        return name in self._formats
