"""SIS export formats."""

from .base import ExportFormat, PublishBatch
from .instructure_csv import InstructureCsvFormat
from .registry import FormatRegistry

__all__ = ["ExportFormat", "PublishBatch", "InstructureCsvFormat", "FormatRegistry"]
