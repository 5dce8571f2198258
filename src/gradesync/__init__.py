"""gradesync - grade aggregation, gradebook CSV export and SIS grade publishing."""

__version__ = "0.1.0"

from .config import PublishingSettings
from .formats import ExportFormat, FormatRegistry, PublishBatch
from .formatting import ExportOptions, score_to_grade
from .loader import load_course
from .orchestrator import GradeExportOrchestrator
from .roster import CourseRoster
from .scoring import ScoreAggregator

__all__ = [
    "CourseRoster", "ExportFormat", "ExportOptions", "FormatRegistry",
    "GradeExportOrchestrator", "PublishBatch", "PublishingSettings",
    "ScoreAggregator", "load_course", "score_to_grade",
    "__version__",
]
