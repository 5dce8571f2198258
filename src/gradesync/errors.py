"""Exception taxonomy for grade computation, export and publishing.

Configuration errors are user-correctable setup problems raised before any
batch is produced.  Transport errors belong to a single posted batch.
Generator errors come from an export format's ``generate()`` call.
"""


class GradeSyncError(Exception):
    """Base class for every error raised by gradesync."""


# ============================================================================
# Configuration errors (raised synchronously, never retried)
# ============================================================================

class PublishingConfigurationError(GradeSyncError):
    """Publishing cannot start with the current settings."""


class PublishingDisabledError(PublishingConfigurationError):
    def __init__(self, message: str = "final grade publishing disabled"):
        super().__init__(message)


class EndpointUndefinedError(PublishingConfigurationError):
    def __init__(self, message: str = "endpoint undefined"):
        super().__init__(message)


class UnknownFormatError(PublishingConfigurationError):
    def __init__(self, format_type: str):
        self.format_type = format_type
        super().__init__(f"unknown format type: {format_type}")


class GradingStandardRequiredError(PublishingConfigurationError):
    def __init__(self, message: str = "grade publishing requires a grading standard"):
        super().__init__(message)


class PublishingIdentityError(PublishingConfigurationError):
    def __init__(self, message: str = "publishing disallowed for this publishing user"):
        super().__init__(message)


# ============================================================================
# Runtime errors
# ============================================================================

class ExportGeneratorError(GradeSyncError):
    """The export format failed before producing any batch."""


class SisTransportError(GradeSyncError):
    """Posting one batch to the SIS endpoint failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AggregationError(GradeSyncError):
    """Score data could not be aggregated (malformed input)."""


class CsvExportError(GradeSyncError):
    """The gradebook CSV could not be produced."""
