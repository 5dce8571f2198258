"""Base export format and the batch it produces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, TYPE_CHECKING

from ..models import Course, Enrollment, Pseudonym, User

if TYPE_CHECKING:
    from ..roster import CourseRoster


@dataclass
class PublishBatch:
    """One post to the SIS endpoint.

    A batch whose ``payload`` is ``None`` is never posted; the enrollments
    it names are marked unpublishable.
    """
    enrollment_ids: list[int]
    payload: Optional[str | bytes]
    mime_type: Optional[str]
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def postable(self) -> bool:
        return self.payload is not None

    @classmethod
    def coerce(cls, item: "PublishBatch | Sequence[Any]") -> "PublishBatch":
        """Accept ``(ids, payload, mime)`` or ``(ids, payload, mime, headers)``."""
        if isinstance(item, PublishBatch):
            return item
        if len(item) not in (3, 4):
            raise ValueError(
                f"export batch must have 3 or 4 elements, got {len(item)}"
            )
        headers = item[3] if len(item) == 4 else {}
        return cls(
            enrollment_ids=list(item[0]),
            payload=item[1],
            mime_type=item[2],
            headers=dict(headers or {}),
        )


class ExportFormat(ABC):
    """Base class for every SIS export format.

    Subclasses set ``name``/``description`` and implement ``generate()``.
    ``requires_grading_standard`` and ``requires_publishing_pseudonym`` are
    checked by the orchestrator before ``generate()`` is ever called.
    """

    name: str = "unknown"
    description: str = ""
    requires_grading_standard: bool = False
    requires_publishing_pseudonym: bool = False

    @abstractmethod
    def generate(
        self,
        course: Course,
        roster: "CourseRoster",
        enrollments: list[Enrollment],
        publishing_user: User | None,
        publishing_pseudonym: Pseudonym | None,
        include_final_grade_overrides: bool = False,
    ) -> list[PublishBatch]:
        """Build the batches to post for *enrollments*.

        Returns an empty list when there is nothing to send.
        """
        ...
