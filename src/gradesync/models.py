"""Record types for a course roster snapshot.

Everything the aggregation and publishing pipeline reads is expressed as a
plain dataclass.  ``from_dict`` constructors mirror the JSON course files
loaded by :mod:`gradesync.loader`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class EnrollmentState(str, Enum):
    ACTIVE = "active"
    INVITED = "invited"
    INACTIVE = "inactive"
    COMPLETED = "completed"
    DELETED = "deleted"


class PublishingStatus(str, Enum):
    """Per-enrollment grade publishing state."""
    UNPUBLISHED = "unpublished"
    PENDING = "pending"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    ERROR = "error"
    UNPUBLISHABLE = "unpublishable"


class WeightingScheme(str, Enum):
    EQUAL = "equal"      # raw points ratio
    PERCENT = "percent"  # blend of group percentages by group weight


class GradingType(str, Enum):
    POINTS = "points"
    PERCENT = "percent"
    LETTER_GRADE = "letter_grade"
    GPA_SCALE = "gpa_scale"
    PASS_FAIL = "pass_fail"
    NOT_GRADED = "not_graded"


class SubmissionState(str, Enum):
    GRADED = "graded"
    SUBMITTED = "submitted"
    UNSUBMITTED = "unsubmitted"
    PENDING_REVIEW = "pending_review"


class ScoreScope(str, Enum):
    COURSE = "course"
    GRADING_PERIOD = "grading_period"
    ASSIGNMENT_GROUP = "assignment_group"


STUDENT_ENROLLMENT = "StudentEnrollment"
TEST_STUDENT_ENROLLMENT = "StudentViewEnrollment"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ============================================================================
# People and identities
# ============================================================================

@dataclass
class User:
    id: int
    name: str
    sortable_name: str = ""
    # Per-course gradebook preferences, keyed by course id.
    gradebook_settings: dict[int, dict[str, Any]] = field(default_factory=dict)

    def gradebook_preference(self, course_id: int, key: str) -> Any:
        return self.gradebook_settings.get(course_id, {}).get(key)

    def __post_init__(self):
        if not self.sortable_name:
            # "Jane Q Doe" -> "Doe, Jane Q"
            parts = self.name.split()
            if len(parts) > 1:
                self.sortable_name = f"{parts[-1]}, {' '.join(parts[:-1])}"
            else:
                self.sortable_name = self.name

    @classmethod
    def from_dict(cls, d: dict) -> "User":
        return cls(
            id=d["id"],
            name=d["name"],
            sortable_name=d.get("sortable_name", ""),
            # JSON object keys are strings
            gradebook_settings={
                int(course_id): dict(prefs)
                for course_id, prefs in (d.get("gradebook_settings") or {}).items()
            },
        )


@dataclass
class Pseudonym:
    """An account-scoped login for a user."""
    user_id: int
    account_id: int
    unique_id: str
    sis_user_id: Optional[str] = None
    integration_id: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict) -> "Pseudonym":
        return cls(
            user_id=d["user_id"],
            account_id=d["account_id"],
            unique_id=d["unique_id"],
            sis_user_id=d.get("sis_user_id"),
            integration_id=d.get("integration_id"),
        )


@dataclass
class Section:
    id: int
    name: str
    sis_source_id: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict) -> "Section":
        return cls(id=d["id"], name=d["name"], sis_source_id=d.get("sis_source_id"))


@dataclass
class Enrollment:
    """A student's membership in a course section.

    Publishing fields are only ever written through
    ``CourseRoster.transition`` so status, message and attempt time change
    together.
    """
    id: int
    user_id: int
    course_id: int
    section_id: int
    workflow_state: EnrollmentState = EnrollmentState.ACTIVE
    type: str = STUDENT_ENROLLMENT
    publishing_status: PublishingStatus = PublishingStatus.UNPUBLISHED
    publishing_message: Optional[str] = None
    last_publish_attempt_at: Optional[datetime] = None

    def __post_init__(self):
        self.workflow_state = EnrollmentState(self.workflow_state)
        status = self.publishing_status or PublishingStatus.UNPUBLISHED
        # Unknown statuses are kept verbatim so reports can flag them.
        if status in PublishingStatus._value2member_map_:
            status = PublishingStatus(status)
        self.publishing_status = status

    @property
    def is_test_student(self) -> bool:
        return self.type == TEST_STUDENT_ENROLLMENT

    @property
    def is_active(self) -> bool:
        return self.workflow_state == EnrollmentState.ACTIVE

    @classmethod
    def from_dict(cls, d: dict) -> "Enrollment":
        return cls(
            id=d["id"],
            user_id=d["user_id"],
            course_id=d["course_id"],
            section_id=d["section_id"],
            workflow_state=d.get("workflow_state", "active"),
            type=d.get("type", STUDENT_ENROLLMENT),
            publishing_status=d.get("publishing_status"),
            publishing_message=d.get("publishing_message"),
            last_publish_attempt_at=_parse_datetime(d.get("last_publish_attempt_at")),
        )

    def to_dict(self) -> dict:
        status = self.publishing_status
        return {
            "id": self.id,
            "user_id": self.user_id,
            "course_id": self.course_id,
            "section_id": self.section_id,
            "workflow_state": self.workflow_state.value,
            "type": self.type,
            "publishing_status": status.value if isinstance(status, PublishingStatus) else status,
            "publishing_message": self.publishing_message,
            "last_publish_attempt_at": (
                self.last_publish_attempt_at.isoformat()
                if self.last_publish_attempt_at else None
            ),
        }


# ============================================================================
# Gradebook structure
# ============================================================================

@dataclass
class AssignmentGroup:
    id: int
    name: str
    position: int = 0
    weight: float = 0.0
    drop_lowest: int = 0
    drop_highest: int = 0
    never_drop: list[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "AssignmentGroup":
        return cls(
            id=d["id"],
            name=d["name"],
            position=d.get("position", 0),
            weight=float(d.get("weight", 0.0) or 0.0),
            drop_lowest=d.get("drop_lowest", 0),
            drop_highest=d.get("drop_highest", 0),
            never_drop=list(d.get("never_drop", [])),
        )


@dataclass
class Assignment:
    id: int
    name: str
    assignment_group_id: int
    points_possible: Optional[float] = 0.0
    position: int = 0
    grading_type: GradingType = GradingType.POINTS
    omit_from_final_grade: bool = False
    due_at: Optional[datetime] = None
    grading_period_id: Optional[int] = None
    muted: bool = False
    published: bool = True
    visible_to: Optional[set[int]] = None  # None: every student

    def is_visible_to(self, user_id: int) -> bool:
        return self.visible_to is None or user_id in self.visible_to

    @property
    def counts_toward_grade(self) -> bool:
        return (
            self.published
            and not self.omit_from_final_grade
            and self.grading_type != GradingType.NOT_GRADED
        )

    @classmethod
    def from_dict(cls, d: dict) -> "Assignment":
        visible = d.get("visible_to")
        return cls(
            id=d["id"],
            name=d["name"],
            assignment_group_id=d["assignment_group_id"],
            points_possible=d.get("points_possible", 0.0),
            position=d.get("position", 0),
            grading_type=GradingType(d.get("grading_type", "points")),
            omit_from_final_grade=d.get("omit_from_final_grade", False),
            due_at=_parse_datetime(d.get("due_at")),
            grading_period_id=d.get("grading_period_id"),
            muted=d.get("muted", False),
            published=d.get("published", True),
            visible_to=set(visible) if visible is not None else None,
        )


@dataclass
class GradingPeriod:
    id: int
    title: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    weight: float = 0.0
    position: int = 0

    @classmethod
    def from_dict(cls, d: dict) -> "GradingPeriod":
        return cls(
            id=d["id"],
            title=d["title"],
            start_date=_parse_datetime(d.get("start_date")),
            end_date=_parse_datetime(d.get("end_date")),
            weight=float(d.get("weight", 0.0) or 0.0),
            position=d.get("position", 0),
        )


@dataclass
class GradingPeriodGroup:
    periods: list[GradingPeriod] = field(default_factory=list)
    weighted: bool = False
    display_totals_for_all_grading_periods: bool = False

    def ordered_periods(self) -> list[GradingPeriod]:
        return sorted(
            self.periods,
            key=lambda p: (p.position, p.start_date.timestamp() if p.start_date else 0.0, p.id),
        )

    @classmethod
    def from_dict(cls, d: dict) -> "GradingPeriodGroup":
        return cls(
            periods=[GradingPeriod.from_dict(p) for p in d.get("periods", [])],
            weighted=d.get("weighted", False),
            display_totals_for_all_grading_periods=d.get(
                "display_totals_for_all_grading_periods", False
            ),
        )


@dataclass
class Submission:
    user_id: int
    assignment_id: int
    score: Optional[float] = None
    grade: Optional[str] = None
    excused: bool = False
    workflow_state: Optional[SubmissionState] = None
    grading_period_id: Optional[int] = None  # cached at grading time
    posted: bool = True

    def __post_init__(self):
        if self.workflow_state is None:
            self.workflow_state = (
                SubmissionState.GRADED if self.score is not None else SubmissionState.UNSUBMITTED
            )
        else:
            self.workflow_state = SubmissionState(self.workflow_state)

    @property
    def is_graded(self) -> bool:
        return (
            not self.excused
            and self.score is not None
            and self.workflow_state == SubmissionState.GRADED
        )

    @classmethod
    def from_dict(cls, d: dict) -> "Submission":
        return cls(
            user_id=d["user_id"],
            assignment_id=d["assignment_id"],
            score=d.get("score"),
            grade=d.get("grade"),
            excused=d.get("excused", False),
            workflow_state=d.get("workflow_state"),
            grading_period_id=d.get("grading_period_id"),
            posted=d.get("posted", True),
        )


@dataclass
class Score:
    """Derived aggregate for one (enrollment, scope) pair.

    Only ``override_score`` is ever set by hand.
    """
    enrollment_id: int
    scope: ScoreScope = ScoreScope.COURSE
    scope_id: Optional[int] = None
    current_points: Optional[float] = None
    final_points: Optional[float] = None
    current_score: Optional[float] = None
    final_score: Optional[float] = None
    unposted_current_points: Optional[float] = None
    unposted_final_points: Optional[float] = None
    unposted_current_score: Optional[float] = None
    unposted_final_score: Optional[float] = None
    override_score: Optional[float] = None


# ============================================================================
# Grading standard
# ============================================================================

@dataclass
class GradingStandard:
    """Ordered ``(letter, minimum percentage)`` cutoffs, highest first.

    Cutoffs must strictly decrease.  The last entry's floor is implicitly 0:
    any score below it still maps to the last letter.
    """
    entries: list[tuple[str, float]]
    title: str = "Default Grading Scheme"

    def __post_init__(self):
        if not self.entries:
            raise ValueError("grading standard needs at least one entry")
        self.entries = [(str(letter), float(cutoff)) for letter, cutoff in self.entries]
        cutoffs = [cutoff for _, cutoff in self.entries]
        for higher, lower in zip(cutoffs, cutoffs[1:]):
            if lower >= higher:
                raise ValueError(
                    f"grading standard cutoffs must strictly decrease: {higher} then {lower}"
                )

    @classmethod
    def from_dict(cls, d: dict) -> "GradingStandard":
        return cls(
            entries=[(e[0], e[1]) for e in d["entries"]],
            title=d.get("title", "Default Grading Scheme"),
        )


def default_grading_standard() -> GradingStandard:
    return GradingStandard([
        ("A", 94), ("A-", 90), ("B+", 87), ("B", 84), ("B-", 80),
        ("C+", 77), ("C", 74), ("C-", 70), ("D+", 67), ("D", 64),
        ("D-", 61), ("F", 0),
    ])


# ============================================================================
# Course
# ============================================================================

@dataclass
class Course:
    id: int
    name: str
    account_id: int
    sis_source_id: Optional[str] = None
    group_weighting_scheme: WeightingScheme = WeightingScheme.EQUAL
    grading_standard: Optional[GradingStandard] = None
    grading_period_group: Optional[GradingPeriodGroup] = None
    allow_final_grade_override: bool = False
    final_grades_override_enabled: bool = False
    hide_final_grades: bool = False

    @property
    def override_enabled(self) -> bool:
        """Final grade overrides apply only when the feature is on *and* allowed."""
        return self.final_grades_override_enabled and self.allow_final_grade_override

    @property
    def has_grading_periods(self) -> bool:
        return bool(self.grading_period_group and self.grading_period_group.periods)

    @property
    def weighted_grading_periods(self) -> bool:
        return self.has_grading_periods and self.grading_period_group.weighted

    @classmethod
    def from_dict(cls, d: dict) -> "Course":
        standard = d.get("grading_standard")
        if standard == "default":
            standard = default_grading_standard()
        elif standard is not None:
            standard = GradingStandard.from_dict(standard)
        gpg = d.get("grading_period_group")
        return cls(
            id=d["id"],
            name=d["name"],
            account_id=d["account_id"],
            sis_source_id=d.get("sis_source_id"),
            group_weighting_scheme=WeightingScheme(d.get("group_weighting_scheme") or "equal"),
            grading_standard=standard,
            grading_period_group=GradingPeriodGroup.from_dict(gpg) if gpg else None,
            allow_final_grade_override=d.get("allow_final_grade_override", False),
            final_grades_override_enabled=d.get("final_grades_override_enabled", False),
            hide_final_grades=d.get("hide_final_grades", False),
        )
