"""Grade formatting: score → letter grade, and the gradebook CSV.

Column layout of the gradebook CSV::

    Student, ID, [SIS User ID], [SIS Login ID], [Integration ID], Section,
    <assignment "Name (id)">...,
    <group summary columns>..., <period summary columns>...,
    <total columns>

Row 2 is a ``Muted`` marker row, present only when an assignment is muted
or has a graded submission that is not posted yet.
The next row holds points possible, with ``(read only)`` in every computed
column.  Student rows follow.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import (
    Assignment,
    AssignmentGroup,
    Course,
    Enrollment,
    GradingStandard,
    GradingType,
    Pseudonym,
    User,
    WeightingScheme,
)
from .roster import CourseRoster
from .scoring.aggregator import EnrollmentScores, ScopeScore

READ_ONLY = "(read only)"
POINTS_POSSIBLE_LABEL = "    Points Possible"
EXCUSED = "EX"
NOT_VISIBLE = "N/A"

# Grading types whose entered grade is shown instead of the raw score.
_GRADE_DISPLAY_TYPES = {
    GradingType.LETTER_GRADE,
    GradingType.GPA_SCALE,
    GradingType.PASS_FAIL,
    GradingType.PERCENT,
}


# ============================================================================
# Letter grades
# ============================================================================

def score_to_grade(score: float | None, grading_standard: GradingStandard | None) -> str | None:
    """Map a percentage to a letter using *grading_standard*.

    Cutoffs are scanned from the highest down and the first one the score
    reaches wins.  Scores are not rounded first, so 93.999 is still below
    94.  Anything under the last cutoff gets the last letter.
    """
    if grading_standard is None or score is None:
        return None
    for letter, minimum in grading_standard.entries:
        if score >= minimum:
            return letter
    return grading_standard.entries[-1][0]


def format_number(value: float | None) -> str:
    return "" if value is None else "%.2f" % value


def to_sentence(items: list[str]) -> str:
    """``["A"]`` → ``A``; ``["A", "B"]`` → ``A and B``; three+ get a serial comma."""
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    if len(items) == 2:
        return f"{items[0]} and {items[1]}"
    return ", ".join(items[:-1]) + f", and {items[-1]}"


def sorted_assignments(
    assignments: Iterable[Assignment],
    groups: Iterable[AssignmentGroup],
) -> list[Assignment]:
    """Deterministic column order.

    Keyed on (group position, group id, assignment position, name, id) so
    insertion order never leaks into the output.
    """
    group_keys = {g.id: (g.position, g.id) for g in groups}
    return sorted(
        assignments,
        key=lambda a: (
            group_keys.get(a.assignment_group_id, (0, a.assignment_group_id)),
            a.position,
            a.name,
            a.id,
        ),
    )


# ============================================================================
# Gradebook CSV
# ============================================================================

@dataclass
class ExportOptions:
    """Knobs for one gradebook CSV export."""
    include_sis_id: bool = False
    include_login_id: bool = True
    include_integration_id: bool = False
    list_by_sortable_name: bool = False
    grading_period_id: Optional[int] = None
    # Filled in by the orchestrator from course settings and requester prefs.
    exclude_total: bool = False
    include_concluded: bool = False
    include_inactive: bool = False


@dataclass
class _StudentRow:
    user: User
    enrollments: list[Enrollment]
    scores: EnrollmentScores
    override_score: float | None

    @property
    def is_test_student(self) -> bool:
        return all(e.is_test_student for e in self.enrollments)


class GradebookCsvWriter:
    """Renders one course's gradebook as CSV text.

    Args:
        course: The course being exported.
        roster: Source of users, sections, pseudonyms and submissions.
        enrollments: Student enrollments to include (any order).
        scores_by_user: Aggregated scores, keyed by user id.
        options: Column and scoping options.
        override_scores: Final grade overrides keyed by user id.
    """

    SUMMARY_COLUMNS = (
        "Current Points",
        "Final Points",
        "Current Score",
        "Unposted Current Score",
        "Final Score",
        "Unposted Final Score",
    )
    GRADE_COLUMNS = (
        "Current Grade",
        "Unposted Current Grade",
        "Final Grade",
        "Unposted Final Grade",
    )
    OVERRIDE_COLUMNS = ("Override Score", "Override Grade")

    def __init__(
        self,
        course: Course,
        roster: CourseRoster,
        enrollments: Iterable[Enrollment],
        scores_by_user: dict[int, EnrollmentScores],
        options: ExportOptions | None = None,
        override_scores: dict[int, float | None] | None = None,
    ):
        self.course = course
        self.roster = roster
        self.enrollments = list(enrollments)
        self.scores_by_user = scores_by_user
        self.options = options or ExportOptions()
        self.override_scores = override_scores or {}

        self.groups = roster.groups_in_order()
        self.assignments = sorted_assignments(self._exportable_assignments(), self.groups)
        self.show_points = course.group_weighting_scheme != WeightingScheme.PERCENT
        self.show_grades = course.grading_standard is not None
        self.show_overrides = course.override_enabled
        self.show_totals = not self.options.exclude_total
        self.periods = []
        if course.has_grading_periods and self.options.grading_period_id is None:
            self.periods = course.grading_period_group.ordered_periods()
        self.unposted_assignment_ids = {
            s.assignment_id for s in roster.submissions if s.is_graded and not s.posted
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def to_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        for row in self.rows():
            writer.writerow(row)
        return buffer.getvalue()

    def rows(self) -> list[list[str]]:
        header = self._header()
        rows = [header]
        if any(self._is_muted(a) for a in self.assignments):
            rows.append(self._muted_row())
        rows.append(self._points_possible_row())
        rows.extend(self._student_row(s) for s in self._students())
        return rows

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def _exportable_assignments(self) -> list[Assignment]:
        candidates = [
            a for a in self.roster.assignments.values()
            if a.published and a.grading_type != GradingType.NOT_GRADED
        ]
        period_id = self.options.grading_period_id
        if period_id is None:
            return candidates
        in_period = {
            s.assignment_id for s in self.roster.submissions
            if s.grading_period_id == period_id
        }
        return [
            a for a in candidates
            if a.grading_period_id == period_id or a.id in in_period
        ]

    def _identity_columns(self) -> list[str]:
        columns = ["Student", "ID"]
        if self.options.include_sis_id:
            columns.append("SIS User ID")
        if self.options.include_sis_id or self.options.include_login_id:
            columns.append("SIS Login ID")
        if self.options.include_sis_id and self.options.include_integration_id:
            columns.append("Integration ID")
        columns.append("Section")
        return columns

    def _summary_columns(self, prefix: str = "") -> list[str]:
        names = self.SUMMARY_COLUMNS if self.show_points else self.SUMMARY_COLUMNS[2:]
        return [f"{prefix} {name}" if prefix else name for name in names]

    def _total_columns(self) -> list[str]:
        if not self.show_totals:
            return []
        columns = self._summary_columns()
        if self.show_grades:
            columns.extend(self.GRADE_COLUMNS)
        if self.show_overrides:
            columns.extend(self.OVERRIDE_COLUMNS)
        return columns

    def _computed_columns(self) -> list[str]:
        columns = []
        for group in self.groups:
            columns.extend(self._summary_columns(group.name))
        for period in self.periods:
            columns.extend(self._summary_columns(period.title))
        columns.extend(self._total_columns())
        return columns

    def _header(self) -> list[str]:
        return (
            self._identity_columns()
            + [f"{a.name} ({a.id})" for a in self.assignments]
            + self._computed_columns()
        )

    def _is_muted(self, assignment: Assignment) -> bool:
        return assignment.muted or assignment.id in self.unposted_assignment_ids

    def _muted_row(self) -> list[str]:
        return (
            [""] * len(self._identity_columns())
            + ["Muted" if self._is_muted(a) else "" for a in self.assignments]
            + [""] * len(self._computed_columns())
        )

    def _points_possible_row(self) -> list[str]:
        identity = [""] * len(self._identity_columns())
        identity[0] = POINTS_POSSIBLE_LABEL
        return (
            identity
            + [format_number(a.points_possible) for a in self.assignments]
            + [READ_ONLY] * len(self._computed_columns())
        )

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------

    def _students(self) -> list[_StudentRow]:
        by_user: dict[int, list[Enrollment]] = {}
        for enrollment in self.enrollments:
            by_user.setdefault(enrollment.user_id, []).append(enrollment)

        students = []
        for user_id, enrollments in by_user.items():
            scores = self.scores_by_user.get(user_id)
            user = self.roster.users.get(user_id)
            if scores is None or user is None:
                continue
            override = self.override_scores.get(user_id) if self.show_overrides else None
            # A row without any determinable score cannot be graded back in.
            if scores.final_score is None and override is None and not scores.total_excluded:
                continue
            students.append(_StudentRow(user, enrollments, scores, override))

        return sorted(
            students,
            key=lambda s: (s.is_test_student, s.user.sortable_name.lower(), s.user.id),
        )

    def _login(self, user_id: int) -> Pseudonym | None:
        logins = self.roster.pseudonyms_for(user_id, self.course.account_id)
        with_sis = [p for p in logins if p.sis_user_id]
        return (with_sis or logins or [None])[0]

    def _student_row(self, student: _StudentRow) -> list[str]:
        user = student.user
        name = user.sortable_name if self.options.list_by_sortable_name else user.name
        row = [name, str(user.id)]

        login = self._login(user.id)
        if self.options.include_sis_id:
            row.append(login.sis_user_id or "" if login else "")
        if self.options.include_sis_id or self.options.include_login_id:
            row.append(login.unique_id if login else "")
        if self.options.include_sis_id and self.options.include_integration_id:
            row.append(login.integration_id or "" if login else "")

        section_names = sorted({
            self.roster.sections[e.section_id].name
            for e in student.enrollments
            if e.section_id in self.roster.sections
        })
        row.append(to_sentence(section_names))

        row.extend(self._assignment_cell(a, user.id) for a in self.assignments)

        scores = student.scores
        for group in self.groups:
            row.extend(self._summary_cells(scores.groups.get(group.id, ScopeScore())))
        for period in self.periods:
            row.extend(self._summary_cells(scores.periods.get(period.id, ScopeScore())))
        if self.show_totals:
            row.extend(self._summary_cells(scores.total))
            standard = self.course.grading_standard
            if self.show_grades:
                row.extend(
                    score_to_grade(value, standard) or ""
                    for value in (
                        scores.total.current_score,
                        scores.total.unposted_current_score,
                        scores.total.final_score,
                        scores.total.unposted_final_score,
                    )
                )
            if self.show_overrides:
                row.append(format_number(student.override_score))
                row.append(score_to_grade(student.override_score, standard) or "")
        return row

    def _assignment_cell(self, assignment: Assignment, user_id: int) -> str:
        if not assignment.is_visible_to(user_id):
            return NOT_VISIBLE
        sub = self.roster.submission_for(user_id, assignment.id)
        if sub is None:
            return ""
        if sub.excused:
            return EXCUSED
        if assignment.grading_type in _GRADE_DISPLAY_TYPES and sub.grade is not None:
            return sub.grade
        return format_number(sub.score)

    def _summary_cells(self, score: ScopeScore) -> list[str]:
        values = [
            score.current_points,
            score.final_points,
            score.current_score,
            score.unposted_current_score,
            score.final_score,
            score.unposted_final_score,
        ]
        if not self.show_points:
            values = values[2:]
        return [format_number(v) for v in values]
