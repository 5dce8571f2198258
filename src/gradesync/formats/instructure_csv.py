"""Instructure formatted CSV: the built-in SIS export format.

Columns::

    publisher_id, publisher_sis_id, course_id, course_sis_id,
    section_id, section_sis_id, student_id, student_sis_id,
    enrollment_id, enrollment_status, score[, grade]

A student gets one row per SIS login in the course's account, or a single
row with a blank ``student_sis_id`` when there is none.
"""

from __future__ import annotations

import csv
import io
from typing import TYPE_CHECKING

from ..formatting import score_to_grade
from ..models import Course, Enrollment, Pseudonym, User
from ..scoring.aggregator import effective_final_score
from .base import ExportFormat, PublishBatch

if TYPE_CHECKING:
    from ..roster import CourseRoster

HEADER = [
    "publisher_id",
    "publisher_sis_id",
    "course_id",
    "course_sis_id",
    "section_id",
    "section_sis_id",
    "student_id",
    "student_sis_id",
    "enrollment_id",
    "enrollment_status",
    "score",
]


def _cell(value) -> str:
    return "" if value is None else str(value)


class InstructureCsvFormat(ExportFormat):
    name = "instructure_csv"
    description = "Instructure formatted CSV"
    mime_type = "text/csv"

    def generate(
        self,
        course: Course,
        roster: "CourseRoster",
        enrollments: list[Enrollment],
        publishing_user: User | None,
        publishing_pseudonym: Pseudonym | None,
        include_final_grade_overrides: bool = False,
    ) -> list[PublishBatch]:
        use_overrides = include_final_grade_overrides and course.override_enabled
        standard = course.grading_standard

        header = list(HEADER)
        if standard is not None:
            header.append("grade")

        publisher = [
            _cell(publishing_user.id if publishing_user else None),
            _cell(publishing_pseudonym.sis_user_id if publishing_pseudonym else None),
            _cell(course.id),
            _cell(course.sis_source_id),
        ]

        rows: list[list[str]] = []
        included: list[int] = []
        for enrollment in enrollments:
            score = effective_final_score(roster.score_for(enrollment.id), use_overrides)
            if score is None:
                continue
            included.append(enrollment.id)

            section = roster.sections.get(enrollment.section_id)
            sis_ids = [
                p.sis_user_id
                for p in roster.pseudonyms_for(enrollment.user_id, course.account_id)
                if p.sis_user_id
            ] or [None]

            for sis_id in sis_ids:
                row = publisher + [
                    _cell(enrollment.section_id),
                    _cell(section.sis_source_id if section else None),
                    _cell(enrollment.user_id),
                    _cell(sis_id),
                    _cell(enrollment.id),
                    enrollment.workflow_state.value,
                    str(float(score)),
                ]
                if standard is not None:
                    row.append(score_to_grade(score, standard) or "")
                rows.append(row)

        if not rows:
            return []

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(header)
        writer.writerows(rows)
        return [PublishBatch(included, buffer.getvalue(), self.mime_type)]
