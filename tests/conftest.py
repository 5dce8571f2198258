"""Shared builders for gradesync tests."""

import json
from datetime import datetime, timezone

import pytest

from gradesync.formats import ExportFormat, FormatRegistry
from gradesync.config import PublishingSettings
from gradesync.models import (
    Assignment,
    AssignmentGroup,
    Course,
    Enrollment,
    EnrollmentState,
    Pseudonym,
    Section,
    User,
)
from gradesync.roster import CourseRoster

ENDPOINT = "http://localhost/endpoint"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

# Starting statuses of the nine-enrollment roster; index 6 is not active.
NINE_STATUSES = [
    "published", "error", "unpublishable", "error", "unpublishable",
    "unpublishable", "unpublished", "unpublished", "unpublished",
]


def build_roster(**course_kwargs) -> CourseRoster:
    course_kwargs.setdefault("id", 1)
    course_kwargs.setdefault("name", "Biology 101")
    course_kwargs.setdefault("account_id", 1)
    roster = CourseRoster(course=Course(**course_kwargs))
    roster.add_section(Section(id=1, name="Section 1"))
    return roster


def add_student(
    roster: CourseRoster,
    user_id: int,
    name: str,
    enrollment_id: int | None = None,
    section_id: int = 1,
    **enrollment_kwargs,
) -> Enrollment:
    if user_id not in roster.users:
        roster.add_user(User(id=user_id, name=name))
    return roster.add_enrollment(Enrollment(
        id=enrollment_id if enrollment_id is not None else user_id * 10,
        user_id=user_id,
        course_id=roster.course.id,
        section_id=section_id,
        **enrollment_kwargs,
    ))


def add_group(roster: CourseRoster, group_id: int = 1, name: str = "Assignments", **kwargs) -> AssignmentGroup:
    return roster.add_assignment_group(AssignmentGroup(id=group_id, name=name, **kwargs))


def add_assignment(
    roster: CourseRoster,
    assignment_id: int,
    name: str,
    points_possible: float = 10,
    group_id: int = 1,
    **kwargs,
) -> Assignment:
    return roster.add_assignment(Assignment(
        id=assignment_id,
        name=name,
        assignment_group_id=group_id,
        points_possible=points_possible,
        **kwargs,
    ))


def add_publisher(roster: CourseRoster, user_id: int = 900, sis_user_id: str | None = "U1", account_id: int = 1) -> User:
    user = roster.add_user(User(id=user_id, name="Grade Publisher"))
    roster.add_pseudonym(Pseudonym(
        user_id=user_id,
        account_id=account_id,
        unique_id=f"publisher{user_id}",
        sis_user_id=sis_user_id,
    ))
    return user


class FakePoster:
    """Records posts; raises for payloads listed in ``failures``."""

    def __init__(self, failures: dict | None = None):
        self.calls = []
        self.failures = failures or {}

    def post(self, url, payload, mime_type, headers=None):
        self.calls.append((url, payload, mime_type, dict(headers or {})))
        if payload in self.failures:
            raise self.failures[payload]


class StaticFormat(ExportFormat):
    """Returns canned batches and records what it was given."""

    name = "test_format"
    description = "test format"

    def __init__(self, batches=None, error: Exception | None = None, **requirements):
        self.batches = batches or []
        self.error = error
        self.calls = []
        for key, value in requirements.items():
            setattr(self, key, value)

    def generate(self, course, roster, enrollments, publishing_user,
                 publishing_pseudonym, include_final_grade_overrides=False):
        self.calls.append({
            "enrollment_ids": [e.id for e in enrollments],
            "publishing_user": publishing_user,
            "publishing_pseudonym": publishing_pseudonym,
            "include_final_grade_overrides": include_final_grade_overrides,
        })
        if self.error is not None:
            raise self.error
        return self.batches


def registry_with(export_format: ExportFormat) -> FormatRegistry:
    registry = FormatRegistry.with_builtins()
    registry.register(export_format)
    return registry


def publishing_settings(**overrides) -> PublishingSettings:
    values = {"enabled": True, "publish_endpoint": ENDPOINT, "format_type": "test_format"}
    values.update(overrides)
    return PublishingSettings(**values)


@pytest.fixture
def nine_roster():
    """Roster with nine enrollments in mixed publishing states.

    Returns ``(roster, enrollment_ids, active_ids)``.
    """
    roster = build_roster()
    add_publisher(roster)
    ids = []
    for index, status in enumerate(NINE_STATUSES):
        enrollment = add_student(
            roster,
            user_id=100 + index,
            name=f"Student {index}",
            enrollment_id=1000 + index,
            workflow_state=EnrollmentState.INACTIVE if index == 6 else EnrollmentState.ACTIVE,
            publishing_status=status,
            publishing_message="previous failure" if status == "error" else None,
        )
        ids.append(enrollment.id)
    active = [eid for i, eid in enumerate(ids) if i != 6]
    return roster, ids, active


@pytest.fixture
def course_file(tmp_path):
    """A small JSON course snapshot on disk."""
    data = {
        "course": {"id": 1, "name": "Biology 101", "account_id": 1, "grading_standard": "default"},
        "users": [
            {"id": 10, "name": "Ada Lovelace"},
            {"id": 11, "name": "Grace Hopper"},
            {"id": 900, "name": "Grade Publisher"},
        ],
        "sections": [{"id": 5, "name": "Section 1", "sis_source_id": "SEC1"}],
        "pseudonyms": [
            {"user_id": 10, "account_id": 1, "unique_id": "ada", "sis_user_id": "S10"},
            {"user_id": 900, "account_id": 1, "unique_id": "publisher", "sis_user_id": "U1"},
        ],
        "enrollments": [
            {"id": 100, "user_id": 10, "course_id": 1, "section_id": 5},
            {"id": 101, "user_id": 11, "course_id": 1, "section_id": 5},
        ],
        "assignment_groups": [{"id": 1, "name": "Assignments", "weight": 100}],
        "assignments": [
            {"id": 1, "name": "Lab 1", "assignment_group_id": 1, "points_possible": 10},
            {"id": 2, "name": "Lab 2", "assignment_group_id": 1, "points_possible": 10},
        ],
        "submissions": [
            {"user_id": 10, "assignment_id": 1, "score": 10},
            {"user_id": 10, "assignment_id": 2, "score": 9},
            {"user_id": 11, "assignment_id": 1, "score": 6},
        ],
    }
    path = tmp_path / "course.json"
    path.write_text(json.dumps(data))
    return path
