"""Load course snapshots from JSON, and write publishing state back.

A course file looks like::

    {
      "course": {"id": 1, "name": "Biology", "account_id": 1,
                 "grading_standard": "default"},
      "users": [{"id": 10, "name": "Ada Lovelace"}],
      "sections": [{"id": 5, "name": "Section 1"}],
      "pseudonyms": [{"user_id": 10, "account_id": 1, "unique_id": "ada",
                      "sis_user_id": "S10"}],
      "enrollments": [{"id": 100, "user_id": 10, "course_id": 1, "section_id": 5}],
      "assignment_groups": [{"id": 1, "name": "Assignments", "weight": 100}],
      "assignments": [{"id": 1, "name": "Lab 1", "assignment_group_id": 1,
                       "points_possible": 10}],
      "submissions": [{"user_id": 10, "assignment_id": 1, "score": 9}],
      "overrides": {"100": 95.0}
    }
"""

from __future__ import annotations

import json
from pathlib import Path

from .models import (
    Assignment,
    AssignmentGroup,
    Course,
    Enrollment,
    Pseudonym,
    Section,
    Submission,
    User,
)
from .roster import CourseRoster


def roster_from_dict(data: dict) -> CourseRoster:
    if "course" not in data:
        raise ValueError("course file has no 'course' entry")
    roster = CourseRoster(course=Course.from_dict(data["course"]))
    for d in data.get("users", []):
        roster.add_user(User.from_dict(d))
    for d in data.get("sections", []):
        roster.add_section(Section.from_dict(d))
    for d in data.get("pseudonyms", []):
        roster.add_pseudonym(Pseudonym.from_dict(d))
    for d in data.get("enrollments", []):
        roster.add_enrollment(Enrollment.from_dict(d))
    for d in data.get("assignment_groups", []):
        roster.add_assignment_group(AssignmentGroup.from_dict(d))
    for d in data.get("assignments", []):
        roster.add_assignment(Assignment.from_dict(d))
    for d in data.get("submissions", []):
        roster.add_submission(Submission.from_dict(d))
    for enrollment_id, override in (data.get("overrides") or {}).items():
        roster.set_override_score(int(enrollment_id), override)
    return roster


def load_course(path: Path | str) -> CourseRoster:
    with open(path) as f:
        return roster_from_dict(json.load(f))


def dump_course(roster: CourseRoster, source: Path | str, output: Path | str) -> Path:
    """Copy *source* to *output* with the roster's current enrollment state."""
    with open(source) as f:
        data = json.load(f)
    with roster.lock:
        data["enrollments"] = [
            e.to_dict() for e in sorted(roster.enrollments.values(), key=lambda e: e.id)
        ]
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(data, indent=2))
    return output
