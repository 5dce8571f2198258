"""In-memory course roster: enrollments, gradebook structure and scores.

``CourseRoster`` stands in for the host application's roster, submission
and identity providers.  It is read-mostly; the only writer during a
publish cycle is the state machine, which goes through :meth:`transition`.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable

from .models import (
    Assignment,
    AssignmentGroup,
    Course,
    Enrollment,
    EnrollmentState,
    Pseudonym,
    PublishingStatus,
    Score,
    ScoreScope,
    Section,
    Submission,
    User,
)


@dataclass
class CourseRoster:
    course: Course
    users: dict[int, User] = field(default_factory=dict)
    sections: dict[int, Section] = field(default_factory=dict)
    pseudonyms: list[Pseudonym] = field(default_factory=list)
    enrollments: dict[int, Enrollment] = field(default_factory=dict)
    assignment_groups: dict[int, AssignmentGroup] = field(default_factory=dict)
    assignments: dict[int, Assignment] = field(default_factory=dict)
    submissions: list[Submission] = field(default_factory=list)
    scores: dict[tuple[int, ScoreScope, int | None], Score] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    # ------------------------------------------------------------------
    # Population helpers
    # ------------------------------------------------------------------

    def add_user(self, user: User) -> User:
        self.users[user.id] = user
        return user

    def add_section(self, section: Section) -> Section:
        self.sections[section.id] = section
        return section

    def add_pseudonym(self, pseudonym: Pseudonym) -> Pseudonym:
        self.pseudonyms.append(pseudonym)
        return pseudonym

    def add_enrollment(self, enrollment: Enrollment) -> Enrollment:
        self.enrollments[enrollment.id] = enrollment
        return enrollment

    def add_assignment_group(self, group: AssignmentGroup) -> AssignmentGroup:
        self.assignment_groups[group.id] = group
        return group

    def add_assignment(self, assignment: Assignment) -> Assignment:
        if assignment.assignment_group_id not in self.assignment_groups:
            raise ValueError(
                f"assignment {assignment.id} references unknown group "
                f"{assignment.assignment_group_id}"
            )
        self.assignments[assignment.id] = assignment
        return assignment

    def add_submission(self, submission: Submission) -> Submission:
        # One submission per (student, assignment); regrading replaces it.
        self.submissions = [
            s for s in self.submissions
            if (s.user_id, s.assignment_id) != (submission.user_id, submission.assignment_id)
        ]
        self.submissions.append(submission)
        return submission

    # ------------------------------------------------------------------
    # Roster provider
    # ------------------------------------------------------------------

    def student_enrollments(
        self,
        *,
        include_concluded: bool = False,
        include_inactive: bool = False,
        user_id: int | None = None,
    ) -> list[Enrollment]:
        """Student enrollments filtered by workflow state, ordered by id.

        Deleted enrollments are never returned.
        """
        allowed = {EnrollmentState.ACTIVE}
        if include_concluded:
            allowed.add(EnrollmentState.COMPLETED)
        if include_inactive:
            allowed.update({EnrollmentState.INACTIVE, EnrollmentState.INVITED})

        with self.lock:
            found = [
                e for e in self.enrollments.values()
                if e.workflow_state in allowed
                and (user_id is None or e.user_id == user_id)
            ]
        return sorted(found, key=lambda e: e.id)

    def active_student_enrollments(self, user_id: int | None = None) -> list[Enrollment]:
        return self.student_enrollments(user_id=user_id)

    def get_enrollment(self, enrollment_id: int) -> Enrollment:
        with self.lock:
            return self.enrollments[enrollment_id]

    # ------------------------------------------------------------------
    # Assignment / submission provider
    # ------------------------------------------------------------------

    def groups_in_order(self) -> list[AssignmentGroup]:
        return sorted(self.assignment_groups.values(), key=lambda g: (g.position, g.id))

    def assignments_for_scoring(self) -> list[Assignment]:
        return [a for a in self.assignments.values() if a.counts_toward_grade]

    def submissions_for(self, user_id: int) -> list[Submission]:
        return [s for s in self.submissions if s.user_id == user_id]

    def submission_for(self, user_id: int, assignment_id: int) -> Submission | None:
        for s in self.submissions:
            if s.user_id == user_id and s.assignment_id == assignment_id:
                return s
        return None

    # ------------------------------------------------------------------
    # Identity provider
    # ------------------------------------------------------------------

    def pseudonyms_for(self, user_id: int, account_id: int | None = None) -> list[Pseudonym]:
        return [
            p for p in self.pseudonyms
            if p.user_id == user_id and (account_id is None or p.account_id == account_id)
        ]

    def publishing_pseudonym(self, user: User | None, account_id: int) -> Pseudonym | None:
        """The login a user publishes under: one in *account_id* with an SIS id."""
        if user is None:
            return None
        for p in self.pseudonyms_for(user.id, account_id):
            if p.sis_user_id:
                return p
        return None

    # ------------------------------------------------------------------
    # Scores
    # ------------------------------------------------------------------

    def set_scores(self, enrollment_id: int, rows: Iterable[Score]) -> None:
        """Replace the derived score rows of one enrollment.

        Existing override scores survive a recompute.
        """
        with self.lock:
            for row in rows:
                key = (enrollment_id, row.scope, row.scope_id)
                previous = self.scores.get(key)
                if previous is not None and row.override_score is None:
                    row = replace(row, override_score=previous.override_score)
                self.scores[key] = row

    def score_for(
        self,
        enrollment_id: int,
        scope: ScoreScope = ScoreScope.COURSE,
        scope_id: int | None = None,
    ) -> Score | None:
        return self.scores.get((enrollment_id, scope, scope_id))

    def set_override_score(self, enrollment_id: int, override_score: float | None) -> Score:
        with self.lock:
            key = (enrollment_id, ScoreScope.COURSE, None)
            row = self.scores.get(key) or Score(enrollment_id=enrollment_id)
            row = replace(row, override_score=override_score)
            self.scores[key] = row
            return row

    # ------------------------------------------------------------------
    # Publishing state writes
    # ------------------------------------------------------------------

    def transition(
        self,
        enrollment_ids: Iterable[int],
        status: PublishingStatus,
        message: str | None = None,
        *,
        attempt_at: datetime | None = None,
        expected: dict[int, PublishingStatus | str] | None = None,
    ) -> list[int]:
        """Move enrollments to *status* in one write each.

        Each enrollment object is swapped for an updated copy so status,
        message and timestamp are never observed half-written.  With
        *expected* the write becomes compare-and-set: enrollments whose
        current status differs from the expected one are left alone.

        Returns the ids that were *not* updated.
        """
        rejected: list[int] = []
        with self.lock:
            for enrollment_id in enrollment_ids:
                current = self.enrollments.get(enrollment_id)
                if current is None:
                    rejected.append(enrollment_id)
                    continue
                if expected is not None and current.publishing_status != expected.get(enrollment_id):
                    rejected.append(enrollment_id)
                    continue
                changes = {"publishing_status": status, "publishing_message": message}
                if attempt_at is not None:
                    changes["last_publish_attempt_at"] = attempt_at
                self.enrollments[enrollment_id] = replace(current, **changes)
        return rejected
