"""Per-enrollment grade publishing state machine.

::

    unpublished ──► pending ──► publishing ──► published
         ▲             │            │
         │             ├────────────┴──► error
         │             └──► published (no success wait)
         └── any non-pending state ──► unpublishable

``pending`` and ``publishing`` older than the success timeout are expired
to ``error`` with the message ``expired``.

Every write goes through ``CourseRoster.transition`` so a status and its
message always change together.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from ..logging import TraceLogger
from ..models import Enrollment, PublishingStatus
from ..roster import CourseRoster

logger = logging.getLogger(__name__)

EXPIRED_MESSAGE = "expired"

STATUS_LABELS = {
    PublishingStatus.UNPUBLISHED: "Not Synced",
    PublishingStatus.PENDING: "Pending",
    PublishingStatus.PUBLISHING: "Syncing",
    PublishingStatus.PUBLISHED: "Synced",
    PublishingStatus.ERROR: "Error",
    PublishingStatus.UNPUBLISHABLE: "Unsyncable",
}

# Most urgent first: the overall course status is the first one present.
OVERALL_PRECEDENCE = [
    PublishingStatus.ERROR,
    PublishingStatus.UNPUBLISHED,
    PublishingStatus.PENDING,
    PublishingStatus.PUBLISHING,
    PublishingStatus.PUBLISHED,
    PublishingStatus.UNPUBLISHABLE,
]

_IN_FLIGHT = {PublishingStatus.PENDING, PublishingStatus.PUBLISHING}


def _as_status(value) -> PublishingStatus | None:
    if isinstance(value, PublishingStatus):
        return value
    if value is None or value == "":
        return PublishingStatus.UNPUBLISHED
    try:
        return PublishingStatus(value)
    except ValueError:
        return None


def status_translation(status, message: str | None = None) -> str:
    """Human-readable label for a publishing status.

    >>> status_translation("error", "endpoint undefined")
    'Error: endpoint undefined'
    """
    known = _as_status(status)
    if known is None:
        label = f"Unknown status, {status}"
    else:
        label = STATUS_LABELS[known]
    if message:
        return f"{label}: {message}"
    return label


class PublishingStateMachine:
    """Drives enrollments through the publishing states."""

    def __init__(self, roster: CourseRoster, trace: TraceLogger | None = None):
        self.roster = roster
        self.trace = trace

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin(self, enrollments: Iterable[Enrollment], now: datetime) -> list[int]:
        """Flip *enrollments* to ``pending`` and stamp the attempt time.

        Compare-and-set against the status each enrollment had in the
        caller's snapshot; enrollments changed by someone else in between
        are left alone.  Returns the ids that moved.
        """
        snapshot = {e.id: e.publishing_status for e in enrollments}
        rejected = self.roster.transition(
            snapshot,
            PublishingStatus.PENDING,
            None,
            attempt_at=now,
            expected=snapshot,
        )
        if rejected:
            logger.warning("Enrollments changed before publishing began: %s", rejected)
        moved = [eid for eid in snapshot if eid not in set(rejected)]
        self._log("statuses_pending", enrollment_ids=moved)
        return moved

    def fail_all(self, enrollments: Iterable[Enrollment], message: str) -> None:
        ids = [e.id for e in enrollments]
        self.roster.transition(ids, PublishingStatus.ERROR, message)
        self._log("publish_failed", enrollment_ids=ids, message=message)

    def mark_batch_sent(self, enrollment_ids: Iterable[int], wait_for_success: bool) -> PublishingStatus:
        """A batch was accepted by the endpoint.

        With *wait_for_success* the enrollments stay ``publishing`` until
        the SIS confirms or the expiry job runs.
        """
        status = PublishingStatus.PUBLISHING if wait_for_success else PublishingStatus.PUBLISHED
        self.roster.transition(list(enrollment_ids), status, None)
        return status

    def mark_batch_failed(self, enrollment_ids: Iterable[int], message: str) -> None:
        ids = list(enrollment_ids)
        self.roster.transition(ids, PublishingStatus.ERROR, message)
        self._log("batch_failed", enrollment_ids=ids, message=message)

    def mark_unpublishable(self, enrollment_ids: Iterable[int]) -> None:
        ids = list(enrollment_ids)
        if not ids:
            return
        self.roster.transition(ids, PublishingStatus.UNPUBLISHABLE, None)
        self._log("batch_unpublishable", enrollment_ids=ids)

    def expire_pending(
        self,
        cutoff: datetime,
        enrollments: Iterable[Enrollment] | None = None,
    ) -> list[int]:
        """Expire in-flight enrollments last attempted at or before *cutoff*.

        Safe to run any number of times; only ``pending``/``publishing``
        enrollments are touched.  A naive *cutoff* is taken as UTC.
        """
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        with self.roster.lock:
            if enrollments is None:
                enrollments = self.roster.student_enrollments(
                    include_concluded=True, include_inactive=True
                )
            current = [self.roster.enrollments[e.id] for e in enrollments if e.id in self.roster.enrollments]
            stale = {
                e.id: e.publishing_status
                for e in current
                if e.publishing_status in _IN_FLIGHT
                and e.last_publish_attempt_at is not None
                and e.last_publish_attempt_at <= cutoff
            }
            if not stale:
                return []
            self.roster.transition(stale, PublishingStatus.ERROR, EXPIRED_MESSAGE, expected=stale)

        expired = list(stale)
        logger.info("Expired %d pending grade publishing statuses", len(expired))
        self._log("statuses_expired", enrollment_ids=expired, cutoff=cutoff.isoformat())
        return expired

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def publishing_statuses(
        self,
        enrollments: Iterable[Enrollment],
    ) -> tuple[dict[str, list[Enrollment]], str]:
        """Group enrollments by translated status and derive the overall one.

        Unknown statuses count as ``error`` for the overall status.  With no
        enrollments at all the course reads as ``unpublished``.
        """
        messages: dict[str, list[Enrollment]] = {}
        present: set[PublishingStatus] = set()
        for enrollment in enrollments:
            label = status_translation(enrollment.publishing_status, enrollment.publishing_message)
            messages.setdefault(label, []).append(enrollment)
            present.add(_as_status(enrollment.publishing_status) or PublishingStatus.ERROR)

        overall = PublishingStatus.UNPUBLISHED
        for status in OVERALL_PRECEDENCE:
            if status in present:
                overall = status
                break
        return messages, overall.value

    def _log(self, event_type: str, **data) -> None:
        if self.trace:
            self.trace.log(event_type, **data)
