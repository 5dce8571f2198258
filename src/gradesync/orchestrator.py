"""GradeExportOrchestrator - ties scoring, CSV export and SIS publishing.

Publishing is split in two:

1. ``publish()`` (request path): validate settings, flip the roster to
   ``pending`` under the roster lock, enqueue the worker job, and arm the
   expiry job when waiting for success.  Returns immediately.
2. ``send_final_grades_to_endpoint()`` (worker): re-validate, recompute
   scores, run the export format and post every batch, isolating failures
   per batch.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable

from .config import PublishingSettings, parse_bool
from .errors import (
    CsvExportError,
    EndpointUndefinedError,
    ExportGeneratorError,
    GradeSyncError,
    GradingStandardRequiredError,
    PublishingConfigurationError,
    PublishingDisabledError,
    PublishingIdentityError,
)
from .formats import ExportFormat, FormatRegistry, PublishBatch
from .formatting import ExportOptions, GradebookCsvWriter
from .logging import TraceLogger
from .models import Enrollment, Pseudonym, ScoreScope, User, utcnow
from .publishing.queue import DeferredTaskQueue, TaskQueue
from .publishing.state_machine import PublishingStateMachine
from .publishing.transport import HttpSisPoster, SisPoster
from .roster import CourseRoster
from .scoring import EnrollmentScores, ScoreAggregator

logger = logging.getLogger(__name__)


class GradeExportOrchestrator:
    """Runs exports and publish cycles for one course roster."""

    def __init__(
        self,
        roster: CourseRoster,
        settings: PublishingSettings | None = None,
        registry: FormatRegistry | None = None,
        poster: SisPoster | None = None,
        queue: TaskQueue | None = None,
        aggregator: ScoreAggregator | None = None,
        clock: Callable[[], datetime] = utcnow,
        trace: TraceLogger | None = None,
    ):
        self.roster = roster
        self.settings = settings or PublishingSettings()
        self.registry = registry or FormatRegistry.with_builtins()
        self._poster = poster
        self._owns_poster = poster is None
        self.queue = queue or DeferredTaskQueue()
        self.aggregator = aggregator or ScoreAggregator()
        self.clock = clock
        self.trace = trace
        self.state = PublishingStateMachine(roster, trace=trace)

    @property
    def course(self):
        return self.roster.course

    @property
    def poster(self) -> SisPoster:
        """The SIS poster; the default HTTP poster is built on first use."""
        if self._poster is None:
            self._poster = HttpSisPoster(
                timeout=self.settings.request_timeout_seconds, trace=self.trace,
            )
        return self._poster

    def close(self) -> None:
        """Close the HTTP poster this orchestrator created, if any."""
        if self._owns_poster and self._poster is not None:
            self._poster.close()
            self._poster = None

    # ========================================================================
    # Scores
    # ========================================================================

    def _compute(
        self,
        user_id: int,
        *,
        grading_period_id: int | None = None,
        exclude_total: bool = False,
    ) -> EnrollmentScores:
        course = self.course
        return self.aggregator.compute_scores(
            user_id,
            self.roster.submissions_for(user_id),
            self.roster.groups_in_order(),
            list(self.roster.assignments.values()),
            course.group_weighting_scheme,
            course.grading_period_group,
            exclude_total=exclude_total,
            grading_period_id=grading_period_id,
        )

    def recompute_scores(self, user_ids: list[int] | None = None) -> dict[int, EnrollmentScores]:
        """Compute and store score rows for every real student enrollment.

        Test students are scored on demand for the CSV only; their scores
        are never stored.
        """
        enrollments = [
            e for e in self.roster.student_enrollments(include_concluded=True, include_inactive=True)
            if not e.is_test_student and (user_ids is None or e.user_id in user_ids)
        ]
        results: dict[int, EnrollmentScores] = {}
        for enrollment in enrollments:
            if enrollment.user_id not in results:
                results[enrollment.user_id] = self._compute(enrollment.user_id)
            self.roster.set_scores(
                enrollment.id,
                results[enrollment.user_id].score_rows(enrollment.id),
            )
        logger.debug("Recomputed scores for %d students", len(results))
        return results

    # ========================================================================
    # CSV export
    # ========================================================================

    def exclude_total(self, grading_period_id: int | None = None) -> bool:
        """Whether the course total is hidden for this view.

        Hidden when final grades are hidden, or when all grading periods are
        viewed together and the course does not display totals for that view.
        """
        course = self.course
        if course.hide_final_grades:
            return True
        if course.has_grading_periods and grading_period_id is None:
            return not course.grading_period_group.display_totals_for_all_grading_periods
        return False

    def export_csv(self, requester: User | None, options: ExportOptions | None = None) -> str:
        """Render the gradebook CSV as seen by *requester*.

        Raises:
            CsvExportError: anything went wrong; no partial CSV is returned.
        """
        options = replace(options or ExportOptions())
        course = self.course

        try:
            if requester is not None:
                options.include_concluded = parse_bool(
                    requester.gradebook_preference(course.id, "show_concluded_enrollments")
                )
                options.include_inactive = parse_bool(
                    requester.gradebook_preference(course.id, "show_inactive_enrollments")
                )
            options.exclude_total = options.exclude_total or self.exclude_total(options.grading_period_id)

            enrollments = self.roster.student_enrollments(
                include_concluded=options.include_concluded,
                include_inactive=options.include_inactive,
            )
            scores: dict[int, EnrollmentScores] = {}
            overrides: dict[int, float | None] = {}
            for enrollment in enrollments:
                if enrollment.user_id not in scores:
                    scores[enrollment.user_id] = self._compute(
                        enrollment.user_id,
                        grading_period_id=options.grading_period_id,
                        exclude_total=options.exclude_total,
                    )
                row = self.roster.score_for(enrollment.id, ScoreScope.COURSE)
                if row is not None and row.override_score is not None:
                    overrides[enrollment.user_id] = row.override_score

            writer = GradebookCsvWriter(
                course,
                self.roster,
                enrollments,
                scores,
                options,
                override_scores=overrides,
            )
            return writer.to_csv()
        except (GradeSyncError, KeyError, ValueError, TypeError) as e:
            logger.error("Gradebook export for course %s failed: %s", course.id, e)
            raise CsvExportError(f"gradebook export failed: {e}") from e

    # ========================================================================
    # Publishing
    # ========================================================================

    def publishable_enrollments(self, target_user_id: int | None = None) -> list[Enrollment]:
        return [
            e for e in self.roster.active_student_enrollments(user_id=target_user_id)
            if not e.is_test_student
        ]

    def validate_publishing(self, requester: User | None) -> tuple[ExportFormat, Pseudonym | None]:
        """Check settings and identity; return the format and publishing login.

        Raises:
            PublishingConfigurationError: in a fixed order, disabled first.
        """
        settings = self.settings
        if not settings.enabled:
            raise PublishingDisabledError()
        if not settings.publish_endpoint:
            raise EndpointUndefinedError()
        export_format = self.registry.get(settings.format_type)
        if export_format.requires_grading_standard and self.course.grading_standard is None:
            raise GradingStandardRequiredError()
        pseudonym = self.roster.publishing_pseudonym(requester, self.course.account_id)
        if export_format.requires_publishing_pseudonym and pseudonym is None:
            raise PublishingIdentityError()
        return export_format, pseudonym

    def publish(self, requester: User | None, target_user_id: int | None = None) -> list[int]:
        """Start a publish cycle and return the enrollment ids now pending.

        Network work happens later, on the task queue.
        """
        self._log(
            "publish_requested",
            requester_id=requester.id if requester else None,
            target_user_id=target_user_id,
        )
        now = self.clock()

        # Snapshot and pending flip happen under one lock so a concurrent
        # cycle cannot interleave between them.
        with self.roster.lock:
            enrollments = self.publishable_enrollments(target_user_id)
            try:
                self.validate_publishing(requester)
            except PublishingConfigurationError as e:
                logger.warning("Grade publishing for course %s refused: %s", self.course.id, e)
                self.state.fail_all(enrollments, str(e))
                raise
            pending = self.state.begin(enrollments, now)

        self.queue.submit(self.send_final_grades_to_endpoint, requester, target_user_id)
        if self.settings.should_kick_off_timeout:
            run_at = now + timedelta(seconds=self.settings.success_timeout_seconds)
            self.queue.submit_at(run_at, self.expire_pending_grade_publishing_statuses, now)
        return pending

    publish_final_grades = publish

    def send_final_grades_to_endpoint(
        self,
        requester: User | None,
        target_user_id: int | None = None,
    ) -> list[PublishBatch]:
        """Worker side of a publish cycle.

        Every batch is attempted even when an earlier one fails; the first
        failure is re-raised once all batches have been tried.
        """
        enrollments = self.publishable_enrollments(target_user_id)
        try:
            export_format, pseudonym = self.validate_publishing(requester)
        except PublishingConfigurationError as e:
            logger.error("Grade publishing for course %s failed: %s", self.course.id, e)
            self.state.fail_all(enrollments, str(e))
            raise

        self.recompute_scores()

        try:
            raw = export_format.generate(
                self.course,
                self.roster,
                enrollments,
                requester,
                pseudonym,
                include_final_grade_overrides=self.course.allow_final_grade_override,
            )
            batches = [PublishBatch.coerce(item) for item in raw or []]
        except Exception as e:
            logger.error("Export format %s failed: %s", export_format.name, e)
            self.state.fail_all(enrollments, str(e))
            raise ExportGeneratorError(str(e)) from e

        in_cycle = {e.id for e in enrollments}
        wait = self.settings.should_kick_off_timeout
        mentioned: set[int] = set()
        first_error: Exception | None = None

        for index, batch in enumerate(batches):
            ids = [i for i in batch.enrollment_ids if i in in_cycle]
            mentioned.update(ids)
            if not batch.postable:
                self.state.mark_unpublishable(ids)
                continue
            try:
                self.poster.post(
                    self.settings.publish_endpoint,
                    batch.payload,
                    batch.mime_type,
                    batch.headers,
                )
            except Exception as e:
                logger.error("Posting batch %d for course %s failed: %s", index, self.course.id, e)
                self.state.mark_batch_failed(ids, str(e))
                if first_error is None:
                    first_error = e
                continue
            self.state.mark_batch_sent(ids, wait)

        self.state.mark_unpublishable([e.id for e in enrollments if e.id not in mentioned])

        if first_error is not None:
            raise first_error
        return batches

    def expire_pending_grade_publishing_statuses(self, cutoff: datetime) -> list[int]:
        return self.state.expire_pending(cutoff)

    def publishing_statuses(self) -> tuple[dict[str, list[Enrollment]], str]:
        return self.state.publishing_statuses(self.publishable_enrollments())

    def _log(self, event_type: str, **data) -> None:
        if self.trace:
            self.trace.log(event_type, **data)
