"""ScoreAggregator: current/final scores per group, grading period and course.

Current score
    earned points on graded work / points possible of that same work.
Final score
    earned points / points possible of every counted assignment, so missing
    work counts as zero.

Excused submissions leave both numerator and denominator.  Omitted,
unpublished, ``not_graded`` and invisible assignments are never counted.
Each score is computed twice: a *posted* variant that ignores scores
students cannot see yet, and an *unposted* variant that uses everything.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import AggregationError
from ..models import (
    Assignment,
    AssignmentGroup,
    GradingPeriodGroup,
    Score,
    ScoreScope,
    Submission,
    WeightingScheme,
)


@dataclass
class Tally:
    """Earned vs possible points over a set of assignments."""
    earned: float = 0.0
    possible: float = 0.0
    count: int = 0

    def __add__(self, other: "Tally") -> "Tally":
        return Tally(
            earned=self.earned + other.earned,
            possible=self.possible + other.possible,
            count=self.count + other.count,
        )

    @property
    def points(self) -> float | None:
        return self.earned if self.count else None

    @property
    def percent(self) -> float | None:
        """``None`` when nothing with points possible was counted."""
        if self.possible <= 0:
            return None
        return self.earned / self.possible * 100


@dataclass
class ScopeScore:
    """Scores for one scope (course, grading period or assignment group)."""
    current_points: float | None = None
    final_points: float | None = None
    current_score: float | None = None
    final_score: float | None = None
    unposted_current_points: float | None = None
    unposted_final_points: float | None = None
    unposted_current_score: float | None = None
    unposted_final_score: float | None = None

    def to_score(
        self,
        enrollment_id: int,
        scope: ScoreScope,
        scope_id: int | None = None,
    ) -> Score:
        return Score(
            enrollment_id=enrollment_id,
            scope=scope,
            scope_id=scope_id,
            current_points=self.current_points,
            final_points=self.final_points,
            current_score=self.current_score,
            final_score=self.final_score,
            unposted_current_points=self.unposted_current_points,
            unposted_final_points=self.unposted_final_points,
            unposted_current_score=self.unposted_current_score,
            unposted_final_score=self.unposted_final_score,
        )


@dataclass
class EnrollmentScores:
    user_id: int
    total: ScopeScore = field(default_factory=ScopeScore)
    groups: dict[int, ScopeScore] = field(default_factory=dict)
    periods: dict[int, ScopeScore] = field(default_factory=dict)
    total_excluded: bool = False

    @property
    def current_score(self) -> float | None:
        return self.total.current_score

    @property
    def final_score(self) -> float | None:
        return self.total.final_score

    @property
    def current_points(self) -> float | None:
        return self.total.current_points

    @property
    def final_points(self) -> float | None:
        return self.total.final_points

    def score_rows(self, enrollment_id: int) -> list[Score]:
        rows = [self.total.to_score(enrollment_id, ScoreScope.COURSE)]
        rows.extend(
            s.to_score(enrollment_id, ScoreScope.ASSIGNMENT_GROUP, gid)
            for gid, s in self.groups.items()
        )
        rows.extend(
            s.to_score(enrollment_id, ScoreScope.GRADING_PERIOD, pid)
            for pid, s in self.periods.items()
        )
        return rows


@dataclass
class _Level:
    """Course-level numbers for one variant (posted or unposted)."""
    current_score: float | None = None
    final_score: float | None = None
    current_points: float | None = None
    final_points: float | None = None


def _round(value: float | None) -> float | None:
    return None if value is None else round(value, 2)


def effective_final_score(score: Score | None, override_enabled: bool) -> float | None:
    """Final score used for export and publishing.

    An override replaces the computed final score when overrides are
    enabled; the current score is never replaced.
    """
    if score is None:
        return None
    if override_enabled and score.override_score is not None:
        return score.override_score
    return score.final_score


class ScoreAggregator:
    """Computes :class:`EnrollmentScores` for one student.

    Stateless: build one per export or publish invocation and pass it down.
    """

    def compute_scores(
        self,
        user_id: int,
        submissions: Iterable[Submission],
        assignment_groups: Iterable[AssignmentGroup],
        assignments: Iterable[Assignment],
        weighting_scheme: WeightingScheme = WeightingScheme.EQUAL,
        grading_period_group: GradingPeriodGroup | None = None,
        *,
        exclude_total: bool = False,
        grading_period_id: int | None = None,
    ) -> EnrollmentScores:
        """Aggregate one student's submissions.

        Args:
            user_id: Student whose work is scored.
            submissions: Submissions (other students' entries are ignored).
            assignment_groups: Every group in the course.
            assignments: Every assignment in the course.
            weighting_scheme: ``equal`` or ``percent`` group weighting.
            grading_period_group: Periods; blended by weight when weighted.
            exclude_total: Suppress the course-level total entirely.
            grading_period_id: Restrict scoring to one grading period.
        """
        subs = {s.assignment_id: s for s in submissions if s.user_id == user_id}
        groups = sorted(assignment_groups, key=lambda g: (g.position, g.id))
        relevant = [
            a for a in assignments
            if a.counts_toward_grade and a.is_visible_to(user_id)
        ]
        self._validate(groups, relevant, subs)

        if grading_period_id is not None:
            relevant = [a for a in relevant if self._period_of(a, subs) == grading_period_id]

        periods = []
        if grading_period_group is not None and grading_period_id is None:
            periods = grading_period_group.ordered_periods()
        weighted_periods = bool(periods) and grading_period_group.weighted

        result = EnrollmentScores(user_id=user_id, total_excluded=exclude_total)
        variants = {}
        for posted_only in (True, False):
            tallies = self._tally_groups(groups, relevant, subs, posted_only)
            period_levels = {}
            for period in periods:
                in_period = [a for a in relevant if self._period_of(a, subs) == period.id]
                period_tallies = self._tally_groups(groups, in_period, subs, posted_only)
                period_levels[period.id] = self._course_level(groups, period_tallies, weighting_scheme)

            if weighted_periods:
                level = _Level(
                    current_score=self._blend(
                        (period_levels[p.id].current_score, p.weight) for p in periods
                    ),
                    final_score=self._blend(
                        (period_levels[p.id].final_score, p.weight) for p in periods
                    ),
                    current_points=self._sum_points(l.current_points for l in period_levels.values()),
                    final_points=self._sum_points(l.final_points for l in period_levels.values()),
                )
            else:
                level = self._course_level(groups, tallies, weighting_scheme)
            variants[posted_only] = (level, tallies, period_levels)

        posted_level, posted_tallies, posted_periods = variants[True]
        unposted_level, unposted_tallies, unposted_periods = variants[False]

        if not exclude_total:
            result.total = self._scope_from_levels(posted_level, unposted_level)

        for group in groups:
            cur, fin = posted_tallies[group.id]
            ucur, ufin = unposted_tallies[group.id]
            result.groups[group.id] = ScopeScore(
                current_points=_round(cur.points),
                final_points=_round(fin.points),
                current_score=_round(cur.percent),
                final_score=_round(fin.percent),
                unposted_current_points=_round(ucur.points),
                unposted_final_points=_round(ufin.points),
                unposted_current_score=_round(ucur.percent),
                unposted_final_score=_round(ufin.percent),
            )

        for period in periods:
            result.periods[period.id] = self._scope_from_levels(
                posted_periods[period.id], unposted_periods[period.id]
            )
        return result

    # ------------------------------------------------------------------
    # Group level
    # ------------------------------------------------------------------

    def _tally_groups(
        self,
        groups: list[AssignmentGroup],
        assignments: list[Assignment],
        subs: dict[int, Submission],
        posted_only: bool,
    ) -> dict[int, tuple[Tally, Tally]]:
        return {
            g.id: self._tally_group(
                g,
                [a for a in assignments if a.assignment_group_id == g.id],
                subs,
                posted_only,
            )
            for g in groups
        }

    def _tally_group(
        self,
        group: AssignmentGroup,
        assignments: list[Assignment],
        subs: dict[int, Submission],
        posted_only: bool,
    ) -> tuple[Tally, Tally]:
        """Return ``(current, final)`` tallies for one group."""
        current_items: list[tuple[Assignment, float, float]] = []
        final_items: list[tuple[Assignment, float, float]] = []

        for assignment in assignments:
            sub = subs.get(assignment.id)
            if sub is not None and sub.excused:
                continue
            possible = float(assignment.points_possible or 0.0)
            score = None
            if sub is not None and sub.is_graded:
                visible = sub.posted and not assignment.muted
                if visible or not posted_only:
                    score = float(sub.score)
            if score is not None:
                current_items.append((assignment, score, possible))
            final_items.append((assignment, score if score is not None else 0.0, possible))

        current = self._apply_drop_rules(group, current_items)
        final = self._apply_drop_rules(group, final_items)
        return self._tally(current), self._tally(final)

    @staticmethod
    def _tally(items: list[tuple[Assignment, float, float]]) -> Tally:
        return Tally(
            earned=sum(score for _, score, _ in items),
            possible=sum(possible for _, _, possible in items),
            count=len(items),
        )

    @staticmethod
    def _apply_drop_rules(
        group: AssignmentGroup,
        items: list[tuple[Assignment, float, float]],
    ) -> list[tuple[Assignment, float, float]]:
        """Drop the lowest/highest scoring items, always keeping one."""
        if not (group.drop_lowest or group.drop_highest) or len(items) < 2:
            return items

        def ratio(item: tuple[Assignment, float, float]) -> float:
            _, score, possible = item
            if possible <= 0:
                return math.inf if score > 0 else 0.0
            return score / possible

        protected = [i for i in items if i[0].id in group.never_drop]
        candidates = sorted(
            (i for i in items if i[0].id not in group.never_drop),
            key=lambda i: (ratio(i), i[0].id),
        )
        budget = len(items) - 1
        low = min(group.drop_lowest, len(candidates), budget)
        candidates = candidates[low:]
        high = min(group.drop_highest, len(candidates), budget - low)
        if high:
            candidates = candidates[:-high]
        return protected + candidates

    # ------------------------------------------------------------------
    # Course level
    # ------------------------------------------------------------------

    def _course_level(
        self,
        groups: list[AssignmentGroup],
        tallies: dict[int, tuple[Tally, Tally]],
        weighting_scheme: WeightingScheme,
    ) -> _Level:
        current_total = sum((tallies[g.id][0] for g in groups), Tally())
        final_total = sum((tallies[g.id][1] for g in groups), Tally())

        if weighting_scheme == WeightingScheme.PERCENT:
            current = self._blend((tallies[g.id][0].percent, g.weight) for g in groups)
            final = self._blend((tallies[g.id][1].percent, g.weight) for g in groups)
        else:
            current = current_total.percent
            final = final_total.percent

        return _Level(
            current_score=current,
            final_score=final,
            current_points=current_total.points,
            final_points=final_total.points,
        )

    @staticmethod
    def _blend(parts: Iterable[tuple[float | None, float]]) -> float | None:
        """Weighted blend of percentages.

        A part without a percentage (no points possible) adds nothing to
        either the weighted sum or the total weight.  Total weights under
        100 are scaled up to 100; a total weight of zero gives no score.
        """
        weighted_sum = 0.0
        full_weight = 0.0
        contributors = 0
        for percent, weight in parts:
            if percent is None:
                continue
            contributors += 1
            weighted_sum += percent * weight
            full_weight += weight
        if not contributors:
            return None
        if full_weight <= 0:
            return None
        if full_weight < 100:
            return weighted_sum / full_weight
        return weighted_sum / 100

    @staticmethod
    def _sum_points(values: Iterable[float | None]) -> float | None:
        present = [v for v in values if v is not None]
        return sum(present) if present else None

    @staticmethod
    def _scope_from_levels(posted: _Level, unposted: _Level) -> ScopeScore:
        return ScopeScore(
            current_points=_round(posted.current_points),
            final_points=_round(posted.final_points),
            current_score=_round(posted.current_score),
            final_score=_round(posted.final_score),
            unposted_current_points=_round(unposted.current_points),
            unposted_final_points=_round(unposted.final_points),
            unposted_current_score=_round(unposted.current_score),
            unposted_final_score=_round(unposted.final_score),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _period_of(assignment: Assignment, subs: dict[int, Submission]) -> int | None:
        """Cached submission attribution wins over the assignment's period."""
        sub = subs.get(assignment.id)
        if sub is not None and sub.grading_period_id is not None:
            return sub.grading_period_id
        return assignment.grading_period_id

    @staticmethod
    def _validate(
        groups: list[AssignmentGroup],
        assignments: list[Assignment],
        subs: dict[int, Submission],
    ) -> None:
        group_ids = {g.id for g in groups}
        for group in groups:
            if group.weight < 0:
                raise AggregationError(f"assignment group {group.id} has a negative weight")
        for a in assignments:
            if a.assignment_group_id not in group_ids:
                raise AggregationError(
                    f"assignment {a.id} belongs to unknown group {a.assignment_group_id}"
                )
            points = a.points_possible
            if points is not None and (
                isinstance(points, bool)
                or not isinstance(points, (int, float))
                or points < 0
            ):
                raise AggregationError(f"assignment {a.id} has invalid points possible: {points!r}")
            sub = subs.get(a.id)
            if sub is not None and sub.score is not None and (
                isinstance(sub.score, bool) or not isinstance(sub.score, (int, float))
            ):
                raise AggregationError(
                    f"submission for assignment {a.id} has a non-numeric score: {sub.score!r}"
                )
