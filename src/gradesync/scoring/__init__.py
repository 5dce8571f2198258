"""Score aggregation."""

from .aggregator import (
    EnrollmentScores,
    ScopeScore,
    ScoreAggregator,
    Tally,
    effective_final_score,
)

__all__ = [
    "EnrollmentScores",
    "ScopeScore",
    "ScoreAggregator",
    "Tally",
    "effective_final_score",
]
