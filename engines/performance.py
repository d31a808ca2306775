"""Performance metrics calculator for adaptive learning decisions.

Metrics are always recomputed from the full interaction history rather than
patched incrementally. Only the adaptive difficulty level carries over from
the previous snapshot, because each evaluation nudges it relative to where the
learner was.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Literal, Optional, Sequence

from engines.difficulty_manager import DEFAULT_DIFFICULTY, DifficultyManager
from structured_logging import log_json

_LOGGER = logging.getLogger(__name__)

Trend = Literal["improving", "stable", "declining"]
TREND_WINDOW = 10
TREND_MARGIN = 10.0


@dataclass(frozen=True)
class InteractionResponse:
    """A single graded or ungraded learner response to a content block."""

    block_id: str
    concept_key: Optional[str]
    is_correct: Optional[bool]
    score: float
    max_score: float
    submitted_at: datetime
    time_spent: Optional[float] = None

    @property
    def graded(self) -> bool:
        # Self-assessment and "reveal" interactions carry no score
        return self.max_score > 0

    @property
    def full_score(self) -> bool:
        return self.score >= self.max_score


@dataclass(frozen=True)
class ExtendedLearningMetrics:
    accuracy: float = 0.0
    recent_trend: Trend = "stable"
    concepts_mastered: FrozenSet[str] = frozenset()
    concepts_struggling: FrozenSet[str] = frozenset()
    correct_streak: int = 0
    incorrect_streak: int = 0
    adaptive_difficulty: int = DEFAULT_DIFFICULTY
    total_responses: int = 0
    graded_responses: int = 0
    correct_responses: int = 0
    average_time_per_question: float = 0.0
    concept_mastery_map: Dict[str, float] = field(default_factory=dict)


def neutral_metrics(previous: Optional[ExtendedLearningMetrics] = None) -> ExtendedLearningMetrics:
    """Metrics for a learner without any responses yet."""
    difficulty = previous.adaptive_difficulty if previous is not None else DEFAULT_DIFFICULTY
    return ExtendedLearningMetrics(adaptive_difficulty=difficulty)


def _accuracy(responses: Sequence[InteractionResponse]) -> float:
    total_max = sum(r.max_score for r in responses)
    if total_max <= 0:
        return 0.0
    return 100.0 * sum(r.score for r in responses) / total_max


class PerformanceMetricsCalculator:
    """Aggregate per-response correctness into ``ExtendedLearningMetrics``.

    Parameters
    ----------
    trend_window:
        Number of most recent graded responses compared against the overall
        accuracy to classify the trend.
    trend_margin:
        Percentage points the window must differ from overall accuracy before
        the trend is reported as improving or declining.
    difficulty_manager:
        Rule table used to move the adaptive difficulty level.
    """

    def __init__(
        self,
        trend_window: int = TREND_WINDOW,
        trend_margin: float = TREND_MARGIN,
        difficulty_manager: Optional[DifficultyManager] = None,
    ) -> None:
        if trend_window <= 0:
            raise ValueError("trend_window must be positive")
        if trend_margin < 0:
            raise ValueError("trend_margin may not be negative")
        self.trend_window = int(trend_window)
        self.trend_margin = float(trend_margin)
        self.difficulty_manager = difficulty_manager or DifficultyManager()

    # ----- public API --------------------------------------------------
    def calculate(
        self,
        responses: Sequence[InteractionResponse],
        previous: Optional[ExtendedLearningMetrics] = None,
        *,
        carry_streaks: bool = False,
    ) -> ExtendedLearningMetrics:
        """Recompute metrics from ``responses``.

        ``carry_streaks`` seeds the streak counters from ``previous`` for
        callers that pass only the responses submitted since that snapshot.
        """

        if not responses:
            return neutral_metrics(previous)

        ordered = sorted(responses, key=lambda r: r.submitted_at)
        graded = [r for r in ordered if r.graded]

        accuracy = _accuracy(graded)
        correct_streak, incorrect_streak = self._streaks(ordered, previous if carry_streaks else None)
        mastered, struggling = self._concept_sets(ordered)
        trend = self._recent_trend(graded, accuracy)

        timed = [r.time_spent for r in graded if r.time_spent is not None]
        average_time = round(sum(timed) / len(timed), 2) if timed else 0.0

        current_difficulty = previous.adaptive_difficulty if previous is not None else DEFAULT_DIFFICULTY
        decision = self.difficulty_manager.adjust_difficulty(
            accuracy,
            trend,
            correct_streak,
            incorrect_streak,
            current_difficulty,
        )

        metrics = ExtendedLearningMetrics(
            accuracy=accuracy,
            recent_trend=trend,
            concepts_mastered=frozenset(mastered),
            concepts_struggling=frozenset(struggling),
            correct_streak=correct_streak,
            incorrect_streak=incorrect_streak,
            adaptive_difficulty=decision.new_difficulty,
            total_responses=len(ordered),
            graded_responses=len(graded),
            correct_responses=len([r for r in graded if r.is_correct is True]),
            average_time_per_question=average_time,
            concept_mastery_map=self._concept_mastery_map(ordered),
        )
        log_json(_LOGGER, "metrics_recomputed", {
            "accuracy": round(metrics.accuracy, 2),
            "recent_trend": metrics.recent_trend,
            "correct_streak": metrics.correct_streak,
            "incorrect_streak": metrics.incorrect_streak,
            "adaptive_difficulty": metrics.adaptive_difficulty,
            "difficulty_reason": decision.reason,
            "responses": metrics.total_responses,
        }, level=logging.DEBUG)
        return metrics

    # ----- helpers -----------------------------------------------------
    @staticmethod
    def _streaks(
        ordered: Sequence[InteractionResponse],
        previous: Optional[ExtendedLearningMetrics],
    ) -> tuple[int, int]:
        correct = previous.correct_streak if previous is not None else 0
        incorrect = previous.incorrect_streak if previous is not None else 0
        for response in ordered:
            if response.is_correct is True:
                correct += 1
                incorrect = 0
            elif response.is_correct is False:
                incorrect += 1
                correct = 0
        return correct, incorrect

    @staticmethod
    def _concept_sets(ordered: Sequence[InteractionResponse]) -> tuple[set[str], set[str]]:
        mastered: set[str] = set()
        struggling: set[str] = set()
        for response in ordered:
            key = response.concept_key
            if not key:
                continue
            if response.is_correct is True and response.full_score:
                mastered.add(key)
                struggling.discard(key)
            elif response.is_correct is False:
                struggling.add(key)
                mastered.discard(key)
        return mastered, struggling

    def _recent_trend(self, graded: Sequence[InteractionResponse], overall: float) -> Trend:
        if not graded:
            return "stable"
        window_accuracy = _accuracy(graded[-self.trend_window:])
        if window_accuracy > overall + self.trend_margin:
            return "improving"
        if window_accuracy < overall - self.trend_margin:
            return "declining"
        return "stable"

    @staticmethod
    def _concept_mastery_map(ordered: Sequence[InteractionResponse]) -> Dict[str, float]:
        stats: Dict[str, List[int]] = {}
        for response in ordered:
            if not response.concept_key or response.is_correct is None:
                continue
            entry = stats.setdefault(response.concept_key, [0, 0])
            entry[1] += 1
            if response.is_correct:
                entry[0] += 1
        return {
            concept: round(100.0 * correct / total, 2)
            for concept, (correct, total) in stats.items()
        }


def calculate_course_progress(completed_modules: Sequence[str], total_modules: int) -> int:
    """Whole-percent share of the course's modules completed, rounded half-up."""
    if total_modules <= 0:
        return 0
    return math.floor(len(completed_modules) / total_modules * 100 + 0.5)


def calculate_time_remaining(average_time_per_module: float, remaining_modules: int) -> float:
    if remaining_modules < 0:
        raise ValueError("remaining_modules may not be negative")
    return average_time_per_module * remaining_modules
