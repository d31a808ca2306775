"""Real-time struggle detection over a learner's recent interaction events."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Literal, Optional, Sequence, Union

from engines.performance import ExtendedLearningMetrics
from structured_logging import log_json

_LOGGER = logging.getLogger(__name__)

EventType = Literal[
    "answer_submitted",
    "hint_requested",
    "content_viewed",
    "interaction_started",
    "interaction_completed",
]
EVENT_TYPES = frozenset({
    "answer_submitted",
    "hint_requested",
    "content_viewed",
    "interaction_started",
    "interaction_completed",
})
Severity = Literal["low", "medium", "high"]
OverallSeverity = Literal["none", "low", "medium", "high"]

_SEVERITY_SCORES = {"low": 1, "medium": 2, "high": 3}


@dataclass(frozen=True)
class InteractionEvent:
    timestamp: datetime
    type: EventType
    correct: Optional[bool] = None
    time_spent: Optional[float] = None  # seconds
    attempt_number: Optional[int] = None
    concept_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown interaction event type: {self.type!r}")
        if self.time_spent is not None and self.time_spent < 0:
            raise ValueError("time_spent must be non-negative")


@dataclass(frozen=True)
class StruggleIndicator:
    type: str  # time_on_task, repeated_errors, help_seeking, engagement_drop, difficulty_mismatch
    severity: Severity
    confidence: float
    description: str
    suggested_action: str
    data_points: Dict[str, Union[int, float, str]] = field(default_factory=dict)


@dataclass(frozen=True)
class StruggleIntervention:
    type: str  # hint, simplify, scaffolding, break, review, tutor
    message: str
    action: Optional[str] = None


@dataclass(frozen=True)
class StruggleDetectionResult:
    is_struggling: bool
    indicators: List[StruggleIndicator]
    overall_severity: OverallSeverity
    recommended_intervention: Optional[StruggleIntervention] = None


class StruggleDetector:
    """Flags struggle from event timing, errors, hint use and difficulty fit.

    Each check contributes at most one indicator. The overall severity is the
    confidence-weighted mean of the indicator severities, and the intervention
    follows the most severe indicator, earliest first.
    """

    def __init__(self):
        self.slow_ratio = 2.5
        self.very_slow_ratio = 4.0
        self.rushing_ratio = 0.3
        self.answer_window = 5
        self.help_window = timedelta(minutes=10)
        self.pause_seconds = 300
        self.long_pause_seconds = 600

    def detect(
        self,
        events: Sequence[InteractionEvent],
        metrics: Optional[ExtendedLearningMetrics] = None,
        expected_time: float = 60.0,
        now: Optional[datetime] = None,
    ) -> StruggleDetectionResult:
        """Analyse ``events`` against an expected ``expected_time`` seconds per interaction."""
        if expected_time <= 0:
            raise ValueError("expected_time must be positive")
        metrics = metrics or ExtendedLearningMetrics()
        now = now or datetime.now()

        checks = (
            self._check_time_on_task(events, expected_time),
            self._check_repeated_errors(events),
            self._check_help_seeking(events, now),
            self._check_engagement_drop(events, metrics),
            self._check_difficulty_mismatch(metrics),
        )
        indicators = [indicator for indicator in checks if indicator is not None]
        overall = self._overall_severity(indicators)
        struggling = overall != "none"
        intervention = self._intervention(indicators, overall) if struggling else None

        if struggling:
            log_json(_LOGGER, "struggle_detected", {
                "severity": overall,
                "indicators": [indicator.type for indicator in indicators],
                "intervention": intervention.type if intervention else None,
            })
        return StruggleDetectionResult(
            is_struggling=struggling,
            indicators=indicators,
            overall_severity=overall,
            recommended_intervention=intervention,
        )

    # ------------------------------------------------------------------
    def _check_time_on_task(
        self,
        events: Sequence[InteractionEvent],
        expected_time: float,
    ) -> Optional[StruggleIndicator]:
        if not any(e.type == "interaction_started" for e in events):
            return None
        times = [
            e.time_spent for e in events
            if e.type == "interaction_completed" and e.time_spent is not None
        ]
        if not times:
            return None

        avg_time = sum(times) / len(times)
        ratio = avg_time / expected_time
        if ratio > self.slow_ratio:
            return StruggleIndicator(
                type="time_on_task",
                severity="high" if ratio > self.very_slow_ratio else "medium",
                confidence=min(0.9, 0.5 + (ratio - self.slow_ratio) * 0.1),
                description="Taking significantly longer than expected on interactions",
                suggested_action="Consider offering simpler explanation or scaffolding",
                data_points={
                    "averageTime": round(avg_time),
                    "expectedTime": expected_time,
                    "ratio": f"{ratio:.2f}",
                },
            )
        if ratio < self.rushing_ratio:
            answers = [e for e in events if e.type == "answer_submitted"]
            wrong = sum(1 for e in answers if e.correct is False)
            error_rate = wrong / len(answers) if answers else 0.0
            if error_rate > 0.5:
                return StruggleIndicator(
                    type="time_on_task",
                    severity="medium",
                    confidence=0.7,
                    description="Rushing through content with errors",
                    suggested_action="Encourage slower, more careful reading",
                    data_points={
                        "averageTime": round(avg_time),
                        "expectedTime": expected_time,
                        "errorRate": f"{error_rate * 100:.0f}%",
                    },
                )
        return None

    def _check_repeated_errors(self, events: Sequence[InteractionEvent]) -> Optional[StruggleIndicator]:
        answers = [e for e in events if e.type == "answer_submitted"]
        if len(answers) < 3:
            return None

        recent = answers[-self.answer_window:]
        wrong = sum(1 for e in recent if e.correct is False)
        run = longest = 0
        for answer in recent:
            if answer.correct is False:
                run += 1
                longest = max(longest, run)
            else:
                run = 0

        if longest >= 3 or wrong >= 4:
            return StruggleIndicator(
                type="repeated_errors",
                severity="high" if longest >= 4 else "medium",
                confidence=0.85,
                description=f"{longest} consecutive incorrect answers",
                suggested_action="Provide hint or review prerequisite concept",
                data_points={
                    "consecutiveErrors": longest,
                    "recentErrorRate": f"{wrong / len(recent) * 100:.0f}%",
                },
            )
        return None

    def _check_help_seeking(
        self,
        events: Sequence[InteractionEvent],
        now: datetime,
    ) -> Optional[StruggleIndicator]:
        cutoff = now - self.help_window
        recent = [e for e in events if e.timestamp > cutoff]
        hints = sum(1 for e in recent if e.type == "hint_requested")
        interactions = sum(
            1 for e in recent if e.type in ("interaction_started", "interaction_completed")
        )
        if interactions == 0:
            return None

        # A started/completed pair counts as one interaction
        hint_ratio = hints / max(1.0, interactions / 2)
        if hint_ratio > 0.8 and hints >= 3:
            return StruggleIndicator(
                type="help_seeking",
                severity="high" if hint_ratio > 1.5 else "medium",
                confidence=0.75,
                description="Requesting hints frequently",
                suggested_action="Review foundational concepts or offer tutoring support",
                data_points={
                    "hintsRequested": hints,
                    "interactions": interactions // 2,
                    "windowMinutes": int(self.help_window.total_seconds() // 60),
                },
            )
        return None

    def _check_engagement_drop(
        self,
        events: Sequence[InteractionEvent],
        metrics: ExtendedLearningMetrics,
    ) -> Optional[StruggleIndicator]:
        if len(events) < 2:
            return None

        ordered = sorted(events, key=lambda e: e.timestamp)
        gaps = [
            (later.timestamp - earlier.timestamp).total_seconds()
            for earlier, later in zip(ordered, ordered[1:])
        ]
        avg_gap = sum(gaps) / len(gaps)
        max_gap = max(gaps)

        if max_gap > self.pause_seconds:
            return StruggleIndicator(
                type="engagement_drop",
                severity="high" if max_gap > self.long_pause_seconds else "medium",
                confidence=0.6,
                description="Extended pause detected during learning session",
                suggested_action="Check in with student or suggest a break",
                data_points={
                    "maxGapSeconds": round(max_gap),
                    "avgGapSeconds": round(avg_gap),
                },
            )
        if metrics.recent_trend == "declining":
            return StruggleIndicator(
                type="engagement_drop",
                severity="low",
                confidence=0.5,
                description="Performance trending downward",
                suggested_action="Offer encouragement and check understanding",
                data_points={"trend": "declining", "accuracy": round(metrics.accuracy, 2)},
            )
        return None

    @staticmethod
    def _check_difficulty_mismatch(metrics: ExtendedLearningMetrics) -> Optional[StruggleIndicator]:
        if metrics.graded_responses == 0:
            return None
        accuracy = metrics.accuracy
        difficulty = metrics.adaptive_difficulty

        if difficulty >= 7 and accuracy < 50 and metrics.incorrect_streak >= 2:
            return StruggleIndicator(
                type="difficulty_mismatch",
                severity="high",
                confidence=0.8,
                description="Content difficulty exceeds current skill level",
                suggested_action="Lower difficulty and provide additional support",
                data_points={
                    "currentDifficulty": difficulty,
                    "accuracy": f"{accuracy:g}%",
                    "incorrectStreak": metrics.incorrect_streak,
                },
            )
        if difficulty >= 5 and accuracy < 40:
            return StruggleIndicator(
                type="difficulty_mismatch",
                severity="medium",
                confidence=0.7,
                description="Struggling with current difficulty level",
                suggested_action="Consider reducing difficulty temporarily",
                data_points={"currentDifficulty": difficulty, "accuracy": f"{accuracy:g}%"},
            )
        return None

    # ------------------------------------------------------------------
    @staticmethod
    def _overall_severity(indicators: Sequence[StruggleIndicator]) -> OverallSeverity:
        total_weight = sum(i.confidence for i in indicators)
        if not indicators or total_weight <= 0:
            return "none"
        score = sum(_SEVERITY_SCORES[i.severity] * i.confidence for i in indicators) / total_weight
        if score >= 2.5:
            return "high"
        if score >= 1.5:
            return "medium"
        if score >= 0.5:
            return "low"
        return "none"

    @staticmethod
    def _intervention(
        indicators: Sequence[StruggleIndicator],
        severity: OverallSeverity,
    ) -> StruggleIntervention:
        primary = None
        for level in ("high", "medium", "low"):
            primary = next((i for i in indicators if i.severity == level), None)
            if primary is not None:
                break
        if primary is None:
            return StruggleIntervention("hint", "Need some help? Click here for a hint.")

        if primary.type == "repeated_errors":
            if severity == "high":
                return StruggleIntervention(
                    "review",
                    "Let's review the key concepts before continuing.",
                    "show_concept_review",
                )
            return StruggleIntervention("hint", "Would you like a hint to help you solve this?", "show_hint")
        if primary.type == "time_on_task":
            if "rushing" in primary.description.lower():
                return StruggleIntervention("scaffolding", "Take your time! Read through the question carefully.")
            return StruggleIntervention(
                "simplify",
                "This concept can be tricky. Let me explain it differently.",
                "show_simplified",
            )
        if primary.type == "help_seeking":
            return StruggleIntervention(
                "tutor",
                "Would you like to chat with the AI tutor about this topic?",
                "open_tutor_chat",
            )
        if primary.type == "engagement_drop":
            return StruggleIntervention("break", "You've been working hard! Consider taking a short break.")
        if primary.type == "difficulty_mismatch":
            return StruggleIntervention(
                "simplify",
                "Let me show you an easier version of this concept first.",
                "reduce_difficulty",
            )
        return StruggleIntervention("hint", "Need some help? I'm here to assist you.")


def detect_struggle(
    events: Sequence[InteractionEvent],
    metrics: Optional[ExtendedLearningMetrics] = None,
    expected_time: float = 60.0,
    now: Optional[datetime] = None,
) -> StruggleDetectionResult:
    return StruggleDetector().detect(events, metrics, expected_time, now)


class StruggleTracker:
    """Rolling window of the latest interaction events for one learner session."""

    def __init__(self, max_events: int = 50, detector: Optional[StruggleDetector] = None):
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        self.max_events = max_events
        self.detector = detector or StruggleDetector()
        self._events: List[InteractionEvent] = []

    def add_event(
        self,
        event_type: EventType,
        *,
        correct: Optional[bool] = None,
        time_spent: Optional[float] = None,
        attempt_number: Optional[int] = None,
        concept_key: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> InteractionEvent:
        event = InteractionEvent(
            timestamp=timestamp or datetime.now(),
            type=event_type,
            correct=correct,
            time_spent=time_spent,
            attempt_number=attempt_number,
            concept_key=concept_key,
        )
        self._events.append(event)
        if len(self._events) > self.max_events:
            self._events = self._events[-self.max_events:]
        return event

    def events(self) -> List[InteractionEvent]:
        return list(self._events)

    def analyze(
        self,
        metrics: Optional[ExtendedLearningMetrics] = None,
        expected_time: float = 60.0,
        now: Optional[datetime] = None,
    ) -> StruggleDetectionResult:
        return self.detector.detect(self._events, metrics, expected_time, now)

    def clear(self) -> None:
        self._events = []
