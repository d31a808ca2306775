"""Dropout risk prediction and proactive intervention triggers.

Risk factors are scored 0-1 and combined as a weighted mean into a 0-100
risk score. Confidence grows with the amount of history behind it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from engines.performance import ExtendedLearningMetrics
from structured_logging import log_json

_LOGGER = logging.getLogger(__name__)

RiskFactorType = Literal[
    "long_absence",
    "engagement_drop",
    "performance_decline",
    "difficulty_spike",
    "pace_mismatch",
]
PredictedOutcome = Literal["complete", "at_risk", "likely_dropout"]
Priority = Literal["high", "medium", "low"]

FACTOR_WEIGHTS: Dict[str, float] = {
    "long_absence": 1.5,
    "engagement_drop": 1.3,
    "performance_decline": 1.2,
    "difficulty_spike": 1.0,
    "pace_mismatch": 0.8,
}
DEFAULT_MINUTES_PER_MODULE = 20.0


def _percent(fraction: float) -> int:
    return math.floor(fraction * 100 + 0.5)


@dataclass(frozen=True)
class DailyActivity:
    date: date
    minutes_spent: float = 0.0
    modules_viewed: int = 0
    interactions_completed: int = 0
    accuracy: float = 0.0


@dataclass(frozen=True)
class LearnerRiskProfile:
    """What the predictor knows about one learner in one course."""

    metrics: Optional[ExtendedLearningMetrics] = None
    last_accessed_at: Optional[datetime] = None
    completed_modules: int = 0
    assessment_count: int = 0
    average_time_per_module: Optional[float] = None  # minutes
    daily_activity: Tuple[DailyActivity, ...] = ()


@dataclass(frozen=True)
class RiskFactor:
    type: RiskFactorType
    severity: float
    description: str
    data_points: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AutomatedAction:
    type: str  # send_reminder, suggest_review, adjust_difficulty, offer_help
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PredictiveRecommendation:
    priority: Priority
    action: str
    reason: str
    automated_action: Optional[AutomatedAction] = None


@dataclass(frozen=True)
class RiskPrediction:
    risk_score: float
    risk_factors: List[RiskFactor]
    predicted_outcome: PredictedOutcome
    confidence_score: float
    recommendations: List[PredictiveRecommendation]
    calculated_at: datetime


@dataclass(frozen=True)
class InterventionDecision:
    trigger: bool
    type: str
    urgency: Literal["immediate", "soon", "scheduled"]


class RiskPredictor:
    def __init__(self):
        self.engagement_drop_threshold = 0.4
        self.performance_drop_ratio = 0.7
        self.absence_warning_days = 7
        self.absence_critical_days = 14
        self.absence_max_days = 30
        self.at_risk_score = 30.0
        self.dropout_score = 70.0

    def calculate_risk_score(
        self,
        profile: LearnerRiskProfile,
        now: Optional[datetime] = None,
    ) -> RiskPrediction:
        """Score how likely the learner is to abandon the course.

        Args:
            profile: metrics, activity history and progress counts.
            now: evaluation time, used for the absence check.

        Returns:
            A ``RiskPrediction``; with no risk factors the score is 0.
        """
        now = now or datetime.now()
        factors = self.identify_risk_factors(profile, now)

        total_weight = sum(FACTOR_WEIGHTS.get(f.type, 1.0) for f in factors)
        weighted = sum(f.severity * FACTOR_WEIGHTS.get(f.type, 1.0) for f in factors)
        risk_score = min(100.0, weighted / total_weight * 100) if total_weight > 0 else 0.0

        if risk_score < self.at_risk_score:
            outcome: PredictedOutcome = "complete"
        elif risk_score < self.dropout_score:
            outcome = "at_risk"
        else:
            outcome = "likely_dropout"

        prediction = RiskPrediction(
            risk_score=risk_score,
            risk_factors=factors,
            predicted_outcome=outcome,
            confidence_score=self._confidence(profile),
            recommendations=self.generate_recommendations(factors),
            calculated_at=now,
        )
        log_json(_LOGGER, "risk_assessed", {
            "risk_score": round(prediction.risk_score, 2),
            "predicted_outcome": outcome,
            "confidence": round(prediction.confidence_score, 2),
            "factors": [f.type for f in factors],
        })
        return prediction

    def identify_risk_factors(
        self,
        profile: LearnerRiskProfile,
        now: Optional[datetime] = None,
    ) -> List[RiskFactor]:
        now = now or datetime.now()
        activity = list(profile.daily_activity)
        checks = (
            self._engagement_drop(activity),
            self._performance_decline(profile.metrics, activity),
            self._long_absence(profile.last_accessed_at, now),
            self._difficulty_spike(profile.metrics),
            self._pace_mismatch(activity, profile),
        )
        return [factor for factor in checks if factor is not None]

    # ------------------------------------------------------------------
    def _engagement_drop(self, activity: Sequence[DailyActivity]) -> Optional[RiskFactor]:
        if len(activity) < 7:
            return None

        # Last three days against the seven before them
        recent = activity[-3:]
        previous = activity[-10:-3]
        recent_minutes = sum(d.minutes_spent for d in recent) / len(recent)
        previous_minutes = sum(d.minutes_spent for d in previous) / len(previous)
        recent_interactions = sum(d.interactions_completed for d in recent) / len(recent)
        previous_interactions = sum(d.interactions_completed for d in previous) / len(previous)

        minutes_drop = (previous_minutes - recent_minutes) / previous_minutes if previous_minutes > 0 else 0.0
        interactions_drop = (
            (previous_interactions - recent_interactions) / previous_interactions
            if previous_interactions > 0 else 0.0
        )
        if minutes_drop <= self.engagement_drop_threshold and interactions_drop <= self.engagement_drop_threshold:
            return None

        severity = max(minutes_drop, interactions_drop)
        return RiskFactor(
            type="engagement_drop",
            severity=min(1.0, severity),
            description=f"Engagement has dropped {_percent(severity)}% in recent days",
            data_points=(
                f"Previous avg: {previous_minutes:.1f} min/day",
                f"Recent avg: {recent_minutes:.1f} min/day",
                f"Previous interactions: {previous_interactions:.1f}/day",
                f"Recent interactions: {recent_interactions:.1f}/day",
            ),
        )

    def _performance_decline(
        self,
        metrics: Optional[ExtendedLearningMetrics],
        activity: Sequence[DailyActivity],
    ) -> Optional[RiskFactor]:
        if len(activity) < 5:
            return None

        recent_accuracy = sum(d.accuracy for d in activity[-5:]) / 5
        overall = metrics.accuracy if metrics is not None else 0.0
        trend = metrics.recent_trend if metrics is not None else "unknown"

        if overall > 0 and recent_accuracy < overall * self.performance_drop_ratio:
            decline = (overall - recent_accuracy) / overall
            return RiskFactor(
                type="performance_decline",
                severity=min(1.0, decline * 2),
                description=f"Recent performance is {_percent(decline)}% below average",
                data_points=(
                    f"Overall accuracy: {overall:.1f}%",
                    f"Recent accuracy: {recent_accuracy:.1f}%",
                    f"Trend: {trend}",
                ),
            )
        if metrics is not None and metrics.recent_trend == "declining" and metrics.incorrect_streak >= 3:
            return RiskFactor(
                type="performance_decline",
                severity=0.6,
                description=(
                    f"Performance trending downward with {metrics.incorrect_streak} "
                    "incorrect answers in a row"
                ),
                data_points=(
                    "Trend: declining",
                    f"Incorrect streak: {metrics.incorrect_streak}",
                    f"Current accuracy: {metrics.accuracy:g}%",
                ),
            )
        return None

    def _long_absence(self, last_accessed_at: Optional[datetime], now: datetime) -> Optional[RiskFactor]:
        if last_accessed_at is None:
            return RiskFactor(
                type="long_absence",
                severity=0.9,
                description="No activity recorded",
                data_points=("No last access date available",),
            )

        days = math.floor((now - last_accessed_at).total_seconds() / 86400)
        points = (f"Last accessed: {last_accessed_at.date().isoformat()}", f"Days absent: {days}")
        if days >= self.absence_critical_days:
            return RiskFactor(
                type="long_absence",
                severity=min(1.0, days / self.absence_max_days),
                description=f"No activity for {days} days",
                data_points=points,
            )
        if days >= self.absence_warning_days:
            return RiskFactor(
                type="long_absence",
                severity=days / self.absence_critical_days,
                description=f"Inactive for {days} days",
                data_points=points,
            )
        return None

    @staticmethod
    def _difficulty_spike(metrics: Optional[ExtendedLearningMetrics]) -> Optional[RiskFactor]:
        if metrics is None:
            return None
        accuracy = metrics.accuracy
        difficulty = metrics.adaptive_difficulty
        streak = metrics.incorrect_streak

        if accuracy < 40 and difficulty >= 7:
            return RiskFactor(
                type="difficulty_spike",
                severity=0.8,
                description="Content difficulty appears too high for current skill level",
                data_points=(
                    f"Accuracy: {accuracy:g}%",
                    f"Difficulty level: {difficulty}/10",
                    f"Incorrect streak: {streak}",
                ),
            )
        if streak >= 5 and accuracy < 50:
            return RiskFactor(
                type="difficulty_spike",
                severity=0.7,
                description="Struggling with current content difficulty",
                data_points=(f"Incorrect streak: {streak}", f"Accuracy: {accuracy:g}%"),
            )
        return None

    @staticmethod
    def _pace_mismatch(
        activity: Sequence[DailyActivity],
        profile: LearnerRiskProfile,
    ) -> Optional[RiskFactor]:
        if len(activity) < 7 or profile.metrics is None:
            return None

        recent = activity[-7:]
        minutes_per_module = sum(d.minutes_spent for d in recent) / max(1, sum(d.modules_viewed for d in recent))
        expected = profile.average_time_per_module or DEFAULT_MINUTES_PER_MODULE
        accuracy = profile.metrics.accuracy
        points = (
            f"Avg time per module: {minutes_per_module:.1f} min",
            f"Expected time: {expected:g} min",
            f"Accuracy: {accuracy:g}%",
        )

        if minutes_per_module < expected * 0.5 and accuracy < 60:
            return RiskFactor(
                type="pace_mismatch",
                severity=0.5,
                description="May be rushing through content without proper understanding",
                data_points=points,
            )
        if minutes_per_module > expected * 2 and accuracy < 70:
            return RiskFactor(
                type="pace_mismatch",
                severity=0.6,
                description="Taking significantly longer than average, may be struggling",
                data_points=points,
            )
        return None

    @staticmethod
    def _confidence(profile: LearnerRiskProfile) -> float:
        confidence = 0.0
        days = len(profile.daily_activity)
        if days >= 14:
            confidence += 0.3
        elif days >= 7:
            confidence += 0.2
        elif days >= 3:
            confidence += 0.1

        if profile.completed_modules >= 10:
            confidence += 0.3
        elif profile.completed_modules >= 5:
            confidence += 0.2
        elif profile.completed_modules >= 1:
            confidence += 0.1

        if profile.metrics is not None:
            # accuracy plus trend
            confidence += 0.3
        if profile.assessment_count > 0:
            confidence += 0.2
        return min(1.0, round(confidence, 6))

    # ------------------------------------------------------------------
    def generate_recommendations(self, factors: Sequence[RiskFactor]) -> List[PredictiveRecommendation]:
        """Actionable follow-ups per risk factor, or a single monitoring note."""
        recommendations: List[PredictiveRecommendation] = []
        for factor in factors:
            if factor.type == "long_absence":
                recommendations.append(PredictiveRecommendation(
                    priority="high" if factor.severity > 0.7 else "medium",
                    action="Send gentle reminder to return to learning",
                    reason="Student has been absent for an extended period",
                    automated_action=AutomatedAction("send_reminder", {
                        "message": "We've missed you! Ready to continue your learning journey?",
                        "includeProgress": True,
                    }),
                ))
            elif factor.type == "engagement_drop":
                recommendations.append(PredictiveRecommendation(
                    priority="medium",
                    action="Send motivational message and check-in",
                    reason="Engagement has decreased significantly",
                    automated_action=AutomatedAction("send_reminder", {
                        "message": "We noticed you've been less active lately. Everything okay?",
                        "offerSupport": True,
                    }),
                ))
            elif factor.type == "performance_decline":
                recommendations.append(PredictiveRecommendation(
                    priority="high",
                    action="Offer additional support and review materials",
                    reason="Student is struggling with recent content",
                    automated_action=AutomatedAction("suggest_review", {
                        "reviewConcepts": True,
                        "offerTutorHelp": True,
                    }),
                ))
                if factor.severity > 0.6:
                    recommendations.append(PredictiveRecommendation(
                        priority="high",
                        action="Consider adjusting difficulty level",
                        reason="Content may be too challenging",
                        automated_action=AutomatedAction("adjust_difficulty", {
                            "adjustment": -1,
                            "temporary": True,
                        }),
                    ))
            elif factor.type == "difficulty_spike":
                recommendations.append(PredictiveRecommendation(
                    priority="high",
                    action="Reduce difficulty and provide scaffolding",
                    reason="Student is overwhelmed by current difficulty",
                    automated_action=AutomatedAction("adjust_difficulty", {
                        "adjustment": -2,
                        "addExamples": True,
                        "simplifyLanguage": True,
                    }),
                ))
                recommendations.append(PredictiveRecommendation(
                    priority="medium",
                    action="Suggest reviewing prerequisite concepts",
                    reason="May have gaps in foundational knowledge",
                    automated_action=AutomatedAction("suggest_review", {"reviewPreviousModules": True}),
                ))
            elif factor.type == "pace_mismatch":
                if "rushing" in factor.description:
                    recommendations.append(PredictiveRecommendation(
                        priority="medium",
                        action="Encourage student to slow down and review",
                        reason="Student may be rushing through content",
                        automated_action=AutomatedAction("offer_help", {
                            "message": "Take your time to fully understand each concept",
                            "suggestReview": True,
                        }),
                    ))
                else:
                    recommendations.append(PredictiveRecommendation(
                        priority="medium",
                        action="Offer additional support or simplify content",
                        reason="Student is taking longer than expected",
                        automated_action=AutomatedAction("offer_help", {
                            "offerTutorChat": True,
                            "simplifyContent": True,
                        }),
                    ))

        if not recommendations:
            recommendations.append(PredictiveRecommendation(
                priority="low",
                action="Continue monitoring progress",
                reason="Student appears to be on track",
            ))
        return recommendations

    @staticmethod
    def should_trigger_intervention(prediction: RiskPrediction) -> InterventionDecision:
        if prediction.risk_score >= 70 and prediction.confidence_score >= 0.5:
            return InterventionDecision(True, "critical_support", "immediate")
        if prediction.risk_score >= 50 and prediction.confidence_score >= 0.4:
            return InterventionDecision(True, "proactive_support", "soon")
        if prediction.risk_score >= 30:
            return InterventionDecision(True, "wellness_check", "scheduled")
        return InterventionDecision(False, "none", "scheduled")
