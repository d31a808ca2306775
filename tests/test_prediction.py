from datetime import date, datetime, timedelta

import pytest

from engines.performance import ExtendedLearningMetrics
from engines.prediction import (
    DailyActivity,
    LearnerRiskProfile,
    RiskPrediction,
    RiskPredictor,
)

NOW = datetime(2024, 3, 13, 10, 30)


def days(minutes, interactions=4, modules=1, accuracy=80.0):
    start = date(2024, 3, 13) - timedelta(days=len(minutes))
    return tuple(
        DailyActivity(start + timedelta(days=i), m, modules, interactions, accuracy)
        for i, m in enumerate(minutes)
    )


@pytest.fixture
def predictor():
    return RiskPredictor()


def test_active_learner_is_on_track(predictor):
    profile = LearnerRiskProfile(
        metrics=ExtendedLearningMetrics(accuracy=85.0, adaptive_difficulty=5),
        last_accessed_at=NOW - timedelta(hours=5),
        completed_modules=6,
        assessment_count=2,
        daily_activity=days([20] * 10),
    )

    prediction = predictor.calculate_risk_score(profile, NOW)

    assert prediction.risk_factors == []
    assert prediction.risk_score == 0.0
    assert prediction.predicted_outcome == "complete"
    assert prediction.confidence_score == pytest.approx(0.9)
    assert [r.action for r in prediction.recommendations] == ["Continue monitoring progress"]
    assert prediction.calculated_at == NOW


def test_unknown_last_access_counts_as_absence(predictor):
    prediction = predictor.calculate_risk_score(LearnerRiskProfile(), NOW)

    assert [f.type for f in prediction.risk_factors] == ["long_absence"]
    assert prediction.risk_score == pytest.approx(90.0)
    assert prediction.predicted_outcome == "likely_dropout"
    assert prediction.confidence_score == 0.0
    assert prediction.recommendations[0].priority == "high"
    assert prediction.recommendations[0].automated_action.type == "send_reminder"


@pytest.mark.parametrize(
    "absent_days,severity",
    [(3, None), (7, 0.5), (10, 10 / 14), (14, 14 / 30), (45, 1.0)],
)
def test_absence_severity_scales_with_days(predictor, absent_days, severity):
    profile = LearnerRiskProfile(last_accessed_at=NOW - timedelta(days=absent_days, hours=1))

    factors = predictor.identify_risk_factors(profile, NOW)

    if severity is None:
        assert factors == []
    else:
        assert factors[0].type == "long_absence"
        assert factors[0].severity == pytest.approx(severity)
        assert f"Days absent: {absent_days}" in factors[0].data_points


def test_engagement_drop_compares_last_three_days(predictor):
    profile = LearnerRiskProfile(
        last_accessed_at=NOW,
        daily_activity=days([30] * 7 + [6, 6, 6], interactions=5),
    )

    factors = predictor.identify_risk_factors(profile, NOW)

    assert [f.type for f in factors] == ["engagement_drop"]
    assert factors[0].severity == pytest.approx(0.8)
    assert factors[0].description == "Engagement has dropped 80% in recent days"


def test_recent_accuracy_below_average_is_performance_decline(predictor):
    activity = days([20] * 5, accuracy=30.0)
    profile = LearnerRiskProfile(
        metrics=ExtendedLearningMetrics(accuracy=75.0),
        last_accessed_at=NOW,
        daily_activity=activity,
    )

    prediction = predictor.calculate_risk_score(profile, NOW)

    assert [f.type for f in prediction.risk_factors] == ["performance_decline"]
    # (75 - 30) / 75 = 0.6, doubled and capped
    assert prediction.risk_factors[0].severity == 1.0
    actions = [r.automated_action.type for r in prediction.recommendations]
    assert actions == ["suggest_review", "adjust_difficulty"]


def test_declining_streak_without_daily_history_is_not_scored(predictor):
    metrics = ExtendedLearningMetrics(accuracy=70.0, recent_trend="declining", incorrect_streak=3)
    profile = LearnerRiskProfile(metrics=metrics, last_accessed_at=NOW, daily_activity=days([20] * 5))

    factors = predictor.identify_risk_factors(profile, NOW)
    assert [(f.type, f.severity) for f in factors] == [("performance_decline", 0.6)]

    short_history = LearnerRiskProfile(metrics=metrics, last_accessed_at=NOW, daily_activity=days([20] * 4))
    assert predictor.identify_risk_factors(short_history, NOW) == []


def test_difficulty_spike(predictor):
    too_hard = LearnerRiskProfile(
        metrics=ExtendedLearningMetrics(accuracy=35.0, adaptive_difficulty=8),
        last_accessed_at=NOW,
    )
    streaky = LearnerRiskProfile(
        metrics=ExtendedLearningMetrics(accuracy=45.0, adaptive_difficulty=4, incorrect_streak=5),
        last_accessed_at=NOW,
    )

    hard = predictor.calculate_risk_score(too_hard, NOW)

    assert [(f.type, f.severity) for f in hard.risk_factors] == [("difficulty_spike", 0.8)]
    assert [r.priority for r in hard.recommendations] == ["high", "medium"]
    assert hard.recommendations[0].automated_action.payload["adjustment"] == -2
    assert [(f.type, f.severity) for f in predictor.identify_risk_factors(streaky, NOW)] == [
        ("difficulty_spike", 0.7)
    ]


def test_pace_mismatch_rushing_and_slow(predictor):
    metrics = ExtendedLearningMetrics(accuracy=55.0)
    rushing = LearnerRiskProfile(
        metrics=metrics,
        last_accessed_at=NOW,
        average_time_per_module=20,
        daily_activity=days([10] * 7, modules=2, accuracy=55.0),
    )
    slow = LearnerRiskProfile(
        metrics=metrics,
        last_accessed_at=NOW,
        average_time_per_module=10,
        daily_activity=days([30] * 7, accuracy=55.0),
    )

    rushing_factors = predictor.identify_risk_factors(rushing, NOW)
    slow_factors = predictor.identify_risk_factors(slow, NOW)

    assert [(f.type, f.severity) for f in rushing_factors] == [("pace_mismatch", 0.5)]
    assert "rushing" in rushing_factors[0].description
    assert [(f.type, f.severity) for f in slow_factors] == [("pace_mismatch", 0.6)]
    assert predictor.generate_recommendations(rushing_factors)[0].action == (
        "Encourage student to slow down and review"
    )
    assert predictor.generate_recommendations(slow_factors)[0].action == (
        "Offer additional support or simplify content"
    )


def test_score_is_weighted_mean_of_factor_severities(predictor):
    profile = LearnerRiskProfile(
        metrics=ExtendedLearningMetrics(accuracy=35.0, adaptive_difficulty=8),
        last_accessed_at=NOW - timedelta(days=7),
    )

    prediction = predictor.calculate_risk_score(profile, NOW)

    # absence 0.5 * 1.5 and difficulty 0.8 * 1.0 over a weight of 2.5
    assert prediction.risk_score == pytest.approx(62.0)
    assert prediction.predicted_outcome == "at_risk"


@pytest.mark.parametrize(
    "score,confidence,expected",
    [
        (80, 0.6, (True, "critical_support", "immediate")),
        (80, 0.45, (True, "proactive_support", "soon")),
        (55, 0.3, (True, "wellness_check", "scheduled")),
        (30, 0.9, (True, "wellness_check", "scheduled")),
        (29.9, 0.9, (False, "none", "scheduled")),
    ],
)
def test_intervention_trigger_levels(score, confidence, expected):
    prediction = RiskPrediction(score, [], "at_risk", confidence, [], NOW)

    decision = RiskPredictor.should_trigger_intervention(prediction)

    assert (decision.trigger, decision.type, decision.urgency) == expected
