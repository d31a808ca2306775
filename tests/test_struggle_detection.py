from datetime import datetime, timedelta

import pytest

from engines.performance import ExtendedLearningMetrics
from engines.struggle_detection import (
    InteractionEvent,
    StruggleTracker,
    detect_struggle,
)

NOW = datetime(2024, 3, 13, 10, 30)


def event(seconds_ago, event_type, **kwargs):
    return InteractionEvent(NOW - timedelta(seconds=seconds_ago), event_type, **kwargs)


def answers(*results, start=100, step=10):
    return [
        event(start - i * step, "answer_submitted", correct=result)
        for i, result in enumerate(results)
    ]


def test_quiet_session_is_not_struggling():
    events = [
        event(120, "interaction_started"),
        event(60, "interaction_completed", time_spent=55),
        *answers(True, False, True),
    ]

    result = detect_struggle(events, ExtendedLearningMetrics(accuracy=80.0, graded_responses=3), now=NOW)

    assert result.is_struggling is False
    assert result.indicators == []
    assert result.overall_severity == "none"
    assert result.recommended_intervention is None


def test_consecutive_wrong_answers():
    result = detect_struggle(answers(True, False, False, False, False), now=NOW)

    indicator = result.indicators[0]
    assert indicator.type == "repeated_errors"
    assert indicator.severity == "high"
    assert indicator.data_points == {"consecutiveErrors": 4, "recentErrorRate": "80%"}
    assert result.overall_severity == "high"
    assert result.recommended_intervention.type == "review"
    assert result.recommended_intervention.action == "show_concept_review"


def test_three_wrong_in_a_row_offers_hint():
    result = detect_struggle(answers(False, False, False), now=NOW)

    assert [i.severity for i in result.indicators] == ["medium"]
    assert result.overall_severity == "medium"
    assert result.recommended_intervention.action == "show_hint"


def test_slow_interactions():
    events = [
        event(400, "interaction_started"),
        event(290, "interaction_completed", time_spent=270),
    ]

    result = detect_struggle(events, now=NOW)

    assert [(i.type, i.severity) for i in result.indicators] == [("time_on_task", "high")]
    assert result.indicators[0].data_points["ratio"] == "4.50"
    assert result.recommended_intervention.type == "simplify"


def test_rushing_with_errors_gets_scaffolding():
    events = [
        event(100, "interaction_started"),
        event(95, "interaction_completed", time_spent=5),
        *answers(False, True, False, start=90),
    ]

    result = detect_struggle(events, now=NOW)

    assert [(i.type, i.description) for i in result.indicators] == [
        ("time_on_task", "Rushing through content with errors")
    ]
    assert result.recommended_intervention.type == "scaffolding"
    assert result.recommended_intervention.action is None


def test_hints_only_count_inside_the_window():
    recent = [
        event(240, "interaction_started"),
        event(200, "hint_requested"),
        event(170, "hint_requested"),
        event(140, "hint_requested"),
        event(100, "interaction_completed", time_spent=60),
    ]
    stale = [event(1200 + i, "hint_requested") for i in range(5)]

    result = detect_struggle(recent, now=NOW)
    with_stale = detect_struggle(stale + recent[:1], now=NOW)

    assert [(i.type, i.severity) for i in result.indicators] == [("help_seeking", "high")]
    assert result.recommended_intervention.action == "open_tutor_chat"
    assert "help_seeking" not in [i.type for i in with_stale.indicators]


def test_long_pause_suggests_break():
    events = [event(900, "content_viewed"), event(200, "content_viewed")]

    result = detect_struggle(events, now=NOW)

    assert [(i.type, i.severity) for i in result.indicators] == [("engagement_drop", "high")]
    assert result.indicators[0].data_points["maxGapSeconds"] == 700
    assert result.recommended_intervention.type == "break"


def test_declining_trend_is_a_low_engagement_signal():
    events = [event(60, "content_viewed"), event(30, "content_viewed")]
    metrics = ExtendedLearningMetrics(accuracy=72.0, recent_trend="declining", graded_responses=6)

    result = detect_struggle(events, metrics, now=NOW)

    assert [(i.type, i.severity) for i in result.indicators] == [("engagement_drop", "low")]
    assert result.overall_severity == "low"


def test_difficulty_mismatch_waits_for_graded_answers():
    hard = ExtendedLearningMetrics(accuracy=30.0, adaptive_difficulty=8, incorrect_streak=2, graded_responses=5)
    fresh = ExtendedLearningMetrics(adaptive_difficulty=8)

    result = detect_struggle([], hard, now=NOW)

    assert [(i.type, i.severity) for i in result.indicators] == [("difficulty_mismatch", "high")]
    assert result.recommended_intervention.action == "reduce_difficulty"
    assert detect_struggle([], fresh, now=NOW).is_struggling is False


def test_overall_severity_is_confidence_weighted():
    events = [event(900, "content_viewed"), event(200, "content_viewed")]
    metrics = ExtendedLearningMetrics(accuracy=35.0, adaptive_difficulty=5, graded_responses=4)

    result = detect_struggle(events, metrics, now=NOW)

    # high (0.6) and medium (0.7): (3 * 0.6 + 2 * 0.7) / 1.3 is about 2.46
    assert [i.type for i in result.indicators] == ["engagement_drop", "difficulty_mismatch"]
    assert result.overall_severity == "medium"
    assert result.recommended_intervention.type == "break"


def test_invalid_inputs():
    with pytest.raises(ValueError):
        InteractionEvent(NOW, "daydreaming")
    with pytest.raises(ValueError):
        InteractionEvent(NOW, "interaction_completed", time_spent=-1)
    with pytest.raises(ValueError):
        detect_struggle([], expected_time=0)


def test_tracker_keeps_latest_events():
    tracker = StruggleTracker(max_events=3)
    for i in range(5):
        tracker.add_event("answer_submitted", correct=False, timestamp=NOW - timedelta(seconds=50 - i))

    assert len(tracker.events()) == 3
    assert tracker.events()[0].timestamp == NOW - timedelta(seconds=48)

    result = tracker.analyze(now=NOW)
    assert result.indicators[0].type == "repeated_errors"
    assert result.indicators[0].data_points["consecutiveErrors"] == 3

    tracker.clear()
    assert tracker.events() == []
    assert tracker.analyze(now=NOW).is_struggling is False
    with pytest.raises(ValueError):
        StruggleTracker(max_events=0)
