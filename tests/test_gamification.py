import re
from datetime import date, datetime, timedelta

import pytest

from engines.badges import DEFAULT_BADGE_CATALOG
from engines.gamification import (
    GamificationEngine,
    StudentGamification,
    WeeklyGoal,
    XPAction,
    calculate_level,
    generate_daily_challenge,
    get_level_progress,
    get_xp_for_next_level,
)
from engines.validation import UnknownXPAction


def test_level_values_and_monotonicity():
    assert calculate_level(0) == 0
    assert calculate_level(99) == 0
    assert calculate_level(100) == 1
    assert calculate_level(399) == 1
    assert calculate_level(400) == 2
    assert calculate_level(10000) == 10
    levels = [calculate_level(xp) for xp in range(0, 20000, 37)]
    assert levels == sorted(levels)


def test_xp_for_next_level_sequence():
    assert get_xp_for_next_level(0) == 100
    assert get_xp_for_next_level(1) == 400
    assert get_xp_for_next_level(2) == 900
    sequence = [get_xp_for_next_level(level) for level in range(20)]
    assert all(a < b for a, b in zip(sequence, sequence[1:]))


def test_level_progress_values_and_bounds():
    assert get_level_progress(100, 1) == 0
    assert get_level_progress(250, 1) == 50
    for xp in range(0, 5000, 53):
        assert 0 <= get_level_progress(xp, calculate_level(xp)) <= 100
    # Inconsistent inputs are clamped rather than leaving the range
    assert get_level_progress(5000, 1) == 100
    assert get_level_progress(0, 3) == 0


def test_streak_bonus_scenario_awards_55_xp():
    engine = GamificationEngine()
    gamification = StudentGamification(total_xp=1000, level=3, current_streak=7, longest_streak=7)

    updated = engine.award_xp(gamification, XPAction("module_complete"))

    assert updated.total_xp == 1055
    assert updated.level == calculate_level(1055)


def test_streak_bonus_only_for_eligible_actions():
    engine = GamificationEngine()
    on_streak = StudentGamification(current_streak=10)
    assert engine.calculate_xp(XPAction("interaction_correct"), on_streak) == 11
    assert engine.calculate_xp(XPAction("perfect_score"), on_streak) == 110
    assert engine.calculate_xp(XPAction("interaction_incorrect"), on_streak) == 2
    assert engine.calculate_xp(XPAction("daily_challenge"), on_streak) == 75
    assert engine.calculate_xp(XPAction("module_complete"), StudentGamification(current_streak=6)) == 50


def test_unknown_xp_action_is_rejected():
    with pytest.raises(UnknownXPAction):
        GamificationEngine().award_xp(StudentGamification(), XPAction("watched_video"))
    # The streak bonus is a multiplier, not an action of its own
    with pytest.raises(UnknownXPAction):
        GamificationEngine().award_xp(StudentGamification(current_streak=9), XPAction("streak_bonus"))


def test_award_xp_keeps_level_in_sync():
    engine = GamificationEngine()
    gamification = StudentGamification()
    for _ in range(12):
        gamification = engine.award_xp(gamification, XPAction("module_complete"))
        assert gamification.level == calculate_level(gamification.total_xp)
    assert gamification.total_xp == 600
    assert gamification.level == 2


class TestStreaks:
    def setup_method(self):
        self.engine = GamificationEngine()
        self.last = datetime(2024, 3, 12, 23, 15)

    def make(self, streak=4, longest=9, challenge_done=True):
        return StudentGamification(
            current_streak=streak,
            longest_streak=longest,
            last_activity_date=self.last,
            daily_challenge_completed=challenge_done,
        )

    def test_same_day_keeps_streak(self):
        updated = self.engine.update_streak(self.make(), self.last + timedelta(minutes=30))
        assert updated.current_streak == 4
        assert updated.daily_challenge_completed

    def test_next_day_increments_even_after_midnight(self):
        updated = self.engine.update_streak(self.make(), datetime(2024, 3, 13, 0, 5))
        assert updated.current_streak == 5
        assert updated.longest_streak == 9
        assert not updated.daily_challenge_completed
        assert updated.last_activity_date == datetime(2024, 3, 13, 0, 5)

    def test_gap_resets_streak(self):
        updated = self.engine.update_streak(self.make(), datetime(2024, 3, 14, 8, 0))
        assert updated.current_streak == 1
        assert updated.longest_streak == 9

    def test_longest_streak_grows_with_current(self):
        updated = self.engine.update_streak(self.make(streak=9), datetime(2024, 3, 13, 9, 0))
        assert updated.current_streak == 10
        assert updated.longest_streak == 10

    def test_first_activity_starts_streak(self):
        updated = self.engine.update_streak(StudentGamification(), self.last)
        assert updated.current_streak == 1
        assert updated.longest_streak == 1


def test_weekly_goal_resets_on_sunday_boundary():
    engine = GamificationEngine()
    wednesday = datetime(2024, 3, 13, 10, 0)

    same_week = StudentGamification(
        last_activity_date=datetime(2024, 3, 10, 9, 0),  # Sunday
        weekly_goal=WeeklyGoal(target=10, current=4),
    )
    assert engine.update_weekly_goal(same_week, 1, wednesday).weekly_goal.current == 5

    previous_week = StudentGamification(
        last_activity_date=datetime(2024, 3, 9, 21, 0),  # Saturday
        weekly_goal=WeeklyGoal(target=10, current=4),
    )
    reset = engine.update_weekly_goal(previous_week, 1, wednesday)
    assert reset.weekly_goal.current == 1
    assert reset.weekly_goal.target == 10


def test_daily_challenge_shape_and_rotation():
    challenge = generate_daily_challenge()
    assert re.match(r"^daily-\d{4}-\d{2}-\d{2}$", challenge.id)
    assert challenge.completed is False
    assert challenge.xp_reward > 0
    assert challenge.type in {"quiz", "review", "time_goal"}

    assert generate_daily_challenge(date(2024, 1, 3)).type == "quiz"
    review = generate_daily_challenge(date(2024, 1, 1))
    assert (review.type, review.requirement, review.xp_reward) == ("review", 5, 100)
    time_goal = generate_daily_challenge(datetime(2024, 1, 2, 18, 0))
    assert (time_goal.type, time_goal.requirement, time_goal.xp_reward) == ("time_goal", 30, 50)
    assert time_goal.id == "daily-2024-01-02"


def test_daily_challenge_completion_is_one_shot():
    engine = GamificationEngine()
    challenge = generate_daily_challenge(date(2024, 1, 1))

    done = engine.complete_daily_challenge(StudentGamification(total_xp=50), challenge)
    assert done.daily_challenge_completed
    assert done.total_xp == 150
    assert done.level == 1

    again = engine.complete_daily_challenge(done, challenge)
    assert again == done


def test_award_badge_is_idempotent():
    engine = GamificationEngine()
    gamification = StudentGamification()

    for _ in range(3):
        gamification = engine.award_badge(gamification, "first_steps", DEFAULT_BADGE_CATALOG)

    assert gamification.badges == ("first_steps",)
    assert gamification.total_xp == 50


def test_award_unknown_badge_is_ignored():
    engine = GamificationEngine()
    gamification = StudentGamification(total_xp=10)
    assert engine.award_badge(gamification, "not_a_badge", DEFAULT_BADGE_CATALOG) == gamification


def test_engine_rejects_bad_bonus_settings():
    with pytest.raises(ValueError):
        GamificationEngine(streak_bonus_days=0)
    with pytest.raises(ValueError):
        GamificationEngine(streak_bonus_multiplier=0.5)
