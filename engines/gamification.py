"""XP, levels, streaks, weekly goals and daily challenges.

Every operation takes a ``StudentGamification`` snapshot and returns a new
one; nothing is mutated in place. Day and week boundaries use the host's
local calendar, matching how activity timestamps are recorded upstream.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Dict, Literal, Mapping, Optional, Tuple, TYPE_CHECKING

from engines.validation import UnknownXPAction
from structured_logging import log_json

if TYPE_CHECKING:
    from engines.badges import BadgeCatalog

_LOGGER = logging.getLogger(__name__)

XP_REWARDS: Mapping[str, int] = {
    "module_complete": 50,
    "interaction_correct": 10,
    "interaction_incorrect": 2,  # small XP for attempting
    "perfect_score": 100,
    "daily_challenge": 75,
}
STREAK_BONUS_ACTIONS = frozenset({"module_complete", "interaction_correct", "perfect_score"})
STREAK_BONUS_DAYS = 7
STREAK_BONUS_MULTIPLIER = 1.1

ChallengeType = Literal["quiz", "review", "time_goal"]
_DAILY_CHALLENGES: Tuple[Tuple[ChallengeType, int, int], ...] = (
    ("quiz", 3, 75),
    ("review", 5, 100),
    ("time_goal", 30, 50),  # minutes
)


def calculate_level(total_xp: float) -> int:
    """level = floor(sqrt(total_xp / 100))"""
    if total_xp <= 0:
        return 0
    return math.isqrt(int(total_xp) // 100)


def get_xp_for_next_level(current_level: int) -> int:
    next_level = current_level + 1
    return next_level * next_level * 100


def get_level_progress(total_xp: float, current_level: int) -> float:
    """Percentage (0-100) of the way from ``current_level`` to the next level."""
    current_level_xp = current_level * current_level * 100
    required = get_xp_for_next_level(current_level) - current_level_xp
    progress = (total_xp - current_level_xp) / required * 100
    return min(100.0, max(0.0, progress))


def _week_start(moment: datetime | date) -> date:
    day = moment.date() if isinstance(moment, datetime) else moment
    # Sunday starts the week; date.weekday() has Monday == 0
    return day - timedelta(days=(day.weekday() + 1) % 7)


@dataclass(frozen=True)
class WeeklyGoal:
    target: int = 10
    current: int = 0
    type: Literal["modules", "xp", "time"] = "modules"


@dataclass(frozen=True)
class StudentGamification:
    total_xp: int = 0
    level: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[datetime] = None
    badges: Tuple[str, ...] = ()
    daily_challenge_completed: bool = False
    weekly_goal: WeeklyGoal = WeeklyGoal()


@dataclass(frozen=True)
class XPAction:
    type: str
    metadata: Optional[Mapping[str, object]] = None


@dataclass(frozen=True)
class DailyChallenge:
    id: str
    date: date
    type: ChallengeType
    requirement: int
    xp_reward: int
    completed: bool = False


def generate_daily_challenge(today: Optional[date | datetime] = None) -> DailyChallenge:
    """Deterministic challenge for a calendar day, rotating by day of year."""
    if today is None:
        today = datetime.now()
    day = today.date() if isinstance(today, datetime) else today
    challenge_type, requirement, xp_reward = _DAILY_CHALLENGES[
        day.timetuple().tm_yday % len(_DAILY_CHALLENGES)
    ]
    return DailyChallenge(
        id=f"daily-{day.isoformat()}",
        date=day,
        type=challenge_type,
        requirement=requirement,
        xp_reward=xp_reward,
    )


class GamificationEngine:
    """Reward rules applied to ``StudentGamification`` snapshots.

    Parameters
    ----------
    xp_rewards:
        Base XP per action type.
    streak_bonus_days:
        Current streak at which the bonus multiplier starts to apply.
    streak_bonus_multiplier:
        Multiplier for module completions, correct interactions and perfect
        scores once the streak threshold is reached. Results are floored.
    """

    def __init__(
        self,
        xp_rewards: Optional[Mapping[str, int]] = None,
        streak_bonus_days: int = STREAK_BONUS_DAYS,
        streak_bonus_multiplier: float = STREAK_BONUS_MULTIPLIER,
    ) -> None:
        if streak_bonus_days <= 0:
            raise ValueError("streak_bonus_days must be positive")
        if streak_bonus_multiplier < 1.0:
            raise ValueError("streak_bonus_multiplier must be at least 1.0")
        self.xp_rewards: Dict[str, int] = dict(XP_REWARDS)
        if xp_rewards:
            self.xp_rewards.update(xp_rewards)
        self.streak_bonus_days = int(streak_bonus_days)
        self.streak_bonus_multiplier = float(streak_bonus_multiplier)

    # ------------------------------------------------------------------
    def calculate_xp(self, action: XPAction, gamification: StudentGamification) -> int:
        if action.type not in self.xp_rewards:
            raise UnknownXPAction(action.type)
        base_xp = self.xp_rewards[action.type]
        if (
            action.type in STREAK_BONUS_ACTIONS
            and gamification.current_streak >= self.streak_bonus_days
        ):
            # Round before flooring so 50 * 1.1 stays 55
            base_xp = math.floor(round(base_xp * self.streak_bonus_multiplier, 6))
        return base_xp

    # ------------------------------------------------------------------
    def award_xp(self, gamification: StudentGamification, action: XPAction) -> StudentGamification:
        earned = self.calculate_xp(action, gamification)
        updated = self._with_xp(gamification, gamification.total_xp + earned)
        log_json(_LOGGER, "xp_awarded", {
            "action": action.type,
            "xp": earned,
            "total_xp": updated.total_xp,
            "level": updated.level,
            "current_streak": gamification.current_streak,
        })
        return updated

    # ------------------------------------------------------------------
    def update_streak(
        self,
        gamification: StudentGamification,
        now: Optional[datetime] = None,
    ) -> StudentGamification:
        """Advance the day streak and stamp ``now`` as the latest activity."""
        if now is None:
            now = datetime.now()

        if gamification.last_activity_date is None:
            days_diff = None
        else:
            days_diff = (now.date() - gamification.last_activity_date.date()).days

        new_streak = gamification.current_streak
        if days_diff is None:
            new_streak = max(1, gamification.current_streak)
        elif days_diff == 1:
            new_streak = gamification.current_streak + 1
        elif days_diff > 1:
            new_streak = 1

        challenge_done = gamification.daily_challenge_completed
        if days_diff is None or days_diff >= 1:
            challenge_done = False

        return replace(
            gamification,
            current_streak=new_streak,
            longest_streak=max(gamification.longest_streak, new_streak),
            last_activity_date=now,
            daily_challenge_completed=challenge_done,
        )

    # ------------------------------------------------------------------
    def update_weekly_goal(
        self,
        gamification: StudentGamification,
        increment: int,
        now: Optional[datetime] = None,
    ) -> StudentGamification:
        """Add ``increment`` to the weekly goal, resetting it in a new week.

        Must run before ``update_streak`` for the same activity, since that
        call overwrites ``last_activity_date``.
        """
        if now is None:
            now = datetime.now()
        current = gamification.weekly_goal.current
        last = gamification.last_activity_date
        if last is not None and _week_start(now) != _week_start(last):
            current = 0
        return replace(
            gamification,
            weekly_goal=replace(gamification.weekly_goal, current=current + increment),
        )

    # ------------------------------------------------------------------
    def complete_daily_challenge(
        self,
        gamification: StudentGamification,
        challenge: DailyChallenge,
    ) -> StudentGamification:
        if gamification.daily_challenge_completed:
            return gamification
        updated = self._with_xp(gamification, gamification.total_xp + challenge.xp_reward)
        return replace(updated, daily_challenge_completed=True)

    # ------------------------------------------------------------------
    def award_badge(
        self,
        gamification: StudentGamification,
        badge_id: str,
        catalog: "BadgeCatalog",
    ) -> StudentGamification:
        """Append ``badge_id`` and grant its XP reward; repeated awards are no-ops."""
        if badge_id in gamification.badges:
            return gamification
        badge = catalog.get(badge_id)
        if badge is None:
            _LOGGER.warning("Ignoring award of unknown badge %s", badge_id)
            return gamification
        updated = self._with_xp(gamification, gamification.total_xp + badge.xp_reward)
        updated = replace(updated, badges=gamification.badges + (badge_id,))
        log_json(_LOGGER, "badge_awarded", {
            "badge_id": badge_id,
            "xp_reward": badge.xp_reward,
            "total_xp": updated.total_xp,
            "level": updated.level,
        })
        return updated

    # ------------------------------------------------------------------
    @staticmethod
    def _with_xp(gamification: StudentGamification, total_xp: int) -> StudentGamification:
        return replace(gamification, total_xp=total_xp, level=calculate_level(total_xp))
