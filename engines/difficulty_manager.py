"""Dynamic difficulty adjustment for optimal learning challenge."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 10
DEFAULT_DIFFICULTY = 5


@dataclass(frozen=True)
class DifficultyRules:
    excellent_threshold: float = 90.0   # accuracy at or above this + improving = increase
    good_threshold: float = 70.0        # accuracy at or above this = maintain
    struggling_threshold: float = 70.0  # accuracy below this = decrease
    critical_threshold: float = 50.0    # accuracy below this = major decrease
    incorrect_streak_threshold: int = 3
    correct_streak_threshold: int = 5
    major_increase: int = 2
    minor_increase: int = 1
    minor_decrease: int = -1
    major_decrease: int = -2


@dataclass(frozen=True)
class ModuleCandidate:
    id: str
    title: str
    difficulty_level: int
    is_completed: bool = False


@dataclass(frozen=True)
class ContentAdaptations:
    show_extra_examples: bool
    show_simplified_content: bool
    show_advanced_content: bool
    suggest_review: bool


@dataclass(frozen=True)
class DifficultyDecision:
    adjustment: int
    new_difficulty: int
    reason: str
    recommendations: List[Dict[str, str]] = field(default_factory=list)


class DifficultyManager:
    """Rule table mapping recent performance to a 1-10 difficulty level.

    Rules are checked in priority order and the first match wins: an
    incorrect streak, critical accuracy, struggling accuracy, excellent and
    improving accuracy, a correct streak, good but declining, then good and
    stable. The resulting level is clamped to 1-10 and ``adjustment`` reports
    the change actually applied.
    """

    def __init__(self, rules: DifficultyRules | None = None):
        self.rules = rules or DifficultyRules()

    def adjust_difficulty(self,
                          accuracy: float,
                          recent_trend: str,
                          correct_streak: int,
                          incorrect_streak: int,
                          current_difficulty: int = DEFAULT_DIFFICULTY) -> DifficultyDecision:
        """Calculate difficulty adjustment based on performance metrics."""
        rules = self.rules
        recommendations: List[Dict[str, str]] = []
        adjustment = 0
        reason = ""

        if incorrect_streak >= rules.incorrect_streak_threshold:
            adjustment = rules.major_decrease
            reason = f"{incorrect_streak} incorrect answers in a row. Slowing down to help you learn."
            recommendations.append({"type": "slow_down", "message": "Let's take a step back and review."})
            recommendations.append({"type": "review", "message": "Consider reviewing the previous sections before continuing."})
        elif accuracy < rules.critical_threshold:
            adjustment = rules.major_decrease
            reason = f"Accuracy at {accuracy:.0f}%. Simplifying content to build stronger foundations."
            recommendations.append({"type": "simplify", "message": "Simpler explanations will help with the basics."})
            recommendations.append({"type": "extra_examples", "message": "Additional examples can clarify these concepts."})
        elif accuracy < rules.struggling_threshold:
            adjustment = rules.minor_decrease
            reason = f"Accuracy at {accuracy:.0f}%. Providing additional support."
            recommendations.append({"type": "extra_examples", "message": "Some extra examples might help reinforce these concepts."})
        elif accuracy >= rules.excellent_threshold and recent_trend == "improving":
            adjustment = rules.major_increase
            reason = f"Excellent performance at {accuracy:.0f}% with improving trend. Ready for more challenge!"
            recommendations.append({"type": "speed_up", "message": "You're doing great! Let's pick up the pace."})
            recommendations.append({"type": "challenge", "message": "Ready for something more challenging?"})
        elif correct_streak >= rules.correct_streak_threshold:
            adjustment = rules.minor_increase
            reason = f"{correct_streak} correct answers in a row! Adding a bit more challenge."
            recommendations.append({"type": "challenge", "message": f"Streak of {correct_streak}! Let's try something a bit harder."})
        elif accuracy >= rules.good_threshold and recent_trend == "declining":
            reason = f"Performance is good at {accuracy:.0f}% but the recent trend is declining. Maintaining current level."
            recommendations.append({"type": "review", "message": "Your scores have dipped slightly. Consider reviewing recent material."})
        elif accuracy >= rules.good_threshold:
            reason = f"Steady progress at {accuracy:.0f}%. Keep up the good work!"

        new_difficulty = max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, current_difficulty + adjustment))
        return DifficultyDecision(
            adjustment=new_difficulty - current_difficulty,
            new_difficulty=new_difficulty,
            reason=reason,
            recommendations=recommendations,
        )

    def should_skip_module(self,
                           module_difficulty: int,
                           student_difficulty: int,
                           accuracy: float,
                           recent_trend: str) -> bool:
        """A module is skippable when it is far below an excelling learner's level."""
        return (
            accuracy >= self.rules.excellent_threshold
            and recent_trend == "improving"
            and module_difficulty < student_difficulty - 2
        )

    def get_recommended_next_module(self,
                                    modules: Sequence[ModuleCandidate],
                                    student_difficulty: int,
                                    accuracy: float,
                                    recent_trend: str) -> Optional[ModuleCandidate]:
        """Pick the incomplete module whose difficulty best fits the learner.

        Struggling learners get the closest module at or below their level,
        excelling and improving learners the closest one at or above it.
        Ties keep the given order.
        """
        remaining = [m for m in modules if not m.is_completed]
        if not remaining:
            return None
        ranked = sorted(remaining, key=lambda m: abs(m.difficulty_level - student_difficulty))

        if accuracy < self.rules.struggling_threshold:
            easier = [m for m in ranked if m.difficulty_level <= student_difficulty]
            if easier:
                return easier[0]
        if accuracy >= self.rules.excellent_threshold and recent_trend == "improving":
            harder = [m for m in ranked if m.difficulty_level >= student_difficulty]
            if harder:
                return harder[0]
        return ranked[0]

    def get_content_adaptations(self,
                                accuracy: float,
                                recent_trend: str,
                                incorrect_streak: int) -> ContentAdaptations:
        rules = self.rules
        return ContentAdaptations(
            show_extra_examples=accuracy < rules.struggling_threshold or incorrect_streak >= 2,
            show_simplified_content=accuracy < rules.critical_threshold,
            show_advanced_content=accuracy >= rules.excellent_threshold and recent_trend == "improving",
            suggest_review=recent_trend == "declining" or incorrect_streak >= rules.incorrect_streak_threshold,
        )
