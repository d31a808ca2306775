"""Final grade, letter grade and course completion checks.

Interaction points and assessment percentages are blended 30/70 by default.
When only one of the two sources has data, that source is the whole grade.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal, Sequence

LetterGrade = Literal["A", "B", "C", "D", "F"]

DEFAULT_INTERACTION_WEIGHT = 0.30
DEFAULT_ASSESSMENT_WEIGHT = 0.70
DEFAULT_PASSING_SCORE = 70.0

_LETTER_THRESHOLDS = (
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
)

GRADE_DESCRIPTIONS = {
    "A": "Excellent! You have demonstrated outstanding understanding of the material.",
    "B": "Great work! You have a solid grasp of the concepts.",
    "C": "Good effort! You understand the basics but could benefit from more practice.",
    "D": "You passed, but there is room for improvement. Consider reviewing the material.",
    "F": "More work is needed. Please review the material and try again.",
}


def _round2(value: float) -> float:
    # Half-up, so 84.125 reports as 84.13
    return math.floor(value * 100 + 0.5) / 100


@dataclass(frozen=True)
class ModuleInteractionProgress:
    module_id: str
    total_score: float = 0.0
    max_possible_score: float = 0.0
    percentage_complete: float = 0.0

    @property
    def complete(self) -> bool:
        return self.percentage_complete >= 100


@dataclass(frozen=True)
class GradeComponent:
    earned: float
    possible: float
    weight: float


@dataclass(frozen=True)
class GradeResult:
    interaction_score: float
    assessment_score: float
    final_score: float
    letter_grade: LetterGrade
    interactions: GradeComponent
    assessments: GradeComponent


@dataclass(frozen=True)
class PassProgress:
    is_pass: bool
    percent_to_pass: float
    points_needed: float


@dataclass(frozen=True)
class ModuleGrade:
    score: float
    letter_grade: LetterGrade
    is_complete: bool


@dataclass(frozen=True)
class CourseCompletion:
    is_complete: bool
    passing_grade: bool
    modules_completed: bool
    message: str


def get_letter_grade(score: float) -> LetterGrade:
    for threshold, letter in _LETTER_THRESHOLDS:
        if score >= threshold:
            return letter  # type: ignore[return-value]
    return "F"


def get_grade_description(letter_grade: str) -> str:
    return GRADE_DESCRIPTIONS[letter_grade]


def calculate_final_grade(
    module_interactions: Sequence[ModuleInteractionProgress],
    assessment_scores: Sequence[float],
    interaction_weight: float = DEFAULT_INTERACTION_WEIGHT,
    assessment_weight: float = DEFAULT_ASSESSMENT_WEIGHT,
) -> GradeResult:
    """Blend interaction points and assessment percentages into one grade.

    Args:
        module_interactions: per-module interaction point totals.
        assessment_scores: assessment results as percentages (0-100).
        interaction_weight: share of the interaction score when both sources exist.
        assessment_weight: share of the assessment average when both sources exist.

    Returns:
        A ``GradeResult`` with scores rounded to two decimals.
    """
    if interaction_weight < 0 or assessment_weight < 0:
        raise ValueError("grading weights may not be negative")

    earned = sum(mi.total_score for mi in module_interactions)
    possible = sum(mi.max_possible_score for mi in module_interactions)
    interaction_score = earned / possible * 100 if possible > 0 else 0.0

    assessment_total = float(sum(assessment_scores))
    assessment_count = len(assessment_scores)
    assessment_score = assessment_total / assessment_count if assessment_count else 0.0

    if possible <= 0 and not assessment_count:
        final = 0.0
    elif possible <= 0:
        final = assessment_score
    elif not assessment_count:
        final = interaction_score
    else:
        final = interaction_score * interaction_weight + assessment_score * assessment_weight

    final = _round2(final)
    return GradeResult(
        interaction_score=_round2(interaction_score),
        assessment_score=_round2(assessment_score),
        final_score=final,
        letter_grade=get_letter_grade(final),
        interactions=GradeComponent(earned=earned, possible=possible, weight=interaction_weight),
        assessments=GradeComponent(
            earned=assessment_total,
            possible=assessment_count * 100.0,
            weight=assessment_weight,
        ),
    )


def calculate_progress_to_pass(current_score: float, passing_score: float = DEFAULT_PASSING_SCORE) -> PassProgress:
    if passing_score <= 0:
        raise ValueError("passing_score must be positive")
    return PassProgress(
        is_pass=current_score >= passing_score,
        percent_to_pass=_round2(min(100.0, current_score / passing_score * 100)),
        points_needed=_round2(max(0.0, passing_score - current_score)),
    )


def calculate_module_grade(module: ModuleInteractionProgress) -> ModuleGrade:
    score = module.total_score / module.max_possible_score * 100 if module.max_possible_score > 0 else 0.0
    return ModuleGrade(
        score=_round2(score),
        letter_grade=get_letter_grade(score),
        is_complete=module.complete,
    )


def check_course_completion(
    grade: GradeResult,
    module_interactions: Sequence[ModuleInteractionProgress],
    required_modules: int,
    passing_score: float = DEFAULT_PASSING_SCORE,
) -> CourseCompletion:
    """A course is complete with a passing grade and every required module finished."""
    passing = grade.final_score >= passing_score
    completed = sum(1 for mi in module_interactions if mi.complete)
    modules_done = completed >= required_modules

    if passing and modules_done:
        message = "Congratulations! You have successfully completed this course."
    elif not passing and not modules_done:
        message = (
            f"You need a passing grade ({passing_score:g}%) and to complete all "
            f"{required_modules} modules."
        )
    elif not passing:
        message = f"Your current grade is {grade.final_score:g}%. You need {passing_score:g}% to pass."
    else:
        message = f"You have completed {completed} of {required_modules} required modules."

    return CourseCompletion(
        is_complete=passing and modules_done,
        passing_grade=passing,
        modules_completed=modules_done,
        message=message,
    )


def generate_grade_report(grade: GradeResult, student_name: str) -> str:
    lines = [
        f"Grade Report for {student_name}",
        "=" * 40,
        "",
        f"Final Grade: {grade.letter_grade} ({grade.final_score:g}%)",
        "",
        "Breakdown:",
        f"  Interactions ({grade.interactions.weight * 100:g}%): {grade.interaction_score:g}%",
        f"    - Earned: {grade.interactions.earned:g} / {grade.interactions.possible:g} points",
        f"  Assessments ({grade.assessments.weight * 100:g}%): {grade.assessment_score:g}%",
        f"    - Average score: {grade.assessment_score:g}%",
        "",
        get_grade_description(grade.letter_grade),
    ]
    return "\n".join(lines)
