import pytest

from engines.grading import (
    ModuleInteractionProgress,
    calculate_final_grade,
    calculate_module_grade,
    calculate_progress_to_pass,
    check_course_completion,
    generate_grade_report,
    get_letter_grade,
)


def module(module_id, earned, possible, percent=100.0):
    return ModuleInteractionProgress(module_id, earned, possible, percent)


@pytest.mark.parametrize(
    "score,letter",
    [(100, "A"), (90, "A"), (89.99, "B"), (80, "B"), (70, "C"), (60, "D"), (59.9, "F"), (0, "F")],
)
def test_letter_grade_thresholds(score, letter):
    assert get_letter_grade(score) == letter


def test_final_grade_blends_interactions_and_assessments():
    grade = calculate_final_grade([module("m0", 8, 10), module("m1", 7, 10)], [80, 90])

    assert grade.interaction_score == 75.0
    assert grade.assessment_score == 85.0
    # 75 * 0.3 + 85 * 0.7
    assert grade.final_score == 82.0
    assert grade.letter_grade == "B"
    assert grade.interactions.earned == 15
    assert grade.assessments.possible == 200.0


def test_single_source_carries_whole_grade():
    only_assessments = calculate_final_grade([], [95])
    only_interactions = calculate_final_grade([module("m0", 13, 20)], [])
    nothing = calculate_final_grade([], [])

    assert only_assessments.final_score == 95.0
    assert only_assessments.letter_grade == "A"
    assert only_interactions.final_score == 65.0
    assert nothing.final_score == 0.0
    assert nothing.letter_grade == "F"


def test_final_grade_rounds_half_up():
    # 1/8 of the interaction points: 12.5 * 0.3 + 100 * 0.7 = 73.75
    grade = calculate_final_grade([module("m0", 1, 8)], [100], interaction_weight=0.3, assessment_weight=0.7)
    assert grade.final_score == 73.75
    assert calculate_final_grade([module("m0", 21, 32)], []).final_score == 65.63


def test_negative_weights_are_rejected():
    with pytest.raises(ValueError):
        calculate_final_grade([], [50], interaction_weight=-0.1)


def test_progress_to_pass():
    halfway = calculate_progress_to_pass(35)
    passed = calculate_progress_to_pass(82)

    assert halfway.is_pass is False
    assert halfway.percent_to_pass == 50.0
    assert halfway.points_needed == 35.0
    assert passed.is_pass is True
    assert passed.percent_to_pass == 100.0
    assert passed.points_needed == 0.0
    with pytest.raises(ValueError):
        calculate_progress_to_pass(10, passing_score=0)


def test_module_grade():
    unfinished = calculate_module_grade(module("m0", 3, 4, percent=40))
    empty = calculate_module_grade(module("m1", 0, 0, percent=0))

    assert unfinished.score == 75.0
    assert unfinished.letter_grade == "C"
    assert unfinished.is_complete is False
    assert empty.score == 0.0


def test_course_completion_needs_grade_and_modules():
    modules = [module("m0", 9, 10), module("m1", 9, 10), module("m2", 9, 10, percent=50)]
    grade = calculate_final_grade(modules, [90])

    partial = check_course_completion(grade, modules, required_modules=3)
    done = check_course_completion(grade, modules, required_modules=2)
    failing = check_course_completion(calculate_final_grade(modules, [10]), modules, required_modules=2)
    neither = check_course_completion(calculate_final_grade([], []), [], required_modules=4)

    assert partial.is_complete is False
    assert partial.passing_grade is True
    assert partial.message == "You have completed 2 of 3 required modules."
    assert done.is_complete is True
    assert done.message.startswith("Congratulations")
    assert failing.modules_completed is True
    assert failing.passing_grade is False
    assert "You need 70% to pass" in failing.message
    assert neither.message == "You need a passing grade (70%) and to complete all 4 modules."


def test_grade_report_lists_breakdown():
    grade = calculate_final_grade([module("m0", 8, 10)], [90])

    report = generate_grade_report(grade, "Sam")

    assert report.splitlines()[0] == "Grade Report for Sam"
    assert "Final Grade: A (87%)" in report
    assert "Interactions (30%): 80%" in report
    assert "Earned: 8 / 10 points" in report
    assert report.endswith("outstanding understanding of the material.")
