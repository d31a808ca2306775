"""Re-evaluate a learner progress snapshot and print the engine decisions as JSON."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from engines.badges import BadgeCatalog, BadgeProgress, BadgeRuleEngine, DEFAULT_BADGE_CATALOG
from engines.difficulty_manager import ModuleCandidate
from engines.gamification import calculate_level, get_level_progress, generate_daily_challenge
from engines.grading import calculate_final_grade, check_course_completion
from engines.performance import PerformanceMetricsCalculator, calculate_course_progress, calculate_time_remaining
from engines.prediction import LearnerRiskProfile, RiskPredictor
from engines.spaced_repetition import SpacedRepetitionScheduler
from engines.struggle_detection import detect_struggle
from engines.validation import EngineValidationError
from env_validation import EnvironmentConfigError, load_settings
from learning_path import LearningPathEngine
from schemas import LearningMetricsModel, ProgressSnapshot, as_local_naive
from structured_logging import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "snapshot",
        type=str,
        help="Path to the progress snapshot JSON file",
    )
    parser.add_argument(
        "--badge-catalog",
        type=str,
        default=None,
        help="Optional JSON/YAML badge catalog (default: snapshot catalog, then ADAPTIVE_BADGE_CATALOG, then built-in)",
    )
    parser.add_argument(
        "--now",
        type=str,
        default=None,
        help="ISO timestamp to evaluate at (default: snapshot evaluatedAt, then current local time)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Optional path to write the JSON report",
    )
    return parser


def _catalog(args: argparse.Namespace, snapshot: ProgressSnapshot, catalog_path: str | None) -> BadgeCatalog:
    if args.badge_catalog:
        return BadgeCatalog.from_file(args.badge_catalog)
    if snapshot.badge_catalog is not None:
        return BadgeCatalog.from_entries(snapshot.badge_catalog)
    if catalog_path:
        return BadgeCatalog.from_file(catalog_path)
    return DEFAULT_BADGE_CATALOG


def _build_report(snapshot: ProgressSnapshot, catalog: BadgeCatalog, now: datetime) -> dict:
    settings = load_settings()
    calculator = PerformanceMetricsCalculator(settings.trend_window, settings.trend_margin)
    path_engine = LearningPathEngine(
        min_incorrect_streak=settings.branch_min_incorrect_streak,
        min_correct_streak=settings.branch_min_correct_streak,
    )
    scheduler = SpacedRepetitionScheduler(settings.default_ease_factor)

    graph = snapshot.course_graph.to_domain()
    previous = snapshot.previous_metrics.to_domain() if snapshot.previous_metrics else None
    metrics = calculator.calculate([r.to_domain() for r in snapshot.responses], previous)
    path = snapshot.path.to_domain() if snapshot.path else None
    evaluation = path_engine.evaluate_next(path, graph, metrics)

    gamification = snapshot.gamification.to_domain()
    progress = BadgeProgress(
        completed_modules=tuple(snapshot.progress.completed_modules),
        completed_chapters=tuple(snapshot.progress.completed_chapters),
        assessment_scores=tuple(snapshot.progress.assessment_scores),
        accuracy=metrics.accuracy,
    )
    new_badges = BadgeRuleEngine(catalog).check_badges(
        progress,
        gamification,
        modules_completed_today=snapshot.progress.modules_completed_today,
    )

    reviews = [item.to_domain() for item in snapshot.reviews]
    recommendation = evaluation.recommendation
    level = calculate_level(gamification.total_xp)
    challenge = generate_daily_challenge(now)
    return {
        "studentId": snapshot.student_id,
        "courseId": graph.course_id,
        "evaluatedAt": now.isoformat(),
        "metrics": LearningMetricsModel.from_domain(metrics).model_dump(by_alias=True, mode="json"),
        "nextStep": {
            "nextNodeId": evaluation.next_node.id if evaluation.next_node else None,
            "defaultNextNodeId": evaluation.default_next_node.id if evaluation.default_next_node else None,
            "completed": evaluation.completed,
            "message": evaluation.message,
            "recommendation": None if recommendation is None else {
                "branchId": recommendation.branch.id,
                "branchType": recommendation.branch.branch_type,
                "targetNodeId": recommendation.target_node.id,
                "reason": recommendation.reason,
            },
        },
        "gamification": {
            "level": level,
            "levelProgress": round(get_level_progress(gamification.total_xp, level), 2),
            "newBadges": new_badges,
            "dailyChallenge": {
                "id": challenge.id,
                "type": challenge.type,
                "requirement": challenge.requirement,
                "xpReward": challenge.xp_reward,
            },
        },
        "reviews": {
            "due": [item.concept_key for item in scheduler.get_due_reviews(reviews, now)],
            "stats": scheduler.review_stats(reviews, now),
        },
        "progress": _progress_report(snapshot, graph, metrics, calculator),
        "grade": _grade_report(snapshot, graph),
        "risk": _risk_report(snapshot, graph, metrics, gamification, now),
        "struggle": _struggle_report(snapshot, metrics, now),
    }


def _average_minutes(graph) -> float:
    if not graph.nodes:
        return 0.0
    return sum(node.estimated_time for node in graph.nodes) / len(graph.nodes)


def _progress_report(snapshot: ProgressSnapshot, graph, metrics, calculator: PerformanceMetricsCalculator) -> dict:
    course_modules = [node.module_id for node in graph.nodes]
    completed = [m for m in snapshot.progress.completed_modules if m in course_modules]
    remaining = len(course_modules) - len(completed)
    manager = calculator.difficulty_manager
    recommended = manager.get_recommended_next_module(
        [
            ModuleCandidate(node.id, node.title, node.difficulty, node.module_id in completed)
            for node in graph.nodes
        ],
        metrics.adaptive_difficulty,
        metrics.accuracy,
        metrics.recent_trend,
    )
    adaptations = manager.get_content_adaptations(metrics.accuracy, metrics.recent_trend, metrics.incorrect_streak)
    return {
        "percentComplete": calculate_course_progress(completed, len(course_modules)),
        "remainingModules": remaining,
        "minutesRemaining": calculate_time_remaining(_average_minutes(graph), remaining),
        "recommendedNodeId": recommended.id if recommended else None,
        "contentAdaptations": {
            "showExtraExamples": adaptations.show_extra_examples,
            "showSimplifiedContent": adaptations.show_simplified_content,
            "showAdvancedContent": adaptations.show_advanced_content,
            "suggestReview": adaptations.suggest_review,
        },
    }


def _grade_report(snapshot: ProgressSnapshot, graph) -> dict:
    interactions = [mi.to_domain() for mi in snapshot.module_interactions]
    grade = calculate_final_grade(interactions, snapshot.progress.assessment_scores)
    completion = check_course_completion(grade, interactions, required_modules=len(graph.nodes))
    return {
        "interactionScore": grade.interaction_score,
        "assessmentScore": grade.assessment_score,
        "finalScore": grade.final_score,
        "letterGrade": grade.letter_grade,
        "courseComplete": completion.is_complete,
        "message": completion.message,
    }


def _risk_report(snapshot: ProgressSnapshot, graph, metrics, gamification, now: datetime) -> dict:
    predictor = RiskPredictor()
    profile = LearnerRiskProfile(
        metrics=metrics if snapshot.responses else None,
        last_accessed_at=gamification.last_activity_date,
        completed_modules=len(snapshot.progress.completed_modules),
        assessment_count=len(snapshot.progress.assessment_scores),
        average_time_per_module=_average_minutes(graph) or None,
        daily_activity=tuple(day.to_domain() for day in snapshot.daily_activity),
    )
    prediction = predictor.calculate_risk_score(profile, now)
    decision = predictor.should_trigger_intervention(prediction)
    return {
        "riskScore": round(prediction.risk_score, 2),
        "predictedOutcome": prediction.predicted_outcome,
        "confidence": round(prediction.confidence_score, 2),
        "factors": [factor.type for factor in prediction.risk_factors],
        "recommendations": [rec.action for rec in prediction.recommendations],
        "intervention": {
            "trigger": decision.trigger,
            "type": decision.type,
            "urgency": decision.urgency,
        },
    }


def _struggle_report(snapshot: ProgressSnapshot, metrics, now: datetime) -> dict:
    result = detect_struggle([event.to_domain() for event in snapshot.recent_events], metrics, now=now)
    intervention = result.recommended_intervention
    return {
        "isStruggling": result.is_struggling,
        "severity": result.overall_severity,
        "indicators": [indicator.type for indicator in result.indicators],
        "intervention": None if intervention is None else {
            "type": intervention.type,
            "message": intervention.message,
            "action": intervention.action,
        },
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except EnvironmentConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    configure_logging(settings.log_level)

    try:
        snapshot = ProgressSnapshot.model_validate_json(Path(args.snapshot).read_text(encoding="utf-8"))
        now = (
            as_local_naive(datetime.fromisoformat(args.now.replace("Z", "+00:00"))) if args.now
            else snapshot.evaluated_at or datetime.now()
        )
        catalog = _catalog(args, snapshot, settings.badge_catalog_path)
        report = _build_report(snapshot, catalog, now)
    except FileNotFoundError as exc:
        print(f"File not found: {exc}", file=sys.stderr)
        return 2
    except (ValidationError, EngineValidationError, ValueError) as exc:
        logging.getLogger(__name__).error("Snapshot evaluation failed: %s", exc)
        print(f"Invalid snapshot: {exc}", file=sys.stderr)
        return 1

    payload = json.dumps(report, indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(payload + "\n", encoding="utf-8")
    print(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
