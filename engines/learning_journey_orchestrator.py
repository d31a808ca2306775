"""Learning journey orchestrator wiring the adaptive engines to stored progress.

Each public operation runs as one read-compute-commit cycle on the learner's
``ProgressAggregate``: interaction responses feed the metrics calculator, the
metrics feed the path engine and the gamification engine, and the badge rule
engine reads the resulting state. The engines themselves stay pure; this class
owns the sequencing and persistence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from engines.badges import BadgeCatalog, BadgeRuleEngine, DEFAULT_BADGE_CATALOG
from engines.difficulty_manager import ContentAdaptations, DifficultyManager, ModuleCandidate
from engines.gamification import (
    GamificationEngine,
    StudentGamification,
    XPAction,
    generate_daily_challenge,
)
from engines.performance import (
    ExtendedLearningMetrics,
    InteractionResponse,
    PerformanceMetricsCalculator,
    calculate_course_progress,
    calculate_time_remaining,
)
from engines.prediction import DailyActivity, LearnerRiskProfile, RiskPrediction, RiskPredictor
from engines.spaced_repetition import ReviewItem, SpacedRepetitionScheduler
from engines.validation import InvalidReviewItem
from env_validation import EngineSettings, load_settings
from knowledge_graph import ConceptNode, CourseGraph
from learning_path import BranchExecutionResult, LearningPathEngine, NextStepEvaluation
from progress_store import ProgressAggregate, ProgressArena

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionOutcome:
    aggregate: ProgressAggregate
    metrics: ExtendedLearningMetrics
    xp_earned: int
    new_badges: Tuple[str, ...]


@dataclass(frozen=True)
class ModuleCompletionOutcome:
    aggregate: ProgressAggregate
    xp_earned: int
    new_badges: Tuple[str, ...]
    evaluation: NextStepEvaluation


@dataclass(frozen=True)
class CourseProgress:
    percent_complete: int
    remaining_modules: int
    minutes_remaining: float


class LearningJourneyOrchestrator:
    """Coordinates scheduler, metrics, path, gamification and badge engines."""

    def __init__(
        self,
        arena: Optional[ProgressArena] = None,
        *,
        scheduler: Optional[SpacedRepetitionScheduler] = None,
        calculator: Optional[PerformanceMetricsCalculator] = None,
        path_engine: Optional[LearningPathEngine] = None,
        gamification: Optional[GamificationEngine] = None,
        badge_catalog: Optional[BadgeCatalog] = None,
        risk_predictor: Optional[RiskPredictor] = None,
    ):
        self.arena = arena or ProgressArena()
        self.scheduler = scheduler or SpacedRepetitionScheduler()
        self.calculator = calculator or PerformanceMetricsCalculator()
        self.path_engine = path_engine or LearningPathEngine()
        self.gamification = gamification or GamificationEngine()
        self.badge_catalog = badge_catalog or DEFAULT_BADGE_CATALOG
        self.badge_engine = BadgeRuleEngine(self.badge_catalog)
        self.risk_predictor = risk_predictor or RiskPredictor()
        self._courses: Dict[str, CourseGraph] = {}

    @classmethod
    def from_settings(cls, settings: Optional[EngineSettings] = None) -> "LearningJourneyOrchestrator":
        """Build an orchestrator whose engines are tuned from ``EngineSettings``."""
        settings = settings or load_settings()
        catalog = (
            BadgeCatalog.from_file(settings.badge_catalog_path)
            if settings.badge_catalog_path
            else DEFAULT_BADGE_CATALOG
        )
        return cls(
            ProgressArena(weekly_goal_target=settings.weekly_goal_target),
            scheduler=SpacedRepetitionScheduler(settings.default_ease_factor),
            calculator=PerformanceMetricsCalculator(
                trend_window=settings.trend_window,
                trend_margin=settings.trend_margin,
                difficulty_manager=DifficultyManager(),
            ),
            path_engine=LearningPathEngine(
                min_incorrect_streak=settings.branch_min_incorrect_streak,
                min_correct_streak=settings.branch_min_correct_streak,
            ),
            gamification=GamificationEngine(
                streak_bonus_days=settings.streak_bonus_days,
                streak_bonus_multiplier=settings.streak_bonus_multiplier,
            ),
            badge_catalog=catalog,
        )

    # ----- courses -------------------------------------------------------
    def register_course(self, graph: CourseGraph) -> None:
        """Validate and register a course graph so learners can be placed on it."""
        graph.validate()
        self._courses[graph.course_id] = graph
        logger.info("Registered course %s with %d nodes", graph.course_id, len(graph.nodes))

    def course(self, course_id: str) -> CourseGraph:
        graph = self._courses.get(course_id)
        if graph is None:
            raise KeyError(f"Course not registered: {course_id}")
        return graph

    # ----- interactions --------------------------------------------------
    def record_interaction(
        self,
        student_id: str,
        course_id: str,
        response: InteractionResponse,
        now: Optional[datetime] = None,
    ) -> InteractionOutcome:
        """Store a response, recompute metrics and grant interaction XP."""
        now = now or datetime.now()

        def apply(aggregate: ProgressAggregate) -> Tuple[ProgressAggregate, Tuple[int, Tuple[str, ...]]]:
            responses = aggregate.responses + (response,)
            metrics = self.calculator.calculate(responses, aggregate.metrics)
            gamification = aggregate.gamification
            xp_before = gamification.total_xp
            if response.graded and response.is_correct is not None:
                action = "interaction_correct" if response.is_correct else "interaction_incorrect"
                gamification = self.gamification.award_xp(gamification, XPAction(action))
            gamification = self.gamification.update_streak(gamification, now)
            updated = replace(aggregate, responses=responses, metrics=metrics, gamification=gamification)
            updated, badges = self._award_badges(updated, now)
            return updated, (updated.gamification.total_xp - xp_before, badges)

        aggregate, (xp_earned, badges) = self.arena.update(student_id, course_id, apply)
        return InteractionOutcome(aggregate, aggregate.metrics, xp_earned, badges)

    # ----- modules -------------------------------------------------------
    def complete_module(
        self,
        student_id: str,
        course_id: str,
        module_id: str,
        now: Optional[datetime] = None,
        *,
        assessment_score: Optional[float] = None,
        chapter_completed: Optional[str] = None,
    ) -> ModuleCompletionOutcome:
        """Mark a module complete, advance the path and apply module rewards."""
        graph = self.course(course_id)
        node = graph.node_for_module(module_id)
        if node is None:
            raise KeyError(f"Module {module_id} is not part of course {course_id}")
        now = now or datetime.now()

        def apply(aggregate: ProgressAggregate) -> Tuple[ProgressAggregate, Tuple[int, Tuple[str, ...]]]:
            path = aggregate.path or self.path_engine.initialize_path(graph)
            path = self.path_engine.complete_node(path, graph, node.id)

            first_completion = module_id not in aggregate.completed_modules
            completed = aggregate.completed_modules + ((module_id,) if first_completion else ())
            chapters = aggregate.completed_chapters
            if chapter_completed and chapter_completed not in chapters:
                chapters = chapters + (chapter_completed,)
            scores = aggregate.assessment_scores
            if assessment_score is not None:
                scores = scores + (float(assessment_score),)

            gamification = aggregate.gamification
            xp_before = gamification.total_xp
            if first_completion:
                gamification = self.gamification.award_xp(gamification, XPAction("module_complete"))
                # Weekly goal reads the previous activity date, so it goes before the streak
                gamification = self.gamification.update_weekly_goal(gamification, 1, now)
            if assessment_score is not None and assessment_score >= 100:
                gamification = self.gamification.award_xp(gamification, XPAction("perfect_score"))
            gamification = self.gamification.update_streak(gamification, now)

            updated = replace(
                aggregate,
                path=path,
                completed_modules=completed,
                completed_chapters=chapters,
                assessment_scores=scores,
                module_completions=aggregate.module_completions + ((now,) if first_completion else ()),
                gamification=gamification,
            )
            updated, badges = self._award_badges(updated, now)
            return updated, (updated.gamification.total_xp - xp_before, badges)

        aggregate, (xp_earned, badges) = self.arena.update(student_id, course_id, apply)
        evaluation = self.path_engine.evaluate_next(aggregate.path, graph, aggregate.metrics)
        return ModuleCompletionOutcome(aggregate, xp_earned, badges, evaluation)

    # ----- path ----------------------------------------------------------
    def evaluate_next(self, student_id: str, course_id: str) -> NextStepEvaluation:
        """Recommend the learner's next node; stored progress is not changed."""
        graph = self.course(course_id)
        aggregate = self.arena.get(student_id, course_id)
        return self.path_engine.evaluate_next(aggregate.path, graph, aggregate.metrics)

    def execute_branch(
        self,
        student_id: str,
        course_id: str,
        action: str,
        branch_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BranchExecutionResult:
        graph = self.course(course_id)
        now = now or datetime.now()

        def apply(aggregate: ProgressAggregate) -> Tuple[ProgressAggregate, BranchExecutionResult]:
            path = aggregate.path or self.path_engine.initialize_path(graph)
            result = self.path_engine.execute_branch(
                path,
                graph,
                action,
                branch_id=branch_id,
                metrics=aggregate.metrics,
                now=now,
            )
            return replace(aggregate, path=result.path), result

        _, result = self.arena.update(student_id, course_id, apply)
        return result

    # ----- reviews -------------------------------------------------------
    def add_review_items(
        self,
        student_id: str,
        course_id: str,
        interactions: Iterable[Mapping[str, Any]],
        module_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[ReviewItem]:
        """Create review items for concepts the learner has none for yet."""
        now = now or datetime.now()

        def apply(aggregate: ProgressAggregate) -> Tuple[ProgressAggregate, List[ReviewItem]]:
            created = self.scheduler.generate_review_items(aggregate.reviews, interactions, now, module_id)
            return replace(aggregate, reviews=aggregate.reviews + tuple(created)), created

        _, created = self.arena.update(student_id, course_id, apply)
        return created

    def review(
        self,
        student_id: str,
        course_id: str,
        concept_key: str,
        quality: int,
        now: Optional[datetime] = None,
    ) -> ReviewItem:
        """Rate recall of a concept's review item and store the rescheduled item."""
        now = now or datetime.now()

        def apply(aggregate: ProgressAggregate) -> Tuple[ProgressAggregate, ReviewItem]:
            for idx, item in enumerate(aggregate.reviews):
                if item.concept_key == concept_key and not item.archived:
                    reviewed = self.scheduler.review(item, quality, now)
                    reviews = aggregate.reviews[:idx] + (reviewed,) + aggregate.reviews[idx + 1:]
                    return replace(aggregate, reviews=reviews), reviewed
            raise InvalidReviewItem(f"No active review item for concept {concept_key!r}")

        _, reviewed = self.arena.update(student_id, course_id, apply)
        return reviewed

    def due_reviews(
        self,
        student_id: str,
        course_id: str,
        now: Optional[datetime] = None,
        limit: int = 20,
    ) -> List[ReviewItem]:
        aggregate = self.arena.get(student_id, course_id)
        return self.scheduler.get_due_reviews(aggregate.reviews, now, limit)

    # ----- gamification --------------------------------------------------
    def complete_daily_challenge(
        self,
        student_id: str,
        course_id: str,
        now: Optional[datetime] = None,
    ) -> StudentGamification:
        now = now or datetime.now()
        challenge = generate_daily_challenge(now)

        def apply(aggregate: ProgressAggregate) -> Tuple[ProgressAggregate, StudentGamification]:
            # The streak update clears a completion flag left over from an earlier day
            gamification = self.gamification.update_streak(aggregate.gamification, now)
            gamification = self.gamification.complete_daily_challenge(gamification, challenge)
            updated = replace(aggregate, gamification=gamification)
            updated, _ = self._award_badges(updated, now)
            return updated, updated.gamification

        _, gamification = self.arena.update(student_id, course_id, apply)
        return gamification

    # ----- progress and risk ---------------------------------------------
    def course_progress(self, student_id: str, course_id: str) -> CourseProgress:
        graph = self.course(course_id)
        aggregate = self.arena.get(student_id, course_id)
        course_modules = [node.module_id for node in graph.nodes]
        completed = [m for m in aggregate.completed_modules if m in course_modules]
        remaining = len(course_modules) - len(completed)
        return CourseProgress(
            percent_complete=calculate_course_progress(completed, len(course_modules)),
            remaining_modules=remaining,
            minutes_remaining=calculate_time_remaining(_average_minutes(graph), remaining),
        )

    def recommend_module(self, student_id: str, course_id: str) -> Optional[ConceptNode]:
        """Incomplete node whose difficulty best fits the learner's adaptive level."""
        graph = self.course(course_id)
        aggregate = self.arena.get(student_id, course_id)
        metrics = aggregate.metrics
        candidates = [
            ModuleCandidate(
                id=node.id,
                title=node.title,
                difficulty_level=node.difficulty,
                is_completed=node.module_id in aggregate.completed_modules,
            )
            for node in graph.nodes
        ]
        choice = self.calculator.difficulty_manager.get_recommended_next_module(
            candidates,
            metrics.adaptive_difficulty,
            metrics.accuracy,
            metrics.recent_trend,
        )
        return graph.get_node(choice.id) if choice is not None else None

    def content_adaptations(self, student_id: str, course_id: str) -> ContentAdaptations:
        metrics = self.arena.get(student_id, course_id).metrics
        return self.calculator.difficulty_manager.get_content_adaptations(
            metrics.accuracy,
            metrics.recent_trend,
            metrics.incorrect_streak,
        )

    def assess_risk(
        self,
        student_id: str,
        course_id: str,
        daily_activity: Iterable[DailyActivity] = (),
        now: Optional[datetime] = None,
    ) -> RiskPrediction:
        """Predict dropout risk from stored progress plus recent daily activity."""
        graph = self.course(course_id)
        aggregate = self.arena.get(student_id, course_id)
        profile = LearnerRiskProfile(
            metrics=aggregate.metrics if aggregate.responses else None,
            last_accessed_at=aggregate.gamification.last_activity_date,
            completed_modules=len(aggregate.completed_modules),
            assessment_count=len(aggregate.assessment_scores),
            average_time_per_module=_average_minutes(graph) or None,
            daily_activity=tuple(daily_activity),
        )
        prediction = self.risk_predictor.calculate_risk_score(profile, now)
        decision = self.risk_predictor.should_trigger_intervention(prediction)
        if decision.trigger:
            logger.info(
                "Intervention %s (%s) suggested for %s in %s at risk %.1f",
                decision.type, decision.urgency, student_id, course_id, prediction.risk_score,
            )
        return prediction

    # ----- helpers -------------------------------------------------------
    def _award_badges(
        self,
        aggregate: ProgressAggregate,
        now: datetime,
    ) -> Tuple[ProgressAggregate, Tuple[str, ...]]:
        earned = self.badge_engine.check_badges(
            aggregate.badge_progress(),
            aggregate.gamification,
            modules_completed_today=aggregate.modules_completed_on(now.date()),
        )
        gamification = aggregate.gamification
        for badge_id in earned:
            gamification = self.gamification.award_badge(gamification, badge_id, self.badge_catalog)
        if earned:
            logger.info("Awarded %d badge(s) to %s: %s", len(earned), aggregate.student_id, ", ".join(earned))
        return replace(aggregate, gamification=gamification), tuple(earned)


def _average_minutes(graph: CourseGraph) -> float:
    if not graph.nodes:
        return 0.0
    return sum(node.estimated_time for node in graph.nodes) / len(graph.nodes)
