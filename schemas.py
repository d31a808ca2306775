"""Pydantic schemas for the JSON structures exchanged with the calling layer.

Every model accepts both camelCase (as stored by the application) and
snake_case field names and converts to and from the engines' frozen
dataclasses via ``to_domain`` / ``from_domain``.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from engines.difficulty_manager import DEFAULT_DIFFICULTY
from engines.gamification import StudentGamification, WeeklyGoal, calculate_level
from engines.grading import ModuleInteractionProgress
from engines.performance import ExtendedLearningMetrics, InteractionResponse
from engines.prediction import DailyActivity
from engines.spaced_repetition import DEFAULT_EASE_FACTOR, ReviewItem
from engines.struggle_detection import InteractionEvent
from knowledge_graph import (
    BranchCondition,
    ConceptNode,
    CourseGraph,
    PathBranch,
    condition_to_dict,
    parse_branch_condition,
)
from learning_path import BranchHistoryEntry, StudentLearningPath

__all__ = [
    "ConceptNodeModel",
    "BranchConditionModel",
    "PathBranchModel",
    "CourseEdgeModel",
    "CourseGraphModel",
    "InteractionResponseModel",
    "ReviewItemModel",
    "LearningMetricsModel",
    "BranchHistoryEntryModel",
    "LearningPathModel",
    "WeeklyGoalModel",
    "GamificationModel",
    "ProgressModel",
    "DailyActivityModel",
    "InteractionEventModel",
    "ModuleInteractionModel",
    "ProgressSnapshot",
    "as_local_naive",
]


def as_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an offset-aware timestamp to naive host-local time.

    The engines compare against naive ``datetime.now()`` values, while the
    application stores ISO strings with a ``Z`` suffix.
    """
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class _CamelModel(BaseModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class ConceptNodeModel(_CamelModel):
    id: str
    concept_key: str
    module_id: str
    prerequisites: List[str] = Field(default_factory=list)
    difficulty: int = Field(default=5, ge=1, le=10)
    estimated_time: int = Field(default=15, ge=0, description="Minutes.")
    title: str = ""

    def to_domain(self) -> ConceptNode:
        return ConceptNode(
            id=self.id,
            concept_key=self.concept_key,
            module_id=self.module_id,
            prerequisites=tuple(self.prerequisites),
            difficulty=self.difficulty,
            estimated_time=self.estimated_time,
            title=self.title,
        )

    @classmethod
    def from_domain(cls, node: ConceptNode) -> "ConceptNodeModel":
        return cls(
            id=node.id,
            concept_key=node.concept_key,
            module_id=node.module_id,
            prerequisites=list(node.prerequisites),
            difficulty=node.difficulty,
            estimated_time=node.estimated_time,
            title=node.title,
        )


class BranchConditionModel(_CamelModel):
    # Unknown tags are rejected by parse_branch_condition with UnknownBranchCondition
    type: str
    threshold: float | None = Field(default=None, ge=0.0, le=100.0)
    concept_key: str | None = None

    def to_domain(self) -> BranchCondition:
        return parse_branch_condition(self.model_dump())

    @classmethod
    def from_domain(cls, condition: BranchCondition) -> "BranchConditionModel":
        return cls.model_validate(condition_to_dict(condition))


class PathBranchModel(_CamelModel):
    id: str
    condition: BranchConditionModel
    target_module_id: str
    branch_type: Literal["remedial", "advanced", "alternative"]
    title: str = ""
    description: str = ""

    def to_domain(self) -> PathBranch:
        return PathBranch(
            id=self.id,
            condition=self.condition.to_domain(),
            target_module_id=self.target_module_id,
            branch_type=self.branch_type,
            title=self.title,
            description=self.description,
        )

    @classmethod
    def from_domain(cls, branch: PathBranch) -> "PathBranchModel":
        return cls(
            id=branch.id,
            condition=BranchConditionModel.from_domain(branch.condition),
            target_module_id=branch.target_module_id,
            branch_type=branch.branch_type,
            title=branch.title,
            description=branch.description,
        )


class CourseEdgeModel(_CamelModel):
    source: str = Field(alias="from")
    target: str = Field(alias="to")


class CourseGraphModel(_CamelModel):
    course_id: str
    nodes: List[ConceptNodeModel]
    edges: List[CourseEdgeModel] = Field(default_factory=list)
    branches: List[PathBranchModel] = Field(default_factory=list)

    def to_domain(self) -> CourseGraph:
        graph = CourseGraph(
            course_id=self.course_id,
            nodes=tuple(node.to_domain() for node in self.nodes),
            edges=tuple((edge.source, edge.target) for edge in self.edges),
            branches=tuple(branch.to_domain() for branch in self.branches),
        )
        graph.validate()
        return graph

    @classmethod
    def from_domain(cls, graph: CourseGraph) -> "CourseGraphModel":
        return cls(
            course_id=graph.course_id,
            nodes=[ConceptNodeModel.from_domain(node) for node in graph.nodes],
            edges=[CourseEdgeModel(source=s, target=t) for s, t in graph.edges],
            branches=[PathBranchModel.from_domain(branch) for branch in graph.branches],
        )


class InteractionResponseModel(_CamelModel):
    block_id: str
    concept_key: str | None = None
    is_correct: bool | None = None
    score: float = Field(default=0.0, ge=0.0)
    max_score: float = Field(default=0.0, ge=0.0)
    submitted_at: datetime
    time_spent: float | None = Field(default=None, ge=0.0, description="Seconds.")

    @field_validator("submitted_at")
    @classmethod
    def to_local_time(cls, value: datetime) -> datetime:
        return as_local_naive(value)

    def to_domain(self) -> InteractionResponse:
        return InteractionResponse(
            block_id=self.block_id,
            concept_key=self.concept_key,
            is_correct=self.is_correct,
            score=self.score,
            max_score=self.max_score,
            submitted_at=self.submitted_at,
            time_spent=self.time_spent,
        )


class ReviewItemModel(_CamelModel):
    concept_key: str
    question: str = ""
    answer: str = ""
    ease_factor: float = Field(default=DEFAULT_EASE_FACTOR, ge=1.3)
    interval: int = Field(default=0, ge=0)
    repetitions: int = Field(default=0, ge=0)
    next_review_date: datetime
    correct_count: int = Field(default=0, ge=0)
    incorrect_count: int = Field(default=0, ge=0)
    last_review_date: datetime | None = None
    module_id: str | None = None
    archived: bool = False

    @field_validator("next_review_date", "last_review_date")
    @classmethod
    def to_local_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_local_naive(value)

    def to_domain(self) -> ReviewItem:
        return ReviewItem(**self.model_dump())

    @classmethod
    def from_domain(cls, item: ReviewItem) -> "ReviewItemModel":
        return cls(
            concept_key=item.concept_key,
            question=item.question,
            answer=item.answer,
            ease_factor=item.ease_factor,
            interval=item.interval,
            repetitions=item.repetitions,
            next_review_date=item.next_review_date,
            correct_count=item.correct_count,
            incorrect_count=item.incorrect_count,
            last_review_date=item.last_review_date,
            module_id=item.module_id,
            archived=item.archived,
        )


class LearningMetricsModel(_CamelModel):
    accuracy: float = 0.0
    recent_trend: Literal["improving", "stable", "declining"] = "stable"
    concepts_mastered: List[str] = Field(default_factory=list)
    concepts_struggling: List[str] = Field(default_factory=list)
    correct_streak: int = 0
    incorrect_streak: int = 0
    adaptive_difficulty: int = Field(default=DEFAULT_DIFFICULTY, ge=1, le=10)
    total_responses: int = 0
    graded_responses: int = 0
    correct_responses: int = 0
    average_time_per_question: float = 0.0
    concept_mastery_map: Dict[str, float] = Field(default_factory=dict)

    def to_domain(self) -> ExtendedLearningMetrics:
        data = self.model_dump()
        data["concepts_mastered"] = frozenset(self.concepts_mastered)
        data["concepts_struggling"] = frozenset(self.concepts_struggling)
        return ExtendedLearningMetrics(**data)

    @classmethod
    def from_domain(cls, metrics: ExtendedLearningMetrics) -> "LearningMetricsModel":
        return cls(
            accuracy=round(metrics.accuracy, 2),
            recent_trend=metrics.recent_trend,
            concepts_mastered=sorted(metrics.concepts_mastered),
            concepts_struggling=sorted(metrics.concepts_struggling),
            correct_streak=metrics.correct_streak,
            incorrect_streak=metrics.incorrect_streak,
            adaptive_difficulty=metrics.adaptive_difficulty,
            total_responses=metrics.total_responses,
            graded_responses=metrics.graded_responses,
            correct_responses=metrics.correct_responses,
            average_time_per_question=metrics.average_time_per_question,
            concept_mastery_map=dict(metrics.concept_mastery_map),
        )


class BranchHistoryEntryModel(_CamelModel):
    branch_id: str
    taken_at: datetime
    reason: str = ""

    @field_validator("taken_at")
    @classmethod
    def to_local_time(cls, value: datetime) -> datetime:
        return as_local_naive(value)


class LearningPathModel(_CamelModel):
    current_node_id: str
    completed_nodes: List[str] = Field(default_factory=list)
    skipped_nodes: List[str] = Field(default_factory=list)
    branch_history: List[BranchHistoryEntryModel] = Field(default_factory=list)
    suggested_path: List[str] = Field(default_factory=list)

    def to_domain(self) -> StudentLearningPath:
        return StudentLearningPath(
            current_node_id=self.current_node_id,
            completed_nodes=frozenset(self.completed_nodes),
            skipped_nodes=frozenset(self.skipped_nodes),
            branch_history=tuple(
                BranchHistoryEntry(entry.branch_id, entry.taken_at, entry.reason)
                for entry in self.branch_history
            ),
            suggested_path=tuple(self.suggested_path),
        )

    @classmethod
    def from_domain(cls, path: StudentLearningPath) -> "LearningPathModel":
        return cls(
            current_node_id=path.current_node_id,
            completed_nodes=sorted(path.completed_nodes),
            skipped_nodes=sorted(path.skipped_nodes),
            branch_history=[
                BranchHistoryEntryModel(branch_id=e.branch_id, taken_at=e.taken_at, reason=e.reason)
                for e in path.branch_history
            ],
            suggested_path=list(path.suggested_path),
        )


class WeeklyGoalModel(_CamelModel):
    target: int = Field(default=10, ge=1)
    current: int = Field(default=0, ge=0)
    type: Literal["modules", "xp", "time"] = "modules"


class GamificationModel(_CamelModel):
    total_xp: int = Field(default=0, ge=0, alias="totalXP")
    level: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_activity_date: datetime | None = None
    badges: List[str] = Field(default_factory=list)
    daily_challenge_completed: bool = False
    weekly_goal: WeeklyGoalModel = Field(default_factory=WeeklyGoalModel)

    @field_validator("last_activity_date")
    @classmethod
    def to_local_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_local_naive(value)

    def to_domain(self) -> StudentGamification:
        # Stored badge lists may carry duplicates from older writers
        badges = tuple(dict.fromkeys(self.badges))
        return StudentGamification(
            total_xp=self.total_xp,
            level=calculate_level(self.total_xp),
            current_streak=self.current_streak,
            longest_streak=max(self.longest_streak, self.current_streak),
            last_activity_date=self.last_activity_date,
            badges=badges,
            daily_challenge_completed=self.daily_challenge_completed,
            weekly_goal=WeeklyGoal(**self.weekly_goal.model_dump()),
        )

    @classmethod
    def from_domain(cls, gamification: StudentGamification) -> "GamificationModel":
        goal = gamification.weekly_goal
        return cls(
            total_xp=gamification.total_xp,
            level=gamification.level,
            current_streak=gamification.current_streak,
            longest_streak=gamification.longest_streak,
            last_activity_date=gamification.last_activity_date,
            badges=list(gamification.badges),
            daily_challenge_completed=gamification.daily_challenge_completed,
            weekly_goal=WeeklyGoalModel(target=goal.target, current=goal.current, type=goal.type),
        )


class ProgressModel(_CamelModel):
    completed_modules: List[str] = Field(default_factory=list)
    completed_chapters: List[str] = Field(default_factory=list)
    assessment_scores: List[float] = Field(default_factory=list)
    modules_completed_today: int = Field(default=0, ge=0)


class DailyActivityModel(_CamelModel):
    day: date = Field(alias="date")
    minutes_spent: float = Field(default=0.0, ge=0.0)
    modules_viewed: int = Field(default=0, ge=0)
    interactions_completed: int = Field(default=0, ge=0)
    accuracy: float = Field(default=0.0, ge=0.0, le=100.0)

    def to_domain(self) -> DailyActivity:
        return DailyActivity(
            date=self.day,
            minutes_spent=self.minutes_spent,
            modules_viewed=self.modules_viewed,
            interactions_completed=self.interactions_completed,
            accuracy=self.accuracy,
        )


class InteractionEventModel(_CamelModel):
    timestamp: datetime
    type: Literal[
        "answer_submitted",
        "hint_requested",
        "content_viewed",
        "interaction_started",
        "interaction_completed",
    ]
    correct: bool | None = None
    time_spent: float | None = Field(default=None, ge=0.0, description="Seconds.")
    attempt_number: int | None = Field(default=None, ge=1)
    concept_key: str | None = None

    @field_validator("timestamp")
    @classmethod
    def to_local_time(cls, value: datetime) -> datetime:
        return as_local_naive(value)

    def to_domain(self) -> InteractionEvent:
        return InteractionEvent(**self.model_dump())


class ModuleInteractionModel(_CamelModel):
    module_id: str
    total_score: float = Field(default=0.0, ge=0.0)
    max_possible_score: float = Field(default=0.0, ge=0.0)
    percentage_complete: float = Field(default=0.0, ge=0.0, le=100.0)

    def to_domain(self) -> ModuleInteractionProgress:
        return ModuleInteractionProgress(**self.model_dump())


class ProgressSnapshot(_CamelModel):
    """Everything needed to re-evaluate one learner offline."""

    student_id: str | None = None
    course_graph: CourseGraphModel
    responses: List[InteractionResponseModel] = Field(default_factory=list)
    previous_metrics: LearningMetricsModel | None = None
    path: LearningPathModel | None = None
    gamification: GamificationModel = Field(default_factory=GamificationModel)
    progress: ProgressModel = Field(default_factory=ProgressModel)
    reviews: List[ReviewItemModel] = Field(default_factory=list)
    badge_catalog: List[Dict[str, Any]] | None = None
    daily_activity: List[DailyActivityModel] = Field(default_factory=list)
    recent_events: List[InteractionEventModel] = Field(default_factory=list)
    module_interactions: List[ModuleInteractionModel] = Field(default_factory=list)
    evaluated_at: Optional[datetime] = None

    @field_validator("evaluated_at")
    @classmethod
    def to_local_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_local_naive(value)
