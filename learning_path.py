"""Adaptive learning path engine over a course concept graph."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, FrozenSet, List, Literal, Optional, Sequence, Set, Tuple

from engines.performance import ExtendedLearningMetrics
from engines.validation import (
    BranchNotFound,
    PathExhausted,
    UnknownBranchAction,
    UnknownBranchCondition,
)
from knowledge_graph import (
    AccuracyAbove,
    AccuracyBelow,
    BranchCondition,
    ConceptNode,
    CourseGraph,
    MasteredConcept,
    PathBranch,
    StrugglingConcept,
)
from structured_logging import log_json

_LOGGER = logging.getLogger(__name__)

BranchAction = Literal[
    "accept_remedial",
    "accept_advanced",
    "accept_branch",
    "decline_branch",
    "recalculate_path",
    "skip_module",
]
ACCEPT_ACTIONS = frozenset({"accept_remedial", "accept_advanced", "accept_branch"})
BRANCH_ACTIONS = ACCEPT_ACTIONS | {"decline_branch", "recalculate_path", "skip_module"}


@dataclass(frozen=True)
class BranchHistoryEntry:
    branch_id: str
    taken_at: datetime
    reason: str


@dataclass(frozen=True)
class StudentLearningPath:
    """Per-(student, course) position on the course graph."""

    current_node_id: str
    completed_nodes: FrozenSet[str] = frozenset()
    skipped_nodes: FrozenSet[str] = frozenset()
    branch_history: Tuple[BranchHistoryEntry, ...] = ()
    suggested_path: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BranchRecommendation:
    """A matching branch offered to the learner; nothing has been applied yet."""

    branch: PathBranch
    target_node: ConceptNode
    reason: str


@dataclass(frozen=True)
class NextStepEvaluation:
    next_node: Optional[ConceptNode]
    default_next_node: Optional[ConceptNode]
    recommendation: Optional[BranchRecommendation]
    message: str
    completed: bool = False


@dataclass(frozen=True)
class BranchExecutionResult:
    path: StudentLearningPath
    action: str
    message: str
    branch: Optional[PathBranch] = None
    target_node: Optional[ConceptNode] = None
    newly_skipped: Tuple[str, ...] = ()
    reasoning: Optional[str] = None
    changed: bool = True


@dataclass(frozen=True)
class PathSuggestion:
    node_ids: Tuple[str, ...]
    reasoning: str
    strategy: str = "balanced"
    notes: Dict[str, str] = field(default_factory=dict)


class LearningPathEngine:
    """Rule evaluator that moves a learner along a course graph.

    Parameters
    ----------
    min_incorrect_streak:
        Consecutive incorrect answers additionally required before an
        ``accuracy_below`` branch matches. ``0`` disables the gate.
    min_correct_streak:
        Consecutive correct answers additionally required before an
        ``accuracy_above`` branch matches. ``0`` disables the gate.
    """

    def __init__(self, *, min_incorrect_streak: int = 0, min_correct_streak: int = 0) -> None:
        if min_incorrect_streak < 0 or min_correct_streak < 0:
            raise ValueError("streak gates may not be negative")
        self.min_incorrect_streak = int(min_incorrect_streak)
        self.min_correct_streak = int(min_correct_streak)

    # ------------------------------------------------------------------
    def initialize_path(self, graph: CourseGraph) -> StudentLearningPath:
        first = graph.first_node()
        if first is None:
            raise PathExhausted(f"Course {graph.course_id} has no concept nodes")
        return StudentLearningPath(
            current_node_id=first.id,
            suggested_path=tuple(graph.node_ids()),
        )

    # ------------------------------------------------------------------
    def condition_matches(self, condition: BranchCondition, metrics: ExtendedLearningMetrics) -> Optional[str]:
        """Return the match reason when ``condition`` holds for ``metrics``.

        Accuracy conditions never match before the first graded response.
        """

        if isinstance(condition, AccuracyBelow):
            if (
                metrics.graded_responses > 0
                and metrics.accuracy < condition.threshold
                and metrics.incorrect_streak >= self.min_incorrect_streak
            ):
                return f"Accuracy below {condition.threshold:g}% - recommending review"
            return None
        if isinstance(condition, AccuracyAbove):
            if (
                metrics.graded_responses > 0
                and metrics.accuracy >= condition.threshold
                and metrics.correct_streak >= self.min_correct_streak
            ):
                return f"Accuracy above {condition.threshold:g}% - recommending advanced content"
            return None
        if isinstance(condition, StrugglingConcept):
            if condition.concept_key and condition.concept_key in metrics.concepts_struggling:
                return f"Struggling with {condition.concept_key} - recommending remedial path"
            return None
        if isinstance(condition, MasteredConcept):
            if condition.concept_key and condition.concept_key in metrics.concepts_mastered:
                return f"Mastered {condition.concept_key} - recommending skip ahead"
            return None
        raise UnknownBranchCondition(getattr(condition, "type", type(condition).__name__))

    # ------------------------------------------------------------------
    def check_branch_conditions(
        self,
        metrics: ExtendedLearningMetrics,
        graph: CourseGraph,
    ) -> Optional[BranchRecommendation]:
        """First branch, in authored order, whose condition matches."""

        for branch in graph.branches:
            reason = self.condition_matches(branch.condition, metrics)
            if reason is None:
                continue
            return BranchRecommendation(
                branch=branch,
                target_node=graph.branch_target(branch),
                reason=reason,
            )
        return None

    # ------------------------------------------------------------------
    def evaluate_next(
        self,
        path: Optional[StudentLearningPath],
        graph: CourseGraph,
        metrics: ExtendedLearningMetrics,
    ) -> NextStepEvaluation:
        """Recommend the next node without changing ``path``."""

        if path is None:
            first = graph.first_node()
            return NextStepEvaluation(
                next_node=first,
                default_next_node=first,
                recommendation=None,
                message="Start your learning journey!",
                completed=first is None,
            )

        default_next = graph.next_node(path.current_node_id)
        recommendation = self.check_branch_conditions(metrics, graph)
        if recommendation is not None:
            log_json(_LOGGER, "branch_recommended", {
                "course_id": graph.course_id,
                "current_node_id": path.current_node_id,
                "branch_id": recommendation.branch.id,
                "branch_type": recommendation.branch.branch_type,
                "target_node_id": recommendation.target_node.id,
                "reason": recommendation.reason,
                "accuracy": round(metrics.accuracy, 2),
            })
            return NextStepEvaluation(
                next_node=recommendation.target_node,
                default_next_node=default_next,
                recommendation=recommendation,
                message=recommendation.branch.description or recommendation.reason,
            )

        if default_next is None:
            return NextStepEvaluation(
                next_node=None,
                default_next_node=None,
                recommendation=None,
                message="You have completed this learning path!",
                completed=True,
            )
        return NextStepEvaluation(
            next_node=default_next,
            default_next_node=default_next,
            recommendation=None,
            message="Continue to the next module",
        )

    # ------------------------------------------------------------------
    def execute_branch(
        self,
        path: StudentLearningPath,
        graph: CourseGraph,
        action: str,
        *,
        branch_id: Optional[str] = None,
        metrics: Optional[ExtendedLearningMetrics] = None,
        now: Optional[datetime] = None,
    ) -> BranchExecutionResult:
        """Apply a learner's branch decision and return the updated path.

        All lookups and validation happen before the new path is built, so a
        failing action leaves the learner exactly where they were.
        """

        if action not in BRANCH_ACTIONS:
            raise UnknownBranchAction(action, BRANCH_ACTIONS)
        if now is None:
            now = datetime.now()

        if action in ACCEPT_ACTIONS:
            result = self._accept_branch(path, graph, action, branch_id, now)
        elif action == "decline_branch":
            result = BranchExecutionResult(
                path=path,
                action=action,
                message="Continuing on current learning path",
                branch=graph.get_branch(branch_id) if branch_id else None,
                changed=False,
            )
        elif action == "recalculate_path":
            result = self._recalculate(path, graph, metrics or ExtendedLearningMetrics(), now)
        else:
            result = self._skip_module(path, graph, now)

        log_json(_LOGGER, "branch_executed", {
            "course_id": graph.course_id,
            "action": result.action,
            "branch_id": result.branch.id if result.branch else None,
            "current_node_id": result.path.current_node_id,
            "newly_skipped": list(result.newly_skipped),
            "changed": result.changed,
        })
        return result

    # ------------------------------------------------------------------
    def complete_node(
        self,
        path: StudentLearningPath,
        graph: CourseGraph,
        node_id: str,
    ) -> StudentLearningPath:
        """Mark ``node_id`` completed; advance when it was the current node."""

        graph.index_of(node_id)
        current = path.current_node_id
        if node_id == current:
            following = graph.next_node(node_id)
            if following is not None:
                current = following.id
        return replace(
            path,
            current_node_id=current,
            completed_nodes=path.completed_nodes | {node_id},
        )

    # ------------------------------------------------------------------
    def suggest_remedial_path(self, struggling: Sequence[str], graph: CourseGraph) -> List[str]:
        """Struggling concept nodes plus their prerequisites, in authored order."""

        selected: Set[str] = set()
        for concept in struggling:
            for node in graph.nodes_for_concept(concept):
                selected.add(node.id)
                selected.update(p for p in node.prerequisites if graph.get_node(p) is not None)
        return sorted(selected, key=graph.index_of)

    # ------------------------------------------------------------------
    def suggest_advanced_path(
        self,
        mastered: Sequence[str],
        graph: CourseGraph,
        *,
        min_difficulty: int = 6,
    ) -> List[str]:
        mastered_set = set(mastered)
        return [
            node.id
            for node in graph.nodes
            if node.concept_key not in mastered_set and node.difficulty >= min_difficulty
        ]

    # ------------------------------------------------------------------
    def calculate_optimal_path(
        self,
        path: StudentLearningPath,
        graph: CourseGraph,
        metrics: ExtendedLearningMetrics,
    ) -> PathSuggestion:
        """Greedy reordering of the remaining nodes around the learner's metrics.

        Remediation for struggling concepts that were already passed comes
        first. The remaining nodes are then emitted one at a time, always
        picking among nodes whose prerequisites are satisfied: struggling
        concepts before neutral ones, mastered concepts last, ties broken by
        authored order.
        """

        current_idx = graph.index_of(path.current_node_id)
        struggling = metrics.concepts_struggling
        mastered = metrics.concepts_mastered
        done = set(path.completed_nodes) | set(path.skipped_nodes)

        remediation = [
            node.id
            for node in graph.nodes[:current_idx]
            if node.concept_key in struggling
        ]
        remaining = [
            node for node in graph.nodes[current_idx:]
            if node.id not in done or node.concept_key in struggling
        ]
        remaining_ids = {node.id for node in remaining}

        def priority(node: ConceptNode) -> Tuple[int, int]:
            if node.concept_key in struggling:
                rank = 0
            elif node.concept_key in mastered:
                rank = 2
            else:
                rank = 1
            return rank, graph.index_of(node.id)

        ordered: List[str] = []
        placed: Set[str] = set()
        pending = list(remaining)
        while pending:
            ready = [
                node for node in pending
                if all(p in placed or p not in remaining_ids for p in node.prerequisites)
            ]
            # A prerequisite cycle cannot block the ordering forever
            chosen = min(ready or pending, key=priority)
            ordered.append(chosen.id)
            placed.add(chosen.id)
            pending.remove(chosen)

        node_ids = tuple(remediation + [n for n in ordered if n not in remediation])

        if struggling:
            strategy = "remedial"
            reasoning = "Remedial path - reviewing struggling concepts before moving on"
        elif metrics.accuracy >= 85 and metrics.recent_trend == "improving":
            strategy = "advanced"
            reasoning = "Advanced path - mastered concepts moved to the end and may be skipped"
        else:
            strategy = "balanced"
            reasoning = f"Balanced path - content matched to difficulty level {metrics.adaptive_difficulty}"
        skippable = {
            node.id: "mastered"
            for node in graph.nodes
            if node.id in node_ids and node.concept_key in mastered
        }
        return PathSuggestion(node_ids=node_ids, reasoning=reasoning, strategy=strategy, notes=skippable)

    # ----- action handlers ---------------------------------------------
    def _accept_branch(
        self,
        path: StudentLearningPath,
        graph: CourseGraph,
        action: str,
        branch_id: Optional[str],
        now: datetime,
    ) -> BranchExecutionResult:
        if not branch_id:
            raise BranchNotFound(branch_id)
        branch = graph.get_branch(branch_id)
        if branch is None:
            raise BranchNotFound(branch_id)
        target = graph.branch_target(branch)

        newly_skipped: Tuple[str, ...] = ()
        if branch.branch_type == "advanced":
            prior_idx = graph.index_of(path.current_node_id)
            target_idx = graph.index_of(target.id)
            newly_skipped = tuple(
                node.id
                for node in graph.nodes[prior_idx + 1:target_idx]
                if node.id not in path.skipped_nodes
            )

        entry = BranchHistoryEntry(
            branch_id=branch.id,
            taken_at=now,
            reason=f"Accepted {branch.branch_type} branch: {branch.title or branch.id}",
        )
        updated = replace(
            path,
            current_node_id=target.id,
            skipped_nodes=path.skipped_nodes | set(newly_skipped),
            branch_history=path.branch_history + (entry,),
        )
        return BranchExecutionResult(
            path=updated,
            action=action,
            message=f"Branch accepted: {branch.title or branch.id}",
            branch=branch,
            target_node=target,
            newly_skipped=newly_skipped,
        )

    # ------------------------------------------------------------------
    def _recalculate(
        self,
        path: StudentLearningPath,
        graph: CourseGraph,
        metrics: ExtendedLearningMetrics,
        now: datetime,
    ) -> BranchExecutionResult:
        suggestion = self.calculate_optimal_path(path, graph, metrics)
        entry = BranchHistoryEntry(branch_id="recalculate", taken_at=now, reason=suggestion.reasoning)
        updated = replace(
            path,
            suggested_path=suggestion.node_ids,
            branch_history=path.branch_history + (entry,),
        )
        return BranchExecutionResult(
            path=updated,
            action="recalculate_path",
            message="Learning path recalculated",
            reasoning=suggestion.reasoning,
        )

    # ------------------------------------------------------------------
    def _skip_module(
        self,
        path: StudentLearningPath,
        graph: CourseGraph,
        now: datetime,
    ) -> BranchExecutionResult:
        idx = graph.index_of(path.current_node_id)
        if idx >= len(graph.nodes) - 1:
            raise PathExhausted("No more modules to skip to")
        next_node = graph.nodes[idx + 1]
        entry = BranchHistoryEntry(branch_id="skip", taken_at=now, reason="Student requested to skip module")
        updated = replace(
            path,
            current_node_id=next_node.id,
            skipped_nodes=path.skipped_nodes | {path.current_node_id},
            branch_history=path.branch_history + (entry,),
        )
        return BranchExecutionResult(
            path=updated,
            action="skip_module",
            message="Module skipped",
            target_node=next_node,
            newly_skipped=(path.current_node_id,),
        )
