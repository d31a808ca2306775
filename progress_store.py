"""In-memory store of per-(student, course) progress aggregates."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Dict, Optional, Tuple, TypeVar

from engines.badges import BadgeProgress
from engines.gamification import StudentGamification, WeeklyGoal
from engines.performance import ExtendedLearningMetrics, InteractionResponse
from engines.spaced_repetition import ReviewItem
from learning_path import StudentLearningPath
from structured_logging import log_json

logger = logging.getLogger(__name__)

AggregateKey = Tuple[str, str]
T = TypeVar("T")


class StaleAggregateError(RuntimeError):
    """Raised when a commit is based on an outdated aggregate version."""

    def __init__(self, key: AggregateKey, expected: int, actual: int):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Aggregate {key[0]}/{key[1]} is at version {actual}, "
            f"commit expected version {expected}"
        )


@dataclass(frozen=True)
class ProgressAggregate:
    """Everything the engines read and write for one learner in one course."""

    student_id: str
    course_id: str
    responses: Tuple[InteractionResponse, ...] = ()
    metrics: ExtendedLearningMetrics = ExtendedLearningMetrics()
    path: Optional[StudentLearningPath] = None
    gamification: StudentGamification = StudentGamification()
    reviews: Tuple[ReviewItem, ...] = ()
    completed_modules: Tuple[str, ...] = ()
    completed_chapters: Tuple[str, ...] = ()
    assessment_scores: Tuple[float, ...] = ()
    module_completions: Tuple[datetime, ...] = ()
    version: int = 0

    @property
    def key(self) -> AggregateKey:
        return (self.student_id, self.course_id)

    def modules_completed_on(self, day: date) -> int:
        return sum(1 for moment in self.module_completions if moment.date() == day)

    def badge_progress(self) -> BadgeProgress:
        return BadgeProgress(
            completed_modules=self.completed_modules,
            completed_chapters=self.completed_chapters,
            assessment_scores=self.assessment_scores,
            accuracy=self.metrics.accuracy,
        )


class ProgressArena:
    """Thread-safe map of progress aggregates with optimistic versioning.

    Every commit must name the version it was computed from; a mismatch means
    another writer got there first and raises ``StaleAggregateError``.
    ``update`` serializes read-compute-commit for one key under that key's
    lock, so concurrent writers for different learners never block each other.
    """

    def __init__(self, weekly_goal_target: int = 10):
        self.weekly_goal_target = weekly_goal_target
        self._aggregates: Dict[AggregateKey, ProgressAggregate] = {}
        self._locks: Dict[AggregateKey, threading.Lock] = {}
        self._lock = threading.Lock()

    def _key_lock(self, key: AggregateKey) -> threading.Lock:
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                logger.debug(f"Created aggregate lock (total: {len(self._locks)})")
            return lock

    def _empty(self, student_id: str, course_id: str) -> ProgressAggregate:
        return ProgressAggregate(
            student_id=student_id,
            course_id=course_id,
            gamification=StudentGamification(
                weekly_goal=WeeklyGoal(target=self.weekly_goal_target),
            ),
        )

    def get(self, student_id: str, course_id: str) -> ProgressAggregate:
        """Current snapshot, or an empty version-0 aggregate."""
        with self._lock:
            stored = self._aggregates.get((student_id, course_id))
        return stored if stored is not None else self._empty(student_id, course_id)

    def commit(self, aggregate: ProgressAggregate, expected_version: int) -> ProgressAggregate:
        with self._key_lock(aggregate.key):
            return self._commit_locked(aggregate, expected_version)

    def update(
        self,
        student_id: str,
        course_id: str,
        fn: Callable[[ProgressAggregate], Tuple[ProgressAggregate, T]],
    ) -> Tuple[ProgressAggregate, T]:
        """Apply ``fn`` to the current aggregate and commit what it returns.

        ``fn`` returns the new aggregate plus any outcome the caller wants back.
        Exceptions from ``fn`` propagate and nothing is committed.
        """
        key = (student_id, course_id)
        with self._key_lock(key):
            current = self.get(student_id, course_id)
            updated, outcome = fn(current)
            committed = self._commit_locked(updated, current.version)
        return committed, outcome

    def _commit_locked(self, aggregate: ProgressAggregate, expected_version: int) -> ProgressAggregate:
        key = aggregate.key
        with self._lock:
            stored = self._aggregates.get(key)
            actual = stored.version if stored is not None else 0
            if actual != expected_version:
                raise StaleAggregateError(key, expected_version, actual)
            committed = replace(aggregate, version=actual + 1)
            self._aggregates[key] = committed
        log_json(logger, "aggregate_committed", {
            "student_id": key[0],
            "course_id": key[1],
            "version": committed.version,
        }, level=logging.DEBUG)
        return committed

    def __len__(self) -> int:
        with self._lock:
            return len(self._aggregates)
