"""Spaced repetition system for optimized learning retention."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Any

from engines.validation import validate_quality, validate_review_state
from structured_logging import log_json

_LOGGER = logging.getLogger(__name__)

MINIMUM_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5
MASTERED_REPETITIONS = 3


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999999)


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class ReviewItem:
    concept_key: str
    question: str
    answer: str
    next_review_date: datetime
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval: int = 0
    repetitions: int = 0
    correct_count: int = 0
    incorrect_count: int = 0
    last_review_date: Optional[datetime] = None
    module_id: Optional[str] = None
    archived: bool = False


@dataclass(frozen=True)
class SM2Result:
    ease_factor: float
    interval: int
    repetitions: int


def sm2_update(quality: int, repetitions: int, ease_factor: float, interval: int) -> SM2Result:
    """Calculate next review parameters using SM-2.

    Args:
        quality: Rating 0-5 (0=complete blackout, 5=perfect)
        repetitions: Number of consecutive correct reviews
        ease_factor: Current ease factor (minimum 1.3)
        interval: Current interval in days

    Returns:
        SM2Result with updated ease factor, interval and repetitions.
    """
    quality = validate_quality(quality)

    # The ease factor moves on every rating, failed recalls included
    new_ef = ease_factor + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
    new_ef = max(MINIMUM_EASE_FACTOR, new_ef)

    if quality >= 3:
        new_repetitions = repetitions + 1
        if new_repetitions == 1:
            new_interval = 1
        elif new_repetitions == 2:
            new_interval = 6
        else:
            new_interval = max(1, _round_half_up(interval * new_ef))
    else:
        # Incorrect, start over
        new_repetitions = 0
        new_interval = 1

    return SM2Result(ease_factor=new_ef, interval=new_interval, repetitions=new_repetitions)


class SpacedRepetitionScheduler:
    def __init__(self, default_ease_factor: float = DEFAULT_EASE_FACTOR):
        if default_ease_factor < MINIMUM_EASE_FACTOR:
            raise ValueError("default_ease_factor must be at least 1.3")
        self.default_ease_factor = default_ease_factor

    def create_review_item(self,
                           concept_key: str,
                           question: str,
                           answer: str,
                           now: Optional[datetime] = None,
                           module_id: Optional[str] = None) -> ReviewItem:
        """Create a review item on first exposure; it is due immediately."""
        if now is None:
            now = datetime.now()
        return ReviewItem(
            concept_key=concept_key,
            question=question,
            answer=answer,
            next_review_date=now,
            ease_factor=self.default_ease_factor,
            module_id=module_id,
        )

    def generate_review_items(self,
                              existing: Iterable[ReviewItem],
                              interactions: Iterable[Mapping[str, Any]],
                              now: Optional[datetime] = None,
                              module_id: Optional[str] = None) -> List[ReviewItem]:
        """Create review items for practice questions whose concept has none yet."""
        known = {item.concept_key for item in existing}
        created: List[ReviewItem] = []
        for interaction in interactions:
            concept_key = str(interaction.get("concept_key") or interaction.get("conceptKey") or "")
            if not concept_key or concept_key in known:
                continue
            known.add(concept_key)
            created.append(self.create_review_item(
                concept_key,
                str(interaction.get("question", "")),
                str(interaction.get("answer", "")),
                now=now,
                module_id=module_id,
            ))
        return created

    def review(self,
               item: ReviewItem,
               quality: int,
               now: Optional[datetime] = None) -> ReviewItem:
        """Apply a recall rating to ``item`` and return the rescheduled copy."""
        quality = validate_quality(quality)
        validate_review_state(item.ease_factor, item.interval, item.repetitions)
        if now is None:
            now = datetime.now()

        result = sm2_update(quality, item.repetitions, item.ease_factor, item.interval)
        recalled = quality >= 3
        updated = replace(
            item,
            ease_factor=result.ease_factor,
            interval=result.interval,
            repetitions=result.repetitions,
            next_review_date=now + timedelta(days=result.interval),
            last_review_date=now,
            correct_count=item.correct_count + (1 if recalled else 0),
            incorrect_count=item.incorrect_count + (0 if recalled else 1),
        )
        log_json(_LOGGER, "review_scheduled", {
            "concept_key": item.concept_key,
            "quality": quality,
            "ease_factor": round(updated.ease_factor, 4),
            "interval": updated.interval,
            "repetitions": updated.repetitions,
            "next_review_date": updated.next_review_date,
        }, level=logging.DEBUG)
        return updated

    @staticmethod
    def archive(item: ReviewItem) -> ReviewItem:
        """Review items are never deleted, only archived."""
        return replace(item, archived=True)

    def get_due_reviews(self,
                        reviews: Sequence[ReviewItem],
                        current_time: Optional[datetime] = None,
                        limit: int = 20) -> List[ReviewItem]:
        """Get items due by the end of today, oldest first."""
        if current_time is None:
            current_time = datetime.now()
        cutoff = _end_of_day(current_time)
        due = [item for item in reviews
               if not item.archived and item.next_review_date <= cutoff]
        due.sort(key=lambda item: item.next_review_date)
        return due[:limit]

    def review_stats(self,
                     reviews: Sequence[ReviewItem],
                     current_time: Optional[datetime] = None) -> Dict[str, int]:
        """Summarise review load, mastery and recall accuracy."""
        if current_time is None:
            current_time = datetime.now()
        today = _start_of_day(current_time)
        active = [item for item in reviews if not item.archived]

        total_items = len(active)
        due_items = len([r for r in active if r.next_review_date <= today])
        reviewed_today = len([r for r in active
                              if r.last_review_date is not None and r.last_review_date >= today])
        mastered_items = len([r for r in active if r.repetitions >= MASTERED_REPETITIONS])
        total_correct = sum(r.correct_count for r in active)
        total_reviews = total_correct + sum(r.incorrect_count for r in active)

        return {
            "total_items": total_items,
            "due_items": due_items,
            "reviewed_today": reviewed_today,
            "mastered_items": mastered_items,
            "mastery_percentage": _round_half_up(mastered_items / total_items * 100) if total_items else 0,
            "accuracy": _round_half_up(total_correct / total_reviews * 100) if total_reviews else 0,
            "total_reviews": total_reviews,
        }

    def review_schedule(self,
                        reviews: Sequence[ReviewItem],
                        current_time: Optional[datetime] = None,
                        days: int = 7) -> Dict[str, int]:
        """Count upcoming reviews per calendar date for the next ``days`` days."""
        if current_time is None:
            current_time = datetime.now()
        start = _start_of_day(current_time)
        end = start + timedelta(days=days)

        schedule: Dict[str, int] = {}
        for item in reviews:
            if item.archived or not start <= item.next_review_date <= end:
                continue
            key = item.next_review_date.date().isoformat()
            schedule[key] = schedule.get(key, 0) + 1
        return schedule
