"""Badge catalog and the read-only rule engine that decides which badges unlock."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple

import yaml

from engines.gamification import StudentGamification
from engines.validation import BadgeCatalogError

BadgeCategory = Literal["achievement", "streak", "mastery", "exploration"]
BADGE_CATEGORIES = ("achievement", "streak", "mastery", "exploration")
REQUIREMENT_TYPES = (
    "module_complete",
    "total_modules",
    "course_complete",
    "streak_days",
    "perfect_score",
    "accuracy",
    "modules_in_day",
    "xp_earned",
)
# Course size is approximated; completed courses are not tracked separately
MODULES_PER_COURSE = 10


@dataclass(frozen=True)
class BadgeRequirement:
    type: str
    value: float


@dataclass(frozen=True)
class Badge:
    """Immutable catalog entry."""

    id: str
    name: str
    category: BadgeCategory
    requirement: BadgeRequirement
    xp_reward: int
    description: str = ""
    icon: str = ""


def _parse_badge(idx: int, entry: Any) -> Badge:
    if not isinstance(entry, Mapping):
        raise BadgeCatalogError(f"Entry #{idx} must be an object")
    badge_id = str(entry.get("id", "")).strip()
    if not badge_id:
        raise BadgeCatalogError(f"Entry #{idx} is missing a non-empty 'id'")

    category = entry.get("category")
    if category not in BADGE_CATEGORIES:
        raise BadgeCatalogError(f"Badge {badge_id} has unknown category {category!r}")

    requirement = entry.get("requirement")
    if not isinstance(requirement, Mapping):
        raise BadgeCatalogError(f"Badge {badge_id} is missing a requirement")
    requirement_type = requirement.get("type")
    if requirement_type not in REQUIREMENT_TYPES:
        raise BadgeCatalogError(
            f"Badge {badge_id} has unknown requirement type {requirement_type!r}"
        )

    xp_reward = entry.get("xp_reward", entry.get("xpReward", 0))
    try:
        value = float(requirement.get("value"))
        xp_reward = int(xp_reward)
    except (TypeError, ValueError) as exc:
        raise BadgeCatalogError(f"Badge {badge_id} has non-numeric requirement or reward") from exc
    if xp_reward < 0:
        raise BadgeCatalogError(f"Badge {badge_id} xp reward may not be negative")

    return Badge(
        id=badge_id,
        name=str(entry.get("name", badge_id)),
        category=category,
        requirement=BadgeRequirement(requirement_type, value),
        xp_reward=xp_reward,
        description=str(entry.get("description", "")),
        icon=str(entry.get("icon", "")),
    )


class BadgeCatalog:
    """Ordered, immutable set of badges passed to the rule engine."""

    def __init__(self, badges: Iterable[Badge]) -> None:
        ordered: List[Badge] = []
        seen: set[str] = set()
        for badge in badges:
            if badge.id in seen:
                raise BadgeCatalogError(f"Duplicate badge id detected: {badge.id}")
            if badge.requirement.type not in REQUIREMENT_TYPES:
                raise BadgeCatalogError(
                    f"Badge {badge.id} has unknown requirement type {badge.requirement.type!r}"
                )
            seen.add(badge.id)
            ordered.append(badge)
        self._badges: Tuple[Badge, ...] = tuple(ordered)
        self._by_id: Dict[str, Badge] = {badge.id: badge for badge in ordered}

    # ------------------------------------------------------------------
    @classmethod
    def from_entries(cls, entries: Sequence[Any]) -> "BadgeCatalog":
        if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
            raise BadgeCatalogError("Badge catalog must contain a list of badges")
        return cls(_parse_badge(idx, entry) for idx, entry in enumerate(entries, start=1))

    @classmethod
    def from_file(cls, path: str | Path) -> "BadgeCatalog":
        """Load a catalog from a JSON or YAML list of badge objects."""

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Badge catalog file not found: {path}")
        text = path.read_text(encoding="utf-8")
        suffix = path.suffix.lower()
        try:
            if suffix in {".yml", ".yaml"}:
                raw = yaml.safe_load(text)
            else:
                raw = json.loads(text)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise BadgeCatalogError(f"Badge catalog {path} is not valid: {exc}") from exc
        if isinstance(raw, Mapping) and "badges" in raw:
            raw = raw["badges"]
        return cls.from_entries(raw)

    # ------------------------------------------------------------------
    def __iter__(self):
        return iter(self._badges)

    def __len__(self) -> int:
        return len(self._badges)

    def __contains__(self, badge_id: object) -> bool:
        return badge_id in self._by_id

    @property
    def badges(self) -> Tuple[Badge, ...]:
        return self._badges

    def get(self, badge_id: str) -> Optional[Badge]:
        return self._by_id.get(badge_id)

    def by_category(self, category: str) -> List[Badge]:
        return [badge for badge in self._badges if badge.category == category]

    def ids(self) -> List[str]:
        return [badge.id for badge in self._badges]


def _badge(badge_id, name, description, icon, category, req_type, value, xp_reward) -> Badge:
    return Badge(
        id=badge_id,
        name=name,
        category=category,
        requirement=BadgeRequirement(req_type, value),
        xp_reward=xp_reward,
        description=description,
        icon=icon,
    )


DEFAULT_BADGES: Tuple[Badge, ...] = (
    # Achievement
    _badge("first_steps", "First Steps", "Complete your first module", "🎯", "achievement", "module_complete", 1, 50),
    _badge("knowledge_seeker", "Knowledge Seeker", "Complete 10 modules", "📚", "achievement", "total_modules", 10, 200),
    _badge("dedicated_learner", "Dedicated Learner", "Complete 25 modules", "🎓", "achievement", "total_modules", 25, 500),
    _badge("master_scholar", "Master Scholar", "Complete 50 modules", "👑", "achievement", "total_modules", 50, 1000),
    _badge("course_champion", "Course Champion", "Complete your first course", "🏆", "achievement", "course_complete", 1, 500),
    # Streak
    _badge("getting_started", "Getting Started", "Maintain a 3-day learning streak", "🔥", "streak", "streak_days", 3, 100),
    _badge("week_warrior", "Week Warrior", "Maintain a 7-day learning streak", "⚡", "streak", "streak_days", 7, 300),
    _badge("fortnight_fighter", "Fortnight Fighter", "Maintain a 14-day learning streak", "💪", "streak", "streak_days", 14, 600),
    _badge("month_master", "Month Master", "Maintain a 30-day learning streak", "🌟", "streak", "streak_days", 30, 1500),
    _badge("unstoppable", "Unstoppable", "Maintain a 100-day learning streak", "🚀", "streak", "streak_days", 100, 5000),
    # Mastery
    _badge("perfect_score", "Perfect Score", "Score 100% on an assessment", "💯", "mastery", "perfect_score", 1, 150),
    _badge("accuracy_ace", "Accuracy Ace", "Maintain 90%+ overall accuracy", "🎯", "mastery", "accuracy", 90, 400),
    _badge("flawless_master", "Flawless Master", "Maintain 95%+ overall accuracy", "💎", "mastery", "accuracy", 95, 800),
    # Exploration
    _badge("quick_learner", "Quick Learner", "Complete 5 modules in one day", "⚡", "exploration", "modules_in_day", 5, 250),
    _badge("speed_demon", "Speed Demon", "Complete 10 modules in one day", "🏃", "exploration", "modules_in_day", 10, 600),
    _badge("xp_hunter", "XP Hunter", "Earn 1,000 total XP", "💰", "exploration", "xp_earned", 1000, 200),
    _badge("xp_legend", "XP Legend", "Earn 5,000 total XP", "🌈", "exploration", "xp_earned", 5000, 500),
    _badge("xp_master", "XP Master", "Earn 10,000 total XP", "✨", "exploration", "xp_earned", 10000, 1000),
)

DEFAULT_BADGE_CATALOG = BadgeCatalog(DEFAULT_BADGES)


@dataclass(frozen=True)
class BadgeProgress:
    """Cumulative course progress the badge predicates read."""

    completed_modules: Tuple[str, ...] = ()
    completed_chapters: Tuple[str, ...] = ()
    assessment_scores: Tuple[float, ...] = ()
    accuracy: float = 0.0
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def perfect_scores(self) -> int:
        return sum(1 for score in self.assessment_scores if score >= 100)


class BadgeRuleEngine:
    """Evaluate a ``BadgeCatalog`` against progress and gamification state.

    The engine never awards anything itself; callers pass the returned ids to
    ``GamificationEngine.award_badge``.
    """

    def __init__(self, catalog: Optional[BadgeCatalog] = None) -> None:
        self.catalog = catalog if catalog is not None else DEFAULT_BADGE_CATALOG

    def check_badges(
        self,
        progress: BadgeProgress,
        gamification: StudentGamification,
        modules_completed_today: int = 0,
    ) -> List[str]:
        owned = set(gamification.badges)
        return [
            badge.id
            for badge in self.catalog
            if badge.id not in owned
            and self.is_satisfied(badge.requirement, progress, gamification, modules_completed_today)
        ]

    @staticmethod
    def is_satisfied(
        requirement: BadgeRequirement,
        progress: BadgeProgress,
        gamification: StudentGamification,
        modules_completed_today: int = 0,
    ) -> bool:
        value = requirement.value
        kind = requirement.type
        if kind in ("module_complete", "total_modules"):
            return len(progress.completed_modules) >= value
        if kind == "course_complete":
            return (
                len(progress.completed_chapters) > 0
                and len(progress.completed_modules) >= value * MODULES_PER_COURSE
            )
        if kind == "streak_days":
            return gamification.longest_streak >= value
        if kind == "perfect_score":
            return progress.perfect_scores >= value
        if kind == "accuracy":
            return progress.accuracy >= value
        if kind == "modules_in_day":
            return modules_completed_today >= value
        if kind == "xp_earned":
            return gamification.total_xp >= value
        raise BadgeCatalogError(f"Unknown badge requirement type {kind!r}")
