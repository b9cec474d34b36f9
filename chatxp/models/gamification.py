"""Gamification models for user progress, achievements, and leaderboard views."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class AchievementRarity(str, Enum):
    """Achievement rarity levels, lowest first."""
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


RARITY_ORDER = {rarity: order for order, rarity in enumerate(AchievementRarity, start=1)}


class Namespace(str, Enum):
    """Where a rule field is read from: the record itself or its achievement stats."""
    USER_DATA = "userData"
    STATS = "stats"


class Operator(str, Enum):
    """Comparison operators a rule may use."""
    GTE = ">="
    LTE = "<="
    GT = ">"
    LT = "<"
    EQ = "=="
    NEQ = "!="
    INCLUDES = "includes"


NUMERIC_OPERATORS = frozenset({Operator.GTE, Operator.LTE, Operator.GT, Operator.LT})
PROGRESS_OPERATORS = frozenset({Operator.GTE, Operator.GT})


class FieldRef(NamedTuple):
    """A namespaced rule field, e.g. ``userData.totalMessages``."""

    namespace: Namespace
    name: str

    @classmethod
    def parse(cls, path: str) -> "FieldRef":
        prefix, sep, name = path.partition(".")
        if not sep or not name:
            raise ValueError(f"field '{path}' is not namespaced")
        try:
            namespace = Namespace(prefix)
        except ValueError:
            raise ValueError(f"unknown field namespace '{prefix}' in '{path}'") from None
        return cls(namespace, name)

    def __str__(self) -> str:
        return f"{self.namespace.value}.{self.name}"


def _without_nulls(data: dict) -> dict:
    return {key: value for key, value in data.items() if value is not None}


class CamelModel(BaseModel):
    """Accepts the snapshot's camelCase keys as well as snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# USER RECORDS
# =============================================================================

class UnlockedAchievement(CamelModel):
    """One entry of a user's append-only achievement list."""

    model_config = ConfigDict(frozen=True)

    id: str
    unlocked_at: datetime | None = None


class ActivityDay(CamelModel):
    """Aggregated chat activity for a single day."""

    model_config = ConfigDict(frozen=True)

    messages: int = 0
    xp: int = 0
    watch_time: int = 0

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        return _without_nulls(data) if isinstance(data, dict) else data


_UNLOCK_TIME = TypeAdapter(datetime | None)


def _parse_unlock_time(value: Any, achievement_id: str) -> datetime | None:
    try:
        return _UNLOCK_TIME.validate_python(value)
    except ValidationError:
        logger.warning(f"Unparseable unlock time {value!r} for achievement '{achievement_id}', using None")
        return None


def _normalize_achievements(raw: Any) -> Any:
    """
    Accept bare ids and {id, timestamp}/{id, unlockedAt} objects; keep the first of duplicate ids.

    Entries without an id are dropped and bad timestamps become None, so one
    broken entry never invalidates the whole record.
    """
    if not isinstance(raw, (list, tuple)):
        return raw

    seen: set[str] = set()
    normalized: list[Any] = []
    for item in raw:
        if isinstance(item, UnlockedAchievement):
            entry: Any = item
            achievement_id = item.id
        elif isinstance(item, str) and item:
            entry = {"id": item, "unlocked_at": None}
            achievement_id = item
        elif isinstance(item, dict) and isinstance(item.get("id"), str) and item["id"]:
            achievement_id = item["id"]
            unlocked_at = item.get("unlockedAt", item.get("unlocked_at", item.get("timestamp")))
            entry = {"id": achievement_id, "unlocked_at": _parse_unlock_time(unlocked_at, achievement_id)}
        else:
            logger.warning(f"Dropping achievement entry without an id: {item!r}")
            continue

        if achievement_id in seen:
            continue
        seen.add(achievement_id)
        normalized.append(entry)
    return normalized


class UserProgressRecord(CamelModel):
    """A user's progression state as materialized in the snapshot. Never mutated by the engine."""

    model_config = ConfigDict(frozen=True)

    username: str = ""
    xp: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)
    total_messages: int = 0
    streak_days: int = 0
    best_streak: int = 0
    watch_time_minutes: int = 0
    achievement_stats: dict[str, Any] = Field(default_factory=dict)
    achievements: list[UnlockedAchievement] = Field(default_factory=list)
    activity_history: dict[str, ActivityDay] = Field(default_factory=dict)
    weekly_xp: int | None = Field(default=None, alias="weeklyXP")
    monthly_xp: int | None = Field(default=None, alias="monthlyXP")

    @model_validator(mode="before")
    @classmethod
    def normalize_raw(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _without_nulls(data)
        if "bestStreak" not in data and "best_streak" not in data:
            streak = data.get("streakDays", data.get("streak_days"))
            if streak is not None:
                data["best_streak"] = streak
        if "achievements" in data:
            data["achievements"] = _normalize_achievements(data["achievements"])
        return data

    @property
    def achievement_ids(self) -> list[str]:
        return [a.id for a in self.achievements]

    @property
    def achievement_count(self) -> int:
        return len(self.achievements)

    def has_achievement(self, achievement_id: str) -> bool:
        return any(a.id == achievement_id for a in self.achievements)


# =============================================================================
# ACHIEVEMENT CATALOG
# =============================================================================

class AchievementRule(BaseModel):
    """Declarative unlock predicate: ``field operator value``."""

    model_config = ConfigDict(frozen=True)

    field: FieldRef
    operator: Operator
    value: bool | int | float | str

    @field_validator("field", mode="before")
    @classmethod
    def parse_field(cls, value: Any) -> Any:
        if isinstance(value, str):
            return FieldRef.parse(value)
        return value


class AchievementDefinition(CamelModel):
    """Static achievement definition - loaded once, shared by all users."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    condition: str | None = None
    category: str = "special"
    rarity: AchievementRarity = AchievementRarity.COMMON
    icon: str | None = None
    image: str | None = None
    rule: AchievementRule | None = None
    game_category: str | None = None

    # Set at load time for entries that can never be evaluated
    evaluable: bool = True
    load_error: str | None = None


class AchievementCatalog:
    """Immutable, ordered collection of achievement definitions keyed by id.

    Iterating yields definitions in load order.
    """

    def __init__(self, definitions: Iterable[AchievementDefinition] = ()):
        self._definitions = MappingProxyType({d.id: d for d in definitions})

    def __getitem__(self, achievement_id: str) -> AchievementDefinition:
        return self._definitions[achievement_id]

    def __contains__(self, achievement_id: object) -> bool:
        return achievement_id in self._definitions

    def __iter__(self) -> Iterator[AchievementDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def __repr__(self) -> str:
        return f"AchievementCatalog({len(self)} achievements)"

    def get(self, achievement_id: str) -> AchievementDefinition | None:
        return self._definitions.get(achievement_id)

    def ids(self) -> list[str]:
        return list(self._definitions)

    def categories(self) -> list[str]:
        """Category keys in order of first appearance."""
        return list(dict.fromkeys(d.category for d in self))

    def by_category(self, category: str) -> list[AchievementDefinition]:
        return [d for d in self if d.category == category]

    @property
    def rejected(self) -> list[AchievementDefinition]:
        """Entries kept for display but marked non-evaluable at load time."""
        return [d for d in self if not d.evaluable]


# =============================================================================
# DERIVED VIEWS
# =============================================================================

class LevelProgress(BaseModel):
    """Progress inside the current level."""

    current: int
    required: int
    percentage: float


class Prediction(BaseModel):
    """Progress toward a locked achievement."""

    achievement: AchievementDefinition
    current_value: float
    target_value: float
    progress: float
    remaining: float
    is_close: bool

    @property
    def id(self) -> str:
        return self.achievement.id


class CategoryDistributionEntry(BaseModel):
    category: str
    count: int
    total: int
    percentage: float


class PlayerArchetype(BaseModel):
    """Derived label summarizing a player's dominant category mix."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str


class LeaderboardEntry(BaseModel):
    """Ranked view of a user record. ``xp`` may be a windowed total; ``record`` is untouched."""

    rank: int
    username: str
    achievement_count: int
    level: int
    xp: int
    watch_time_minutes: int
    best_streak: int
    streak_days: int
    total_messages: int
    rank_title: str
    record: UserProgressRecord


class LeaderboardPage(BaseModel):
    entries: list[LeaderboardEntry]
    rank_offset: int
    page: int
    page_size: int
    total: int
    total_pages: int


class HeatmapDay(BaseModel):
    """One cell of the yearly activity heatmap."""

    day: date
    level: int
    activity: int = 0
    xp: int = 0
    watch_time: int = 0
    achievements: list[str] = Field(default_factory=list)
    is_future: bool = False
    in_year: bool = True


class RarestAchievement(BaseModel):
    achievement: AchievementDefinition
    count: int
    percentage: float
    holders: list[str]


class GlobalStats(BaseModel):
    total_xp: int
    total_unlocks: int
    active_users: int
    rarest_achievement: RarestAchievement | None
    rarity_distribution: dict[AchievementRarity, int]


class AchievementHolder(BaseModel):
    username: str
    level: int
    xp: int
    unlocked_at: datetime | None = None


@dataclass(frozen=True)
class Snapshot:
    """Full materialization of the remote store. Replaced as a whole on refresh."""

    users: dict[str, UserProgressRecord]
    catalog: AchievementCatalog | None
    fetched_at: datetime


class UserProfile(BaseModel):
    """Everything a profile page shows for one user."""

    record: UserProgressRecord
    rank: int | None
    rank_title: str
    level_progress: LevelProgress
    unlocked: list[str]
    predictions: list[Prediction]
    distribution: list[CategoryDistributionEntry]
    archetype: PlayerArchetype
