"""Rule engine - achievement catalog loading, unlock evaluation, and progress prediction."""

import logging
import operator as op
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from chatxp.core.config import settings
from chatxp.core.errors import ConfigError
from chatxp.models.gamification import (
    NUMERIC_OPERATORS,
    PROGRESS_OPERATORS,
    AchievementCatalog,
    AchievementDefinition,
    AchievementRule,
    FieldRef,
    Namespace,
    Operator,
    Prediction,
    UserProgressRecord,
)

logger = logging.getLogger(__name__)


# =============================================================================
# FIELD RESOLVERS
# =============================================================================

class FieldKind(str, Enum):
    NUMBER = "number"
    FLAG = "flag"
    LIST = "list"


@dataclass(frozen=True)
class FieldSpec:
    """How a rule field is read from a record."""

    accessor: Callable[[UserProgressRecord], Any]
    kind: FieldKind = FieldKind.NUMBER
    trackable: bool = False
    # Value used for progress when the record has no numeric value for the field
    prediction_default: float = 0


# Progress at or above this percentage marks a prediction as close to unlocking
CLOSE_THRESHOLD = 70

# Counters recorded in achievementStats by the chat ingestion pipeline
TRACKABLE_STAT_COUNTERS = (
    "firstMessageDays",
    "messagesWithEmotes",
    "mentionCount",
    "nightMessages",
    "streakResets",
)

STAT_COUNTERS = (
    "bestClimb",
    "bestDailyClimb",
    "broCount",
    "comebacks",
    "cyberpunk2077Messages",
    "daysAsTop1",
    "daysInTop10",
    "daysInTop15",
    "earlyMorningMessages",
    "ggCount",
    "levelUpsThisWeek",
    "levelUpsToday",
    "liveMessages",
    "marathonStreams",
    "offlineMessages",
    "primeTimeMessages",
    "rivalsDefeated",
    "streakBonusCount",
    "streamOpenerCount",
    "uniqueStreams",
    "witcher3Messages",
    "witcher3Streams",
)

STAT_FLAGS = (
    "dethroned",
    "phoenixAchieved",
    "usedMultiplier15",
    "usedMultiplier2",
    "usedMultiplier3",
)


def _stat(name: str, default: Any = 0) -> Callable[[UserProgressRecord], Any]:
    def accessor(record: UserProgressRecord) -> Any:
        value = record.achievement_stats.get(name)
        return default if value is None else value
    return accessor


def _build_field_resolvers() -> Mapping[FieldRef, FieldSpec]:
    user_data = {
        "totalMessages": FieldSpec(lambda r: r.total_messages, trackable=True),
        "level": FieldSpec(lambda r: r.level, trackable=True, prediction_default=1),
        "xp": FieldSpec(lambda r: r.xp, trackable=True),
        "streakDays": FieldSpec(lambda r: r.streak_days, trackable=True),
        "bestStreak": FieldSpec(lambda r: r.best_streak),
        "watchTimeMinutes": FieldSpec(lambda r: r.watch_time_minutes),
        "achievements": FieldSpec(lambda r: r.achievement_ids, kind=FieldKind.LIST),
        "achievements.length": FieldSpec(lambda r: r.achievement_count),
    }

    stats: dict[str, FieldSpec] = {}
    for name in TRACKABLE_STAT_COUNTERS:
        stats[name] = FieldSpec(_stat(name), trackable=True)
    for name in STAT_COUNTERS:
        stats[name] = FieldSpec(_stat(name))
    for name in STAT_FLAGS:
        stats[name] = FieldSpec(_stat(name, False), kind=FieldKind.FLAG)
    stats["holidays"] = FieldSpec(_stat("holidays", []), kind=FieldKind.LIST)
    # Lower is better; an absent rank never satisfies a comparison
    stats["bestRank"] = FieldSpec(_stat("bestRank", None), trackable=True, prediction_default=999)

    resolvers = {FieldRef(Namespace.USER_DATA, name): spec for name, spec in user_data.items()}
    resolvers.update({FieldRef(Namespace.STATS, name): spec for name, spec in stats.items()})
    return MappingProxyType(resolvers)


FIELD_RESOLVERS = _build_field_resolvers()


def resolve_field(field: FieldRef, record: UserProgressRecord) -> tuple[bool, Any]:
    """Return (resolved, value). Fields outside FIELD_RESOLVERS are never read."""
    spec = FIELD_RESOLVERS.get(field)
    if spec is None:
        return False, None
    return True, spec.accessor(record)


# =============================================================================
# OPERATORS
# =============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (int, float, str))


def _numeric(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def comparator(actual: Any, expected: Any) -> bool:
        return _is_number(actual) and _is_number(expected) and compare(actual, expected)
    return comparator


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    if isinstance(actual, str) and isinstance(expected, str):
        return actual == expected
    return False


def _not_equals(actual: Any, expected: Any) -> bool:
    if not (_is_scalar(actual) and _is_scalar(expected)):
        return False
    return not _equals(actual, expected)


def _includes(actual: Any, expected: Any) -> bool:
    return isinstance(actual, (list, tuple, set, frozenset)) and expected in actual


COMPARATORS: Mapping[Operator, Callable[[Any, Any], bool]] = MappingProxyType({
    Operator.GTE: _numeric(op.ge),
    Operator.LTE: _numeric(op.le),
    Operator.GT: _numeric(op.gt),
    Operator.LT: _numeric(op.lt),
    Operator.EQ: _equals,
    Operator.NEQ: _not_equals,
    Operator.INCLUDES: _includes,
})


# =============================================================================
# CATALOG LOADING
# =============================================================================

def parse_rule(raw: Any) -> AchievementRule:
    """Validate a raw ``{field, operator, value}`` object against the resolver table."""
    if raw is None:
        raise ConfigError("missing rule")
    if not isinstance(raw, Mapping):
        raise ConfigError("rule must be an object")

    path = raw.get("field")
    if not isinstance(path, str):
        raise ConfigError("rule has no field")
    try:
        field = FieldRef.parse(path)
    except ValueError as e:
        raise ConfigError(str(e)) from None

    spec = FIELD_RESOLVERS.get(field)
    if spec is None:
        raise ConfigError(f"unknown field '{path}'")

    try:
        operator = Operator(raw.get("operator"))
    except ValueError:
        raise ConfigError(f"unknown operator {raw.get('operator')!r}") from None

    value = raw.get("value")
    if not isinstance(value, (bool, int, float, str)):
        raise ConfigError("rule value must be a number, boolean or string")
    if operator in NUMERIC_OPERATORS and not _is_number(value):
        raise ConfigError(f"operator '{operator.value}' needs a numeric value, got {value!r}")
    if (operator is Operator.INCLUDES) != (spec.kind is FieldKind.LIST):
        raise ConfigError(f"operator '{operator.value}' cannot be applied to '{path}'")

    return AchievementRule(field=field, operator=operator, value=value)


def parse_definition(achievement_id: str, entry: Any) -> AchievementDefinition:
    if not isinstance(entry, Mapping):
        raise ConfigError("definition must be an object")

    data = {k: v for k, v in entry.items() if k not in ("evaluable", "loadError", "load_error")}
    data["id"] = achievement_id
    data["rule"] = parse_rule(entry.get("rule"))
    try:
        return AchievementDefinition.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        location = ".".join(str(part) for part in error["loc"])
        raise ConfigError(f"invalid {location}: {error['msg']}") from None


def _non_evaluable(achievement_id: str, entry: Any, reason: str) -> AchievementDefinition:
    data = {}
    if isinstance(entry, Mapping):
        data = {k: v for k, v in entry.items() if k in ("name", "description", "condition", "category", "icon", "image")}
    try:
        return AchievementDefinition(id=achievement_id, evaluable=False, load_error=reason, **data)
    except ValidationError:
        return AchievementDefinition(id=achievement_id, evaluable=False, load_error=reason)


def load_catalog(raw: Mapping[str, Any], strict: bool | None = None) -> AchievementCatalog:
    """
    Build an immutable catalog from its JSON form.

    Accepts either ``{id: definition}`` or ``{"achievements": {id: definition}, ...}``.
    Keys starting with an underscore (metadata) are skipped.

    In strict mode any malformed entry raises a single ConfigError listing all of
    them. Otherwise malformed entries are kept as non-evaluable and reported once.
    """
    if strict is None:
        strict = settings.catalog_strict

    entries = raw
    if isinstance(raw, Mapping) and isinstance(raw.get("achievements"), Mapping):
        entries = raw["achievements"]
    if not isinstance(entries, Mapping):
        raise ConfigError("achievement catalog must be an object keyed by achievement id")

    definitions: list[AchievementDefinition] = []
    problems: list[str] = []
    for achievement_id, entry in entries.items():
        if achievement_id.startswith("_"):
            continue
        try:
            definitions.append(parse_definition(achievement_id, entry))
        except ConfigError as e:
            problems.append(f"{achievement_id}: {e}")
            if not strict:
                definitions.append(_non_evaluable(achievement_id, entry, str(e)))

    if problems:
        if strict:
            raise ConfigError(f"{len(problems)} malformed achievement(s) in catalog", problems)
        for problem in problems:
            logger.warning(f"Achievement marked non-evaluable - {problem}")

    catalog = AchievementCatalog(definitions)
    logger.info(f"Loaded {len(catalog)} achievements ({len(catalog.rejected)} non-evaluable)")
    return catalog


# =============================================================================
# EVALUATION
# =============================================================================

def evaluate(rule: AchievementRule, record: UserProgressRecord) -> bool:
    """Whether ``record`` satisfies ``rule``. Unresolvable fields and type mismatches never match."""
    resolved, actual = resolve_field(rule.field, record)
    if not resolved:
        return False
    return COMPARATORS[rule.operator](actual, rule.value)


def evaluate_unlocked(record: UserProgressRecord, catalog: AchievementCatalog) -> set[str]:
    """Ids of every evaluable achievement whose rule the record satisfies."""
    return {
        definition.id
        for definition in catalog
        if definition.evaluable and definition.rule is not None and evaluate(definition.rule, record)
    }


def newly_unlocked(record: UserProgressRecord, catalog: AchievementCatalog) -> list[AchievementDefinition]:
    """Satisfied achievements the record does not hold yet, in catalog order."""
    satisfied = evaluate_unlocked(record, catalog)
    held = set(record.achievement_ids)
    return [d for d in catalog if d.id in satisfied and d.id not in held]


# =============================================================================
# PROGRESS PREDICTION
# =============================================================================

def _progress_value(spec: FieldSpec, record: UserProgressRecord) -> float:
    value = spec.accessor(record)
    return value if _is_number(value) else spec.prediction_default


def predict_progress(
    record: UserProgressRecord,
    catalog: AchievementCatalog,
    limit: int | None = None,
) -> list[Prediction]:
    """
    Progress toward locked achievements with a trackable ``>=``/``>`` rule.

    Sorted by progress (highest first), then by target (lowest first).
    ``stats.bestRank`` uses the same current/target ratio as every other field
    even though a lower rank is better.
    """
    if limit is None:
        limit = settings.prediction_limit
    if limit < 0:
        raise ValueError("limit cannot be negative")

    held = set(record.achievement_ids)
    predictions: list[Prediction] = []

    for definition in catalog:
        rule = definition.rule
        if definition.id in held or not definition.evaluable or rule is None:
            continue
        if rule.operator not in PROGRESS_OPERATORS or not _is_number(rule.value):
            continue
        spec = FIELD_RESOLVERS.get(rule.field)
        if spec is None or not spec.trackable:
            continue

        target = rule.value
        current = _progress_value(spec, record)
        progress = min(100.0, current / target * 100) if target > 0 else 100.0

        predictions.append(Prediction(
            achievement=definition,
            current_value=current,
            target_value=target,
            progress=progress,
            remaining=max(0, target - current),
            is_close=progress >= CLOSE_THRESHOLD,
        ))

    predictions.sort(key=lambda p: (-p.progress, p.target_value))
    return predictions[:limit]
