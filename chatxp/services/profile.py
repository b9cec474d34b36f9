"""Player profile - category distribution, archetype classification, and activity heatmap."""

import statistics
from datetime import date, timedelta
from typing import Iterable, Sequence

from chatxp.core.config import settings
from chatxp.models.gamification import (
    AchievementCatalog,
    ActivityDay,
    CategoryDistributionEntry,
    HeatmapDay,
    PlayerArchetype,
    UserProgressRecord,
)


# =============================================================================
# ARCHETYPES
# =============================================================================

DEFAULT_ARCHETYPE = PlayerArchetype(name="NEWBIE", description="Aún sin perfil definido")
BALANCED_ARCHETYPE = PlayerArchetype(name="EQUILIBRADO", description="Dominas todas las categorías")
FALLBACK_ARCHETYPE = PlayerArchetype(name="NETRUNNER", description="Perfil único")

ARCHETYPES = {
    "messages": PlayerArchetype(name="COMUNICADOR", description="Maestro de la conversación"),
    "streaks": PlayerArchetype(name="DEVOTO", description="La constancia es tu fuerza"),
    "levels": PlayerArchetype(name="ESCALADOR", description="Siempre subiendo de nivel"),
    "xp": PlayerArchetype(name="GRINDER", description="Acumulador de experiencia"),
    "ranking": PlayerArchetype(name="COMPETIDOR", description="El ranking es tu objetivo"),
    "stream": PlayerArchetype(name="FIEL ESPECTADOR", description="Siempre presente en los streams"),
    "holidays": PlayerArchetype(name="CELEBRADOR", description="No te pierdes ningún evento"),
    "special": PlayerArchetype(name="CAZADOR DE RAREZAS", description="Buscas lo extraordinario"),
    "bro": PlayerArchetype(name="SOCIALITE", description="El alma de la comunidad"),
    "cyberpunk2077": PlayerArchetype(name="CHOOMBA", description="Night City corre por tus venas"),
    "witcher3": PlayerArchetype(name="BRUJO", description="El camino del Witcher"),
}

# A profile is balanced when percentages barely spread and nothing dominates
BALANCED_MAX_VARIANCE = 100
BALANCED_MAX_TOP_PERCENTAGE = 40


def category_distribution(
    record: UserProgressRecord,
    catalog: AchievementCatalog,
    excluded: Iterable[str] | None = None,
) -> list[CategoryDistributionEntry]:
    """Unlocked vs. total achievements per catalog category, in catalog order."""
    if excluded is None:
        excluded = settings.excluded_profile_categories
    excluded = {c.lower() for c in excluded}
    held = set(record.achievement_ids)

    distribution = []
    for category in catalog.categories():
        if category.lower() in excluded:
            continue
        definitions = catalog.by_category(category)
        total = len(definitions)
        if total == 0:
            continue
        count = sum(1 for d in definitions if d.id in held)
        distribution.append(CategoryDistributionEntry(
            category=category,
            count=count,
            total=total,
            percentage=count / total * 100,
        ))
    return distribution


def classify(distribution: Sequence[CategoryDistributionEntry]) -> PlayerArchetype:
    """Archetype of the dominant category, or the balanced archetype when nothing dominates."""
    if not distribution:
        return DEFAULT_ARCHETYPE

    ranked = sorted(distribution, key=lambda entry: entry.percentage, reverse=True)
    top = ranked[0]

    variance = statistics.pvariance([entry.percentage for entry in ranked])
    if variance < BALANCED_MAX_VARIANCE and top.percentage < BALANCED_MAX_TOP_PERCENTAGE:
        return BALANCED_ARCHETYPE

    return ARCHETYPES.get(top.category, FALLBACK_ARCHETYPE)


def classify_player(record: UserProgressRecord, catalog: AchievementCatalog) -> PlayerArchetype:
    return classify(category_distribution(record, catalog))


# =============================================================================
# ACTIVITY HEATMAP
# =============================================================================

HEATMAP_WEEKS = 53
# Assumed mean daily messages for users without any history
DEFAULT_DAILY_AVERAGE = 5


def activity_level(messages: int, average: float) -> int:
    """Bucket a day's message count 0-4 relative to the user's daily average."""
    level = 0
    if messages > 0:
        level = 1
    if messages > average * 0.5:
        level = 2
    if messages > average:
        level = 3
    if messages > average * 2:
        level = 4
    return level


def activity_heatmap(
    record: UserProgressRecord,
    year: int | None = None,
    today: date | None = None,
) -> list[list[HeatmapDay]]:
    """
    Calendar heatmap for one year.

    Returns 53 week columns of 7 days each, starting on the Sunday on or before
    January 1st. Days outside ``year`` are included for alignment with level 0,
    and days after ``today`` are marked as future with no activity.
    """
    today = today or date.today()
    year = year or today.year
    history = record.activity_history

    unlocks: dict[date, list[str]] = {}
    for achievement in record.achievements:
        if achievement.unlocked_at:
            unlocks.setdefault(achievement.unlocked_at.date(), []).append(achievement.id)

    daily_messages = [day.messages for day in history.values()]
    average = sum(daily_messages) / len(daily_messages) if daily_messages else DEFAULT_DAILY_AVERAGE

    jan1 = date(year, 1, 1)
    start = jan1 - timedelta(days=(jan1.weekday() + 1) % 7)

    weeks = []
    for week in range(HEATMAP_WEEKS):
        column = []
        for weekday in range(7):
            day = start + timedelta(days=week * 7 + weekday)
            in_year = day.year == year

            if day > today:
                column.append(HeatmapDay(day=day, level=0, is_future=True, in_year=in_year))
                continue

            activity = history.get(day.isoformat()) or ActivityDay()
            level = activity_level(activity.messages, average)
            column.append(HeatmapDay(
                day=day,
                level=level if in_year else 0,
                activity=activity.messages,
                xp=activity.xp,
                watch_time=activity.watch_time,
                achievements=unlocks.get(day, []),
                in_year=in_year,
            ))
        weeks.append(column)
    return weeks


def available_years(record: UserProgressRecord, today: date | None = None) -> list[int]:
    """Years with activity or unlocks, plus the current year, newest first."""
    today = today or date.today()
    years = {today.year}
    for day_key in record.activity_history:
        year, _, _ = day_key.partition("-")
        if year.isdigit():
            years.add(int(year))
    for achievement in record.achievements:
        if achievement.unlocked_at:
            years.add(achievement.unlocked_at.year)
    return sorted(years, reverse=True)
