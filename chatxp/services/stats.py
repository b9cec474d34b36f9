"""Community-wide statistics and user lookups over a snapshot."""

from typing import Mapping

from chatxp.models.gamification import (
    RARITY_ORDER,
    AchievementCatalog,
    AchievementDefinition,
    AchievementHolder,
    AchievementRarity,
    GlobalStats,
    RarestAchievement,
    UserProgressRecord,
)


def is_active(record: UserProgressRecord) -> bool:
    return record.xp > 0 or record.level > 1


def global_stats(users: Mapping[str, UserProgressRecord], catalog: AchievementCatalog) -> GlobalStats:
    """Totals, rarest unlocked achievement, and unlocks per rarity."""
    total_xp = 0
    total_unlocks = 0
    active_users = 0
    unlock_counts: dict[str, int] = {}
    holders: dict[str, list[str]] = {}

    for username, record in users.items():
        if is_active(record):
            active_users += 1
        total_xp += record.xp
        total_unlocks += record.achievement_count
        for achievement in record.achievements:
            unlock_counts[achievement.id] = unlock_counts.get(achievement.id, 0) + 1
            holders.setdefault(achievement.id, []).append(username)

    # Only achievements with at least one unlock qualify, so unreleased ones never show as rarest
    rarest = None
    for achievement_id, count in unlock_counts.items():
        definition = catalog.get(achievement_id)
        if definition is None:
            continue
        if rarest is None or count < rarest.count:
            rarest = RarestAchievement(
                achievement=definition,
                count=count,
                percentage=count / active_users * 100 if active_users else 0.0,
                holders=holders[achievement_id],
            )

    rarity_distribution = {rarity: 0 for rarity in AchievementRarity}
    for achievement_id, count in unlock_counts.items():
        definition = catalog.get(achievement_id)
        if definition is not None:
            rarity_distribution[definition.rarity] += count

    return GlobalStats(
        total_xp=total_xp,
        total_unlocks=total_unlocks,
        active_users=active_users,
        rarest_achievement=rarest,
        rarity_distribution=rarity_distribution,
    )


def achievement_holders(users: Mapping[str, UserProgressRecord], achievement_id: str) -> list[AchievementHolder]:
    """Users holding an achievement, highest level first, then highest XP."""
    result = []
    for username, record in users.items():
        unlocked = next((a for a in record.achievements if a.id == achievement_id), None)
        if unlocked is not None:
            result.append(AchievementHolder(
                username=username,
                level=record.level,
                xp=record.xp,
                unlocked_at=unlocked.unlocked_at,
            ))
    result.sort(key=lambda h: (-h.level, -h.xp))
    return result


def find_user(users: Mapping[str, UserProgressRecord], username: str) -> UserProgressRecord | None:
    """Case-insensitive lookup by username."""
    wanted = username.lower()
    for name, record in users.items():
        if name.lower() == wanted:
            return record
    return None


def search_users(
    users: Mapping[str, UserProgressRecord],
    query: str,
    limit: int = 10,
) -> list[UserProgressRecord]:
    """Users whose name contains ``query`` (case-insensitive), in snapshot order."""
    if not query:
        return []
    needle = query.lower()
    matches = [record for name, record in users.items() if needle in name.lower()]
    return matches[:limit]


def achievements_by_category(catalog: AchievementCatalog) -> dict[str, list[AchievementDefinition]]:
    """Catalog grouped by category; each group sorted by rarity, then name."""
    grouped: dict[str, list[AchievementDefinition]] = {}
    for definition in catalog:
        grouped.setdefault(definition.category, []).append(definition)
    for definitions in grouped.values():
        definitions.sort(key=lambda d: (RARITY_ORDER[d.rarity], d.name))
    return grouped
