from chatxp.models.gamification import (
    AchievementCatalog,
    AchievementDefinition,
    AchievementRarity,
    AchievementRule,
    FieldRef,
    LeaderboardEntry,
    Namespace,
    Operator,
    PlayerArchetype,
    Snapshot,
    UserProgressRecord,
)

__all__ = [
    "AchievementCatalog",
    "AchievementDefinition",
    "AchievementRarity",
    "AchievementRule",
    "FieldRef",
    "LeaderboardEntry",
    "Namespace",
    "Operator",
    "PlayerArchetype",
    "Snapshot",
    "UserProgressRecord",
]
