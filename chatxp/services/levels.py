"""Level calculations - XP thresholds, progress within a level, and level titles."""

import math

from chatxp.models.gamification import LevelProgress


# =============================================================================
# CONSTANTS
# =============================================================================

BASE_XP = 100
EXPONENT = 1.5

# Past this level every additional XP step costs DIFFICULTY_MULTIPLIER times more
DIFFICULTY_THRESHOLD = 50
DIFFICULTY_MULTIPLIER = 1.3

MAX_LEVEL = 1000

LEVEL_TITLES = {
    1: "CIVILIAN",
    5: "ROOKIE",
    10: "MERCENARY",
    20: "SOLO",
    30: "NETRUNNER",
    50: "FIXER",
    75: "CORPO",
}


# =============================================================================
# LEVEL CALCULATIONS
# =============================================================================

def _xp_normal(level: int) -> float:
    return BASE_XP * math.pow(level - 1, EXPONENT)


def xp_for_level(level: int) -> int:
    """Total XP at which a given level starts."""
    if level <= 1:
        return 0

    if level <= DIFFICULTY_THRESHOLD:
        return math.floor(_xp_normal(level))

    xp_at_threshold = _xp_normal(DIFFICULTY_THRESHOLD)
    xp_difference = _xp_normal(level) - xp_at_threshold
    return math.floor(xp_at_threshold + xp_difference * DIFFICULTY_MULTIPLIER)


def level_progress(xp: int, level: int) -> LevelProgress:
    """
    Progress from the start of ``level`` toward the next one.

    The level is trusted as given; XP slightly below the level start clamps to 0.
    """
    level_start = xp_for_level(level)
    required = xp_for_level(level + 1) - level_start
    current = max(0, xp - level_start)

    percentage = current / (required if required > 0 else 1) * 100
    return LevelProgress(
        current=current,
        required=required,
        percentage=min(100.0, max(0.0, percentage)),
    )


def level_for_xp(xp: int) -> int:
    """Highest level whose threshold is <= xp."""
    level = 1
    while level < MAX_LEVEL and xp_for_level(level + 1) <= xp:
        level += 1
    return level


def is_level_consistent(xp: int, level: int) -> bool:
    """True if xp_for_level(level) <= xp < xp_for_level(level + 1)."""
    return xp_for_level(level) <= xp < xp_for_level(level + 1)


def get_level_title(level: int) -> str:
    """Title of the highest title threshold not above ``level``."""
    for threshold in sorted(LEVEL_TITLES, reverse=True):
        if level >= threshold:
            return LEVEL_TITLES[threshold]
    return LEVEL_TITLES[1]
