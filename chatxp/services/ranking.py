"""Leaderboard ranking - column sorts, time windows, canonical order, and pagination."""

import logging
import math
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Iterable, Mapping, Sequence

from chatxp.core.config import settings
from chatxp.models.gamification import (
    ActivityDay,
    LeaderboardEntry,
    LeaderboardPage,
    UserProgressRecord,
)
from chatxp.services.levels import get_level_title

logger = logging.getLogger(__name__)


class SortKey(str, Enum):
    ACHIEVEMENTS = "achievements"
    LEVEL = "level"
    XP = "xp"
    WATCH_TIME = "watch_time"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class TimeWindow(str, Enum):
    ALL = "all"
    WEEK = "week"
    MONTH = "month"


WINDOW_DAYS = {
    TimeWindow.WEEK: 7,
    TimeWindow.MONTH: 30,
}


# =============================================================================
# WINDOWED XP
# =============================================================================

def period_xp(history: Mapping[str, ActivityDay], days: int, today: date | None = None) -> int:
    """Sum of daily XP for dates on or after ``today - days``."""
    today = today or date.today()
    cutoff = today - timedelta(days=days)

    total = 0
    for day_key, activity in history.items():
        try:
            day = date.fromisoformat(day_key)
        except ValueError:
            logger.debug(f"Skipping malformed activity date {day_key!r}")
            continue
        if day >= cutoff:
            total += activity.xp
    return total


def windowed_xp(record: UserProgressRecord, window: TimeWindow) -> int:
    if window is TimeWindow.WEEK:
        return record.weekly_xp or 0
    if window is TimeWindow.MONTH:
        return record.monthly_xp or 0
    return record.xp


# =============================================================================
# RANKING
# =============================================================================

_SORT_VALUES: dict[SortKey, Callable[[UserProgressRecord, TimeWindow], int]] = {
    SortKey.ACHIEVEMENTS: lambda record, window: record.achievement_count,
    SortKey.LEVEL: lambda record, window: record.level,
    SortKey.XP: windowed_xp,
    SortKey.WATCH_TIME: lambda record, window: record.watch_time_minutes,
}


def _unwrap(items: Iterable[UserProgressRecord | LeaderboardEntry]) -> list[UserProgressRecord]:
    return [item.record if isinstance(item, LeaderboardEntry) else item for item in items]


def _to_entry(record: UserProgressRecord, rank: int, xp: int) -> LeaderboardEntry:
    return LeaderboardEntry(
        rank=rank,
        username=record.username,
        achievement_count=record.achievement_count,
        level=record.level,
        xp=xp,
        watch_time_minutes=record.watch_time_minutes,
        best_streak=record.best_streak,
        streak_days=record.streak_days,
        total_messages=record.total_messages,
        rank_title=get_level_title(record.level),
        record=record,
    )


def rank(
    records: Iterable[UserProgressRecord | LeaderboardEntry],
    sort_key: SortKey | str = SortKey.XP,
    direction: SortDirection | str = SortDirection.DESC,
    window: TimeWindow | str = TimeWindow.ALL,
) -> list[LeaderboardEntry]:
    """
    Sort users by a single column.

    When sorting by XP with a week/month window, the windowed total replaces XP
    for both sorting and display. Equal keys keep their input order.
    """
    sort_key = SortKey(sort_key)
    direction = SortDirection(direction)
    window = TimeWindow(window) if sort_key is SortKey.XP else TimeWindow.ALL

    value_of = _SORT_VALUES[sort_key]
    ordered = sorted(
        _unwrap(records),
        key=lambda record: value_of(record, window),
        reverse=direction is SortDirection.DESC,
    )
    return [
        _to_entry(record, i, windowed_xp(record, window))
        for i, record in enumerate(ordered, 1)
    ]


def canonical_leaderboard(records: Iterable[UserProgressRecord | LeaderboardEntry]) -> list[LeaderboardEntry]:
    """Podium/global order: achievements, then level, then XP, all descending."""
    ordered = sorted(
        _unwrap(records),
        key=lambda r: (-r.achievement_count, -r.level, -r.xp),
    )
    return [_to_entry(record, i, record.xp) for i, record in enumerate(ordered, 1)]


def paginate(
    entries: Sequence[LeaderboardEntry],
    page: int = 0,
    page_size: int | None = None,
) -> LeaderboardPage:
    """Slice a ranked list. ``page`` is 0-based; ranks stay global."""
    if page_size is None:
        page_size = settings.leaderboard_page_size
    if page < 0:
        raise ValueError("page cannot be negative")
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    start = page * page_size
    page_entries = [
        entry.model_copy(update={"rank": start + i})
        for i, entry in enumerate(entries[start:start + page_size], 1)
    ]
    return LeaderboardPage(
        entries=page_entries,
        rank_offset=start,
        page=page,
        page_size=page_size,
        total=len(entries),
        total_pages=max(1, math.ceil(len(entries) / page_size)),
    )


def find_rank(entries: Iterable[LeaderboardEntry], username: str) -> int | None:
    """Rank of ``username`` (case-insensitive) in an already ranked list."""
    wanted = username.lower()
    for entry in entries:
        if entry.username.lower() == wanted:
            return entry.rank
    return None
