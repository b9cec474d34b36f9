"""Viewer service - read-side facade the rendering layer calls."""

from chatxp.core.errors import ConfigError
from chatxp.models.gamification import (
    AchievementCatalog,
    AchievementHolder,
    GlobalStats,
    LeaderboardEntry,
    LeaderboardPage,
    Snapshot,
    UserProfile,
    UserProgressRecord,
)
from chatxp.services import levels, profile, ranking, rules, stats
from chatxp.services.ranking import SortDirection, SortKey, TimeWindow
from chatxp.services.snapshot import SnapshotCache


class ViewerService:
    """Serves leaderboards, profiles, and community stats from a cached snapshot."""

    def __init__(self, cache: SnapshotCache, catalog: AchievementCatalog | None = None):
        self.cache = cache
        self.catalog = catalog

    async def _snapshot(self, force_refresh: bool = False) -> Snapshot:
        return await self.cache.get_snapshot(force_refresh=force_refresh)

    def _catalog_for(self, snapshot: Snapshot) -> AchievementCatalog:
        """The snapshot's catalog wins over the one injected at construction."""
        catalog = snapshot.catalog if snapshot.catalog is not None else self.catalog
        if catalog is None:
            raise ConfigError("No achievement catalog loaded")
        return catalog

    async def get_leaderboard(
        self,
        sort_key: SortKey | str | None = None,
        direction: SortDirection | str = SortDirection.DESC,
        window: TimeWindow | str = TimeWindow.ALL,
        force_refresh: bool = False,
    ) -> list[LeaderboardEntry]:
        """Canonical leaderboard when no sort column is given, otherwise a column sort."""
        snapshot = await self._snapshot(force_refresh)
        records = snapshot.users.values()
        if sort_key is None:
            return ranking.canonical_leaderboard(records)
        return ranking.rank(records, sort_key, direction, window)

    async def get_page(
        self,
        page: int = 0,
        page_size: int | None = None,
        sort_key: SortKey | str | None = None,
        direction: SortDirection | str = SortDirection.DESC,
        window: TimeWindow | str = TimeWindow.ALL,
    ) -> LeaderboardPage:
        entries = await self.get_leaderboard(sort_key, direction, window)
        return ranking.paginate(entries, page, page_size)

    async def get_user(self, username: str) -> UserProgressRecord | None:
        snapshot = await self._snapshot()
        return stats.find_user(snapshot.users, username)

    async def get_profile(self, username: str) -> UserProfile | None:
        snapshot = await self._snapshot()
        record = stats.find_user(snapshot.users, username)
        if record is None:
            return None

        catalog = self._catalog_for(snapshot)
        distribution = profile.category_distribution(record, catalog)
        leaderboard = ranking.canonical_leaderboard(snapshot.users.values())

        return UserProfile(
            record=record,
            rank=ranking.find_rank(leaderboard, record.username),
            rank_title=levels.get_level_title(record.level),
            level_progress=levels.level_progress(record.xp, record.level),
            unlocked=sorted(rules.evaluate_unlocked(record, catalog)),
            predictions=rules.predict_progress(record, catalog),
            distribution=distribution,
            archetype=profile.classify(distribution),
        )

    async def get_global_stats(self) -> GlobalStats:
        snapshot = await self._snapshot()
        return stats.global_stats(snapshot.users, self._catalog_for(snapshot))

    async def get_achievement_holders(self, achievement_id: str) -> list[AchievementHolder]:
        snapshot = await self._snapshot()
        return stats.achievement_holders(snapshot.users, achievement_id)

    async def search_users(self, query: str, limit: int = 10) -> list[UserProgressRecord]:
        snapshot = await self._snapshot()
        return stats.search_users(snapshot.users, query, limit)
