"""Snapshot cache - TTL invalidation and single-flight fetching of the remote user store."""

import asyncio
import logging
import time
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, NamedTuple

from pydantic import ValidationError

from chatxp.core.config import Settings, settings
from chatxp.core.errors import ConfigError, DataError, NetworkError
from chatxp.models.gamification import Snapshot, UserProgressRecord
from chatxp.services.ranking import WINDOW_DAYS, TimeWindow, period_xp
from chatxp.services.rules import load_catalog

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Mapping[str, Any]]]


# =============================================================================
# NORMALIZATION
# =============================================================================

def is_ignored_user(username: str, config: Settings | None = None) -> bool:
    """Bots and system accounts: exact names or names containing an ignored substring."""
    config = config or settings
    name = username.lower()
    return name in config.ignored_users or any(s in name for s in config.ignored_user_substrings)


def parse_user_record(username: str, raw: Any, today: date | None = None) -> UserProgressRecord:
    """
    Validate one snapshot entry, defaulting missing fields.

    Windowed XP totals missing from the payload are derived from the activity history.
    """
    if not isinstance(raw, Mapping):
        raise DataError(f"record for '{username}' is not an object", username=username)

    try:
        record = UserProgressRecord.model_validate({**raw, "username": username})
    except ValidationError as e:
        raise DataError(
            f"record for '{username}' is malformed ({e.error_count()} invalid field(s))",
            username=username,
        ) from e

    updates = {}
    if record.weekly_xp is None:
        updates["weekly_xp"] = period_xp(record.activity_history, WINDOW_DAYS[TimeWindow.WEEK], today)
    if record.monthly_xp is None:
        updates["monthly_xp"] = period_xp(record.activity_history, WINDOW_DAYS[TimeWindow.MONTH], today)
    return record.model_copy(update=updates) if updates else record


def normalize_snapshot(
    payload: Mapping[str, Any],
    config: Settings | None = None,
    today: date | None = None,
) -> Snapshot:
    """Turn a raw ``{"users": ..., "achievements": ...}`` payload into a Snapshot."""
    config = config or settings
    if not isinstance(payload, Mapping):
        raise DataError("snapshot payload must be an object")

    raw_users = payload.get("users") or {}
    if not isinstance(raw_users, Mapping):
        raise DataError("snapshot 'users' must be an object keyed by username")

    users: dict[str, UserProgressRecord] = {}
    ignored = 0
    for username, raw in raw_users.items():
        if is_ignored_user(username, config):
            ignored += 1
            continue
        try:
            users[username] = parse_user_record(username, raw, today)
        except DataError as e:
            logger.warning(f"Skipping user record: {e}")

    catalog = None
    if payload.get("achievements") is not None:
        catalog = load_catalog(payload["achievements"], strict=config.catalog_strict)

    logger.debug(f"Normalized snapshot: {len(users)} users ({ignored} ignored)")
    return Snapshot(users=users, catalog=catalog, fetched_at=datetime.now(timezone.utc))


# =============================================================================
# SNAPSHOT CACHE
# =============================================================================

class CacheState(str, Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"
    FETCHING = "fetching"


class _CacheEntry(NamedTuple):
    snapshot: Snapshot
    fetched_at: float


class SnapshotCache:
    """
    Caches the remote snapshot with a TTL.

    Concurrent callers share a single in-flight fetch. A failed refresh serves
    the previous snapshot when there is one, otherwise raises NetworkError.
    The cached entry is replaced in one assignment, so readers never see a
    partially updated snapshot.
    """

    def __init__(
        self,
        fetch: FetchFn,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        normalize: Callable[[Mapping[str, Any]], Snapshot] = normalize_snapshot,
    ):
        self._fetch = fetch
        self._ttl = settings.cache_ttl_seconds if ttl is None else ttl
        self._clock = clock
        self._normalize = normalize
        self._entry: _CacheEntry | None = None
        self._inflight: asyncio.Task | None = None

    @property
    def state(self) -> CacheState:
        if self._inflight is not None and not self._inflight.done():
            return CacheState.FETCHING
        if self._entry is None:
            return CacheState.EMPTY
        if self._is_fresh(self._entry):
            return CacheState.FRESH
        return CacheState.STALE

    @property
    def snapshot(self) -> Snapshot | None:
        """Last good snapshot without triggering a fetch."""
        return self._entry.snapshot if self._entry else None

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.fetched_at < self._ttl

    async def get_snapshot(self, force_refresh: bool = False) -> Snapshot:
        entry = self._entry
        if not force_refresh and entry is not None and self._is_fresh(entry):
            logger.debug("Using cached snapshot")
            return entry.snapshot

        if self._inflight is None:
            self._inflight = asyncio.create_task(self._refresh())
            # Retrieve the outcome even when every waiting caller was cancelled
            self._inflight.add_done_callback(lambda task: task.cancelled() or task.exception())
        return await asyncio.shield(self._inflight)

    def invalidate(self) -> None:
        """Drop the cached snapshot; the next call fetches."""
        self._entry = None

    async def _refresh(self) -> Snapshot:
        try:
            try:
                payload = await self._fetch()
                snapshot = self._normalize(payload)
            except ConfigError:
                logger.error("Snapshot contains a malformed achievement catalog")
                raise
            except Exception as e:
                previous = self._entry
                if previous is not None:
                    logger.warning(f"Snapshot refresh failed, serving stale data: {e}")
                    return previous.snapshot
                logger.error(f"Snapshot fetch failed with no cached data: {e}")
                if isinstance(e, NetworkError):
                    raise
                raise NetworkError(f"Could not fetch snapshot: {e}") from e

            self._entry = _CacheEntry(snapshot, self._clock())
            logger.info(f"Snapshot refreshed: {len(snapshot.users)} users")
            return snapshot
        finally:
            self._inflight = None
