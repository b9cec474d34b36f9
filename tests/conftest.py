"""Shared test fixtures for chatxp tests.

Provides:
- Settings isolated from the developer's environment
- A controllable clock for the snapshot cache
- Common test data factories (user records, achievement catalogs, raw payloads)
"""
import pytest

from chatxp.core.config import Settings
from chatxp.models.gamification import UserProgressRecord
from chatxp.services.rules import load_catalog


@pytest.fixture(autouse=True)
def override_settings(monkeypatch):
    """Keep tests independent of CHATXP_* variables set on the machine."""
    monkeypatch.setenv("CHATXP_GIST_ID", "test-gist-id")
    monkeypatch.setenv("CHATXP_GIST_TOKEN", "test-gist-token")
    monkeypatch.setenv("CHATXP_CATALOG_STRICT", "true")


@pytest.fixture
def test_settings():
    """Fresh Settings built from the overridden environment."""
    return Settings(_env_file=None)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# --- Test data factories ---

def make_record(**overrides) -> UserProgressRecord:
    """Create a UserProgressRecord with sensible defaults."""
    defaults = {
        "username": "viewer1",
        "xp": 150,
        "level": 2,
        "total_messages": 40,
        "streak_days": 3,
        "best_streak": 5,
        "watch_time_minutes": 120,
    }
    defaults.update(overrides)
    return UserProgressRecord(**defaults)


RAW_CATALOG = {
    "_metadata": {"version": "1.1"},
    "first_words": {
        "name": "First Words",
        "description": "Tus primeros mensajes en el chat",
        "category": "messages",
        "rarity": "common",
        "rule": {"field": "userData.totalMessages", "operator": ">=", "value": 10},
    },
    "chatterbox": {
        "name": "Chatterbox",
        "category": "messages",
        "rarity": "common",
        "rule": {"field": "userData.totalMessages", "operator": ">=", "value": 50},
    },
    "conversador": {
        "name": "Conversador",
        "category": "messages",
        "rarity": "uncommon",
        "rule": {"field": "userData.totalMessages", "operator": ">=", "value": 250},
    },
    "streak_starter": {
        "name": "Streak Starter",
        "category": "streaks",
        "rarity": "common",
        "rule": {"field": "userData.streakDays", "operator": ">=", "value": 2},
    },
    "devoted": {
        "name": "Devoted",
        "category": "streaks",
        "rarity": "rare",
        "rule": {"field": "userData.streakDays", "operator": ">=", "value": 30},
    },
    "level_10": {
        "name": "Level 10",
        "category": "levels",
        "rarity": "uncommon",
        "rule": {"field": "userData.level", "operator": ">=", "value": 10},
    },
    "top_10": {
        "name": "Top 10",
        "category": "ranking",
        "rarity": "epic",
        "rule": {"field": "stats.bestRank", "operator": "<=", "value": 10},
    },
    "christmas": {
        "name": "Christmas",
        "category": "holidays",
        "rarity": "rare",
        "rule": {"field": "stats.holidays", "operator": "includes", "value": "christmas"},
    },
    "phoenix": {
        "name": "Phoenix",
        "category": "special",
        "rarity": "legendary",
        "rule": {"field": "stats.phoenixAchieved", "operator": "==", "value": True},
    },
    "choom": {
        "name": "Choom",
        "category": "cyberpunk2077",
        "rarity": "common",
        "gameCategory": "Cyberpunk 2077",
        "rule": {"field": "stats.cyberpunk2077Messages", "operator": ">=", "value": 1},
    },
}


def make_catalog(raw: dict | None = None, strict: bool = True):
    """Load RAW_CATALOG (or ``raw``) through the real catalog loader."""
    return load_catalog(raw if raw is not None else RAW_CATALOG, strict=strict)


@pytest.fixture
def catalog():
    return make_catalog()


def make_payload(users: dict | None = None, achievements: dict | None = None) -> dict:
    """Raw snapshot payload as stored in the remote gist."""
    payload = {
        "users": users if users is not None else {
            "alice": {"xp": 500, "level": 3, "totalMessages": 120, "achievements": ["first_words"]},
            "bob": {"xp": 80, "level": 1, "totalMessages": 12},
        },
    }
    if achievements is not None:
        payload["achievements"] = achievements
    return payload
