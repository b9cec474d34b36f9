from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Snapshot cache
    cache_ttl_ms: int = 60_000  # 1 minute

    # Leaderboard / profile
    leaderboard_page_size: int = 20
    prediction_limit: int = 6
    # Game tie-in categories measure engagement with one title, not play style
    excluded_profile_categories: list[str] = ["cyberpunk2077", "witcher3"]

    # Catalog loading - strict rejects the whole catalog on any malformed entry
    catalog_strict: bool = True

    # Bots and system accounts never shown on the leaderboard
    ignored_users: list[str] = [
        "liiukiin",
        "wizebot",
        "tester",
        "system",
        "tangiabot",
        "streamelements",
        "streamroutine_bot",
    ] + [f"user{i}" for i in range(1, 11)]
    ignored_user_substrings: list[str] = ["justinfan"]

    # Remote store (GitHub Gist)
    gist_api_base: str = "https://api.github.com"
    gist_id: str = ""
    gist_token: str = ""
    gist_xp_filename: str = "xp_data.json"
    gist_achievements_filename: str = "achievements.json"
    http_timeout_seconds: float = 10.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "CHATXP_",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject values that would make the cache or pagination meaningless."""
        if self.cache_ttl_ms <= 0:
            raise ValueError("CHATXP_CACHE_TTL_MS must be a positive number of milliseconds")
        if self.leaderboard_page_size <= 0:
            raise ValueError("CHATXP_LEADERBOARD_PAGE_SIZE must be positive")
        if self.prediction_limit < 0:
            raise ValueError("CHATXP_PREDICTION_LIMIT cannot be negative")
        self.excluded_profile_categories = [c.lower() for c in self.excluded_profile_categories]
        self.ignored_users = [u.lower() for u in self.ignored_users]
        self.ignored_user_substrings = [s.lower() for s in self.ignored_user_substrings]
        return self

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_ms / 1000


settings = Settings()
