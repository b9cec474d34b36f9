"""Error taxonomy for the progression engine."""


class ChatXPError(Exception):
    """Base class for all engine errors."""


class ConfigError(ChatXPError):
    """Malformed achievement catalog entry (unknown operator, unresolvable field, missing rule)."""

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or []


class DataError(ChatXPError):
    """A user record that cannot be normalized even after defaulting missing fields."""

    def __init__(self, message: str, username: str | None = None):
        super().__init__(message)
        self.username = username


class NetworkError(ChatXPError):
    """Snapshot fetch failed and there is no cached snapshot to fall back on."""
