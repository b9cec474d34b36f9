"""Gamification progression and ranking engine for chat communities."""

__version__ = "1.0.0"
