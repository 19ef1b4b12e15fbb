"""College coding-judge backend: submission judging and leaderboard."""

from .database import Base, get_db, get_session_factory  # noqa: F401

__all__ = ["Base", "get_db", "get_session_factory"]
