"""ORM models; importing this package registers every table with ``Base``."""

from .user import User
from .problem import Problem
from .submission import Submission, SubmissionStatus, Language
from .leaderboard import LeaderboardEntry, SolvedProblem

__all__ = [
    "Language",
    "LeaderboardEntry",
    "Problem",
    "SolvedProblem",
    "Submission",
    "SubmissionStatus",
    "User",
]
