# codejudge/models/leaderboard.py
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from codejudge.database import Base


class LeaderboardEntry(Base):
    """One row per user. ``rank`` is derived and only written by LeaderboardService."""

    __tablename__ = "leaderboard"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    total_solved = Column(Integer, nullable=False, default=0)
    rank = Column(Integer, nullable=False, default=0)
    last_submission_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_leaderboard_rank", "rank"),
        Index("ix_leaderboard_order", "total_solved", "last_submission_at"),
    )

    def __repr__(self) -> str:
        return f"<LeaderboardEntry user={self.user_id} solved={self.total_solved} rank={self.rank}>"


class SolvedProblem(Base):
    """First-solve ledger: the primary key makes "first accepted" a single conditional insert."""

    __tablename__ = "solved_problems"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    problem_id = Column(Integer, ForeignKey("problems.id", ondelete="CASCADE"), primary_key=True)
    submission_id = Column(String(36), ForeignKey("submissions.id", ondelete="SET NULL"), nullable=True)
    solved_at = Column(DateTime(timezone=True), nullable=False)
