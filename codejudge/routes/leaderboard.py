# codejudge/routes/leaderboard.py
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import case, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from codejudge.auth_token import get_current_user
from codejudge.database import get_db
from codejudge.models.leaderboard import LeaderboardEntry
from codejudge.models.problem import Problem
from codejudge.models.submission import Submission, SubmissionStatus
from codejudge.models.user import User
from codejudge.schemas import LeaderboardPage, TimeFilter, UserRank, UserStats

router = APIRouter(prefix="/leaderboard", tags=["Leaderboard"])

_WINDOWS = {"weekly": timedelta(days=7), "monthly": timedelta(days=30)}
ACTIVITY_DAYS = 30


# --------- helpers ---------
def _window_start(time_filter: str, *, now: Optional[datetime] = None) -> Optional[datetime]:
    window = _WINDOWS.get(time_filter)
    if window is None:
        return None
    return (now or datetime.now(timezone.utc)) - window


def _leaderboard_query(time_filter: str):
    name_expr = func.coalesce(User.name, User.username)
    stmt = select(
        LeaderboardEntry.user_id,
        name_expr.label("name"),
        LeaderboardEntry.total_solved,
        LeaderboardEntry.rank,
        LeaderboardEntry.last_submission_at,
    ).join(User, User.id == LeaderboardEntry.user_id)

    since = _window_start(time_filter)
    if since is not None:
        stmt = stmt.where(LeaderboardEntry.last_submission_at >= since)
    return stmt


def _row_dict(r) -> dict:
    return {
        "user_id": r.user_id,
        "name": r.name,
        "total_solved": r.total_solved,
        "rank": r.rank,
        "last_submission_at": r.last_submission_at,
    }


# --------- GET /leaderboard ---------
@router.get("", response_model=LeaderboardPage)
async def get_leaderboard(
    db: AsyncSession = Depends(get_db),
    time_filter: TimeFilter = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
):
    """
    Global standings ordered by the stored rank.
      - Ranks are global; the weekly/monthly filters only hide inactive entries.
      - Ranks are never recomputed on read.
    """
    base = _leaderboard_query(time_filter)
    rows = (
        await db.execute(
            base.order_by(LeaderboardEntry.rank.asc()).limit(limit).offset((page - 1) * limit)
        )
    ).all()
    total = (
        await db.execute(select(func.count()).select_from(base.subquery()))
    ).scalar_one()

    return {
        "leaderboard": [_row_dict(r) for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
        "time_filter": time_filter,
    }


# --------- GET /leaderboard/my-rank ---------
@router.get("/my-rank", response_model=UserRank)
async def get_my_rank(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    time_filter: TimeFilter = Query("all"),
):
    row = (
        await db.execute(_leaderboard_query(time_filter).where(LeaderboardEntry.user_id == user.id))
    ).one_or_none()
    if row is None:
        return {"user_rank": None, "time_filter": time_filter, "message": "No submissions found"}
    return {"user_rank": _row_dict(row), "time_filter": time_filter}


# --------- GET /leaderboard/stats ---------
@router.get("/stats", response_model=UserStats)
async def get_stats(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    counts = {s.value: 0 for s in SubmissionStatus}
    status_rows = (
        await db.execute(
            select(Submission.status, func.count(Submission.id))
            .where(Submission.user_id == user.id)
            .group_by(Submission.status)
        )
    ).all()
    for status_value, n in status_rows:
        counts[status_value] = n
    counts["total"] = sum(n for _, n in status_rows)

    difficulty_rows = (
        await db.execute(
            select(Problem.difficulty, func.count(distinct(Problem.id)))
            .join(Submission, Submission.problem_id == Problem.id)
            .where(
                Submission.user_id == user.id,
                Submission.status == SubmissionStatus.ACCEPTED.value,
            )
            .group_by(Problem.difficulty)
        )
    ).all()

    # Bucketed in Python so the query stays dialect-neutral.
    since = datetime.now(timezone.utc) - timedelta(days=ACTIVITY_DAYS)
    recent = (
        await db.execute(
            select(
                Submission.created_at,
                case((Submission.status == SubmissionStatus.ACCEPTED.value, 1), else_=0),
            ).where(Submission.user_id == user.id, Submission.created_at >= since)
        )
    ).all()
    activity: dict[str, dict] = {}
    for created_at, accepted in recent:
        day = created_at.date().isoformat()
        bucket = activity.setdefault(
            day, {"date": day, "submissions_count": 0, "accepted_count": 0}
        )
        bucket["submissions_count"] += 1
        bucket["accepted_count"] += accepted

    entry = (
        await db.execute(
            select(LeaderboardEntry.rank, LeaderboardEntry.total_solved).where(
                LeaderboardEntry.user_id == user.id
            )
        )
    ).one_or_none()

    return {
        "submission_stats": counts,
        "difficulty_stats": [
            {"difficulty": d, "solved_count": n} for d, n in difficulty_rows
        ],
        "recent_activity": sorted(activity.values(), key=lambda a: a["date"], reverse=True),
        "current_rank": (
            {"rank": entry.rank, "total_solved": entry.total_solved}
            if entry
            else {"rank": None, "total_solved": 0}
        ),
    }
