"""Leaderboard consistency engine.

All writes to ``leaderboard`` and ``solved_problems`` go through
:class:`LeaderboardService`. Each update runs in one transaction that

1. claims the (user, problem) first-solve slot with a conditional insert,
2. upserts the user's entry (insert at 1, else increment by exactly 1),
3. recomputes every rank from ``(total_solved DESC, last_submission_at ASC)``.

Writers are serialised by an in-process lock and, on Postgres, by a
transaction-scoped advisory lock, so readers only ever observe ranks 1..N.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from codejudge.models.leaderboard import LeaderboardEntry, SolvedProblem
from codejudge.models.submission import Submission, SubmissionStatus, utcnow

_LOGGER = logging.getLogger(__name__)

# Arbitrary constant shared by every process writing the leaderboard.
_PG_ADVISORY_LOCK_KEY = 7_310_221


class LeaderboardError(Exception):
    """Raised when a leaderboard update cannot be applied."""


@dataclass(slots=True)
class ReconcileReport:
    backfilled_solves: int = 0
    entries_updated: int = 0
    ranks_changed: int = 0


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise LeaderboardError(f"Unsupported database dialect '{dialect}'")


def rank_order():
    """Total order behind the rank column; user id settles exact timestamp ties."""
    return (
        LeaderboardEntry.total_solved.desc(),
        LeaderboardEntry.last_submission_at.asc(),
        LeaderboardEntry.user_id.asc(),
    )


class LeaderboardService:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def record_accepted(self, submission_id: str) -> bool:
        """Count an accepted submission if it is the user's first solve of the problem.

        Returns True when totals changed, False for a repeat solve.
        """

        async with self._lock:
            async with self._session_factory() as db:
                try:
                    await self._serialize_writers(db)
                    counted = await self._apply_first_solve(db, submission_id)
                    if counted:
                        await self._recompute_ranks(db)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
        return counted

    async def recompute_ranks(self) -> int:
        async with self._lock:
            async with self._session_factory() as db:
                try:
                    await self._serialize_writers(db)
                    changed = await self._recompute_ranks(db)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
        return changed

    async def reconcile(self) -> ReconcileReport:
        """Rebuild solves and totals from stored accepted submissions, then re-rank.

        Safe to run repeatedly; repairs updates that failed after a verdict was
        already recorded.
        """

        report = ReconcileReport()
        async with self._lock:
            async with self._session_factory() as db:
                try:
                    await self._serialize_writers(db)
                    report.backfilled_solves = await self._backfill_solves(db)
                    report.entries_updated = await self._sync_totals(db)
                    report.ranks_changed = await self._recompute_ranks(db)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise

        _LOGGER.info(
            "Leaderboard reconciled: %s solves backfilled, %s entries updated, %s ranks changed",
            report.backfilled_solves,
            report.entries_updated,
            report.ranks_changed,
        )
        return report

    # ------------------------------------------------------------------
    # Transaction steps
    # ------------------------------------------------------------------
    async def _serialize_writers(self, db: AsyncSession) -> None:
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": _PG_ADVISORY_LOCK_KEY})

    async def _apply_first_solve(self, db: AsyncSession, submission_id: str) -> bool:
        row = (
            await db.execute(
                select(Submission.user_id, Submission.problem_id, Submission.status).where(
                    Submission.id == submission_id
                )
            )
        ).one_or_none()
        if row is None:
            raise LeaderboardError(f"Submission {submission_id} not found")
        if row.status != SubmissionStatus.ACCEPTED.value:
            raise LeaderboardError(f"Submission {submission_id} is {row.status}, not accepted")

        insert = _insert_for(db)
        now = self._clock()

        claimed = await db.execute(
            insert(SolvedProblem)
            .values(
                user_id=row.user_id,
                problem_id=row.problem_id,
                submission_id=submission_id,
                solved_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "problem_id"])
        )
        if claimed.rowcount != 1:
            _LOGGER.info(
                "Submission %s repeats an earlier solve of problem %s by user %s",
                submission_id,
                row.problem_id,
                row.user_id,
            )
            return False

        table = LeaderboardEntry.__table__
        await db.execute(
            insert(LeaderboardEntry)
            .values(user_id=row.user_id, total_solved=1, rank=0, last_submission_at=now)
            .on_conflict_do_update(
                index_elements=["user_id"],
                set_={"total_solved": table.c.total_solved + 1, "last_submission_at": now},
            )
        )
        _LOGGER.info("First solve of problem %s by user %s recorded", row.problem_id, row.user_id)
        return True

    async def _recompute_ranks(self, db: AsyncSession) -> int:
        rows = (
            await db.execute(select(LeaderboardEntry.user_id, LeaderboardEntry.rank).order_by(*rank_order()))
        ).all()
        changes = [
            {"user_id": r.user_id, "rank": position}
            for position, r in enumerate(rows, start=1)
            if r.rank != position
        ]
        if changes:
            await db.execute(update(LeaderboardEntry), changes)
        _LOGGER.debug("Ranks recomputed for %s entries (%s changed)", len(rows), len(changes))
        return len(changes)

    async def _backfill_solves(self, db: AsyncSession) -> int:
        claimed = {
            (r.user_id, r.problem_id)
            for r in (await db.execute(select(SolvedProblem.user_id, SolvedProblem.problem_id))).all()
        }
        accepted = (
            await db.execute(
                select(
                    Submission.id,
                    Submission.user_id,
                    Submission.problem_id,
                    Submission.created_at,
                    Submission.judged_at,
                )
                .where(Submission.status == SubmissionStatus.ACCEPTED.value)
                .order_by(Submission.created_at.asc())
            )
        ).all()

        added = 0
        for sub in accepted:
            key = (sub.user_id, sub.problem_id)
            if key in claimed:
                continue
            claimed.add(key)
            db.add(
                SolvedProblem(
                    user_id=sub.user_id,
                    problem_id=sub.problem_id,
                    submission_id=sub.id,
                    solved_at=sub.judged_at or sub.created_at,
                )
            )
            added += 1
        if added:
            await db.flush()
        return added

    async def _sync_totals(self, db: AsyncSession) -> int:
        ledger = (
            await db.execute(
                select(
                    SolvedProblem.user_id,
                    func.count().label("solved"),
                    func.max(SolvedProblem.solved_at).label("last_solved_at"),
                ).group_by(SolvedProblem.user_id)
            )
        ).all()
        entries = {
            e.user_id: e
            for e in (await db.execute(select(LeaderboardEntry))).scalars().all()
        }

        updated = 0
        for row in ledger:
            entry = entries.get(row.user_id)
            if entry is None:
                db.add(
                    LeaderboardEntry(
                        user_id=row.user_id,
                        total_solved=row.solved,
                        rank=0,
                        last_submission_at=row.last_solved_at,
                    )
                )
                updated += 1
            elif row.solved > entry.total_solved:
                # total_solved never decreases, even if ledger rows were deleted.
                entry.total_solved = row.solved
                entry.last_submission_at = row.last_solved_at
                updated += 1
        if updated:
            await db.flush()
        return updated


_service: LeaderboardService | None = None


def get_leaderboard_service() -> LeaderboardService:
    global _service
    if _service is None:
        from codejudge import database

        _service = LeaderboardService(database.get_session_factory())
    return _service
