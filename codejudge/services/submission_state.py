from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from codejudge.models.submission import (
    ALLOWED_TRANSITIONS,
    Submission,
    SubmissionStatus,
    utcnow,
)
from codejudge.services.verdicts import Verdict

_LOGGER = logging.getLogger(__name__)


class InvalidTransition(Exception):
    """Raised for a status change the submission lifecycle does not allow."""


def can_transition(current: SubmissionStatus | str, target: SubmissionStatus | str) -> bool:
    return SubmissionStatus(target) in ALLOWED_TRANSITIONS.get(SubmissionStatus(current), frozenset())


def check_transition(current: SubmissionStatus | str, target: SubmissionStatus | str) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move submission from {SubmissionStatus(current).value} to {SubmissionStatus(target).value}"
        )


class SubmissionStateMachine:
    """Persist lifecycle transitions of stored submissions.

    Every transition is a single conditional UPDATE guarded by the expected
    source status, so a status can only ever move forward and a terminal row
    is never rewritten.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    async def start_processing(self, db: AsyncSession, submission_id: str) -> None:
        await self._transition(
            db,
            submission_id,
            source=SubmissionStatus.PENDING,
            target=SubmissionStatus.PROCESSING,
            values={"processing_started_at": self._clock()},
        )

    async def finalize(self, db: AsyncSession, submission_id: str, verdict: Verdict) -> None:
        """Write the terminal status and its metrics in one statement."""

        await self._transition(
            db,
            submission_id,
            source=SubmissionStatus.PROCESSING,
            target=verdict.status,
            values={
                "runtime": verdict.runtime_ms,
                "memory": verdict.memory_kb,
                "judged_at": self._clock(),
            },
        )
        _LOGGER.info(
            "Submission %s judged %s (runtime=%sms memory=%sKB failed_case=%s)",
            submission_id,
            SubmissionStatus(verdict.status).value,
            verdict.runtime_ms,
            verdict.memory_kb,
            verdict.failed_test_index,
        )

    async def find_stuck(
        self,
        db: AsyncSession,
        *,
        older_than: timedelta,
        now: Optional[datetime] = None,
    ) -> list[Submission]:
        """Submissions left in ``processing`` since before ``now - older_than``."""

        cutoff = (now or self._clock()) - older_than
        rows = await db.execute(
            select(Submission)
            .where(
                Submission.status == SubmissionStatus.PROCESSING.value,
                Submission.processing_started_at <= cutoff,
            )
            .order_by(Submission.processing_started_at.asc())
        )
        return list(rows.scalars().all())

    async def _transition(
        self,
        db: AsyncSession,
        submission_id: str,
        *,
        source: SubmissionStatus,
        target: SubmissionStatus,
        values: dict,
    ) -> None:
        check_transition(source, target)

        result = await db.execute(
            update(Submission)
            .where(Submission.id == submission_id, Submission.status == source.value)
            .values(status=SubmissionStatus(target).value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            current = (
                await db.execute(select(Submission.status).where(Submission.id == submission_id))
            ).scalar_one_or_none()
            raise InvalidTransition(
                f"Submission {submission_id} is {current or 'missing'}, expected {source.value}"
            )
        await db.commit()


async def find_stuck_submissions(db: AsyncSession, older_than: timedelta) -> list[Submission]:
    return await SubmissionStateMachine().find_stuck(db, older_than=older_than)
