"""Drive one stored submission from ``pending`` to a terminal status."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from codejudge.models.submission import Submission, SubmissionStatus
from codejudge.services.leaderboard import LeaderboardService
from codejudge.services.problems import get_problem_test_cases
from codejudge.services.submission_state import InvalidTransition, SubmissionStateMachine
from codejudge.services.verdicts import Verdict, VerdictAggregator

_LOGGER = logging.getLogger(__name__)


class JudgingPipeline:
    def __init__(
        self,
        session_factory: sessionmaker,
        aggregator: VerdictAggregator,
        leaderboard: LeaderboardService,
        *,
        state_machine: Optional[SubmissionStateMachine] = None,
    ) -> None:
        self._session_factory = session_factory
        self._aggregator = aggregator
        self._leaderboard = leaderboard
        self._state = state_machine or SubmissionStateMachine()

    async def run(self, submission_id: str) -> Optional[SubmissionStatus]:
        """Judge a pending submission and return its terminal status.

        Returns None when the submission was not pending, or when the terminal
        state could not be persisted (the row is then left in ``processing``
        and shows up in stuck-submission reports).
        """

        async with self._session_factory() as db:
            try:
                await self._state.start_processing(db, submission_id)
            except InvalidTransition as exc:
                _LOGGER.warning("Skipping submission %s: %s", submission_id, exc)
                return None

            try:
                verdict = await self._judge(db, submission_id)
            except Exception:
                _LOGGER.exception("Judging submission %s failed", submission_id)
                verdict = Verdict(status=SubmissionStatus.RUNTIME_ERROR)

        try:
            async with self._session_factory() as db:
                await self._state.finalize(db, submission_id, verdict)
        except Exception:
            _LOGGER.exception(
                "Could not persist verdict %s for submission %s; it stays in processing",
                verdict.status.value,
                submission_id,
            )
            return None

        if verdict.accepted:
            try:
                await self._leaderboard.record_accepted(submission_id)
            except Exception:
                # The stored verdict stands; reconcile() repairs the standings later.
                _LOGGER.exception("Leaderboard update failed for submission %s", submission_id)

        return verdict.status

    async def _judge(self, db, submission_id: str) -> Verdict:
        row = (
            await db.execute(
                select(Submission.code, Submission.language, Submission.problem_id).where(
                    Submission.id == submission_id
                )
            )
        ).one()
        test_cases = await get_problem_test_cases(db, row.problem_id)
        # Release the connection before the long judge round-trips.
        await db.close()
        return await self._aggregator.judge(
            source_code=row.code,
            language=row.language,
            test_cases=test_cases,
        )


class SubmissionDispatcher:
    """Run each submission's pipeline as an independent background task."""

    def __init__(self, pipeline: JudgingPipeline) -> None:
        self.pipeline = pipeline
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(self, submission_id: str) -> asyncio.Task:
        task = asyncio.create_task(self.pipeline.run(submission_id), name=f"judge-{submission_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self, *, grace_seconds: float = 10.0) -> None:
        if not self._tasks:
            return
        pending = list(self._tasks)
        _LOGGER.info("Waiting for %s in-flight submissions", len(pending))
        _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            _LOGGER.warning("Cancelled %s submissions still judging at shutdown", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)


_dispatcher: Optional[SubmissionDispatcher] = None


def get_dispatcher() -> SubmissionDispatcher:
    global _dispatcher
    if _dispatcher is None:
        from codejudge import database
        from codejudge.services.judge_client import get_judge_client
        from codejudge.services.leaderboard import get_leaderboard_service

        pipeline = JudgingPipeline(
            database.get_session_factory(),
            VerdictAggregator(get_judge_client()),
            get_leaderboard_service(),
        )
        _dispatcher = SubmissionDispatcher(pipeline)
    return _dispatcher


async def shutdown_dispatcher() -> None:
    global _dispatcher
    if _dispatcher is not None:
        await _dispatcher.shutdown()
        _dispatcher = None
