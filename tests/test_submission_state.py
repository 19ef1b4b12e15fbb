from datetime import datetime, timedelta, timezone

import pytest

from codejudge.models.submission import SubmissionStatus
from codejudge.services.submission_state import (
    InvalidTransition,
    SubmissionStateMachine,
    can_transition,
    check_transition,
    find_stuck_submissions,
)
from codejudge.services.verdicts import Verdict

from factories import Ticker, add_problem, add_submission, add_user, load_submission

pytestmark = pytest.mark.anyio


async def _pending(session_factory):
    user_id = await add_user(session_factory)
    problem_id = await add_problem(session_factory)
    return await add_submission(session_factory, user_id, problem_id)


async def test_lifecycle_persists_terminal_metrics(session_factory):
    submission_id = await _pending(session_factory)
    machine = SubmissionStateMachine(clock=Ticker())

    async with session_factory() as db:
        await machine.start_processing(db, submission_id)
    processing = await load_submission(session_factory, submission_id)
    assert processing.status == SubmissionStatus.PROCESSING.value
    assert processing.processing_started_at is not None
    assert processing.runtime is None

    verdict = Verdict(status=SubmissionStatus.ACCEPTED, runtime_ms=300, memory_kb=1500)
    async with session_factory() as db:
        await machine.finalize(db, submission_id, verdict)

    judged = await load_submission(session_factory, submission_id)
    assert judged.status == SubmissionStatus.ACCEPTED.value
    assert (judged.runtime, judged.memory) == (300, 1500)
    assert judged.judged_at is not None


async def test_finalize_requires_processing(session_factory):
    submission_id = await _pending(session_factory)
    machine = SubmissionStateMachine()

    async with session_factory() as db:
        with pytest.raises(InvalidTransition):
            await machine.finalize(db, submission_id, Verdict(status=SubmissionStatus.WRONG_ANSWER))

    untouched = await load_submission(session_factory, submission_id)
    assert untouched.status == SubmissionStatus.PENDING.value
    assert untouched.runtime is None


async def test_terminal_status_is_never_rewritten(session_factory):
    submission_id = await _pending(session_factory)
    machine = SubmissionStateMachine()

    async with session_factory() as db:
        await machine.start_processing(db, submission_id)
        await machine.finalize(
            db, submission_id, Verdict(status=SubmissionStatus.WRONG_ANSWER, runtime_ms=40)
        )
        with pytest.raises(InvalidTransition):
            await machine.finalize(
                db, submission_id, Verdict(status=SubmissionStatus.ACCEPTED, runtime_ms=10)
            )

    stored = await load_submission(session_factory, submission_id)
    assert stored.status == SubmissionStatus.WRONG_ANSWER.value
    assert stored.runtime == 40


async def test_processing_can_only_start_once(session_factory):
    submission_id = await _pending(session_factory)
    machine = SubmissionStateMachine()

    async with session_factory() as db:
        await machine.start_processing(db, submission_id)
        with pytest.raises(InvalidTransition):
            await machine.start_processing(db, submission_id)


async def test_unknown_submission_is_an_invalid_transition(session_factory):
    async with session_factory() as db:
        with pytest.raises(InvalidTransition, match="missing"):
            await SubmissionStateMachine().start_processing(db, "no-such-id")


async def test_find_stuck_reports_old_processing_rows(session_factory):
    user_id = await add_user(session_factory)
    problem_id = await add_problem(session_factory)
    base = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    stale = await add_submission(
        session_factory, user_id, problem_id,
        status="processing", processing_started_at=base - timedelta(minutes=30),
    )
    await add_submission(
        session_factory, user_id, problem_id,
        status="processing", processing_started_at=base - timedelta(minutes=2),
    )
    await add_submission(session_factory, user_id, problem_id, status="accepted")

    async with session_factory() as db:
        stuck = await SubmissionStateMachine().find_stuck(
            db, older_than=timedelta(minutes=15), now=base
        )

    assert [s.id for s in stuck] == [stale]


async def test_find_stuck_submissions_uses_wall_clock(session_factory):
    user_id = await add_user(session_factory)
    problem_id = await add_problem(session_factory)
    stale = await add_submission(
        session_factory, user_id, problem_id,
        status="processing",
        processing_started_at=datetime.now(timezone.utc) - timedelta(hours=1),
    )

    async with session_factory() as db:
        stuck = await find_stuck_submissions(db, timedelta(minutes=15))

    assert [s.id for s in stuck] == [stale]


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        ("pending", "processing", True),
        ("processing", "accepted", True),
        ("processing", "compilation_error", True),
        ("pending", "accepted", False),
        ("processing", "pending", False),
        ("accepted", "wrong_answer", False),
        ("runtime_error", "processing", False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_check_transition_raises():
    with pytest.raises(InvalidTransition):
        check_transition(SubmissionStatus.ACCEPTED, SubmissionStatus.PROCESSING)
