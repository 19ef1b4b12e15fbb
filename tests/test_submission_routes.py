from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from sqlalchemy import select

from codejudge.auth_token import get_current_user
from codejudge.database import get_db
from codejudge.models.leaderboard import LeaderboardEntry
from codejudge.models.submission import Submission
from codejudge.models.user import User
from codejudge.rate_limiter import RateLimiter
from codejudge.routes import leaderboard as leaderboard_routes
from codejudge.routes import submissions as submission_routes
from codejudge.schemas import SubmissionCreate
from codejudge.services.leaderboard import LeaderboardService

from factories import add_problem, add_submission, add_user

pytestmark = pytest.mark.anyio


class FakeDispatcher:
    def __init__(self):
        self.dispatched = []

    def dispatch(self, submission_id):
        self.dispatched.append(submission_id)


@pytest.fixture
def dispatcher(monkeypatch):
    fake = FakeDispatcher()
    monkeypatch.setattr(submission_routes, "get_dispatcher", lambda: fake)
    monkeypatch.setattr(submission_routes, "get_submission_rate_limiter", lambda: None)
    return fake


async def _user(session_factory, username="player1"):
    user_id = await add_user(session_factory, username=username)
    async with session_factory() as db:
        return await db.get(User, user_id)


async def _list(db, user, **overrides):
    params = {"page": 1, "limit": 10, "problem_id": None}
    params.update(overrides)
    return await submission_routes.list_submissions(db=db, user=user, **params)


async def test_submit_stores_pending_and_dispatches(session_factory, dispatcher):
    user = await _user(session_factory)
    problem_id = await add_problem(session_factory)

    async with session_factory() as db:
        receipt = await submission_routes.submit_code(
            SubmissionCreate(problem_id=problem_id, code="print(1)", language="python"),
            db=db,
            user=user,
        )

    assert receipt.submission.status.value == "pending"
    assert dispatcher.dispatched == [receipt.submission.id]
    async with session_factory() as db:
        stored = await db.get(Submission, receipt.submission.id)
    assert (stored.user_id, stored.problem_id, stored.language) == (user.id, problem_id, "python")
    assert stored.runtime is None


async def test_submit_unknown_problem_is_404(session_factory, dispatcher):
    user = await _user(session_factory)

    async with session_factory() as db:
        with pytest.raises(HTTPException) as exc:
            await submission_routes.submit_code(
                SubmissionCreate(problem_id=999, code="print(1)", language="python"),
                db=db,
                user=user,
            )

    assert exc.value.status_code == 404
    assert dispatcher.dispatched == []


async def test_submit_problem_without_cases_is_rejected(session_factory, dispatcher):
    user = await _user(session_factory)
    problem_id = await add_problem(session_factory, cases=0)

    async with session_factory() as db:
        with pytest.raises(HTTPException) as exc:
            await submission_routes.submit_code(
                SubmissionCreate(problem_id=problem_id, code="print(1)", language="python"),
                db=db,
                user=user,
            )
        count = len((await db.execute(select(Submission.id))).all())

    assert exc.value.status_code == 422
    assert count == 0


@pytest.mark.parametrize("raw_cases", [["1 2"], {"input": "1", "expected_output": "1"}])
async def test_submit_problem_with_malformed_cases_is_rejected(session_factory, dispatcher, raw_cases):
    user = await _user(session_factory)
    problem_id = await add_problem(session_factory, raw_cases=raw_cases)

    async with session_factory() as db:
        with pytest.raises(HTTPException) as exc:
            await submission_routes.submit_code(
                SubmissionCreate(problem_id=problem_id, code="print(1)", language="python"),
                db=db,
                user=user,
            )

    assert exc.value.status_code == 422
    assert dispatcher.dispatched == []


async def test_submit_rate_limited(session_factory, dispatcher, monkeypatch):
    limiter = RateLimiter(limit=1, window_seconds=60)
    monkeypatch.setattr(submission_routes, "get_submission_rate_limiter", lambda: limiter)
    user = await _user(session_factory)
    problem_id = await add_problem(session_factory)
    payload = SubmissionCreate(problem_id=problem_id, code="print(1)", language="python")

    async with session_factory() as db:
        await submission_routes.submit_code(payload, db=db, user=user)
        with pytest.raises(HTTPException) as exc:
            await submission_routes.submit_code(payload, db=db, user=user)

    assert exc.value.status_code == 429
    assert len(dispatcher.dispatched) == 1


async def test_get_submission_is_owner_scoped(session_factory):
    owner = await _user(session_factory, "owner")
    intruder = await _user(session_factory, "intruder")
    problem_id = await add_problem(session_factory, title="Two Sum")
    submission_id = await add_submission(
        session_factory, owner.id, problem_id, status="accepted", runtime=300, memory=1500
    )

    async with session_factory() as db:
        detail = await submission_routes.get_submission(submission_id, db=db, user=owner)
        with pytest.raises(HTTPException) as exc:
            await submission_routes.get_submission(submission_id, db=db, user=intruder)

    read = detail["submission"]
    assert read.problem_title == "Two Sum"
    assert (read.status.value, read.runtime, read.memory) == ("accepted", 300, 1500)
    assert exc.value.status_code == 404


async def test_list_submissions_newest_first_and_paginated(session_factory):
    user = await _user(session_factory)
    other = await _user(session_factory, "other")
    p1 = await add_problem(session_factory, title="P1")
    p2 = await add_problem(session_factory, title="P2")
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    ids = [
        await add_submission(session_factory, user.id, p1, created_at=base + timedelta(minutes=i))
        for i in range(3)
    ]
    ids.append(await add_submission(session_factory, user.id, p2, created_at=base + timedelta(minutes=9)))
    await add_submission(session_factory, other.id, p1)

    async with session_factory() as db:
        first_page = await _list(db, user, limit=3)
        second_page = await _list(db, user, page=2, limit=3)
        only_p1 = await _list(db, user, problem_id=p1)

    assert [s.id for s in first_page["submissions"]] == [ids[3], ids[2], ids[1]]
    assert [s.id for s in second_page["submissions"]] == [ids[0]]
    assert first_page["pagination"] == {"page": 1, "limit": 3, "total": 4, "pages": 2}
    assert only_p1["pagination"]["total"] == 3


async def test_leaderboard_listing_and_filters(session_factory):
    service = LeaderboardService(session_factory)
    alice = await _user(session_factory, "alice")
    bob = await _user(session_factory, "bob")
    problem_id = await add_problem(session_factory)
    await service.record_accepted(await add_submission(session_factory, alice.id, problem_id, status="accepted"))
    await service.record_accepted(await add_submission(session_factory, bob.id, problem_id, status="accepted"))

    async with session_factory() as db:
        stale = (
            await db.execute(select(LeaderboardEntry).where(LeaderboardEntry.user_id == alice.id))
        ).scalar_one()
        stale.last_submission_at = datetime.now(timezone.utc) - timedelta(days=60)
        await db.commit()

    async with session_factory() as db:
        everyone = await leaderboard_routes.get_leaderboard(db=db, time_filter="all", page=1, limit=50)
        weekly = await leaderboard_routes.get_leaderboard(db=db, time_filter="weekly", page=1, limit=50)

    assert [(r["name"], r["rank"]) for r in everyone["leaderboard"]] == [("alice", 1), ("bob", 2)]
    assert everyone["pagination"]["total"] == 2
    # Filters hide inactive users but keep global ranks.
    assert [(r["name"], r["rank"]) for r in weekly["leaderboard"]] == [("bob", 2)]


async def test_my_rank_and_stats(session_factory):
    service = LeaderboardService(session_factory)
    user = await _user(session_factory)
    newcomer = await _user(session_factory, "newcomer")
    easy = await add_problem(session_factory, difficulty="easy", title="E")
    hard = await add_problem(session_factory, difficulty="hard", title="H")
    await add_submission(session_factory, user.id, easy, status="wrong_answer")
    await service.record_accepted(await add_submission(session_factory, user.id, easy, status="accepted"))
    await service.record_accepted(await add_submission(session_factory, user.id, hard, status="accepted"))

    async with session_factory() as db:
        mine = await leaderboard_routes.get_my_rank(db=db, user=user, time_filter="all")
        nobody = await leaderboard_routes.get_my_rank(db=db, user=newcomer, time_filter="all")
        stats = await leaderboard_routes.get_stats(db=db, user=user)

    assert mine["user_rank"]["rank"] == 1
    assert mine["user_rank"]["total_solved"] == 2
    assert nobody["user_rank"] is None
    assert stats["submission_stats"]["accepted"] == 2
    assert stats["submission_stats"]["wrong_answer"] == 1
    assert stats["submission_stats"]["total"] == 3
    assert sorted((d["difficulty"], d["solved_count"]) for d in stats["difficulty_stats"]) == [
        ("easy", 1),
        ("hard", 1),
    ]
    [today] = stats["recent_activity"]
    assert (today["submissions_count"], today["accepted_count"]) == (3, 2)
    assert stats["current_rank"] == {"rank": 1, "total_solved": 2}


def _client(monkeypatch):
    from codejudge.main import app

    async def _no_db():
        yield None

    async def _anonymous_user():
        return User(id=1, username="player1")

    monkeypatch.setitem(app.dependency_overrides, get_db, _no_db)
    monkeypatch.setitem(app.dependency_overrides, get_current_user, _anonymous_user)
    return TestClient(app)


def test_blank_code_is_rejected_before_storage(monkeypatch):
    client = _client(monkeypatch)

    response = client.post(
        "/submissions/submit",
        json={"problem_id": 1, "code": "   ", "language": "python"},
    )

    assert response.status_code == 422


def test_unsupported_language_is_rejected(monkeypatch):
    client = _client(monkeypatch)

    response = client.post(
        "/submissions/submit",
        json={"problem_id": 1, "code": "puts 1", "language": "ruby"},
    )

    assert response.status_code == 422


def test_health(monkeypatch):
    response = _client(monkeypatch).get("/health")
    assert response.json() == {"ok": True}
