# codejudge/routes/submissions.py
import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from codejudge.auth_token import get_current_user
from codejudge.database import get_db
from codejudge.models.problem import Problem
from codejudge.models.submission import Submission, SubmissionStatus
from codejudge.models.user import User
from codejudge.rate_limiter import get_submission_rate_limiter
from codejudge.schemas import (
    SubmissionAccepted,
    SubmissionCreate,
    SubmissionDetail,
    SubmissionList,
    SubmissionRead,
    SubmissionReceipt,
)
from codejudge.services.pipeline import get_dispatcher
from codejudge.services.problems import InvalidTestCases, ProblemNotFound, get_problem_test_cases

_LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/submissions", tags=["Submissions"])


def _to_read(submission: Submission, problem_title: Optional[str]) -> SubmissionRead:
    read = SubmissionRead.model_validate(submission)
    read.problem_title = problem_title
    return read


# -------------------------------------------------------------------
# POST /submissions/submit – intake; judging continues in the background
# -------------------------------------------------------------------
@router.post("/submit", response_model=SubmissionReceipt, status_code=status.HTTP_202_ACCEPTED)
async def submit_code(
    payload: SubmissionCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    limiter = get_submission_rate_limiter()
    if limiter and not await limiter.try_acquire(f"user:{user.id}"):
        _LOGGER.warning("Rate limit hit for user %s", user.id)
        raise HTTPException(status_code=429, detail="Too many submissions. Please slow down.")

    try:
        test_cases = await get_problem_test_cases(db, payload.problem_id)
    except ProblemNotFound:
        raise HTTPException(status_code=404, detail="Problem not found")
    except InvalidTestCases:
        _LOGGER.error("Problem %s has malformed test cases", payload.problem_id)
        raise HTTPException(status_code=422, detail="Problem test cases are malformed")
    if not test_cases:
        raise HTTPException(status_code=422, detail="Problem has no test cases")

    try:
        submission = Submission(
            user_id=user.id,
            problem_id=payload.problem_id,
            code=payload.code,
            language=payload.language.value,
            status=SubmissionStatus.PENDING.value,
        )
        db.add(submission)
        await db.commit()
        await db.refresh(submission)
    except Exception:
        await db.rollback()
        _LOGGER.exception("Could not store submission for user %s", user.id)
        raise HTTPException(status_code=500, detail="Internal server error")

    get_dispatcher().dispatch(submission.id)
    _LOGGER.info(
        "Submission %s queued (user=%s problem=%s language=%s cases=%s)",
        submission.id,
        user.id,
        payload.problem_id,
        payload.language.value,
        len(test_cases),
    )
    return SubmissionReceipt(submission=SubmissionAccepted.model_validate(submission))


# -------------------------------------------------------------------
# GET /submissions/{id} – owner-scoped read
# -------------------------------------------------------------------
@router.get("/{submission_id}", response_model=SubmissionDetail)
async def get_submission(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    row = (
        await db.execute(
            select(Submission, Problem.title)
            .join(Problem, Problem.id == Submission.problem_id)
            .where(Submission.id == submission_id, Submission.user_id == user.id)
        )
    ).one_or_none()
    if row is None:
        raise HTTPException(status_code=404, detail="Submission not found")

    submission, title = row
    return {"submission": _to_read(submission, title)}


# -------------------------------------------------------------------
# GET /submissions – caller's submissions, newest first
# -------------------------------------------------------------------
@router.get("", response_model=SubmissionList)
async def list_submissions(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    problem_id: Optional[int] = Query(None, description="Only submissions for this problem"),
):
    filters = [Submission.user_id == user.id]
    if problem_id is not None:
        filters.append(Submission.problem_id == problem_id)

    rows = (
        await db.execute(
            select(Submission, Problem.title)
            .join(Problem, Problem.id == Submission.problem_id)
            .where(*filters)
            .order_by(Submission.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
    ).all()
    total = (
        await db.execute(select(func.count(Submission.id)).where(*filters))
    ).scalar_one()

    return {
        "submissions": [_to_read(sub, title) for sub, title in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }
