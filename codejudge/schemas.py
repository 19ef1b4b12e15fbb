# codejudge/schemas.py
# ------------------------------------------------------------
# Pydantic v2 schemas for submissions and the leaderboard
# ------------------------------------------------------------
from datetime import datetime
import re
from typing import Literal, Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from codejudge.models.submission import Language, SubmissionStatus


_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

MAX_CODE_LENGTH = 65_536


# ============================================================
# Submissions
# ============================================================

class SubmissionCreate(BaseModel):
    problem_id: int = Field(gt=0)
    code: str = Field(max_length=MAX_CODE_LENGTH)
    language: Language

    @field_validator("code", mode="before")
    @classmethod
    def _clean_code(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("Expected string input")
        # Keep tabs/newlines, drop other control characters.
        cleaned = _CONTROL_CHAR_RE.sub("", value)
        if not cleaned.strip():
            raise ValueError("Code cannot be empty")
        return cleaned

    @field_validator("language", mode="before")
    @classmethod
    def _normalize_language(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class SubmissionAccepted(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: SubmissionStatus
    created_at: datetime


class SubmissionReceipt(BaseModel):
    message: str = "Submission received"
    submission: SubmissionAccepted


class SubmissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: int
    problem_id: int
    problem_title: Optional[str] = None
    code: str
    language: Language
    status: SubmissionStatus
    runtime: Optional[int] = None
    memory: Optional[int] = None
    created_at: datetime
    judged_at: Optional[datetime] = None


class SubmissionDetail(BaseModel):
    submission: SubmissionRead


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class SubmissionList(BaseModel):
    submissions: List[SubmissionRead]
    pagination: Pagination


# ============================================================
# Leaderboard
# ============================================================

TimeFilter = Literal["all", "weekly", "monthly"]


class LeaderboardRow(BaseModel):
    user_id: int
    name: str
    total_solved: int
    rank: int
    last_submission_at: datetime


class LeaderboardPage(BaseModel):
    leaderboard: List[LeaderboardRow]
    pagination: Pagination
    time_filter: TimeFilter


class UserRank(BaseModel):
    user_rank: Optional[LeaderboardRow] = None
    time_filter: TimeFilter = "all"
    message: Optional[str] = None


class DifficultyCount(BaseModel):
    difficulty: str
    solved_count: int


class DailyActivity(BaseModel):
    date: str
    submissions_count: int
    accepted_count: int


class CurrentRank(BaseModel):
    rank: Optional[int] = None
    total_solved: int = 0


class UserStats(BaseModel):
    submission_stats: dict[str, int]
    difficulty_stats: List[DifficultyCount]
    recent_activity: List[DailyActivity]
    current_rank: CurrentRank
