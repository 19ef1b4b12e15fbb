# codejudge/models/submission.py
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text,
)

from codejudge.database import Base


class SubmissionStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ACCEPTED = "accepted"
    WRONG_ANSWER = "wrong_answer"
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"
    RUNTIME_ERROR = "runtime_error"
    COMPILATION_ERROR = "compilation_error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        SubmissionStatus.ACCEPTED,
        SubmissionStatus.WRONG_ANSWER,
        SubmissionStatus.TIME_LIMIT_EXCEEDED,
        SubmissionStatus.RUNTIME_ERROR,
        SubmissionStatus.COMPILATION_ERROR,
    }
)

# Forward-only lifecycle: pending -> processing -> exactly one terminal status.
ALLOWED_TRANSITIONS: dict[SubmissionStatus, frozenset[SubmissionStatus]] = {
    SubmissionStatus.PENDING: frozenset({SubmissionStatus.PROCESSING}),
    SubmissionStatus.PROCESSING: TERMINAL_STATUSES,
}


class Language(str, enum.Enum):
    PYTHON = "python"
    JAVA = "java"
    CPP = "cpp"
    C = "c"


def _sql_in(values) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


def _new_submission_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(String(36), primary_key=True, default=_new_submission_id)

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    problem_id = Column(Integer, ForeignKey("problems.id", ondelete="CASCADE"), nullable=False, index=True)

    code = Column(Text, nullable=False)
    language = Column(String(10), nullable=False)
    status = Column(String(30), nullable=False, default=SubmissionStatus.PENDING.value)

    # Only written together with a terminal status.
    runtime = Column(Integer, nullable=True)   # milliseconds
    memory = Column(Integer, nullable=True)    # kilobytes

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    judged_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(f"language IN ({_sql_in(Language)})", name="ck_submissions_language"),
        CheckConstraint(f"status IN ({_sql_in(SubmissionStatus)})", name="ck_submissions_status"),
        # "has this user already solved this problem?" and per-user listings
        Index("ix_submissions_user_problem_status", "user_id", "problem_id", "status"),
        Index("ix_submissions_status_started", "status", "processing_started_at"),
    )

    @property
    def status_enum(self) -> SubmissionStatus:
        return SubmissionStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum.is_terminal

    def __repr__(self) -> str:
        return f"<Submission id={self.id} user={self.user_id} problem={self.problem_id} status={self.status}>"
