"""Read-only access to problem test cases for the judging pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codejudge.models.problem import Problem


class ProblemNotFound(Exception):
    """Raised when a submission references a problem that does not exist."""


class InvalidTestCases(ValueError):
    """Raised when a problem's stored test cases cannot be read."""


@dataclass(frozen=True, slots=True)
class ProblemTestCase:
    input: str
    expected_output: str

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ProblemTestCase":
        if not isinstance(raw, dict):
            raise InvalidTestCases(f"Expected a test case object, got {type(raw).__name__}")
        return cls(
            input=str(raw.get("input") or ""),
            expected_output=str(raw.get("expected_output") or ""),
        )


def parse_test_cases(raw_cases: Sequence[dict[str, Any]] | None) -> list[ProblemTestCase]:
    """Keep stored order; it is the execution and short-circuit order."""
    if raw_cases is None:
        return []
    if not isinstance(raw_cases, list):
        raise InvalidTestCases(f"Expected a list of test cases, got {type(raw_cases).__name__}")
    return [ProblemTestCase.from_dict(raw) for raw in raw_cases]


async def get_problem_test_cases(db: AsyncSession, problem_id: int) -> list[ProblemTestCase]:
    raw_cases = (
        await db.execute(select(Problem.test_cases).where(Problem.id == problem_id))
    ).scalar_one_or_none()
    if raw_cases is None:
        exists = (
            await db.execute(select(Problem.id).where(Problem.id == problem_id))
        ).scalar_one_or_none()
        if exists is None:
            raise ProblemNotFound(f"Problem {problem_id} not found")
    return parse_test_cases(raw_cases)
