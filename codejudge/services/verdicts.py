"""Fold per-test-case judge results into one terminal verdict."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Sequence

from codejudge.models.submission import Language, SubmissionStatus
from codejudge.services.judge_client import (
    STATUS_COMPILATION_ERROR,
    STATUS_EXEC_FORMAT_ERROR,
    STATUS_INTERNAL_ERROR,
    STATUS_TIME_LIMIT_EXCEEDED,
    JudgeClient,
    JudgeExecutionError,
)
from codejudge.services.problems import ProblemTestCase

_LOGGER = logging.getLogger(__name__)

VERDICT_MODE_DETAILED = "detailed"
VERDICT_MODE_COLLAPSED = "collapsed"
_VERDICT_MODES = {VERDICT_MODE_DETAILED, VERDICT_MODE_COLLAPSED}

# Judge0 ids 7..12 are the runtime-error family (SIGSEGV, SIGXFSZ, SIGFPE, ...).
_RUNTIME_ERROR_IDS = frozenset(range(7, 13)) | {STATUS_INTERNAL_ERROR, STATUS_EXEC_FORMAT_ERROR}


@dataclass(slots=True)
class Verdict:
    status: SubmissionStatus
    runtime_ms: int = 0
    memory_kb: int = 0
    failed_test_index: Optional[int] = None
    executed: int = 0

    @property
    def accepted(self) -> bool:
        return self.status == SubmissionStatus.ACCEPTED


def runtime_ms(time_value: Optional[str]) -> int:
    """Convert judge time (decimal seconds as a string) into whole milliseconds."""

    if time_value is None or str(time_value).strip() == "":
        return 0
    try:
        seconds = Decimal(str(time_value).strip())
    except InvalidOperation as exc:
        raise JudgeExecutionError(f"Malformed time value: {time_value!r}") from exc
    if not seconds.is_finite() or seconds < 0:
        raise JudgeExecutionError(f"Malformed time value: {time_value!r}")
    return int((seconds * 1000).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def status_for_judge_outcome(status_id: int, *, mode: str = VERDICT_MODE_DETAILED) -> SubmissionStatus:
    """Submission status for a terminal, non-accepted per-case judge outcome."""

    if mode == VERDICT_MODE_COLLAPSED:
        return SubmissionStatus.WRONG_ANSWER
    if status_id == STATUS_TIME_LIMIT_EXCEEDED:
        return SubmissionStatus.TIME_LIMIT_EXCEEDED
    if status_id == STATUS_COMPILATION_ERROR:
        return SubmissionStatus.COMPILATION_ERROR
    if status_id in _RUNTIME_ERROR_IDS:
        return SubmissionStatus.RUNTIME_ERROR
    # Wrong answer, and any id this service does not know about.
    return SubmissionStatus.WRONG_ANSWER


class VerdictAggregator:
    """Run a submission across ordered test cases, one at a time.

    Stops at the first non-accepted case. Reported runtime and memory are the
    maximum over every case that produced a result, including the failing one.
    Execution-layer errors end the run with ``runtime_error`` and are not
    retried here.
    """

    def __init__(self, client: JudgeClient, *, mode: Optional[str] = None) -> None:
        self.client = client
        mode = (mode or os.getenv("JUDGE_VERDICT_MODE", VERDICT_MODE_DETAILED)).strip().lower()
        if mode not in _VERDICT_MODES:
            raise ValueError(f"Unknown verdict mode '{mode}'")
        self.mode = mode

    async def judge(
        self,
        *,
        source_code: str,
        language: Language | str,
        test_cases: Sequence[ProblemTestCase],
    ) -> Verdict:
        if not test_cases:
            raise ValueError("Cannot judge a submission without test cases")

        runtime = 0
        memory = 0
        total = len(test_cases)

        for index, case in enumerate(test_cases):
            try:
                result = await self.client.execute(
                    source_code=source_code,
                    language=language,
                    stdin=case.input,
                    expected_output=case.expected_output,
                )
                case_runtime = runtime_ms(result.time)
            except JudgeExecutionError as exc:
                _LOGGER.warning("Test case %s/%s could not be executed: %s", index + 1, total, exc)
                return Verdict(
                    status=SubmissionStatus.RUNTIME_ERROR,
                    runtime_ms=runtime,
                    memory_kb=memory,
                    failed_test_index=index,
                    executed=index,
                )

            if not result.is_terminal:
                _LOGGER.warning(
                    "Test case %s/%s never left the judge queue (status=%s)",
                    index + 1,
                    total,
                    result.status_id,
                )
                return Verdict(
                    status=SubmissionStatus.RUNTIME_ERROR,
                    runtime_ms=runtime,
                    memory_kb=memory,
                    failed_test_index=index,
                    executed=index + 1,
                )

            runtime = max(runtime, case_runtime)
            memory = max(memory, result.memory or 0)

            if not result.is_accepted:
                return Verdict(
                    status=status_for_judge_outcome(result.status_id, mode=self.mode),
                    runtime_ms=runtime,
                    memory_kb=memory,
                    failed_test_index=index,
                    executed=index + 1,
                )

        return Verdict(
            status=SubmissionStatus.ACCEPTED,
            runtime_ms=runtime,
            memory_kb=memory,
            executed=total,
        )
