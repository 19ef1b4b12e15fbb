"""Judging pipeline services."""

from .judge_client import JudgeClient, JudgeExecutionError, JudgeResult, get_judge_client
from .leaderboard import LeaderboardService, get_leaderboard_service
from .pipeline import JudgingPipeline, SubmissionDispatcher, get_dispatcher
from .submission_state import InvalidTransition, SubmissionStateMachine
from .verdicts import Verdict, VerdictAggregator

__all__ = [
    "InvalidTransition",
    "JudgeClient",
    "JudgeExecutionError",
    "JudgeResult",
    "JudgingPipeline",
    "LeaderboardService",
    "SubmissionDispatcher",
    "SubmissionStateMachine",
    "Verdict",
    "VerdictAggregator",
    "get_dispatcher",
    "get_judge_client",
    "get_leaderboard_service",
]
