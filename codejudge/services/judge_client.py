"""HTTP client for the external Judge0-compatible execution service."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from codejudge.models.submission import Language

_LOGGER = logging.getLogger(__name__)

# Judge0 status ids: 1 "In Queue", 2 "Processing", 3 "Accepted", anything
# above 3 is a terminal non-accept outcome.
STATUS_IN_QUEUE = 1
STATUS_PROCESSING = 2
STATUS_ACCEPTED = 3
STATUS_WRONG_ANSWER = 4
STATUS_TIME_LIMIT_EXCEEDED = 5
STATUS_COMPILATION_ERROR = 6
STATUS_INTERNAL_ERROR = 13
STATUS_EXEC_FORMAT_ERROR = 14

LANGUAGE_IDS: dict[Language, int] = {
    Language.PYTHON: 71,
    Language.JAVA: 62,
    Language.CPP: 54,
    Language.C: 50,
}


class JudgeExecutionError(Exception):
    """The judge could not be driven to a result (network, HTTP or payload failure).

    Callers map it to ``runtime_error``.
    """


@dataclass(slots=True)
class JudgeResult:
    status_id: Optional[int]
    description: str = ""
    time: Optional[str] = None
    memory: Optional[int] = None
    token: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status_id is not None and self.status_id > STATUS_PROCESSING

    @property
    def is_accepted(self) -> bool:
        return self.status_id == STATUS_ACCEPTED

    @classmethod
    def from_payload(cls, payload: Any, *, token: Optional[str] = None) -> "JudgeResult":
        if not isinstance(payload, dict):
            raise JudgeExecutionError(f"Unexpected judge payload: {payload!r}")

        status = payload.get("status")
        status_id: Optional[int] = None
        description = ""
        if status is not None:
            if not isinstance(status, dict):
                raise JudgeExecutionError(f"Malformed judge status: {status!r}")
            try:
                status_id = int(status["id"])
            except (KeyError, TypeError, ValueError) as exc:
                raise JudgeExecutionError(f"Malformed judge status: {status!r}") from exc
            description = str(status.get("description") or "")

        memory = payload.get("memory")
        if memory is not None:
            try:
                memory = int(memory)
            except (TypeError, ValueError) as exc:
                raise JudgeExecutionError(f"Malformed memory value: {memory!r}") from exc

        time = payload.get("time")
        return cls(
            status_id=status_id,
            description=description,
            time=str(time) if time is not None else None,
            memory=memory,
            token=payload.get("token") or token,
            stdout=payload.get("stdout"),
            stderr=payload.get("stderr"),
            compile_output=payload.get("compile_output"),
        )


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class JudgeClient:
    """Submit one (source, language, stdin, expected output) job and wait for it.

    Stateless between calls apart from the pooled HTTP connection.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        use_rapidapi: Optional[bool] = None,
        rapidapi_host: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_poll_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_url = (base_url or os.getenv("JUDGE0_API_URL", "http://localhost:2358")).rstrip("/")
        self.api_key = api_key if api_key is not None else os.getenv("JUDGE0_API_KEY")
        self.use_rapidapi = use_rapidapi if use_rapidapi is not None else _env_flag("JUDGE0_USE_RAPIDAPI")
        self.rapidapi_host = rapidapi_host or os.getenv("JUDGE0_RAPIDAPI_HOST", "judge0-ce.p.rapidapi.com")
        self.poll_interval = (
            poll_interval if poll_interval is not None
            else float(os.getenv("JUDGE_POLL_INTERVAL_SECONDS", "1.0"))
        )
        self.max_poll_attempts = (
            max_poll_attempts if max_poll_attempts is not None
            else int(os.getenv("JUDGE_MAX_POLL_ATTEMPTS", "30"))
        )
        if self.poll_interval < 0:
            raise ValueError("poll_interval must not be negative")
        if self.max_poll_attempts < 0:
            raise ValueError("max_poll_attempts must not be negative")

        timeout = timeout if timeout is not None else float(os.getenv("JUDGE_HTTP_TIMEOUT_SECONDS", "10"))
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=self._headers(),
            transport=transport,
        )
        self._sleep = sleep

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.use_rapidapi:
            if self.api_key:
                headers["X-RapidAPI-Key"] = self.api_key
            headers["X-RapidAPI-Host"] = self.rapidapi_host
        elif self.api_key:
            headers["X-Auth-Token"] = self.api_key
        return headers

    @staticmethod
    def language_id(language: Language | str) -> int:
        try:
            return LANGUAGE_IDS[Language(language)]
        except ValueError as exc:
            raise ValueError(f"Unsupported language '{language}'") from exc

    # ------------------------------------------------------------------
    # Wire calls
    # ------------------------------------------------------------------
    async def submit(
        self,
        *,
        source_code: str,
        language: Language | str,
        stdin: str,
        expected_output: Optional[str],
    ) -> JudgeResult:
        payload = {
            "source_code": source_code,
            "language_id": self.language_id(language),
            "stdin": stdin,
            "expected_output": expected_output,
        }
        try:
            response = await self._client.post(
                "/submissions",
                json=payload,
                params={"base64_encoded": "false", "wait": "false"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            _LOGGER.error(
                "Judge submit rejected with HTTP %s: %s",
                exc.response.status_code,
                exc.response.text[:200],
            )
            raise JudgeExecutionError(f"Judge submit failed with HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            _LOGGER.error("Judge submit failed: %s", exc)
            raise JudgeExecutionError(f"Judge submit failed: {exc}") from exc
        except ValueError as exc:
            raise JudgeExecutionError("Judge submit returned invalid JSON") from exc

        return JudgeResult.from_payload(data)

    async def poll(self, token: str) -> JudgeResult:
        try:
            response = await self._client.get(
                f"/submissions/{token}",
                params={"base64_encoded": "false"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise JudgeExecutionError(f"Judge poll failed for token {token}: {exc}") from exc
        except ValueError as exc:
            raise JudgeExecutionError(f"Judge poll returned invalid JSON for token {token}") from exc

        return JudgeResult.from_payload(data, token=token)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def execute(
        self,
        *,
        source_code: str,
        language: Language | str,
        stdin: str = "",
        expected_output: Optional[str] = None,
    ) -> JudgeResult:
        """Run one job to completion.

        Submit failures raise :class:`JudgeExecutionError`. When the judge
        answers asynchronously the token is polled every ``poll_interval``
        seconds, at most ``max_poll_attempts`` times; a failed poll counts as
        an attempt and is retried. Once the ceiling is reached the last known
        (possibly non-terminal) result is returned rather than raised.
        """

        if not source_code or not source_code.strip():
            raise ValueError("source_code must not be empty")

        result = await self.submit(
            source_code=source_code,
            language=language,
            stdin=stdin,
            expected_output=expected_output,
        )
        if result.is_terminal:
            return result
        if not result.token:
            raise JudgeExecutionError("Judge response carried neither a terminal status nor a token")

        token = result.token
        last = result
        for attempt in range(1, self.max_poll_attempts + 1):
            await self._sleep(self.poll_interval)
            try:
                polled = await self.poll(token)
            except JudgeExecutionError as exc:
                _LOGGER.warning(
                    "Poll %s/%s for token %s failed, retrying: %s",
                    attempt,
                    self.max_poll_attempts,
                    token,
                    exc,
                )
                continue

            last = polled
            if polled.is_terminal:
                return polled

        _LOGGER.warning(
            "Judge token %s still not terminal after %s polls (status=%s)",
            token,
            self.max_poll_attempts,
            last.status_id,
        )
        return last

    async def close(self) -> None:
        await self._client.aclose()


_client: Optional[JudgeClient] = None


def get_judge_client() -> JudgeClient:
    global _client
    if _client is None:
        _client = JudgeClient()
    return _client


async def close_judge_client() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None
