"""Deterministic classification of executor failures for the recovery policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from devbot.executor.errors import (
    AgentOutputParseError,
    AgentProcessError,
    AgentStartError,
    AgentTimeoutError,
    ExecutorError,
    NoResultEventError,
)

_SESSION_NOT_FOUND_PATTERNS: tuple[str, ...] = ("no conversation found with session id",)


class FailureClass(str, Enum):
    """Normalized failure classes of one attempt."""

    SESSION_NOT_FOUND = "session_not_found"
    TIMEOUT = "timeout"
    START_FAILURE = "start_failure"
    PROCESS_ERROR = "process_error"
    PARSE_FAILURE = "parse_failure"
    NO_RESULT_EVENT = "no_result_event"
    AGENT_REPORTED = "agent_reported"


@dataclass(slots=True)
class FailureClassification:
    """Failure class plus the rule that produced it."""

    failure_class: FailureClass
    matched_pattern: str | None = None

    @property
    def recoverable(self) -> bool:
        """Whether a fresh session may succeed where the resumed one failed."""
        return self.failure_class is FailureClass.SESSION_NOT_FOUND


def is_session_not_found(error: BaseException) -> bool:
    """Return whether the agent could not find the session it was asked to resume.

    The agent reports this only as text, so the match is a case-insensitive
    substring test on the error message.
    """

    return _first_match(str(error).lower(), _SESSION_NOT_FOUND_PATTERNS) is not None


def classify_exec_failure(error: ExecutorError) -> FailureClassification:
    """Classify an executor failure."""

    pattern = _first_match(str(error).lower(), _SESSION_NOT_FOUND_PATTERNS)
    if pattern is not None:
        return FailureClassification(FailureClass.SESSION_NOT_FOUND, matched_pattern=pattern)
    if isinstance(error, AgentTimeoutError):
        return FailureClassification(FailureClass.TIMEOUT)
    if isinstance(error, AgentStartError):
        return FailureClassification(FailureClass.START_FAILURE)
    if isinstance(error, AgentProcessError):
        return FailureClassification(FailureClass.PROCESS_ERROR)
    if isinstance(error, AgentOutputParseError):
        return FailureClassification(FailureClass.PARSE_FAILURE)
    if isinstance(error, NoResultEventError):
        return FailureClassification(FailureClass.NO_RESULT_EVENT)
    return FailureClassification(FailureClass.AGENT_REPORTED)


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
