"""Executor error taxonomy."""

from __future__ import annotations


class ExecutorError(RuntimeError):
    """Base class for failures of one agent attempt."""

    def __init__(self, message: str, *, session_id: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.session_id = session_id
        self.stderr = stderr


class AgentStartError(ExecutorError):
    """Agent process could not be launched."""


class AgentTimeoutError(ExecutorError):
    """Attempt exceeded its deadline and the process was killed."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"execution timed out after {_format_seconds(timeout_seconds)}")
        self.timeout_seconds = timeout_seconds


class AgentProcessError(ExecutorError):
    """Agent exited non-zero without reporting a result."""

    def __init__(self, exit_code: int, *, stderr: str = "") -> None:
        status = f"killed by signal {-exit_code}" if exit_code < 0 else f"exit status {exit_code}"
        super().__init__(f"claude error: {status}\nstderr: {stderr}", stderr=stderr)
        self.exit_code = exit_code


class AgentOutputParseError(ExecutorError):
    """Non-streaming output was not a JSON object."""


class AgentReportedError(ExecutorError):
    """Terminal ``result`` event carried ``is_error``."""


class NoResultEventError(ExecutorError):
    """Stream ended cleanly without a terminal ``result`` event."""


class NoRunningProcessError(ExecutorError):
    """Kill requested while nothing is running."""


def _format_seconds(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value)}s"
    return f"{value:g}s"
