"""Agent executor implementations."""

from devbot.executor.base import AgentExecutor, ExecRequest, ExecResult, ProgressCallback
from devbot.executor.claude import ClaudeExecutor
from devbot.executor.errors import (
    AgentOutputParseError,
    AgentProcessError,
    AgentReportedError,
    AgentStartError,
    AgentTimeoutError,
    ExecutorError,
    NoResultEventError,
    NoRunningProcessError,
)

__all__ = [
    "AgentExecutor",
    "AgentOutputParseError",
    "AgentProcessError",
    "AgentReportedError",
    "AgentStartError",
    "AgentTimeoutError",
    "ClaudeExecutor",
    "ExecRequest",
    "ExecResult",
    "ExecutorError",
    "NoResultEventError",
    "NoRunningProcessError",
    "ProgressCallback",
]
