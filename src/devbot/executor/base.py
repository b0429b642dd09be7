"""Executor interface for agent invocations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from devbot.models import PermissionMode

ProgressCallback = Callable[[str], None]


@dataclass(slots=True)
class ExecRequest:
    """Inputs required to run one agent attempt."""

    prompt: str
    work_dir: str
    session_id: str = ""
    permission_mode: PermissionMode = PermissionMode.SAFE
    model: str = ""


@dataclass(slots=True)
class ExecResult:
    """Terminal outcome of one successful agent attempt."""

    output: str = ""
    session_id: str = ""
    is_permission_denial: bool = False


class AgentExecutor(Protocol):
    """Protocol implemented by agent executors."""

    @property
    def model(self) -> str:
        """Default model used when a session has none."""

    @property
    def timeout_seconds(self) -> float:
        """Deadline applied to each attempt."""

    def exec_stream(
        self,
        request: ExecRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExecResult:
        """Run one attempt, streaming assistant text to ``on_progress``."""

    def kill(self) -> None:
        """Kill the running attempt or raise ``NoRunningProcessError``."""

    def is_running(self) -> bool:
        """Return whether an attempt is in flight."""

    @property
    def exec_count(self) -> int:
        """Number of attempts finished so far."""

    @property
    def last_exec_duration(self) -> float:
        """Wall time of the most recent attempt in seconds."""
