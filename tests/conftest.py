"""Shared test fixtures."""

from __future__ import annotations

import json
import shlex
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from devbot.executor.base import ExecRequest, ExecResult, ProgressCallback
from devbot.executor.errors import NoRunningProcessError
from devbot.sender import CardMsg
from devbot.store import SessionStore

_FAKE_AGENT_COMMAND = f"{shlex.quote(sys.executable)} -m devbot.executor.fake_agent"


@dataclass(slots=True)
class FakeAgent:
    """Builds agent commands that replay scenarios through the fake agent module."""

    root: Path
    record_path: Path
    _counter: int = 0

    def command(self, scenario: dict[str, Any] | None = None) -> str:
        command = f"{_FAKE_AGENT_COMMAND} --record-args {shlex.quote(str(self.record_path))}"
        if scenario is None:
            return command
        self._counter += 1
        scenario_path = self.root / f"scenario-{self._counter}.json"
        scenario_path.write_text(json.dumps(scenario), "utf-8")
        return f"{command} --scenario {shlex.quote(str(scenario_path))}"

    def invocations(self) -> list[dict[str, Any]]:
        if not self.record_path.exists():
            return []
        return [
            json.loads(line)
            for line in self.record_path.read_text("utf-8").splitlines()
            if line.strip()
        ]


@pytest.fixture()
def fake_agent(tmp_path: Path) -> FakeAgent:
    root = tmp_path / "fake-agent"
    root.mkdir()
    return FakeAgent(root=root, record_path=root / "invocations.jsonl")


class RecordingSender:
    """Sender double that keeps every notice in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str | CardMsg]] = []
        self._lock = threading.Lock()

    def send_text(self, chat_id: str, text: str) -> None:
        with self._lock:
            self.events.append(("text", chat_id, text))

    def send_card(self, chat_id: str, card: CardMsg) -> None:
        with self._lock:
            self.events.append(("card", chat_id, card))

    def texts(self, chat_id: str | None = None) -> list[str]:
        return [
            str(payload)
            for kind, chat, payload in self.events
            if kind == "text" and (chat_id is None or chat == chat_id)
        ]

    def cards(self, chat_id: str | None = None) -> list[CardMsg]:
        return [
            payload
            for kind, chat, payload in self.events
            if kind == "card"
            and isinstance(payload, CardMsg)
            and (chat_id is None or chat == chat_id)
        ]


@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


Step = Callable[[ExecRequest, ProgressCallback | None], ExecResult]


@dataclass
class FakeExecutor:
    """Executor double driven by a list of scripted steps.

    Each step is an ``ExecResult`` to return, an exception to raise, or a
    callable receiving the request and the progress callback.
    """

    steps: list[ExecResult | BaseException | Step] = field(default_factory=list)
    model: str = "sonnet"
    timeout_seconds: float = 600.0
    requests: list[ExecRequest] = field(default_factory=list)
    running: bool = False
    kills: int = 0
    exec_count: int = 0
    last_exec_duration: float = 0.0

    def exec_stream(
        self,
        request: ExecRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExecResult:
        self.requests.append(request)
        self.exec_count += 1
        if not self.steps:
            return ExecResult(output=f"echo: {request.prompt}", session_id="fake-session")
        step = self.steps.pop(0)
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, ExecResult):
            return step
        return step(request, on_progress)

    def kill(self) -> None:
        if not self.running:
            raise NoRunningProcessError("no running process")
        self.kills += 1
        self.running = False

    def is_running(self) -> bool:
        return self.running


@pytest.fixture()
def store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "state" / "state.json")


@pytest.fixture()
def executor() -> FakeExecutor:
    return FakeExecutor()
