"""CLI controllers: wire settings into the relay and run it."""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from devbot.config import Settings
from devbot.executor.claude import ClaudeExecutor
from devbot.executor.errors import NoRunningProcessError
from devbot.models import PermissionMode
from devbot.orchestrator import Orchestrator
from devbot.queue import ConversationQueue
from devbot.router import Router
from devbot.sender import ConsoleSender, Sender
from devbot.store import ConversationSession, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_CHAT_ID = "local"
DEFAULT_USER_ID = "local"


class ShutdownRequested(BaseException):  # noqa: N818
    """Raised from a signal handler to leave the chat loop."""

    def __init__(self, signal_name: str) -> None:
        super().__init__(signal_name)
        self.signal_name = signal_name


@dataclass(slots=True)
class ChatCommand:
    """Input for the interactive chat command."""

    config_path: Path | None = None
    chat_id: str = DEFAULT_CHAT_ID
    user_id: str = DEFAULT_USER_ID


@dataclass(slots=True)
class AskCommand:
    """Input for the one-shot ask command."""

    prompt: str
    config_path: Path | None = None
    chat_id: str = DEFAULT_CHAT_ID
    work_dir: Path | None = None
    yolo: bool = False


@dataclass(slots=True)
class SessionsCommand:
    """Input for the sessions listing command."""

    config_path: Path | None = None
    chat_id: str | None = None


@dataclass(slots=True)
class _Runtime:
    settings: Settings
    executor: ClaudeExecutor
    store: SessionStore
    queue: ConversationQueue | None
    orchestrator: Orchestrator


class BotCliController:
    """Builds the relay from settings and drives it from the terminal."""

    def __init__(self, sender: Sender | None = None) -> None:
        self.sender = sender

    def run_chat(self, command: ChatCommand, input_stream: TextIO) -> list[str]:
        """Feed every input line to the router until EOF or a stop signal."""

        settings = _load_settings(command.config_path)
        runtime = self._build(settings, queued=True)
        router = Router(runtime.orchestrator, allowed_user_ids=settings.allowed_user_ids)
        stop_reason = "eof"
        handled = 0
        logger.info(
            "Chat started chat=%s work_root=%s state=%s",
            command.chat_id,
            runtime.store.work_root,
            settings.state_file,
        )
        try:
            with _signal_handlers():
                for line in input_stream:
                    if not line.strip():
                        continue
                    router.route(command.chat_id, command.user_id, line)
                    handled += 1
        except ShutdownRequested as stop:
            stop_reason = stop.signal_name
            logger.info("Shutdown requested by %s", stop.signal_name)
        finally:
            killed = _shutdown(runtime)

        lines = [f"Chat finished: messages={handled} stop={stop_reason}"]
        if killed:
            lines.append("Running agent was killed after the shutdown grace period.")
        return lines

    def ask(self, command: AskCommand) -> list[str]:
        """Run one prompt inline and wait for its outcome."""

        settings = _load_settings(command.config_path)
        runtime = self._build(settings, queued=False)
        orchestrator = runtime.orchestrator
        orchestrator.session(command.chat_id)
        work_dir = str(command.work_dir.resolve()) if command.work_dir is not None else ""

        def _apply_overrides(session: ConversationSession) -> None:
            session.last_prompt = command.prompt
            if work_dir and work_dir != session.work_dir:
                if session.agent_session_id and session.work_dir:
                    session.dir_sessions[session.work_dir] = session.agent_session_id
                session.agent_session_id = session.dir_sessions.get(work_dir, "")
                session.work_dir = work_dir
            if command.yolo:
                session.permission_mode = PermissionMode.YOLO.value

        runtime.store.update_session(command.chat_id, _apply_overrides)
        orchestrator.save()
        orchestrator.submit(command.chat_id, command.prompt)

        session = orchestrator.session(command.chat_id)
        return [f"Session: {session.agent_session_id or '-'} work_dir={session.work_dir}"]

    def list_sessions(self, command: SessionsCommand) -> list[str]:
        settings = _load_settings(command.config_path)
        store = SessionStore(settings.state_file)
        sessions = store.sessions()
        if command.chat_id is not None:
            sessions = {k: v for k, v in sessions.items() if k == command.chat_id}
        if not sessions:
            return ["No sessions found."]

        lines: list[str] = []
        for chat_id, session in sorted(sessions.items()):
            mode = PermissionMode.parse(session.permission_mode).value
            lines.append(
                f"{chat_id}: session={session.agent_session_id or '-'} "
                f"work_dir={session.work_dir or '-'} model={session.model or '-'} "
                f"mode={mode} history={len(session.history)}",
            )
        return lines

    def _build(self, settings: Settings, *, queued: bool) -> _Runtime:
        executor = ClaudeExecutor(
            agent_command=settings.agent.command,
            model=settings.agent.model,
            timeout_seconds=float(settings.agent.timeout_seconds),
        )
        store = SessionStore(settings.state_file)
        if not store.work_root:
            store.set_work_root(str(settings.work_root))
        queue = ConversationQueue(settings.queue.capacity) if queued else None
        orchestrator = Orchestrator(
            executor=executor,
            store=store,
            sender=self.sender or ConsoleSender(),
            queue=queue,
            progress=settings.progress,
        )
        return _Runtime(
            settings=settings,
            executor=executor,
            store=store,
            queue=queue,
            orchestrator=orchestrator,
        )


def _load_settings(config_path: Path | None) -> Settings:
    settings = Settings.load(config_path)
    settings.validate()
    return settings


def _shutdown(runtime: _Runtime) -> bool:
    """Wait for the agent to go idle, kill it on timeout, then drain the queue.

    Returns whether a running agent had to be killed.
    """

    grace = runtime.settings.shutdown_grace_seconds
    killed = False
    if not runtime.executor.wait_idle(grace):
        logger.warning("Agent still running after %ss, killing it", grace)
        try:
            runtime.executor.kill()
            killed = True
        except NoRunningProcessError:
            pass
    if runtime.queue is not None:
        runtime.queue.shutdown()
    runtime.orchestrator.save()
    return killed


@contextmanager
def _signal_handlers() -> Iterator[None]:
    if not hasattr(signal, "SIGINT"):
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        raise ShutdownRequested(name)

    installed = False
    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        installed = True
    except ValueError:
        # Signal handlers can only be installed in main thread.
        pass
    try:
        yield
    finally:
        if installed:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
