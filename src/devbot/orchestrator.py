"""Runs prompts against the agent on behalf of a conversation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace

from devbot.config import ProgressSettings
from devbot.executor.base import AgentExecutor, ExecRequest, ExecResult, ProgressCallback
from devbot.executor.errors import AgentTimeoutError, ExecutorError, NoRunningProcessError
from devbot.executor.recovery import classify_exec_failure
from devbot.queue import ConversationQueue, QueueFullError
from devbot.sender import CardMsg, Sender
from devbot.store import ConversationSession, SessionStore

logger = logging.getLogger(__name__)

EMPTY_RESPONSE = "(empty response)"
TRUNCATION_NOTICE = "(output truncated, showing the latest part)\n\n"
YOLO_HINT = "Use `/yolo` to enable unrestricted mode and skip confirmations."

Clock = Callable[[], float]


class ProgressThrottle:
    """Decide when a progress update may be sent.

    Nothing goes out during the first ``first_delay`` seconds of an attempt,
    then at most one update per ``interval`` seconds.
    """

    def __init__(
        self,
        *,
        started_at: float,
        first_delay: float,
        interval: float,
        clock: Clock = time.monotonic,
    ) -> None:
        self._started_at = started_at
        self._first_delay = first_delay
        self._interval = interval
        self._clock = clock
        self._last_sent: float | None = None

    def ready(self) -> bool:
        now = self._clock()
        if now - self._started_at < self._first_delay:
            return False
        if self._last_sent is not None and now - self._last_sent < self._interval:
            return False
        self._last_sent = now
        return True


def truncate_tail(text: str, max_chars: int) -> str:
    """Keep the last ``max_chars`` characters, prefixed with a notice when cut."""

    if len(text) <= max_chars:
        return text
    return TRUNCATION_NOTICE + text[-max_chars:]


def format_elapsed(seconds: float) -> str:
    """Render a duration truncated to whole seconds, e.g. ``1m5s``."""

    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


class Orchestrator:
    """Serialize prompts per conversation and report their outcome.

    This is the only place that decides whether to resume the stored agent
    session, and the only place that recovers from a lost one: when the agent
    cannot find the session it was asked to resume, the id moves to history
    and the attempt is repeated once from a fresh session.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        executor: AgentExecutor,
        store: SessionStore,
        sender: Sender,
        queue: ConversationQueue | None = None,
        progress: ProgressSettings | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.executor = executor
        self.store = store
        self.sender = sender
        self.queue = queue
        self.progress = progress or ProgressSettings()
        self._clock = clock

    def session(self, chat_id: str) -> ConversationSession:
        """Snapshot of the conversation, created with defaults on first access."""

        return self.store.get_session(
            chat_id,
            default_work_dir=self.store.work_root,
            default_model=self.executor.model,
        )

    def save(self) -> None:
        try:
            self.store.save()
        except OSError:
            logger.exception("Failed to save state to %s", self.store.path)

    def submit(self, chat_id: str, prompt: str) -> None:
        """Queue ``prompt`` behind earlier work of the same conversation."""

        if self.queue is None:
            self.execute(chat_id, prompt)
            return

        pending = self.queue.pending_count(chat_id)
        if pending > 0:
            self.send_card(
                chat_id,
                CardMsg(
                    title=f"Queued (position {pending + 1})",
                    content="A task is already running, please wait...",
                    template="blue",
                ),
            )
        try:
            self.queue.enqueue(chat_id, lambda: self.execute(chat_id, prompt))
        except QueueFullError:
            logger.warning("Queue full for chat=%s, dropping prompt", chat_id)
            self.send_text(chat_id, "The queue is full, please try again later.")

    def kill(self, chat_id: str) -> bool:
        """Kill the running attempt; ``False`` when nothing was running."""

        try:
            self.executor.kill()
        except NoRunningProcessError:
            self.send_text(chat_id, "Nothing is running.")
            return False
        self.send_text(chat_id, "✓ Task killed.")
        return True

    def execute(self, chat_id: str, prompt: str) -> None:
        """Run one prompt now and report the outcome to the conversation."""

        self.send_text(chat_id, "Running...")
        self.session(chat_id)
        params = self.store.exec_params(chat_id)
        request = ExecRequest(
            prompt=prompt,
            work_dir=params.work_dir,
            session_id=params.session_id,
            permission_mode=params.permission_mode,
            model=params.model or self.executor.model,
        )

        started_at = self._clock()
        throttle = ProgressThrottle(
            started_at=started_at,
            first_delay=self.progress.first_delay_seconds,
            interval=self.progress.interval_seconds,
            clock=self._clock,
        )
        last_progress = ""

        def _on_progress(text: str) -> None:
            nonlocal last_progress
            if not throttle.ready():
                return
            display = truncate_tail(text.strip(), self.progress.max_chars)
            last_progress = display
            self.send_card(chat_id, CardMsg(content=display))

        try:
            result = self._exec_with_recovery(chat_id, request, _on_progress)
        except ExecutorError as error:
            elapsed = format_elapsed(self._clock() - started_at)
            classification = classify_exec_failure(error)
            logger.warning(
                "Execution failed chat=%s elapsed=%s class=%s: %s",
                chat_id,
                elapsed,
                classification.failure_class.value,
                error,
            )
            self.send_card(
                chat_id,
                CardMsg(
                    title=f"Execution failed ({elapsed})",
                    content=self._describe_error(error),
                    template="red",
                ),
            )
            return

        elapsed = format_elapsed(self._clock() - started_at)
        self._persist_result(chat_id, result)
        self._report_result(chat_id, result, elapsed=elapsed, last_progress=last_progress)

    def _exec_with_recovery(
        self,
        chat_id: str,
        request: ExecRequest,
        on_progress: ProgressCallback,
    ) -> ExecResult:
        try:
            return self.executor.exec_stream(request, on_progress)
        except ExecutorError as error:
            if not request.session_id or not classify_exec_failure(error).recoverable:
                raise
            logger.warning(
                "Agent session %s not found, retrying without resume (chat=%s)",
                request.session_id,
                chat_id,
            )
        self.store.reset_agent_session(chat_id)
        self.save()
        return self.executor.exec_stream(replace(request, session_id=""), on_progress)

    def _persist_result(self, chat_id: str, result: ExecResult) -> None:
        def _apply(session: ConversationSession) -> None:
            session.last_output = result.output
            if result.session_id:
                session.agent_session_id = result.session_id
                if session.work_dir:
                    session.dir_sessions[session.work_dir] = result.session_id

        self.store.update_session(chat_id, _apply)
        self.save()

    def _report_result(
        self,
        chat_id: str,
        result: ExecResult,
        *,
        elapsed: str,
        last_progress: str,
    ) -> None:
        output = (result.output or EMPTY_RESPONSE).strip()
        if result.is_permission_denial:
            if output != last_progress:
                self.send_card(
                    chat_id,
                    CardMsg(
                        title="Agent needs confirmation",
                        content=f"{output}\n\n{YOLO_HINT}",
                        template="purple",
                    ),
                )
            return
        if output != last_progress:
            self.send_card(chat_id, CardMsg(content=output))
        self.send_text(chat_id, f"✓ Done ({elapsed})")

    def _describe_error(self, error: ExecutorError) -> str:
        message = str(error)
        if isinstance(error, AgentTimeoutError):
            message += (
                f"\n\nConfigured timeout: {int(error.timeout_seconds)}s. "
                "Set DEVBOT_CLAUDE_TIMEOUT (or claude_timeout in the config file) to change it."
            )
        return message

    def send_text(self, chat_id: str, text: str) -> None:
        try:
            self.sender.send_text(chat_id, text)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to send text to chat=%s", chat_id, exc_info=True)

    def send_card(self, chat_id: str, card: CardMsg) -> None:
        try:
            self.sender.send_card(chat_id, card)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to send card to chat=%s", chat_id, exc_info=True)
