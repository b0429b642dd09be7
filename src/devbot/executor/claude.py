"""Subprocess executor for the agent CLI."""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
import threading
import time
from typing import IO

from devbot.executor.base import ExecRequest, ExecResult, ProgressCallback
from devbot.executor.denials import format_permission_denials
from devbot.executor.errors import (
    AgentOutputParseError,
    AgentProcessError,
    AgentReportedError,
    AgentStartError,
    AgentTimeoutError,
    NoResultEventError,
    NoRunningProcessError,
)
from devbot.executor.stream import StreamDecoder, resolve_error_message
from devbot.models import PermissionMode

logger = logging.getLogger(__name__)

_WAIT_IDLE_POLL_SECONDS = 0.1
_STDERR_JOIN_SECONDS = 5.0
_RAW_LOG_LIMIT = 3000


class ClaudeExecutor:
    """Run the agent CLI and classify how each attempt ended.

    One executor tracks at most one live process. Concurrent ``exec`` calls on
    the same instance are not prevented here: callers serialize them through
    :class:`devbot.queue.ConversationQueue`.
    """

    def __init__(
        self,
        *,
        agent_command: str = "claude",
        model: str = "sonnet",
        timeout_seconds: float = 600.0,
    ) -> None:
        self._argv_head = _split_command(agent_command)
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._running: subprocess.Popen[str] | None = None
        self._exec_count = 0
        self._last_exec_duration = 0.0

    # -- state ------------------------------------------------------------------

    @property
    def model(self) -> str:
        with self._lock:
            return self._model

    def set_model(self, model: str) -> None:
        with self._lock:
            self._model = model

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    @property
    def exec_count(self) -> int:
        with self._lock:
            return self._exec_count

    @property
    def last_exec_duration(self) -> float:
        """Wall time of the most recent attempt in seconds."""
        with self._lock:
            return self._last_exec_duration

    def is_running(self) -> bool:
        with self._lock:
            return self._running is not None

    def kill(self) -> None:
        """Kill the tracked process."""

        with self._lock:
            process = self._running
        if process is None:
            raise NoRunningProcessError("no running process")
        logger.info("Killing agent process pid=%s", process.pid)
        process.kill()

    def wait_idle(self, timeout: float) -> bool:
        """Poll until nothing runs; ``False`` if ``timeout`` seconds pass first."""

        deadline = time.monotonic() + timeout
        while True:
            if not self.is_running():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(_WAIT_IDLE_POLL_SECONDS, remaining))

    # -- execution --------------------------------------------------------------

    def exec(self, request: ExecRequest) -> ExecResult:
        """Run one attempt with ``--output-format json`` and parse the final document."""

        process = self._start(self._build_argv(request, output_format="json"), request.work_dir)
        start = time.monotonic()
        try:
            stdout, stderr = process.communicate(timeout=self._timeout_seconds)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            raise AgentTimeoutError(self._timeout_seconds) from None
        finally:
            self._finish(time.monotonic() - start)

        if process.returncode != 0:
            raise AgentProcessError(process.returncode, stderr=stderr)

        logger.info("Agent raw output: len=%d session=%s", len(stdout), request.session_id)
        logger.debug("Agent raw json: %s", stdout[:_RAW_LOG_LIMIT])
        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as error:
            raise AgentOutputParseError(
                f"failed to parse claude response: {error}\nraw: {stdout[:_RAW_LOG_LIMIT]}",
                stderr=stderr,
            ) from error
        if not isinstance(payload, dict):
            raise AgentOutputParseError(
                f"failed to parse claude response: expected JSON object\nraw: {stdout[:_RAW_LOG_LIMIT]}",
                stderr=stderr,
            )

        session_id = str(payload.get("session_id") or "")
        if payload.get("is_error"):
            raise AgentReportedError(
                f"claude error: {resolve_error_message(payload)}",
                session_id=session_id,
                stderr=stderr,
            )

        output = str(payload.get("result") or "")
        denials = payload.get("permission_denials")
        denials = [d for d in denials if isinstance(d, dict)] if isinstance(denials, list) else []
        if not output and denials:
            return ExecResult(
                output=format_permission_denials(denials),
                session_id=session_id,
                is_permission_denial=True,
            )
        return ExecResult(output=output, session_id=session_id)

    def exec_stream(
        self,
        request: ExecRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExecResult:
        """Run one attempt with ``--output-format stream-json``.

        ``on_progress`` is called on this thread with the text of every
        assistant message, strictly before the result is returned.
        """

        process = self._start(
            self._build_argv(request, output_format="stream-json"),
            request.work_dir,
        )
        stderr_chunks: list[str] = []
        stderr_thread = threading.Thread(
            target=_drain,
            args=(process.stderr, stderr_chunks),
            daemon=True,
            name="agent-stderr",
        )
        stderr_thread.start()
        deadline = _Deadline(process, self._timeout_seconds)
        decoder = StreamDecoder(on_progress)
        start = time.monotonic()
        try:
            stdout = process.stdout
            if stdout is None:
                raise AgentStartError("failed to start claude: stdout is not captured")
            for line in stdout:
                if decoder.feed_line(line):
                    stdout.close()
                    break
            exit_code = process.wait()
        finally:
            deadline.cancel()
            if process.poll() is None:
                process.kill()
                process.wait()
            stderr_thread.join(timeout=_STDERR_JOIN_SECONDS)
            self._finish(time.monotonic() - start)

        stderr = "".join(stderr_chunks)
        if decoder.failure is not None:
            message = f"claude error: {decoder.failure.message}"
            if stderr:
                logger.warning("Agent stderr: %s", stderr)
                message = f"{message}\nstderr: {stderr}"
            raise AgentReportedError(
                message,
                session_id=decoder.failure.session_id,
                stderr=stderr,
            )

        if decoder.result is None:
            if deadline.expired:
                raise AgentTimeoutError(self._timeout_seconds)
            if exit_code != 0:
                raise AgentProcessError(exit_code, stderr=stderr)
            raise NoResultEventError("no result event in stream output", stderr=stderr)

        return decoder.result

    # -- helpers ----------------------------------------------------------------

    def _build_argv(self, request: ExecRequest, *, output_format: str) -> list[str]:
        argv = [*self._argv_head, "-p", request.prompt, "--output-format", output_format]
        if output_format == "stream-json":
            argv.append("--verbose")
        if request.session_id:
            argv.extend(["--resume", request.session_id])
        if request.model:
            argv.extend(["--model", request.model])
        if request.permission_mode == PermissionMode.YOLO:
            argv.append("--dangerously-skip-permissions")
        return argv

    def _start(self, argv: list[str], work_dir: str) -> subprocess.Popen[str]:
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=work_dir or None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as error:
            raise AgentStartError(f"failed to start claude: {error}") from error

        with self._lock:
            self._running = process
        logger.info("Agent started: pid=%s cwd=%s", process.pid, work_dir or ".")
        return process

    def _finish(self, duration: float) -> None:
        with self._lock:
            self._running = None
            self._exec_count += 1
            self._last_exec_duration = duration


class _Deadline:
    """Kill a process once its time budget is spent."""

    def __init__(self, process: subprocess.Popen[str], timeout_seconds: float) -> None:
        self._process = process
        self._expired = threading.Event()
        self._timer = threading.Timer(timeout_seconds, self._expire)
        self._timer.daemon = True
        self._timer.start()

    @property
    def expired(self) -> bool:
        return self._expired.is_set()

    def cancel(self) -> None:
        self._timer.cancel()

    def _expire(self) -> None:
        if self._process.poll() is not None:
            return
        self._expired.set()
        logger.warning("Agent deadline exceeded, killing pid=%s", self._process.pid)
        try:
            self._process.kill()
        except OSError:
            return


def _drain(stream: IO[str] | None, chunks: list[str]) -> None:
    if stream is None:
        return
    with stream:
        for chunk in stream:
            chunks.append(chunk)


def _split_command(command: str) -> list[str]:
    argv = shlex.split(command.strip())
    if not argv:
        raise ValueError("Agent command is empty.")
    return argv
