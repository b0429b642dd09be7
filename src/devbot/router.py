"""Turns chat messages into commands or agent prompts."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from devbot import __version__
from devbot.executor.base import AgentExecutor
from devbot.models import PermissionMode
from devbot.orchestrator import Orchestrator, format_elapsed
from devbot.sender import CardMsg
from devbot.store import ConversationSession, SessionStore

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = "Please summarize the following output concisely:\n\n"

_SYSTEM_DIRS = ("/etc", "/var", "/usr", "/sys", "/proc")

HELP_TEXT = (
    "**Navigation:**\n"
    "`/root [path]`  show or set the root work directory\n"
    "`/cd <dir>`  switch project directory (relative to the root)\n"
    "`/pwd`  show the current directory\n"
    "`/ls`  list projects under the root\n\n"
    "**Agent conversation:**\n"
    "`/status`  detailed status\n"
    "`/new`  start a new conversation (the current one goes to history)\n"
    "`/kill`  kill the running task\n"
    "`/cancel`  same as /kill\n"
    "`/retry`  resend the last prompt\n"
    "`/last`  show the last output\n"
    "`/summary`  ask the agent to summarize the last output\n"
    "`/model [name]`  show or switch the model (haiku/sonnet/opus)\n"
    "`/yolo`  unrestricted mode (the agent may do anything)\n"
    "`/safe`  back to safe mode\n\n"
    "**Session history:**\n"
    "`/sessions`  list previous sessions\n"
    "`/switch <index|id>`  resume a previous session\n\n"
    "**Other:**\n"
    "`/ping`  check that the bot is alive\n"
    "`/version`  show the version\n"
    "`/help`  show this help\n\n"
    "Any other text is sent to the agent as a prompt."
)

MODEL_HELP = (
    "**Available models:**\n"
    "- `haiku`  fastest, good for simple tasks\n"
    "- `sonnet`  balanced, recommended for daily use\n"
    "- `opus`  strongest, for complex reasoning and long tasks\n\n"
    "Use `/model <name>` to switch, for example `/model opus`."
)

YOLO_TEXT = (
    "⚠️ **Unrestricted mode (YOLO) is on**\n\n"
    "The agent may now do anything, including:\n"
    "- run arbitrary shell commands\n"
    "- modify and delete files\n"
    "- access the network\n\n"
    "Use `/safe` to restore safe mode."
)


def under_root(root: str, target: str) -> bool:
    """Whether ``target`` is ``root`` itself or lies below it."""

    root = os.path.normpath(root)
    target = os.path.normpath(target)
    if target == root:
        return True
    return target.startswith(root.rstrip(os.sep) + os.sep)


def is_system_dir(path: str) -> bool:
    cleaned = os.path.normpath(path)
    return cleaned == "/" or any(
        cleaned == prefix or cleaned.startswith(prefix + "/") for prefix in _SYSTEM_DIRS
    )


def list_project_dirs(root: str) -> list[str]:
    """Visible subdirectory names of ``root``, sorted."""

    return sorted(
        entry.name
        for entry in Path(root).iterdir()
        if entry.is_dir() and not entry.name.startswith(".")
    )


class Router:
    """Dispatch one inbound message for a conversation.

    Messages starting with ``/`` are commands; anything else is a prompt for
    the agent and goes through the orchestrator's queue.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        *,
        allowed_user_ids: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.orchestrator = orchestrator
        self.allowed_user_ids = frozenset(allowed_user_ids)
        self._clock = clock
        self._started_at = clock()
        self._commands: dict[str, Callable[[str, str], None]] = {
            "/help": self._cmd_help,
            "/ping": self._cmd_ping,
            "/version": self._cmd_version,
            "/status": self._cmd_status,
            "/pwd": self._cmd_pwd,
            "/ls": self._cmd_ls,
            "/root": self._cmd_root,
            "/cd": self._cmd_cd,
            "/new": self._cmd_new,
            "/sessions": self._cmd_sessions,
            "/switch": self._cmd_switch,
            "/kill": self._cmd_kill,
            "/cancel": self._cmd_kill,
            "/model": self._cmd_model,
            "/yolo": self._cmd_yolo,
            "/safe": self._cmd_safe,
            "/last": self._cmd_last,
            "/summary": self._cmd_summary,
            "/retry": self._cmd_retry,
        }

    @property
    def store(self) -> SessionStore:
        return self.orchestrator.store

    @property
    def executor(self) -> AgentExecutor:
        return self.orchestrator.executor

    def is_allowed(self, user_id: str) -> bool:
        return not self.allowed_user_ids or user_id in self.allowed_user_ids

    def route(self, chat_id: str, user_id: str, text: str) -> None:
        if not self.is_allowed(user_id):
            logger.warning("Unauthorized user=%s, ignoring", user_id)
            return
        text = text.strip()
        if not text:
            return
        if text.startswith("/"):
            command, _, args = text.partition(" ")
            command = command.lower()
            logger.info("Command %s from chat=%s", command, chat_id)
            handler = self._commands.get(command)
            if handler is None:
                self._text(chat_id, f"Unknown command: {command}\nUse /help to see what is available.")
                return
            handler(chat_id, args.strip())
            return
        self._handle_prompt(chat_id, text)

    def _handle_prompt(self, chat_id: str, prompt: str) -> None:
        self.orchestrator.session(chat_id)

        def _remember(session: ConversationSession) -> None:
            session.last_prompt = prompt

        self.store.update_session(chat_id, _remember)
        self.orchestrator.save()
        self.orchestrator.submit(chat_id, prompt)

    # -- helpers ----------------------------------------------------------------

    def _text(self, chat_id: str, text: str) -> None:
        self.orchestrator.send_text(chat_id, text)

    def _card(self, chat_id: str, card: CardMsg) -> None:
        self.orchestrator.send_card(chat_id, card)

    def _update(self, chat_id: str, fn: Callable[[ConversationSession], None]) -> None:
        self.orchestrator.session(chat_id)
        self.store.update_session(chat_id, fn)
        self.orchestrator.save()

    def _uptime(self) -> str:
        return format_elapsed(self._clock() - self._started_at)

    # -- commands ---------------------------------------------------------------

    def _cmd_help(self, chat_id: str, _args: str) -> None:
        self._card(chat_id, CardMsg(title="devbot help", content=HELP_TEXT))

    def _cmd_ping(self, chat_id: str, _args: str) -> None:
        self._text(chat_id, f"pong ✓ (up {self._uptime()})")

    def _cmd_version(self, chat_id: str, _args: str) -> None:
        self._text(chat_id, f"devbot {__version__}")

    def _cmd_status(self, chat_id: str, _args: str) -> None:
        session = self.orchestrator.session(chat_id)
        queue = self.orchestrator.queue
        pending = queue.pending_count(chat_id) if queue is not None else 0
        last_exec = "-"
        if self.executor.exec_count > 0:
            last_exec = f"{self.executor.last_exec_duration:.3f}s"
        lines = [
            f"**Work dir:** `{session.work_dir}`",
            f"**Session:** `{session.agent_session_id or '(new session)'}`",
            f"**Model:** {session.model or self.executor.model}",
            f"**Mode:** {PermissionMode.parse(session.permission_mode).value}",
            f"**State:** {'running...' if self.executor.is_running() else 'idle'}",
            f"**Executions:** {self.executor.exec_count}",
            f"**Last duration:** {last_exec}",
            f"**Queued:** {pending}",
            f"**Uptime:** {self._uptime()}",
        ]
        self._card(chat_id, CardMsg(title="Status", content="\n".join(lines)))

    def _cmd_pwd(self, chat_id: str, _args: str) -> None:
        self._text(chat_id, self.orchestrator.session(chat_id).work_dir)

    def _cmd_ls(self, chat_id: str, _args: str) -> None:
        root = self.store.work_root
        try:
            dirs = list_project_dirs(root)
        except OSError as error:
            self._text(chat_id, f"Cannot read directory: {error}")
            return
        if not dirs:
            self._text(
                chat_id,
                f"No project directories under {root}.\nUse /cd <dir> to switch directory.",
            )
            return
        self._card(chat_id, CardMsg(title=f"Projects ({root})", content="\n".join(dirs)))

    def _cmd_root(self, chat_id: str, args: str) -> None:
        if not args:
            self._text(chat_id, f"Current root: {self.store.work_root}")
            return
        if not os.path.isabs(args):
            self._text(chat_id, "The root must be an absolute path, e.g. /home/user/projects")
            return
        if is_system_dir(args):
            self._text(chat_id, "System directories cannot be used as the root.")
            return
        path = Path(args)
        if not path.exists():
            self._text(chat_id, f"Directory does not exist: {args}")
            return
        if not path.is_dir():
            self._text(chat_id, f"Not a directory: {args}")
            return
        self.store.set_work_root(os.path.normpath(args))
        self.orchestrator.save()
        self._text(chat_id, f"✓ Root set to: {os.path.normpath(args)}")

    def _cmd_cd(self, chat_id: str, args: str) -> None:
        if not args:
            self._text(
                chat_id,
                "Usage: /cd <dir>\nExample: /cd myproject\n\nUse /ls to list projects.",
            )
            return
        self.orchestrator.session(chat_id)
        root = self.store.work_root
        target = os.path.normpath(args if os.path.isabs(args) else os.path.join(root, args))
        if not under_root(root, target):
            self._text(chat_id, f"Cannot leave the work root: {root}")
            return
        if not os.path.isdir(target):
            message = f"Directory does not exist: {target}"
            try:
                dirs = list_project_dirs(root)
            except OSError:
                dirs = []
            if dirs:
                message += "\n\nAvailable directories:\n" + "  /  ".join(dirs)
            self._text(chat_id, message)
            return

        def _switch_dir(session: ConversationSession) -> None:
            if session.agent_session_id and session.work_dir:
                session.dir_sessions[session.work_dir] = session.agent_session_id
            session.agent_session_id = session.dir_sessions.get(target, "")
            session.work_dir = target
            session.last_output = ""

        self._update(chat_id, _switch_dir)
        self._text(chat_id, f"✓ Switched to: {target}")

    def _cmd_new(self, chat_id: str, _args: str) -> None:
        self.orchestrator.session(chat_id)
        old_session_id = self.store.reset_agent_session(chat_id)

        def _clear_output(session: ConversationSession) -> None:
            session.last_output = ""

        self._update(chat_id, _clear_output)
        if old_session_id:
            self._text(
                chat_id,
                f"New conversation started. Session {old_session_id} was saved to history; "
                "see /sessions or resume it with /switch.",
            )
        else:
            self._text(chat_id, "New conversation started.")

    def _cmd_sessions(self, chat_id: str, _args: str) -> None:
        session = self.orchestrator.session(chat_id)
        if not session.history and not session.agent_session_id:
            self._text(chat_id, "No sessions yet. One is created when you send a prompt.")
            return
        lines = [
            f"  `{index}`: {session_id}  (resume with `/switch {index}`)"
            for index, session_id in enumerate(session.history)
        ]
        if session.agent_session_id:
            lines.append(f"\n**Current:** `{session.agent_session_id}`")
        self._card(chat_id, CardMsg(title="Sessions", content="\n".join(lines)))

    def _cmd_switch(self, chat_id: str, args: str) -> None:
        if not args:
            self._text(chat_id, "Usage: /switch <index|session id>\n\nUse /sessions to list them.")
            return
        session = self.orchestrator.session(chat_id)
        target_id = args
        if args.isdigit():
            index = int(args)
            if index >= len(session.history):
                self._text(chat_id, f"No session with index {index}; see /sessions.")
                return
            target_id = session.history[index]

        def _switch(live: ConversationSession) -> None:
            if live.agent_session_id:
                live.history.append(live.agent_session_id)
            live.agent_session_id = target_id
            live.last_output = ""

        self._update(chat_id, _switch)
        self._text(chat_id, f"✓ Switched to session: {target_id}")

    def _cmd_kill(self, chat_id: str, _args: str) -> None:
        self.orchestrator.kill(chat_id)

    def _cmd_model(self, chat_id: str, args: str) -> None:
        if not args:
            current = self.orchestrator.session(chat_id).model or self.executor.model
            self._card(
                chat_id,
                CardMsg(title="Model", content=f"**Current model:** `{current}`\n\n{MODEL_HELP}"),
            )
            return

        def _set_model(session: ConversationSession) -> None:
            session.model = args

        self._update(chat_id, _set_model)
        self._text(chat_id, f"✓ Model switched to: {args}")

    def _cmd_yolo(self, chat_id: str, _args: str) -> None:
        def _set_yolo(session: ConversationSession) -> None:
            session.permission_mode = PermissionMode.YOLO.value

        self._update(chat_id, _set_yolo)
        self._card(
            chat_id,
            CardMsg(title="⚠️ Unrestricted mode on", content=YOLO_TEXT, template="orange"),
        )

    def _cmd_safe(self, chat_id: str, _args: str) -> None:
        def _set_safe(session: ConversationSession) -> None:
            session.permission_mode = PermissionMode.SAFE.value

        self._update(chat_id, _set_safe)
        self._text(chat_id, "✓ Safe mode restored; the agent will ask before acting.")

    def _cmd_last(self, chat_id: str, _args: str) -> None:
        session = self.orchestrator.session(chat_id)
        if not session.last_output:
            self._text(chat_id, "No output yet; send the agent a prompt first.")
            return
        self._card(chat_id, CardMsg(content=session.last_output))

    def _cmd_summary(self, chat_id: str, _args: str) -> None:
        session = self.orchestrator.session(chat_id)
        if not session.last_output:
            self._text(chat_id, "Nothing to summarize; send the agent a prompt first.")
            return
        self.orchestrator.submit(chat_id, SUMMARY_PROMPT + session.last_output)

    def _cmd_retry(self, chat_id: str, _args: str) -> None:
        session = self.orchestrator.session(chat_id)
        if not session.last_prompt:
            self._text(chat_id, "There is no prompt to retry.")
            return
        self._text(chat_id, f"Retrying: {session.last_prompt}")
        self.orchestrator.submit(chat_id, session.last_prompt)
