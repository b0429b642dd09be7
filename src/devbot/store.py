"""Per-conversation session state persisted to one JSON document."""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, NamedTuple

from devbot.models import PermissionMode

logger = logging.getLogger(__name__)

_RECORD_FIELDS: dict[str, str] = {
    "agent_session_id": "agentSessionID",
    "work_dir": "workDir",
    "model": "model",
    "permission_mode": "permissionMode",
    "last_output": "lastOutput",
    "last_prompt": "lastPrompt",
}


@dataclass(slots=True)
class ConversationSession:
    """State of one conversation; empty strings mean "unset"."""

    agent_session_id: str = ""
    work_dir: str = ""
    model: str = ""
    permission_mode: str = ""
    last_output: str = ""
    last_prompt: str = ""
    history: list[str] = field(default_factory=list)
    dir_sessions: dict[str, str] = field(default_factory=dict)

    def copy(self) -> ConversationSession:
        return replace(self, history=list(self.history), dir_sessions=dict(self.dir_sessions))

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for attr, key in _RECORD_FIELDS.items():
            value = getattr(self, attr)
            if value:
                record[key] = value
        if self.history:
            record["history"] = list(self.history)
        if self.dir_sessions:
            record["dirSessions"] = dict(self.dir_sessions)
        return record

    @classmethod
    def from_record(cls, raw: object) -> ConversationSession:
        if not isinstance(raw, dict):
            raise TypeError("session record must be an object")
        session = cls()
        for attr, key in _RECORD_FIELDS.items():
            value = raw.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise TypeError(f"session.{key} must be a string")
            setattr(session, attr, value)
        history = raw.get("history") or []
        if not isinstance(history, list):
            raise TypeError("session.history must be a list")
        session.history = [str(item) for item in history]
        dir_sessions = raw.get("dirSessions") or {}
        if not isinstance(dir_sessions, dict):
            raise TypeError("session.dirSessions must be an object")
        session.dir_sessions = {str(k): str(v) for k, v in dir_sessions.items()}
        return session


class ExecParams(NamedTuple):
    """Snapshot of what one agent attempt needs from a session."""

    work_dir: str
    session_id: str
    permission_mode: PermissionMode
    model: str


class SessionStore:
    """Thread-safe owner of all conversation sessions.

    Readers get copies; writers go through :meth:`update_session`. Nothing is
    written to disk until :meth:`save` is called.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._chats: dict[str, ConversationSession] = {}
        self._doc_bindings: dict[str, str] = {}
        self._work_root = ""
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        try:
            text = self._path.read_text("utf-8")
        except FileNotFoundError:
            return
        try:
            payload = json.loads(text)
            if not isinstance(payload, dict):
                raise TypeError("state must be a JSON object")
            chats = payload.get("chats") or {}
            if not isinstance(chats, dict):
                raise TypeError("state.chats must be an object")
            self._chats = {
                str(chat_id): ConversationSession.from_record(record)
                for chat_id, record in chats.items()
            }
            bindings = payload.get("docBindings") or {}
            if not isinstance(bindings, dict):
                raise TypeError("state.docBindings must be an object")
            self._doc_bindings = {str(k): str(v) for k, v in bindings.items()}
            self._work_root = str(payload.get("workRoot") or "")
        except (json.JSONDecodeError, TypeError) as error:
            raise ValueError(f"Invalid state file {self._path}: {error}") from error
        logger.info("Loaded %d sessions from %s", len(self._chats), self._path)

    def get_session(
        self,
        chat_id: str,
        *,
        default_work_dir: str = "",
        default_model: str = "",
    ) -> ConversationSession:
        """Return a copy of the session, creating it with defaults on first access."""

        with self._lock:
            session = self._chats.get(chat_id)
            if session is None:
                session = ConversationSession(work_dir=default_work_dir, model=default_model)
                self._chats[chat_id] = session
            return session.copy()

    def exec_params(self, chat_id: str) -> ExecParams:
        with self._lock:
            session = self._chats.get(chat_id) or ConversationSession()
            return ExecParams(
                work_dir=session.work_dir,
                session_id=session.agent_session_id,
                permission_mode=PermissionMode.parse(session.permission_mode),
                model=session.model,
            )

    def update_session(self, chat_id: str, fn: Callable[[ConversationSession], None]) -> bool:
        """Apply ``fn`` to the live session under the lock.

        Returns ``False`` (without calling ``fn``) when the session does not
        exist yet; create it first with :meth:`get_session`.
        """

        with self._lock:
            session = self._chats.get(chat_id)
            if session is None:
                return False
            fn(session)
            return True

    def reset_agent_session(self, chat_id: str) -> str:
        """Move the current agent session id to history and clear it.

        Returns the id that was cleared, or an empty string.
        """

        cleared = ""

        def _reset(session: ConversationSession) -> None:
            nonlocal cleared
            cleared = session.agent_session_id
            if cleared:
                session.history.append(cleared)
            session.agent_session_id = ""

        self.update_session(chat_id, _reset)
        return cleared

    def sessions(self) -> dict[str, ConversationSession]:
        with self._lock:
            return {chat_id: session.copy() for chat_id, session in self._chats.items()}

    @property
    def work_root(self) -> str:
        with self._lock:
            return self._work_root

    def set_work_root(self, root: str) -> None:
        with self._lock:
            self._work_root = root

    def doc_bindings(self) -> dict[str, str]:
        with self._lock:
            return dict(self._doc_bindings)

    def save(self) -> None:
        """Write the whole state atomically (temp file, then rename)."""

        with self._lock:
            payload = {
                "chats": {chat_id: s.to_record() for chat_id, s in self._chats.items()},
                "docBindings": dict(self._doc_bindings),
                "workRoot": self._work_root,
            }
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_name(self._path.name + ".tmp")
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp_path, self._path)
