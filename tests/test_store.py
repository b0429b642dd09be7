from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from devbot.models import PermissionMode
from devbot.store import ConversationSession, SessionStore

pytestmark = [
    allure.epic("Relay Runtime"),
    allure.feature("Session Store"),
]


def test_get_session_creates_defaults_and_returns_copy(store: SessionStore) -> None:
    session = store.get_session("chat-a", default_work_dir="/work", default_model="sonnet")
    session.agent_session_id = "mutated"
    session.history.append("mutated")

    fresh = store.get_session("chat-a", default_work_dir="/other", default_model="opus")

    assert fresh.work_dir == "/work"
    assert fresh.model == "sonnet"
    assert fresh.agent_session_id == ""
    assert fresh.history == []


def test_update_session_requires_existing_session(store: SessionStore) -> None:
    calls: list[str] = []

    assert store.update_session("missing", lambda _s: calls.append("called")) is False
    assert calls == []

    store.get_session("chat-a")
    assert store.update_session("chat-a", lambda s: setattr(s, "model", "opus")) is True
    assert store.get_session("chat-a").model == "opus"


def test_exec_params_defaults_to_safe_mode(store: SessionStore) -> None:
    store.get_session("chat-a", default_work_dir="/work", default_model="sonnet")

    params = store.exec_params("chat-a")

    assert params.work_dir == "/work"
    assert params.session_id == ""
    assert params.permission_mode is PermissionMode.SAFE
    assert params.model == "sonnet"

    store.update_session("chat-a", lambda s: setattr(s, "permission_mode", "yolo"))
    assert store.exec_params("chat-a").permission_mode is PermissionMode.YOLO


def test_reset_agent_session_moves_id_to_history(store: SessionStore) -> None:
    store.get_session("chat-a")
    store.update_session("chat-a", lambda s: setattr(s, "agent_session_id", "s1"))

    cleared = store.reset_agent_session("chat-a")

    session = store.get_session("chat-a")
    assert cleared == "s1"
    assert session.agent_session_id == ""
    assert session.history == ["s1"]
    assert store.reset_agent_session("chat-a") == ""
    assert store.get_session("chat-a").history == ["s1"]


def test_save_and_reload_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.json"
    store = SessionStore(path)
    store.set_work_root("/projects")
    store.get_session("chat-a", default_work_dir="/projects/app", default_model="sonnet")

    def _fill(session: ConversationSession) -> None:
        session.agent_session_id = "s2"
        session.permission_mode = "yolo"
        session.last_output = "done"
        session.last_prompt = "do it"
        session.history.append("s1")
        session.dir_sessions["/projects/app"] = "s2"

    store.update_session("chat-a", _fill)
    store.save()

    payload = json.loads(path.read_text("utf-8"))
    assert payload["workRoot"] == "/projects"
    assert payload["docBindings"] == {}
    assert payload["chats"]["chat-a"] == {
        "agentSessionID": "s2",
        "workDir": "/projects/app",
        "model": "sonnet",
        "permissionMode": "yolo",
        "lastOutput": "done",
        "lastPrompt": "do it",
        "history": ["s1"],
        "dirSessions": {"/projects/app": "s2"},
    }
    assert not path.with_name("state.json.tmp").exists()

    reloaded = SessionStore(path)
    session = reloaded.get_session("chat-a")
    assert reloaded.work_root == "/projects"
    assert session.agent_session_id == "s2"
    assert session.history == ["s1"]
    assert session.dir_sessions == {"/projects/app": "s2"}


def test_missing_state_file_starts_empty(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "absent.json")

    assert store.sessions() == {}
    assert store.work_root == ""
    assert store.doc_bindings() == {}


def test_invalid_state_file_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", "utf-8")

    with pytest.raises(ValueError, match="Invalid state file"):
        SessionStore(path)

    path.write_text(json.dumps({"chats": {"a": {"history": "nope"}}}), "utf-8")
    with pytest.raises(ValueError, match="session.history must be a list"):
        SessionStore(path)
