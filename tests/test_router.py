from __future__ import annotations

from pathlib import Path

import allure
import pytest

from devbot import __version__
from devbot.config import ProgressSettings
from devbot.executor.base import ExecResult
from devbot.orchestrator import Orchestrator
from devbot.router import SUMMARY_PROMPT, Router, is_system_dir, under_root

pytestmark = [
    allure.epic("Relay Runtime"),
    allure.feature("Command Router"),
]


@pytest.fixture()
def work_root(tmp_path: Path) -> Path:
    root = tmp_path / "projects"
    (root / "alpha").mkdir(parents=True)
    (root / "beta").mkdir()
    (root / ".hidden").mkdir()
    return root


@pytest.fixture()
def router(executor, store, sender, clock, work_root: Path) -> Router:
    store.set_work_root(str(work_root))
    orchestrator = Orchestrator(
        executor=executor,
        store=store,
        sender=sender,
        progress=ProgressSettings(),
        clock=clock,
    )
    return Router(orchestrator, clock=clock)


def test_prompt_is_remembered_and_executed(router: Router, executor, store, sender) -> None:
    router.route("chat-a", "u1", "  fix the bug  ")

    assert [request.prompt for request in executor.requests] == ["fix the bug"]
    session = store.get_session("chat-a")
    assert session.last_prompt == "fix the bug"
    assert session.last_output == "echo: fix the bug"
    assert sender.texts()[0] == "Running..."


def test_unauthorized_users_are_ignored(executor, store, sender, clock) -> None:
    orchestrator = Orchestrator(executor=executor, store=store, sender=sender, clock=clock)
    router = Router(orchestrator, allowed_user_ids=("u1",), clock=clock)

    router.route("chat-a", "intruder", "hello")
    router.route("chat-a", "u1", "/ping")

    assert executor.requests == []
    assert sender.texts() == ["pong ✓ (up 0s)"]


def test_blank_messages_are_ignored(router: Router, sender) -> None:
    router.route("chat-a", "u1", "   ")

    assert sender.events == []


def test_unknown_command_points_to_help(router: Router, sender) -> None:
    router.route("chat-a", "u1", "/frobnicate now")

    [text] = sender.texts()
    assert "Unknown command: /frobnicate" in text
    assert "/help" in text


def test_help_and_version(router: Router, sender) -> None:
    router.route("chat-a", "u1", "/HELP")
    router.route("chat-a", "u1", "/version")

    [card] = sender.cards()
    assert "/cd <dir>" in card.content
    assert sender.texts() == [f"devbot {__version__}"]


def test_status_reports_session_details(router: Router, executor, sender, work_root) -> None:
    router.route("chat-a", "u1", "/status")

    [card] = sender.cards()
    assert card.title == "Status"
    assert f"`{work_root}`" in card.content
    assert "(new session)" in card.content
    assert "**Mode:** safe" in card.content
    assert "**State:** idle" in card.content
    assert "**Last duration:** -" in card.content


def test_ls_lists_visible_directories(router: Router, sender) -> None:
    router.route("chat-a", "u1", "/ls")

    [card] = sender.cards()
    assert card.content == "alpha\nbeta"


def test_cd_switches_directory_and_keeps_per_directory_sessions(
    router: Router,
    store,
    sender,
    work_root: Path,
) -> None:
    router.route("chat-a", "u1", "/cd alpha")
    alpha = str(work_root / "alpha")
    assert store.get_session("chat-a").work_dir == alpha

    store.update_session("chat-a", lambda s: setattr(s, "agent_session_id", "s-alpha"))
    router.route("chat-a", "u1", "/cd beta")
    session = store.get_session("chat-a")
    assert session.work_dir == str(work_root / "beta")
    assert session.agent_session_id == ""
    assert session.dir_sessions[alpha] == "s-alpha"

    router.route("chat-a", "u1", "/cd alpha")
    assert store.get_session("chat-a").agent_session_id == "s-alpha"
    assert sender.texts()[-1] == f"✓ Switched to: {alpha}"


def test_cd_rejects_paths_outside_root_and_missing_dirs(router: Router, sender, work_root) -> None:
    router.route("chat-a", "u1", "/cd ../..")
    router.route("chat-a", "u1", "/cd gamma")

    outside, missing = sender.texts()
    assert outside.startswith("Cannot leave the work root")
    assert missing.startswith(f"Directory does not exist: {work_root / 'gamma'}")
    assert "alpha  /  beta" in missing


def test_root_validates_and_updates_work_root(router: Router, store, sender, tmp_path) -> None:
    router.route("chat-a", "u1", "/root relative/path")
    router.route("chat-a", "u1", "/root /etc/nginx")
    router.route("chat-a", "u1", f"/root {tmp_path}")

    texts = sender.texts()
    assert texts[0].startswith("The root must be an absolute path")
    assert texts[1] == "System directories cannot be used as the root."
    assert texts[2] == f"✓ Root set to: {tmp_path}"
    assert store.work_root == str(tmp_path)


def test_new_session_moves_current_to_history(router: Router, store, sender) -> None:
    router.route("chat-a", "u1", "hello")
    router.route("chat-a", "u1", "/new")

    session = store.get_session("chat-a")
    assert session.agent_session_id == ""
    assert session.history == ["fake-session"]
    assert session.last_output == ""
    assert "fake-session" in sender.texts()[-1]


def test_sessions_and_switch(router: Router, store, sender) -> None:
    store.get_session("chat-a")

    def _seed(session) -> None:
        session.history = ["s1", "s2"]
        session.agent_session_id = "s3"

    store.update_session("chat-a", _seed)

    router.route("chat-a", "u1", "/sessions")
    [card] = sender.cards()
    assert "`1`: s2" in card.content
    assert "**Current:** `s3`" in card.content

    router.route("chat-a", "u1", "/switch 0")
    session = store.get_session("chat-a")
    assert session.agent_session_id == "s1"
    assert session.history == ["s1", "s2", "s3"]

    router.route("chat-a", "u1", "/switch 7")
    assert sender.texts()[-1] == "No session with index 7; see /sessions."

    router.route("chat-a", "u1", "/switch custom-id")
    assert store.get_session("chat-a").agent_session_id == "custom-id"


def test_model_yolo_and_safe_update_session(router: Router, store, sender) -> None:
    router.route("chat-a", "u1", "/model")
    assert "**Current model:** `sonnet`" in sender.cards()[-1].content

    router.route("chat-a", "u1", "/model opus")
    router.route("chat-a", "u1", "/yolo")
    session = store.get_session("chat-a")
    assert session.model == "opus"
    assert session.permission_mode == "yolo"
    assert sender.cards()[-1].template == "orange"

    router.route("chat-a", "u1", "/safe")
    assert store.get_session("chat-a").permission_mode == "safe"


def test_kill_and_cancel_forward_to_executor(router: Router, executor, sender) -> None:
    executor.running = True
    router.route("chat-a", "u1", "/kill")
    router.route("chat-a", "u1", "/cancel")

    assert executor.kills == 1
    assert sender.texts() == ["✓ Task killed.", "Nothing is running."]


def test_last_summary_and_retry(router: Router, executor, sender) -> None:
    router.route("chat-a", "u1", "/last")
    router.route("chat-a", "u1", "/summary")
    router.route("chat-a", "u1", "/retry")
    assert sender.texts() == [
        "No output yet; send the agent a prompt first.",
        "Nothing to summarize; send the agent a prompt first.",
        "There is no prompt to retry.",
    ]

    executor.steps = [ExecResult(output="long answer", session_id="s1")]
    router.route("chat-a", "u1", "explain")
    router.route("chat-a", "u1", "/last")
    assert sender.cards()[-1].content == "long answer"

    router.route("chat-a", "u1", "/summary")
    router.route("chat-a", "u1", "/retry")
    prompts = [request.prompt for request in executor.requests]
    assert prompts == ["explain", SUMMARY_PROMPT + "long answer", "explain"]
    assert "Retrying: explain" in sender.texts()


def test_path_helpers() -> None:
    assert under_root("/work", "/work") is True
    assert under_root("/work", "/work/app") is True
    assert under_root("/work", "/workshop") is False
    assert under_root("/work", "/work/../etc") is False
    assert is_system_dir("/") is True
    assert is_system_dir("/usr/local") is True
    assert is_system_dir("/home/me") is False
    assert is_system_dir("/variety") is False
