from __future__ import annotations

import allure

from devbot.executor.denials import (
    DENIAL_HEADER,
    REPLY_HINT,
    format_ask_user_question,
    format_permission_denials,
)

pytestmark = [
    allure.epic("Agent Execution"),
    allure.feature("Permission Denials"),
]


def test_ask_user_question_lists_numbered_options() -> None:
    summary = format_permission_denials(
        [
            {
                "tool_name": "AskUserQuestion",
                "tool_input": {
                    "questions": [
                        {
                            "question": "Which database?",
                            "options": [
                                {"label": "SQLite", "description": "single file"},
                                {"label": "Postgres", "description": "server"},
                            ],
                        },
                    ],
                },
            },
        ],
    )

    assert summary == (
        f"{DENIAL_HEADER}\n\n"
        "Which database?\n\n"
        "1. SQLite\n   single file\n"
        "2. Postgres\n   server\n"
        f"\n{REPLY_HINT}"
    )


def test_other_tools_are_reported_as_blocked() -> None:
    summary = format_permission_denials(
        [{"tool_name": "Bash", "tool_input": {"command": "ls"}}, {"tool_name": "Write"}],
    )

    assert summary == f"{DENIAL_HEADER}\n\n(blocked: Bash)\n(blocked: Write)\n"


def test_unparseable_question_input_is_rendered_raw() -> None:
    assert format_ask_user_question({"questions": "oops"}) == '{"questions": "oops"}'
    assert format_ask_user_question("free text") == "free text"
    assert format_ask_user_question(None) == ""
