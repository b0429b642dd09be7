"""Human-readable summaries of tool calls the agent was not allowed to make."""

from __future__ import annotations

import json
from typing import Any

ASK_USER_TOOLS: frozenset[str] = frozenset({"AskUserQuestion"})

DENIAL_HEADER = "The agent wants to confirm with you:"
REPLY_HINT = "Reply with an option number to continue."


def format_permission_denials(denials: list[dict[str, Any]]) -> str:
    """Render ``permission_denials`` entries of a result event."""

    parts = [f"{DENIAL_HEADER}\n\n"]
    for denial in denials:
        tool_name = str(denial.get("tool_name") or "")
        if tool_name in ASK_USER_TOOLS:
            parts.append(format_ask_user_question(denial.get("tool_input")))
        else:
            parts.append(f"(blocked: {tool_name})\n")
    return "".join(parts)


def format_ask_user_question(tool_input: object) -> str:
    """Render the questions and numbered options of an ask-user tool call."""

    questions = tool_input.get("questions") if isinstance(tool_input, dict) else None
    if not isinstance(questions, list):
        return _raw(tool_input)

    lines: list[str] = []
    for question in questions:
        if not isinstance(question, dict):
            continue
        lines.append(str(question.get("question", "")))
        lines.append("\n\n")
        options = question.get("options")
        for index, option in enumerate(options if isinstance(options, list) else [], start=1):
            if not isinstance(option, dict):
                continue
            label = option.get("label", "")
            description = option.get("description", "")
            lines.append(f"{index}. {label}\n   {description}\n")
        lines.append(f"\n{REPLY_HINT}")
    return "".join(lines)


def _raw(tool_input: object) -> str:
    if tool_input is None:
        return ""
    if isinstance(tool_input, str):
        return tool_input
    return json.dumps(tool_input, ensure_ascii=False)
