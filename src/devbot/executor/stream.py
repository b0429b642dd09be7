"""Decoder for the line-delimited ``stream-json`` event format of the agent CLI."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from devbot.executor.base import ExecResult, ProgressCallback
from devbot.executor.denials import format_permission_denials

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "unknown error"


@dataclass(slots=True)
class ReportedFailure:
    """Error carried by a terminal ``result`` event."""

    message: str
    session_id: str


class StreamDecoder:
    """Consume agent output one line at a time.

    Lines are parsed independently: blank lines are ignored, lines that are not
    JSON objects are logged and skipped. ``assistant`` events feed the progress
    callback, ``system`` events are only logged, and the ``result`` event is
    terminal. An error result stops decoding immediately; a successful one is
    recorded and decoding continues until EOF so the process can be reaped.
    """

    def __init__(self, on_progress: ProgressCallback | None = None) -> None:
        self._on_progress = on_progress
        self.result: ExecResult | None = None
        self.failure: ReportedFailure | None = None
        self.skipped_lines = 0

    @property
    def got_result(self) -> bool:
        return self.result is not None

    def feed_line(self, line: str | bytes) -> bool:
        """Decode one line; return ``True`` when reading must stop."""

        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        stripped = line.strip()
        if not stripped:
            return False

        event = _parse_event(stripped)
        if event is None:
            self.skipped_lines += 1
            return False

        event_type = event.get("type")
        if event_type == "assistant":
            text = extract_assistant_text(event.get("message"))
            if text and self._on_progress is not None:
                self._on_progress(text)
        elif event_type == "system":
            logger.info("Agent system event: %s", stripped[:500])
        elif event_type == "result":
            return self._handle_result(event)
        return False

    def _handle_result(self, event: dict[str, Any]) -> bool:
        session_id = _as_str(event.get("session_id"))
        if event.get("is_error"):
            self.failure = ReportedFailure(
                message=resolve_error_message(event),
                session_id=session_id,
            )
            return True

        denials = event.get("permission_denials")
        denials = [d for d in denials if isinstance(d, dict)] if isinstance(denials, list) else []
        output = _as_str(event.get("result"))
        if not output and denials:
            output = format_permission_denials(denials)
        self.result = ExecResult(
            output=output,
            session_id=session_id,
            is_permission_denial=bool(denials),
        )
        logger.info(
            "Agent result: output_len=%d session_id=%s subtype=%s denials=%d",
            len(output),
            session_id,
            event.get("subtype", ""),
            len(denials),
        )
        return False


def extract_assistant_text(message: object) -> str:
    """Concatenate the ``text`` entries of an assistant message."""

    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if not isinstance(content, list):
        return ""
    return "".join(
        _as_str(entry.get("text"))
        for entry in content
        if isinstance(entry, dict) and entry.get("type") == "text"
    )


def resolve_error_message(event: dict[str, Any]) -> str:
    """Pick the most specific error text of an error result event."""

    message = _as_str(event.get("result"))
    if message:
        return message
    errors = event.get("errors")
    if isinstance(errors, list):
        joined = "; ".join(str(item) for item in errors if item)
        if joined:
            return joined
    return UNKNOWN_ERROR


def _parse_event(line: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as error:
        logger.warning("Skipping unparseable agent output line: %s", error)
        return None
    if not isinstance(payload, dict):
        logger.warning("Skipping non-object agent output line: %s", line[:200])
        return None
    return payload


def _as_str(value: object) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)
